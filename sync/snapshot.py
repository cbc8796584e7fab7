# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Snapshot builder - turns workforce shifts into ShiftEntry objects
"""
import logging
from typing import Dict, List, Optional, Tuple

from branches import BranchDirectory, DEFAULT_TIMEZONE
from models import BreakEntry, ShiftEntry
from utils.timezone import parse_datetime

logger = logging.getLogger(__name__)

LOCUM_MARKER = 'Locum'


def split_locum(first_name: str) -> Tuple[str, bool]:
    """'Jane_Locum' -> ('Jane', True)"""
    name, _, marker = (first_name or '').partition('_')
    return name, marker == LOCUM_MARKER


def split_employee_name(employee_name: str) -> Optional[Tuple[str, str]]:
    parts = (employee_name or '').split()
    if len(parts) < 2:
        return None
    return parts[0], ' '.join(parts[1:])


def _convert(shift: Dict, details: Optional[Dict], tz_name: str) -> Optional[ShiftEntry]:
    if not shift.get('employeeId') or not shift.get('employeeName'):
        return None

    if details:
        first_name = details.get('first_name') or ''
        last_name = details.get('last_name') or ''
        email = details.get('email')
    else:
        names = split_employee_name(shift['employeeName'])
        if names is None:
            logger.error(f"❌ Cannot parse employee name: {shift['employeeName']}")
            return None
        logger.warning(f"⚠️ No cached details for employee {shift['employeeId']}, "
                       f"using roster name")
        first_name, last_name = names
        email = None

    first_name, is_locum = split_locum(first_name)

    breaks = [
        BreakEntry(
            id=str(b['id']),
            start_time=parse_datetime(b['startTime'], tz_name),
            end_time=parse_datetime(b['endTime'], tz_name),
            is_paid_break=bool(b.get('isPaidBreak')),
        )
        for b in shift.get('breaks') or []
        if b.get('id') and b.get('startTime') and b.get('endTime')
    ]

    return ShiftEntry(
        id=str(shift['id']) if shift.get('id') else '',
        employee_id=str(shift['employeeId']),
        first_name=first_name,
        last_name=last_name,
        location_id=shift.get('locationId'),
        location_name=shift.get('locationName') or '',
        start_time=parse_datetime(shift['startTime'], tz_name) if shift.get('startTime') else None,
        end_time=parse_datetime(shift['endTime'], tz_name) if shift.get('endTime') else None,
        email=email,
        is_locum=is_locum,
        breaks=breaks,
    )


def build_snapshot(shifts: List[Dict], identity_cache, directory: Optional[BranchDirectory] = None) -> List[ShiftEntry]:
    """
    Convert raw workforce shifts, resolving names and emails through the
    identity cache

    Shift times without an offset are read in the branch's timezone. Shifts
    that cannot be converted are dropped with a log line; validation of the
    rest happens in the sync engine.
    """
    directory = directory or BranchDirectory()
    details = identity_cache.lookup_many(s.get('employeeId') for s in shifts)

    entries = []
    for index, shift in enumerate(shifts):
        branch = directory.by_location(shift.get('locationId'))
        tz_name = branch.timezone if branch else DEFAULT_TIMEZONE
        try:
            entry = _convert(shift, details.get(str(shift.get('employeeId'))), tz_name)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"❌ Error converting shift at index {index}: {e}")
            continue
        if entry is not None:
            entries.append(entry)

    logger.info(f"📊 Built snapshot of {len(entries)}/{len(shifts)} shifts")
    return entries
