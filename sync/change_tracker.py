# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Change Tracker - diffs incoming shifts against the Roster Store and writes
one change log row per business-relevant mutation
"""
import json
import logging
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from db.tables import ChangeLog
from models import ChangeType, ShiftEntry, TRACKED_FIELDS
from utils.timezone import to_utc_naive

logger = logging.getLogger(__name__)


def _normalized(entry: ShiftEntry, field: str):
    value = getattr(entry, field)
    if field in ('start_time', 'end_time'):
        return to_utc_naive(value)
    if field == 'location_id':
        return int(value)
    if field == 'employee_id':
        return str(value)
    return value


def changed_fields(old: ShiftEntry, new: ShiftEntry) -> List[str]:
    """Tracked fields whose values differ between two versions of a shift"""
    return [f for f in TRACKED_FIELDS if _normalized(old, f) != _normalized(new, f)]


def _row_signature(entry: ShiftEntry) -> tuple:
    """Every stored column, normalized; equal signatures mean no write is needed"""
    breaks = tuple(sorted(
        (str(b.id), to_utc_naive(b.start_time), to_utc_naive(b.end_time), bool(b.is_paid_break))
        for b in entry.breaks
    ))
    return (
        tuple(_normalized(entry, f) for f in TRACKED_FIELDS),
        entry.location_name or '',
        entry.email,
        bool(entry.is_locum),
        breaks,
    )


def detect_changes(stored: Dict[str, ShiftEntry], incoming: Iterable[ShiftEntry],
                   deletable_ids: Iterable[str]) -> Dict[str, list]:
    """
    Classify incoming shifts against stored rows

    Returns:
        Dict with 'added', 'updated' and 'unchanged' lists of ShiftEntry and
        'deleted', the stored entries in ``deletable_ids`` absent from the
        incoming set. 'updated' holds (old, new) pairs.
    """
    changes = {'added': [], 'updated': [], 'deleted': [], 'unchanged': []}
    incoming_ids = set()

    for entry in incoming:
        incoming_ids.add(entry.id)
        old = stored.get(entry.id)
        if old is None:
            changes['added'].append(entry)
        elif _row_signature(old) != _row_signature(entry):
            changes['updated'].append((old, entry))
        else:
            changes['unchanged'].append(entry)

    for roster_id in deletable_ids:
        if roster_id not in incoming_ids and roster_id in stored:
            changes['deleted'].append(stored[roster_id])

    logger.info(
        f"📊 Change detection: {len(changes['added'])} added, {len(changes['updated'])} updated, "
        f"{len(changes['deleted'])} deleted, {len(changes['unchanged'])} unchanged"
    )
    return changes


class ChangeCapture:
    """Writes change log rows in the caller's session so they commit with the roster write"""

    def __init__(self):
        self._suppress_depth = 0
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        with self._lock:
            return self._suppress_depth == 0

    @contextmanager
    def suppressed(self):
        """Disable capture for the duration of the block, on every exit path"""
        with self._lock:
            self._suppress_depth += 1
        logger.info("⏸️ Change capture suppressed")
        try:
            yield self
        finally:
            with self._lock:
                self._suppress_depth -= 1
            logger.info("▶️ Change capture re-enabled")

    def _record(self, session: Session, change_type: ChangeType, roster_id: str,
                old: Optional[ShiftEntry], new: Optional[ShiftEntry]) -> Optional[ChangeLog]:
        if not self.enabled:
            return None

        present = [e for e in (old, new) if e is not None]
        row = ChangeLog(
            roster_id=str(roster_id),
            change_type=change_type.value,
            window_start=min(to_utc_naive(e.start_time) for e in present),
            window_end=max(to_utc_naive(e.end_time) for e in present),
            diff_summary=json.dumps({
                'old': old.snapshot() if old else None,
                'new': new.snapshot() if new else None,
            }),
        )
        session.add(row)
        return row

    def record_insert(self, session: Session, new: ShiftEntry) -> Optional[ChangeLog]:
        return self._record(session, ChangeType.INSERTED, new.id, None, new)

    def record_update(self, session: Session, old: ShiftEntry, new: ShiftEntry) -> Optional[ChangeLog]:
        """Only writes a row when a tracked field actually changed"""
        if not changed_fields(old, new):
            return None
        return self._record(session, ChangeType.CHANGED, new.id, old, new)

    def record_delete(self, session: Session, old: ShiftEntry) -> Optional[ChangeLog]:
        return self._record(session, ChangeType.DELETED, old.id, old, None)


def pending_changes(session: Session, location_ids: Optional[Iterable[int]] = None) -> List[ChangeLog]:
    """
    Change log rows in detection order, optionally limited to rows whose old
    or new location is in ``location_ids``
    """
    rows = session.query(ChangeLog).order_by(ChangeLog.id).all()
    wanted = {int(i) for i in location_ids} if location_ids else set()
    if not wanted:
        return rows

    selected = []
    for row in rows:
        try:
            diff = json.loads(row.diff_summary)
        except ValueError:
            logger.warning(f"Skipping change log {row.id} with unreadable diff")
            continue
        locations = {
            (diff.get(side) or {}).get('location_id') for side in ('old', 'new')
        }
        if any(loc is not None and int(loc) in wanted for loc in locations):
            selected.append(row)
    return selected
