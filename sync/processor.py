# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Change Processor - drains the change log into the scheduling system

Records are processed in fixed-size batches. A record is cleared only when
every call it needed succeeded; conflicts and failures keep it for the next
run. Worker threads never touch the database.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

import config
from branches import Branch, BranchDirectory
from db.database import session_scope
from db.tables import ChangeLog
from errors import RosterSyncError
from models import (
    AppointmentConflict,
    ChangeType,
    Identity,
    ProcessedSummary,
    ProcessingReport,
    ShiftEntry,
    SlotMismatch,
)
from sync.change_tracker import pending_changes
from utils.batching import run_batched
from utils.logger import StructuredLogger
from utils.slots import calculate_slots, minutes_between
from utils.timezone import day_bounds, format_12h, localize, to_local

logger = logging.getLogger(__name__)


@dataclass
class PendingChange:
    id: int
    roster_id: str
    change_type: str
    diff_summary: str


@dataclass
class StepResult:
    ok: bool = False
    summary: Optional[ProcessedSummary] = None
    mismatch: Optional[SlotMismatch] = None
    conflict: Optional[AppointmentConflict] = None


@dataclass
class RecordOutcome:
    change_id: int
    cleared: bool = False
    summaries: List[ProcessedSummary] = field(default_factory=list)
    mismatches: List[SlotMismatch] = field(default_factory=list)
    conflicts: List[AppointmentConflict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class ChangeProcessor:
    """Propagates pending change log rows to the scheduling system"""

    def __init__(self, session_factory: sessionmaker, client, resolver,
                 directory: Optional[BranchDirectory] = None, batch_size: Optional[int] = None,
                 batch_delay: Optional[float] = None, settle_delay: Optional[float] = None,
                 verify_delay: Optional[float] = None, conflict_fail_open: Optional[bool] = None):
        self.session_factory = session_factory
        self.client = client
        self.resolver = resolver
        self.directory = directory or BranchDirectory()
        self.batch_size = batch_size or config.CHANGE_BATCH_SIZE
        self.batch_delay = config.CHANGE_BATCH_DELAY if batch_delay is None else batch_delay
        self.settle_delay = config.SETTLE_DELAY if settle_delay is None else settle_delay
        self.verify_delay = config.VERIFY_DELAY if verify_delay is None else verify_delay
        self.conflict_fail_open = (
            config.CONFLICT_CHECK_FAIL_OPEN if conflict_fail_open is None else conflict_fail_open
        )
        self.structured_logger = StructuredLogger(__name__)

    # ------------------------------------------------------------------
    # driver
    # ------------------------------------------------------------------

    def process_pending(self, location_ids: Optional[Iterable[int]] = None) -> ProcessingReport:
        """Process every pending record, optionally only those touching ``location_ids``"""
        started = time.time()
        report = ProcessingReport()

        with session_scope(self.session_factory) as session:
            pending = [
                PendingChange(row.id, row.roster_id, row.change_type, row.diff_summary)
                for row in pending_changes(session, location_ids)
            ]

        if not pending:
            logger.info("No pending changes")
            return report

        logger.info(f"🚀 Processing {len(pending)} pending changes")

        for outcome in run_batched(pending, self._process_record, batch_size=self.batch_size,
                                   delay=self.batch_delay, label="changes"):
            cleared_ids = []
            for change, result in outcome.results:
                report.summaries.extend(result.summaries)
                report.mismatches.extend(result.mismatches)
                report.conflicts.extend(result.conflicts)
                if result.cleared:
                    cleared_ids.append(change.id)
                else:
                    report.retained.append(change.id)
                    if result.errors:
                        report.failures[change.id] = '; '.join(result.errors)

            for change, error in outcome.errors:
                report.retained.append(change.id)
                report.failures[change.id] = f"{type(error).__name__}: {error}"

            if cleared_ids:
                self._clear(cleared_ids)
                report.cleared.extend(cleared_ids)

        side_effects = self.resolver.tasks.drain()
        for task in side_effects:
            if not task.ok:
                report.side_effect_failures[task.name] = task.error

        report.duration = time.time() - started
        self._log_report(report, len(side_effects))
        return report

    def _clear(self, change_ids: List[int]):
        with session_scope(self.session_factory) as session:
            session.query(ChangeLog).filter(ChangeLog.id.in_(change_ids)).delete(synchronize_session=False)
        logger.info(f"🗑️ Cleared {len(change_ids)} processed changes")

    def _log_report(self, report: ProcessingReport, side_effect_count: int = 0):
        if report.summaries:
            logger.info("📋 Processed summary")
            for index, s in enumerate(report.summaries, 1):
                state = 'inactive' if s.inactive else 'active'
                logger.info(f"  {index}. {s.name} | {s.identity_id} | {s.date} | {s.start} | {s.end} | {state}")

        if report.conflicts:
            logger.warning(f"Keeping {len(report.conflicts)} changes with appointment conflicts for retry")

        if report.side_effect_failures:
            logger.warning(f"⚠️ {len(report.side_effect_failures)} of {side_effect_count} account updates failed")
            for name, error in report.side_effect_failures.items():
                logger.warning(f"   {name}: {error}")

        self.structured_logger.log_sync_event('change_processing_completed', {
            'cleared': len(report.cleared),
            'retained': len(report.retained),
            'failures': len(report.failures),
            'conflicts': len(report.conflicts),
            'slot_mismatches': len(report.mismatches),
            'account_updates': side_effect_count,
            'account_update_failures': len(report.side_effect_failures),
            'duration_seconds': round(report.duration, 2),
        })

    # ------------------------------------------------------------------
    # per record
    # ------------------------------------------------------------------

    def _process_record(self, change: PendingChange) -> RecordOutcome:
        outcome = RecordOutcome(change_id=change.id)
        change_type = ChangeType(change.change_type)
        diff = json.loads(change.diff_summary)

        if change_type == ChangeType.DELETED:
            steps = [(diff.get('old'), True)]
        elif change_type == ChangeType.CHANGED:
            steps = [(diff.get('old'), True), (diff.get('new'), False)]
        else:
            steps = [(diff.get('new'), False)]

        all_ok = True
        for index, (snapshot, inactive) in enumerate(steps):
            if index > 0 and self.settle_delay > 0:
                time.sleep(self.settle_delay)

            if not snapshot:
                outcome.errors.append(f"missing {'old' if inactive else 'new'} snapshot")
                all_ok = False
                continue

            try:
                step = self._apply(ShiftEntry.from_snapshot(snapshot), inactive, change_type)
            except Exception as e:
                logger.error(f"❌ Change {change.id} (roster {change.roster_id}) failed: "
                             f"{type(e).__name__}: {e}")
                outcome.errors.append(f"{type(e).__name__}: {e}")
                all_ok = False
                continue

            if step.summary:
                outcome.summaries.append(step.summary)
            if step.mismatch:
                outcome.mismatches.append(step.mismatch)
            if step.conflict:
                outcome.conflicts.append(step.conflict)
            all_ok = all_ok and step.ok

        outcome.cleared = all_ok and not outcome.conflicts
        return outcome

    def _apply(self, entry: ShiftEntry, inactive: bool, change_type: ChangeType) -> StepResult:
        branch = self.directory.by_location(entry.location_id)
        if branch is None:
            raise RosterSyncError(f"Unknown location {entry.location_id}")

        identity = self.resolver.resolve(entry.first_name, entry.last_name, entry.email, entry.employee_id)

        local_start = to_local(entry.start_time, branch.timezone)
        local_end = to_local(entry.end_time, branch.timezone)
        day = local_start.date()
        adjust_data = {
            'ADJUST_DATE': localize(datetime.combine(day, datetime.min.time()), branch.timezone).isoformat(),
            'BRANCH_IDENTIFIER': branch.code,
            'ADJUST_START': format_12h(local_start),
            'ADJUST_FINISH': format_12h(local_end),
            'INACTIVE': inactive,
        }

        if inactive:
            conflict = self._check_conflict(identity, branch, entry, change_type)
            if conflict:
                return StepResult(ok=True, conflict=conflict)
            logger.info(f"[{change_type.value.upper()}] Setting {entry.full_name} inactive at "
                        f"{branch.name} on {day}")

        sent = self.client.post_adjustment(identity.id, adjust_data)
        if not sent:
            logger.warning(f"Adjustment for {entry.full_name} on {day} was not applied; continuing checks")

        result = StepResult(ok=sent)
        if not inactive:
            if sent and self.verify_delay > 0:
                time.sleep(self.verify_delay)
            result.mismatch = self._check_slots(identity, branch, entry)
            if sent:
                self.resolver.record_work(identity, branch.code)

        if sent:
            result.summary = ProcessedSummary(
                name=entry.full_name,
                identity_id=identity.id,
                date=day.isoformat(),
                start=adjust_data['ADJUST_START'],
                end=adjust_data['ADJUST_FINISH'],
                inactive=inactive,
            )
        return result

    # ------------------------------------------------------------------
    # checks
    # ------------------------------------------------------------------

    def _check_conflict(self, identity: Identity, branch: Branch, entry: ShiftEntry,
                        change_type: ChangeType) -> Optional[AppointmentConflict]:
        """An AppointmentConflict if deactivating would orphan a booked appointment"""
        try:
            booked = self.client.has_active_appointments(
                identity.id, branch.code, entry.start_time, entry.end_time
            )
        except Exception as e:
            if self.conflict_fail_open:
                logger.warning(f"⚠️ Appointment check failed for {identity.id}, treating as no conflict: {e}")
                return None
            logger.error(f"❌ Appointment check failed for {identity.id}, treating as conflict: {e}")
            booked = True

        if not booked:
            return None

        day = to_local(entry.start_time, branch.timezone).date().isoformat()
        logger.error(
            f"❌ [APPOINTMENT CONFLICT] {entry.full_name} ({identity.id}) has appointments on "
            f"{day} at {branch.name}; skipping deactivation"
        )
        conflict = AppointmentConflict(
            branch=branch.code,
            branch_name=branch.name,
            date=day,
            identity_id=identity.id,
            name=entry.full_name,
            email=entry.email,
            start_time=entry.start_time.isoformat(),
            end_time=entry.end_time.isoformat(),
            change_type=change_type,
        )
        self.structured_logger.log_sync_event('appointment_conflict', {
            'branch': conflict.branch,
            'date': conflict.date,
            'identity_id': conflict.identity_id,
            'change_type': change_type.value,
        })
        return conflict

    def _check_slots(self, identity: Identity, branch: Branch, entry: ShiftEntry) -> Optional[SlotMismatch]:
        """Compare roster slots with what the scheduling system now holds; informational"""
        expected = calculate_slots(minutes_between(entry.start_time, entry.end_time))
        day = to_local(entry.start_time, branch.timezone).date()
        start, end = day_bounds(day, branch.timezone)

        try:
            reported = self.client.get_roster_slots(identity.id, branch.code, start, end)
        except Exception as e:
            logger.warning(f"⚠️ Slot check failed for {identity.id}: {e}")
            return None

        if reported and reported != expected:
            logger.warning(
                f"⚠️ [SLOT MISMATCH] {branch.code} on {day}: roster {expected} slots, "
                f"scheduling {reported} slots ({entry.full_name}, {identity.id})"
            )
            return SlotMismatch(
                branch=branch.code,
                branch_name=branch.name,
                date=day.isoformat(),
                identity_id=identity.id,
                name=entry.full_name,
                workforce_slots=expected,
                scheduling_slots=reported,
            )

        if reported:
            logger.info(f"✅ [SLOT MATCH] {branch.code} on {day}: {reported} slots ({identity.id})")
        return None
