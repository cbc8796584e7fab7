# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync Engine - reconciles the Roster Store with a shift snapshot for a
declared (window, locations) scope in a single transaction
"""
import logging
import time
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import pytz
from sqlalchemy.orm import sessionmaker

import config
from branches import BranchDirectory
from db.database import session_scope
from db.tables import Roster
from models import ShiftEntry, SyncResult, SyncScope
from sync.change_tracker import ChangeCapture, detect_changes
from utils.logger import StructuredLogger
from utils.timezone import day_bounds, reference_today, to_utc_naive

logger = logging.getLogger(__name__)


class RosterSyncEngine:
    """Core engine for roster reconciliation"""

    def __init__(self, session_factory: sessionmaker, directory: Optional[BranchDirectory] = None,
                 capture: Optional[ChangeCapture] = None, retention_days: Optional[int] = None):
        self.session_factory = session_factory
        self.directory = directory or BranchDirectory()
        self.capture = capture or ChangeCapture()
        self.retention_days = config.RETENTION_DAYS if retention_days is None else retention_days
        self.structured_logger = StructuredLogger(__name__)

    def _validate(self, entries: Iterable[ShiftEntry]) -> Tuple[Dict[str, ShiftEntry], int]:
        """Keep well-formed entries keyed by id (last one wins); count the rest"""
        valid: Dict[str, ShiftEntry] = {}
        skipped = 0

        for entry in entries:
            problem = None
            if not entry.id:
                problem = "missing id"
            elif entry.location_id is None or not entry.location_name:
                problem = "missing location"
            elif entry.start_time is None or entry.end_time is None:
                problem = "missing start or end time"
            elif entry.start_time.tzinfo is None or entry.end_time.tzinfo is None:
                problem = "times without timezone"
            elif entry.start_time >= entry.end_time:
                problem = "start is not before end"
            elif self.directory.by_location(entry.location_id) is None:
                problem = f"unknown location {entry.location_id}"

            if problem:
                logger.warning(f"⚠️ Skipping shift {entry.id or '?'}: {problem}")
                skipped += 1
                continue

            breaks = {str(b.id): b for b in entry.breaks}
            if len(breaks) != len(entry.breaks):
                logger.warning(f"⚠️ Shift {entry.id} lists a break id more than once; keeping the last")
                entry = replace(entry, breaks=list(breaks.values()))

            valid[str(entry.id)] = entry

        return valid, skipped

    def apply_snapshot(self, entries: List[ShiftEntry], scope: SyncScope) -> SyncResult:
        """
        Upsert every incoming shift and delete in-scope rows the snapshot no
        longer contains

        Rows outside [scope.start, scope.end) or outside scope.location_ids are
        never deleted. With no location scope the delete step is skipped.
        Change log rows are written in the same transaction; any error rolls
        the whole write back and is re-raised.
        """
        started = time.time()
        incoming, skipped = self._validate(entries)
        result = SyncResult(skipped=skipped)

        logger.info(f"🚀 Applying roster snapshot: {len(incoming)} shifts, "
                    f"{len(scope.location_ids)} locations")
        self.structured_logger.log_sync_event('roster_sync_started', {
            'incoming': len(incoming),
            'skipped': skipped,
            'scope_start': scope.start.isoformat(),
            'scope_end': scope.end.isoformat(),
            'location_ids': sorted(scope.location_ids),
        })

        try:
            with session_scope(self.session_factory) as session:
                rows = {
                    row.id: row
                    for row in session.query(Roster).filter(Roster.id.in_(list(incoming))).all()
                }

                scoped_ids: List[str] = []
                if scope.location_ids:
                    scoped_rows = session.query(Roster).filter(
                        Roster.start_time >= to_utc_naive(scope.start),
                        Roster.start_time < to_utc_naive(scope.end),
                        Roster.location_id.in_(sorted(scope.location_ids)),
                    ).all()
                    for row in scoped_rows:
                        rows[row.id] = row
                        scoped_ids.append(row.id)
                    if not incoming:
                        logger.warning("⚠️ Snapshot is empty - every shift in scope will be removed")
                else:
                    logger.warning("⚠️ No location scope - skipping delete step")

                stored = {roster_id: row.to_entry() for roster_id, row in rows.items()}
                changes = detect_changes(stored, incoming.values(), scoped_ids)

                for entry in changes['added']:
                    row = Roster(id=str(entry.id))
                    row.apply_entry(entry)
                    session.add(row)
                    self.capture.record_insert(session, entry)

                for old, new in changes['updated']:
                    rows[new.id].apply_entry(new)
                    self.capture.record_update(session, old, new)

                for old in changes['deleted']:
                    session.delete(rows[old.id])
                    self.capture.record_delete(session, old)

                result.inserted = len(changes['added'])
                result.changed = len(changes['updated'])
                result.deleted = len(changes['deleted'])
                result.unchanged = len(changes['unchanged'])

        except Exception as e:
            logger.error(f"❌ Roster sync failed, transaction rolled back: {e}")
            self.structured_logger.log_sync_event('roster_sync_failed', {'error': str(e)})
            raise

        result.duration = time.time() - started
        logger.info(f"✅ Roster sync complete: {result.inserted} added, {result.changed} updated, "
                    f"{result.deleted} deleted, {result.unchanged} unchanged")
        self.structured_logger.log_performance('apply_snapshot', result.duration,
                                               item_count=len(incoming))
        return result

    def _delete_before(self, cutoff: datetime) -> int:
        with session_scope(self.session_factory) as session:
            rows = session.query(Roster).filter(Roster.start_time < to_utc_naive(cutoff)).all()
            for row in rows:
                entry = row.to_entry()
                session.delete(row)
                self.capture.record_delete(session, entry)
            return len(rows)

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete rows older than the retention horizon across every branch

        Capture stays on, so each pruned row produces a deleted record.
        """
        now = now or datetime.now(pytz.UTC)
        cutoff = now - timedelta(days=self.retention_days)
        deleted = self._delete_before(cutoff)
        if deleted:
            logger.info(f"🧹 Pruned {deleted} shifts older than {self.retention_days} days")
        return deleted

    def purge_past_data(self, today: Optional[date] = None) -> int:
        """
        Delete every row starting before today (reference timezone) with
        change capture suppressed, so the purge is never propagated
        """
        today = today or reference_today()
        cutoff, _ = day_bounds(today, config.REFERENCE_TIMEZONE)

        with self.capture.suppressed():
            deleted = self._delete_before(cutoff)

        logger.info(f"🧹 Purged {deleted} past shifts (before {today})")
        self.structured_logger.log_sync_event('past_data_purged', {
            'deleted': deleted,
            'before': today.isoformat(),
        })
        return deleted
