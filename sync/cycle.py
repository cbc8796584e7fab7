# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync Cycle - one scheduled invocation: fetch, reconcile, propagate
"""
import logging
import time
from datetime import date, timedelta
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

import config
from branches import BranchDirectory
from clients.scheduling import SchedulingClient
from clients.workforce import WorkforceClient
from db.cache_store import TableCacheStore
from errors import SnapshotValidationError
from models import SyncScope
from sync.accounts import AccountResolver
from sync.engine import RosterSyncEngine
from sync.identity import EmployeeIdentityCache
from sync.processor import ChangeProcessor
from sync.snapshot import build_snapshot
from utils.cache import TTLCache
from utils.logger import StructuredLogger
from utils.timezone import date_range_bounds, reference_today

logger = logging.getLogger(__name__)


class SyncCycle:
    """Runs the fetch → reconcile → propagate sequence for one scope"""

    def __init__(self, engine: RosterSyncEngine, processor: ChangeProcessor,
                 workforce_client, identity_cache: EmployeeIdentityCache,
                 directory: Optional[BranchDirectory] = None):
        self.engine = engine
        self.processor = processor
        self.workforce = workforce_client
        self.identity_cache = identity_cache
        self.directory = directory or BranchDirectory()
        self.structured_logger = StructuredLogger(__name__)

    def run(self, from_date: date, to_date: date, branch_code: Optional[str] = None) -> Dict:
        """
        Sync [from_date, to_date] for one branch, or for every branch

        The delete scope is the requested branch's location, or (for an
        all-branch run) the locations present in the fetched snapshot.
        """
        if to_date < from_date:
            raise SnapshotValidationError(f"Invalid date range: {from_date} to {to_date}")

        branch = None
        if branch_code:
            branch = self.directory.by_code(branch_code)
            if branch is None:
                raise SnapshotValidationError(f"Invalid branch code: {branch_code}")

        started = time.time()
        logger.info(f"🚀 Starting roster sync {from_date} to {to_date} "
                    f"({branch.name if branch else 'all branches'})")

        fetch_ids = [branch.location_id] if branch else self.directory.location_ids()
        shifts = self.workforce.get_roster_shifts(from_date, to_date, fetch_ids)
        entries = build_snapshot(shifts, self.identity_cache, self.directory)

        if branch:
            scope_ids = {branch.location_id}
        else:
            scope_ids = {
                int(e.location_id) for e in entries
                if self.directory.by_location(e.location_id) is not None
            }

        start, end = date_range_bounds(from_date, to_date)
        sync_result = self.engine.apply_snapshot(entries, SyncScope(start, end, frozenset(scope_ids)))
        pruned = self.engine.prune_expired()
        report = self.processor.process_pending(scope_ids or None)

        duration = time.time() - started
        result = {
            'success': True,
            'from_date': from_date.isoformat(),
            'to_date': to_date.isoformat(),
            'branch': branch.code if branch else None,
            'sync': sync_result,
            'pruned': pruned,
            'processing': report,
            'duration': duration,
        }

        self.structured_logger.log_sync_event('sync_cycle_completed', {
            'branch': result['branch'],
            'from_date': result['from_date'],
            'to_date': result['to_date'],
            'inserted': sync_result.inserted,
            'changed': sync_result.changed,
            'deleted': sync_result.deleted,
            'cleared': len(report.cleared),
            'retained': len(report.retained),
            'duration_seconds': round(duration, 2),
        })
        return result

    def run_store_sync(self, branch_code: str, days: Optional[int] = None,
                       today: Optional[date] = None) -> Dict:
        """Sync one branch from today through today + STORE_SYNC_DAYS"""
        today = today or reference_today()
        days = config.STORE_SYNC_DAYS if days is None else days
        return self.run(today, today + timedelta(days=days), branch_code)


def create_sync_cycle(session_factory: sessionmaker, directory: Optional[BranchDirectory] = None) -> SyncCycle:
    """Wire a SyncCycle from configuration"""
    directory = directory or BranchDirectory()
    workforce = WorkforceClient()
    scheduling = SchedulingClient()

    identity_cache = EmployeeIdentityCache(workforce, TTLCache(TableCacheStore(session_factory)))
    resolver = AccountResolver(scheduling)
    engine = RosterSyncEngine(session_factory, directory)
    processor = ChangeProcessor(session_factory, scheduling, resolver, directory)
    return SyncCycle(engine, processor, workforce, identity_cache, directory)
