#!/usr/bin/env python3
# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Roster Sync command line

Each invocation runs one job and exits; scheduling (and keeping two runs
over the same branch and window apart) is left to cron or the host.

Usage:
    python roster_sync.py sync --from 2025-10-01 --to 2025-10-14 [--branch BKT]
    python roster_sync.py store-sync BKT [--days 56]
    python roster_sync.py process [--branch BKT]
    python roster_sync.py purge-past
    python roster_sync.py appointment-counts [--date D | --from D --to D | --yesterday] [--branch BKT] [--refresh | --count-only]

Options:
    --dry-run    Log scheduling-system writes without sending them
    --verbose    Show detailed logging
"""

import argparse
import logging
import sys
from datetime import date, timedelta

import config
from branches import BranchDirectory
from clients.scheduling import SchedulingClient
from db.database import init_db, make_engine, make_session_factory
from errors import RosterSyncError, SnapshotValidationError
from sync.accounts import AccountResolver
from sync.appointment_counts import AppointmentCountService
from sync.cycle import create_sync_cycle
from sync.engine import RosterSyncEngine
from sync.processor import ChangeProcessor
from utils.logger import setup_logging
from utils.timezone import reference_today

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Reconcile the workforce roster with the scheduling system')
    parser.add_argument('--dry-run', action='store_true', help='Log scheduling-system writes without sending them')
    parser.add_argument('--verbose', action='store_true', help='Show detailed logging')
    parser.add_argument('--database-url', help='Override DATABASE_URL')

    commands = parser.add_subparsers(dest='command', required=True)

    sync_cmd = commands.add_parser('sync', help='Sync a date range for one or all branches')
    sync_cmd.add_argument('--from', dest='from_date', type=_parse_date, required=True)
    sync_cmd.add_argument('--to', dest='to_date', type=_parse_date, required=True)
    sync_cmd.add_argument('--branch', help='Branch code (default: all branches)')

    store_cmd = commands.add_parser('store-sync', help='Sync one branch from today forward')
    store_cmd.add_argument('branch', help='Branch code')
    store_cmd.add_argument('--days', type=int, default=config.STORE_SYNC_DAYS)

    process_cmd = commands.add_parser('process', help='Drain pending change records only')
    process_cmd.add_argument('--branch', help='Only records touching this branch')

    commands.add_parser('purge-past', help='Delete shifts before today without propagating them')

    counts_cmd = commands.add_parser('appointment-counts', help='Booked slot totals for past days')
    when = counts_cmd.add_mutually_exclusive_group()
    when.add_argument('--date', type=_parse_date)
    when.add_argument('--yesterday', action='store_true')
    when.add_argument('--from', dest='from_date', type=_parse_date)
    counts_cmd.add_argument('--to', dest='to_date', type=_parse_date)
    counts_cmd.add_argument('--branch', help='Branch code (default: all branches)')
    mode = counts_cmd.add_mutually_exclusive_group()
    mode.add_argument('--refresh', action='store_true', help='Query the scheduling system and update the cache')
    mode.add_argument('--count-only', action='store_true', help='Report raw appointment counts, uncached')

    return parser


def _branch_or_error(directory: BranchDirectory, code):
    if code is None:
        return None
    branch = directory.by_code(code)
    if branch is None:
        raise SnapshotValidationError(f"Invalid branch code: {code}")
    return branch


def _log_cycle(result):
    sync_result = result['sync']
    report = result['processing']
    logger.info(
        f"✅ Sync finished in {result['duration']:.1f}s: {sync_result.inserted} added, "
        f"{sync_result.changed} updated, {sync_result.deleted} deleted; "
        f"{len(report.cleared)} changes applied, {len(report.retained)} kept for retry"
    )
    for conflict in report.conflicts:
        logger.warning(f"   ⚠️ Conflict: {conflict.name} at {conflict.branch_name} on {conflict.date}")
    for mismatch in report.mismatches:
        logger.warning(f"   ⚠️ Slot mismatch: {mismatch.name} at {mismatch.branch_name} on {mismatch.date} "
                       f"(roster {mismatch.workforce_slots}, scheduling {mismatch.scheduling_slots})")


def _run_counts(args, service: AppointmentCountService) -> int:
    branch = _branch_or_error(service.directory, args.branch)
    codes = [branch.code] if branch else None

    if args.from_date:
        to_date = args.to_date or reference_today() - timedelta(days=1)
        if to_date < args.from_date:
            raise SnapshotValidationError(f"Invalid date range: {args.from_date} to {to_date}")
        days = service.list_days(args.from_date, to_date)
    else:
        days = [args.date or reference_today() - timedelta(days=1)]

    if args.count_only:
        for day in days:
            for code in codes or service.directory.codes():
                logger.info(f"{day} {code}: {service.count_appointments(code, day)} appointments")
        return 0

    if args.from_date and args.refresh:
        results = service.refresh_range(args.from_date, to_date, codes)
    else:
        results = {day: service.get_slot_totals(day, codes, force_refresh=args.refresh) for day in days}

    for day, totals in results.items():
        for code, total in totals.items():
            logger.info(f"{day} {code}: {total} slots")
    return 0


def main(argv=None) -> int:
    """Main function"""
    args = build_parser().parse_args(argv)

    setup_logging('DEBUG' if args.verbose else None)
    if args.dry_run:
        config.DRY_RUN_MODE = True
        logger.info("🧪 DRY RUN MODE - nothing will be written to the scheduling system")

    try:
        engine = make_engine(args.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)
        directory = BranchDirectory()

        if args.command == 'sync':
            _branch_or_error(directory, args.branch)
            cycle = create_sync_cycle(session_factory, directory)
            _log_cycle(cycle.run(args.from_date, args.to_date, args.branch))

        elif args.command == 'store-sync':
            _branch_or_error(directory, args.branch)
            cycle = create_sync_cycle(session_factory, directory)
            _log_cycle(cycle.run_store_sync(args.branch, args.days))

        elif args.command == 'process':
            branch = _branch_or_error(directory, args.branch)
            scheduling = SchedulingClient()
            processor = ChangeProcessor(session_factory, scheduling, AccountResolver(scheduling), directory)
            report = processor.process_pending([branch.location_id] if branch else None)
            logger.info(f"✅ {len(report.cleared)} changes applied, {len(report.retained)} kept for retry")

        elif args.command == 'purge-past':
            deleted = RosterSyncEngine(session_factory, directory).purge_past_data()
            logger.info(f"✅ Removed {deleted} past shifts")

        elif args.command == 'appointment-counts':
            _branch_or_error(directory, args.branch)
            service = AppointmentCountService(session_factory, SchedulingClient(), directory)
            return _run_counts(args, service)

        return 0

    except RosterSyncError as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        return 1
    except Exception as e:
        logger.error(f"❌ Unexpected error: {e}")
        import traceback
        logger.error(traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
