"""
Change processor tests - propagation, conflict gating and batch resilience
"""

import pytest
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import BLACKTOWN, BONDI, sydney
from db.database import session_scope
from db.tables import ChangeLog
from errors import SchedulingAPIError
from models import SyncScope
from sync.accounts import AccountResolver
from sync.engine import RosterSyncEngine
from sync.processor import ChangeProcessor

WEEK = SyncScope(sydney(2025, 10, 6), sydney(2025, 10, 13), frozenset({BLACKTOWN, BONDI}))


def make_processor(session_factory, scheduling, **kwargs):
    options = dict(batch_size=8, batch_delay=0, settle_delay=0, verify_delay=0)
    options.update(kwargs)
    return ChangeProcessor(session_factory, scheduling, AccountResolver(scheduling), **options)


def pending_count(session_factory):
    with session_scope(session_factory) as session:
        return session.query(ChangeLog).count()


def clear_changes(session_factory):
    with session_scope(session_factory) as session:
        session.query(ChangeLog).delete()


class TestActivation:
    """Inserted shifts become active roster entries"""

    @pytest.mark.processor
    def test_insert_posts_active_adjustment(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1)], WEEK)

        report = make_processor(session_factory, scheduling).process_pending()

        assert len(scheduling.adjustments) == 1
        identity_id, data = scheduling.adjustments[0]
        assert identity_id == 101
        assert data['INACTIVE'] is False
        assert data['BRANCH_IDENTIFIER'] == 'BKT'
        assert data['ADJUST_START'] == '09:00 AM'
        assert data['ADJUST_FINISH'] == '05:00 PM'
        assert data['ADJUST_DATE'].startswith('2025-10-06T00:00:00'), "Date is branch-local midnight"
        assert len(report.cleared) == 1 and report.retained == []
        assert pending_count(session_factory) == 0, "Applied record must be cleared"
        assert report.summaries[0].name == 'Jane Citizen'

    @pytest.mark.processor
    def test_first_shift_at_branch_records_work_history(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BON'])
        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1)], WEEK)

        make_processor(session_factory, scheduling).process_pending()

        assert scheduling.work_history == [(101, 'BKT')]

    @pytest.mark.processor
    def test_known_branch_skips_work_history(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1)], WEEK)

        make_processor(session_factory, scheduling).process_pending()

        assert scheduling.work_history == []

    @pytest.mark.processor
    def test_failed_work_history_is_reported_not_retained(self, session_factory, scheduling, make_shift,
                                                           monkeypatch):
        """Account side effects are summarized on the report and never hold the record back"""
        scheduling.add_identity('E1', 101, work_history=['BON'])
        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1)], WEEK)

        def fail(identity_id, branch_code):
            raise SchedulingAPIError("history write failed", status_code=500)

        monkeypatch.setattr(scheduling, 'add_work_history', fail)
        processor = make_processor(session_factory, scheduling)
        report = processor.process_pending()

        assert len(report.cleared) == 1, "Side-effect failure must not keep the record"
        assert report.side_effect_failures == {'work_history:101:BKT': 'history write failed'}
        assert processor.resolver.tasks.drain() == [], "Outcomes are drained once per run"

    @pytest.mark.processor
    def test_unknown_person_gets_an_account(self, session_factory, scheduling, make_shift):
        """A total search miss creates an account and activates it"""
        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1)], WEEK)

        report = make_processor(session_factory, scheduling).process_pending()

        assert len(scheduling.created) == 1
        assert scheduling.created[0]['EXTERNAL_USER_ID'] == 'E1'
        assert scheduling.adjustments[0][0] == 5000, "Adjustment must target the new account"
        assert len(report.cleared) == 1

    @pytest.mark.processor
    def test_slot_mismatch_is_reported_but_not_blocking(self, session_factory, scheduling, make_shift):
        """An 8-hour shift expects 15 slots; the scheduling system reporting 10 is flagged"""
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        scheduling.roster_slots[(101, 'BKT')] = 10
        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1)], WEEK)

        report = make_processor(session_factory, scheduling).process_pending()

        assert len(report.mismatches) == 1
        mismatch = report.mismatches[0]
        assert mismatch.workforce_slots == 15 and mismatch.scheduling_slots == 10
        assert len(report.cleared) == 1, "Mismatch must not keep the record"

    @pytest.mark.processor
    def test_matching_slots_report_nothing(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        scheduling.roster_slots[(101, 'BKT')] = 15
        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1)], WEEK)

        report = make_processor(session_factory, scheduling).process_pending()

        assert report.mismatches == []

    @pytest.mark.processor
    def test_rejected_adjustment_is_retained(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        scheduling.failing_identities.add(101)
        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1)], WEEK)

        report = make_processor(session_factory, scheduling).process_pending()

        assert report.cleared == [] and len(report.retained) == 1
        assert pending_count(session_factory) == 1
        assert scheduling.work_history == [], "No work history for an unapplied activation"


class TestDeactivation:
    """Deleted and moved shifts, gated on booked appointments"""

    def _stored_then_removed(self, session_factory, make_shift):
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1)], WEEK)
        clear_changes(session_factory)
        engine.apply_snapshot([], WEEK)

    @pytest.mark.processor
    def test_delete_without_appointments_deactivates(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        self._stored_then_removed(session_factory, make_shift)

        report = make_processor(session_factory, scheduling).process_pending()

        assert len(scheduling.adjustments) == 1
        assert scheduling.adjustments[0][1]['INACTIVE'] is True
        assert len(report.cleared) == 1

    @pytest.mark.processor
    def test_booked_appointments_block_deactivation(self, session_factory, scheduling, make_shift):
        """A conflict means no inactive call and the record stays pending"""
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        scheduling.booked.add((101, 'BKT'))
        self._stored_then_removed(session_factory, make_shift)

        report = make_processor(session_factory, scheduling).process_pending()

        assert scheduling.adjustments == [], "Deactivation must be skipped on conflict"
        assert len(report.conflicts) == 1
        assert report.conflicts[0].branch == 'BKT'
        assert report.conflicts[0].date == '2025-10-06'
        assert report.cleared == [] and len(report.retained) == 1
        assert pending_count(session_factory) == 1, "Conflicted record must be kept for retry"

    @pytest.mark.processor
    def test_failed_check_fails_open(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        scheduling.conflict_error = SchedulingAPIError("OData unavailable", status_code=503)
        self._stored_then_removed(session_factory, make_shift)

        report = make_processor(session_factory, scheduling, conflict_fail_open=True).process_pending()

        assert len(scheduling.adjustments) == 1, "Fail-open proceeds with the deactivation"
        assert report.conflicts == []
        assert len(report.cleared) == 1

    @pytest.mark.processor
    def test_failed_check_fails_closed(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BKT'])
        scheduling.conflict_error = SchedulingAPIError("OData unavailable", status_code=503)
        self._stored_then_removed(session_factory, make_shift)

        report = make_processor(session_factory, scheduling, conflict_fail_open=False).process_pending()

        assert scheduling.adjustments == [], "Fail-closed treats the failure as a conflict"
        assert len(report.conflicts) == 1
        assert len(report.retained) == 1

    @pytest.mark.processor
    def test_changed_shift_deactivates_old_then_activates_new(self, session_factory, scheduling, make_shift):
        """A moved shift is two calls, strictly in order"""
        scheduling.add_identity('E1', 101, work_history=['BKT', 'BON'])
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1)], WEEK)
        clear_changes(session_factory)
        engine.apply_snapshot([make_shift(1, location_id=BONDI, location_name='Bondi',
                                          start=sydney(2025, 10, 7, 10), end=sydney(2025, 10, 7, 18))], WEEK)

        report = make_processor(session_factory, scheduling).process_pending()

        assert len(scheduling.adjustments) == 2
        first, second = (data for _, data in scheduling.adjustments)
        assert first['INACTIVE'] is True and first['BRANCH_IDENTIFIER'] == 'BKT'
        assert second['INACTIVE'] is False and second['BRANCH_IDENTIFIER'] == 'BON'
        assert second['ADJUST_START'] == '10:00 AM'
        assert len(report.cleared) == 1

    @pytest.mark.processor
    def test_changed_shift_with_conflict_still_activates_new(self, session_factory, scheduling, make_shift):
        """The old side is gated; the new side is applied and the record kept"""
        scheduling.add_identity('E1', 101, work_history=['BKT', 'BON'])
        scheduling.booked.add((101, 'BKT'))
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1)], WEEK)
        clear_changes(session_factory)
        engine.apply_snapshot([make_shift(1, location_id=BONDI, location_name='Bondi')], WEEK)

        report = make_processor(session_factory, scheduling).process_pending()

        assert [data['INACTIVE'] for _, data in scheduling.adjustments] == [False]
        assert len(report.conflicts) == 1
        assert len(report.retained) == 1


class TestBatchProcessing:
    """Batching, isolation between records and location filtering"""

    @pytest.mark.processor
    def test_one_failure_does_not_block_the_batch(self, session_factory, scheduling, make_shift):
        """Seven of eight records clear when one cannot be resolved"""
        shifts = []
        for n in range(8):
            employee = f"E{n}"
            if n != 4:
                scheduling.add_identity(employee, 200 + n, work_history=['BKT'])
            shifts.append(make_shift(n, employee_id=employee,
                                     first_name='!!!' if n == 4 else 'Jane'))
        RosterSyncEngine(session_factory).apply_snapshot(shifts, WEEK)

        report = make_processor(session_factory, scheduling).process_pending()

        assert len(report.cleared) == 7
        assert len(report.retained) == 1
        failed_id = report.retained[0]
        assert 'AccountCreationError' in report.failures[failed_id]
        assert pending_count(session_factory) == 1

    @pytest.mark.processor
    def test_records_span_several_batches(self, session_factory, scheduling, make_shift):
        shifts = []
        for n in range(5):
            scheduling.add_identity(f"E{n}", 300 + n, work_history=['BKT'])
            shifts.append(make_shift(n, employee_id=f"E{n}"))
        RosterSyncEngine(session_factory).apply_snapshot(shifts, WEEK)

        report = make_processor(session_factory, scheduling, batch_size=2).process_pending()

        assert len(report.cleared) == 5
        assert len(scheduling.adjustments) == 5

    @pytest.mark.processor
    def test_location_filter_leaves_other_branches_pending(self, session_factory, scheduling, make_shift):
        scheduling.add_identity('E1', 101, work_history=['BKT', 'BON'])
        RosterSyncEngine(session_factory).apply_snapshot(
            [make_shift(1), make_shift(2, location_id=BONDI, location_name='Bondi')], WEEK
        )

        report = make_processor(session_factory, scheduling).process_pending([BONDI])

        assert len(report.cleared) == 1
        assert scheduling.adjustments[0][1]['BRANCH_IDENTIFIER'] == 'BON'
        assert pending_count(session_factory) == 1, "Blacktown record must remain pending"

    @pytest.mark.processor
    def test_nothing_pending(self, session_factory, scheduling):
        report = make_processor(session_factory, scheduling).process_pending()
        assert report.cleared == [] and report.retained == []
