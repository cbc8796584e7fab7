"""
Sync engine tests - reconciliation, scoped deletion and change capture

Every test runs against a throwaway SQLite file so the whole write path,
transactions included, is exercised.
"""

import json
import pytest
import pytz
import sys
import os
from dataclasses import replace
from datetime import date

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import BLACKTOWN, BONDI, sydney
from db.database import session_scope
from db.tables import ChangeLog, Roster, RosterBreak
from models import TRACKED_FIELDS, BreakEntry, SyncScope
from sync.change_tracker import ChangeCapture, changed_fields, pending_changes
from sync.engine import RosterSyncEngine

WEEK = SyncScope(sydney(2025, 10, 6), sydney(2025, 10, 13), frozenset({BLACKTOWN}))


def change_rows(session_factory):
    with session_scope(session_factory) as session:
        return [(row.roster_id, row.change_type, json.loads(row.diff_summary))
                for row in session.query(ChangeLog).order_by(ChangeLog.id).all()]


def roster_ids(session_factory):
    with session_scope(session_factory) as session:
        return sorted(row.id for row in session.query(Roster).all())


def clear_changes(session_factory):
    with session_scope(session_factory) as session:
        session.query(ChangeLog).delete()


class TestApplySnapshot:
    """Upserts, scoped deletes and the change records they produce"""

    @pytest.mark.sync
    def test_new_shifts_are_inserted_and_recorded(self, session_factory, make_shift):
        """Each new shift gets a row and one inserted record"""
        engine = RosterSyncEngine(session_factory)
        result = engine.apply_snapshot([make_shift(1), make_shift(2, employee_id='E2')], WEEK)

        assert result.inserted == 2
        assert roster_ids(session_factory) == ['1', '2']
        changes = change_rows(session_factory)
        assert [c[1] for c in changes] == ['inserted', 'inserted'], "One record per insert"
        assert changes[0][2]['old'] is None
        assert changes[0][2]['new']['employee_id'] == 'E1'

    @pytest.mark.sync
    def test_second_identical_run_is_a_no_op(self, session_factory, make_shift):
        """Re-applying the same snapshot writes nothing and records nothing"""
        engine = RosterSyncEngine(session_factory)
        snapshot = [make_shift(1), make_shift(2)]
        engine.apply_snapshot(snapshot, WEEK)
        clear_changes(session_factory)

        result = engine.apply_snapshot(snapshot, WEEK)

        assert result.change_count == 0, "Identical snapshot must not change anything"
        assert result.unchanged == 2
        assert change_rows(session_factory) == [], "Idempotent run must not record changes"

    @pytest.mark.sync
    def test_missing_shift_in_scope_is_deleted(self, session_factory, make_shift):
        """A stored in-scope shift absent from the snapshot is removed"""
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1), make_shift(2)], WEEK)
        clear_changes(session_factory)

        result = engine.apply_snapshot([make_shift(1)], WEEK)

        assert result.deleted == 1
        assert roster_ids(session_factory) == ['1']
        changes = change_rows(session_factory)
        assert len(changes) == 1
        assert changes[0][0] == '2' and changes[0][1] == 'deleted'
        assert changes[0][2]['old']['location_id'] == BLACKTOWN
        assert changes[0][2]['new'] is None

    @pytest.mark.sync
    def test_rows_outside_location_scope_survive(self, session_factory, make_shift):
        """Another branch's shifts are never deleted by a single-branch sync"""
        engine = RosterSyncEngine(session_factory)
        both = SyncScope(WEEK.start, WEEK.end, frozenset({BLACKTOWN, BONDI}))
        engine.apply_snapshot([make_shift(1), make_shift(2, location_id=BONDI, location_name='Bondi')], both)

        result = engine.apply_snapshot([], WEEK)

        assert result.deleted == 1
        assert roster_ids(session_factory) == ['2'], "Bondi shift is outside the location scope"

    @pytest.mark.sync
    def test_rows_outside_window_survive(self, session_factory, make_shift):
        """Shifts starting after the window end are never deleted"""
        engine = RosterSyncEngine(session_factory)
        wide = SyncScope(sydney(2025, 10, 6), sydney(2025, 10, 27), frozenset({BLACKTOWN}))
        later = make_shift(3, start=sydney(2025, 10, 20, 9), end=sydney(2025, 10, 20, 17))
        engine.apply_snapshot([make_shift(1), later], wide)

        engine.apply_snapshot([], WEEK)

        assert roster_ids(session_factory) == ['3'], "Shift on the 20th is outside [6th, 13th)"

    @pytest.mark.sync
    def test_empty_snapshot_clears_the_scope(self, session_factory, make_shift):
        """An empty fetch is authoritative for its scope"""
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1), make_shift(2)], WEEK)

        result = engine.apply_snapshot([], WEEK)

        assert result.deleted == 2
        assert roster_ids(session_factory) == []

    @pytest.mark.sync
    def test_no_location_scope_skips_deletes(self, session_factory, make_shift):
        """With an empty location set, stored rows are kept and new rows upserted"""
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1)], WEEK)

        unscoped = SyncScope(WEEK.start, WEEK.end, frozenset())
        result = engine.apply_snapshot([make_shift(2)], unscoped)

        assert result.deleted == 0, "Delete step must be skipped without a location scope"
        assert result.inserted == 1
        assert roster_ids(session_factory) == ['1', '2']

    @pytest.mark.sync
    def test_untracked_change_updates_row_without_record(self, session_factory, make_shift):
        """An email-only change is written but not propagated"""
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1)], WEEK)
        clear_changes(session_factory)

        result = engine.apply_snapshot([make_shift(1, email='new@example.com')], WEEK)

        assert result.changed == 1
        assert change_rows(session_factory) == [], "Email is not a tracked field"
        with session_scope(session_factory) as session:
            assert session.get(Roster, '1').email == 'new@example.com', "Row must still be updated"

    @pytest.mark.sync
    def test_tracked_change_records_old_and_new(self, session_factory, make_shift):
        """A moved shift produces one changed record carrying both versions"""
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1)], WEEK)
        clear_changes(session_factory)

        moved = make_shift(1, start=sydney(2025, 10, 6, 10), end=sydney(2025, 10, 6, 18))
        engine.apply_snapshot([moved], WEEK)

        changes = change_rows(session_factory)
        assert len(changes) == 1
        roster_id, change_type, diff = changes[0]
        assert change_type == 'changed'
        assert diff['old']['start_time'] != diff['new']['start_time']

    @pytest.mark.sync
    @pytest.mark.parametrize('field,value', [
        ('employee_id', 'E2'),
        ('first_name', 'Janet'),
        ('last_name', 'Citizens'),
        ('location_id', BONDI),
        ('start_time', sydney(2025, 10, 6, 8)),
        ('end_time', sydney(2025, 10, 6, 18)),
    ])
    def test_each_tracked_field_records_one_change(self, session_factory, make_shift, field, value):
        """Changing any single tracked field yields exactly one changed record"""
        assert field in TRACKED_FIELDS
        engine = RosterSyncEngine(session_factory)
        both = SyncScope(WEEK.start, WEEK.end, frozenset({BLACKTOWN, BONDI}))
        original = make_shift(1)
        engine.apply_snapshot([original], both)
        clear_changes(session_factory)

        engine.apply_snapshot([replace(original, **{field: value})], both)

        changes = change_rows(session_factory)
        assert [(c[0], c[1]) for c in changes] == [('1', 'changed')], f"{field} change must be recorded once"
        assert changed_fields(original, replace(original, **{field: value})) == [field]

    @pytest.mark.sync
    def test_tracked_fields_are_all_covered(self):
        assert set(TRACKED_FIELDS) == {
            'employee_id', 'first_name', 'last_name', 'location_id', 'start_time', 'end_time'
        }

    @pytest.mark.sync
    def test_invalid_entries_are_skipped(self, session_factory, make_shift):
        """Unknown locations and inverted times never reach the store"""
        engine = RosterSyncEngine(session_factory)
        bad_location = make_shift(1, location_id=999)
        inverted = make_shift(2, start=sydney(2025, 10, 6, 17), end=sydney(2025, 10, 6, 9))

        result = engine.apply_snapshot([bad_location, inverted, make_shift(3)], WEEK)

        assert result.skipped == 2
        assert roster_ids(session_factory) == ['3']

    @pytest.mark.sync
    def test_duplicate_ids_last_one_wins(self, session_factory, make_shift):
        engine = RosterSyncEngine(session_factory)
        first = make_shift(1, first_name='Jane')
        second = make_shift(1, first_name='Janet')

        engine.apply_snapshot([first, second], WEEK)

        with session_scope(session_factory) as session:
            assert session.get(Roster, '1').first_name == 'Janet'

    @pytest.mark.sync
    def test_breaks_follow_their_shift(self, session_factory, make_shift):
        """Breaks are replaced on update and removed with the shift"""
        engine = RosterSyncEngine(session_factory)
        lunch = BreakEntry('b1', sydney(2025, 10, 6, 12), sydney(2025, 10, 6, 12, 30))
        engine.apply_snapshot([make_shift(1, breaks=[lunch])], WEEK)

        with session_scope(session_factory) as session:
            assert session.query(RosterBreak).count() == 1

        engine.apply_snapshot([], WEEK)

        with session_scope(session_factory) as session:
            assert session.query(RosterBreak).count() == 0, "Breaks must go with their shift"

    @pytest.mark.sync
    def test_repeated_break_id_keeps_the_last(self, session_factory, make_shift):
        """A shift listing the same break twice still syncs, and re-syncs cleanly"""
        engine = RosterSyncEngine(session_factory)
        early = BreakEntry('b1', sydney(2025, 10, 6, 12), sydney(2025, 10, 6, 12, 30))
        late = BreakEntry('b1', sydney(2025, 10, 6, 13), sydney(2025, 10, 6, 13, 30))
        snapshot = [make_shift(1, breaks=[early, late]), make_shift(2)]

        result = engine.apply_snapshot(snapshot, WEEK)

        assert result.inserted == 2, "Other shifts must not be held back by the repeated break"
        with session_scope(session_factory) as session:
            breaks = session.query(RosterBreak).all()
            assert [b.id for b in breaks] == ['b1']
            assert breaks[0].to_entry().start_time == late.start_time

        clear_changes(session_factory)
        again = engine.apply_snapshot(snapshot, WEEK)
        assert again.change_count == 0, "Stored row already matches the de-duplicated shift"

    @pytest.mark.sync
    def test_failure_rolls_back_everything(self, session_factory, make_shift):
        """An error mid-write leaves rows and change log untouched"""
        class ExplodingCapture(ChangeCapture):
            def record_delete(self, session, old):
                raise RuntimeError("change log unavailable")

        RosterSyncEngine(session_factory).apply_snapshot([make_shift(1), make_shift(2)], WEEK)
        clear_changes(session_factory)

        engine = RosterSyncEngine(session_factory, capture=ExplodingCapture())
        with pytest.raises(RuntimeError):
            engine.apply_snapshot([make_shift(1), make_shift(3)], WEEK)

        assert roster_ids(session_factory) == ['1', '2'], "Insert of 3 and delete of 2 must roll back"
        assert change_rows(session_factory) == []


class TestPurgeAndPrune:
    """Unpropagated purge versus propagated retention pruning"""

    @pytest.mark.sync
    def test_purge_past_data_records_nothing(self, session_factory, make_shift):
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1)], WEEK)
        clear_changes(session_factory)

        deleted = engine.purge_past_data(today=date(2025, 10, 8))

        assert deleted == 1
        assert roster_ids(session_factory) == []
        assert change_rows(session_factory) == [], "Purged rows must never be propagated"
        assert engine.capture.enabled, "Capture must be re-enabled after the purge"

    @pytest.mark.sync
    def test_purge_keeps_today(self, session_factory, make_shift):
        engine = RosterSyncEngine(session_factory)
        engine.apply_snapshot([make_shift(1)], WEEK)

        assert engine.purge_past_data(today=date(2025, 10, 6)) == 0
        assert roster_ids(session_factory) == ['1']

    @pytest.mark.sync
    def test_capture_reenabled_after_failed_purge(self, session_factory, monkeypatch):
        """Suppression is undone even when the purge raises"""
        engine = RosterSyncEngine(session_factory)

        def fail(cutoff):
            raise RuntimeError("database locked")

        monkeypatch.setattr(engine, '_delete_before', fail)
        with pytest.raises(RuntimeError):
            engine.purge_past_data(today=date(2025, 10, 8))

        assert engine.capture.enabled, "Capture must not stay suppressed after an error"

    @pytest.mark.sync
    def test_prune_expired_records_deletions(self, session_factory, make_shift):
        """Retention pruning keeps capture on"""
        engine = RosterSyncEngine(session_factory, retention_days=90)
        engine.apply_snapshot([make_shift(1)], WEEK)
        clear_changes(session_factory)

        assert engine.prune_expired(now=sydney(2025, 12, 1)) == 0, "Row is inside retention"
        assert engine.prune_expired(now=sydney(2026, 3, 1)) == 1

        changes = change_rows(session_factory)
        assert [c[1] for c in changes] == ['deleted']


class TestChangeTracker:
    """Field diffing and pending-change selection"""

    @pytest.mark.sync
    def test_changed_fields_ignores_timezone_representation(self, make_shift):
        """The same instant in different zones is not a change"""
        old = make_shift(1)
        new = make_shift(1, start=old.start_time.astimezone(pytz.UTC))
        assert changed_fields(old, new) == []

    @pytest.mark.sync
    def test_changed_fields_lists_tracked_differences(self, make_shift):
        old = make_shift(1)
        new = make_shift(1, location_id=BONDI, email='other@example.com')
        assert changed_fields(old, new) == ['location_id'], "Email is not tracked"

    @pytest.mark.sync
    def test_pending_changes_filtered_by_old_or_new_location(self, session_factory, make_shift):
        """A shift moved away from a branch still counts for that branch"""
        engine = RosterSyncEngine(session_factory)
        both = SyncScope(WEEK.start, WEEK.end, frozenset({BLACKTOWN, BONDI}))
        engine.apply_snapshot([make_shift(1)], both)
        clear_changes(session_factory)

        engine.apply_snapshot([make_shift(1, location_id=BONDI, location_name='Bondi')], both)

        with session_scope(session_factory) as session:
            assert len(pending_changes(session, [BLACKTOWN])) == 1, "Old location must match"
            assert len(pending_changes(session, [BONDI])) == 1, "New location must match"
            assert len(pending_changes(session, [148395])) == 0

    @pytest.mark.sync
    def test_suppressed_is_exception_safe(self):
        capture = ChangeCapture()
        with pytest.raises(ValueError):
            with capture.suppressed():
                assert not capture.enabled
                raise ValueError("boom")
        assert capture.enabled
