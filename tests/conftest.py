"""
Shared fixtures: a throwaway SQLite database, fake API clients and a shift factory
"""

import itertools
import os
import sys
from datetime import datetime
from threading import Lock

import pytest
import pytz

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.database import init_db, make_engine, make_session_factory
from errors import SchedulingAPIError, WorkforceAPIError
from models import Identity, ShiftEntry

SYDNEY = pytz.timezone('Australia/Sydney')

# Location ids from the branch directory
BLACKTOWN = 148390
BONDI = 148391
BOX_HILL = 148394


def sydney(year, month, day, hour=0, minute=0):
    return SYDNEY.localize(datetime(year, month, day, hour, minute))


class FakeSchedulingClient:
    """In-memory stand-in for SchedulingClient that records every call"""

    def __init__(self):
        self.lock = Lock()
        self.identities = {}
        self.adjustments = []
        self.booked = set()
        self.conflict_error = None
        self.failing_identities = set()
        self.roster_slots = {}
        self.work_history = []
        self.created = []
        self.updates = []
        self.appointments = {}
        self.failing_branches = set()
        self._ids = itertools.count(5000)

    def add_identity(self, external_id, identity_id, work_history=None, email=None):
        identity = Identity(id=identity_id, work_history=list(work_history or []),
                            external_user_id=external_id, email=email)
        self.identities[external_id] = identity
        return identity

    def search_by_external_id(self, external_id):
        identity = self.identities.get(external_id)
        if identity is None:
            return None
        return Identity(**{**vars(identity), "work_history": list(identity.work_history)})

    def search_by_email(self, email):
        return None

    def search_by_name(self, first_name, last_name):
        return None

    def update_identity(self, identity_id, external_user_id=None, email=None):
        self.updates.append((identity_id, external_user_id, email))
        return True

    def add_work_history(self, identity_id, branch_code):
        with self.lock:
            self.work_history.append((identity_id, branch_code))
        return True

    def count_identifier_prefix(self, prefix):
        return 0

    def create_user(self, body):
        with self.lock:
            identity_id = next(self._ids)
            self.created.append(body)
            self.add_identity(body['EXTERNAL_USER_ID'], identity_id, email=body['EMAIL_ADDRESS'])
        return {'success': True, 'id': identity_id}

    def post_adjustment(self, identity_id, adjust_data):
        with self.lock:
            self.adjustments.append((identity_id, dict(adjust_data)))
        return identity_id not in self.failing_identities

    def has_active_appointments(self, identity_id, branch_code, start, end):
        if self.conflict_error:
            raise self.conflict_error
        return (identity_id, branch_code) in self.booked

    def get_roster_slots(self, identity_id, branch_code, start, end):
        return self.roster_slots.get((identity_id, branch_code), 0)

    def list_appointments(self, branch_code, start, end):
        if branch_code in self.failing_branches:
            raise SchedulingAPIError(f"OData query failed for {branch_code}", status_code=500)
        return self.appointments.get(branch_code, [])

    def count_appointments(self, branch_code, start, end):
        return len(self.list_appointments(branch_code, start, end))


class FakeWorkforceClient:
    def __init__(self, shifts=None, employees=None):
        self.shifts = shifts or []
        self.employees = employees or {}
        self.shift_queries = []
        self.employee_calls = []

    def get_roster_shifts(self, from_date, to_date, location_ids=None):
        self.shift_queries.append((from_date, to_date, list(location_ids or [])))
        return list(self.shifts)

    def get_employee(self, employee_id):
        self.employee_calls.append(employee_id)
        if employee_id not in self.employees:
            raise WorkforceAPIError(f"Employee lookup {employee_id} failed: 404", status_code=404)
        return self.employees[employee_id]


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'roster.sqlite'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def scheduling():
    return FakeSchedulingClient()


@pytest.fixture
def make_shift():
    """Factory for ShiftEntry objects with sensible defaults"""
    def _make(shift_id, employee_id='E1', location_id=BLACKTOWN, location_name='Blacktown',
              start=None, end=None, first_name='Jane', last_name='Citizen',
              email='jane@example.com', is_locum=False, breaks=None):
        return ShiftEntry(
            id=str(shift_id),
            employee_id=employee_id,
            first_name=first_name,
            last_name=last_name,
            location_id=location_id,
            location_name=location_name,
            start_time=start or sydney(2025, 10, 6, 9),
            end_time=end or sydney(2025, 10, 6, 17),
            email=email,
            is_locum=is_locum,
            breaks=breaks or [],
        )
    return _make
