# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Data models for Roster Sync - shifts, change types and derived reports
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from utils.timezone import parse_datetime

# Fields whose change makes an update business-relevant
TRACKED_FIELDS = ('employee_id', 'first_name', 'last_name', 'location_id', 'start_time', 'end_time')


class ChangeType(Enum):
    INSERTED = 'inserted'
    CHANGED = 'changed'
    DELETED = 'deleted'


@dataclass
class BreakEntry:
    id: str
    start_time: datetime
    end_time: datetime
    is_paid_break: bool = False


@dataclass
class ShiftEntry:
    """One scheduled work period for one person at one branch"""
    id: str
    employee_id: str
    first_name: str
    last_name: str
    location_id: int
    location_name: str
    start_time: datetime
    end_time: datetime
    email: Optional[str] = None
    is_locum: bool = False
    breaks: List[BreakEntry] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the row used in change diffs"""
        return {
            'id': self.id,
            'employee_id': self.employee_id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'location_id': self.location_id,
            'location_name': self.location_name,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'email': self.email,
            'is_locum': self.is_locum,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> 'ShiftEntry':
        return cls(
            id=str(data['id']),
            employee_id=str(data['employee_id']),
            first_name=data.get('first_name') or '',
            last_name=data.get('last_name') or '',
            location_id=int(data['location_id']),
            location_name=data.get('location_name') or '',
            start_time=parse_datetime(data['start_time'], 'UTC'),
            end_time=parse_datetime(data['end_time'], 'UTC'),
            email=data.get('email'),
            is_locum=bool(data.get('is_locum')),
        )


@dataclass(frozen=True)
class SyncScope:
    """Declared reconciliation scope: [start, end) and a location-id set"""
    start: datetime
    end: datetime
    location_ids: FrozenSet[int] = frozenset()


@dataclass
class Identity:
    """A practitioner account in the scheduling system"""
    id: int
    work_history: List[str] = field(default_factory=list)
    external_user_id: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    created: bool = False


@dataclass
class SlotMismatch:
    branch: str
    branch_name: str
    date: str
    identity_id: int
    name: str
    workforce_slots: int
    scheduling_slots: int


@dataclass
class AppointmentConflict:
    branch: str
    branch_name: str
    date: str
    identity_id: int
    name: str
    email: Optional[str]
    start_time: str
    end_time: str
    change_type: ChangeType


@dataclass
class ProcessedSummary:
    name: str
    identity_id: int
    date: str
    start: str
    end: str
    inactive: bool


@dataclass
class SyncResult:
    inserted: int = 0
    changed: int = 0
    deleted: int = 0
    unchanged: int = 0
    skipped: int = 0
    duration: float = 0.0

    @property
    def change_count(self) -> int:
        return self.inserted + self.changed + self.deleted


@dataclass
class ProcessingReport:
    cleared: List[int] = field(default_factory=list)
    retained: List[int] = field(default_factory=list)
    failures: Dict[int, str] = field(default_factory=dict)
    summaries: List[ProcessedSummary] = field(default_factory=list)
    mismatches: List[SlotMismatch] = field(default_factory=list)
    conflicts: List[AppointmentConflict] = field(default_factory=list)
    side_effect_failures: Dict[str, str] = field(default_factory=dict)
    duration: float = 0.0
