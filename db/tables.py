# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Tables - Roster Store, change log and cache tables

Timestamps are stored as naive UTC.
"""
from datetime import datetime
from typing import Dict

import pytz
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from db.database import Base
from models import BreakEntry, ShiftEntry
from utils.timezone import from_utc_naive, to_utc_naive


def utcnow() -> datetime:
    return datetime.now(pytz.UTC).replace(tzinfo=None)


class Roster(Base):
    __tablename__ = "roster"

    id = Column(String(64), primary_key=True)
    employee_id = Column(String(64), nullable=False, index=True)
    first_name = Column(String(255), nullable=False, default='')
    last_name = Column(String(255), nullable=False, default='')
    location_id = Column(Integer, nullable=False, index=True)
    location_name = Column(String(255), nullable=False, default='')
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    email = Column(String(255), nullable=True)
    is_locum = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    breaks = relationship(
        "RosterBreak",
        back_populates="roster",
        cascade="all, delete-orphan",
        order_by="RosterBreak.start_time",
    )

    def to_entry(self) -> ShiftEntry:
        return ShiftEntry(
            id=self.id,
            employee_id=self.employee_id,
            first_name=self.first_name,
            last_name=self.last_name,
            location_id=self.location_id,
            location_name=self.location_name,
            start_time=from_utc_naive(self.start_time),
            end_time=from_utc_naive(self.end_time),
            email=self.email,
            is_locum=bool(self.is_locum),
            breaks=[b.to_entry() for b in self.breaks],
        )

    def apply_entry(self, entry: ShiftEntry):
        """Overwrite every column (and the owned breaks) from ``entry``"""
        self.employee_id = str(entry.employee_id)
        self.first_name = entry.first_name or ''
        self.last_name = entry.last_name or ''
        self.location_id = int(entry.location_id)
        self.location_name = entry.location_name or ''
        self.start_time = to_utc_naive(entry.start_time)
        self.end_time = to_utc_naive(entry.end_time)
        self.email = entry.email
        self.is_locum = bool(entry.is_locum)

        existing = {b.id: b for b in self.breaks}
        kept: Dict[str, RosterBreak] = {}
        for brk in entry.breaks:
            # One row per break id; the last occurrence wins
            row = kept.get(str(brk.id)) or existing.get(str(brk.id)) or RosterBreak(id=str(brk.id))
            row.start_time = to_utc_naive(brk.start_time)
            row.end_time = to_utc_naive(brk.end_time)
            row.is_paid_break = bool(brk.is_paid_break)
            kept[row.id] = row
        self.breaks = list(kept.values())


class RosterBreak(Base):
    __tablename__ = "roster_break"

    id = Column(String(64), primary_key=True)
    roster_id = Column(String(64), ForeignKey("roster.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_paid_break = Column(Boolean, nullable=False, default=False)

    roster = relationship("Roster", back_populates="breaks")

    def to_entry(self) -> BreakEntry:
        return BreakEntry(
            id=self.id,
            start_time=from_utc_naive(self.start_time),
            end_time=from_utc_naive(self.end_time),
            is_paid_break=bool(self.is_paid_break),
        )


class ChangeLog(Base):
    """One detected Roster Store mutation; roster_id may point at a deleted row"""
    __tablename__ = "change_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    roster_id = Column(String(64), nullable=False, index=True)
    change_type = Column(String(16), nullable=False)
    detected_at = Column(DateTime, nullable=False, default=utcnow)
    window_start = Column(DateTime, nullable=False)
    window_end = Column(DateTime, nullable=False)
    diff_summary = Column(Text, nullable=False)


class EmployeeCache(Base):
    __tablename__ = "employee_cache"

    key = Column(String(128), primary_key=True)
    data = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class AppointmentCountCache(Base):
    __tablename__ = "appointment_count_cache"

    branch = Column(String(16), primary_key=True)
    date = Column(Date, primary_key=True)
    slot_total = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
