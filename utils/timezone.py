# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Timezone utilities for the reference zone, branch zones and UTC storage
"""
from datetime import date, datetime, timedelta
from typing import Optional, Tuple, Union

import pytz

import config


def get_reference_time() -> datetime:
    """Get current time in the reference timezone"""
    return datetime.now(pytz.timezone(config.REFERENCE_TIMEZONE))


def reference_today() -> date:
    """Today's date in the reference timezone"""
    return get_reference_time().date()


def localize(naive_dt: datetime, tz_name: str) -> datetime:
    """Attach a timezone to a naive wall-clock datetime"""
    return pytz.timezone(tz_name).localize(naive_dt)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """Convert a datetime into the given zone (naive values are treated as UTC)"""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(pytz.timezone(tz_name))


def to_utc_naive(dt: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC for storage"""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def from_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Re-attach UTC to a stored naive datetime"""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(pytz.UTC)
    return pytz.UTC.localize(dt)


def parse_datetime(value: Union[str, datetime], tz_name: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware datetime

    Values without an offset are wall-clock times in ``tz_name``.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        dt = datetime.fromisoformat(text)

    if dt.tzinfo is None:
        return localize(dt, tz_name)
    return dt


def day_bounds(day: date, tz_name: str) -> Tuple[datetime, datetime]:
    """[start, end) of a calendar day in the given zone, as aware UTC datetimes"""
    zone = pytz.timezone(tz_name)
    start = zone.localize(datetime.combine(day, datetime.min.time()))
    end = zone.localize(datetime.combine(day + timedelta(days=1), datetime.min.time()))
    return start.astimezone(pytz.UTC), end.astimezone(pytz.UTC)


def date_range_bounds(from_date: date, to_date: date,
                      tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """[start of from_date, start of the day after to_date) in the given zone"""
    tz_name = tz_name or config.REFERENCE_TIMEZONE
    start, _ = day_bounds(from_date, tz_name)
    _, end = day_bounds(to_date, tz_name)
    return start, end


def format_12h(dt: datetime) -> str:
    """Format a wall-clock time as e.g. '09:00 AM'"""
    return dt.strftime('%I:%M %p')


def parse_12h_minutes(value: str) -> int:
    """Minutes since midnight for a 'hh:mm AM' style string"""
    time_part, meridiem = value.strip().split()
    hours, minutes = (int(p) for p in time_part.split(':')[:2])
    meridiem = meridiem.upper()

    if meridiem == 'PM' and hours != 12:
        hours += 12
    elif meridiem == 'AM' and hours == 12:
        hours = 0

    return hours * 60 + minutes

