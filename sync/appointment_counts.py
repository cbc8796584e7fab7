# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Appointment Count Cache - booked slot totals per branch and past day
"""
import logging
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

import config
from branches import BranchDirectory
from db.database import session_scope
from db.tables import AppointmentCountCache, utcnow
from utils.batching import run_batched
from utils.slots import appointment_slots
from utils.timezone import day_bounds, parse_datetime, reference_today

logger = logging.getLogger(__name__)


class AppointmentCountService:
    """
    Serves booked-slot totals for occupancy reporting

    Only strictly-past days are ever cached or queried; today and future
    days report 0 because their bookings are still accumulating.
    """

    def __init__(self, session_factory: sessionmaker, client, directory: Optional[BranchDirectory] = None,
                 today: Callable[[], date] = reference_today, concurrency: Optional[int] = None,
                 delay: Optional[float] = None):
        self.session_factory = session_factory
        self.client = client
        self.directory = directory or BranchDirectory()
        self.today = today
        self.concurrency = concurrency or config.APPOINTMENT_COUNT_CONCURRENCY
        self.delay = config.APPOINTMENT_COUNT_DELAY if delay is None else delay

    def _cached_total(self, branch_code: str, day: date) -> int:
        with session_scope(self.session_factory) as session:
            row = session.get(AppointmentCountCache, (branch_code, day))
            return row.slot_total if row else 0

    def _store(self, branch_code: str, day: date, total: int):
        with session_scope(self.session_factory) as session:
            row = session.get(AppointmentCountCache, (branch_code, day))
            if row is None:
                row = AppointmentCountCache(branch=branch_code, date=day)
                session.add(row)
            row.slot_total = total
            row.updated_at = utcnow()

    def _compute(self, branch_code: str, day: date) -> int:
        tz_name = self.directory.timezone_for(branch_code)
        start, end = day_bounds(day, tz_name)

        total = 0
        for appointment in self.client.list_appointments(branch_code, start, end):
            if not appointment.get('STARTDATETIME') or not appointment.get('ENDDATETIME'):
                logger.warning(f"Appointment without start or end at {branch_code} on {day}; skipped")
                continue
            appt_start = parse_datetime(appointment['STARTDATETIME'], tz_name)
            appt_end = parse_datetime(appointment['ENDDATETIME'], tz_name)
            total += appointment_slots((appt_end - appt_start).total_seconds() / 60)

        logger.info(f"[APPOINTMENT COUNT] {branch_code} on {day}: {total} slots")
        return total

    def get_slot_total(self, branch_code: str, day: date, force_refresh: bool = False) -> int:
        """
        Booked slots for one branch and day

        Past days come from the cache (0 on a miss) unless ``force_refresh``,
        which queries the scheduling system and upserts the total.
        """
        if day >= self.today():
            return 0

        if not force_refresh:
            return self._cached_total(branch_code, day)

        total = self._compute(branch_code, day)
        self._store(branch_code, day, total)
        return total

    def get_slot_totals(self, day: date, branch_codes: Optional[Iterable[str]] = None,
                        force_refresh: bool = False) -> Dict[str, int]:
        """Totals for several branches in small concurrent groups; a failing branch reports 0"""
        codes = list(branch_codes) if branch_codes else self.directory.codes()
        totals: Dict[str, int] = {}

        for outcome in run_batched(
            codes,
            lambda code: self.get_slot_total(code, day, force_refresh),
            batch_size=self.concurrency,
            delay=self.delay,
            label="branches",
        ):
            for code, total in outcome.results:
                totals[code] = total
            for code, error in outcome.errors:
                logger.error(f"[APPOINTMENT COUNT] Failed for {code} on {day}: {error}")
                totals[code] = 0

        return totals

    def refresh_range(self, from_date: date, to_date: date,
                      branch_codes: Optional[Iterable[str]] = None) -> Dict[date, Dict[str, int]]:
        """Recompute and cache every past day in [from_date, to_date]"""
        codes = list(branch_codes) if branch_codes else self.directory.codes()
        last_past_day = min(to_date, self.today() - timedelta(days=1))

        results: Dict[date, Dict[str, int]] = {}
        day = from_date
        while day <= last_past_day:
            results[day] = self.get_slot_totals(day, codes, force_refresh=True)
            day += timedelta(days=1)

        logger.info(f"✅ Refreshed appointment counts for {len(results)} days")
        return results

    def count_appointments(self, branch_code: str, day: date) -> int:
        """Raw number of confirmed appointments (count-only query)"""
        start, end = day_bounds(day, self.directory.timezone_for(branch_code))
        return self.client.count_appointments(branch_code, start, end)

    def list_days(self, from_date: date, to_date: date) -> List[date]:
        return [from_date + timedelta(days=n) for n in range((to_date - from_date).days + 1)]
