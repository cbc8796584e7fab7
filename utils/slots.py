# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Slot math - converts worked minutes into 30-minute bookable slots
"""
import math

SLOT_MINUTES = 30
LONG_SHIFT_MINUTES = 600


def calculate_slots(work_minutes: int) -> int:
    """
    Bookable slots in a shift of ``work_minutes``

    One slot is deducted for the break, two once the shift reaches ten
    hours. Never negative.
    """
    total_slots = int(work_minutes // SLOT_MINUTES)
    break_count = 2 if work_minutes >= LONG_SHIFT_MINUTES else 1
    return max(0, total_slots - break_count)


def appointment_slots(duration_minutes: float) -> int:
    """Slots occupied by one appointment; partial slots round up"""
    if duration_minutes <= 0:
        return 0
    return math.ceil(duration_minutes / SLOT_MINUTES)


def minutes_between(start, end) -> int:
    """Whole minutes from ``start`` to ``end`` (0 if end is not after start)"""
    minutes = int((end - start).total_seconds() // 60)
    return max(0, minutes)
