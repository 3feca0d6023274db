"""
Overlap detection between half-open time intervals.

Intervals are ``[start, end)``: the start instant belongs to the interval,
the end instant does not, so back-to-back appointments (one ending at 09:30,
the next starting at 09:30) never conflict.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from agenda.models.appointment import Appointment


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def find_overlapping(
    start: datetime,
    end: datetime,
    appointments: Iterable[Appointment],
) -> Optional[Appointment]:
    """Return the first active appointment whose own interval overlaps ``[start, end)``."""
    for appointment in appointments:
        if not appointment.is_active:
            continue
        appointment_end = appointment.start_datetime + timedelta(minutes=appointment.duration_minutes)
        if overlaps(start, end, appointment.start_datetime, appointment_end):
            return appointment
    return None
