"""
Availability calculation.

A doctor's open slots are the fixed daily slot grid on each working day in
the window, minus the slots held by non-cancelled appointments. Read-only.
"""

from datetime import date, timedelta
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor, WEEKDAY_NAMES


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def compute_available_slots(
    working_days: Set[str],
    slot_grid: Sequence[str],
    from_date: date,
    window_days: int,
    booked: Iterable[Tuple[date, str]],
) -> Dict[date, List[str]]:
    """Open slots per working day in ``[from_date, from_date + window_days)``.

    Dates keep calendar order and slots keep grid order. A working day whose
    slots are all taken maps to an empty list rather than being dropped.
    """
    slots: Dict[date, List[str]] = {}
    for offset in range(max(window_days, 0)):
        day = from_date + timedelta(days=offset)
        if weekday_name(day) in working_days:
            slots[day] = list(slot_grid)

    for day, time in booked:
        remaining = slots.get(day)
        if remaining is not None and time in remaining:
            remaining.remove(time)

    return slots


class AvailabilityCalculator:
    def __init__(self, db: Session, slot_grid: Sequence[str]):
        self.db = db
        self.slot_grid = list(slot_grid)

    def booked_slots(self, doctor_id: int, from_date: date, to_date: date) -> List[Tuple[date, str]]:
        """(date, time) of active appointments with ``from_date <= date < to_date``."""
        rows = (
            self.db.query(Appointment.date, Appointment.time)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.status != AppointmentStatus.CANCELLED,
                Appointment.date >= from_date,
                Appointment.date < to_date,
            )
            .all()
        )
        return [(row.date, row.time) for row in rows]

    def available_slots(self, doctor: Doctor, from_date: date, window_days: int) -> Dict[date, List[str]]:
        if window_days <= 0:
            return {}

        working_days = doctor.working_day_set()
        if not working_days:
            return {}

        booked = self.booked_slots(doctor.id, from_date, from_date + timedelta(days=window_days))
        return compute_available_slots(
            working_days, self.slot_grid, from_date, window_days, booked
        )
