"""
Slot reservation.

The lookup in ``find_conflict`` only gives callers an early, friendly answer.
The guarantee comes from the partial unique index on
(doctor_id, date, time) for non-cancelled rows: the write itself fails for
every request but one when several race for the same slot, and that
failure is reported as a conflict.
"""

from datetime import date
from enum import Enum
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.appointment import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)

ACTIVE_SLOT_CONSTRAINT = "uq_appointments_active_slot"
_SQLITE_SLOT_COLUMNS = "appointments.doctor_id, appointments.date, appointments.time"


class ReservationResult(str, Enum):
    OK = "ok"
    CONFLICT = "conflict"


def is_slot_violation(error: IntegrityError) -> bool:
    """Whether ``error`` comes from the active-slot uniqueness index."""
    orig = getattr(error, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None) if diag is not None else None
    if constraint_name:
        return constraint_name == ACTIVE_SLOT_CONSTRAINT

    text = str(orig if orig is not None else error)
    return ACTIVE_SLOT_CONSTRAINT in text or _SQLITE_SLOT_COLUMNS in text


class BookingConflictGuard:
    def __init__(self, db: Session):
        self.db = db

    def find_conflict(
        self,
        doctor_id: int,
        day: date,
        time: str,
        exclude_appointment_id: Optional[int] = None,
    ) -> Optional[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == day,
            Appointment.time == time,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.first()

    def reserve(
        self,
        appointment: Appointment,
        exclude_appointment_id: Optional[int] = None,
    ) -> ReservationResult:
        """Write ``appointment``'s slot, or report a conflict.

        On ``CONFLICT`` the session is rolled back, so a rescheduled
        appointment reverts to its stored date and time. On ``OK`` the row
        is flushed but not committed; the caller owns the transaction.
        """
        existing = self.find_conflict(
            appointment.doctor_id,
            appointment.date,
            appointment.time,
            exclude_appointment_id,
        )
        if existing is not None:
            self.db.rollback()
            logger.info(
                f"Slot {appointment.date} {appointment.time} for doctor "
                f"{appointment.doctor_id} already held by appointment {existing.id}"
            )
            return ReservationResult.CONFLICT

        try:
            self.db.add(appointment)
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            if not is_slot_violation(exc):
                raise
            logger.info(
                f"Concurrent reservation lost for doctor {appointment.doctor_id} "
                f"at {appointment.date} {appointment.time}"
            )
            return ReservationResult.CONFLICT

        return ReservationResult.OK
