from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence
import logging

from ..core.exceptions import (
    BookingConflictError, InvalidTransitionError, NotFoundError, ValidationError
)
from ..core.security import Clock, UserRole, utcnow
from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor
from ..schemas.appointment import AppointmentCreate, AppointmentUpdate
from .availability import weekday_name
from .booking_guard import BookingConflictGuard, ReservationResult, is_slot_violation
from .identity import Identity, IdentityResolver

logger = logging.getLogger(__name__)


class AppointmentService:
    """Create, reschedule and cancel appointments.

    States are ``scheduled`` and ``cancelled``; cancelled is terminal and
    rows are never deleted. Every write commits as one unit or not at all.
    """

    def __init__(
        self,
        db: Session,
        slot_grid: Sequence[str],
        today: date,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.slot_grid = list(slot_grid)
        self.today = today
        self.clock = clock
        self.guard = BookingConflictGuard(db)
        self.resolver = IdentityResolver(db)

    def create_appointment(self, identity: Identity, data: AppointmentCreate) -> Appointment:
        """Book a slot for the calling patient."""
        self.resolver.require_role(identity, UserRole.PATIENT)
        doctor = self.get_bookable_doctor(data.doctor_id)
        self._validate_slot(doctor, data.date, data.time)

        now = self._now()
        appointment = Appointment(
            patient_id=identity.id,
            doctor_id=doctor.id,
            date=data.date,
            time=data.time,
            reason=data.reason or "",
            status=AppointmentStatus.SCHEDULED,
            created_at=now,
            updated_at=now,
        )

        if self.guard.reserve(appointment) == ReservationResult.CONFLICT:
            raise self._conflict(doctor.id, data.date, data.time)

        self._commit(doctor.id, data.date, data.time)
        self.db.refresh(appointment)

        logger.info(
            f"Appointment {appointment.id} booked: patient {identity.id}, "
            f"doctor {doctor.id}, {appointment.date} {appointment.time}"
        )
        return appointment

    def get_appointment(self, identity: Identity, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        return self.resolver.authorize_appointment(identity, appointment)

    def list_for_patient(self, identity: Identity) -> List[Appointment]:
        appointments = (
            self.db.query(Appointment)
            .filter(Appointment.patient_id == identity.id)
            .all()
        )
        return sorted(appointments, key=self._chronological)

    def list_for_doctor(
        self,
        identity: Identity,
        status: Optional[AppointmentStatus] = None,
        past: bool = False,
        limit: int = 50,
    ) -> List[Appointment]:
        self.resolver.require_verified_doctor(identity)

        query = self.db.query(Appointment).filter(Appointment.doctor_id == identity.doctor_id)
        if status is not None:
            query = query.filter(Appointment.status == status)
        if past:
            query = query.filter(Appointment.date < self.today)
        else:
            query = query.filter(Appointment.date >= self.today)

        appointments = sorted(query.all(), key=self._chronological, reverse=past)
        return appointments[:limit]

    def reschedule_appointment(
        self,
        identity: Identity,
        appointment_id: int,
        data: AppointmentUpdate,
    ) -> Appointment:
        """Move an appointment to a new date/time and/or update its reason."""
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        self.resolver.authorize_appointment(identity, appointment, allow_provider=False)

        if appointment.status == AppointmentStatus.CANCELLED:
            raise InvalidTransitionError("Cannot update a cancelled appointment")

        new_date = data.date if data.date is not None else appointment.date
        new_time = data.time if data.time is not None else appointment.time
        slot_changed = (new_date, new_time) != (appointment.date, appointment.time)

        if slot_changed:
            doctor = self.get_bookable_doctor(appointment.doctor_id)
            self._validate_slot(doctor, new_date, new_time)

        if data.reason is not None:
            appointment.reason = data.reason

        if slot_changed:
            old_slot = f"{appointment.date} {appointment.time}"
            appointment.date = new_date
            appointment.time = new_time
            appointment.updated_at = self._now()
            result = self.guard.reserve(appointment, exclude_appointment_id=appointment.id)
            if result == ReservationResult.CONFLICT:
                raise self._conflict(appointment.doctor_id, new_date, new_time)
            logger.info(
                f"Appointment {appointment.id} rescheduled from {old_slot} "
                f"to {new_date} {new_time}"
            )
        else:
            appointment.updated_at = self._now()

        self._commit(appointment.doctor_id, new_date, new_time)
        self.db.refresh(appointment)
        return appointment

    def cancel_appointment(self, identity: Identity, appointment_id: int) -> Appointment:
        """Cancel an appointment; cancelling twice is a successful no-op."""
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        self.resolver.authorize_appointment(identity, appointment)

        if appointment.status == AppointmentStatus.CANCELLED:
            return appointment

        now = self._now()
        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancelled_at = now
        appointment.cancelled_by_id = identity.id
        appointment.updated_at = now
        self._commit(appointment.doctor_id, appointment.date, appointment.time)
        self.db.refresh(appointment)

        logger.info(f"Appointment {appointment.id} cancelled by user {identity.id}")
        return appointment

    def get_bookable_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if (
            not doctor
            or not doctor.user
            or doctor.user.role != UserRole.DOCTOR
            or not doctor.is_bookable
        ):
            raise NotFoundError("Doctor not found")
        return doctor

    def _validate_slot(self, doctor: Doctor, day: date, time: str):
        if day < self.today:
            raise ValidationError("Cannot book appointments in the past")
        if time not in self.slot_grid:
            raise ValidationError(
                f"Unknown time slot: {time}",
                details={"slots": self.slot_grid},
            )
        day_name = weekday_name(day)
        if day_name not in doctor.working_day_set():
            raise ValidationError(
                f"Doctor does not see patients on {day_name}",
                details={"working_days": doctor.working_days},
            )

    def _commit(self, doctor_id: int, day: date, time: str):
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if is_slot_violation(exc):
                raise self._conflict(doctor_id, day, time) from exc
            logger.error(f"Failed to save appointment: {str(exc)}")
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to save appointment: {str(exc)}")
            raise

    def _conflict(self, doctor_id: int, day: date, time: str) -> BookingConflictError:
        return BookingConflictError(
            "This time slot is already booked",
            details={"doctor_id": doctor_id, "date": day.isoformat(), "time": time},
        )

    def _chronological(self, appointment: Appointment):
        try:
            slot_index = self.slot_grid.index(appointment.time)
        except ValueError:
            slot_index = len(self.slot_grid)
        return (appointment.date, slot_index, appointment.time)

    def _now(self) -> datetime:
        return self.clock().astimezone(timezone.utc).replace(tzinfo=None)
