from sqlalchemy import Column, Integer, String, ForeignKey, Date, DateTime, Text, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"

    @classmethod
    def _missing_(cls, value):
        # UI labels for an unconfirmed/confirmed booking share the scheduled state
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in ("confirmed", "pending"):
                return cls.SCHEDULED
            for member in cls:
                if member.value == lowered:
                    return member
        return None


ACTIVE_SLOT_WHERE = text("status != 'cancelled'")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one non-cancelled appointment per provider slot
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date",
            "time",
            unique=True,
            sqlite_where=ACTIVE_SLOT_WHERE,
            postgresql_where=ACTIVE_SLOT_WHERE,
        ),
        Index("ix_appointments_doctor_date", "doctor_id", "date"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)

    # Appointment details
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=False)
    status = Column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    reason = Column(Text, nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Relationships
    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("Doctor", back_populates="appointments")

    @property
    def is_active(self):
        return self.status != AppointmentStatus.CANCELLED

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.date}', time='{self.time}')>"
