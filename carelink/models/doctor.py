from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def parse_working_days(pattern):
    """Turn a stored pattern such as ``"Mon, Wed"`` into a set of day abbreviations."""
    if not pattern:
        return set()
    days = set()
    for part in pattern.split(","):
        name = part.strip()[:3].title()
        if name in WEEKDAY_NAMES:
            days.add(name)
    return days


def format_working_days(days):
    """Store ``days`` in canonical weekday order."""
    wanted = {day.strip()[:3].title() for day in days}
    return ", ".join(name for name in WEEKDAY_NAMES if name in wanted)


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    # Professional information
    specialization = Column(String(100), nullable=False)
    bio = Column(Text, nullable=True)

    # Weekly availability pattern, e.g. "Mon, Wed, Fri"
    working_days = Column(String(64), nullable=False, default="")

    # Verification outcome (the live flag itself lives on User.verified)
    rejected = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(String(500), nullable=True)
    verified_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="doctor")
    appointments = relationship("Appointment", back_populates="doctor")

    @property
    def name(self):
        return self.user.name if self.user else None

    @property
    def is_bookable(self):
        return bool(self.user and self.user.verified and not self.rejected)

    def working_day_set(self):
        return parse_working_days(self.working_days)

    def __repr__(self):
        return f"<Doctor(id={self.id}, user_id={self.user_id}, specialization='{self.specialization}')>"
