from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timezone
from typing import List, Optional
import logging

from ..core.exceptions import NotFoundError, ValidationError
from ..core.security import Clock, UserRole, utcnow
from ..models.doctor import Doctor
from ..models.user import User
from ..schemas.doctor import DoctorVerification
from .identity import Identity, IdentityResolver

logger = logging.getLogger(__name__)

VERIFICATION_FILTERS = ("pending", "verified", "rejected", "all")


class DoctorService:
    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def list_bookable(self, specialization: Optional[str] = None) -> List[Doctor]:
        """Verified, non-rejected doctors, optionally filtered by specialization."""
        query = (
            self.db.query(Doctor)
            .join(User, Doctor.user_id == User.id)
            .filter(
                User.role == UserRole.DOCTOR,
                User.verified.is_(True),
                Doctor.rejected.is_(False),
            )
        )
        if specialization:
            query = query.filter(Doctor.specialization.ilike(f"%{specialization}%"))
        return query.order_by(User.name).all()

    def get_bookable(self, doctor_id: int) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor or not doctor.user or doctor.user.role != UserRole.DOCTOR or not doctor.is_bookable:
            raise NotFoundError("Doctor not found")
        return doctor

    def list_for_admin(self, identity: Identity, status: str = "pending") -> List[Doctor]:
        """Doctors by verification state (admin only)."""
        IdentityResolver.require_role(identity, UserRole.ADMIN)
        if status not in VERIFICATION_FILTERS:
            raise ValidationError(
                f"Unknown verification status: {status}",
                details={"allowed": list(VERIFICATION_FILTERS)},
            )

        query = self.db.query(Doctor).join(User, Doctor.user_id == User.id)
        if status == "pending":
            query = query.filter(User.verified.is_(False), Doctor.rejected.is_(False))
        elif status == "verified":
            query = query.filter(User.verified.is_(True))
        elif status == "rejected":
            query = query.filter(Doctor.rejected.is_(True))
        return query.order_by(Doctor.created_at, Doctor.id).all()

    def set_verification(
        self,
        identity: Identity,
        doctor_id: int,
        decision: DoctorVerification,
    ) -> Doctor:
        """Approve or reject a doctor account (admin only)."""
        IdentityResolver.require_role(identity, UserRole.ADMIN)

        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise NotFoundError("Doctor not found")
        if not doctor.user:
            raise NotFoundError("Doctor user not found")

        doctor.user.verified = decision.verified
        doctor.rejected = decision.rejected
        doctor.rejection_reason = decision.rejection_reason if decision.rejected else None
        doctor.verified_at = self._now() if decision.verified else None

        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to update doctor verification: {str(exc)}")
            raise
        self.db.refresh(doctor)

        outcome = "approved" if decision.verified else ("rejected" if decision.rejected else "unverified")
        logger.info(f"Doctor {doctor.id} {outcome} by admin {identity.id}")
        return doctor

    def _now(self) -> datetime:
        return self.clock().astimezone(timezone.utc).replace(tzinfo=None)
