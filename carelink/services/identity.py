"""
Identity & role resolution.

Turns verified token claims into the live user record and enforces every
rule that depends on mutable state: role, doctor verification and
appointment participation. Token claims are never trusted for these
decisions.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from sqlalchemy.orm import Session

from ..core.exceptions import ForbiddenError, NotFoundError
from ..core.security import TokenClaims, UserRole
from ..models.appointment import Appointment
from ..models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: int
    email: str
    name: str
    role: UserRole
    verified: bool
    doctor_id: Optional[int] = None

    @property
    def is_verified_doctor(self) -> bool:
        return self.role == UserRole.DOCTOR and self.verified

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            verified=bool(user.verified),
            doctor_id=user.doctor.id if user.doctor else None,
        )


class IdentityResolver:
    def __init__(self, db: Session):
        self.db = db

    def resolve(self, claims: TokenClaims) -> Optional[Identity]:
        """Load the live identity for ``claims``; ``None`` if the subject is gone."""
        try:
            user_id = int(claims.sub)
        except (TypeError, ValueError):
            return None

        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            logger.info(f"Token subject {claims.sub} no longer resolves to a user")
            return None
        return Identity.from_user(user)

    @staticmethod
    def require_role(identity: Identity, *roles: UserRole) -> Identity:
        if identity.role not in roles:
            raise ForbiddenError(
                f"Access denied. Required roles: {[role.value for role in roles]}"
            )
        return identity

    @staticmethod
    def require_verified_doctor(identity: Identity) -> Identity:
        if identity.role != UserRole.DOCTOR:
            raise ForbiddenError("Access denied. Doctor role required.")
        if not identity.verified or identity.doctor_id is None:
            raise ForbiddenError(
                "Doctor account is pending verification",
                code="doctor_not_verified",
            )
        return identity

    @staticmethod
    def is_patient_of(identity: Identity, appointment: Appointment) -> bool:
        return identity.role == UserRole.PATIENT and appointment.patient_id == identity.id

    @staticmethod
    def is_provider_of(identity: Identity, appointment: Appointment) -> bool:
        return (
            identity.role == UserRole.DOCTOR
            and identity.doctor_id is not None
            and appointment.doctor_id == identity.doctor_id
        )

    def authorize_appointment(
        self,
        identity: Identity,
        appointment: Optional[Appointment],
        allow_provider: bool = True,
    ) -> Appointment:
        """Ensure ``identity`` participates in ``appointment``.

        Non-participants get the same not-found answer as a missing id so
        other users' bookings are never revealed.
        """
        if appointment is None:
            raise NotFoundError("Appointment not found")

        if self.is_patient_of(identity, appointment):
            return appointment

        if allow_provider and self.is_provider_of(identity, appointment):
            if not identity.verified:
                raise ForbiddenError(
                    "Doctor account is pending verification",
                    code="doctor_not_verified",
                )
            return appointment

        raise NotFoundError("Appointment not found")
