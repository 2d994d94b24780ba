from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from fastapi import HTTPException, status
from typing import Optional
import logging

from ..models.doctor import Doctor, format_working_days
from ..models.user import User
from ..core.security import (
    verify_password, get_password_hash, TokenService, UserRole
)
from ..schemas.auth import (
    UserLogin, UserRegister, DoctorRegister, TokenResponse, UserResponse, ChangePassword
)

logger = logging.getLogger(__name__)


def _email_taken() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Email already registered"
    )


class AuthService:
    def __init__(self, db: Session, tokens: TokenService):
        self.db = db
        self.tokens = tokens

    def register_user(self, user_data: UserRegister) -> User:
        """Register a new patient."""
        new_user = self._add_user(user_data, UserRole.PATIENT)
        self._commit_registration()
        self.db.refresh(new_user)

        logger.info(f"Registered patient account {new_user.id}")
        return new_user

    def _add_user(self, user_data: UserRegister, role: UserRole) -> User:
        # Check if user already exists
        existing_user = self.db.query(User).filter(
            User.email == user_data.email.lower()
        ).first()

        if existing_user:
            raise _email_taken()

        new_user = User(
            email=user_data.email.lower(),
            name=user_data.name,
            password_hash=get_password_hash(user_data.password),
            role=role,
            verified=False
        )

        self.db.add(new_user)
        # A concurrent sign-up can pass the lookup above; the unique email index decides
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("Duplicate email rejected by the users index")
            raise _email_taken()
        return new_user

    def _commit_registration(self):
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise _email_taken()

    def register_doctor(self, doctor_data: DoctorRegister, default_working_days: str) -> User:
        """Register a doctor account; it stays unverified until an admin approves it."""
        user = self._add_user(doctor_data, UserRole.DOCTOR)

        working_days = (
            format_working_days(doctor_data.working_days)
            if doctor_data.working_days is not None
            else default_working_days
        )
        doctor = Doctor(
            user_id=user.id,
            specialization=doctor_data.specialization,
            bio=doctor_data.bio,
            working_days=working_days,
        )
        self.db.add(doctor)
        self._commit_registration()
        self.db.refresh(user)

        logger.info(f"Registered doctor account {user.id} (pending verification)")

        return user

    def authenticate_user(self, login_data: UserLogin) -> TokenResponse:
        """Authenticate user and return a session token."""
        user = self.db.query(User).filter(
            User.email == login_data.email.lower()
        ).first()

        # Same answer for unknown email and wrong password
        if not user or not verify_password(login_data.password, user.password_hash):
            logger.info("Failed login attempt")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        return TokenResponse(
            access_token=self.tokens.issue(user),
            expires_in=self.tokens.max_age_seconds,
            user=UserResponse.model_validate(user)
        )

    def change_password(self, user_id: int, password_data: ChangePassword) -> bool:
        user: Optional[User] = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found"
            )

        # Verify current password
        if not verify_password(password_data.current_password, user.password_hash):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Current password is incorrect"
            )

        user.password_hash = get_password_hash(password_data.new_password)
        self.db.commit()
        return True
