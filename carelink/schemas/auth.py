from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import List, Optional

from ..core.security import UserRole


def _check_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if not any(ch.isdigit() for ch in value):
        raise ValueError("Password must contain at least one digit")
    if not any(ch.isalpha() for ch in value):
        raise ValueError("Password must contain at least one letter")
    return value


class UserRegister(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class DoctorRegister(UserRegister):
    specialization: str = Field(..., min_length=1, max_length=100)
    bio: Optional[str] = None
    working_days: Optional[List[str]] = None

    @field_validator("working_days")
    @classmethod
    def known_weekdays(cls, value):
        if value is None:
            return value
        from ..models.doctor import WEEKDAY_NAMES
        for day in value:
            if day.strip()[:3].title() not in WEEKDAY_NAMES:
                raise ValueError(f"Unknown weekday: {day}")
        return value


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class ChangePassword(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    role: UserRole
    verified: bool


class IdentityResponse(UserResponse):
    doctor_id: Optional[int] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class AuthCheckResponse(BaseModel):
    authenticated: bool
    user: Optional[IdentityResponse] = None
