from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session
from typing import Optional

from ...core.config import Settings
from ...core.database import get_db
from ...core.security import TokenService
from ...api.deps import (
    get_current_identity, get_current_identity_optional, get_settings,
    get_token_service, rate_limit_check
)
from ...services.auth_service import AuthService
from ...services.identity import Identity
from ...schemas.auth import (
    UserLogin, UserRegister, DoctorRegister, TokenResponse, UserResponse,
    IdentityResponse, AuthCheckResponse, ChangePassword
)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _identity_response(identity: Identity) -> IdentityResponse:
    return IdentityResponse.model_validate(identity, from_attributes=True)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    _: None = Depends(rate_limit_check)
):
    """Register a new patient."""
    auth_service = AuthService(db, tokens)
    user = auth_service.register_user(user_data)
    return UserResponse.model_validate(user)


@router.post("/register/doctor", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_doctor(
    doctor_data: DoctorRegister,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_settings),
    _: None = Depends(rate_limit_check)
):
    """Register a doctor; the account needs admin verification before it is bookable."""
    auth_service = AuthService(db, tokens)
    user = auth_service.register_doctor(doctor_data, settings.DEFAULT_WORKING_DAYS)
    return UserResponse.model_validate(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: UserLogin,
    response: Response,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_settings),
    _: None = Depends(rate_limit_check)
):
    """Authenticate user, set the session cookie and return the token."""
    auth_service = AuthService(db, tokens)
    token_response = auth_service.authenticate_user(login_data)

    response.set_cookie(
        key=settings.TOKEN_COOKIE_NAME,
        value=token_response.access_token,
        max_age=tokens.max_age_seconds,
        httponly=True,
        secure=not (settings.DEBUG or settings.TESTING),
        samesite="lax",
        path="/",
    )
    return token_response


@router.post("/logout")
async def logout(
    response: Response,
    settings: Settings = Depends(get_settings)
):
    """Clear the session cookie. Tokens are stateless, so nothing is revoked server side."""
    response.delete_cookie(key=settings.TOKEN_COOKIE_NAME, path="/")
    return {"message": "Successfully logged out"}


@router.get("/check", response_model=AuthCheckResponse)
async def check_auth(
    identity: Optional[Identity] = Depends(get_current_identity_optional)
):
    """Report whether the caller holds a valid session."""
    if identity is None:
        return AuthCheckResponse(authenticated=False)
    return AuthCheckResponse(authenticated=True, user=_identity_response(identity))


@router.get("/me", response_model=IdentityResponse)
async def get_current_user_info(
    identity: Identity = Depends(get_current_identity)
):
    """Get current user information."""
    return _identity_response(identity)


@router.post("/change-password")
async def change_password(
    password_data: ChangePassword,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service)
):
    """Change user password."""
    auth_service = AuthService(db, tokens)
    auth_service.change_password(identity.id, password_data)

    return {"message": "Password changed successfully"}
