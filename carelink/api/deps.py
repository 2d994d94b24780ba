from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from typing import Optional, List
from datetime import date
from zoneinfo import ZoneInfo

from ..core.config import Settings
from ..core.database import get_db, get_redis
from ..core.edge_filter import extract_token
from ..core.security import (
    AuthenticationError, AuthorizationError, Clock, TokenClaims, TokenFailure,
    TokenService, UserRole
)
from ..services.appointment_service import AppointmentService
from ..services.identity import Identity, IdentityResolver

TOKEN_FAILURE_MESSAGES = {
    TokenFailure.EXPIRED: "Token expired",
    TokenFailure.INVALID_SIGNATURE: "Invalid token",
    TokenFailure.MALFORMED: "Invalid token",
}


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_today(
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> date:
    """Current calendar day in the server's reference time zone."""
    return clock().astimezone(ZoneInfo(settings.TIMEZONE)).date()


async def get_current_claims(
    request: Request,
    settings: Settings = Depends(get_settings),
    tokens: TokenService = Depends(get_token_service),
) -> TokenClaims:
    """Extract and verify the session token from the cookie or Authorization header."""
    token = extract_token(request, settings.TOKEN_COOKIE_NAME)
    if not token:
        raise AuthenticationError("Not authenticated")

    verification = tokens.verify(token)
    if not verification.valid:
        raise AuthenticationError(TOKEN_FAILURE_MESSAGES[verification.failure])

    return verification.claims


async def get_current_identity(
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db)
) -> Identity:
    """Resolve the live identity behind the token."""
    identity = IdentityResolver(db).resolve(claims)
    if identity is None:
        raise AuthenticationError("User not found")
    return identity


# Optional authentication (for endpoints that answer anonymous callers too)
async def get_current_identity_optional(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    tokens: TokenService = Depends(get_token_service),
) -> Optional[Identity]:
    """Get current identity if authenticated, None otherwise."""
    token = extract_token(request, settings.TOKEN_COOKIE_NAME)
    if not token:
        return None

    verification = tokens.verify(token)
    if not verification.valid:
        return None

    return IdentityResolver(db).resolve(verification.claims)


# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        identity: Identity = Depends(get_current_identity)
    ) -> Identity:
        if identity.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return identity

    return role_checker


async def get_admin_identity(
    identity: Identity = Depends(require_role([UserRole.ADMIN]))
) -> Identity:
    """Require admin role."""
    return identity


async def get_patient_identity(
    identity: Identity = Depends(require_role([UserRole.PATIENT]))
) -> Identity:
    """Require patient role."""
    return identity


async def get_verified_doctor_identity(
    identity: Identity = Depends(get_current_identity)
) -> Identity:
    """Require a doctor whose account an admin has verified."""
    return IdentityResolver.require_verified_doctor(identity)


def get_appointment_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    today: date = Depends(get_today),
    clock: Clock = Depends(get_clock),
) -> AppointmentService:
    return AppointmentService(db, settings.SLOT_GRID, today=today, clock=clock)


# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client=Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> None:
    """Basic rate limiting for credential endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:{request.url.path}:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.RATE_LIMIT_WINDOW_SECONDS, 1)
    else:
        if int(current_requests) >= settings.RATE_LIMIT_REQUESTS:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )
        redis_client.incr(key)
