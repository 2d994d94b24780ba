from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status
from pydantic import BaseModel
from enum import Enum
import logging

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class TokenFailure(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    MALFORMED = "malformed"


class TokenClaims(BaseModel):
    sub: str
    email: str
    name: Optional[str] = None
    role: Optional[str] = None  # hint only; authorization reads the live record
    iat: int
    exp: int


class TokenVerification(BaseModel):
    claims: Optional[TokenClaims] = None
    failure: Optional[TokenFailure] = None

    @property
    def valid(self) -> bool:
        return self.claims is not None


# Password utilities
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generate password hash."""
    return pwd_context.hash(password)


class TokenService:
    """Issues and verifies stateless, signed session tokens.

    Verification needs only the signing secret and a clock, so it can run
    in front of every request without touching the database. Client input
    problems come back as a ``TokenVerification`` with a ``failure`` set;
    a missing secret is a configuration error raised at construction.
    """

    def __init__(
        self,
        secret_key: Optional[str],
        algorithm: str = "HS256",
        expire_days: int = 7,
        clock: Clock = utcnow,
    ):
        if not secret_key:
            raise ConfigurationError("SECRET_KEY must be set to sign session tokens")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.expires_delta = timedelta(days=expire_days)
        self.clock = clock

    def issue(self, user) -> str:
        """Create a session token for ``user``."""
        issued_at = self.clock()
        to_encode = {
            "sub": str(user.id),
            "email": user.email,
            "name": user.name,
            "role": user.role.value if isinstance(user.role, Enum) else user.role,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.expires_delta).timestamp()),
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> TokenVerification:
        """Check signature and expiry of ``token``."""
        if not token:
            return TokenVerification(failure=TokenFailure.MALFORMED)

        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return TokenVerification(failure=TokenFailure.MALFORMED)

        try:
            # Expiry is checked below against the injected clock
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return TokenVerification(failure=TokenFailure.INVALID_SIGNATURE)

        try:
            claims = TokenClaims(**payload)
        except ValueError:
            return TokenVerification(failure=TokenFailure.MALFORMED)

        if int(self.clock().timestamp()) >= claims.exp:
            return TokenVerification(failure=TokenFailure.EXPIRED)

        return TokenVerification(claims=claims)

    @property
    def max_age_seconds(self) -> int:
        return int(self.expires_delta.total_seconds())


# Security exceptions
class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )
