"""
Domain exceptions for the scheduling core.

Services raise these; the API layer renders them as structured JSON
responses so callers can tell a conflict apart from a validation error.
"""

from typing import Any, Dict, Optional

from fastapi import status


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing."""


class DomainError(Exception):
    """Base exception for all domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "domain_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainError):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_error"


class NotFoundError(DomainError):
    """Raised when a resource does not exist or is not visible to the caller."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ForbiddenError(DomainError):
    """Raised when a resolved identity lacks the role or verification required."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"


class BookingConflictError(DomainError):
    """Raised when the requested slot is held by another active appointment."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "slot_unavailable"


class InvalidTransitionError(DomainError):
    """Raised when an appointment cannot move to the requested state."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "invalid_transition"
