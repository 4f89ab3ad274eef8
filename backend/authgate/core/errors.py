"""Error taxonomy shared by the auth services and the API layer."""

from datetime import datetime
from typing import Any

from fastapi import status


class AuthError(Exception):
    """
    Base class for errors that map onto an HTTP response.

    Attributes:
        status_code: HTTP status the API layer responds with
        message: User-facing message (kept generic where enumeration matters)
        extra: Additional JSON fields merged into the response body
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error as a response body."""
        return {"message": self.message, **self.extra}


class ValidationError(AuthError):
    """Malformed input, detected before any mutation."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"

    def __init__(self, message: str | None = None, errors: dict[str, str] | None = None) -> None:
        if errors:
            super().__init__(message or next(iter(errors.values())), errors=errors)
        else:
            super().__init__(message)
        self.errors = errors or {}


class AuthenticationError(AuthError):
    """Bad credentials or an expired/invalid token."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class NotFoundError(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "User not found"


class ConflictError(AuthError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "User already exists with this email"


class RateLimitError(AuthError):
    """Per-user attempt quota exceeded."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"

    def __init__(self, message: str | None = None, next_reset_time: datetime | None = None) -> None:
        super().__init__(
            message,
            remainingAttempts=0,
            nextResetTime=next_reset_time.isoformat() if next_reset_time else None,
        )
        self.next_reset_time = next_reset_time


class DependencyError(AuthError):
    """An external collaborator (email, OAuth provider) failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An upstream service failed"
