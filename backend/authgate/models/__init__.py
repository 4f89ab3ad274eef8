"""SQLAlchemy database models."""

from authgate.models.auth_attempt import AttemptOperation, AuthAttempt
from authgate.models.user import User

__all__ = [
    "AttemptOperation",
    "AuthAttempt",
    "User",
]
