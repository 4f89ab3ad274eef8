"""Request and response schemas for authentication endpoints."""

from datetime import datetime

from authgate.schemas.common import CamelModel
from authgate.schemas.user import UserPublic


class SignupRequest(CamelModel):
    """Signup form. Shape rules are enforced by the auth service."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    password: str = ""


class LoginRequest(CamelModel):
    email: str = ""
    password: str = ""


class RefreshTokenRequest(CamelModel):
    """Refresh token may be omitted when it travels as an http-only cookie."""

    refresh_token: str | None = None


class EmailRequest(CamelModel):
    """Body of forgot-password and request-verification."""

    email: str = ""


class ResetPasswordRequest(CamelModel):
    token: str = ""
    new_password: str = ""


class VerifyEmailRequest(CamelModel):
    token: str = ""


class AuthResponse(CamelModel):
    """Successful login, signup or token-issuing OAuth exchange."""

    message: str
    user: UserPublic
    access_token: str
    refresh_token: str


class RefreshTokenResponse(CamelModel):
    message: str
    access_token: str


class RateLimitResponse(CamelModel):
    message: str
    remaining_attempts: int = 0
    next_reset_time: datetime | None = None
