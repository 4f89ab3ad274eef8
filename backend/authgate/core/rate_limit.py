"""Per-IP request throttling using SlowAPI."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from authgate.core.config import settings


def get_client_identifier(request: Request) -> str:
    """
    Get rate limit identifier from request.

    Auth endpoints are reached before a user is known, so throttling is
    keyed by client IP. Per-account quotas are the attempt limiter's job.

    Args:
        request: FastAPI request object

    Returns:
        Unique identifier string for rate limiting
    """
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_client_identifier,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
    headers_enabled=True,  # Add X-RateLimit-* headers to responses
)

# Pre-configured rate limit decorators for auth endpoints
auth_login_limit = limiter.limit(settings.RATE_LIMIT_AUTH_LOGIN)
auth_signup_limit = limiter.limit(settings.RATE_LIMIT_AUTH_SIGNUP)
auth_refresh_limit = limiter.limit(settings.RATE_LIMIT_AUTH_REFRESH)
auth_email_limit = limiter.limit(settings.RATE_LIMIT_AUTH_EMAIL)

# Everything else on the auth router
api_default_limit = limiter.limit(settings.RATE_LIMIT_API_DEFAULT)
