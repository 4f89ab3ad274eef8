"""
Client-side token inspection.

The client never holds the signing key: it reads `exp` without verifying
the signature, purely to schedule refreshes. The server remains the only
authority on validity.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable

from jose import JWTError, jwt

REFRESH_THRESHOLD = timedelta(minutes=5)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def read_expiry(token: str | None) -> datetime | None:
    """Expiry of a token, or None when it cannot be read."""
    if not token:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def expires_in(token: str | None, now: datetime | None = None) -> timedelta:
    """Remaining lifetime, floored at zero. Unreadable tokens have none left."""
    expiry = read_expiry(token)
    if expiry is None:
        return timedelta(0)
    remaining = expiry - (now or utc_now())
    return max(remaining, timedelta(0))


def is_expired(token: str | None, now: datetime | None = None) -> bool:
    return expires_in(token, now) <= timedelta(0)


def should_refresh(
    token: str | None,
    threshold: timedelta = REFRESH_THRESHOLD,
    now: datetime | None = None,
) -> bool:
    """
    Whether a cached access token should be replaced before use.

    True when less than `threshold` remains, including tokens that already
    expired or whose expiry cannot be read. False without a token: there
    is nothing to refresh proactively.
    """
    if not token:
        return False
    return expires_in(token, now) < threshold
