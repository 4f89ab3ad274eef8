"""Session cookie contract (credential channel S)."""

import json
from typing import Any
from urllib.parse import quote

from fastapi import Response

from authgate.core.config import settings
from authgate.core.security import TokenKind, token_issuer
from authgate.models.user import User

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"
USER_COOKIE = "user"
OAUTH_STATE_COOKIE = "oauth_state"

SESSION_COOKIES = (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, USER_COOKIE)


def _max_age(kind: TokenKind) -> int:
    return int(token_issuer.lifetimes[kind].total_seconds())


def _set(response: Response, key: str, value: str, max_age: int, httponly: bool) -> None:
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        path="/",
        httponly=httponly,
        secure=settings.cookie_secure,
        samesite=settings.COOKIE_SAMESITE,
    )


def user_cookie_value(user: User) -> str:
    """
    URL-encoded JSON identity for the script-readable `user` cookie.

    It is a reconciliation hint only and never authorizes anything.
    """
    payload: dict[str, Any] = {
        "id": str(user.id),
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "fullName": user.full_name,
        "createdAt": user.created_at.isoformat(),
        "isEmailVerified": user.is_email_verified,
    }
    return quote(json.dumps(payload, separators=(",", ":")), safe="")


def set_access_cookie(response: Response, access_token: str) -> None:
    _set(response, ACCESS_TOKEN_COOKIE, access_token, _max_age(TokenKind.ACCESS), httponly=True)


def set_session_cookies(response: Response, user: User, access_token: str, refresh_token: str) -> None:
    """Write the http-only token cookies plus the readable identity marker."""
    set_access_cookie(response, access_token)
    _set(response, REFRESH_TOKEN_COOKIE, refresh_token, _max_age(TokenKind.REFRESH), httponly=True)
    _set(response, USER_COOKIE, user_cookie_value(user), _max_age(TokenKind.REFRESH), httponly=False)


def clear_session_cookies(response: Response) -> None:
    for key in SESSION_COOKIES:
        response.delete_cookie(
            key,
            path="/",
            secure=settings.cookie_secure,
            httponly=key != USER_COOKIE,
            samesite=settings.COOKIE_SAMESITE,
        )


def set_oauth_state_cookie(response: Response, nonce: str) -> None:
    """
    Nonce cookie checked against the OAuth `state` on callback.

    Apple posts the callback cross-site (form_post), which a lax cookie
    would not survive, so secure deployments relax it to SameSite=None.
    """
    response.set_cookie(
        key=OAUTH_STATE_COOKIE,
        value=nonce,
        max_age=600,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="none" if settings.cookie_secure else settings.COOKIE_SAMESITE,
    )


def clear_oauth_state_cookie(response: Response) -> None:
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/", secure=settings.cookie_secure, httponly=True)
