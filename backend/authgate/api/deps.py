"""Shared FastAPI dependencies."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.cookies import ACCESS_TOKEN_COOKIE
from authgate.core.database import get_db
from authgate.core.security import TokenIssuer, token_issuer
from authgate.models.user import User
from authgate.providers import build_oauth_providers
from authgate.providers.base import OAuthProviderBase
from authgate.services.auth_service import AuthService

__all__ = [
    "get_access_token",
    "get_auth_service",
    "get_current_user",
    "get_db",
    "get_oauth_providers",
    "get_token_issuer",
]


def get_token_issuer() -> TokenIssuer:
    return token_issuer


@lru_cache(maxsize=1)
def get_oauth_providers() -> dict[str, OAuthProviderBase]:
    return build_oauth_providers()


def get_access_token(request: Request) -> str | None:
    """
    Access token from a Bearer header, else from the http-only cookie.

    Header-borne tokens come from clients holding them in their own cache;
    cookie-borne sessions come from OAuth redirects.
    """
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(ACCESS_TOKEN_COOKIE) or None


def get_auth_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
    providers: Annotated[dict[str, OAuthProviderBase], Depends(get_oauth_providers)],
) -> AuthService:
    return AuthService(db, issuer=issuer, providers=providers)


async def get_current_user(
    service: Annotated[AuthService, Depends(get_auth_service)],
    access_token: Annotated[str | None, Depends(get_access_token)],
) -> User:
    """
    Resolve the authenticated user.

    Raises:
        AuthenticationError: If no valid access token was presented
    """
    return await service.me(access_token)
