"""Dual credential channel: server-set cookies (S) and the script-accessible cache (L)."""

import json
from typing import Any, Awaitable, Callable
from urllib.parse import unquote

import httpx
import structlog

from authgate.client.identity import SessionIdentity, SessionTokens
from authgate.client.storage import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    USER_KEY,
    ClientStorage,
    MemoryStorage,
)
from authgate.client.tokens import Clock, expires_in, utc_now

logger = structlog.get_logger(__name__)

AUTH_API_PREFIX = "/api/v1/auth"
SESSION_MARKER_COOKIE = "user"

RefreshHook = Callable[[], Awaitable[str | None]]


def _is_http_only(cookie: Any) -> bool:
    return cookie.has_nonstandard_attr("HttpOnly") or cookie.has_nonstandard_attr("httponly")


class CredentialChannel:
    """
    Keeps the two credential stores coherent.

    S lives in the http client's cookie jar and is written only by server
    responses; its http-only token cookies are never read here. L is the
    canonical client-side cache. Identity found in S is a hint: it reaches
    L only after `GET /me` confirms it.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        storage: ClientStorage | None = None,
        auth_prefix: str = AUTH_API_PREFIX,
        clock: Clock = utc_now,
    ) -> None:
        self.http = http
        self.storage = storage if storage is not None else MemoryStorage()
        self.auth_prefix = auth_prefix.rstrip("/")
        self.clock = clock
        self.reconciled = False

    # ------------------------------------------------------------------
    # L channel
    # ------------------------------------------------------------------

    def write(self, identity: SessionIdentity, tokens: SessionTokens) -> None:
        """Cache identity and tokens. Completes before the caller navigates."""
        self.storage.set(ACCESS_TOKEN_KEY, tokens.access_token)
        if tokens.refresh_token:
            self.storage.set(REFRESH_TOKEN_KEY, tokens.refresh_token)
        self.storage.set(USER_KEY, identity.to_payload())
        logger.info("credential_channel.written", user_id=identity.user_id)

    def identity(self) -> SessionIdentity | None:
        data = self.storage.get(USER_KEY)
        if not isinstance(data, dict):
            return None
        try:
            return SessionIdentity.from_payload(data)
        except ValueError:
            return None

    def update_identity(self, identity: SessionIdentity) -> None:
        self.storage.set(USER_KEY, identity.to_payload())

    def access_token(self) -> str | None:
        token = self.storage.get(ACCESS_TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def refresh_token(self) -> str | None:
        token = self.storage.get(REFRESH_TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def set_access_token(self, token: str) -> None:
        self.storage.set(ACCESS_TOKEN_KEY, token)

    def _has_usable_access_token(self) -> bool:
        return expires_in(self.access_token(), self.clock()).total_seconds() > 0

    # ------------------------------------------------------------------
    # S channel
    # ------------------------------------------------------------------

    def readable_cookies(self) -> dict[str, str]:
        """Cookies a page script could read; http-only ones are invisible."""
        return {cookie.name: cookie.value for cookie in self.http.cookies.jar if not _is_http_only(cookie)}

    def has_session_marker(self) -> bool:
        return bool(self.readable_cookies().get(SESSION_MARKER_COOKIE))

    def marker_hint(self) -> dict[str, Any] | None:
        """Unverified identity hint decoded from the marker cookie."""
        raw = self.readable_cookies().get(SESSION_MARKER_COOKIE)
        if not raw:
            return None
        try:
            data = json.loads(unquote(raw))
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, refresh: RefreshHook | None = None) -> SessionIdentity | None:
        """
        Bring L in line with S.

        With a marker cookie present, `GET /me` is authenticated by the
        cookie jar alone and its answer is the only identity trusted.
        Without a marker, the cached identity counts only alongside a
        non-expired access token.

        An expired access token is not the end of the session: when
        `refresh` is given it is tried once (it returns the new access
        token, or None when the refresh was rejected) and the cached
        identity is dropped only if that fails too.

        Raises:
            httpx.HTTPError: On transport failure
        """
        if not self.has_session_marker():
            identity = self.identity()
            if identity is None:
                return None
            if self._has_usable_access_token():
                return identity
            if refresh is not None and self.refresh_token() and await refresh():
                logger.info("credential_channel.refreshed_cached_session", user_id=identity.user_id)
                return identity
            return None

        response = await self.http.get(f"{self.auth_prefix}/me")
        if response.status_code == httpx.codes.UNAUTHORIZED and refresh is not None:
            if await refresh():
                response = await self.http.get(f"{self.auth_prefix}/me")
        if response.status_code == httpx.codes.UNAUTHORIZED:
            self.storage.remove(USER_KEY)
            self.reconciled = False
            logger.info("credential_channel.reconcile_rejected")
            return None
        response.raise_for_status()

        identity = SessionIdentity.from_payload(response.json()["user"])
        self.update_identity(identity)
        self.reconciled = True
        logger.info("credential_channel.reconciled", user_id=identity.user_id)
        return identity

    async def clear(self) -> None:
        """
        Drop L and ask the server to expire S.

        The server call is best effort; L is cleared regardless.
        """
        self.storage.clear_auth_data()
        self.reconciled = False
        try:
            response = await self.http.post(f"{self.auth_prefix}/logout")
            if response.is_error:
                logger.warning("credential_channel.logout_rejected", status_code=response.status_code)
        except httpx.HTTPError as e:
            logger.warning("credential_channel.logout_failed", error=str(e))

    def probe_authenticated(self) -> bool:
        """
        Cheap, network-free authentication check.

        True when L holds an identity and a non-expired access token, or
        when the marker cookie exists and a reconciliation succeeded.
        """
        if self.identity() is not None and self._has_usable_access_token():
            return True
        return self.has_session_marker() and self.reconciled

    def snapshot(self) -> dict[str, Any]:
        """Presence-only view of both channels, for debugging."""
        access_token = self.access_token()
        state = {
            "local": {
                "has_access_token": access_token is not None,
                "has_refresh_token": self.refresh_token() is not None,
                "has_user": self.identity() is not None,
                "access_token_seconds_left": int(expires_in(access_token, self.clock()).total_seconds()),
            },
            "session": {
                "has_marker": self.has_session_marker(),
                "readable_cookies": sorted(self.readable_cookies()),
            },
            "reconciled": self.reconciled,
            "authenticated": self.probe_authenticated(),
        }
        logger.debug("credential_channel.snapshot", **state)
        return state
