"""High-level authentication flows for a browser-like client."""

from dataclasses import replace
from pathlib import Path
from typing import Any

import httpx
import structlog

from authgate.client.channel import CredentialChannel
from authgate.client.identity import SessionIdentity, SessionTokens
from authgate.client.session import (
    DEFAULT_LOGIN_PATH,
    Navigator,
    SessionClient,
    SessionExpiredError,
    raise_for_api_error,
)
from authgate.client.storage import ClientStorage, JsonFileStorage, MemoryStorage
from authgate.client.tokens import Clock, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_LANDING_PATH = "/dashboard"


class AuthClient:
    """
    Login, signup, logout, password and verification flows.

    Anonymous endpoints are called directly, outside the refreshing
    session client: a 401 from login is a wrong password, not an expired
    session. Navigation always happens after the credential cache write
    has completed.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        channel: CredentialChannel,
        session: SessionClient,
        navigate: Navigator | None = None,
        login_path: str = DEFAULT_LOGIN_PATH,
        landing_path: str = DEFAULT_LANDING_PATH,
    ) -> None:
        self.http = http
        self.channel = channel
        self.session = session
        self.navigate = navigate
        self.login_path = login_path
        self.landing_path = landing_path

    @classmethod
    def create(
        cls,
        base_url: str,
        storage: ClientStorage | str | Path | None = None,
        navigate: Navigator | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        login_path: str = DEFAULT_LOGIN_PATH,
        landing_path: str = DEFAULT_LANDING_PATH,
        timeout: float = 30.0,
        clock: Clock = utc_now,
    ) -> "AuthClient":
        """
        Wire an http client, credential channel and session client together.

        Args:
            base_url: API origin, e.g. "http://localhost:8000"
            storage: Cache backend, or a path for a JSON file cache
            navigate: Async callable receiving the path to navigate to
            transport: Optional httpx transport (tests, ASGI apps)
            login_path: Page shown after logout or session expiry
            landing_path: Page shown after sign-in
            timeout: Request timeout in seconds
            clock: Returns the current aware UTC time (token expiry checks)
        """
        if isinstance(storage, (str, Path)):
            storage = JsonFileStorage(storage)
        http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        channel = CredentialChannel(http, storage or MemoryStorage(), clock=clock)
        session = SessionClient(http, channel, navigate=navigate, login_path=login_path)
        return cls(
            http,
            channel,
            session,
            navigate=navigate,
            login_path=login_path,
            landing_path=landing_path,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "AuthClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self.channel.auth_prefix}{path}"

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        response = await self.http.post(self._url(path), json=body)
        return raise_for_api_error(response)

    async def _go(self, path: str) -> None:
        if self.navigate is not None:
            await self.navigate(path)

    async def _establish(self, data: dict[str, Any]) -> SessionIdentity:
        identity = SessionIdentity.from_payload(data["user"])
        self.channel.write(
            identity,
            SessionTokens(access_token=data["accessToken"], refresh_token=data.get("refreshToken")),
        )
        await self._go(self.landing_path)
        return identity

    @property
    def is_authenticated(self) -> bool:
        return self.channel.probe_authenticated()

    @property
    def user(self) -> SessionIdentity | None:
        return self.channel.identity()

    async def login(self, email: str, password: str) -> SessionIdentity:
        """
        Password login.

        Raises:
            APIError: 400 for missing fields, 401 for bad credentials
        """
        data = await self._post("/login", {"email": email, "password": password})
        identity = await self._establish(data)
        logger.info("auth_client.login", user_id=identity.user_id)
        return identity

    async def signup(self, first_name: str, last_name: str, email: str, password: str) -> SessionIdentity:
        """
        Register and sign in.

        Raises:
            APIError: 400 with field `errors`, or 409 for a taken email
        """
        data = await self._post(
            "/signup",
            {"firstName": first_name, "lastName": last_name, "email": email, "password": password},
        )
        identity = await self._establish(data)
        logger.info("auth_client.signup", user_id=identity.user_id)
        return identity

    async def logout(self) -> None:
        """Clear both channels (server call best effort) and go to the login page."""
        await self.channel.clear()
        await self._go(self.login_path)

    async def forgot_password(self, email: str) -> str:
        data = await self._post("/forgot-password", {"email": email})
        return data["message"]

    async def reset_password(self, token: str, new_password: str) -> str:
        data = await self._post("/reset-password", {"token": token, "newPassword": new_password})
        return data["message"]

    async def request_verification(self, email: str) -> str:
        """
        Ask for a verification email.

        Raises:
            APIError: 429 with `remainingAttempts` and `nextResetTime` in `data`
        """
        data = await self._post("/request-verification", {"email": email})
        return data["message"]

    async def verify_email(self, token: str) -> str:
        """Confirm an email address and mark the cached identity verified."""
        data = await self._post("/verify-email", {"token": token})
        identity = self.channel.identity()
        if identity is not None and not identity.is_email_verified:
            self.channel.update_identity(replace(identity, is_email_verified=True))
        return data["message"]

    async def me(self) -> SessionIdentity:
        """Fetch the current user through the refreshing session client."""
        data = await self.session.get(self._url("/me"))
        identity = SessionIdentity.from_payload(data["user"])
        self.channel.update_identity(identity)
        return identity

    async def _refresh_session(self) -> str | None:
        try:
            return await self.session.refresh(navigate=False)
        except SessionExpiredError:
            return None

    async def initialize(self) -> SessionIdentity | None:
        """
        Restore the session on page entry.

        Confirms a cookie session with the server, or accepts a cached
        identity whose access token is still good. A lapsed access token
        is refreshed once first. Never navigates: the caller decides what
        an anonymous visitor sees.

        Returns:
            The current identity, or None when there is no live session
        """
        identity = await self.channel.reconcile(refresh=self._refresh_session)
        if identity is None:
            logger.info("auth_client.initialized_anonymous")
        else:
            logger.info("auth_client.initialized", user_id=identity.user_id)
        return identity

    async def complete_oauth_sync(self) -> SessionIdentity | None:
        """
        Finish an OAuth redirect: confirm the cookie session, then navigate.

        Returns:
            The verified identity, or None when the session did not hold
        """
        identity = await self.channel.reconcile(refresh=self._refresh_session)
        if identity is None:
            logger.info("auth_client.oauth_sync_failed")
            await self._go(self.login_path)
            return None
        logger.info("auth_client.oauth_sync", user_id=identity.user_id)
        await self._go(self.landing_path)
        return identity

    def begin_oauth(self, provider: str) -> str:
        """URL that starts the provider sign-in; the browser should navigate to it."""
        return str(self.http.base_url.join(self._url(f"/oauth/{provider}")))
