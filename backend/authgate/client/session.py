"""Authenticated HTTP calls with single-flight token refresh."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx
import structlog

from authgate.client.channel import CredentialChannel
from authgate.client.tokens import REFRESH_THRESHOLD, should_refresh

logger = structlog.get_logger(__name__)

Navigator = Callable[[str], Awaitable[None]]

DEFAULT_LOGIN_PATH = "/auth/login"


class CallState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    NEEDS_REFRESH = "needs_refresh"
    REFRESHING = "refreshing"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class SessionCall:
    """Trace of one call through the refresh state machine."""

    method: str
    path: str
    states: list[CallState] = field(default_factory=lambda: [CallState.IDLE])
    status_code: int | None = None

    @property
    def state(self) -> CallState:
        return self.states[-1]

    def advance(self, state: CallState) -> None:
        self.states.append(state)


class APIError(Exception):
    """Non-2xx final response."""

    def __init__(self, status_code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.data = data if data is not None else {}


class SessionExpiredError(APIError):
    """The session could not be refreshed; credentials were cleared."""

    def __init__(self, message: str = "Session expired. Please sign in again.", data: Any = None) -> None:
        super().__init__(httpx.codes.UNAUTHORIZED, message, data)


def _response_data(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def raise_for_api_error(response: httpx.Response) -> Any:
    """
    Decode a response body, raising APIError for non-2xx statuses.

    Returns:
        Parsed JSON, or None for 204 and empty bodies
    """
    data = _response_data(response)
    if response.is_success:
        return None if response.status_code == httpx.codes.NO_CONTENT else data
    message = data.get("message") if isinstance(data, dict) else None
    raise APIError(response.status_code, message or f"API Error: {response.status_code}", data)


class SessionClient:
    """
    Performs authenticated calls, refreshing the access token on demand.

    - Before sending, a cached access token within `threshold` of expiry
      (or past it) is refreshed first.
    - A 401 triggers one refresh and exactly one retry; a second 401 is
      terminal.
    - Concurrent refresh triggers share one in-flight refresh.
    - Terminal failure clears both credential channels and navigates to
      the login page, then raises SessionExpiredError.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        channel: CredentialChannel,
        navigate: Navigator | None = None,
        login_path: str = DEFAULT_LOGIN_PATH,
        threshold: timedelta = REFRESH_THRESHOLD,
        history_size: int = 50,
    ) -> None:
        self.http = http
        self.channel = channel
        self.navigate = navigate
        self.login_path = login_path
        self.threshold = threshold
        self.calls: deque[SessionCall] = deque(maxlen=history_size)
        self.refresh_count = 0
        self._refresh_future: asyncio.Future[str] | None = None

    @property
    def refresh_path(self) -> str:
        return f"{self.channel.auth_prefix}/refresh-token"

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, navigate: bool = True) -> str:
        """
        Obtain a fresh access token, joining an in-flight refresh if any.

        With `navigate` false a rejected refresh still clears the
        credentials but leaves the current page alone.

        Raises:
            SessionExpiredError: If the refresh was rejected
            httpx.HTTPError: On transport failure (credentials are kept)
        """
        if self._refresh_future is not None:
            return await asyncio.shield(self._refresh_future)

        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._refresh_future = future
        try:
            token = await self._perform_refresh(navigate)
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so a refresh without waiters does not warn
            future.exception()
            raise
        except BaseException:
            future.cancel()
            raise
        else:
            future.set_result(token)
            return token
        finally:
            self._refresh_future = None

    async def _perform_refresh(self, navigate: bool) -> str:
        self.refresh_count += 1
        refresh_token = self.channel.refresh_token()
        # Without a cached refresh token the server falls back to the cookie
        body = {"refreshToken": refresh_token} if refresh_token else {}

        try:
            response = await self.http.post(self.refresh_path, json=body)
        except httpx.HTTPError as e:
            logger.warning("session.refresh_transport_error", error=str(e))
            raise

        if response.status_code in (httpx.codes.BAD_REQUEST, httpx.codes.UNAUTHORIZED):
            data = _response_data(response)
            logger.warning("session.refresh_failed", status_code=response.status_code)
            await self._expire_session(navigate=navigate)
            raise SessionExpiredError(data=data)

        data = raise_for_api_error(response)
        access_token = data["accessToken"]
        self.channel.set_access_token(access_token)
        logger.info("session.refreshed")
        return access_token

    async def _expire_session(self, navigate: bool = True) -> None:
        await self.channel.clear()
        if navigate and self.navigate is not None:
            await self.navigate(self.login_path)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        access_token: str | None,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        request_headers = {}
        if access_token:
            request_headers["Authorization"] = f"Bearer {access_token}"
        request_headers.update(headers or {})
        return await self.http.request(method, path, json=json, params=params, headers=request_headers)

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Send an authenticated request.

        Returns:
            Parsed JSON body, or None for 204

        Raises:
            APIError: For non-2xx final responses
            SessionExpiredError: If the session could not be recovered
        """
        call = SessionCall(method=method.upper(), path=path)
        self.calls.append(call)

        access_token = self.channel.access_token()
        if access_token and should_refresh(access_token, self.threshold, self.channel.clock()):
            call.advance(CallState.NEEDS_REFRESH)
            call.advance(CallState.REFRESHING)
            access_token = await self._refresh_for(call)

        call.advance(CallState.ATTEMPTING)
        response = await self._send(call.method, path, access_token, json, params, headers)

        if response.status_code == httpx.codes.UNAUTHORIZED:
            call.advance(CallState.NEEDS_REFRESH)
            current_token = self.channel.access_token()
            if current_token and current_token != access_token:
                # Another call already refreshed while this one was in flight
                access_token = current_token
            else:
                call.advance(CallState.REFRESHING)
                access_token = await self._refresh_for(call)

            call.advance(CallState.RETRYING)
            response = await self._send(call.method, path, access_token, json, params, headers)
            if response.status_code == httpx.codes.UNAUTHORIZED:
                call.status_code = response.status_code
                call.advance(CallState.FAILED)
                logger.warning("session.retry_unauthorized", method=call.method, path=path)
                await self._expire_session()
                raise SessionExpiredError(data=_response_data(response))

        call.status_code = response.status_code
        try:
            data = raise_for_api_error(response)
        except APIError:
            call.advance(CallState.FAILED)
            raise
        call.advance(CallState.SUCCESS)
        return data

    async def _refresh_for(self, call: SessionCall) -> str:
        try:
            return await self.refresh()
        except Exception:
            call.advance(CallState.FAILED)
            raise

    async def get(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)
