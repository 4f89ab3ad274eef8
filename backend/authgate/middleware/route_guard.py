"""Route guard middleware for cookie-authenticated page and API paths."""

from typing import Sequence

import structlog
from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from authgate.core.config import settings
from authgate.core.cookies import ACCESS_TOKEN_COOKIE
from authgate.core.security import TokenClaims, TokenIssuer, TokenKind, TokenVerificationError, token_issuer

logger = structlog.get_logger(__name__)


def _matches_prefix(path: str, prefixes: Sequence[str]) -> bool:
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """
    Gate paths on the access-token cookie.

    - Protected prefixes: a missing or invalid cookie redirects to the
      sign-in page (an invalid cookie is deleted on the way). A valid one
      exposes `request.state.subject_id` and `request.state.subject_email`
      to downstream handlers.
    - Public-only paths (sign-in, sign-up, forgot password): a valid cookie
      redirects to the landing page.

    Usage:
        app.add_middleware(RouteGuardMiddleware)
    """

    def __init__(
        self,
        app: ASGIApp,
        protected_paths: Sequence[str] | None = None,
        public_only_paths: Sequence[str] | None = None,
        sign_in_path: str | None = None,
        landing_path: str | None = None,
        issuer: TokenIssuer | None = None,
    ):
        """
        Initialize the guard.

        Args:
            app: ASGI application
            protected_paths: Path prefixes requiring a session (default from settings)
            public_only_paths: Exact paths only anonymous visitors may see
            sign_in_path: Redirect target for anonymous visitors
            landing_path: Redirect target for signed-in visitors
            issuer: Token issuer used to verify the cookie
        """
        super().__init__(app)
        self.protected_paths = list(protected_paths if protected_paths is not None else settings.PROTECTED_PATHS)
        self.public_only_paths = set(
            public_only_paths if public_only_paths is not None else settings.PUBLIC_ONLY_PATHS
        )
        self.sign_in_path = sign_in_path or settings.SIGN_IN_PATH
        self.landing_path = landing_path or settings.LANDING_PATH
        self.issuer = issuer or token_issuer

    def _claims(self, token: str | None) -> TokenClaims | None:
        if not token:
            return None
        try:
            return self.issuer.verify(token, TokenKind.ACCESS)
        except TokenVerificationError as e:
            logger.info("route_guard.token_rejected", reason=e.reason.value)
            return None

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        token = request.cookies.get(ACCESS_TOKEN_COOKIE)

        if _matches_prefix(path, self.protected_paths):
            claims = self._claims(token)
            if claims is None:
                logger.info("route_guard.redirect_sign_in", path=path, had_token=bool(token))
                response = RedirectResponse(self.sign_in_path)
                if token:
                    response.delete_cookie(
                        ACCESS_TOKEN_COOKIE,
                        path="/",
                        secure=settings.cookie_secure,
                        httponly=True,
                        samesite=settings.COOKIE_SAMESITE,
                    )
                return response

            request.state.subject_id = claims.subject_id
            request.state.subject_email = claims.email
            return await call_next(request)

        if path in self.public_only_paths and self._claims(token) is not None:
            return RedirectResponse(self.landing_path)

        return await call_next(request)
