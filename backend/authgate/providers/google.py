"""Google OpenID Connect provider."""

from typing import Any

import httpx

from authgate.core.config import settings
from authgate.providers.base import OAuthIdentity, OAuthProviderBase


class GoogleOAuthProvider(OAuthProviderBase):
    """Sign in with Google (authorization code flow)."""

    name = "google"
    scope = "openid email profile"
    default_first_name = "Google"

    @classmethod
    def from_settings(cls, transport: httpx.AsyncBaseTransport | None = None) -> "GoogleOAuthProvider":
        return cls(
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            authorize_url=settings.GOOGLE_AUTHORIZE_URL,
            token_url=settings.GOOGLE_TOKEN_URL,
            transport=transport,
        )

    def extra_authorize_params(self) -> dict[str, str]:
        return {"access_type": "online", "prompt": "select_account"}

    def build_identity(self, claims: dict[str, Any], user_payload: dict[str, Any] | None) -> OAuthIdentity:
        return OAuthIdentity(
            provider=self.name,
            subject=str(claims.get("sub", "")),
            email=(claims.get("email") or "").strip().lower(),
            first_name=claims.get("given_name") or self.default_first_name,
            last_name=claims.get("family_name") or "User",
            email_verified=claims.get("email_verified", True) in (True, "true"),
        )
