"""Sign in with Apple provider."""

import json
from typing import Any

import httpx

from authgate.core.config import settings
from authgate.providers.base import OAuthIdentity, OAuthProviderBase


class AppleOAuthProvider(OAuthProviderBase):
    """
    Sign in with Apple (authorization code flow, form_post response mode).

    Apple sends the user's name only on the first authorization, as a JSON
    `user` form field next to the code. Later logins fall back to defaults
    for new accounts; existing accounts keep their stored name.
    """

    name = "apple"
    scope = "name email"
    default_first_name = "Apple"

    @classmethod
    def from_settings(cls, transport: httpx.AsyncBaseTransport | None = None) -> "AppleOAuthProvider":
        return cls(
            client_id=settings.APPLE_CLIENT_ID,
            client_secret=settings.APPLE_CLIENT_SECRET,
            authorize_url=settings.APPLE_AUTHORIZE_URL,
            token_url=settings.APPLE_TOKEN_URL,
            transport=transport,
        )

    def extra_authorize_params(self) -> dict[str, str]:
        return {"response_mode": "form_post"}

    @staticmethod
    def parse_user_payload(raw: str | None) -> dict[str, Any] | None:
        """Decode the `user` form field; malformed payloads are ignored."""
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    def build_identity(self, claims: dict[str, Any], user_payload: dict[str, Any] | None) -> OAuthIdentity:
        name = (user_payload or {}).get("name") or {}
        return OAuthIdentity(
            provider=self.name,
            subject=str(claims.get("sub", "")),
            email=(claims.get("email") or "").strip().lower(),
            first_name=name.get("firstName") or self.default_first_name,
            last_name=name.get("lastName") or "User",
            email_verified=claims.get("email_verified", True) in (True, "true"),
        )
