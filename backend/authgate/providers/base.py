"""Base abstract class for OAuth provider implementations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from jose import JWTError, jwt

from authgate.core.config import settings
from authgate.core.errors import AuthenticationError, DependencyError

logger = structlog.get_logger()


def default_redirect_uri() -> str:
    return f"{settings.API_BASE_URL}{settings.API_V1_PREFIX}/auth/oauth/callback"


@dataclass(frozen=True)
class OAuthIdentity:
    """Identity assertion obtained from a provider."""

    provider: str
    subject: str
    email: str
    first_name: str
    last_name: str
    email_verified: bool = True


class OAuthProviderBase(ABC):
    """
    Abstract base class for OAuth/OpenID Connect providers.

    Providers exchange an authorization code at their token endpoint over a
    server-to-server TLS call. The returned ID token therefore comes straight
    from the issuer and its claims are read without a second signature check.
    """

    name: str = ""
    scope: str = "openid email"
    default_first_name: str = "User"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        authorize_url: str,
        token_url: str,
        redirect_uri: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize provider client.

        Args:
            client_id: OAuth client identifier
            client_secret: OAuth client secret
            authorize_url: Provider authorization endpoint
            token_url: Provider token endpoint
            redirect_uri: Callback URL registered with the provider
            transport: Optional httpx transport (tests)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.redirect_uri = redirect_uri or default_redirect_uri()
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def extra_authorize_params(self) -> dict[str, str]:
        return {}

    def authorization_url(self, state: str) -> str:
        """
        Build the provider authorization URL.

        Args:
            state: Opaque value echoed back to the callback

        Returns:
            URL to redirect the browser to
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "state": state,
            **self.extra_authorize_params(),
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def _request_tokens(self, code: str) -> dict[str, Any]:
        """
        Exchange an authorization code at the token endpoint.

        Raises:
            DependencyError: If the provider is unreachable or rejects the code
        """
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(self.token_url, data=data)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            try:
                body = e.response.json()
            except ValueError:
                body = {}
            message = body.get("error_description") or body.get("error") or "Token exchange failed"
            logger.warning(
                "oauth.token_exchange_rejected",
                provider=self.name,
                status_code=e.response.status_code,
                error=message,
            )
            raise DependencyError(message) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("oauth.token_exchange_failed", provider=self.name, error=str(e))
            raise DependencyError(f"{self.name.title()} authentication is unavailable") from e

    def _id_token_claims(self, token_response: dict[str, Any]) -> dict[str, Any]:
        id_token = token_response.get("id_token")
        if not id_token:
            raise DependencyError("Provider response did not include an ID token")
        try:
            return jwt.get_unverified_claims(id_token)
        except JWTError as e:
            raise DependencyError("Provider returned an unreadable ID token") from e

    @abstractmethod
    def build_identity(self, claims: dict[str, Any], user_payload: dict[str, Any] | None) -> OAuthIdentity:
        """
        Map ID token claims (and any provider-specific user payload) to an identity.
        """
        pass

    async def exchange_code(self, code: str, user_payload: dict[str, Any] | None = None) -> OAuthIdentity:
        """
        Exchange an authorization code for a confirmed identity.

        Args:
            code: Authorization code from the callback
            user_payload: Provider-specific user data posted alongside the code

        Returns:
            Confirmed identity

        Raises:
            DependencyError: If the provider call fails
            AuthenticationError: If the provider does not vouch for the email
        """
        if not self.is_configured:
            raise DependencyError(f"{self.name.title()} sign-in is not configured")

        claims = self._id_token_claims(await self._request_tokens(code))
        identity = self.build_identity(claims, user_payload)

        if not identity.email:
            raise DependencyError("Provider did not return an email address")
        if not identity.email_verified:
            raise AuthenticationError("Your email address is not verified with this provider")

        logger.info("oauth.identity_confirmed", provider=self.name, email=identity.email)
        return identity
