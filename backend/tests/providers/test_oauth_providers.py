"""Tests for OAuth provider clients."""

import httpx
import pytest

from authgate.core.errors import AuthenticationError, DependencyError
from authgate.providers import AppleOAuthProvider, GoogleOAuthProvider, build_oauth_providers


class TestAuthorizationUrl:
    """Test provider redirect URLs."""

    def test_google_params(self, oauth_providers):
        url = oauth_providers["google"].authorization_url("google:nonce")

        assert url.startswith("https://accounts.google.test/authorize?")
        assert "scope=openid+email+profile" in url
        assert "state=google%3Anonce" in url
        assert "prompt=select_account" in url

    def test_apple_params(self, oauth_providers):
        url = oauth_providers["apple"].authorization_url("apple:nonce")

        assert "response_mode=form_post" in url
        assert "scope=name+email" in url


class TestCodeExchange:
    """Test exchanging an authorization code for an identity."""

    @pytest.mark.asyncio
    async def test_google_identity(self, oauth_providers, provider_endpoint):
        identity = await oauth_providers["google"].exchange_code("code-1")

        assert identity.provider == "google"
        assert identity.subject == "provider-user-1"
        assert identity.email == "ada@example.com"
        assert (identity.first_name, identity.last_name) == ("Ada", "Lovelace")

        form = httpx.QueryParams(provider_endpoint.requests[0].content.decode())
        assert form["grant_type"] == "authorization_code"
        assert form["client_secret"] == "google-secret"

    @pytest.mark.asyncio
    async def test_google_defaults_for_missing_names(self, oauth_providers, provider_endpoint):
        provider_endpoint.claims = {"sub": "s", "email": " Ada@Example.com "}

        identity = await oauth_providers["google"].exchange_code("code-1")

        assert identity.email == "ada@example.com"
        assert (identity.first_name, identity.last_name) == ("Google", "User")

    @pytest.mark.asyncio
    async def test_apple_name_from_user_payload(self, oauth_providers):
        payload = AppleOAuthProvider.parse_user_payload('{"name": {"firstName": "Grace", "lastName": "Hopper"}}')

        identity = await oauth_providers["apple"].exchange_code("code-1", payload)

        assert (identity.first_name, identity.last_name) == ("Grace", "Hopper")

    @pytest.mark.parametrize("raw", [None, "", "{bad", "[1, 2]"])
    def test_apple_ignores_malformed_payload(self, raw):
        assert AppleOAuthProvider.parse_user_payload(raw) is None

    @pytest.mark.asyncio
    async def test_unverified_email(self, oauth_providers, provider_endpoint):
        provider_endpoint.claims["email_verified"] = "false"

        with pytest.raises(AuthenticationError):
            await oauth_providers["google"].exchange_code("code-1")

    @pytest.mark.asyncio
    async def test_missing_email(self, oauth_providers, provider_endpoint):
        provider_endpoint.claims.pop("email")

        with pytest.raises(DependencyError):
            await oauth_providers["google"].exchange_code("code-1")

    @pytest.mark.asyncio
    async def test_rejected_code_surfaces_provider_message(self, oauth_providers, provider_endpoint):
        provider_endpoint.status_code = 400

        with pytest.raises(DependencyError) as exc_info:
            await oauth_providers["google"].exchange_code("stale")

        assert exc_info.value.message == "Bad authorization code"

    @pytest.mark.asyncio
    async def test_unreachable_provider(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        provider = GoogleOAuthProvider(
            client_id="id",
            client_secret="secret",
            authorize_url="https://accounts.google.test/authorize",
            token_url="https://accounts.google.test/token",
            redirect_uri="http://test/callback",
            transport=httpx.MockTransport(refuse),
        )

        with pytest.raises(DependencyError) as exc_info:
            await provider.exchange_code("code-1")

        assert exc_info.value.message == "Google authentication is unavailable"

    @pytest.mark.asyncio
    async def test_missing_id_token(self):
        provider = GoogleOAuthProvider(
            client_id="id",
            client_secret="secret",
            authorize_url="https://accounts.google.test/authorize",
            token_url="https://accounts.google.test/token",
            redirect_uri="http://test/callback",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"access_token": "x"})),
        )

        with pytest.raises(DependencyError):
            await provider.exchange_code("code-1")

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, oauth_providers, provider_endpoint):
        provider = oauth_providers["apple"]
        provider.client_secret = ""

        with pytest.raises(DependencyError):
            await provider.exchange_code("code-1")

        assert provider_endpoint.requests == []


class TestProviderRegistry:
    """Test building providers from settings."""

    def test_registry_keys(self):
        providers = build_oauth_providers()

        assert set(providers) == {"google", "apple"}
        assert providers["google"].redirect_uri.endswith("/api/v1/auth/oauth/callback")
