"""OAuth identity providers."""

from authgate.providers.apple import AppleOAuthProvider
from authgate.providers.base import OAuthIdentity, OAuthProviderBase
from authgate.providers.google import GoogleOAuthProvider

__all__ = [
    "AppleOAuthProvider",
    "GoogleOAuthProvider",
    "OAuthIdentity",
    "OAuthProviderBase",
    "build_oauth_providers",
]


def build_oauth_providers() -> dict[str, OAuthProviderBase]:
    """Instantiate every provider from settings, keyed by provider name."""
    providers: list[OAuthProviderBase] = [
        GoogleOAuthProvider.from_settings(),
        AppleOAuthProvider.from_settings(),
    ]
    return {provider.name: provider for provider in providers}
