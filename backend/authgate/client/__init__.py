"""Client library: credential channels, refreshing session client, auth flows."""

from authgate.client.auth import AuthClient
from authgate.client.channel import CredentialChannel
from authgate.client.identity import SessionIdentity, SessionTokens
from authgate.client.session import (
    APIError,
    CallState,
    SessionCall,
    SessionClient,
    SessionExpiredError,
)
from authgate.client.storage import ClientStorage, JsonFileStorage, MemoryStorage

__all__ = [
    "APIError",
    "AuthClient",
    "CallState",
    "ClientStorage",
    "CredentialChannel",
    "JsonFileStorage",
    "MemoryStorage",
    "SessionCall",
    "SessionClient",
    "SessionExpiredError",
    "SessionIdentity",
    "SessionTokens",
]
