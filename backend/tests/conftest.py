"""Pytest configuration and fixtures for AuthGate tests."""

import os

# Settings are read at import time
os.environ["APP_ENV"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-authgate")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import timedelta, timezone
from typing import Any, AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from authgate.api.deps import get_db, get_oauth_providers, get_token_issuer
from authgate.client import AuthClient
from authgate.core.config import settings
from authgate.core.database import Base
from authgate.core.security import TokenIssuer, utcnow
from authgate.crud import user as user_crud
from authgate.main import app
from authgate.models.user import User
from authgate.providers import AppleOAuthProvider, GoogleOAuthProvider

# Use SQLite in-memory database for tests (faster and no setup needed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_BASE_URL = "http://test"
TEST_PASSWORD = "Test123!@#"
PROVIDER_SIGNING_KEY = "provider-signing-key"


class FrozenClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self) -> None:
        self.current = utcnow().replace(microsecond=0)

    def __call__(self):
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)

    def aware(self):
        return self.current.replace(tzinfo=timezone.utc)


class NavigationRecorder:
    """Stands in for browser navigation."""

    def __init__(self) -> None:
        self.paths: list[str] = []

    async def __call__(self, path: str) -> None:
        self.paths.append(path)

    @property
    def last(self) -> str | None:
        return self.paths[-1] if self.paths else None


def make_id_token(**claims: Any) -> str:
    return jwt.encode(claims, PROVIDER_SIGNING_KEY, algorithm="HS256")


class ProviderTokenEndpoint:
    """Fake OAuth token endpoint answering with a configurable ID token."""

    def __init__(self) -> None:
        self.claims: dict[str, Any] = {
            "sub": "provider-user-1",
            "email": "ada@example.com",
            "email_verified": True,
            "given_name": "Ada",
            "family_name": "Lovelace",
        }
        self.status_code = 200
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(
                self.status_code,
                json={"error": "invalid_grant", "error_description": "Bad authorization code"},
            )
        return httpx.Response(
            200,
            json={"access_token": "provider-access-token", "id_token": make_id_token(**self.claims)},
        )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def issuer(clock: FrozenClock) -> TokenIssuer:
    """Issuer sharing the application secret, driven by the frozen clock."""
    return TokenIssuer(settings.JWT_SECRET_KEY, settings.JWT_ALGORITHM, clock=clock)


@pytest.fixture
def navigator() -> NavigationRecorder:
    return NavigationRecorder()


@pytest.fixture
def provider_endpoint() -> ProviderTokenEndpoint:
    return ProviderTokenEndpoint()


@pytest.fixture
def oauth_providers(provider_endpoint: ProviderTokenEndpoint) -> dict:
    transport = httpx.MockTransport(provider_endpoint)
    redirect_uri = f"{TEST_BASE_URL}{settings.API_V1_PREFIX}/auth/oauth/callback"
    return {
        "google": GoogleOAuthProvider(
            client_id="google-client",
            client_secret="google-secret",
            authorize_url="https://accounts.google.test/authorize",
            token_url="https://accounts.google.test/token",
            redirect_uri=redirect_uri,
            transport=transport,
        ),
        "apple": AppleOAuthProvider(
            client_id="apple-client",
            client_secret="apple-secret",
            authorize_url="https://appleid.apple.test/authorize",
            token_url="https://appleid.apple.test/token",
            redirect_uri=redirect_uri,
            transport=transport,
        ),
    }


@pytest.fixture
async def engine():
    """Create async engine for tests with SQLite in-memory database."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,  # StaticPool for in-memory SQLite
        connect_args={"check_same_thread": False},  # Required for SQLite
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    issuer: TokenIssuer,
    oauth_providers: dict,
) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with database, issuer and provider overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_issuer] = lambda: issuer
    app.dependency_overrides[get_oauth_providers] = lambda: oauth_providers

    async with AsyncClient(transport=ASGITransport(app=app), base_url=TEST_BASE_URL) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def auth_client(
    async_client: AsyncClient,
    navigator: NavigationRecorder,
    clock: FrozenClock,
) -> AsyncGenerator[AuthClient, None]:
    """Client library talking to the application in-process."""
    client = AuthClient.create(
        TEST_BASE_URL,
        navigate=navigator,
        transport=ASGITransport(app=app),
        clock=clock.aware,
    )
    async with client:
        yield client


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create an unverified password user."""
    return await user_crud.create_user(
        db_session,
        first_name="Test",
        last_name="User",
        email="test@example.com",
        password=TEST_PASSWORD,
    )
