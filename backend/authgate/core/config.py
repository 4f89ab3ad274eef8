"""Application Configuration using Pydantic Settings."""

import os
from pathlib import Path
from typing import List
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_env_file() -> str:
    """
    Determine which .env file to load based on APP_ENV.

    Returns:
        Path to the .env file to load
    """
    app_env = os.getenv("APP_ENV", "development")
    base_dir = Path(__file__).parent.parent.parent  # backend/

    if app_env == "test":
        env_file = base_dir / ".env.test"
        if env_file.exists():
            return str(env_file)

    if app_env == "production":
        env_file = base_dir / ".env.production"
        if env_file.exists():
            return str(env_file)

    # Default to .env
    return str(base_dir / ".env")


def _split_csv(v: str | List[str]) -> List[str]:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "AuthGate"
    APP_ENV: str = "development"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"
    FRONTEND_URL: str = "http://localhost:3000"

    # Token signing
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    PASSWORD_RESET_TOKEN_EXPIRE_HOURS: int = 1
    EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS: int = 24

    # Database
    # Note: Using str instead of PostgresDsn to support SQLite for testing
    DATABASE_URL: str = "sqlite+aiosqlite:///./authgate.db"

    # Cookies (channel S)
    COOKIE_SECURE: bool | None = None  # None = secure only in production
    COOKIE_SAMESITE: str = "lax"

    # Route guard
    PROTECTED_PATHS: List[str] = ["/dashboard", "/api/user", "/api/profile", "/api/settings"]
    PUBLIC_ONLY_PATHS: List[str] = ["/auth/login", "/auth/signup", "/auth/forgot-password"]
    SIGN_IN_PATH: str = "/auth/login"
    LANDING_PATH: str = "/dashboard"
    OAUTH_SYNC_PATH: str = "/auth/oauth-sync"

    # Attempt limiter (password reset / verification emails)
    ATTEMPT_LIMIT_MAX_ATTEMPTS: int = 3
    ATTEMPT_LIMIT_WINDOW_DAYS: int = 7

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_MAX_AGE: int = 600  # Preflight cache duration in seconds

    # Email
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAILS_FROM_EMAIL: str = ""
    EMAILS_FROM_NAME: str = "AuthGate"

    # OAuth - Google
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_AUTHORIZE_URL: str = "https://accounts.google.com/o/oauth2/v2/auth"
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"

    # OAuth - Apple (client secret is the pre-generated ES256 client JWT)
    APPLE_CLIENT_ID: str = ""
    APPLE_CLIENT_SECRET: str = ""
    APPLE_AUTHORIZE_URL: str = "https://appleid.apple.com/auth/authorize"
    APPLE_TOKEN_URL: str = "https://appleid.apple.com/auth/token"

    # Public base URL of this API (used to build OAuth redirect URIs)
    API_BASE_URL: str = "http://localhost:8000"

    # Error Tracking (Sentry)
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1

    # Rate Limiting (per IP, independent of the per-user attempt limiter)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_AUTH_LOGIN: str = "5/minute"  # Login attempts (brute-force protection)
    RATE_LIMIT_AUTH_SIGNUP: str = "3/minute"  # Signup (spam prevention)
    RATE_LIMIT_AUTH_REFRESH: str = "10/minute"  # Token refresh
    RATE_LIMIT_AUTH_EMAIL: str = "5/minute"  # Endpoints that send email
    RATE_LIMIT_API_DEFAULT: str = "100/minute"

    @property
    def cookie_secure(self) -> bool:
        """Whether session cookies carry the Secure attribute."""
        if self.COOKIE_SECURE is not None:
            return self.COOKIE_SECURE
        return self.APP_ENV == "production"

    @field_validator("PROTECTED_PATHS", "PUBLIC_ONLY_PATHS", mode="before")
    @classmethod
    def parse_path_lists(cls, v: str | List[str]) -> List[str]:
        """Parse path lists from comma-separated string or list."""
        return _split_csv(v)

    @field_validator("JWT_SECRET_KEY")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Reject empty signing secrets."""
        if not v.strip():
            raise ValueError("JWT_SECRET_KEY cannot be empty")
        return v

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v: str | List[str]) -> List[str]:
        """Parse allowed origins from string or list."""
        return _split_csv(v)

    @field_validator("ALLOWED_ORIGINS", mode="after")
    @classmethod
    def validate_cors_origins(cls, origins: List[str], info) -> List[str]:
        """
        Validate CORS origins for security.

        Security rules:
        1. No wildcards ("*", "http://*", etc.)
        2. Valid URL format (scheme://host[:port])
        3. In production: HTTPS only (except localhost/127.0.0.1)

        Args:
            origins: List of origin URLs to validate
            info: ValidationInfo containing other field values

        Returns:
            Validated list of origins

        Raises:
            ValueError: If any origin violates security rules
        """
        if not origins:
            raise ValueError("ALLOWED_ORIGINS cannot be empty. At least one origin must be specified.")

        app_env = info.data.get("APP_ENV", "development")
        is_production = app_env == "production"

        validated_origins = []

        for origin in origins:
            origin = origin.strip()

            if "*" in origin:
                raise ValueError(
                    f"CORS origin '{origin}' contains wildcard '*'. "
                    "Wildcards are not allowed. Specify exact domains instead."
                )

            parsed = urlparse(origin)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(
                    f"CORS origin '{origin}' must include scheme and hostname. "
                    f"Example: https://app.example.com"
                )

            if is_production:
                is_localhost = parsed.netloc.startswith("localhost") or parsed.netloc.startswith("127.0.0.1")

                if parsed.scheme != "https" and not is_localhost:
                    raise ValueError(
                        f"CORS origin '{origin}' must use HTTPS in production. "
                        f"Change to: https://{parsed.netloc}"
                    )

            validated_origins.append(origin)

        return validated_origins


# Create global settings instance
settings = Settings()  # type: ignore
