"""Security utilities: password hashing and the signed token issuer."""

import hashlib
import hmac
import secrets
from calendar import timegm
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Callable

import bcrypt as _bcrypt
from jose import JWTError, jwt
from jose.constants import ALGORITHMS

from authgate.core.config import Settings, settings


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _timestamp(moment: datetime) -> int:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return timegm(moment.utctimetuple())


def _from_timestamp(value: int | float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _password_bytes(password: str) -> bytes:
    # Bcrypt has a 72 byte limit - truncate password bytes if necessary
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > 72:
        password_bytes = password_bytes[:72]
    return password_bytes


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password from database

    Returns:
        True if password matches, False otherwise
    """
    return _bcrypt.checkpw(_password_bytes(plain_password), hashed_password.encode("utf-8"))


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password

    Returns:
        Hashed password
    """
    salt = _bcrypt.gensalt(rounds=12)
    return _bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


@lru_cache(maxsize=1)
def dummy_password_hash() -> str:
    """Hash compared against when no user matches, so misses cost a bcrypt round too."""
    return get_password_hash(secrets.token_urlsafe(32))


def generate_unusable_password() -> str:
    """Random password placeholder for accounts created through OAuth."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """SHA-256 digest under which special-purpose tokens are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_matches(token: str, stored_digest: str | None) -> bool:
    if not stored_digest:
        return False
    return hmac.compare_digest(hash_token(token), stored_digest)


class TokenKind(str, Enum):
    """Purpose a token was minted for. Must match the consuming operation."""

    ACCESS = "access"
    REFRESH = "refresh"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


class VerificationFailure(str, Enum):
    """Why a token failed verification."""

    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    EXPIRED = "expired"
    KIND_MISMATCH = "kind_mismatch"

    @property
    def requires_reauthentication(self) -> bool:
        """True when the caller should prompt a fresh login rather than reject the request shape."""
        return self in (VerificationFailure.EXPIRED, VerificationFailure.SIGNATURE_INVALID)


class TokenVerificationError(Exception):
    """Raised by TokenIssuer.verify; `reason` tells callers how to react."""

    def __init__(self, reason: VerificationFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class SignerConfigurationError(RuntimeError):
    """The signer cannot produce tokens. Not recoverable per call."""


@dataclass(frozen=True)
class TokenClaims:
    """Decoded and verified token claims."""

    subject_id: str
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime
    email: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenIssuer:
    """
    Mints and verifies signed, kind-tagged tokens with embedded expiry.

    Access and refresh tokens share one signing key so that presenting a token
    to the wrong operation is reported as KIND_MISMATCH rather than as a
    signature failure.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        lifetimes: dict[TokenKind, timedelta] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the issuer.

        Args:
            secret_key: HMAC signing secret
            algorithm: HMAC algorithm (HS256, HS384 or HS512)
            lifetimes: Default time-to-live per token kind
            clock: Returns the current UTC time

        Raises:
            SignerConfigurationError: If the secret or algorithm is unusable
        """
        if not secret_key:
            raise SignerConfigurationError("Token signing secret is not configured")
        if algorithm not in ALGORITHMS.HMAC:
            raise SignerConfigurationError(f"Unsupported signing algorithm: {algorithm}")

        self._secret_key = secret_key
        self._algorithm = algorithm
        self._clock = clock
        self.lifetimes = {
            TokenKind.ACCESS: timedelta(minutes=15),
            TokenKind.REFRESH: timedelta(days=7),
            TokenKind.PASSWORD_RESET: timedelta(hours=1),
            TokenKind.EMAIL_VERIFICATION: timedelta(hours=24),
        }
        if lifetimes:
            self.lifetimes.update(lifetimes)

    @classmethod
    def from_settings(cls, config: Settings) -> "TokenIssuer":
        return cls(
            secret_key=config.JWT_SECRET_KEY,
            algorithm=config.JWT_ALGORITHM,
            lifetimes={
                TokenKind.ACCESS: timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
                TokenKind.REFRESH: timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS),
                TokenKind.PASSWORD_RESET: timedelta(hours=config.PASSWORD_RESET_TOKEN_EXPIRE_HOURS),
                TokenKind.EMAIL_VERIFICATION: timedelta(
                    hours=config.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS
                ),
            },
        )

    def now(self) -> datetime:
        return self._clock()

    def issue(
        self,
        subject_claims: dict[str, Any],
        kind: TokenKind,
        ttl: timedelta | None = None,
    ) -> str:
        """
        Sign a token for `subject_claims` (must contain "sub").

        Args:
            subject_claims: Claims describing the subject (sub, optional email)
            kind: Token purpose
            ttl: Lifetime; defaults to the configured lifetime for `kind`

        Returns:
            Encoded token

        Raises:
            SignerConfigurationError: If signing fails
        """
        if "sub" not in subject_claims:
            raise ValueError("subject_claims must include 'sub'")

        issued_at = self._clock()
        expires_at = issued_at + (ttl if ttl is not None else self.lifetimes[kind])

        payload = {key: value for key, value in subject_claims.items() if value is not None}
        payload.update(
            {
                "sub": str(subject_claims["sub"]),
                "kind": kind.value,
                "iat": _timestamp(issued_at),
                "exp": _timestamp(expires_at),
            }
        )

        try:
            return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        except JWTError as e:
            raise SignerConfigurationError(str(e)) from e

    def issue_pair(self, subject_id: Any, email: str | None = None) -> TokenPair:
        """Mint an access/refresh pair for a subject."""
        return TokenPair(
            access_token=self.issue({"sub": subject_id, "email": email}, TokenKind.ACCESS),
            refresh_token=self.issue({"sub": subject_id}, TokenKind.REFRESH),
        )

    def verify(self, token: str | None, expected_kind: TokenKind) -> TokenClaims:
        """
        Check structure, signature, expiry and kind, in that order.

        Args:
            token: Encoded token
            expected_kind: Kind the consuming operation accepts

        Returns:
            Verified claims

        Raises:
            TokenVerificationError: With the first failing check as reason
        """
        if not isinstance(token, str) or token.count(".") != 2:
            raise TokenVerificationError(VerificationFailure.MALFORMED, "not a signed token")

        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as e:
            raise TokenVerificationError(VerificationFailure.MALFORMED, str(e)) from e

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_iat": False, "verify_sub": False},
            )
        except JWTError as e:
            raise TokenVerificationError(VerificationFailure.SIGNATURE_INVALID, str(e)) from e

        subject_id = payload.get("sub")
        expires = payload.get("exp")
        issued = payload.get("iat", expires)
        if not isinstance(subject_id, str) or not isinstance(expires, (int, float)):
            raise TokenVerificationError(VerificationFailure.MALFORMED, "missing sub or exp claim")
        if not isinstance(issued, (int, float)):
            raise TokenVerificationError(VerificationFailure.MALFORMED, "invalid iat claim")

        if expires <= _timestamp(self._clock()):
            raise TokenVerificationError(VerificationFailure.EXPIRED)

        if payload.get("kind") != expected_kind.value:
            raise TokenVerificationError(
                VerificationFailure.KIND_MISMATCH,
                f"expected {expected_kind.value}, got {payload.get('kind')}",
            )

        return TokenClaims(
            subject_id=subject_id,
            kind=expected_kind,
            issued_at=_from_timestamp(issued),
            expires_at=_from_timestamp(expires),
            email=payload.get("email"),
        )


# Global issuer configured from settings
token_issuer = TokenIssuer.from_settings(settings)
