"""Authentication lifecycle: signup, login, refresh, password reset, email verification, OAuth."""

import re
import uuid
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from authgate.core.security import (
    TokenClaims,
    TokenIssuer,
    TokenKind,
    TokenPair,
    TokenVerificationError,
    VerificationFailure,
    token_issuer,
    token_matches,
)
from authgate.crud import user as user_crud
from authgate.models.auth_attempt import AttemptOperation
from authgate.models.user import User
from authgate.providers.base import OAuthProviderBase
from authgate.services import email_service
from authgate.services.attempt_limiter import AttemptLimiter

logger = structlog.get_logger()

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
PASSWORD_RESET_REQUESTED_MESSAGE = (
    "If an account exists with this email, a password reset link will be sent"
)
VERIFICATION_REQUESTED_MESSAGE = (
    "If an account exists with this email, a verification link will be sent"
)


@dataclass(frozen=True)
class AuthResult:
    """A user together with a freshly minted token pair."""

    user: User
    tokens: TokenPair


def validate_signup(first_name: str, last_name: str, email: str, password: str) -> dict[str, str]:
    """
    Check signup input shape.

    Returns:
        Field name to message for every failing field (empty when valid)
    """
    errors: dict[str, str] = {}
    if not first_name.strip():
        errors["firstName"] = "First name is required"
    if not last_name.strip():
        errors["lastName"] = "Last name is required"
    if not email.strip():
        errors["email"] = "Email is required"
    elif not EMAIL_PATTERN.match(email.strip()):
        errors["email"] = "Please enter a valid email"
    if not password:
        errors["password"] = "Password is required"
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return errors


class AuthService:
    """
    Drives every authentication transition against the user store.

    Enumeration-sensitive operations (login, forgot password, verification
    requests) answer identically whether or not the account exists. Email
    delivery failures are logged and never fail the request.
    """

    def __init__(
        self,
        db: AsyncSession,
        issuer: TokenIssuer = token_issuer,
        limiter: AttemptLimiter | None = None,
        providers: dict[str, OAuthProviderBase] | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            db: Database session
            issuer: Token issuer
            limiter: Attempt limiter (defaults to one sharing the issuer's clock)
            providers: OAuth providers keyed by name
        """
        self.db = db
        self.issuer = issuer
        self.limiter = limiter or AttemptLimiter(db, clock=issuer.now)
        self.providers = providers or {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _verify_token(self, token: str, kind: TokenKind, invalid_message: str) -> TokenClaims:
        try:
            return self.issuer.verify(token, kind)
        except TokenVerificationError as e:
            logger.info("auth.token_rejected", expected_kind=kind.value, reason=e.reason.value)
            if e.reason is VerificationFailure.MALFORMED:
                raise ValidationError("Malformed token", errors={"token": "Malformed token"}) from e
            if e.reason is VerificationFailure.KIND_MISMATCH:
                raise AuthenticationError("Invalid token type") from e
            raise AuthenticationError(invalid_message) from e

    async def _load_subject(self, claims: TokenClaims) -> User | None:
        try:
            user_id = uuid.UUID(claims.subject_id)
        except ValueError:
            return None
        return await user_crud.get_user_by_id(self.db, user_id)

    def _issue_pair(self, user: User) -> TokenPair:
        return self.issuer.issue_pair(user.id, user.email)

    # ------------------------------------------------------------------
    # Password login / signup
    # ------------------------------------------------------------------

    async def signup(self, first_name: str, last_name: str, email: str, password: str) -> AuthResult:
        """
        Register a password account and sign it in.

        Raises:
            ValidationError: If any field is missing or malformed
            ConflictError: If the email is already registered
        """
        errors = validate_signup(first_name, last_name, email, password)
        if errors:
            raise ValidationError(errors=errors)

        if await user_crud.get_user_by_email(self.db, email):
            raise ConflictError()

        try:
            user = await user_crud.create_user(
                self.db,
                first_name=first_name,
                last_name=last_name,
                email=email,
                password=password,
            )
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError() from e

        logger.info("auth.user_registered", user_id=str(user.id), email=user.email)
        return AuthResult(user=user, tokens=self._issue_pair(user))

    async def login(self, email: str, password: str) -> AuthResult:
        """
        Check credentials and mint a token pair.

        Raises:
            ValidationError: If email or password is missing
            AuthenticationError: On any credential mismatch (generic message)
        """
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = await user_crud.authenticate_user(self.db, email, password)
        if not user:
            logger.info("auth.login_failed", email=user_crud.normalize_email(email))
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

        logger.info("auth.login_succeeded", user_id=str(user.id))
        return AuthResult(user=user, tokens=self._issue_pair(user))

    async def refresh(self, refresh_token: str | None) -> tuple[str, User]:
        """
        Mint a new access token from a refresh token (no rotation).

        Returns:
            Tuple of (access token, user)

        Raises:
            ValidationError: If no refresh token was supplied or it is malformed
            AuthenticationError: If it is expired, forged, of another kind, or its user is gone
        """
        if not refresh_token:
            raise ValidationError("Refresh token is required")

        claims = self._verify_token(refresh_token, TokenKind.REFRESH, "Invalid or expired refresh token")
        user = await self._load_subject(claims)
        if not user:
            raise AuthenticationError("Invalid or expired refresh token")

        access_token = self.issuer.issue({"sub": user.id, "email": user.email}, TokenKind.ACCESS)
        logger.info("auth.token_refreshed", user_id=str(user.id))
        return access_token, user

    async def me(self, access_token: str | None) -> User:
        """
        Resolve the user behind an access token.

        Raises:
            AuthenticationError: On a missing or invalid token or unknown user
        """
        if not access_token:
            raise AuthenticationError("No authentication token found")
        try:
            claims = self.issuer.verify(access_token, TokenKind.ACCESS)
        except TokenVerificationError as e:
            raise AuthenticationError("Invalid or expired token") from e

        user = await self._load_subject(claims)
        if not user:
            raise AuthenticationError("Invalid or expired token")
        return user

    async def logout(self, access_token: str | None) -> None:
        """
        Best-effort server side of logout.

        There is no revocation store: an issued access token stays valid
        until it expires. The API layer clears the session cookies.
        """
        subject = None
        if access_token:
            try:
                subject = self.issuer.verify(access_token, TokenKind.ACCESS).subject_id
            except TokenVerificationError:
                subject = None
        logger.info("auth.logout", user_id=subject)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> str:
        """
        Email a password reset link if the account exists.

        The returned message is identical in every case, including unknown
        accounts and exhausted attempt quotas.

        Raises:
            ValidationError: If email is missing
        """
        if not email:
            raise ValidationError("Email is required", errors={"email": "Email is required"})

        user = await user_crud.get_user_by_email(self.db, email)
        if not user:
            logger.info("auth.password_reset_unknown_email")
            return PASSWORD_RESET_REQUESTED_MESSAGE

        user = await user_crud.lock_user(self.db, user.id)
        status = await self.limiter.check(user.id, AttemptOperation.PASSWORD_RESET)
        if not status.allowed:
            await self.db.commit()
            logger.warning(
                "auth.password_reset_rate_limited",
                user_id=str(user.id),
                next_reset_time=status.next_reset_time.isoformat() if status.next_reset_time else None,
            )
            return PASSWORD_RESET_REQUESTED_MESSAGE

        reset_token = self.issuer.issue({"sub": user.id, "email": user.email}, TokenKind.PASSWORD_RESET)
        expires_at = self.issuer.now() + self.issuer.lifetimes[TokenKind.PASSWORD_RESET]
        await user_crud.set_password_reset_token(self.db, user, reset_token, expires_at, commit=False)
        await self.limiter.record(user.id, AttemptOperation.PASSWORD_RESET, commit=False)
        await self.db.commit()

        email_sent = email_service.send_password_reset_email(
            email=user.email,
            first_name=user.first_name,
            reset_token=reset_token,
        )
        if not email_sent:
            logger.warning("auth.password_reset_email_failed", user_id=str(user.id))

        logger.info(
            "auth.password_reset_requested",
            user_id=str(user.id),
            email_sent=email_sent,
            remaining_attempts=status.remaining - 1,
        )
        return PASSWORD_RESET_REQUESTED_MESSAGE

    async def reset_password(self, token: str, new_password: str) -> User:
        """
        Set a new password using a reset token.

        The stored token digest and expiry are checked in addition to the
        token's own claims, and cleared together with the password update.

        Raises:
            ValidationError: If input is missing or too short
            AuthenticationError: If the token is invalid, expired or already used
            NotFoundError: If the token's user no longer exists
        """
        errors: dict[str, str] = {}
        if not token:
            errors["token"] = "Token is required"
        if not new_password:
            errors["newPassword"] = "New password is required"
        elif len(new_password) < MIN_PASSWORD_LENGTH:
            errors["newPassword"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        if errors:
            raise ValidationError(errors=errors)

        claims = self._verify_token(token, TokenKind.PASSWORD_RESET, "Invalid or expired reset token")
        user = await self._load_subject(claims)
        if not user:
            raise NotFoundError()

        user = await user_crud.lock_user(self.db, user.id)
        if not token_matches(token, user.password_reset_token_hash):
            await self.db.commit()
            logger.warning("auth.password_reset_token_not_current", user_id=str(user.id))
            raise AuthenticationError("Invalid or expired reset token")

        expires_at = user.password_reset_expires_at
        if expires_at is None or expires_at <= self.issuer.now():
            await self.db.commit()
            raise AuthenticationError("Reset token has expired")

        user = await user_crud.reset_password(self.db, user, new_password)
        logger.info("auth.password_reset_completed", user_id=str(user.id))
        return user

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def request_email_verification(self, email: str) -> str:
        """
        Email a verification link, gated by the attempt limiter.

        Unknown and already-verified accounts receive the same message as a
        successful request.

        Raises:
            ValidationError: If email is missing
            RateLimitError: If the weekly quota is used up
        """
        if not email:
            raise ValidationError("Email is required", errors={"email": "Email is required"})

        user = await user_crud.get_user_by_email(self.db, email)
        if not user:
            logger.info("auth.verification_unknown_email")
            return VERIFICATION_REQUESTED_MESSAGE
        if user.is_email_verified:
            logger.info("auth.verification_already_verified", user_id=str(user.id))
            return VERIFICATION_REQUESTED_MESSAGE

        user = await user_crud.lock_user(self.db, user.id)
        status = await self.limiter.check(user.id, AttemptOperation.EMAIL_VERIFICATION)
        if not status.allowed:
            await self.db.commit()
            raise RateLimitError(
                "Too many verification requests. You can request a verification link again after "
                f"{status.next_reset_time.isoformat()}",
                next_reset_time=status.next_reset_time,
            )

        verification_token = self.issuer.issue(
            {"sub": user.id, "email": user.email}, TokenKind.EMAIL_VERIFICATION
        )
        expires_at = self.issuer.now() + self.issuer.lifetimes[TokenKind.EMAIL_VERIFICATION]
        await user_crud.set_verification_token(self.db, user, verification_token, expires_at, commit=False)
        await self.limiter.record(user.id, AttemptOperation.EMAIL_VERIFICATION, commit=False)
        await self.db.commit()

        email_sent = email_service.send_verification_email(
            email=user.email,
            first_name=user.first_name,
            verification_token=verification_token,
        )
        if not email_sent:
            logger.warning("auth.verification_email_failed", user_id=str(user.id))

        logger.info(
            "auth.verification_requested",
            user_id=str(user.id),
            email_sent=email_sent,
            remaining_attempts=status.remaining - 1,
        )
        return VERIFICATION_REQUESTED_MESSAGE

    async def verify_email(self, token: str) -> tuple[User, bool]:
        """
        Mark the token's user as verified. Idempotent.

        Returns:
            Tuple of (user, newly_verified)

        Raises:
            ValidationError: If the token is missing or malformed
            AuthenticationError: If the token is invalid, expired or superseded
            NotFoundError: If the token's user no longer exists
        """
        if not token:
            raise ValidationError("Verification token is required", errors={"token": "Token is required"})

        claims = self._verify_token(
            token, TokenKind.EMAIL_VERIFICATION, "Invalid or expired verification token"
        )
        user = await self._load_subject(claims)
        if not user:
            raise NotFoundError()

        if user.is_email_verified:
            return user, False

        if user.email_verification_token_hash and not token_matches(
            token, user.email_verification_token_hash
        ):
            raise AuthenticationError("Invalid or expired verification token")

        user = await user_crud.mark_email_verified(self.db, user)
        logger.info("auth.email_verified", user_id=str(user.id))
        return user, True

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def get_provider(self, provider_name: str) -> OAuthProviderBase:
        provider = self.providers.get(provider_name)
        if provider is None:
            raise ValidationError("Unsupported sign-in provider")
        return provider

    async def oauth_callback(
        self,
        provider_name: str,
        code: str | None,
        user_payload: dict[str, Any] | None = None,
    ) -> AuthResult:
        """
        Exchange a provider code and sign the matching local user in.

        Users are found or created by email, auto-verified, and given an
        unusable random password.

        Raises:
            ValidationError: If the provider is unknown or the code is missing
            DependencyError: If the provider exchange fails
            AuthenticationError: If the provider does not vouch for the email
        """
        provider = self.get_provider(provider_name)
        if not code:
            raise ValidationError("No authorization code received")

        identity = await provider.exchange_code(code, user_payload)

        try:
            user, created = await user_crud.get_or_create_oauth_user(
                self.db,
                email=identity.email,
                first_name=identity.first_name,
                last_name=identity.last_name,
                provider=identity.provider,
            )
        except IntegrityError:
            # Concurrent first login created the account
            await self.db.rollback()
            user = await user_crud.get_user_by_email(self.db, identity.email)
            if not user:
                raise
            created = False

        logger.info(
            "auth.oauth_login",
            provider=identity.provider,
            user_id=str(user.id),
            created=created,
        )
        return AuthResult(user=user, tokens=self._issue_pair(user))
