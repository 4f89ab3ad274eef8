"""Tests for the authentication service."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.errors import (
    AuthenticationError,
    ConflictError,
    DependencyError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from authgate.core.security import TokenIssuer, TokenKind, hash_token, verify_password
from authgate.crud import user as user_crud
from authgate.models.user import User
from authgate.providers.base import OAuthIdentity, OAuthProviderBase
from authgate.services.auth_service import (
    INVALID_CREDENTIALS_MESSAGE,
    PASSWORD_RESET_REQUESTED_MESSAGE,
    VERIFICATION_REQUESTED_MESSAGE,
    AuthService,
    validate_signup,
)

TEST_PASSWORD = "Test123!@#"


class StubProvider(OAuthProviderBase):
    """Provider whose exchange result is set by the test."""

    name = "stub"

    def __init__(self, identity: OAuthIdentity | None = None, error: Exception | None = None) -> None:
        super().__init__("client", "secret", "https://idp.test/authorize", "https://idp.test/token")
        self.identity = identity
        self.error = error

    def build_identity(self, claims, user_payload):
        raise NotImplementedError

    async def exchange_code(self, code, user_payload=None):
        if self.error:
            raise self.error
        return self.identity


@pytest.fixture
def service(db_session: AsyncSession, issuer: TokenIssuer) -> AuthService:
    return AuthService(db_session, issuer=issuer)


class TestSignupValidation:
    """Test signup shape rules."""

    def test_valid(self):
        assert validate_signup("Ada", "Lovelace", "ada@example.com", "secret1") == {}

    def test_every_failing_field_reported(self):
        errors = validate_signup(" ", "", "not-an-email", "12345")

        assert set(errors) == {"firstName", "lastName", "email", "password"}
        assert errors["email"] == "Please enter a valid email"
        assert "at least 6" in errors["password"]

    @pytest.mark.parametrize("email", ["a@b", "a b@c.d", "@c.d", "a@.d"])
    def test_invalid_emails(self, email):
        assert "email" in validate_signup("A", "B", email, "secret1")


class TestSignupAndLogin:
    """Test password registration and login."""

    @pytest.mark.asyncio
    async def test_signup_issues_pair(self, service: AuthService, issuer: TokenIssuer):
        result = await service.signup("Ada", "Lovelace", "Ada@Example.com", "secret1")

        assert result.user.email == "ada@example.com"
        assert result.user.is_email_verified is False
        assert result.user.auth_provider == "password"
        assert issuer.verify(result.tokens.access_token, TokenKind.ACCESS).subject_id == str(result.user.id)
        assert issuer.verify(result.tokens.refresh_token, TokenKind.REFRESH).subject_id == str(result.user.id)

    @pytest.mark.asyncio
    async def test_signup_validation_before_store(self, service: AuthService):
        with patch("authgate.services.auth_service.user_crud.create_user") as mock_create:
            with pytest.raises(ValidationError) as exc_info:
                await service.signup("", "Lovelace", "ada@example.com", "secret1")

        mock_create.assert_not_called()
        assert exc_info.value.errors == {"firstName": "First name is required"}

    @pytest.mark.asyncio
    async def test_signup_duplicate(self, service: AuthService, test_user: User):
        with pytest.raises(ConflictError) as exc_info:
            await service.signup("Other", "Person", "TEST@example.com", "secret1")

        assert exc_info.value.message == "User already exists with this email"

    @pytest.mark.asyncio
    async def test_login(self, service: AuthService, test_user: User):
        result = await service.login("test@example.com", TEST_PASSWORD)

        assert result.user.id == test_user.id

    @pytest.mark.asyncio
    async def test_login_failures_are_indistinguishable(self, service: AuthService, test_user: User):
        """Test unknown email and wrong password produce the same error."""
        with pytest.raises(AuthenticationError) as unknown:
            await service.login("nobody@example.com", TEST_PASSWORD)
        with pytest.raises(AuthenticationError) as wrong:
            await service.login("test@example.com", "wrong-password")

        assert unknown.value.message == wrong.value.message == INVALID_CREDENTIALS_MESSAGE

    @pytest.mark.asyncio
    async def test_login_unknown_user_still_hashes(self, service: AuthService):
        """Test a bcrypt comparison runs even when no user matches."""
        with patch("authgate.crud.user.verify_password", return_value=False) as mock_verify:
            with pytest.raises(AuthenticationError):
                await service.login("nobody@example.com", TEST_PASSWORD)

        mock_verify.assert_called_once()

    @pytest.mark.asyncio
    async def test_login_requires_both_fields(self, service: AuthService):
        with pytest.raises(ValidationError):
            await service.login("", TEST_PASSWORD)


class TestRefreshAndMe:
    """Test access token renewal and identity lookup."""

    @pytest.mark.asyncio
    async def test_refresh_mints_access_token(self, service: AuthService, issuer: TokenIssuer, test_user: User):
        pair = issuer.issue_pair(test_user.id, test_user.email)

        access_token, user = await service.refresh(pair.refresh_token)

        assert user.id == test_user.id
        assert issuer.verify(access_token, TokenKind.ACCESS).email == test_user.email

    @pytest.mark.asyncio
    async def test_refresh_rejects_access_token(self, service: AuthService, issuer: TokenIssuer, test_user: User):
        pair = issuer.issue_pair(test_user.id, test_user.email)

        with pytest.raises(AuthenticationError) as exc_info:
            await service.refresh(pair.access_token)

        assert exc_info.value.message == "Invalid token type"

    @pytest.mark.asyncio
    async def test_refresh_expired(self, service: AuthService, issuer: TokenIssuer, test_user: User, clock):
        pair = issuer.issue_pair(test_user.id, test_user.email)
        clock.advance(days=7)

        with pytest.raises(AuthenticationError):
            await service.refresh(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_missing_or_malformed(self, service: AuthService):
        with pytest.raises(ValidationError):
            await service.refresh(None)
        with pytest.raises(ValidationError):
            await service.refresh("garbage")

    @pytest.mark.asyncio
    async def test_refresh_deleted_user(
        self, service: AuthService, issuer: TokenIssuer, test_user: User, db_session: AsyncSession
    ):
        pair = issuer.issue_pair(test_user.id, test_user.email)
        await db_session.delete(test_user)
        await db_session.commit()

        with pytest.raises(AuthenticationError):
            await service.refresh(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_me(self, service: AuthService, issuer: TokenIssuer, test_user: User):
        pair = issuer.issue_pair(test_user.id, test_user.email)

        assert (await service.me(pair.access_token)).id == test_user.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "garbage"])
    async def test_me_rejects_everything_else_with_401(self, service: AuthService, token):
        with pytest.raises(AuthenticationError):
            await service.me(token)


class TestPasswordReset:
    """Test forgot-password and reset-password."""

    @pytest.mark.asyncio
    async def test_forgot_password_stores_digest_and_sends(
        self, service: AuthService, test_user: User, db_session: AsyncSession, clock
    ):
        with patch(
            "authgate.services.email_service.send_password_reset_email", return_value=True
        ) as mock_send:
            message = await service.forgot_password("test@example.com")

        assert message == PASSWORD_RESET_REQUESTED_MESSAGE
        reset_token = mock_send.call_args.kwargs["reset_token"]
        await db_session.refresh(test_user)
        assert test_user.password_reset_token_hash == hash_token(reset_token)
        assert test_user.password_reset_expires_at == clock() + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_forgot_password_unknown_email(self, service: AuthService):
        with patch("authgate.services.email_service.send_password_reset_email") as mock_send:
            message = await service.forgot_password("nobody@example.com")

        assert message == PASSWORD_RESET_REQUESTED_MESSAGE
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_forgot_password_email_failure_not_surfaced(self, service: AuthService, test_user: User):
        with patch("authgate.services.email_service.send_password_reset_email", return_value=False):
            message = await service.forgot_password("test@example.com")

        assert message == PASSWORD_RESET_REQUESTED_MESSAGE

    @pytest.mark.asyncio
    async def test_forgot_password_quota_is_silent(self, service: AuthService, test_user: User):
        """Test the fourth request in a week sends nothing but answers identically."""
        with patch(
            "authgate.services.email_service.send_password_reset_email", return_value=True
        ) as mock_send:
            messages = [await service.forgot_password("test@example.com") for _ in range(4)]

        assert set(messages) == {PASSWORD_RESET_REQUESTED_MESSAGE}
        assert mock_send.call_count == 3

    @pytest.mark.asyncio
    async def test_reset_password(self, service: AuthService, test_user: User, db_session: AsyncSession):
        with patch(
            "authgate.services.email_service.send_password_reset_email", return_value=True
        ) as mock_send:
            await service.forgot_password("test@example.com")
        reset_token = mock_send.call_args.kwargs["reset_token"]

        user = await service.reset_password(reset_token, "brand-new-password")

        assert verify_password("brand-new-password", user.hashed_password)
        assert user.password_reset_token_hash is None
        assert user.password_reset_expires_at is None

    @pytest.mark.asyncio
    async def test_reset_token_single_use(self, service: AuthService, test_user: User):
        with patch(
            "authgate.services.email_service.send_password_reset_email", return_value=True
        ) as mock_send:
            await service.forgot_password("test@example.com")
        reset_token = mock_send.call_args.kwargs["reset_token"]
        await service.reset_password(reset_token, "brand-new-password")

        with pytest.raises(AuthenticationError):
            await service.reset_password(reset_token, "another-password")

    @pytest.mark.asyncio
    async def test_reset_token_superseded(self, service: AuthService, test_user: User, clock):
        """Test only the most recently issued reset token is accepted."""
        with patch(
            "authgate.services.email_service.send_password_reset_email", return_value=True
        ) as mock_send:
            await service.forgot_password("test@example.com")
            clock.advance(seconds=1)
            await service.forgot_password("test@example.com")
        first_token = mock_send.call_args_list[0].kwargs["reset_token"]

        with pytest.raises(AuthenticationError):
            await service.reset_password(first_token, "brand-new-password")

    @pytest.mark.asyncio
    async def test_reset_checks_stored_expiry(
        self, service: AuthService, issuer: TokenIssuer, test_user: User, db_session: AsyncSession, clock
    ):
        """Test the stored expiry applies even when the token itself is still valid."""
        reset_token = issuer.issue({"sub": test_user.id}, TokenKind.PASSWORD_RESET, ttl=timedelta(hours=5))
        await user_crud.set_password_reset_token(db_session, test_user, reset_token, clock() + timedelta(hours=1))
        clock.advance(hours=2)

        with pytest.raises(AuthenticationError) as exc_info:
            await service.reset_password(reset_token, "brand-new-password")

        assert exc_info.value.message == "Reset token has expired"

    @pytest.mark.asyncio
    async def test_reset_rejects_wrong_kind(self, service: AuthService, issuer: TokenIssuer, test_user: User):
        verification_token = issuer.issue({"sub": test_user.id}, TokenKind.EMAIL_VERIFICATION)

        with pytest.raises(AuthenticationError) as exc_info:
            await service.reset_password(verification_token, "brand-new-password")

        assert exc_info.value.message == "Invalid token type"

    @pytest.mark.asyncio
    async def test_reset_validates_password_first(self, service: AuthService):
        with pytest.raises(ValidationError) as exc_info:
            await service.reset_password("anything", "12345")

        assert "newPassword" in exc_info.value.errors

    @pytest.mark.asyncio
    async def test_reset_unknown_user(self, service: AuthService, issuer: TokenIssuer):
        import uuid

        reset_token = issuer.issue({"sub": uuid.uuid4()}, TokenKind.PASSWORD_RESET)

        with pytest.raises(NotFoundError):
            await service.reset_password(reset_token, "brand-new-password")


class TestEmailVerification:
    """Test verification requests and confirmation."""

    @pytest.mark.asyncio
    async def test_request_and_verify(self, service: AuthService, test_user: User):
        with patch(
            "authgate.services.email_service.send_verification_email", return_value=True
        ) as mock_send:
            message = await service.request_email_verification("test@example.com")
        token = mock_send.call_args.kwargs["verification_token"]

        user, newly_verified = await service.verify_email(token)

        assert message == VERIFICATION_REQUESTED_MESSAGE
        assert newly_verified is True
        assert user.is_email_verified is True
        assert user.email_verification_token_hash is None

    @pytest.mark.asyncio
    async def test_verify_is_idempotent(self, service: AuthService, test_user: User):
        with patch(
            "authgate.services.email_service.send_verification_email", return_value=True
        ) as mock_send:
            await service.request_email_verification("test@example.com")
        token = mock_send.call_args.kwargs["verification_token"]

        await service.verify_email(token)
        user, newly_verified = await service.verify_email(token)

        assert newly_verified is False
        assert user.is_email_verified is True

    @pytest.mark.asyncio
    async def test_fourth_request_rate_limited(self, service: AuthService, test_user: User, clock):
        with patch("authgate.services.email_service.send_verification_email", return_value=True):
            for _ in range(3):
                await service.request_email_verification("test@example.com")
                clock.advance(hours=1)

            with pytest.raises(RateLimitError) as exc_info:
                await service.request_email_verification("test@example.com")

        body = exc_info.value.to_dict()
        assert body["remainingAttempts"] == 0
        assert body["nextResetTime"] == (clock() - timedelta(hours=3) + timedelta(days=7)).isoformat()

    @pytest.mark.asyncio
    async def test_verified_and_unknown_accounts_answer_generically(
        self, service: AuthService, test_user: User, db_session: AsyncSession
    ):
        await user_crud.mark_email_verified(db_session, test_user)

        with patch("authgate.services.email_service.send_verification_email") as mock_send:
            verified = await service.request_email_verification("test@example.com")
            unknown = await service.request_email_verification("nobody@example.com")

        assert verified == unknown == VERIFICATION_REQUESTED_MESSAGE
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_verify_rejects_expired(self, service: AuthService, issuer: TokenIssuer, test_user: User, clock):
        token = issuer.issue({"sub": test_user.id}, TokenKind.EMAIL_VERIFICATION)
        clock.advance(hours=24)

        with pytest.raises(AuthenticationError):
            await service.verify_email(token)

    @pytest.mark.asyncio
    async def test_verify_rejects_access_token(self, service: AuthService, issuer: TokenIssuer, test_user: User):
        pair = issuer.issue_pair(test_user.id, test_user.email)

        with pytest.raises(AuthenticationError) as exc_info:
            await service.verify_email(pair.access_token)

        assert exc_info.value.message == "Invalid token type"


class TestOAuthCallback:
    """Test OAuth find-or-create."""

    @pytest.mark.asyncio
    async def test_creates_verified_user(self, db_session: AsyncSession, issuer: TokenIssuer):
        provider = StubProvider(OAuthIdentity("stub", "s-1", "new@example.com", "New", "Person"))
        service = AuthService(db_session, issuer=issuer, providers={"stub": provider})

        result = await service.oauth_callback("stub", "code-123")

        assert result.user.email == "new@example.com"
        assert result.user.is_email_verified is True
        assert result.user.auth_provider == "stub"
        assert not verify_password("", result.user.hashed_password)

    @pytest.mark.asyncio
    async def test_links_existing_user_and_verifies(
        self, db_session: AsyncSession, issuer: TokenIssuer, test_user: User
    ):
        provider = StubProvider(OAuthIdentity("stub", "s-1", "test@example.com", "Other", "Name"))
        service = AuthService(db_session, issuer=issuer, providers={"stub": provider})

        result = await service.oauth_callback("stub", "code-123")

        assert result.user.id == test_user.id
        assert result.user.first_name == "Test"
        assert result.user.is_email_verified is True

    @pytest.mark.asyncio
    async def test_unknown_provider(self, service: AuthService):
        with pytest.raises(ValidationError):
            await service.oauth_callback("myspace", "code-123")

    @pytest.mark.asyncio
    async def test_missing_code(self, db_session: AsyncSession, issuer: TokenIssuer):
        service = AuthService(db_session, issuer=issuer, providers={"stub": StubProvider()})

        with pytest.raises(ValidationError):
            await service.oauth_callback("stub", None)

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, db_session: AsyncSession, issuer: TokenIssuer):
        provider = StubProvider(error=DependencyError("Token exchange failed"))
        service = AuthService(db_session, issuer=issuer, providers={"stub": provider})

        with pytest.raises(DependencyError):
            await service.oauth_callback("stub", "code-123")
