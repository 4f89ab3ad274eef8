"""Authentication endpoints."""

import hmac
import secrets
from typing import Annotated, Any
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends, Form, Request, Response, status
from fastapi.responses import RedirectResponse

from authgate.api.deps import get_access_token, get_auth_service, get_current_user
from authgate.core.config import settings
from authgate.core.cookies import (
    OAUTH_STATE_COOKIE,
    REFRESH_TOKEN_COOKIE,
    clear_oauth_state_cookie,
    clear_session_cookies,
    set_access_cookie,
    set_oauth_state_cookie,
    set_session_cookies,
)
from authgate.core.errors import AuthError
from authgate.core.rate_limit import (
    api_default_limit,
    auth_email_limit,
    auth_login_limit,
    auth_refresh_limit,
    auth_signup_limit,
)
from authgate.models.user import User
from authgate.providers.apple import AppleOAuthProvider
from authgate.schemas.auth import (
    AuthResponse,
    EmailRequest,
    LoginRequest,
    RateLimitResponse,
    RefreshTokenRequest,
    RefreshTokenResponse,
    ResetPasswordRequest,
    SignupRequest,
    VerifyEmailRequest,
)
from authgate.schemas.common import MessageResponse
from authgate.schemas.user import UserPublic, UserResponse
from authgate.services.auth_service import AuthResult, AuthService

router = APIRouter()
logger = structlog.get_logger()

AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


def _auth_response(message: str, result: AuthResult) -> AuthResponse:
    return AuthResponse(
        message=message,
        user=UserPublic.model_validate(result.user),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    )


def _sign_in_redirect(message: str) -> RedirectResponse:
    """Send the browser back to the sign-in page with an error message."""
    url = f"{settings.FRONTEND_URL}{settings.SIGN_IN_PATH}?error={quote(message, safe='')}"
    response = RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)
    clear_oauth_state_cookie(response)
    return response


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@auth_signup_limit
async def signup(
    request: Request,
    response: Response,
    body: SignupRequest,
    service: AuthServiceDep,
) -> AuthResponse:
    """
    Register a new user and sign them in.

    Returns:
        User and token pair; the pair is also set as http-only cookies

    Raises:
        ValidationError: If fields are missing or malformed (400)
        ConflictError: If the email is already registered (409)
    """
    result = await service.signup(body.first_name, body.last_name, body.email, body.password)
    set_session_cookies(response, result.user, result.tokens.access_token, result.tokens.refresh_token)
    return _auth_response("User registered successfully", result)


@router.post("/login", response_model=AuthResponse)
@auth_login_limit
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthServiceDep,
) -> AuthResponse:
    """
    Password login.

    Raises:
        AuthenticationError: "Invalid email or password" for any mismatch (401)
    """
    result = await service.login(body.email, body.password)
    set_session_cookies(response, result.user, result.tokens.access_token, result.tokens.refresh_token)
    return _auth_response("Login successful", result)


@router.post("/refresh-token", response_model=RefreshTokenResponse)
@auth_refresh_limit
async def refresh_token(
    request: Request,
    response: Response,
    service: AuthServiceDep,
    body: RefreshTokenRequest | None = None,
) -> RefreshTokenResponse:
    """
    Mint a new access token.

    The refresh token is read from the body, or from the http-only cookie
    for sessions established through an OAuth redirect.
    """
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_TOKEN_COOKIE)
    access_token, _ = await service.refresh(token)
    set_access_cookie(response, access_token)
    return RefreshTokenResponse(message="Token refreshed successfully", access_token=access_token)


@router.post("/forgot-password", response_model=MessageResponse)
@auth_email_limit
async def forgot_password(
    request: Request,
    response: Response,
    body: EmailRequest,
    service: AuthServiceDep,
) -> MessageResponse:
    """Request a password reset link. The answer never reveals whether the account exists."""
    message = await service.forgot_password(body.email)
    return MessageResponse(message=message)


@router.post("/reset-password", response_model=UserResponse)
@api_default_limit
async def reset_password(
    request: Request,
    response: Response,
    body: ResetPasswordRequest,
    service: AuthServiceDep,
) -> UserResponse:
    """Set a new password with a reset token."""
    user = await service.reset_password(body.token, body.new_password)
    return UserResponse(message="Password reset successfully", user=UserPublic.model_validate(user))


@router.post(
    "/request-verification",
    response_model=MessageResponse,
    responses={status.HTTP_429_TOO_MANY_REQUESTS: {"model": RateLimitResponse}},
)
@auth_email_limit
async def request_verification(
    request: Request,
    response: Response,
    body: EmailRequest,
    service: AuthServiceDep,
) -> MessageResponse:
    """
    Request an email verification link.

    Limited to 3 requests per rolling 7 days per account (429 beyond that).
    """
    message = await service.request_email_verification(body.email)
    return MessageResponse(message=message)


@router.post("/verify-email", response_model=UserResponse)
@api_default_limit
async def verify_email(
    request: Request,
    response: Response,
    body: VerifyEmailRequest,
    service: AuthServiceDep,
) -> UserResponse:
    """Confirm an email address. Repeating the call on a verified account succeeds."""
    user, newly_verified = await service.verify_email(body.token)
    message = "Email verified successfully" if newly_verified else "Email already verified"
    return UserResponse(message=message, user=UserPublic.model_validate(user))


@router.get("/me", response_model=UserResponse)
@api_default_limit
async def get_current_user_info(
    request: Request,
    response: Response,
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    """Identity behind the presented access token (cookie or Bearer header)."""
    return UserResponse(
        message="User data retrieved successfully",
        user=UserPublic.model_validate(current_user),
    )


@router.post("/logout", response_model=MessageResponse)
@api_default_limit
async def logout(
    request: Request,
    response: Response,
    service: AuthServiceDep,
    access_token: Annotated[str | None, Depends(get_access_token)],
) -> MessageResponse:
    """
    Clear the session cookies.

    Tokens are not revoked server-side; an access token remains valid until
    it expires.
    """
    await service.logout(access_token)
    clear_session_cookies(response)
    return MessageResponse(message="Logout successful")


async def _complete_oauth(
    request: Request,
    service: AuthService,
    code: str | None,
    state: str | None,
    error: str | None,
    error_description: str | None,
    user_payload: dict[str, Any] | None,
) -> RedirectResponse:
    if error:
        logger.info("auth.oauth_provider_error", error=error)
        return _sign_in_redirect(error_description or error)

    provider_name, _, nonce = (state or "").partition(":")
    expected_nonce = request.cookies.get(OAUTH_STATE_COOKIE)
    if not nonce or not expected_nonce or not hmac.compare_digest(nonce, expected_nonce):
        logger.warning("auth.oauth_state_mismatch", provider=provider_name)
        return _sign_in_redirect("Sign-in session expired. Please try again.")

    try:
        result = await service.oauth_callback(provider_name, code, user_payload)
    except AuthError as e:
        logger.warning("auth.oauth_callback_failed", provider=provider_name, error=e.message)
        return _sign_in_redirect(e.message)

    # Tokens travel only as cookies; the sync page confirms them through /me
    response = RedirectResponse(
        f"{settings.FRONTEND_URL}{settings.OAUTH_SYNC_PATH}",
        status_code=status.HTTP_303_SEE_OTHER,
    )
    set_session_cookies(response, result.user, result.tokens.access_token, result.tokens.refresh_token)
    clear_oauth_state_cookie(response)
    return response


@router.get("/oauth/callback")
async def oauth_callback(
    request: Request,
    service: AuthServiceDep,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
) -> RedirectResponse:
    """OAuth redirect endpoint (query response mode)."""
    return await _complete_oauth(request, service, code, state, error, error_description, None)


@router.post("/oauth/callback")
async def oauth_callback_form_post(
    request: Request,
    service: AuthServiceDep,
    code: Annotated[str | None, Form()] = None,
    state: Annotated[str | None, Form()] = None,
    error: Annotated[str | None, Form()] = None,
    user: Annotated[str | None, Form()] = None,
) -> RedirectResponse:
    """OAuth redirect endpoint (form_post response mode, used by Apple)."""
    return await _complete_oauth(
        request,
        service,
        code,
        state,
        error,
        None,
        AppleOAuthProvider.parse_user_payload(user),
    )


@router.get("/oauth/{provider}")
async def oauth_start(provider: str, service: AuthServiceDep) -> RedirectResponse:
    """
    Start an OAuth flow.

    The `state` parameter carries the provider name and a nonce that is
    also kept in an http-only cookie and checked by the callback.
    """
    try:
        oauth_provider = service.get_provider(provider)
    except AuthError as e:
        return _sign_in_redirect(e.message)
    if not oauth_provider.is_configured:
        return _sign_in_redirect(f"{provider.title()} sign-in is not configured")

    nonce = secrets.token_urlsafe(24)
    response = RedirectResponse(
        oauth_provider.authorization_url(f"{oauth_provider.name}:{nonce}"),
        status_code=status.HTTP_302_FOUND,
    )
    set_oauth_state_cookie(response, nonce)
    return response
