"""Email service for password reset and verification emails."""

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import urlencode

import structlog

from authgate.core.config import settings

logger = structlog.get_logger()


def send_email(
    to_email: str,
    subject: str,
    html_content: str,
    text_content: Optional[str] = None,
) -> bool:
    """
    Send an email using SMTP.

    Args:
        to_email: Recipient email address
        subject: Email subject
        html_content: HTML content of the email
        text_content: Plain text fallback content

    Returns:
        True if email sent successfully, False otherwise
    """
    # Check if SMTP is configured
    if not settings.SMTP_HOST or not settings.EMAILS_FROM_EMAIL:
        logger.warning(
            "email.not_configured",
            reason="SMTP not configured, email not sent",
            to_email=to_email,
        )
        return False

    try:
        msg = MIMEMultipart("alternative")
        msg["From"] = f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
        msg["To"] = to_email
        msg["Subject"] = subject

        if text_content:
            msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        context = ssl.create_default_context()

        # Use SMTP_SSL (port 465) if port is 465, otherwise use SMTP with STARTTLS (port 587)
        if settings.SMTP_PORT == 465:
            with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, context=context, timeout=30) as server:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                server.sendmail(settings.EMAILS_FROM_EMAIL, to_email, msg.as_string())
        else:
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
                server.starttls(context=context)
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                server.sendmail(settings.EMAILS_FROM_EMAIL, to_email, msg.as_string())

        logger.info(
            "email.sent",
            to_email=to_email,
            subject=subject,
        )
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(
            "email.send_failed",
            to_email=to_email,
            subject=subject,
            error=str(e),
        )
        return False


def build_frontend_link(path: str, token: str) -> str:
    """Link into the frontend carrying a one-shot token as query parameter."""
    return f"{settings.FRONTEND_URL}{path}?{urlencode({'token': token})}"


def _action_email_html(title: str, greeting: str, body: str, button: str, link: str, footer: str) -> str:
    return f"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{title} - {settings.APP_NAME}</title>
</head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f3f4f6;">
    <div style="max-width: 600px; margin: 0 auto; background: #ffffff; border-radius: 8px;">
        <div style="padding: 40px; text-align: center; background: #667eea; border-radius: 8px 8px 0 0;">
            <h1 style="color: #ffffff; margin: 0;">{title}</h1>
        </div>
        <div style="padding: 40px;">
            <p style="color: #333333; font-size: 16px;">{greeting}</p>
            <p style="color: #555555; font-size: 14px;">{body}</p>
            <div style="text-align: center; margin: 30px 0;">
                <a href="{link}" style="background: #667eea; color: #ffffff; padding: 12px 30px; border-radius: 5px; text-decoration: none; font-weight: bold;">
                    {button}
                </a>
            </div>
            <p style="color: #999999; font-size: 12px; border-top: 1px solid #dddddd; padding-top: 20px;">
                Or copy and paste this link in your browser:<br>
                <code style="color: #667eea; word-break: break-all;">{link}</code>
            </p>
            <p style="color: #999999; font-size: 12px;">{footer}</p>
        </div>
    </div>
</body>
</html>
"""


def get_password_reset_email_html(first_name: str, reset_url: str) -> str:
    return _action_email_html(
        title="Password Reset",
        greeting=f"Hi {first_name},",
        body=(
            "We received a request to reset the password for your account. "
            "Click the button below to choose a new password. This link will expire in "
            f"{settings.PASSWORD_RESET_TOKEN_EXPIRE_HOURS} hour(s)."
        ),
        button="Reset Password",
        link=reset_url,
        footer="If you did not request a password reset, please ignore this email.",
    )


def get_password_reset_email_text(first_name: str, reset_url: str) -> str:
    return f"""
Hi {first_name},

We received a request to reset the password for your {settings.APP_NAME} account.
Open the link below to choose a new password:

{reset_url}

This link will expire in {settings.PASSWORD_RESET_TOKEN_EXPIRE_HOURS} hour(s).
If you did not request a password reset, please ignore this email.
"""


def send_password_reset_email(email: str, first_name: str, reset_token: str) -> bool:
    """
    Send password reset link to user.

    Args:
        email: User email address
        first_name: User's first name
        reset_token: Password reset token

    Returns:
        True if email sent successfully, False otherwise
    """
    reset_url = build_frontend_link("/auth/reset-password", reset_token)

    return send_email(
        to_email=email,
        subject=f"Reset your password - {settings.APP_NAME}",
        html_content=get_password_reset_email_html(first_name, reset_url),
        text_content=get_password_reset_email_text(first_name, reset_url),
    )


def get_verification_email_html(first_name: str, verification_url: str) -> str:
    return _action_email_html(
        title="Verify your email",
        greeting=f"Welcome {first_name}!",
        body=(
            f"Please confirm your email address by clicking the button below. "
            f"This link will expire in {settings.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS} hours."
        ),
        button="Verify Email",
        link=verification_url,
        footer="If you did not create an account, you can safely ignore this email.",
    )


def get_verification_email_text(first_name: str, verification_url: str) -> str:
    return f"""
Welcome {first_name}!

Please confirm your email address by opening the link below:

{verification_url}

This link will expire in {settings.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS} hours.
If you did not create an account, you can safely ignore this email.
"""


def send_verification_email(email: str, first_name: str, verification_token: str) -> bool:
    """
    Send email verification link to user.

    Args:
        email: User email address
        first_name: User's first name
        verification_token: Verification token

    Returns:
        True if email sent successfully, False otherwise
    """
    verification_url = build_frontend_link("/auth/verify-email", verification_token)

    return send_email(
        to_email=email,
        subject=f"Verify your email - {settings.APP_NAME}",
        html_content=get_verification_email_html(first_name, verification_url),
        text_content=get_verification_email_text(first_name, verification_url),
    )
