"""CRUD operations for User model."""

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.security import (
    dummy_password_hash,
    generate_unusable_password,
    get_password_hash,
    hash_token,
    verify_password,
)
from authgate.models.user import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    """
    Get user by ID.

    Args:
        db: Database session
        user_id: User UUID

    Returns:
        User object or None if not found
    """
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def lock_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    """
    Re-read a user row with a row lock held until the next commit.

    Serializes read-modify-write sequences on a single user record.
    """
    result = await db.execute(
        select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """
    Get user by email address (case-insensitive).

    Args:
        db: Database session
        email: User email

    Returns:
        User object or None if not found
    """
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    is_email_verified: bool = False,
    auth_provider: str = "password",
) -> User:
    """
    Create new user.

    Args:
        db: Database session
        first_name: Given name
        last_name: Family name
        email: Email address (stored lower-cased)
        password: Plain text password, hashed before storage
        is_email_verified: Initial verification state
        auth_provider: How the account was created

    Returns:
        Created user object

    Raises:
        sqlalchemy.exc.IntegrityError: If the email is already taken
    """
    db_user = User(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        email=normalize_email(email),
        hashed_password=get_password_hash(password),
        is_email_verified=is_email_verified,
        auth_provider=auth_provider,
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user


async def authenticate_user(
    db: AsyncSession,
    email: str,
    password: str,
) -> User | None:
    """
    Authenticate user with email and password.

    A bcrypt comparison runs whether or not the account exists so that
    response timing does not reveal registered addresses.

    Args:
        db: Database session
        email: User email
        password: Plain text password

    Returns:
        User object if authentication successful, None otherwise
    """
    user = await get_user_by_email(db, email)
    if not user:
        verify_password(password, dummy_password_hash())
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def get_or_create_oauth_user(
    db: AsyncSession,
    *,
    email: str,
    first_name: str,
    last_name: str,
    provider: str,
) -> tuple[User, bool]:
    """
    Find a user by email or create an auto-verified one for an OAuth login.

    Returns:
        Tuple of (user, created)
    """
    user = await get_user_by_email(db, email)
    if user:
        if not user.is_email_verified:
            # The provider vouched for the address
            user.is_email_verified = True
            user.email_verification_token_hash = None
            user.email_verification_expires_at = None
            await db.commit()
            await db.refresh(user)
        return user, False

    user = await create_user(
        db,
        first_name=first_name,
        last_name=last_name,
        email=email,
        password=generate_unusable_password(),
        is_email_verified=True,
        auth_provider=provider,
    )
    return user, True


async def set_password_reset_token(
    db: AsyncSession,
    db_user: User,
    token: str,
    expires_at: datetime,
    *,
    commit: bool = True,
) -> User:
    """Store the digest and expiry of a freshly minted reset token."""
    db_user.password_reset_token_hash = hash_token(token)
    db_user.password_reset_expires_at = expires_at

    if commit:
        await db.commit()
        await db.refresh(db_user)
    return db_user


async def reset_password(db: AsyncSession, db_user: User, new_password: str) -> User:
    """
    Set a new password and clear the reset token in one update.

    Args:
        db: Database session
        db_user: User object (should be row-locked by the caller)
        new_password: Plain text password

    Returns:
        Updated user object
    """
    db_user.hashed_password = get_password_hash(new_password)
    db_user.password_reset_token_hash = None
    db_user.password_reset_expires_at = None

    await db.commit()
    await db.refresh(db_user)
    return db_user


async def set_verification_token(
    db: AsyncSession,
    db_user: User,
    token: str,
    expires_at: datetime,
    *,
    commit: bool = True,
) -> User:
    """Store the digest and expiry of a freshly minted verification token."""
    db_user.email_verification_token_hash = hash_token(token)
    db_user.email_verification_expires_at = expires_at

    if commit:
        await db.commit()
        await db.refresh(db_user)
    return db_user


async def mark_email_verified(db: AsyncSession, db_user: User) -> User:
    """
    Mark user email as verified.

    Args:
        db: Database session
        db_user: User object

    Returns:
        Updated user object
    """
    db_user.is_email_verified = True
    db_user.email_verification_token_hash = None
    db_user.email_verification_expires_at = None

    await db.commit()
    await db.refresh(db_user)
    return db_user
