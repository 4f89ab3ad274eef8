"""CRUD operations for AuthAttempt model."""

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.models.auth_attempt import AuthAttempt


async def get_attempts_since(
    db: AsyncSession,
    user_id: uuid.UUID,
    operation: str,
    since: datetime,
) -> list[datetime]:
    """
    Get timestamps of attempts newer than `since`, oldest first.

    Args:
        db: Database session
        user_id: User UUID
        operation: Operation name
        since: Exclusive lower bound

    Returns:
        Attempt timestamps in ascending order
    """
    result = await db.execute(
        select(AuthAttempt.created_at)
        .where(
            AuthAttempt.user_id == user_id,
            AuthAttempt.operation == operation,
            AuthAttempt.created_at > since,
        )
        .order_by(AuthAttempt.created_at.asc())
    )
    return list(result.scalars().all())


async def add_attempt(
    db: AsyncSession,
    user_id: uuid.UUID,
    operation: str,
    created_at: datetime,
    *,
    commit: bool = True,
) -> AuthAttempt:
    """
    Append an attempt record.

    Args:
        db: Database session
        user_id: User UUID
        operation: Operation name
        created_at: Attempt time
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        Created attempt
    """
    attempt = AuthAttempt(user_id=user_id, operation=operation, created_at=created_at)
    db.add(attempt)
    if commit:
        await db.commit()
    else:
        await db.flush()
    return attempt
