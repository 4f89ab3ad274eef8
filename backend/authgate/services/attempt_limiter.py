"""Rolling-window quota for sensitive per-user operations."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.core.config import settings
from authgate.core.security import utcnow
from authgate.crud import auth_attempt as attempt_crud
from authgate.models.auth_attempt import AttemptOperation

logger = structlog.get_logger()


@dataclass(frozen=True)
class AttemptStatus:
    """Outcome of a quota check."""

    allowed: bool
    remaining: int
    next_reset_time: datetime | None = None


class AttemptLimiter:
    """
    Allows at most `max_attempts` per user and operation within a trailing window.

    Only attempts younger than the window count, so old records stop
    mattering without a background sweep. The window rolls with each
    attempt instead of resetting on calendar boundaries.

    Callers must `check` first and `record` only when allowed; the recorded
    attempt never counts toward the check that authorised it.
    """

    def __init__(
        self,
        db: AsyncSession,
        max_attempts: int | None = None,
        window: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the limiter.

        Args:
            db: Database session holding the attempt log
            max_attempts: Quota per window (defaults to settings)
            window: Window length (defaults to settings)
            clock: Returns the current naive UTC time
        """
        self.db = db
        self.max_attempts = max_attempts or settings.ATTEMPT_LIMIT_MAX_ATTEMPTS
        self.window = window or timedelta(days=settings.ATTEMPT_LIMIT_WINDOW_DAYS)
        self._clock = clock

    async def check(self, subject_id: uuid.UUID, operation: AttemptOperation | str) -> AttemptStatus:
        """
        Count active attempts for `operation` and decide whether another is allowed.

        Args:
            subject_id: User UUID
            operation: Gated operation

        Returns:
            AttemptStatus; `next_reset_time` (when the oldest active attempt
            leaves the window) is set only when not allowed
        """
        op = AttemptOperation(operation).value
        now = self._clock()
        active = await attempt_crud.get_attempts_since(self.db, subject_id, op, now - self.window)

        if len(active) < self.max_attempts:
            return AttemptStatus(allowed=True, remaining=self.max_attempts - len(active))

        next_reset_time = active[0] + self.window
        logger.info(
            "attempt_limiter.denied",
            user_id=str(subject_id),
            operation=op,
            active_attempts=len(active),
            next_reset_time=next_reset_time.isoformat(),
        )
        return AttemptStatus(allowed=False, remaining=0, next_reset_time=next_reset_time)

    async def record(
        self,
        subject_id: uuid.UUID,
        operation: AttemptOperation | str,
        *,
        commit: bool = True,
    ) -> datetime:
        """
        Append an attempt stamped with the current time.

        Args:
            subject_id: User UUID
            operation: Gated operation
            commit: Commit immediately; pass False to join the caller's transaction

        Returns:
            Timestamp of the recorded attempt
        """
        attempt = await attempt_crud.add_attempt(
            self.db,
            subject_id,
            AttemptOperation(operation).value,
            self._clock(),
            commit=commit,
        )
        return attempt.created_at
