"""Append-only log of rate-limited auth operations."""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authgate.core.database import Base
from authgate.core.security import utcnow


class AttemptOperation(str, Enum):
    """Operations gated by the attempt limiter."""

    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


class AuthAttempt(Base):
    """
    One recorded attempt at a sensitive operation.

    Rows are never updated. Rows older than the limiter window are inert
    and are left for external retention to purge.
    """

    __tablename__ = "auth_attempts"
    __table_args__ = (
        Index("ix_auth_attempts_user_operation_created", "user_id", "operation", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    operation: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        nullable=False,
    )

    user: Mapped["User"] = relationship(  # type: ignore  # noqa: F821
        "User",
        back_populates="auth_attempts",
    )

    def __repr__(self) -> str:
        return f"<AuthAttempt {self.operation} user={self.user_id} at={self.created_at}>"
