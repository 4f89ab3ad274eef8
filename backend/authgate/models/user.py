"""User database model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from authgate.core.database import Base
from authgate.core.security import utcnow


class User(Base):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    last_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    auth_provider: Mapped[str] = mapped_column(
        String(20),
        default="password",
        nullable=False,
    )  # password, google, apple
    is_email_verified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Special-purpose tokens are stored as SHA-256 digests
    email_verification_token_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    email_verification_expires_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    password_reset_token_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    password_reset_expires_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    # Relationships
    auth_attempts: Mapped[list["AuthAttempt"]] = relationship(  # type: ignore  # noqa: F821
        "AuthAttempt",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        """String representation."""
        return f"<User {self.email}>"
