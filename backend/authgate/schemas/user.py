"""User Pydantic schemas for API responses."""

import uuid
from datetime import datetime

from pydantic import ConfigDict

from authgate.schemas.common import CamelModel


class UserPublic(CamelModel):
    """User as exposed to clients (and cached client-side)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    full_name: str
    created_at: datetime
    is_email_verified: bool = False


class UserResponse(CamelModel):
    """Response of /me and verification endpoints."""

    message: str
    user: UserPublic
