"""Client-side projection of the signed-in user."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SessionTokens:
    access_token: str
    refresh_token: str | None = None


@dataclass(frozen=True)
class SessionIdentity:
    """
    The user as cached by the client.

    Built from the camelCase `user` object the API returns; only ever
    written to the cache after the server vouched for it.
    """

    user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    created_at: str | None = None
    is_email_verified: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "SessionIdentity":
        """
        Parse an API `user` object.

        Raises:
            ValueError: If the payload lacks an id or email
        """
        user_id = data.get("id") or data.get("userId")
        email = data.get("email")
        if not user_id or not email:
            raise ValueError("User payload requires id and email")
        return cls(
            user_id=str(user_id),
            email=str(email),
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
            created_at=data.get("createdAt"),
            is_email_verified=bool(data.get("isEmailVerified", False)),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.user_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "fullName": self.full_name,
            "createdAt": self.created_at,
            "isEmailVerified": self.is_email_verified,
        }
