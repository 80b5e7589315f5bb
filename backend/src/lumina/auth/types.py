"""Type definitions for authentication."""

from dataclasses import dataclass
from typing import Any


@dataclass
class TokenClaims:
    """Claims embedded in a JWT token.

    Attributes:
        user_id: The authenticated user's ID
        exp: Token expiration timestamp
        iat: Token issued-at timestamp
        type: Token type ("access", "refresh" or "reset")
        jti: Unique token ID, used for revocation on logout
    """

    user_id: str
    exp: int = 0
    iat: int = 0
    type: str = "access"
    jti: str = ""


@dataclass
class TokenPair:
    """What login and refresh hand back to the client."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = 900


@dataclass
class AuthUser:
    """The authenticated caller, loaded from the users table per request."""

    id: int
    email: str
    name: str
    email_verified_at: str | None = None

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at is not None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AuthUser":
        return cls(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            email_verified_at=row.get("email_verified_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "email_verified_at": self.email_verified_at,
        }
