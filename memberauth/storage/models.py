from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class UserStatus(str, Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class UserRecord:
    """Row of the user table as far as authentication is concerned."""

    username: str
    password_hash: str
    member_since: datetime
    status: UserStatus = UserStatus.UNVERIFIED
    admin: bool = False


@dataclass(frozen=True)
class AuthToken:
    """Identity claims carried by access and refresh tokens.

    ``status`` and ``admin`` are snapshots from mint time. ``admin`` is
    ``None`` for regular users so the claim is left off the wire entirely.
    """

    username: str
    type: TokenType
    status: UserStatus
    admin: Optional[bool] = None

    @property
    def is_admin(self) -> bool:
        return bool(self.admin)

    def to_claims(self) -> Dict[str, Any]:
        claims: Dict[str, Any] = {
            "username": self.username,
            "type": self.type.value,
            "status": self.status.value,
        }
        if self.admin:
            claims["admin"] = True
        return claims

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "AuthToken":
        """Build from a decoded payload; raises KeyError/ValueError on bad shape."""
        admin = claims.get("admin")
        if admin is not None and admin is not True:
            raise ValueError("admin claim must be true when present")
        return cls(
            username=str(claims["username"]),
            type=TokenType(claims["type"]),
            status=UserStatus(claims["status"]),
            admin=admin,
        )


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of verifying a refresh token.

    ``token`` is whichever refresh token is current for the session after the
    call; ``rotated_token`` is set only when a replacement was minted.
    """

    claims: AuthToken
    token: str
    rotated_token: Optional[str] = None

    @property
    def rotated(self) -> bool:
        return self.rotated_token is not None


@dataclass(frozen=True)
class SessionTokens:
    """Credentials handed back to the HTTP layer to be set as cookies."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
