"""Domain models for the session counter application."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the ``users`` table."""

    id: int
    username: str
    password: str
    created_at: datetime

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "password": self.password,
            "created_at": self.created_at.isoformat(),
        }

    @staticmethod
    def from_snapshot(data: Dict[str, Any]) -> "User":
        return User(
            id=int(data["id"]),
            username=str(data["username"]),
            password=str(data["password"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
        )


@dataclass(frozen=True)
class Session:
    """A server-side session bound to a snapshot of the user taken at login."""

    id: str
    user: User
    visit_count: int
    max_age_seconds: int
    expires_at: datetime

    def remaining_seconds(self, now: datetime | None = None) -> int:
        current = now or datetime.now(timezone.utc)
        return max(0, int((self.expires_at - current).total_seconds()))


class AuthFailureReason(str, Enum):
    USER_NOT_FOUND = "user_not_found"
    BAD_PASSWORD = "bad_password"


@dataclass(frozen=True)
class AuthFailure:
    """Returned by :meth:`SessionManager.login` when credentials are rejected."""

    reason: AuthFailureReason


class RejectionReason(str, Enum):
    MISSING_FIELDS = "missing_fields"
    PASSWORD_MISMATCH = "password_mismatch"
    USERNAME_TAKEN = "username_taken"


@dataclass(frozen=True)
class RegistrationRejected:
    """Returned by :meth:`SessionManager.register` when a sign-up is refused."""

    reason: RejectionReason


__all__ = [
    "AuthFailure",
    "AuthFailureReason",
    "RegistrationRejected",
    "RejectionReason",
    "Session",
    "User",
]
