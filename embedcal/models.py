"""Domain models persisted by the embedcal backend."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict


@dataclass(frozen=True)
class User:
    """Represents an account stored in the credential table."""

    id: int
    username: str
    is_admin: bool
    created_at: datetime


@dataclass(frozen=True)
class Event:
    """A named calendar entry shown alongside the embed code."""

    id: int
    name: str
    datetime: str

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "name": self.name, "datetime": self.datetime}


@dataclass(frozen=True)
class SessionUser:
    """Snapshot of the user taken when the session was established."""

    id: int
    username: str
    is_admin: bool

    @classmethod
    def from_user(cls, user: User) -> "SessionUser":
        return cls(id=user.id, username=user.username, is_admin=user.is_admin)

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "username": self.username, "is_admin": self.is_admin}


__all__ = ["Event", "SessionUser", "User"]
