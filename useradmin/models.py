"""Domain models for the user administration service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List


class Role(str, Enum):
    """Roles a user account can hold."""

    USER = "user"
    ADMIN = "admin"


class SortField(str, Enum):
    """Columns the user listing may be ordered by."""

    ID = "id"
    NAME = "name"
    EMAIL = "email"
    ROLE = "role"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the database."""

    id: int
    name: str
    email: str
    role: Role
    created_at: datetime
    updated_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_public_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class UserPage:
    """One window of the user listing plus the metadata needed to page through it."""

    users: List[User]
    total: int
    per_page: int
    page: int

    @property
    def last_page(self) -> int:
        return max(1, -(-self.total // self.per_page))

    @property
    def first_item(self) -> int | None:
        if not self.users:
            return None
        return (self.page - 1) * self.per_page + 1

    @property
    def last_item(self) -> int | None:
        first = self.first_item
        if first is None:
            return None
        return first + len(self.users) - 1


__all__ = ["Role", "SortField", "User", "UserPage"]
