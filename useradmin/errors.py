"""Exceptions raised by the user administration service."""
from __future__ import annotations

from typing import Dict, List, Mapping, Sequence


class UserAdminError(Exception):
    """Base class for errors raised by the service."""


class ValidationFailed(UserAdminError):
    """One or more submitted fields failed validation.

    ``errors`` maps a field name (``ids.2`` for list elements) to the messages
    describing why it was rejected.
    """

    def __init__(self, errors: Mapping[str, Sequence[str]]) -> None:
        self.errors: Dict[str, List[str]] = {key: list(messages) for key, messages in errors.items()}
        super().__init__(", ".join(sorted(self.errors)) or "validation failed")


class UserNotFound(UserAdminError):
    def __init__(self, user_id: object) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class UsersNotFound(UserAdminError):
    """Raised by bulk operations when some of the requested ids do not exist."""

    def __init__(self, missing: Sequence[int]) -> None:
        self.missing = list(missing)
        super().__init__(f"Unknown user ids: {', '.join(str(item) for item in self.missing)}")


class DuplicateEmailError(UserAdminError):
    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("A user with that email already exists")


class InvalidSetupToken(UserAdminError):
    """The password setup token is unknown or has expired."""


__all__ = [
    "DuplicateEmailError",
    "InvalidSetupToken",
    "UserAdminError",
    "UserNotFound",
    "UsersNotFound",
    "ValidationFailed",
]
