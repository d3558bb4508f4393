"""User listing and mutation handlers behind the management screen."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping, Optional

from .catalog import MessageCatalog
from .database import Database
from .errors import DuplicateEmailError, UserNotFound, UsersNotFound, ValidationFailed
from .listing import ListQuery
from .models import User, UserPage
from .validation import (
    BulkDeleteForm,
    UserForm,
    missing_ids_errors,
    unique_email_error,
    validate_form,
)

logger = logging.getLogger("useradmin.users")

DEFAULT_SETUP_TTL = timedelta(hours=48)


@dataclass(frozen=True)
class CreatedUser:
    """A freshly created account and the token its owner uses to choose a password."""

    user: User
    setup_token: str


class UserService:
    """Validate-then-persist operations behind the user management screen."""

    def __init__(
        self,
        database: Database,
        catalog: MessageCatalog,
        *,
        setup_ttl: timedelta = DEFAULT_SETUP_TTL,
    ) -> None:
        self._database = database
        self._catalog = catalog
        self._setup_ttl = setup_ttl

    def list(self, params: Mapping[str, str]) -> tuple[ListQuery, UserPage]:
        query = ListQuery.from_params(params)
        users, total = self._database.list_users(query)
        return query, UserPage(users=users, total=total, per_page=query.per_page, page=query.page)

    def get(self, user_id: int) -> User:
        user = self._database.get_user(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def _validate_user(self, data: Mapping[str, Any], *, exclude_user_id: Optional[int] = None) -> UserForm:
        """Validate ``data``, reporting a taken email alongside any other field errors."""

        try:
            form = validate_form(UserForm, data, self._catalog)
        except ValidationFailed as exc:
            email = data.get("email")
            if (
                "email" not in exc.errors
                and isinstance(email, str)
                and self._database.email_taken(email, exclude_user_id=exclude_user_id)
            ):
                raise ValidationFailed({**exc.errors, **unique_email_error(self._catalog)}) from exc
            raise

        if self._database.email_taken(form.email, exclude_user_id=exclude_user_id):
            raise ValidationFailed(unique_email_error(self._catalog))
        return form

    def create(self, data: Mapping[str, Any]) -> CreatedUser:
        form = self._validate_user(data)

        try:
            user = self._database.create_user(form.name, form.email, form.role)
        except DuplicateEmailError as exc:
            # Lost the race against a concurrent insert.
            raise ValidationFailed(unique_email_error(self._catalog)) from exc

        token = self._database.create_password_setup_token(user.id, ttl=self._setup_ttl)
        logger.info("Created user %s with role %s", user.id, user.role.value)
        return CreatedUser(user=user, setup_token=token)

    def update(self, user_id: int, data: Mapping[str, Any]) -> User:
        target = self.get(user_id)
        form = self._validate_user(data, exclude_user_id=target.id)

        try:
            updated = self._database.update_user(
                target.id,
                name=form.name,
                email=form.email,
                role=form.role,
            )
        except DuplicateEmailError as exc:
            raise ValidationFailed(unique_email_error(self._catalog)) from exc

        logger.info("Updated user %s", updated.id)
        return updated

    def delete(self, user_id: int) -> None:
        self._database.delete_user(user_id)
        logger.info("Deleted user %s", user_id)

    def bulk_delete(self, data: Mapping[str, Any]) -> int:
        """Delete every listed user, or none when any id is invalid."""

        form = validate_form(BulkDeleteForm, data, self._catalog)
        try:
            deleted = self._database.delete_users(form.ids)
        except UsersNotFound as exc:
            raise ValidationFailed(missing_ids_errors(form.ids, exc.missing, self._catalog)) from exc

        logger.info("Bulk deleted %s users", deleted)
        return deleted

    def issue_setup_token(self, user_id: int, *, ttl: Optional[timedelta] = None) -> str:
        self.get(user_id)
        return self._database.create_password_setup_token(user_id, ttl=ttl or self._setup_ttl)


__all__ = ["CreatedUser", "DEFAULT_SETUP_TTL", "UserService"]
