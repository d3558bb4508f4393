"""Request validation for user mutations."""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Mapping, Type, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, ValidationError
from pydantic_core import PydanticCustomError

from .catalog import MessageCatalog
from .errors import ValidationFailed
from .models import Role

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 200

_FormT = TypeVar("_FormT", bound=BaseModel)

# pydantic error types mapped onto catalog keys under ``validation.``
_ERROR_KEYS = {
    "missing": "required",
    "string_type": "string",
    "string_too_short": "min_length",
    "string_too_long": "max_length",
    "value_error": "email",
    "enum": "in",
    "list_type": "array",
    "too_short": "required",
    "int_type": "integer",
    "int_parsing": "integer",
    "int_from_float": "integer",
}


class UserForm(BaseModel):
    """Fields accepted when creating or updating a user."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    email: EmailStr
    role: Role


def _reject_boolean(value: Any) -> Any:
    if isinstance(value, bool):
        raise PydanticCustomError("int_type", "Input should be a valid integer")
    return value


# Digit strings from form posts are accepted; JSON booleans are not ids.
UserId = Annotated[int, BeforeValidator(_reject_boolean)]


class BulkDeleteForm(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ids: List[UserId] = Field(..., min_length=1)


def _field_key(loc: tuple) -> str:
    return ".".join(str(part) for part in loc)


def _error_message(catalog: MessageCatalog, error: Mapping[str, Any]) -> str:
    loc = tuple(error.get("loc", ()))
    attribute = _field_key(loc).replace("_", " ") or "input"
    ctx = error.get("ctx") or {}
    key = _ERROR_KEYS.get(str(error.get("type")), "invalid")
    return catalog.get(
        f"validation.{key}",
        attribute=attribute,
        min=ctx.get("min_length", ""),
        max=ctx.get("max_length", ""),
    )


def errors_from_pydantic(exc: ValidationError, catalog: MessageCatalog) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        key = _field_key(tuple(error.get("loc", ()))) or "input"
        errors.setdefault(key, []).append(_error_message(catalog, error))
    return errors


def validate_form(form: Type[_FormT], data: Mapping[str, Any], catalog: MessageCatalog) -> _FormT:
    """Validate ``data`` against ``form`` or raise :class:`ValidationFailed`."""

    try:
        return form.model_validate(dict(data))
    except ValidationError as exc:
        raise ValidationFailed(errors_from_pydantic(exc, catalog)) from exc


def unique_email_error(catalog: MessageCatalog) -> Dict[str, List[str]]:
    return {"email": [catalog.get("validation.unique", attribute="email")]}


def missing_ids_errors(
    ids: List[int],
    missing: List[int],
    catalog: MessageCatalog,
) -> Dict[str, List[str]]:
    """Report every position in ``ids`` whose value is one of ``missing``."""

    missing_set = set(missing)
    errors: Dict[str, List[str]] = {}
    for index, user_id in enumerate(ids):
        if user_id in missing_set:
            key = f"ids.{index}"
            errors[key] = [catalog.get("validation.exists", attribute=key)]
    return errors


__all__ = [
    "BulkDeleteForm",
    "NAME_MAX_LENGTH",
    "NAME_MIN_LENGTH",
    "UserForm",
    "errors_from_pydantic",
    "missing_ids_errors",
    "unique_email_error",
    "validate_form",
]
