"""Credential helpers for user accounts and password setup links."""
from __future__ import annotations

import hashlib
import secrets

from passlib.context import CryptContext

PASSWORD_MIN_LENGTH = 12

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def generate_initial_secret() -> str:
    """Return a random secret for accounts that have not chosen a password yet."""

    return secrets.token_urlsafe(32)


def generate_setup_token() -> str:
    return secrets.token_urlsafe(32)


def hash_setup_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


__all__ = [
    "PASSWORD_MIN_LENGTH",
    "generate_initial_secret",
    "generate_setup_token",
    "hash_password",
    "hash_setup_token",
    "verify_password",
]
