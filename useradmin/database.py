"""SQLite-backed persistence for user accounts."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from .config import resolve_database_path
from .errors import DuplicateEmailError, InvalidSetupToken, UserNotFound, UsersNotFound
from .listing import LIKE_ESCAPE_CHAR, ListQuery
from .models import Role, SortField, User
from .security import (
    generate_initial_secret,
    generate_setup_token,
    hash_password,
    hash_setup_token,
    verify_password,
)

logger = logging.getLogger("useradmin.database")

# Maps the sort allow-list onto real column names; nothing else reaches ORDER BY.
_SORT_COLUMNS = {
    SortField.ID: "id",
    SortField.NAME: "name",
    SortField.EMAIL: "email",
    SortField.ROLE: "role",
    SortField.CREATED_AT: "created_at",
    SortField.UPDATED_AT: "updated_at",
}


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class Database:
    """Simple wrapper around SQLite for persisting users."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS password_setup_tokens (
                    token_hash TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_password_setup_tokens_user_id
                    ON password_setup_tokens(user_id);
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: str,
        email: str,
        role: Role = Role.USER,
        *,
        password: Optional[str] = None,
    ) -> User:
        """Insert a new user.

        Without ``password`` the account receives a random secret nobody
        knows; the owner chooses a real password through a setup token.
        """

        created_at = _current_timestamp()
        password_hash = hash_password(password if password else generate_initial_secret())
        normalized_email = normalize_email(email)
        role = Role(role)

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, password_hash, role, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        name,
                        normalized_email,
                        password_hash,
                        role.value,
                        _serialize_datetime(created_at),
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateEmailError(normalized_email) from exc

            user_id = int(cursor.lastrowid)

        return User(
            id=user_id,
            name=name,
            email=normalized_email,
            role=role,
            created_at=created_at,
            updated_at=created_at,
        )

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def email_taken(self, email: str, *, exclude_user_id: Optional[int] = None) -> bool:
        """Return ``True`` if another account already uses ``email``."""

        query = "SELECT 1 FROM users WHERE email = ?"
        params: List[object] = [normalize_email(email)]
        if exclude_user_id is not None:
            query += " AND id != ?"
            params.append(exclude_user_id)

        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return row is not None

    def count_users(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM users").fetchone()
        return int(row[0])

    def list_users(self, query: Optional[ListQuery] = None) -> Tuple[List[User], int]:
        """Return one page of users matching ``query`` and the total match count."""

        if query is None:
            query = ListQuery()

        where = ""
        params: List[object] = []
        pattern = query.search_pattern
        if pattern is not None:
            where = (
                f" WHERE name LIKE ? ESCAPE '{LIKE_ESCAPE_CHAR}'"
                f" OR email LIKE ? ESCAPE '{LIKE_ESCAPE_CHAR}'"
            )
            params.extend([pattern, pattern])

        if query.sort_field is not None:
            column = _SORT_COLUMNS[query.sort_field]
            direction = "ASC" if query.ascending else "DESC"
            order_by = f" ORDER BY {column} {direction}, id ASC"
        else:
            order_by = " ORDER BY id ASC"

        with self._connect() as conn:
            total = int(conn.execute(f"SELECT COUNT(*) FROM users{where}", params).fetchone()[0])
            rows = conn.execute(
                f"SELECT * FROM users{where}{order_by} LIMIT ? OFFSET ?",
                [*params, query.per_page, query.offset],
            ).fetchall()

        return [self._row_to_user(row) for row in rows], total

    def update_user(
        self,
        user_id: int,
        *,
        name: str,
        email: str,
        role: Role,
    ) -> User:
        """Update the profile fields of an existing user; the password is left untouched."""

        normalized_email = normalize_email(email)
        updated_at = _current_timestamp()

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    "UPDATE users SET name = ?, email = ?, role = ?, updated_at = ? WHERE id = ?",
                    (name, normalized_email, Role(role).value, _serialize_datetime(updated_at), user_id),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateEmailError(normalized_email) from exc
            if cursor.rowcount == 0:
                raise UserNotFound(user_id)

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise UserNotFound(user_id)
        return refreshed

    def delete_user(self, user_id: int) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            if cursor.rowcount == 0:
                raise UserNotFound(user_id)

    def delete_users(self, user_ids: Sequence[int]) -> int:
        """Delete every user in ``user_ids`` or none of them.

        Raises :class:`UsersNotFound` listing the unknown ids when any id does
        not exist; the check and the delete share one write transaction.
        """

        unique_ids = sorted(set(user_ids))
        if not unique_ids:
            return 0

        placeholders = ", ".join("?" for _ in unique_ids)
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                f"SELECT id FROM users WHERE id IN ({placeholders})",
                unique_ids,
            ).fetchall()
            existing = {int(row["id"]) for row in rows}
            missing = [user_id for user_id in unique_ids if user_id not in existing]
            if missing:
                raise UsersNotFound(missing)

            cursor = conn.execute(
                f"DELETE FROM users WHERE id IN ({placeholders})",
                unique_ids,
            )
            deleted = cursor.rowcount

        logger.debug("Deleted %s user rows in one transaction", deleted)
        return deleted

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        if not verify_password(password, row["password_hash"]):
            return None
        return self._row_to_user(row)

    # ------------------------------------------------------------------
    # Password setup tokens
    # ------------------------------------------------------------------
    def create_password_setup_token(self, user_id: int, *, ttl: timedelta) -> str:
        """Issue a single-use token that lets the account owner choose a password."""

        token = generate_setup_token()
        created_at = _current_timestamp()
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO password_setup_tokens (token_hash, user_id, expires_at, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        hash_setup_token(token),
                        user_id,
                        _serialize_datetime(created_at + ttl),
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise UserNotFound(user_id) from exc
        return token

    def get_user_for_setup_token(self, token: str) -> User:
        with self._connect() as conn:
            return self._setup_token_owner(conn, token)

    def complete_password_setup(self, token: str, password: str) -> User:
        """Set the password for the token's owner and revoke all of their setup tokens.

        The token check, the password update and the revocation share one
        write transaction, so a token can be redeemed only once.
        """

        password_hash = hash_password(password)
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            user = self._setup_token_owner(conn, token)
            conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, _serialize_datetime(_current_timestamp()), user.id),
            )
            conn.execute("DELETE FROM password_setup_tokens WHERE user_id = ?", (user.id,))
        return user

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _setup_token_owner(self, conn: sqlite3.Connection, token: str) -> User:
        row = conn.execute(
            """
            SELECT users.*, password_setup_tokens.expires_at AS token_expires_at
              FROM password_setup_tokens
              JOIN users ON users.id = password_setup_tokens.user_id
             WHERE password_setup_tokens.token_hash = ?
            """,
            (hash_setup_token(token),),
        ).fetchone()

        if row is None:
            raise InvalidSetupToken("Unknown password setup token")
        if _parse_datetime(str(row["token_expires_at"])) <= _current_timestamp():
            raise InvalidSetupToken("Password setup token has expired")
        return self._row_to_user(row)

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            role=Role(str(row["role"])),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )


__all__ = ["Database", "normalize_email", "resolve_database_path"]
