"""Configuration management for the user administration service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml

_DEFAULT_SESSION_MAX_AGE = 60 * 60 * 24 * 7
_DEFAULT_SETUP_TTL_HOURS = 48

_ENV_KEYS = {
    "database_path": "USERADMIN_DB_PATH",
    "session_secret": "USERADMIN_SESSION_SECRET",
    "session_secure": "USERADMIN_SESSION_SECURE",
    "session_max_age": "USERADMIN_SESSION_MAX_AGE",
    "trusted_proxies": "USERADMIN_TRUSTED_PROXIES",
    "app_name": "USERADMIN_APP_NAME",
    "locale": "USERADMIN_LOCALE",
    "password_setup_ttl_hours": "USERADMIN_PASSWORD_SETUP_TTL_HOURS",
    "public_url": "USERADMIN_PUBLIC_URL",
}


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "useradmin.sqlite3").resolve(strict=False)


def _env_flag(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(key: str, value: object) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Configuration value '{key}' must be an integer") from exc
    if parsed <= 0:
        raise ValueError(f"Configuration value '{key}' must be positive")
    return parsed


def _parse_proxies(value: object) -> List[str] | str:
    if value is None:
        return "*"
    if isinstance(value, (list, tuple)):
        hosts = [str(item).strip() for item in value if str(item).strip()]
    else:
        hosts = [item.strip() for item in str(value).split(",") if item.strip()]
    return hosts or "*"


@dataclass(frozen=True)
class Settings:
    """Runtime settings shared by the CLI and the web application."""

    database_path: Path
    session_secret: Optional[str] = None
    session_secure: bool = False
    session_max_age: int = _DEFAULT_SESSION_MAX_AGE
    trusted_proxies: List[str] | str = "*"
    app_name: str = "User Admin"
    locale: str = "en"
    password_setup_ttl: timedelta = field(default=timedelta(hours=_DEFAULT_SETUP_TTL_HOURS))
    public_url: Optional[str] = None

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from merged file/environment values."""

        unknown = set(data.keys()) - set(_ENV_KEYS.keys())
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        raw_db = data.get("database_path")
        secret = data.get("session_secret")
        public_url = data.get("public_url")
        ttl_hours = data.get("password_setup_ttl_hours")

        return Settings(
            database_path=resolve_database_path(str(raw_db) if raw_db else None),
            session_secret=str(secret) if secret else None,
            session_secure=_env_flag(data.get("session_secure"), False),
            session_max_age=(
                _parse_int("session_max_age", data["session_max_age"])
                if data.get("session_max_age") is not None
                else _DEFAULT_SESSION_MAX_AGE
            ),
            trusted_proxies=_parse_proxies(data.get("trusted_proxies")),
            app_name=str(data.get("app_name") or "User Admin"),
            locale=str(data.get("locale") or "en").strip().lower(),
            password_setup_ttl=timedelta(
                hours=(
                    _parse_int("password_setup_ttl_hours", ttl_hours)
                    if ttl_hours is not None
                    else _DEFAULT_SETUP_TTL_HOURS
                )
            ),
            public_url=str(public_url).strip().rstrip("/") if public_url else None,
        )


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Load settings from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return dict(raw)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from ``USERADMIN_*`` variables layered over ``USERADMIN_CONFIG``."""

    env = os.environ if environ is None else environ

    values: Dict[str, object] = {}
    config_file = env.get("USERADMIN_CONFIG")
    if config_file:
        values.update(load_config_file(Path(config_file).expanduser()))

    for key, env_name in _ENV_KEYS.items():
        env_value = env.get(env_name)
        if env_value is not None and env_value.strip() != "":
            values[key] = env_value

    return Settings.from_dict(values)


__all__ = ["Settings", "load_config_file", "load_settings", "resolve_database_path"]
