"""Externalised user-facing messages loaded from YAML locale files."""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Mapping

import yaml

logger = logging.getLogger("useradmin.catalog")

LOCALE_DIR = Path(__file__).resolve().parent / "locales"
DEFAULT_LOCALE = "en"


class MessageCatalog:
    """Look up messages by dotted key, falling back to the default locale."""

    def __init__(self, messages: Mapping[str, str], fallback: Mapping[str, str] | None = None) -> None:
        self._messages = dict(messages)
        self._fallback = dict(fallback or {})

    def get(self, key: str, **params: object) -> str:
        template = self._messages.get(key)
        if template is None:
            template = self._fallback.get(key)
        if template is None:
            logger.warning("Missing message catalog entry '%s'", key)
            return key
        try:
            return template.format(**params)
        except (KeyError, IndexError):
            logger.warning("Message '%s' could not be formatted with %s", key, sorted(params))
            return template


def _flatten(data: Mapping[str, object], prefix: str = "") -> Dict[str, str]:
    flat: Dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, prefix=f"{name}."))
        else:
            flat[name] = str(value)
    return flat


def _load_locale_file(locale: str, directory: Path) -> Dict[str, str]:
    path = directory / f"{locale}.yaml"
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Locale file {path} must contain a mapping")
    return _flatten(raw)


@lru_cache(maxsize=None)
def load_catalog(locale: str = DEFAULT_LOCALE, directory: Path = LOCALE_DIR) -> MessageCatalog:
    """Load the catalog for ``locale``; unknown locales raise ``ValueError``."""

    if not (directory / f"{locale}.yaml").is_file():
        raise ValueError(f"No message catalog for locale '{locale}'")

    messages = _load_locale_file(locale, directory)
    fallback = _load_locale_file(DEFAULT_LOCALE, directory) if locale != DEFAULT_LOCALE else None
    return MessageCatalog(messages, fallback)


__all__ = ["DEFAULT_LOCALE", "LOCALE_DIR", "MessageCatalog", "load_catalog"]
