"""Turn untrusted list parameters into a safe user listing query."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from .models import SortField

PER_PAGE_CHOICES = (10, 20, 50)
DEFAULT_PER_PAGE = 10

LIKE_ESCAPE_CHAR = "\\"
_LIKE_SPECIAL = {"%", "_", LIKE_ESCAPE_CHAR}


def _filled(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


def _is_one(value: str) -> bool:
    try:
        return float(value.strip()) == 1
    except ValueError:
        return False


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def resolve_per_page(value: Optional[str]) -> int:
    """Return the requested page size, or the default when it is not an allowed choice."""

    parsed = _parse_int(value)
    if parsed not in PER_PAGE_CHOICES:
        return DEFAULT_PER_PAGE
    return parsed


def resolve_page(value: Optional[str]) -> int:
    parsed = _parse_int(value)
    if parsed is None or parsed < 1:
        return 1
    return parsed


def resolve_sort_field(value: Optional[str]) -> Optional[SortField]:
    if not _filled(value):
        return None
    try:
        return SortField(value.strip())
    except ValueError:
        return None


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ``value`` only matches literally.

    The resulting pattern must be used with ``ESCAPE '\\'``.
    """

    escaped = []
    for ch in value:
        if ch in _LIKE_SPECIAL:
            escaped.append(LIKE_ESCAPE_CHAR)
        escaped.append(ch)
    return "".join(escaped)


@dataclass(frozen=True)
class ListQuery:
    """Validated description of one user listing request."""

    search: Optional[str] = None
    sort_field: Optional[SortField] = None
    ascending: bool = True
    per_page: int = DEFAULT_PER_PAGE
    page: int = 1

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def search_pattern(self) -> Optional[str]:
        if self.search is None:
            return None
        return f"%{escape_like(self.search)}%"

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "ListQuery":
        """Build a query from request parameters.

        ``sortField``/``sortOrder`` only apply when both are present; a
        ``sortOrder`` numerically equal to ``1`` sorts ascending and anything
        else descending.
        Unknown sort fields and page sizes outside :data:`PER_PAGE_CHOICES`
        are ignored rather than rejected.
        """

        search = params.get("search")
        sort_field_raw = params.get("sortField")
        sort_order_raw = params.get("sortOrder")

        sort_field: Optional[SortField] = None
        ascending = True
        if _filled(sort_field_raw) and _filled(sort_order_raw):
            sort_field = resolve_sort_field(sort_field_raw)
            ascending = _is_one(sort_order_raw)

        return cls(
            search=search.strip() if _filled(search) else None,
            sort_field=sort_field,
            ascending=ascending if sort_field is not None else True,
            per_page=resolve_per_page(params.get("perPage")),
            page=resolve_page(params.get("page")),
        )

    def to_filters(self) -> dict:
        """Echo the effective parameters back to the client."""

        return {
            "search": self.search,
            "sortField": self.sort_field.value if self.sort_field else None,
            "sortOrder": (1 if self.ascending else -1) if self.sort_field else None,
            "perPage": self.per_page,
            "page": self.page,
        }


__all__ = [
    "DEFAULT_PER_PAGE",
    "LIKE_ESCAPE_CHAR",
    "ListQuery",
    "PER_PAGE_CHOICES",
    "escape_like",
    "resolve_page",
    "resolve_per_page",
    "resolve_sort_field",
]
