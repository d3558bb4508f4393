from __future__ import annotations

import pytest

from useradmin.listing import DEFAULT_PER_PAGE, ListQuery, escape_like, resolve_per_page
from useradmin.models import SortField


@pytest.mark.parametrize("value", [None, "", "  ", "5", "15", "100", "abc", "-10", "0", "20.5"])
def test_per_page_outside_allowed_choices_falls_back_to_default(value) -> None:
    assert resolve_per_page(value) == DEFAULT_PER_PAGE


@pytest.mark.parametrize("value,expected", [("10", 10), ("20", 20), ("50", 50), (" 50 ", 50)])
def test_allowed_per_page_values_are_kept(value: str, expected: int) -> None:
    assert resolve_per_page(value) == expected


def test_empty_params_use_defaults() -> None:
    query = ListQuery.from_params({})

    assert query.search is None
    assert query.sort_field is None
    assert query.per_page == 10
    assert query.page == 1
    assert query.offset == 0


def test_sort_order_one_is_ascending_and_anything_else_descending() -> None:
    ascending = ListQuery.from_params({"sortField": "name", "sortOrder": "1"})
    assert ascending.sort_field is SortField.NAME
    assert ascending.ascending is True

    for order in ("1.0", " 1 ", "1e0"):
        assert ListQuery.from_params({"sortField": "name", "sortOrder": order}).ascending is True

    for order in ("-1", "0", "2", "1.5", "desc"):
        query = ListQuery.from_params({"sortField": "name", "sortOrder": order})
        assert query.sort_field is SortField.NAME
        assert query.ascending is False


def test_sort_requires_both_parameters() -> None:
    assert ListQuery.from_params({"sortField": "email"}).sort_field is None
    assert ListQuery.from_params({"sortOrder": "1"}).sort_field is None
    assert ListQuery.from_params({"sortField": "email", "sortOrder": ""}).sort_field is None


def test_unknown_sort_field_is_ignored() -> None:
    query = ListQuery.from_params({"sortField": "password_hash", "sortOrder": "1"})
    assert query.sort_field is None

    injected = ListQuery.from_params({"sortField": "name; DROP TABLE users", "sortOrder": "-1"})
    assert injected.sort_field is None
    assert injected.ascending is True


def test_page_is_clamped_to_first_page() -> None:
    assert ListQuery.from_params({"page": "0"}).page == 1
    assert ListQuery.from_params({"page": "-3"}).page == 1
    assert ListQuery.from_params({"page": "two"}).page == 1

    query = ListQuery.from_params({"page": "3", "perPage": "20"})
    assert query.page == 3
    assert query.offset == 40


def test_blank_search_is_dropped_and_terms_are_trimmed() -> None:
    assert ListQuery.from_params({"search": "   "}).search is None
    assert ListQuery.from_params({"search": " ali "}).search == "ali"


def test_search_pattern_escapes_like_wildcards() -> None:
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"

    query = ListQuery.from_params({"search": "a_b"})
    assert query.search_pattern == "%a\\_b%"


def test_filters_echo_effective_values() -> None:
    query = ListQuery.from_params(
        {"search": "bob", "sortField": "created_at", "sortOrder": "1", "perPage": "7"}
    )

    assert query.to_filters() == {
        "search": "bob",
        "sortField": "created_at",
        "sortOrder": 1,
        "perPage": 10,
        "page": 1,
    }
