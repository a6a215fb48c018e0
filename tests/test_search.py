from datetime import datetime

import pytest

from bizdash.search import EntryView, SearchFilter, apply_search, build_filters

ENTRIES = [
    {
        "id": 1,
        "date": "2024-01-05T00:00:00",
        "sales": 100.0,
        "profit": 20.0,
        "category": "electronics",
        "description": "Laptop bundle",
    },
    {
        "id": 2,
        "date": "2024-02-10T00:00:00",
        "sales": 250.0,
        "profit": 50.0,
        "category": "books",
        "description": "Holiday reading list",
    },
    {
        "id": 3,
        "date": "2024-03-15T00:00:00",
        "sales": 900.0,
        "profit": 300.0,
        "category": "electronics",
        "description": None,
    },
]


def _ids(entries):
    return [entry["id"] for entry in entries]


def test_text_search_is_case_insensitive():
    assert _ids(apply_search(ENTRIES, "LAPTOP")) == [1]
    assert _ids(apply_search(ENTRIES, "electro")) == [1, 3]


def test_empty_query_and_no_filters_returns_everything():
    assert _ids(apply_search(ENTRIES)) == [1, 2, 3]


def test_input_is_not_mutated():
    snapshot = list(ENTRIES)
    apply_search(ENTRIES, "books", [SearchFilter("sales", "greater_than", 10)])
    assert ENTRIES == snapshot


def test_between_accepts_string_or_pair():
    assert _ids(apply_search(ENTRIES, filters=[SearchFilter("sales", "between", "100,250")])) == [1, 2]
    assert _ids(apply_search(ENTRIES, filters=[SearchFilter("sales", "between", (200, 1000))])) == [2, 3]


def test_filters_are_anded():
    filters = [
        SearchFilter("category", "equals", "Electronics"),
        SearchFilter("profit", "greater_than", "100"),
    ]
    assert _ids(apply_search(ENTRIES, filters=filters)) == [3]


def test_in_and_text_operators():
    assert _ids(apply_search(ENTRIES, filters=[SearchFilter("category", "in", "books, toys")])) == [2]
    assert _ids(apply_search(ENTRIES, filters=[SearchFilter("description", "contains", "READ")])) == [2]
    assert _ids(apply_search(ENTRIES, filters=[SearchFilter("category", "starts_with", "elec")])) == [1, 3]
    assert _ids(apply_search(ENTRIES, filters=[SearchFilter("description", "ends_with", "bundle")])) == [1]


def test_date_comparisons():
    filters = [SearchFilter("date", "less_than", "2024-03-01")]
    assert _ids(apply_search(ENTRIES, filters=filters)) == [1, 2]

    objects = [dict(entry, date=datetime.fromisoformat(entry["date"])) for entry in ENTRIES]
    filters = [SearchFilter("date", "between", ("2024-02-01", "2024-12-31"))]
    assert _ids(apply_search(objects, filters=filters)) == [2, 3]


def test_unknown_operator_raises():
    with pytest.raises(ValueError):
        apply_search(ENTRIES, filters=[SearchFilter("sales", "near", 10)])


def test_uncomparable_value_raises():
    with pytest.raises(ValueError):
        apply_search(ENTRIES, filters=[SearchFilter("sales", "greater_than", "lots")])


def test_build_filters_from_quick_controls():
    filters = build_filters(
        category="books", date_from="2024-02-01", date_to="2024-02-28", value_range=(0, 500)
    )
    assert [(f.field, f.operator) for f in filters] == [
        ("category", "equals"),
        ("date", "between"),
        ("sales", "between"),
    ]
    assert _ids(apply_search(ENTRIES, filters=filters)) == [2]


def test_entry_view_search_and_clear():
    view = EntryView(ENTRIES)

    assert _ids(view.search("books")) == [2]
    assert _ids(view.visible) == [2]
    assert _ids(view.clear()) == [1, 2, 3]


def test_text_field_holding_a_date_string_compares_as_text():
    entries = [{"id": 1, "description": "2024-01-05"}, {"id": 2, "description": "foo"}]

    assert _ids(apply_search(entries, filters=[SearchFilter("description", "equals", "foo")])) == [2]
    assert _ids(apply_search(entries, filters=[SearchFilter("description", "equals", "2024-01-05")])) == [1]


def test_mixed_numeric_field_compares_as_text():
    entries = [{"id": 1, "sales": 10.0}, {"id": 2, "sales": "n/a"}]

    assert _ids(apply_search(entries, filters=[SearchFilter("sales", "equals", "n/a")])) == [2]
