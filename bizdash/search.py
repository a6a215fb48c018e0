"""Client-side search and filter library for API consumers.

Works on entries that were already fetched from ``GET /api/data`` (plain
dicts or objects with the same attribute names). ``apply_search`` never
mutates its input and never touches the database; ``EntryView`` keeps the
full fetched set around so a search can be cleared.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

OPERATORS = (
    "equals",
    "in",
    "between",
    "greater_than",
    "less_than",
    "contains",
    "starts_with",
    "ends_with",
)
DEFAULT_SEARCH_FIELDS = ("category", "description")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")


@dataclass(frozen=True)
class SearchFilter:
    field: str
    operator: str
    value: Any


def _get(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and _ISO_DATE.match(value.strip()):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _field_kind(entries: Sequence[Any], name: str) -> str:
    """Comparison kind of a field, decided from every non-null value it holds.

    A field is numeric or a date only when all of its values are; anything
    mixed compares as text.
    """
    values = [value for value in (_get(entry, name) for entry in entries) if value is not None]
    if not values:
        return "text"
    if all(isinstance(value, bool) for value in values):
        return "bool"
    if all(_is_number(value) for value in values):
        return "number"
    if all(_parse_date(value) is not None for value in values):
        return "date"
    return "text"


def _coerce(value: Any, kind: str) -> Any:
    """Convert ``value`` to ``kind``; ``None`` when it cannot be."""
    if kind == "number":
        if isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
    if kind == "date":
        return _parse_date(value)
    if kind == "bool":
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    return str(value).strip().lower()


def _split(value: Any) -> List[Any]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    return list(value)


def _range(value: Any) -> Tuple[Any, Any]:
    parts = _split(value)
    if len(parts) != 2:
        raise ValueError(f"'between' expects two values, got {value!r}")
    return parts[0], parts[1]


def _convert(raw: Any, kind: str, search_filter: SearchFilter) -> Any:
    converted = _coerce(raw, kind)
    if converted is None:
        raise ValueError(
            f"Invalid value {raw!r} for filter on '{search_filter.field}'"
        )
    return converted


def _matches(entry: Any, search_filter: SearchFilter, kind: str) -> bool:
    actual = _get(entry, search_filter.field)
    if actual is None:
        return False
    left = _coerce(actual, kind)
    if left is None:
        return False
    operator = search_filter.operator
    raw = search_filter.value

    if operator == "equals":
        return left == _convert(raw, kind, search_filter)
    if operator == "in":
        return left in [_convert(item, kind, search_filter) for item in _split(raw)]
    if operator == "between":
        low, high = _range(raw)
        return (
            _convert(low, kind, search_filter)
            <= left
            <= _convert(high, kind, search_filter)
        )
    if operator == "greater_than":
        return left > _convert(raw, kind, search_filter)
    if operator == "less_than":
        return left < _convert(raw, kind, search_filter)

    text = str(actual).lower()
    needle = str(raw).strip().lower()
    if operator == "contains":
        return needle in text
    if operator == "starts_with":
        return text.startswith(needle)
    return text.endswith(needle)


def _text_match(entry: Any, query: str, fields: Sequence[str]) -> bool:
    for name in fields:
        value = _get(entry, name)
        if value is not None and query in str(value).lower():
            return True
    return False


def apply_search(
    entries: Iterable[Any],
    query: str = "",
    filters: Sequence[SearchFilter] = (),
    search_fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
) -> List[Any]:
    """Text search across ``search_fields`` followed by every filter, ANDed.

    Raises ``ValueError`` for an unknown operator, or for a filter value
    that cannot be read as the number or date its field holds.
    """
    for search_filter in filters:
        if search_filter.operator not in OPERATORS:
            raise ValueError(f"Unknown filter operator: {search_filter.operator}")

    results = list(entries)
    kinds: Dict[str, str] = {
        search_filter.field: _field_kind(results, search_filter.field)
        for search_filter in filters
    }
    needle = (query or "").strip().lower()
    if needle:
        results = [entry for entry in results if _text_match(entry, needle, search_fields)]
    for search_filter in filters:
        kind = kinds[search_filter.field]
        results = [entry for entry in results if _matches(entry, search_filter, kind)]
    return results


def build_filters(
    category: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    value_field: str = "sales",
    value_range: Optional[Tuple[float, float]] = None,
) -> List[SearchFilter]:
    """Turn the quick-filter controls into the generic filter list."""
    filters = []
    if category:
        filters.append(SearchFilter("category", "equals", category))
    if date_from and date_to:
        filters.append(SearchFilter("date", "between", (date_from, date_to)))
    elif date_from:
        filters.append(SearchFilter("date", "greater_than", date_from))
    elif date_to:
        filters.append(SearchFilter("date", "less_than", date_to))
    if value_range is not None:
        filters.append(SearchFilter(value_field, "between", tuple(value_range)))
    return filters


class EntryView:
    """The fetched entries plus the subset currently on display."""

    def __init__(self, entries: Iterable[Any], search_fields: Sequence[str] = DEFAULT_SEARCH_FIELDS):
        self._entries = list(entries)
        self.search_fields = tuple(search_fields)
        self.visible = list(self._entries)

    def search(self, query: str = "", filters: Sequence[SearchFilter] = ()) -> List[Any]:
        self.visible = apply_search(self._entries, query, filters, self.search_fields)
        return self.visible

    def clear(self) -> List[Any]:
        self.visible = list(self._entries)
        return self.visible
