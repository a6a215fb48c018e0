import csv
import io
import math
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Iterable, List, Union

EXPORT_FORMATS = ("json", "csv")
CSV_COLUMNS = ("Date", "Sales", "Profit", "Category", "Description", "Tags")
TAG_SEPARATOR = ";"


def export_filename(export_format: str) -> str:
    return f"data-export.{export_format}"


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
        except ValueError:
            return ""
    return ""


def _format_amount(value: Any) -> Union[float, str]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return ""
    if not math.isfinite(value):
        return ""
    return float(value)


def _format_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _format_tags(value: Any) -> str:
    if not isinstance(value, (list, tuple)):
        return ""
    return TAG_SEPARATOR.join(str(tag) for tag in value if tag is not None)


def csv_row(entry: Any) -> List[Union[float, str]]:
    """Flatten one entry into the fixed export column order.

    Fields that are missing or of the wrong shape become empty strings.
    """
    return [
        _format_date(_field(entry, "date")),
        _format_amount(_field(entry, "sales")),
        _format_amount(_field(entry, "profit")),
        _format_text(_field(entry, "category")),
        _format_text(_field(entry, "description")),
        _format_tags(_field(entry, "tags")),
    ]


def entries_to_csv(entries: Iterable[Any]) -> str:
    output = io.StringIO()
    csv.writer(output).writerow(CSV_COLUMNS)
    # Text columns are always quoted, amounts never are.
    writer = csv.writer(output, quoting=csv.QUOTE_NONNUMERIC)
    for entry in entries:
        writer.writerow(csv_row(entry))
    return output.getvalue()
