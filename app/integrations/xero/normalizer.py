"""
Xero Report Normalizer
Turns arbitrary Xero payloads into flat, tabular rows.

Xero reports nest as Report -> Rows -> Section -> Rows -> Cells. Everything
here flattens that into a list of dicts keyed by positional column names so
that tables and tax-field extraction can treat every payload the same way.

Shapes resolved at the entry point:
- REPORT: object with Rows (or Reports[].Rows) that produced rows
- FLAT_ARRAY: list, or object with items/Values
- KEY_VALUE: any other object
- SCALAR: str, number, bool or None
- UNRECOGNIZED: anything else
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Optional

from app.config import settings
from app.integrations.xero.formatters import format_cell_value

logger = logging.getLogger(__name__)

DESCRIPTION_COLUMN = "Description"
VALUE_COLUMN = "Value"
CURRENT_PERIOD_COLUMN = "Current Period"
PREVIOUS_PERIOD_COLUMN = "Previous Period"
SECTION_HEADER_VALUE = "Section Header"

# Rows shown per table
MAX_TABLE_ROWS = 50


class PayloadShape(str, Enum):
    REPORT = "report"
    FLAT_ARRAY = "flat_array"
    KEY_VALUE = "key_value"
    SCALAR = "scalar"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class NestedContent:
    """Nested object/array found inside a flat row; renders as compact JSON."""
    value: Any

    def __str__(self) -> str:
        return json.dumps(self.value, separators=(",", ":"), default=str)


@dataclass
class NormalizedPayload:
    """Result of normalize()."""
    shape: PayloadShape
    rows: list[dict[str, Any]] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)
    scalar: Any = None
    section_label: Optional[str] = None

    @property
    def is_tabular(self) -> bool:
        return self.shape in (PayloadShape.REPORT, PayloadShape.FLAT_ARRAY)

    @property
    def record_count(self) -> int:
        if self.is_tabular:
            return len(self.rows)
        if self.shape == PayloadShape.KEY_VALUE:
            return len(self.fields)
        if self.shape == PayloadShape.SCALAR and self.scalar is not None:
            return 1
        return 0


@dataclass
class DisplayTable:
    """Formatted table ready for rendering."""
    shape: PayloadShape
    columns: list[str]
    rows: list[dict[str, str]]
    record_count: int
    section_label: Optional[str] = None


def _field(obj: dict, name: str) -> Any:
    """Read a PascalCase field, falling back to its camelCase variant."""
    if name in obj:
        return obj[name]
    return obj.get(name[0].lower() + name[1:])


def flatten_array(value: Any) -> list[Any]:
    """Splice nested lists depth-first into one flat list."""
    if not isinstance(value, list):
        return [value]
    flat: list[Any] = []
    for item in value:
        flat.extend(flatten_array(item))
    return flat


def column_name(index: int, cell_count: int) -> str:
    """
    Positional column name for a report cell.

    0 -> Description; the last of exactly two cells -> Value; otherwise
    1 -> Current Period, 2 -> Previous Period, n -> "Column n+1".
    """
    if index == 0:
        return DESCRIPTION_COLUMN
    if cell_count == 2 and index == cell_count - 1:
        return VALUE_COLUMN
    if index == 1:
        return CURRENT_PERIOD_COLUMN
    if index == 2:
        return PREVIOUS_PERIOD_COLUMN
    return f"Column {index + 1}"


def _cell_value(cell: Any) -> Any:
    if isinstance(cell, dict):
        value = _field(cell, "Value")
        return "" if value is None else value
    return ""


def _row_from_cells(cells: list) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for index, cell in enumerate(cells):
        key = column_name(index, len(cells))
        if key in record:
            key = f"{key} ({index + 1})"
        record[key] = _cell_value(cell)
    return record


def flatten_report_rows(rows: Any) -> list[dict[str, Any]]:
    """
    Flatten Xero report rows into positional records.

    Titled sections contribute a section-header pseudo-row before their
    children; untitled sections are transparent.
    """
    items: list[dict[str, Any]] = []
    if not isinstance(rows, list):
        return items

    for row in flatten_array(rows):
        if not isinstance(row, dict):
            continue

        children = _field(row, "Rows")
        if isinstance(children, list):
            title = _field(row, "Title")
            if title:
                items.append({DESCRIPTION_COLUMN: title, VALUE_COLUMN: SECTION_HEADER_VALUE})
            items.extend(flatten_report_rows(children))
            continue

        cells = _field(row, "Cells")
        if isinstance(cells, list) and cells:
            items.append(_row_from_cells(cells))

    return items


def _flat_row(item: Any) -> dict[str, Any]:
    if isinstance(item, dict):
        return {
            str(key): NestedContent(value) if isinstance(value, (dict, list)) else value
            for key, value in item.items()
        }
    return {VALUE_COLUMN: item}


def normalize(value: Any, section_label: Optional[str] = None) -> NormalizedPayload:
    """
    Resolve a payload's shape and flatten it.

    Args:
        value: Raw payload from the backend
        section_label: Optional label carried through for display

    Returns:
        NormalizedPayload tagged with the resolved shape
    """
    if isinstance(value, list):
        rows = [_flat_row(item) for item in flatten_array(value)]
        return NormalizedPayload(PayloadShape.FLAT_ARRAY, rows=rows, section_label=section_label)

    if isinstance(value, dict):
        rows_field = _field(value, "Rows")
        if isinstance(rows_field, list):
            flattened = flatten_report_rows(rows_field)
            if flattened:
                return NormalizedPayload(PayloadShape.REPORT, rows=flattened, section_label=section_label)

        reports = _field(value, "Reports")
        if isinstance(reports, list):
            flattened = []
            for report in reports:
                if isinstance(report, dict):
                    flattened.extend(flatten_report_rows(_field(report, "Rows")))
            if flattened:
                return NormalizedPayload(PayloadShape.REPORT, rows=flattened, section_label=section_label)

        for key in ("items", "Values"):
            sequence = value.get(key)
            if isinstance(sequence, list):
                rows = [_flat_row(item) for item in flatten_array(sequence)]
                return NormalizedPayload(PayloadShape.FLAT_ARRAY, rows=rows, section_label=section_label)

        return NormalizedPayload(PayloadShape.KEY_VALUE, fields=dict(value), section_label=section_label)

    if value is None or isinstance(value, (str, int, float, bool, Decimal)):
        return NormalizedPayload(PayloadShape.SCALAR, scalar=value, section_label=section_label)

    logger.warning("Unrecognized payload type: %s", type(value).__name__)
    return NormalizedPayload(PayloadShape.UNRECOGNIZED, scalar=value, section_label=section_label)


def get_section_data(source: Any, key: str) -> Any:
    """
    Look up a named section (exact, lower, upper case), then inside "data".

    Returns:
        The section, or None if absent
    """
    if not isinstance(source, dict):
        return None

    variants = (key, key.lower(), key.upper())
    for variant in variants:
        if variant in source and source[variant] is not None:
            return source[variant]

    nested = source.get("data")
    if isinstance(nested, dict):
        for variant in variants:
            if variant in nested and nested[variant] is not None:
                return nested[variant]

    return None


def report_rows(report: Any) -> list:
    """Top-level rows of a report, a Reports wrapper, or a bare row list."""
    if isinstance(report, list):
        return report
    if not isinstance(report, dict):
        return []
    rows = _field(report, "Rows")
    if isinstance(rows, list):
        return rows
    reports = _field(report, "Reports")
    if isinstance(reports, list) and reports and isinstance(reports[0], dict):
        rows = _field(reports[0], "Rows")
        if isinstance(rows, list):
            return rows
    return []


def iter_report_sections(payload: Any) -> Iterator[tuple[str, list[dict[str, Any]]]]:
    """
    Yield (title, rows) for every titled section of a report.

    Rows are the section's own flattened records, without its header.
    """
    def _walk(rows: list) -> Iterator[tuple[str, list[dict[str, Any]]]]:
        for row in rows:
            if not isinstance(row, dict):
                continue
            children = _field(row, "Rows")
            if not isinstance(children, list):
                continue
            title = _field(row, "Title")
            if title:
                yield str(title), flatten_report_rows(children)
            yield from _walk(children)

    yield from _walk(report_rows(payload))


def build_table(
    payload: Any,
    section_label: Optional[str] = None,
    max_columns: Optional[int] = None,
    max_fields: Optional[int] = None,
    max_rows: int = MAX_TABLE_ROWS,
) -> DisplayTable:
    """
    Build the display table for a payload.

    Columns are the union of row keys in first-seen order, capped at
    max_columns; extra columns are dropped. Key-value payloads render as
    a two-column Field/Value table capped at max_fields entries.
    """
    max_columns = max_columns or settings.max_table_columns
    max_fields = max_fields or settings.max_key_value_fields
    normalized = payload if isinstance(payload, NormalizedPayload) else normalize(payload, section_label)

    if normalized.is_tabular:
        columns: list[str] = []
        for row in normalized.rows:
            for key in row:
                if key not in columns:
                    columns.append(key)
        if len(columns) > max_columns:
            logger.debug("Dropping %d columns beyond the first %d", len(columns) - max_columns, max_columns)
            columns = columns[:max_columns]

        rows = [
            {column: format_cell_value(row.get(column), column) for column in columns}
            for row in normalized.rows[:max_rows]
        ]
        return DisplayTable(normalized.shape, columns, rows, normalized.record_count, normalized.section_label)

    if normalized.shape == PayloadShape.KEY_VALUE:
        rows = [
            {"Field": str(key), "Value": format_cell_value(value, str(key))}
            for key, value in list(normalized.fields.items())[:max_fields]
        ]
        return DisplayTable(normalized.shape, ["Field", "Value"], rows, normalized.record_count, normalized.section_label)

    rows = []
    if normalized.scalar is not None:
        rows = [{"Value": format_cell_value(normalized.scalar, "")}]
    return DisplayTable(normalized.shape, ["Value"], rows, normalized.record_count, normalized.section_label)
