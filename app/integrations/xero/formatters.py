"""
Cell Formatters
Presentation-only formatting of normalized Xero values.

Nothing here mutates the values used for tax calculations.
"""

import json
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from app.integrations.xero.utils import parse_number

EMPTY_CELL = "-"
CURRENCY_KEYWORDS = ("value", "amount", "total", "payable")

# Xero JSON dates: /Date(1704067200000+0000)/
_MS_DATE_PATTERN = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")
_ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$")


def is_currency_column(column: str) -> bool:
    lowered = column.lower()
    return any(keyword in lowered for keyword in CURRENCY_KEYWORDS)


def format_currency(amount: float) -> str:
    """1234.5 -> "$1,234.50", -20 -> "-$20.00"."""
    if amount < 0:
        return f"-${abs(amount):,.2f}"
    return f"${amount:,.2f}"


def _format_plain_number(value: Any) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return str(number)


def parse_xero_date(value: str) -> Optional[date]:
    """Parse ISO-like or /Date(ms)/ strings; None if the string is not a date."""
    text = value.strip()

    match = _MS_DATE_PATTERN.match(text)
    if match:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc).date()

    if not _ISO_DATE_PATTERN.match(text):
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def format_cell_value(value: Any, column: str) -> str:
    """
    Format one cell for display.

    - None -> "-"
    - currency columns (value/amount/total/payable) with a numeric value -> "$1,234.50"
    - ISO or /Date(ms)/ date strings -> dd/mm/YYYY
    - rate columns with a numeric value -> "10%"
    - nested objects -> compact JSON
    - anything else -> str()
    """
    if value is None:
        return EMPTY_CELL

    if is_currency_column(column):
        amount = parse_number(value)
        if amount is not None:
            return format_currency(amount)

    if isinstance(value, str):
        parsed = parse_xero_date(value)
        if parsed is not None:
            return parsed.strftime("%d/%m/%Y")

    if (
        "rate" in column.lower()
        and isinstance(value, (int, float, Decimal))
        and not isinstance(value, bool)
    ):
        return f"{_format_plain_number(value)}%"

    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)

    return str(value)
