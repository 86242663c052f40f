"""
Xero Integration Utilities
Shared helpers for reading Xero cell values.
"""

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)

_CURRENCY_SYMBOLS = ("AUD", "NZD", "USD", "GBP", "EUR", "CAD", "A$", "$", "£", "€")
_EMPTY_MARKERS = ("", "-", "—", "–")


def to_json_serializable(obj: Any) -> Any:
    """
    Recursively convert any object to JSON-serializable format.

    Handles dates, decimals, enums and objects exposing to_dict().
    """
    if obj is None:
        return None

    if isinstance(obj, dict):
        return {str(k): to_json_serializable(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [to_json_serializable(item) for item in obj]

    if hasattr(obj, "to_dict"):
        return to_json_serializable(obj.to_dict())

    if isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, Decimal):
        return float(obj)

    if isinstance(obj, (date, datetime)):
        return obj.isoformat()

    # Enums
    if hasattr(obj, "value"):
        return to_json_serializable(obj.value)

    return str(obj)


def _clean_currency_text(value: Any) -> Optional[str]:
    value_str = str(value).strip()
    if value_str in _EMPTY_MARKERS:
        return None

    for symbol in _CURRENCY_SYMBOLS:
        value_str = value_str.replace(symbol, "").strip()

    # Parentheses for negatives: (500.00) -> -500.00
    if value_str.startswith("(") and value_str.endswith(")"):
        value_str = "-" + value_str[1:-1].strip()

    # European: 1.234,56   US/AU: 1,234.56
    if re.search(r"\d{1,3}(\.\d{3})+,\d{1,2}$", value_str):
        value_str = value_str.replace(".", "").replace(",", ".")
    elif "," in value_str and "." not in value_str and re.search(r",\d{1,2}$", value_str):
        value_str = value_str.replace(",", ".")
    else:
        value_str = value_str.replace(",", "")

    return value_str


def parse_currency_value(value: Any, default: str = "0.00") -> Decimal:
    """
    Robustly parse currency values from Xero cell values.

    Handles currency symbols, parentheses for negatives, dashes for zero,
    and both 1,234.56 and 1.234,56 grouping.

    Args:
        value: Raw cell value (string, number, None)
        default: Default value if parsing fails

    Returns:
        Decimal value or default
    """
    if value is None or isinstance(value, bool):
        return Decimal(default)

    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))

    cleaned = _clean_currency_text(value)
    if cleaned is None:
        return Decimal(default)

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        logger.warning(
            "Failed to parse currency value '%s'. Using default: %s",
            value,
            default
        )
        return Decimal(default)


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a numeric cell value, returning None when it is not a number.

    Unlike parse_currency_value this distinguishes "0" from "not numeric",
    which is what formatting and row matching need.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        return float(value)

    if not isinstance(value, str):
        return None

    cleaned = _clean_currency_text(value)
    if not cleaned:
        return None

    try:
        return float(Decimal(cleaned))
    except InvalidOperation:
        return None
