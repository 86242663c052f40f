"""
Tax Field Extractors
====================

Turns normalized Xero report rows into BAS and FBT figures.

Design Principles:
1. Row matching is a swappable strategy (TaxFieldMatcher); the default
   KeywordFieldMatcher scans description text for English keywords
2. Keyword matching is a heuristic: reworded report labels will not match,
   which is why "nothing matched" raises instead of returning zeros
3. Values come from the last column of a row, parsed as currency, absolute
4. Returns clean typed data (see extracted_types.py)

Usage:
    from app.integrations.xero.extractors import calculate_bas

    summary = calculate_bas(bas_payload, "2024-07-01", "2024-09-30")
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Protocol

from app.config import settings
from app.integrations.xero.exceptions import TaxFieldNotFoundError
from app.integrations.xero.extracted_types import BASSummary, FBTSummary, TaxPeriod
from app.integrations.xero.normalizer import (
    DESCRIPTION_COLUMN,
    SECTION_HEADER_VALUE,
    VALUE_COLUMN,
    flatten_report_rows,
    get_section_data,
    iter_report_sections,
    report_rows,
)
from app.integrations.xero.utils import parse_currency_value

logger = logging.getLogger(__name__)


# =============================================================================
# Matching Strategy
# =============================================================================

class TaxFieldMatcher(Protocol):
    """Maps a normalized report row to a tax field name (or None)."""

    @property
    def expected_keywords(self) -> list[str]:
        ...

    def match(self, row: dict[str, Any]) -> Optional[str]:
        ...


@dataclass(frozen=True)
class TaxFieldRule:
    """
    A field and the keyword sets that identify it.

    A description matches if it contains every keyword of any one set.
    """
    field: str
    keyword_sets: tuple[tuple[str, ...], ...]

    def matches(self, description: str) -> bool:
        return any(
            all(keyword in description for keyword in keywords)
            for keywords in self.keyword_sets
        )


class KeywordFieldMatcher:
    """First rule (in order) whose keywords appear in the lower-cased description wins."""

    def __init__(self, rules: Iterable[TaxFieldRule]):
        self.rules = tuple(rules)

    @property
    def expected_keywords(self) -> list[str]:
        return [
            " + ".join(keywords)
            for rule in self.rules
            for keywords in rule.keyword_sets
        ]

    def match(self, row: dict[str, Any]) -> Optional[str]:
        description = str(row.get(DESCRIPTION_COLUMN) or "").lower()
        if not description:
            return None
        for rule in self.rules:
            if rule.matches(description):
                return rule.field
        return None


BAS_RULES: tuple[TaxFieldRule, ...] = (
    TaxFieldRule("gst_on_sales", (("gst on sales",), ("output tax",))),
    TaxFieldRule("gst_on_purchases", (("gst on purchases",), ("input tax",))),
    TaxFieldRule("total_sales", (("total sales",),)),
    TaxFieldRule("total_purchases", (("total purchases",),)),
)

FBT_RULES: tuple[TaxFieldRule, ...] = (
    TaxFieldRule("fbt_on_cars", (("car",),)),
    TaxFieldRule("fbt_on_entertainment", (("entertainment",),)),
    TaxFieldRule("gross_taxable_value", (("gross taxable value",),)),
    TaxFieldRule("fbt_on_other", (("fbt",),)),
)


# =============================================================================
# Row Helpers
# =============================================================================

def _row_value(row: dict[str, Any]) -> Decimal:
    """Absolute value of the row's last column."""
    values = list(row.values())
    return abs(parse_currency_value(values[-1] if values else None))


def _is_data_row(row: dict[str, Any]) -> bool:
    return len(row) >= 2 and row.get(VALUE_COLUMN) != SECTION_HEADER_VALUE


def extract_fields(
    rows: Iterable[dict[str, Any]],
    matcher: TaxFieldMatcher,
) -> tuple[dict[str, Decimal], set[str]]:
    """
    Accumulate matched row values per field.

    Returns:
        (totals by field, fields that matched at least one row)
    """
    totals: dict[str, Decimal] = {}
    matched: set[str] = set()

    for row in rows:
        if not _is_data_row(row):
            continue
        field_name = matcher.match(row)
        if field_name is None:
            continue
        value = _row_value(row)
        totals[field_name] = totals.get(field_name, Decimal("0")) + value
        matched.add(field_name)
        logger.debug("Matched %r -> %s (%s)", row.get(DESCRIPTION_COLUMN), field_name, value)

    return totals, matched


def _period(from_date: str, to_date: str) -> TaxPeriod:
    return {"from_date": from_date, "to_date": to_date}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# BAS
# =============================================================================

def _invoice_list(wrapper: Any) -> list[dict[str, Any]]:
    if isinstance(wrapper, dict):
        invoices = wrapper.get("Invoices", wrapper.get("invoices"))
        return [i for i in invoices if isinstance(i, dict)] if isinstance(invoices, list) else []
    if isinstance(wrapper, list):
        return [i for i in wrapper if isinstance(i, dict)]
    return []


def _revenue_from_profit_loss(profit_loss: Any) -> Optional[Decimal]:
    """
    Revenue from Profit & Loss sections titled "...revenue...".

    A section's "Total ..." row is used when present, otherwise its rows are summed.
    """
    revenue: Optional[Decimal] = None

    for title, rows in iter_report_sections(profit_loss):
        if "revenue" not in title.lower():
            continue
        data_rows = [row for row in rows if _is_data_row(row)]
        if not data_rows:
            continue

        total_rows = [
            row for row in data_rows
            if str(row.get(DESCRIPTION_COLUMN) or "").lower().startswith("total")
        ]
        section_total = sum(
            (_row_value(row) for row in (total_rows or data_rows)),
            Decimal("0"),
        )
        revenue = (revenue or Decimal("0")) + section_total
        logger.debug("P&L section %r contributed revenue %s", title, section_total)

    return revenue


def calculate_bas(
    bas_data: Any,
    from_date: str,
    to_date: str,
    matcher: Optional[TaxFieldMatcher] = None,
) -> BASSummary:
    """
    Calculate BAS figures from the bas-data resource.

    Args:
        bas_data: Payload with gstReport, profitLoss and invoices sections
        from_date: Period start (ISO date)
        to_date: Period end (ISO date)
        matcher: Row matcher (defaults to keyword matching on BAS_RULES)

    Returns:
        BASSummary

    Raises:
        TaxFieldNotFoundError: No GST report row, invoice or revenue section matched
    """
    matcher = matcher or KeywordFieldMatcher(BAS_RULES)

    gst_report = get_section_data(bas_data, "gstReport")
    profit_loss = get_section_data(bas_data, "profitLoss")
    invoices = _invoice_list(get_section_data(bas_data, "invoices"))

    rows = flatten_report_rows(report_rows(gst_report))
    totals, matched = extract_fields(rows, matcher)

    total_sales = totals.get("total_sales", Decimal("0"))
    total_purchases = totals.get("total_purchases", Decimal("0"))
    gst_on_sales = totals.get("gst_on_sales", Decimal("0"))
    gst_on_purchases = totals.get("gst_on_purchases", Decimal("0"))
    sources: list[str] = ["gst_report"] if matched else []

    # 1. No GST on sales in the report: derive from invoices
    if gst_on_sales == 0 and invoices:
        used_invoices = False
        for invoice in invoices:
            invoice_type = str(invoice.get("Type", "")).upper()
            subtotal = parse_currency_value(invoice.get("SubTotal"))
            tax = parse_currency_value(invoice.get("TotalTax"))
            if invoice_type == "ACCREC":
                total_sales += subtotal
                gst_on_sales += tax
                used_invoices = True
            elif invoice_type == "ACCPAY":
                total_purchases += subtotal
                gst_on_purchases += tax
                used_invoices = True
        if used_invoices:
            sources.append("invoices")
            logger.info("BAS: GST derived from %d invoices", len(invoices))

    # 2. Still no sales: revenue from Profit & Loss
    if total_sales == 0 and profit_loss:
        revenue = _revenue_from_profit_loss(profit_loss)
        if revenue is not None:
            total_sales += revenue
            sources.append("profit_loss")
            logger.info("BAS: total sales taken from Profit & Loss revenue")

    if not sources:
        raise TaxFieldNotFoundError("BAS", matcher.expected_keywords)

    return {
        "total_sales": float(total_sales),
        "total_purchases": float(total_purchases),
        "gst_on_sales": float(gst_on_sales),
        "gst_on_purchases": float(gst_on_purchases),
        "net_gst": float(gst_on_sales - gst_on_purchases),
        "period": _period(from_date, to_date),
        "sources": sources,
        "last_updated": _now_iso(),
    }


# =============================================================================
# FBT
# =============================================================================

def calculate_fbt(
    fas_data: Any,
    from_date: str,
    to_date: str,
    fbt_rate: Optional[float] = None,
    matcher: Optional[TaxFieldMatcher] = None,
) -> FBTSummary:
    """
    Calculate FBT figures from the fas-data resource.

    Args:
        fas_data: Payload with a fasReport (or reports) section
        from_date: Period start (ISO date)
        to_date: Period end (ISO date)
        fbt_rate: FBT rate (defaults to settings.fbt_rate)
        matcher: Row matcher (defaults to keyword matching on FBT_RULES)

    Returns:
        FBTSummary

    Raises:
        TaxFieldNotFoundError: No report rows, or no row matched
    """
    matcher = matcher or KeywordFieldMatcher(FBT_RULES)
    rate = settings.fbt_rate if fbt_rate is None else fbt_rate

    fas_report = get_section_data(fas_data, "fasReport") or get_section_data(fas_data, "reports")
    rows = flatten_report_rows(report_rows(fas_report))
    if not rows:
        logger.warning("FBT report rows not available for %s to %s", from_date, to_date)
        raise TaxFieldNotFoundError("FBT", matcher.expected_keywords)

    totals, matched = extract_fields(rows, matcher)
    if not matched:
        raise TaxFieldNotFoundError("FBT", matcher.expected_keywords)

    cars = totals.get("fbt_on_cars", Decimal("0"))
    entertainment = totals.get("fbt_on_entertainment", Decimal("0"))
    other = totals.get("fbt_on_other", Decimal("0"))
    total_fbt = cars + entertainment + other

    return {
        "total_fbt": float(total_fbt),
        "fbt_on_cars": float(cars),
        "fbt_on_entertainment": float(entertainment),
        "fbt_on_other": float(other),
        "gross_taxable_value": float(totals.get("gross_taxable_value", Decimal("0"))),
        "fbt_rate": rate,
        "fbt_payable": float(total_fbt) * rate,
        "period": _period(from_date, to_date),
        "last_updated": _now_iso(),
    }
