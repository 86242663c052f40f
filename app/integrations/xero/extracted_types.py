"""
Extracted Data Types
====================

Structures returned by the tax-field extractors.

Design Principles:
- All numeric values are float (for JSON serialization)
- Field names mirror the statement labels they feed
- Immutable structures (TypedDict)
"""

from typing import TypedDict


class TaxPeriod(TypedDict):
    """Reporting period the figures were calculated for."""
    from_date: str  # ISO date
    to_date: str  # ISO date


class BASSummary(TypedDict):
    """
    Business Activity Statement figures.

    Sources, in order of preference:
    - GST report rows (gst on sales / purchases, total sales / purchases)
    - Invoices (ACCREC = sales, ACCPAY = purchases) when the report has no GST on sales
    - Profit & Loss revenue sections when total sales is still zero
    """
    total_sales: float
    total_purchases: float
    gst_on_sales: float
    gst_on_purchases: float
    net_gst: float  # gst_on_sales - gst_on_purchases (negative = refundable)

    period: TaxPeriod
    sources: list[str]  # gst_report, invoices, profit_loss
    last_updated: str  # ISO timestamp


class FBTSummary(TypedDict):
    """Fringe Benefits Tax figures."""
    total_fbt: float  # cars + entertainment + other
    fbt_on_cars: float
    fbt_on_entertainment: float
    fbt_on_other: float
    gross_taxable_value: float
    fbt_rate: float
    fbt_payable: float  # total_fbt * fbt_rate

    period: TaxPeriod
    last_updated: str  # ISO timestamp
