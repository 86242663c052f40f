"""
Tests for BAS / FBT figure extraction.
"""

from typing import Any, Optional

import pytest

from app.integrations.xero.exceptions import TaxFieldNotFoundError
from app.integrations.xero.extractors import (
    BAS_RULES,
    FBT_RULES,
    KeywordFieldMatcher,
    TaxFieldRule,
    calculate_bas,
    calculate_fbt,
    extract_fields,
)

FROM_DATE = "2024-07-01"
TO_DATE = "2024-09-30"


def cells(*values):
    return {"RowType": "Row", "Cells": [{"Value": value} for value in values]}


def section(title, *rows):
    return {"RowType": "Section", "Title": title, "Rows": list(rows)}


# =============================================================================
# Matching
# =============================================================================


class TestKeywordMatcher:
    def test_first_rule_wins(self):
        matcher = KeywordFieldMatcher(BAS_RULES)

        assert matcher.match({"Description": "GST on Sales", "Value": "10"}) == "gst_on_sales"
        assert matcher.match({"Description": "Input Tax Credits", "Value": "10"}) == "gst_on_purchases"
        assert matcher.match({"Description": "Bank Fees", "Value": "10"}) is None
        assert matcher.match({"Value": "10"}) is None

    def test_keyword_sets_require_every_keyword(self):
        rule = TaxFieldRule("meal_entertainment", (("meal", "entertainment"),))

        assert rule.matches("meal entertainment benefits")
        assert not rule.matches("entertainment")

    def test_expected_keywords(self):
        matcher = KeywordFieldMatcher([TaxFieldRule("x", (("a", "b"), ("c",)))])

        assert matcher.expected_keywords == ["a + b", "c"]

    def test_extract_fields_skips_headers_and_sums_absolute_values(self):
        rows = [
            {"Description": "GST on Sales", "Value": "Section Header"},
            {"Description": "GST on Sales", "Value": "(100.00)"},
            {"Description": "GST on Sales (adjustment)", "Value": "25"},
        ]

        totals, matched = extract_fields(rows, KeywordFieldMatcher(BAS_RULES))

        assert float(totals["gst_on_sales"]) == 125.0
        assert matched == {"gst_on_sales"}


# =============================================================================
# BAS
# =============================================================================


class TestCalculateBAS:
    def test_from_gst_report(self):
        bas_data = {
            "gstReport": {
                "Rows": [
                    section(
                        "GST Summary",
                        cells("Total Sales", "11,000.00"),
                        cells("GST on Sales", "1,000.00"),
                        cells("Total Purchases", "5500"),
                        cells("GST on Purchases", "(500.00)"),
                    )
                ]
            }
        }

        summary = calculate_bas(bas_data, FROM_DATE, TO_DATE)

        assert summary["total_sales"] == 11000.0
        assert summary["gst_on_sales"] == 1000.0
        assert summary["total_purchases"] == 5500.0
        assert summary["gst_on_purchases"] == 500.0
        assert summary["net_gst"] == 500.0
        assert summary["sources"] == ["gst_report"]
        assert summary["period"] == {"from_date": FROM_DATE, "to_date": TO_DATE}
        assert summary["last_updated"]

    def test_invoice_fallback_when_report_has_no_gst(self):
        bas_data = {
            "gstReport": {"Rows": []},
            "invoices": {
                "Invoices": [
                    {"Type": "ACCREC", "SubTotal": 1000, "TotalTax": 100},
                    {"Type": "ACCPAY", "SubTotal": 400, "TotalTax": 40},
                    {"Type": "ACCREC", "SubTotal": "500.00", "TotalTax": "50.00"},
                ]
            },
        }

        summary = calculate_bas(bas_data, FROM_DATE, TO_DATE)

        assert summary["total_sales"] == 1500.0
        assert summary["gst_on_sales"] == 150.0
        assert summary["total_purchases"] == 400.0
        assert summary["gst_on_purchases"] == 40.0
        assert summary["net_gst"] == 110.0
        assert summary["sources"] == ["invoices"]

    def test_invoice_list_without_wrapper(self):
        bas_data = {"invoices": [{"Type": "ACCREC", "SubTotal": 200, "TotalTax": 20}]}

        summary = calculate_bas(bas_data, FROM_DATE, TO_DATE)

        assert summary["gst_on_sales"] == 20.0

    def test_profit_loss_revenue_prefers_total_row(self):
        bas_data = {
            "data": {
                "profitLoss": {
                    "Reports": [
                        {
                            "Rows": [
                                section(
                                    "Revenue",
                                    cells("Sales", "800"),
                                    cells("Interest Income", "200"),
                                    cells("Total Revenue", "1000"),
                                ),
                                section("Less Operating Expenses", cells("Rent", "300")),
                            ]
                        }
                    ]
                }
            }
        }

        summary = calculate_bas(bas_data, FROM_DATE, TO_DATE)

        assert summary["total_sales"] == 1000.0
        assert summary["gst_on_sales"] == 0.0
        assert summary["sources"] == ["profit_loss"]

    def test_profit_loss_revenue_sums_rows_without_total(self):
        bas_data = {
            "profitLoss": {
                "Rows": [section("Trading Revenue", cells("Sales", "800"), cells("Other Revenue", "50"))]
            }
        }

        summary = calculate_bas(bas_data, FROM_DATE, TO_DATE)

        assert summary["total_sales"] == 850.0

    def test_nothing_matched_raises_with_keywords(self):
        bas_data = {"gstReport": {"Rows": [section("Other", cells("Bank Fees", "10"))]}}

        with pytest.raises(TaxFieldNotFoundError) as exc_info:
            calculate_bas(bas_data, FROM_DATE, TO_DATE)

        assert exc_info.value.statement == "BAS"
        assert "gst on sales" in exc_info.value.expected_keywords
        assert "'gst on sales'" in exc_info.value.message


# =============================================================================
# FBT
# =============================================================================


FAS_REPORT = {
    "fasReport": {
        "Rows": [
            section(
                "Fringe Benefits",
                cells("Car fringe benefits", "2,000.00"),
                cells("Entertainment", "1000"),
                cells("Other FBT benefits", "500"),
                cells("Gross taxable value", "3500"),
            )
        ]
    }
}


class TestCalculateFBT:
    def test_from_fas_report(self):
        summary = calculate_fbt(FAS_REPORT, "2024-04-01", "2025-03-31", fbt_rate=0.47)

        assert summary["fbt_on_cars"] == 2000.0
        assert summary["fbt_on_entertainment"] == 1000.0
        assert summary["fbt_on_other"] == 500.0
        assert summary["gross_taxable_value"] == 3500.0
        assert summary["total_fbt"] == 3500.0
        assert summary["fbt_rate"] == 0.47
        assert summary["fbt_payable"] == pytest.approx(1645.0)

    def test_reports_alias(self):
        summary = calculate_fbt({"reports": FAS_REPORT["fasReport"]}, FROM_DATE, TO_DATE, fbt_rate=0.5)

        assert summary["fbt_payable"] == pytest.approx(1750.0)

    def test_no_rows_raises(self):
        with pytest.raises(TaxFieldNotFoundError) as exc_info:
            calculate_fbt({"fasReport": {"Rows": []}}, FROM_DATE, TO_DATE)

        assert exc_info.value.statement == "FBT"
        assert "car" in exc_info.value.expected_keywords

    def test_no_matching_rows_raises(self):
        fas_data = {"fasReport": {"Rows": [cells("Bank Fees", "10")]}}

        with pytest.raises(TaxFieldNotFoundError):
            calculate_fbt(fas_data, FROM_DATE, TO_DATE)

    def test_custom_matcher(self):
        class BenefitCodeMatcher:
            expected_keywords = ["B-"]

            def match(self, row: dict[str, Any]) -> Optional[str]:
                if str(row.get("Description", "")).startswith("B-"):
                    return "fbt_on_other"
                return None

        fas_data = {"fasReport": {"Rows": [cells("B-101", "300"), cells("Car", "999")]}}

        summary = calculate_fbt(fas_data, FROM_DATE, TO_DATE, fbt_rate=0.47, matcher=BenefitCodeMatcher())

        assert summary["fbt_on_other"] == 300.0
        assert summary["fbt_on_cars"] == 0.0

    def test_default_rules_cover_every_fbt_field(self):
        assert {rule.field for rule in FBT_RULES} == {
            "fbt_on_cars",
            "fbt_on_entertainment",
            "fbt_on_other",
            "gross_taxable_value",
        }
