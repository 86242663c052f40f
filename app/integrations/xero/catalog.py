"""
Xero Resource Catalog
Static enumeration of the accounting resource types the console can load.

The ten core types are loaded by "load all" in the order listed here.
Extended types are available one at a time through load_resource().
"""

import re
from dataclasses import dataclass
from typing import Optional


# Aggregate cache key holding every core resource from the last full load
ALL_BASIC_DATA_KEY = "all-basic-data"


@dataclass(frozen=True)
class ResourceDefinition:
    """A loadable resource type and its demo fallback identifier."""
    key: str
    display_name: str
    demo_key: str
    core: bool = True


CORE_RESOURCES: tuple[ResourceDefinition, ...] = (
    ResourceDefinition("organization", "Organization", "organization"),
    ResourceDefinition("contacts", "Contacts", "contacts"),
    ResourceDefinition("accounts", "Accounts", "accounts"),
    ResourceDefinition("invoices", "Invoices", "invoices"),
    ResourceDefinition("items", "Items", "items"),
    ResourceDefinition("bank-transactions", "Bank Transactions", "bank-transactions"),
    ResourceDefinition("tax-rates", "Tax Rates", "tax-rates"),
    ResourceDefinition("receipts", "Receipts", "receipts"),
    ResourceDefinition("purchase-orders", "Purchase Orders", "purchase-orders"),
    ResourceDefinition("quotes", "Quotes", "quotes"),
)

EXTENDED_RESOURCES: tuple[ResourceDefinition, ...] = (
    ResourceDefinition("bas-data", "BAS Data", "bas-data", core=False),
    ResourceDefinition("fas-data", "FAS Data", "fas-data", core=False),
    ResourceDefinition("financial-summary", "Financial Summary", "financial-summary", core=False),
    ResourceDefinition("dashboard-data", "Dashboard Data", "dashboard-data", core=False),
    ResourceDefinition("tracking-categories", "Tracking Categories", "tracking-categories", core=False),
    ResourceDefinition("credit-notes", "Credit Notes", "credit-notes", core=False),
    ResourceDefinition("manual-journals", "Manual Journals", "manual-journals", core=False),
    ResourceDefinition("prepayments", "Prepayments", "prepayments", core=False),
    ResourceDefinition("overpayments", "Overpayments", "overpayments", core=False),
    ResourceDefinition("payments", "Payments", "payments", core=False),
    ResourceDefinition("journals", "Journals", "journals", core=False),
)

CORE_RESOURCE_KEYS: tuple[str, ...] = tuple(r.key for r in CORE_RESOURCES)

_RESOURCES_BY_KEY: dict[str, ResourceDefinition] = {
    r.key: r for r in CORE_RESOURCES + EXTENDED_RESOURCES
}


def get_resource(key: str) -> Optional[ResourceDefinition]:
    """Look up a resource definition by its catalog key."""
    return _RESOURCES_BY_KEY.get(key)


def display_name(key: str) -> str:
    """Human-readable name for a resource key (falls back to a title-cased key)."""
    if key == ALL_BASIC_DATA_KEY:
        return "All Basic Data"
    resource = get_resource(key)
    if resource:
        return resource.display_name
    return key.replace("-", " ").title()


def normalize_resource_type(name: str) -> str:
    """
    Convert a resource name into its kebab-case catalog key.

    Accepts camelCase ("bankTransactions"), snake_case ("tax_rates") and
    spaced names. Anything starting with "bas"/"fas" maps to the BAS/FAS
    datasets.

    Raises:
        ValueError: If the name does not resolve to a catalog entry
    """
    if not name or not name.strip():
        raise ValueError("Resource type is required")

    cleaned = re.sub(r"(?<=[a-z0-9])([A-Z])", r"-\1", name.strip())
    cleaned = re.sub(r"[_\s]+", "-", cleaned).lower()
    cleaned = re.sub(r"-+", "-", cleaned).strip("-")

    if cleaned.startswith("bas"):
        cleaned = "bas-data"
    elif cleaned.startswith("fas"):
        cleaned = "fas-data"

    if cleaned == ALL_BASIC_DATA_KEY or cleaned in _RESOURCES_BY_KEY:
        return cleaned

    raise ValueError(f"Unknown Xero resource type: {name}")
