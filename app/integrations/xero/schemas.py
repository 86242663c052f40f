"""
Xero Integration Schemas
Request/response models for the Xero console endpoints.
"""

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Connection
# =============================================================================

class XeroAuthURLResponse(BaseModel):
    """Response containing Xero authorization URL."""

    authorization_url: str = Field(
        ...,
        description="URL to redirect user to for Xero authorization"
    )
    state: str = Field(
        ...,
        description="State token for CSRF protection"
    )
    source: str = Field(
        ...,
        description="Where the URL came from (backend or fallback)"
    )


class TenantSchema(BaseModel):
    """A Xero organization available to the session."""

    id: str
    name: str


class XeroConnectionStatus(BaseModel):
    """Snapshot of the connection state machine."""

    phase: str = Field(..., description="Connection phase")
    status: str = Field(
        ...,
        description="Status label (connected, expired, not_configured, pending, error, disconnected)"
    )
    is_connected: bool
    is_token_valid: bool
    has_credentials: bool
    has_expired_tokens: bool
    needs_reconnect: bool = Field(
        False,
        description="Tenant selected but the token is no longer valid"
    )
    is_demo_mode: bool = False
    tenants: list[TenantSchema] = Field(default_factory=list)
    selected_tenant_id: Optional[str] = None
    last_error: Optional[str] = None
    last_status_refresh: Optional[datetime] = None
    loaded_resources: list[str] = Field(
        default_factory=list,
        description="Resource keys currently cached for the selected tenant"
    )
    is_loading: bool = False


class XeroCallbackResponse(BaseModel):
    """Response after handling the OAuth redirect."""

    success: bool = Field(
        ...,
        description="Whether connection was successful"
    )
    message: str = Field(
        ...,
        description="Status message"
    )
    tenants: list[TenantSchema] = Field(default_factory=list)
    selected_tenant_id: Optional[str] = None
    phase: str


class XeroActionResponse(BaseModel):
    """Generic response for state-changing actions."""

    success: bool = Field(
        ...,
        description="Whether the action succeeded"
    )
    message: str = Field(
        ...,
        description="Status message"
    )
    phase: str


class XeroSettingsResponse(BaseModel):
    """Response after reloading OAuth client settings."""

    loaded: bool = Field(
        ...,
        description="False if the backend could not be reached and defaults were used"
    )
    has_credentials: bool


# =============================================================================
# Data
# =============================================================================

class XeroSyncResponse(BaseModel):
    """Response from a load-all run."""

    success: bool
    message: str
    tenant_id: Optional[str] = None
    loaded: list[str] = Field(default_factory=list)
    demo: list[str] = Field(
        default_factory=list,
        description="Keys that fell back to demo data"
    )
    failed: dict[str, str] = Field(
        default_factory=dict,
        description="Failed keys and their error messages"
    )
    skipped: bool = Field(
        False,
        description="True if nothing was fetched (already cached or already running)"
    )
    discarded: bool = Field(
        False,
        description="True if the tenant changed mid-run and results were dropped"
    )
    phase: str


class XeroTableResponse(BaseModel):
    """Normalized, formatted table for one cached resource."""

    resource_type: str
    display_name: str
    shape: str = Field(
        ...,
        description="report, flat_array, key_value, scalar or unrecognized"
    )
    columns: list[str]
    rows: list[dict[str, str]]
    record_count: int
    is_demo: bool = False
    error: Optional[str] = None
    loaded_at: Optional[datetime] = None
    raw: Any = Field(
        None,
        description="Raw payload (only when include_raw=true)"
    )


class ResourceLoadRequest(BaseModel):
    """Optional parameters forwarded to the backend for a single resource."""

    from_date: Optional[date] = Field(None, description="Period start")
    to_date: Optional[date] = Field(None, description="Period end")
    params: dict[str, str] = Field(
        default_factory=dict,
        description="Extra query parameters"
    )


# =============================================================================
# Tax calculations
# =============================================================================

class TaxCalculationRequest(BaseModel):
    """Period for a BAS/FBT calculation."""

    from_date: date
    to_date: date
    reload: bool = Field(
        False,
        description="Reload the source resource before calculating"
    )


class TaxPeriodSchema(BaseModel):
    from_date: str
    to_date: str


class BASSummaryResponse(BaseModel):
    """BAS figures."""

    total_sales: float
    total_purchases: float
    gst_on_sales: float
    gst_on_purchases: float
    net_gst: float
    period: TaxPeriodSchema
    sources: list[str]
    last_updated: str


class FBTSummaryResponse(BaseModel):
    """FBT figures."""

    total_fbt: float
    fbt_on_cars: float
    fbt_on_entertainment: float
    fbt_on_other: float
    gross_taxable_value: float
    fbt_rate: float
    fbt_payable: float
    period: TaxPeriodSchema
    last_updated: str
