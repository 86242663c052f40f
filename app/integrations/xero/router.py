"""
Xero Integration Router
API endpoints for the Xero connection lifecycle, data loading and tax figures.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from app.core.errors import ErrorCode, create_error_response
from app.integrations.xero.catalog import display_name, normalize_resource_type
from app.integrations.xero.exceptions import XeroOAuthError
from app.integrations.xero.extractors import calculate_bas, calculate_fbt
from app.integrations.xero.normalizer import build_table
from app.integrations.xero.orchestrator import SyncResult, XeroDataSyncOrchestrator
from app.integrations.xero.resource_cache import CacheEntry
from app.integrations.xero.schemas import (
    BASSummaryResponse,
    FBTSummaryResponse,
    ResourceLoadRequest,
    TaxCalculationRequest,
    TenantSchema,
    XeroActionResponse,
    XeroAuthURLResponse,
    XeroCallbackResponse,
    XeroConnectionStatus,
    XeroSettingsResponse,
    XeroSyncResponse,
    XeroTableResponse,
)
from app.integrations.xero.session import ConnectionPhase, XeroConnectionSession
from app.integrations.xero.utils import to_json_serializable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/xero", tags=["Xero Integration"])


# =============================================================================
# Dependencies
# =============================================================================

def get_xero_session(request: Request) -> XeroConnectionSession:
    """Dependency to get the process-wide connection session."""
    return request.app.state.xero_session


def get_sync_orchestrator(request: Request) -> XeroDataSyncOrchestrator:
    """Dependency to get the data sync orchestrator bound to the session."""
    return request.app.state.xero_orchestrator


# =============================================================================
# Helpers
# =============================================================================

def _tenant_list(session: XeroConnectionSession) -> list[TenantSchema]:
    return [TenantSchema(id=t.id, name=t.name) for t in session.tenants]


def _status_response(
    session: XeroConnectionSession,
    orchestrator: XeroDataSyncOrchestrator,
) -> XeroConnectionStatus:
    state = session.state
    return XeroConnectionStatus(
        phase=state.phase.value,
        status=session.connection_status,
        is_connected=session.is_connected,
        is_token_valid=state.is_token_valid,
        has_credentials=state.has_credentials,
        has_expired_tokens=state.has_expired_tokens,
        needs_reconnect=session.needs_reconnect,
        is_demo_mode=state.is_demo_mode,
        tenants=_tenant_list(session),
        selected_tenant_id=state.selected_tenant_id,
        last_error=state.last_error,
        last_status_refresh=state.last_status_refresh,
        loaded_resources=session.cache.keys(),
        is_loading=orchestrator.is_running,
    )


def _sync_message(result: SyncResult) -> str:
    if result.discarded:
        return "Organization changed during loading, results discarded"
    if result.skipped:
        return "Data already loaded"
    total = len(result.loaded) + len(result.failed)
    message = f"Loaded {len(result.loaded)} of {total} resources"
    if result.demo:
        message += f" ({len(result.demo)} from demo data)"
    return message


def _table_response(
    resource_type: str,
    entry: CacheEntry,
    include_raw: bool = False,
) -> XeroTableResponse:
    name = display_name(resource_type)
    raw = to_json_serializable(entry.payload) if include_raw else None

    if entry.is_error:
        return XeroTableResponse(
            resource_type=resource_type,
            display_name=name,
            shape="unrecognized",
            columns=[],
            rows=[],
            record_count=0,
            error=entry.error,
            loaded_at=entry.loaded_at,
        )

    table = build_table(entry.payload, section_label=name)
    return XeroTableResponse(
        resource_type=resource_type,
        display_name=name,
        shape=table.shape.value,
        columns=table.columns,
        rows=table.rows,
        record_count=table.record_count,
        is_demo=entry.is_demo,
        loaded_at=entry.loaded_at,
        raw=raw,
    )


async def _tax_source(
    resource_type: str,
    body: TaxCalculationRequest,
    session: XeroConnectionSession,
    orchestrator: XeroDataSyncOrchestrator,
):
    """Payload for a tax calculation, loading it for the period if needed."""
    entry = session.cache.get(resource_type)
    if entry is None or entry.is_error or body.reload:
        entry = await orchestrator.load_resource(
            resource_type,
            fromDate=body.from_date.isoformat(),
            toDate=body.to_date.isoformat(),
        )

    if entry.is_error:
        raise create_error_response(
            ErrorCode.XERO_DATA_FETCH_FAILED,
            message=f"{display_name(resource_type)} could not be loaded: {entry.error}",
        )
    return entry.payload


# =============================================================================
# Connection Endpoints
# =============================================================================

@router.get(
    "/connect",
    response_model=XeroAuthURLResponse,
    summary="Start Xero OAuth flow",
    description="Get an authorization URL from the backend (or build a fallback) and enter Authorizing.",
)
async def connect_xero(
    session: XeroConnectionSession = Depends(get_xero_session),
) -> XeroAuthURLResponse:
    """
    Initiate Xero OAuth 2.0 authorization flow.

    Frontend should redirect user to authorization_url.
    """
    request = await session.connect()
    return XeroAuthURLResponse(
        authorization_url=request.authorization_url,
        state=request.state,
        source=request.source,
    )


@router.get(
    "/callback",
    response_model=XeroCallbackResponse,
    summary="Handle Xero OAuth callback",
    description="Redirect route: validates state, has the backend exchange the code, lists tenants.",
)
async def xero_callback(
    code: Optional[str] = Query(None, description="Authorization code from Xero"),
    state: Optional[str] = Query(None, description="State token for CSRF validation"),
    success: Optional[bool] = Query(None, description="Backend already completed the exchange"),
    error: Optional[str] = Query(None, description="Error code if authorization failed"),
    error_details: Optional[str] = Query(None, alias="errorDetails"),
    session: XeroConnectionSession = Depends(get_xero_session),
) -> XeroCallbackResponse:
    """
    Handle OAuth 2.0 callback.

    Any failure leaves the session in Error with last_error set.
    """
    try:
        tenants = await session.handle_callback(
            code,
            state,
            error=error,
            error_details=error_details,
            success=bool(success),
        )
    except XeroOAuthError as e:
        logger.warning("Xero callback failed: %s", e.message)
        return XeroCallbackResponse(
            success=False,
            message=e.message,
            phase=session.phase.value,
        )

    return XeroCallbackResponse(
        success=True,
        message=f"Xero connected successfully ({len(tenants)} organization(s))",
        tenants=[TenantSchema(id=t.id, name=t.name) for t in tenants],
        selected_tenant_id=session.selected_tenant_id,
        phase=session.phase.value,
    )


@router.get(
    "/status",
    response_model=XeroConnectionStatus,
    summary="Get Xero connection status",
    description="Connection state snapshot; refresh=true re-fetches status from the backend (rate limited).",
)
async def get_xero_status(
    background_tasks: BackgroundTasks,
    refresh: bool = Query(False, description="Re-fetch status from the backend"),
    session: XeroConnectionSession = Depends(get_xero_session),
    orchestrator: XeroDataSyncOrchestrator = Depends(get_sync_orchestrator),
) -> XeroConnectionStatus:
    if refresh:
        await session.refresh_status()
        # A single tenant may have just been auto-selected
        background_tasks.add_task(orchestrator.auto_load)
    return _status_response(session, orchestrator)


@router.post(
    "/settings/reload",
    response_model=XeroSettingsResponse,
    summary="Reload Xero client settings",
)
async def reload_settings(
    session: XeroConnectionSession = Depends(get_xero_session),
) -> XeroSettingsResponse:
    loaded = await session.load_settings()
    return XeroSettingsResponse(loaded=loaded, has_credentials=session.state.has_credentials)


@router.post(
    "/tenants/{tenant_id}/select",
    response_model=XeroActionResponse,
    summary="Select a Xero organization",
    description="Switching organization clears all cached data; data loads automatically in the background.",
)
async def select_tenant(
    tenant_id: str,
    background_tasks: BackgroundTasks,
    session: XeroConnectionSession = Depends(get_xero_session),
    orchestrator: XeroDataSyncOrchestrator = Depends(get_sync_orchestrator),
) -> XeroActionResponse:
    changed = session.select_tenant(tenant_id)
    if changed:
        background_tasks.add_task(orchestrator.auto_load)

    tenant = session.selected_tenant
    return XeroActionResponse(
        success=True,
        message=f"Selected {tenant.name}" if changed and tenant else "Organization already selected",
        phase=session.phase.value,
    )


@router.post(
    "/disconnect",
    response_model=XeroActionResponse,
    summary="Disconnect Xero",
    description="Clear the backend session and all local connection state.",
)
async def disconnect_xero(
    session: XeroConnectionSession = Depends(get_xero_session),
) -> XeroActionResponse:
    await session.disconnect()

    if session.state.last_error:
        return XeroActionResponse(
            success=False,
            message=session.state.last_error,
            phase=session.phase.value,
        )

    return XeroActionResponse(
        success=True,
        message="Xero disconnected successfully",
        phase=session.phase.value,
    )


@router.post(
    "/clear-error",
    response_model=XeroActionResponse,
    summary="Dismiss the last error",
)
async def clear_error(
    session: XeroConnectionSession = Depends(get_xero_session),
) -> XeroActionResponse:
    session.clear_error()
    return XeroActionResponse(success=True, message="Error cleared", phase=session.phase.value)


# =============================================================================
# Data Endpoints
# =============================================================================

@router.post(
    "/load-all",
    response_model=XeroSyncResponse,
    summary="Load all core Xero resources",
    description="Sequentially loads every core resource for the selected organization. Skipped if already cached.",
)
async def load_all(
    force_refresh: bool = Query(
        default=False,
        description="If true, reload even if every resource is cached"
    ),
    session: XeroConnectionSession = Depends(get_xero_session),
    orchestrator: XeroDataSyncOrchestrator = Depends(get_sync_orchestrator),
) -> XeroSyncResponse:
    result = await orchestrator.load_all(force_refresh=force_refresh)
    return XeroSyncResponse(
        success=session.phase != ConnectionPhase.ERROR and not result.discarded,
        message=_sync_message(result),
        tenant_id=result.tenant_id,
        loaded=result.loaded,
        demo=result.demo,
        failed=result.failed,
        skipped=result.skipped,
        discarded=result.discarded,
        phase=session.phase.value,
    )


@router.get(
    "/data/{resource_type}",
    response_model=XeroTableResponse,
    summary="Get a cached resource as a table",
)
async def get_resource_table(
    resource_type: str,
    include_raw: bool = Query(False, description="Include the raw payload"),
    session: XeroConnectionSession = Depends(get_xero_session),
) -> XeroTableResponse:
    key = normalize_resource_type(resource_type)
    entry = session.cache.get(key)
    if entry is None:
        raise create_error_response(
            ErrorCode.RESOURCE_NOT_LOADED,
            message=f"{display_name(key)} has not been loaded yet",
        )
    return _table_response(key, entry, include_raw)


@router.post(
    "/data/{resource_type}/load",
    response_model=XeroTableResponse,
    summary="Load one resource",
    description="Loads a single core or extended resource for the selected organization.",
)
async def load_resource(
    resource_type: str,
    body: Optional[ResourceLoadRequest] = None,
    include_raw: bool = Query(False, description="Include the raw payload"),
    orchestrator: XeroDataSyncOrchestrator = Depends(get_sync_orchestrator),
) -> XeroTableResponse:
    key = normalize_resource_type(resource_type)
    params: dict[str, str] = {}
    if body:
        params.update(body.params)
        if body.from_date:
            params["fromDate"] = body.from_date.isoformat()
        if body.to_date:
            params["toDate"] = body.to_date.isoformat()

    entry = await orchestrator.load_resource(key, **params)
    return _table_response(key, entry, include_raw)


# =============================================================================
# Tax Calculation Endpoints
# =============================================================================

@router.post(
    "/bas/calculate",
    response_model=BASSummaryResponse,
    summary="Calculate BAS figures",
    description="GST report first, then invoices, then Profit & Loss revenue.",
)
async def calculate_bas_summary(
    body: TaxCalculationRequest,
    session: XeroConnectionSession = Depends(get_xero_session),
    orchestrator: XeroDataSyncOrchestrator = Depends(get_sync_orchestrator),
) -> BASSummaryResponse:
    payload = await _tax_source("bas-data", body, session, orchestrator)
    summary = calculate_bas(payload, body.from_date.isoformat(), body.to_date.isoformat())
    return BASSummaryResponse(**summary)


@router.post(
    "/fbt/calculate",
    response_model=FBTSummaryResponse,
    summary="Calculate FBT figures",
)
async def calculate_fbt_summary(
    body: TaxCalculationRequest,
    session: XeroConnectionSession = Depends(get_xero_session),
    orchestrator: XeroDataSyncOrchestrator = Depends(get_sync_orchestrator),
) -> FBTSummaryResponse:
    payload = await _tax_source("fas-data", body, session, orchestrator)
    summary = calculate_fbt(
        payload,
        body.from_date.isoformat(),
        body.to_date.isoformat(),
        fbt_rate=session.settings.fbt_rate,
    )
    return FBTSummaryResponse(**summary)
