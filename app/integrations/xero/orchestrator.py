"""
Xero Data Sync Orchestrator
Loads every core catalog resource for the selected tenant into the session cache.

Loading strategy:
- Strictly sequential, in catalog order, with a fixed delay between requests
  (the backend proxies Xero and Xero rate-limits aggressively)
- 401 on a resource -> exactly one fetch of its demo variant
- Any other failure is recorded against that key and the loop continues
- Results that arrive after a tenant switch are dropped
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from app.integrations.xero.backend_client import ComplianceBackendClient
from app.integrations.xero.catalog import (
    ALL_BASIC_DATA_KEY,
    CORE_RESOURCE_KEYS,
    CORE_RESOURCES,
    ResourceDefinition,
    get_resource,
    normalize_resource_type,
)
from app.integrations.xero.exceptions import (
    XeroBackendUnavailableError,
    XeroConfigurationError,
    XeroDataFetchError,
    XeroSessionError,
)
from app.integrations.xero.resource_cache import CacheEntry
from app.integrations.xero.session import XeroConnectionSession

logger = logging.getLogger(__name__)

FAILED_TO_LOAD = "Failed to load"


@dataclass
class SyncResult:
    """Outcome of one load-all run."""
    tenant_id: Optional[str] = None
    loaded: list[str] = field(default_factory=list)
    demo: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: bool = False
    discarded: bool = False

    @property
    def is_partial(self) -> bool:
        return bool(self.loaded) and bool(self.failed)


class XeroDataSyncOrchestrator:
    """
    Drives the LoadingData phase of a XeroConnectionSession.

    Only one run may be in flight; a second trigger while running is a no-op.
    """

    def __init__(
        self,
        session: XeroConnectionSession,
        backend: Optional[ComplianceBackendClient] = None,
        request_delay: Optional[float] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            session: Connection session whose cache is populated
            backend: Backend client (defaults to the session's)
            request_delay: Seconds between resource requests
        """
        self.session = session
        self.backend = backend or session.backend
        self.request_delay = (
            session.settings.resource_request_delay_seconds if request_delay is None else request_delay
        )
        self._running = False
        self._fetch_lock = asyncio.Lock()
        self._last_fetch_at: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def load_all(self, force_refresh: bool = False) -> SyncResult:
        """
        Load all core resources for the selected tenant.

        Args:
            force_refresh: Reload even if every core resource is cached

        Returns:
            SyncResult describing what was loaded, what fell back to demo
            data and what failed
        """
        if self._running:
            logger.info("Xero data load already in progress, ignoring trigger")
            return SyncResult(tenant_id=self.session.selected_tenant_id, skipped=True)

        self._running = True
        try:
            async with self._fetch_lock:
                result = await self._run(force_refresh)
        finally:
            self._running = False

        if result.discarded:
            # The newly selected tenant is still owed its automatic load
            await self.auto_load()

        return result

    async def auto_load(self) -> Optional[SyncResult]:
        """Run the one automatic load owed to a fresh tenant selection, if any."""
        if self._running:
            return None

        tenant_id = self.session.consume_auto_load()
        if tenant_id is None:
            return None

        logger.info("Auto-loading Xero data for tenant %s", tenant_id)
        try:
            return await self.load_all()
        except (XeroConfigurationError, XeroSessionError) as e:
            logger.warning("Automatic Xero load for tenant %s did not start: %s", tenant_id, e.message)
            return None

    async def _run(self, force_refresh: bool) -> SyncResult:
        tenant_id = self.session.ensure_tenant_for_loading()
        cache = self.session.cache

        if not force_refresh and cache.has_complete_data(CORE_RESOURCE_KEYS):
            logger.info("All Xero resources already cached for tenant %s, skipping load", tenant_id)
            return SyncResult(tenant_id=tenant_id, skipped=True)

        self.session.begin_loading(tenant_id)
        result = SyncResult(tenant_id=tenant_id)
        unavailable: list[XeroBackendUnavailableError] = []

        logger.info("Loading %d Xero resources for tenant %s", len(CORE_RESOURCES), tenant_id)

        for index, resource in enumerate(CORE_RESOURCES):
            if index > 0 and self.request_delay > 0:
                await asyncio.sleep(self.request_delay)

            if self.session.selected_tenant_id != tenant_id:
                result.discarded = True
                break

            entry, error = await self._load_key(resource, tenant_id)
            if entry is None:
                result.discarded = True
                break

            if entry.is_error:
                result.failed[resource.key] = entry.error or FAILED_TO_LOAD
                if isinstance(error, XeroBackendUnavailableError):
                    unavailable.append(error)
            else:
                result.loaded.append(resource.key)
                if entry.is_demo:
                    result.demo.append(resource.key)

        if result.discarded:
            logger.info("Tenant changed during load, discarded results for tenant %s", tenant_id)
            return result

        cache.store_payload(ALL_BASIC_DATA_KEY, self._aggregate(), tenant_id)

        if len(unavailable) == len(CORE_RESOURCES):
            self.session.fail_loading(tenant_id, unavailable[0].message)
        else:
            self.session.complete_loading(tenant_id)

        logger.info(
            "Xero load finished for tenant %s: %d loaded (%d demo), %d failed",
            tenant_id,
            len(result.loaded),
            len(result.demo),
            len(result.failed),
        )
        return result

    async def load_resource(self, resource_type: str, **params: Any) -> CacheEntry:
        """
        Load one resource (core or extended) for the selected tenant.

        Does not change the session phase. Requests share the pacing of
        load_all and are refused while a load-all run is in progress.

        Args:
            resource_type: Catalog key or a name normalize_resource_type accepts
            **params: Extra query parameters for the backend (dates, filters)

        Returns:
            The stored cache entry (may be an error marker)

        Raises:
            ValueError: Unknown resource type
            XeroConfigurationError: Credentials are not configured
            XeroSessionError: No tenant selected, token expired, a load-all
                run is in progress, or the tenant changed mid-load
        """
        key = normalize_resource_type(resource_type)
        resource = get_resource(key)
        if resource is None:
            raise ValueError(f"{key} is built by load-all and cannot be loaded on its own")

        if self._running:
            raise XeroSessionError(
                "Xero data is still loading, try again when it finishes",
                phase=self.session.phase.value,
            )

        self.session.ensure_can_fetch()

        tenant_id = self.session.selected_tenant_id
        if not tenant_id:
            raise XeroSessionError(
                "Select a Xero organization before loading data",
                phase=self.session.phase.value,
            )

        async with self._fetch_lock:
            await self._wait_for_request_slot()
            entry, _ = await self._load_key(resource, tenant_id, params)

        if entry is None:
            raise XeroSessionError(
                "Organization changed while loading, result discarded",
                phase=self.session.phase.value,
            )

        if key in CORE_RESOURCE_KEYS and ALL_BASIC_DATA_KEY in self.session.cache:
            self.session.cache.store_payload(ALL_BASIC_DATA_KEY, self._aggregate(), tenant_id)

        return entry

    async def _wait_for_request_slot(self) -> None:
        """Sleep out whatever remains of the delay since the previous request."""
        if self._last_fetch_at is None or self.request_delay <= 0:
            return
        remaining = self.request_delay - (time.monotonic() - self._last_fetch_at)
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def _load_key(
        self,
        resource: ResourceDefinition,
        tenant_id: str,
        params: Optional[dict[str, Any]] = None,
    ) -> tuple[Optional[CacheEntry], Optional[XeroDataFetchError]]:
        """
        Fetch one resource, falling back to demo data once on 401.

        Returns:
            (stored entry or None if discarded, the error that caused an error entry)
        """
        cache = self.session.cache
        self._last_fetch_at = time.monotonic()

        try:
            payload = await self.backend.fetch_resource(resource.key, tenant_id, params)
        except XeroDataFetchError as e:
            if not e.is_unauthorized:
                logger.warning("Failed to load %s: %s", resource.key, e.message)
                return cache.store_error(resource.key, e.message, tenant_id), e

            logger.warning("Unauthorized loading %s, trying demo data", resource.key)
            try:
                payload = await self.backend.fetch_demo_resource(resource.demo_key)
            except XeroDataFetchError as demo_error:
                logger.warning("Demo data for %s unavailable: %s", resource.key, demo_error.message)
                return cache.store_error(resource.key, FAILED_TO_LOAD, tenant_id), demo_error

            return cache.store_payload(resource.key, payload, tenant_id, is_demo=True), None

        return cache.store_payload(resource.key, payload, tenant_id), None

    def _aggregate(self) -> dict[str, Any]:
        """Every core key mapped to its payload, or {"error": message}."""
        aggregate: dict[str, Any] = {}
        for key in CORE_RESOURCE_KEYS:
            entry = self.session.cache.get(key)
            if entry is None:
                continue
            aggregate[key] = {"error": entry.error} if entry.is_error else entry.payload
        return aggregate
