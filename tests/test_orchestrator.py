"""
Tests for the Xero data sync orchestrator.

Tests cover:
- sequential load of the core catalog in order, with inter-request delays
- idempotent reloads and force_refresh
- 401 -> single demo fallback, other failures recorded per key
- backend unreachable -> ERROR
- tenant switch mid-load discards stale results
- single-resource loads with extra parameters
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from app.integrations.xero.catalog import ALL_BASIC_DATA_KEY, CORE_RESOURCE_KEYS
from app.integrations.xero.exceptions import XeroConfigurationError, XeroSessionError
from app.integrations.xero.orchestrator import FAILED_TO_LOAD, XeroDataSyncOrchestrator
from app.integrations.xero.session import RECONNECT_REQUIRED_MESSAGE, ConnectionPhase, XeroConnectionSession

from conftest import TENANT_A, TENANT_B


def requested_keys(fake_backend) -> list[str]:
    return [r.url.path.rsplit("/", 1)[-1] for r in fake_backend.data_requests()]


# =============================================================================
# load_all
# =============================================================================


class TestLoadAll:
    @pytest.mark.asyncio
    async def test_loads_core_resources_in_catalog_order(self, session, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)

        result = await orchestrator.load_all()

        assert requested_keys(fake_backend) == list(CORE_RESOURCE_KEYS)
        assert all(r.url.params["tenantId"] == "tenant-a" for r in fake_backend.data_requests())
        assert result.loaded == list(CORE_RESOURCE_KEYS)
        assert result.failed == {}
        assert session.phase == ConnectionPhase.READY

        aggregate = session.cache.get(ALL_BASIC_DATA_KEY).payload
        assert set(aggregate) == set(CORE_RESOURCE_KEYS)
        assert aggregate["contacts"] == [{"Name": "contacts record"}]

    @pytest.mark.asyncio
    async def test_second_load_is_a_no_op(self, session, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)
        await orchestrator.load_all()

        result = await orchestrator.load_all()

        assert result.skipped
        assert len(fake_backend.data_requests()) == len(CORE_RESOURCE_KEYS)
        assert session.phase == ConnectionPhase.READY

    @pytest.mark.asyncio
    async def test_force_refresh_reloads(self, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)
        await orchestrator.load_all()

        result = await orchestrator.load_all(force_refresh=True)

        assert not result.skipped
        assert len(fake_backend.data_requests()) == 2 * len(CORE_RESOURCE_KEYS)

    @pytest.mark.asyncio
    async def test_empty_payload_counts_as_missing(self, orchestrator, fake_backend, connect_tenants):
        fake_backend.resources["quotes"] = []
        await connect_tenants(TENANT_A)
        await orchestrator.load_all()

        result = await orchestrator.load_all()

        assert not result.skipped

    @pytest.mark.asyncio
    async def test_waits_between_requests(self, session, connect_tenants):
        await connect_tenants(TENANT_A)
        orchestrator = XeroDataSyncOrchestrator(session, request_delay=0.5)

        with patch(
            "app.integrations.xero.orchestrator.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            await orchestrator.load_all()

        assert mock_sleep.await_count == len(CORE_RESOURCE_KEYS) - 1
        for call in mock_sleep.await_args_list:
            assert call.args == (0.5,)

    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_ignored(self, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)

        first, second = await asyncio.gather(orchestrator.load_all(), orchestrator.load_all())

        assert not first.skipped
        assert second.skipped
        assert len(fake_backend.data_requests()) == len(CORE_RESOURCE_KEYS)
        assert not orchestrator.is_running


# =============================================================================
# Failure handling
# =============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_unauthorized_falls_back_to_demo_once(self, session, orchestrator, fake_backend, connect_tenants):
        fake_backend.resource_errors["contacts"] = (401, "Unauthorized")
        await connect_tenants(TENANT_A)

        result = await orchestrator.load_all()

        assert result.demo == ["contacts"]
        assert "contacts" in result.loaded
        entry = session.cache.get("contacts")
        assert entry.is_demo
        assert entry.payload == [{"Name": "demo contacts"}]
        assert fake_backend.count("/xero/demo/contacts") == 1
        assert session.phase == ConnectionPhase.READY

    @pytest.mark.asyncio
    async def test_failed_demo_fallback_records_failed_to_load(self, session, orchestrator, fake_backend, connect_tenants):
        fake_backend.resource_errors["contacts"] = (401, "Unauthorized")
        fake_backend.demo_errors["contacts"] = (500, "Demo unavailable")
        await connect_tenants(TENANT_A)

        result = await orchestrator.load_all()

        assert result.failed == {"contacts": FAILED_TO_LOAD}
        assert session.cache.get("contacts").error == FAILED_TO_LOAD
        assert fake_backend.count("/xero/demo/contacts") == 1
        assert session.phase == ConnectionPhase.READY

    @pytest.mark.asyncio
    async def test_server_error_is_recorded_and_loop_continues(self, session, orchestrator, fake_backend, connect_tenants):
        fake_backend.resource_errors["invoices"] = (500, "Xero API error")
        await connect_tenants(TENANT_A)

        result = await orchestrator.load_all()

        assert result.failed == {"invoices": "Xero API error"}
        assert result.is_partial
        assert len(result.loaded) == len(CORE_RESOURCE_KEYS) - 1
        assert fake_backend.count("/xero/demo/invoices") == 0
        aggregate = session.cache.get(ALL_BASIC_DATA_KEY).payload
        assert aggregate["invoices"] == {"error": "Xero API error"}
        assert session.phase == ConnectionPhase.READY

    @pytest.mark.asyncio
    async def test_unreachable_backend_moves_to_error(self, session, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)
        fake_backend.unreachable = True

        result = await orchestrator.load_all()

        assert len(result.failed) == len(CORE_RESOURCE_KEYS)
        assert session.phase == ConnectionPhase.ERROR
        assert session.state.last_error.startswith("Unable to reach compliance backend")
        assert session.selected_tenant_id is None

    @pytest.mark.asyncio
    async def test_expired_token_blocks_loading(self, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A, token_valid=False)

        with pytest.raises(XeroSessionError):
            await orchestrator.load_all()

        assert fake_backend.data_requests() == []
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_expired_token_blocks_single_loads(self, session, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)
        await orchestrator.load_all()
        await connect_tenants(TENANT_A, token_valid=False)

        with pytest.raises(XeroSessionError):
            await orchestrator.load_resource("invoices", fromDate="2024-07-01")

        assert len(fake_backend.data_requests()) == len(CORE_RESOURCE_KEYS)
        assert session.state.last_error == RECONNECT_REQUIRED_MESSAGE

    @pytest.mark.asyncio
    async def test_expired_token_defers_auto_load(self, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A, token_valid=False)

        assert await orchestrator.auto_load() is None
        assert fake_backend.data_requests() == []

        await connect_tenants(TENANT_A)
        result = await orchestrator.auto_load()

        assert result is not None and result.loaded == list(CORE_RESOURCE_KEYS)


# =============================================================================
# Tenant switching
# =============================================================================


class TestTenantSwitch:
    @pytest.mark.asyncio
    async def test_switch_mid_load_discards_and_reloads(self, session, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A, TENANT_B)
        session.select_tenant("tenant-a")
        switched = []

        def switch_on_accounts(request):
            if request.url.path.endswith("/accounts") and not switched:
                switched.append(True)
                session.select_tenant("tenant-b")

        fake_backend.on_request = switch_on_accounts

        result = await orchestrator.load_all()

        assert result.discarded
        assert result.tenant_id == "tenant-a"
        tenants_requested = [r.url.params["tenantId"] for r in fake_backend.data_requests()]
        assert tenants_requested[:3] == ["tenant-a"] * 3
        assert tenants_requested[3:] == ["tenant-b"] * len(CORE_RESOURCE_KEYS)
        assert session.phase == ConnectionPhase.READY
        assert session.selected_tenant_id == "tenant-b"
        assert session.cache.tenant_id == "tenant-b"
        assert all(entry.tenant_id == "tenant-b" for entry in session.cache.snapshot().values())


# =============================================================================
# Demo mode and auto-load
# =============================================================================


class TestDemoAndAutoLoad:
    @pytest.mark.asyncio
    async def test_loads_for_demo_tenant_without_tenants(self, session, orchestrator, fake_backend, test_settings):
        result = await orchestrator.load_all()

        assert result.tenant_id == test_settings.demo_tenant_id
        assert session.state.is_demo_mode
        assert all(
            r.url.params["tenantId"] == test_settings.demo_tenant_id
            for r in fake_backend.data_requests()
        )
        assert session.phase == ConnectionPhase.READY

    @pytest.mark.asyncio
    async def test_auto_load_runs_once_per_selection(self, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)

        first = await orchestrator.auto_load()
        second = await orchestrator.auto_load()

        assert first is not None and first.loaded
        assert second is None
        assert len(fake_backend.data_requests()) == len(CORE_RESOURCE_KEYS)

    @pytest.mark.asyncio
    async def test_auto_load_needs_a_selection(self, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A, TENANT_B)

        assert await orchestrator.auto_load() is None
        assert fake_backend.data_requests() == []


# =============================================================================
# load_resource
# =============================================================================


class TestLoadResource:
    @pytest.mark.asyncio
    async def test_forwards_parameters_without_phase_change(self, session, orchestrator, fake_backend, connect_tenants):
        fake_backend.resources["bas-data"] = {"gstReport": {"Rows": []}}
        await connect_tenants(TENANT_A)

        entry = await orchestrator.load_resource("basData", fromDate="2024-01-01", toDate="2024-03-31")

        request = fake_backend.data_requests()[0]
        assert request.url.path == "/api/xero/data/bas-data"
        assert request.url.params["fromDate"] == "2024-01-01"
        assert request.url.params["toDate"] == "2024-03-31"
        assert request.url.params["tenantId"] == "tenant-a"
        assert entry.payload == {"gstReport": {"Rows": []}}
        assert session.cache.get("bas-data") is entry
        assert session.phase == ConnectionPhase.TENANT_SELECTED

    @pytest.mark.asyncio
    async def test_requires_selected_tenant(self, orchestrator, connect_tenants):
        await connect_tenants(TENANT_A, TENANT_B)

        with pytest.raises(XeroSessionError):
            await orchestrator.load_resource("contacts")

    @pytest.mark.asyncio
    async def test_rejects_unknown_and_aggregate_types(self, orchestrator, connect_tenants):
        await connect_tenants(TENANT_A)

        with pytest.raises(ValueError):
            await orchestrator.load_resource("widgets")
        with pytest.raises(ValueError):
            await orchestrator.load_resource(ALL_BASIC_DATA_KEY)

    @pytest.mark.asyncio
    async def test_requires_credentials(self, session, orchestrator, connect_tenants):
        await connect_tenants(TENANT_A)
        session.state.has_credentials = False

        with pytest.raises(XeroConfigurationError):
            await orchestrator.load_resource("contacts")

    @pytest.mark.asyncio
    async def test_unauthorized_single_load_uses_demo(self, session, orchestrator, fake_backend, connect_tenants):
        fake_backend.resource_errors["tax-rates"] = (401, "Unauthorized")
        await connect_tenants(TENANT_A)

        entry = await orchestrator.load_resource("tax_rates")

        assert entry.is_demo
        assert fake_backend.count("/xero/demo/tax-rates") == 1

    @pytest.mark.asyncio
    async def test_refused_while_load_all_runs(self, session, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)
        orchestrator = XeroDataSyncOrchestrator(session, request_delay=0.01)

        run = asyncio.create_task(orchestrator.load_all())
        await asyncio.sleep(0)
        assert orchestrator.is_running

        with pytest.raises(XeroSessionError):
            await orchestrator.load_resource("payments")

        result = await run
        assert result.loaded == list(CORE_RESOURCE_KEYS)
        assert requested_keys(fake_backend) == list(CORE_RESOURCE_KEYS)

    @pytest.mark.asyncio
    async def test_single_loads_keep_the_request_delay(self, session, connect_tenants):
        await connect_tenants(TENANT_A)
        orchestrator = XeroDataSyncOrchestrator(session, request_delay=0.5)

        with patch(
            "app.integrations.xero.orchestrator.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            await orchestrator.load_resource("contacts")
            await orchestrator.load_resource("accounts")

        assert mock_sleep.await_count == 1
        assert 0 < mock_sleep.await_args.args[0] <= 0.5

    @pytest.mark.asyncio
    async def test_core_reload_refreshes_aggregate(self, session, orchestrator, fake_backend, connect_tenants):
        await connect_tenants(TENANT_A)
        await orchestrator.load_all()
        fake_backend.resources["invoices"] = [{"InvoiceNumber": "INV-2"}]

        await orchestrator.load_resource("invoices", fromDate="2024-07-01")

        aggregate = session.cache.get(ALL_BASIC_DATA_KEY).payload
        assert aggregate["invoices"] == [{"InvoiceNumber": "INV-2"}]
        assert aggregate["contacts"] == [{"Name": "contacts record"}]

    def test_default_delay_comes_from_session_settings(self, backend_client, test_settings):
        app_settings = test_settings.model_copy(update={"resource_request_delay_seconds": 1.25})
        session = XeroConnectionSession(backend=backend_client, app_settings=app_settings)

        assert XeroDataSyncOrchestrator(session).request_delay == 1.25
