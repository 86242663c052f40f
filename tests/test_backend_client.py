"""
Tests for the compliance backend HTTP client.
"""

import httpx
import pytest

from app.integrations.xero.backend_client import ComplianceBackendClient
from app.integrations.xero.exceptions import XeroBackendUnavailableError, XeroDataFetchError


def make_client(test_settings, handler, **overrides):
    app_settings = test_settings.model_copy(update=overrides) if overrides else test_settings
    return ComplianceBackendClient(app_settings, transport=httpx.MockTransport(handler))


class TestComplianceBackendClient:
    @pytest.mark.asyncio
    async def test_unwraps_data_envelope(self, test_settings):
        def handler(request):
            return httpx.Response(200, json={"success": True, "data": {"connected": True}})

        client = make_client(test_settings, handler)

        assert await client.get_status() == {"connected": True}

    @pytest.mark.asyncio
    async def test_bare_body_is_returned_as_is(self, test_settings):
        def handler(request):
            return httpx.Response(200, json=[{"ContactID": "c-1"}])

        client = make_client(test_settings, handler)

        assert await client.fetch_resource("contacts", "tenant-a") == [{"ContactID": "c-1"}]

    @pytest.mark.asyncio
    async def test_sends_bearer_token_when_configured(self, test_settings):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"data": {}})

        client = make_client(test_settings, handler, compliance_api_token="token-xyz")
        await client.get_settings()

        assert seen == ["Bearer token-xyz"]

    @pytest.mark.asyncio
    async def test_resource_query_drops_empty_params(self, test_settings):
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200, json={"data": []})

        client = make_client(test_settings, handler)
        await client.fetch_resource("bas-data", "tenant-a", {"fromDate": "2024-07-01", "toDate": ""})

        assert seen[0].path == "/api/xero/data/bas-data"
        assert dict(seen[0].params) == {"fromDate": "2024-07-01", "tenantId": "tenant-a"}

    @pytest.mark.asyncio
    async def test_error_status_raises_with_backend_message(self, test_settings):
        def handler(request):
            return httpx.Response(401, json={"success": False, "message": "Token expired"})

        client = make_client(test_settings, handler)

        with pytest.raises(XeroDataFetchError) as exc_info:
            await client.fetch_resource("contacts", "tenant-a")

        assert exc_info.value.message == "Token expired"
        assert exc_info.value.is_unauthorized
        assert exc_info.value.endpoint == "/xero/data/contacts"

    @pytest.mark.asyncio
    async def test_error_without_json_body(self, test_settings):
        def handler(request):
            return httpx.Response(503, text="Service Unavailable")

        client = make_client(test_settings, handler)

        with pytest.raises(XeroDataFetchError) as exc_info:
            await client.get_status()

        assert exc_info.value.message == "HTTP 503"
        assert not exc_info.value.is_unauthorized

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, test_settings):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(test_settings, handler)

        with pytest.raises(XeroBackendUnavailableError):
            await client.get_authorization_url("state")

    @pytest.mark.asyncio
    async def test_connect_error_is_unavailable(self, test_settings):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(test_settings, handler)

        with pytest.raises(XeroBackendUnavailableError) as exc_info:
            await client.disconnect()

        assert isinstance(exc_info.value, XeroDataFetchError)

    @pytest.mark.asyncio
    async def test_authorization_url_field_variants(self, test_settings):
        def handler(request):
            assert request.url.params["state"] == "state-1"
            return httpx.Response(200, json={"data": {"authorizationUrl": "https://login.xero.com/x"}})

        client = make_client(test_settings, handler)

        assert await client.get_authorization_url("state-1") == "https://login.xero.com/x"

    @pytest.mark.asyncio
    async def test_exchange_code_accepts_bare_tenant_list(self, test_settings):
        def handler(request):
            return httpx.Response(200, json={"data": [{"tenantId": "t1"}]})

        client = make_client(test_settings, handler)

        assert await client.exchange_code("code", "state") == {"tenants": [{"tenantId": "t1"}]}
