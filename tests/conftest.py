"""
Shared fixtures: a fake compliance backend served through httpx.MockTransport.
"""

from typing import Any, Callable, Optional

import httpx
import pytest

from app.config import Settings
from app.integrations.xero.backend_client import ComplianceBackendClient
from app.integrations.xero.orchestrator import XeroDataSyncOrchestrator
from app.integrations.xero.session import XeroConnectionSession

BACKEND_URL = "http://backend.test/api"

TENANT_A = {"tenantId": "tenant-a", "tenantName": "Alpha Pty Ltd"}
TENANT_B = {"tenantId": "tenant-b", "tenantName": "Bravo Holdings"}


class FakeBackend:
    """In-memory stand-in for the compliance backend's /xero surface."""

    def __init__(self):
        self.status: dict[str, Any] = {
            "connected": False,
            "isTokenValid": False,
            "tenants": [],
            "hasExpiredTokens": False,
        }
        self.settings: dict[str, Any] = {"client_id": "client-123", "client_secret": "secret"}
        self.auth_url: Optional[str] = (
            "https://login.xero.com/identity/connect/authorize?client_id=client-123&state=backend-state"
        )
        self.callback_tenants: list[dict[str, Any]] = [TENANT_A, TENANT_B]
        self.resources: dict[str, Any] = {}
        self.resource_errors: dict[str, tuple[int, str]] = {}
        self.demo_resources: dict[str, Any] = {}
        self.demo_errors: dict[str, tuple[int, str]] = {}
        self.endpoint_errors: dict[str, tuple[int, str]] = {}
        self.unreachable = False
        self.on_request: Optional[Callable[[httpx.Request], None]] = None
        self.requests: list[httpx.Request] = []

    def connect_tenants(self, *tenants: dict[str, Any], token_valid: bool = True) -> None:
        self.status = {
            "connected": True,
            "isTokenValid": token_valid,
            "tenants": list(tenants),
            "hasExpiredTokens": not token_valid,
        }

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def paths(self) -> list[str]:
        return [request.url.path.removeprefix("/api") for request in self.requests]

    def count(self, path: str) -> int:
        return sum(1 for p in self.paths() if p == path)

    def data_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/api/xero/data/")]

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    @staticmethod
    def _ok(data: Any) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": data})

    @staticmethod
    def _error(status_code: int, message: str) -> httpx.Response:
        return httpx.Response(status_code, json={"success": False, "message": message})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request:
            self.on_request(request)

        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path.removeprefix("/api")
        if path in self.endpoint_errors:
            return self._error(*self.endpoint_errors[path])

        if path == "/xero/connect":
            return self._ok({"authUrl": self.auth_url})
        if path == "/xero/status":
            return self._ok(self.status)
        if path == "/xero/settings":
            return self._ok(self.settings)
        if path == "/xero/callback" and request.method == "POST":
            return self._ok({"tenants": self.callback_tenants, "message": "connected"})
        if path == "/xero/disconnect" and request.method == "DELETE":
            return self._ok(None)

        if path.startswith("/xero/data/"):
            key = path.removeprefix("/xero/data/")
            if key in self.resource_errors:
                return self._error(*self.resource_errors[key])
            return self._ok(self.resources.get(key, [{"Name": f"{key} record"}]))

        if path.startswith("/xero/demo/"):
            key = path.removeprefix("/xero/demo/")
            if key in self.demo_errors:
                return self._error(*self.demo_errors[key])
            return self._ok(self.demo_resources.get(key, [{"Name": f"demo {key}"}]))

        return self._error(404, "Not found")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings():
    """Settings pointing at the fake backend with no inter-request delay."""
    return Settings(
        _env_file=None,
        compliance_api_base_url=BACKEND_URL,
        xero_client_id="client-123",
        resource_request_delay_seconds=0,
    )


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def backend_client(test_settings, fake_backend):
    return ComplianceBackendClient(
        test_settings,
        transport=httpx.MockTransport(fake_backend.handler),
    )


@pytest.fixture
def session(backend_client, test_settings):
    return XeroConnectionSession(backend=backend_client, app_settings=test_settings)


@pytest.fixture
def orchestrator(session):
    return XeroDataSyncOrchestrator(session, request_delay=0)


@pytest.fixture
def connect_tenants(session, fake_backend):
    """Async helper: make the backend report tenants and apply a status refresh."""

    async def _connect(*tenants: dict[str, Any], token_valid: bool = True) -> None:
        fake_backend.connect_tenants(*tenants, token_valid=token_valid)
        session.refresh_guard.reset()
        assert await session.refresh_status()

    return _connect
