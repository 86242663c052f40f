"""
Compliance Backend Client
HTTP calls to the backend that owns Xero tokens and proxies Xero data.

Endpoints:
- GET    /xero/connect                  -> authorization URL
- GET    /xero/status                   -> connection status + tenants
- GET    /xero/settings                 -> OAuth client settings
- POST   /xero/callback                 -> exchange code, returns tenants
- DELETE /xero/disconnect               -> clear backend session
- GET    /xero/data/{resourceType}      -> live resource payload
- GET    /xero/demo/{resourceType}      -> demo fallback payload
"""

import logging
from typing import Any, Optional, Union

import httpx

from app.config import Settings, settings
from app.integrations.xero.exceptions import (
    XeroBackendUnavailableError,
    XeroDataFetchError,
)

logger = logging.getLogger(__name__)

# Sentinel meaning "no timeout" for calls that must not be cut short
NO_TIMEOUT = httpx.Timeout(None)


def _unwrap(body: Any) -> Any:
    """Backend responses are usually {"success": ..., "data": ...}; return the data part."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or fallback)
    return fallback


class ComplianceBackendClient:
    """
    Async client for the compliance backend's Xero surface.

    A fresh httpx.AsyncClient is opened per call; pass a transport to
    route calls somewhere other than the network (tests, proxies).
    """

    CONNECT_PATH = "/xero/connect"
    STATUS_PATH = "/xero/status"
    SETTINGS_PATH = "/xero/settings"
    CALLBACK_PATH = "/xero/callback"
    DISCONNECT_PATH = "/xero/disconnect"
    DATA_PATH = "/xero/data/{resource_type}"
    DEMO_PATH = "/xero/demo/{resource_type}"

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        app_settings = app_settings or settings
        self.base_url = app_settings.compliance_api_base_url.rstrip("/")
        self.api_token = app_settings.compliance_api_token
        self.authorization_url_timeout = app_settings.authorization_url_timeout_seconds
        self.settings_timeout = app_settings.settings_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        timeout: Union[float, httpx.Timeout] = NO_TIMEOUT,
        **kwargs: Any,
    ) -> Any:
        """
        Issue one request and return the unwrapped JSON body.

        Raises:
            XeroBackendUnavailableError: Connection failure or timeout
            XeroDataFetchError: Non-2xx response
        """
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                raise XeroBackendUnavailableError(
                    f"Request to {path} timed out", endpoint=path
                ) from e
            except httpx.TransportError as e:
                raise XeroBackendUnavailableError(
                    f"Unable to reach compliance backend: {e}", endpoint=path
                ) from e

        if response.status_code >= 400:
            raise XeroDataFetchError(
                message=_error_message(response, f"HTTP {response.status_code}"),
                status_code=response.status_code,
                endpoint=path,
            )

        if not response.content:
            return None

        try:
            return _unwrap(response.json())
        except ValueError as e:
            raise XeroDataFetchError(
                "Invalid JSON in backend response",
                status_code=response.status_code,
                endpoint=path,
            ) from e

    async def get_authorization_url(self, state: Optional[str] = None) -> Optional[str]:
        """
        Ask the backend for an authorization URL (bounded wait).

        Returns:
            The URL, or None if the backend answered without one
        """
        params = {"state": state} if state else None
        data = await self._request(
            "GET",
            self.CONNECT_PATH,
            timeout=self.authorization_url_timeout,
            params=params,
        )
        if isinstance(data, dict):
            return data.get("authUrl") or data.get("authorizationUrl") or data.get("url")
        return None

    async def get_status(self) -> dict[str, Any]:
        """Fetch {connected, isTokenValid, tenants, hasExpiredTokens, hasCredentials}."""
        data = await self._request("GET", self.STATUS_PATH)
        return data if isinstance(data, dict) else {}

    async def get_settings(self) -> dict[str, Any]:
        """Fetch OAuth client settings (bounded wait)."""
        data = await self._request("GET", self.SETTINGS_PATH, timeout=self.settings_timeout)
        return data if isinstance(data, dict) else {}

    async def exchange_code(self, code: str, state: str) -> dict[str, Any]:
        """Hand the redirect's code/state to the backend; returns tenants + confirmation."""
        data = await self._request(
            "POST",
            self.CALLBACK_PATH,
            json={"code": code, "state": state},
        )
        return data if isinstance(data, dict) else {"tenants": data or []}

    async def disconnect(self) -> None:
        await self._request("DELETE", self.DISCONNECT_PATH)

    async def fetch_resource(
        self,
        resource_type: str,
        tenant_id: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Fetch one live resource payload scoped to a tenant."""
        query = {k: v for k, v in (params or {}).items() if v not in (None, "")}
        query["tenantId"] = tenant_id
        return await self._request(
            "GET",
            self.DATA_PATH.format(resource_type=resource_type),
            params=query,
        )

    async def fetch_demo_resource(self, resource_type: str) -> Any:
        """Fetch the demo variant of a resource payload."""
        return await self._request(
            "GET",
            self.DEMO_PATH.format(resource_type=resource_type),
        )
