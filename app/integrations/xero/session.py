"""
Xero Connection Session
State machine for the Xero connection lifecycle of one console session.

Phases:
    DISCONNECTED -> AUTHORIZING -> CONNECTED_NO_TENANT -> TENANT_SELECTED
    -> LOADING_DATA -> READY, with ERROR reachable from AUTHORIZING and
    LOADING_DATA and DISCONNECTED reachable from anywhere.

All mutation goes through the transition methods below so that the tenant
invariant holds in one place: selected_tenant_id is set if and only if the
phase is TENANT_SELECTED, LOADING_DATA or READY, and it is always one of
the known tenants. The resource cache follows the selected tenant.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from app.config import Settings, settings
from app.integrations.xero.backend_client import ComplianceBackendClient
from app.integrations.xero.exceptions import (
    XeroConfigurationError,
    XeroDataFetchError,
    XeroOAuthError,
    XeroSessionError,
)
from app.integrations.xero.oauth import (
    CALLBACK_ERROR_MESSAGES,
    STATE_MISMATCH_MESSAGE,
    XeroOAuth,
    describe_callback_error,
)
from app.integrations.xero.rate_limiter import StatusRefreshGuard
from app.integrations.xero.resource_cache import ResourceCache
from app.integrations.xero.state_store import OAuthStateStore

logger = logging.getLogger(__name__)


class ConnectionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    AUTHORIZING = "authorizing"
    CONNECTED_NO_TENANT = "connected_no_tenant"
    TENANT_SELECTED = "tenant_selected"
    LOADING_DATA = "loading_data"
    READY = "ready"
    ERROR = "error"


# Phases in which a tenant must be selected
TENANT_PHASES = frozenset({
    ConnectionPhase.TENANT_SELECTED,
    ConnectionPhase.LOADING_DATA,
    ConnectionPhase.READY,
})

RECONNECT_REQUIRED_MESSAGE = "Xero connection has expired. Please reconnect your account."


@dataclass(frozen=True)
class Tenant:
    """A Xero organization the session has access to."""
    id: str
    name: str

    @classmethod
    def from_api(cls, data: Any) -> Optional["Tenant"]:
        """Build from a backend tenant record (tenantId/id, tenantName/name)."""
        if not isinstance(data, dict):
            return None
        tenant_id = data.get("tenantId") or data.get("id")
        if not tenant_id:
            return None
        name = (
            data.get("tenantName")
            or data.get("name")
            or data.get("organizationName")
            or str(tenant_id)
        )
        return cls(id=str(tenant_id), name=str(name))


def parse_tenants(raw: Any) -> list[Tenant]:
    """Parse a backend tenant list, keeping backend order and skipping bad records."""
    if not isinstance(raw, list):
        return []
    tenants = []
    for item in raw:
        tenant = Tenant.from_api(item)
        if tenant is not None:
            tenants.append(tenant)
    return tenants


@dataclass
class ConnectionState:
    """Client-visible connection state (one instance per session)."""
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    is_token_valid: bool = False
    # Permissive until the backend says otherwise
    has_credentials: bool = True
    has_expired_tokens: bool = False
    connected: bool = False
    tenants: list[Tenant] = field(default_factory=list)
    selected_tenant_id: Optional[str] = None
    last_error: Optional[str] = None
    is_demo_mode: bool = False
    last_status_refresh: Optional[datetime] = None


@dataclass(frozen=True)
class AuthorizationRequest:
    """Where to send the browser to start authorization."""
    authorization_url: str
    state: str
    source: str  # "backend" or "fallback"


class XeroConnectionSession:
    """
    Explicit state container for the Xero connection.

    Handles:
    - connect / callback / disconnect transitions
    - tenant selection and demo-mode fallback
    - rate-limited status refresh with regression rules
    - loading-phase hooks used by the data sync orchestrator
    """

    def __init__(
        self,
        backend: Optional[ComplianceBackendClient] = None,
        app_settings: Optional[Settings] = None,
        state_store: Optional[OAuthStateStore] = None,
        refresh_guard: Optional[StatusRefreshGuard] = None,
        oauth: Optional[XeroOAuth] = None,
    ):
        self.settings = app_settings or settings
        self.backend = backend or ComplianceBackendClient(self.settings)
        self.state_store = state_store or OAuthStateStore(
            lifetime=timedelta(minutes=self.settings.oauth_state_lifetime_minutes)
        )
        self.refresh_guard = refresh_guard or StatusRefreshGuard(
            cooldown_seconds=self.settings.status_refresh_cooldown_seconds
        )
        self.oauth = oauth or XeroOAuth(self.settings)
        self.state = ConnectionState()
        self.cache = ResourceCache()
        self._auto_load_pending = False

    # =========================================================================
    # Read-only views
    # =========================================================================

    @property
    def phase(self) -> ConnectionPhase:
        return self.state.phase

    @property
    def selected_tenant_id(self) -> Optional[str]:
        return self.state.selected_tenant_id

    @property
    def tenants(self) -> list[Tenant]:
        return list(self.state.tenants)

    @property
    def selected_tenant(self) -> Optional[Tenant]:
        for tenant in self.state.tenants:
            if tenant.id == self.state.selected_tenant_id:
                return tenant
        return None

    @property
    def needs_reconnect(self) -> bool:
        """A tenant session whose token is no longer valid."""
        return self.state.phase in TENANT_PHASES and not self.state.is_token_valid

    @property
    def is_connected(self) -> bool:
        return self.state.connected and self.state.is_token_valid

    @property
    def connection_status(self) -> str:
        """Single status label for badges and banners."""
        if self.state.last_error:
            return "error"
        if self.state.phase == ConnectionPhase.AUTHORIZING:
            return "pending"
        if self.is_connected:
            return "connected"
        if not self.state.has_credentials:
            return "not_configured"
        if self.state.has_expired_tokens or self.needs_reconnect:
            return "expired"
        return "disconnected"

    # =========================================================================
    # Internal transitions
    # =========================================================================

    def _enter(self, phase: ConnectionPhase, tenant_id: Optional[str] = None) -> None:
        """Move to phase, enforcing the tenant invariant and binding the cache."""
        if phase in TENANT_PHASES:
            if tenant_id is None or tenant_id not in {t.id for t in self.state.tenants}:
                raise XeroSessionError(
                    f"Cannot enter {phase.value} without a known tenant",
                    phase=self.state.phase.value,
                )
        else:
            tenant_id = None

        previous = self.state.phase
        self.state.phase = phase
        self.state.selected_tenant_id = tenant_id
        self.cache.bind(tenant_id)

        if previous != phase:
            logger.info("Xero session: %s -> %s", previous.value, phase.value)

    def _fail(self, message: str, phase: ConnectionPhase = ConnectionPhase.ERROR) -> None:
        self.state.last_error = message
        self._enter(phase)

    def _select(self, tenant_id: str) -> None:
        self._enter(ConnectionPhase.TENANT_SELECTED, tenant_id)
        self.state.last_error = None
        self._auto_load_pending = True
        logger.info("Selected Xero tenant %s", tenant_id)

    # =========================================================================
    # User actions
    # =========================================================================

    async def connect(self) -> AuthorizationRequest:
        """
        Start authorization: Disconnected -> Authorizing.

        Asks the backend for an authorization URL (bounded wait) and falls
        back to a locally built URL if the backend cannot provide one.

        Returns:
            AuthorizationRequest with the URL the browser should open

        Raises:
            XeroConfigurationError: Credentials are not configured
            XeroOAuthError: No URL could be produced
        """
        if not self.state.has_credentials:
            error = XeroConfigurationError()
            self.state.last_error = error.message
            raise error

        state_token = self.oauth.generate_state()
        self.state_store.save_state(state_token)
        self.state.last_error = None
        self._auto_load_pending = False
        self._enter(ConnectionPhase.AUTHORIZING)

        authorization_url: Optional[str] = None
        try:
            authorization_url = await self.backend.get_authorization_url(state_token)
        except XeroDataFetchError as e:
            logger.warning("Backend OAuth URL unavailable, using fallback: %s", e.message)

        if authorization_url:
            # Redirect will echo whatever state the backend put in its URL
            issued_state = self.oauth.extract_state(authorization_url)
            if issued_state and issued_state != state_token:
                state_token = issued_state
                self.state_store.save_state(state_token)
            return AuthorizationRequest(authorization_url, state_token, "backend")

        try:
            authorization_url = self.oauth.get_authorization_url(state_token)
        except XeroOAuthError as e:
            self.state_store.clear()
            self._fail(e.message, ConnectionPhase.DISCONNECTED)
            raise

        return AuthorizationRequest(authorization_url, state_token, "fallback")

    async def handle_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_details: Optional[str] = None,
        success: bool = False,
    ) -> list[Tenant]:
        """
        Complete authorization: Authorizing -> ConnectedNoTenant | Error.

        Args:
            code: Authorization code from the redirect
            state: State token echoed by the redirect
            error: Error code from the redirect, if authorization failed
            error_details: Optional provider error details
            success: Redirect reports the backend already exchanged the code

        Returns:
            Tenants the backend reports after the code exchange

        Raises:
            XeroOAuthError: On provider error, missing parameters, state
                mismatch or a failed exchange (phase is ERROR afterwards)
        """
        if error:
            message = describe_callback_error(error, error_details)
            self.state_store.clear()
            self._fail(message)
            raise XeroOAuthError(message, error_code=error)

        if success and not code:
            return await self._confirm_backend_authorization(state)

        if not code or not state:
            message = CALLBACK_ERROR_MESSAGES["missing_parameters"]
            self.state_store.clear()
            self._fail(message)
            raise XeroOAuthError(message, error_code="missing_parameters")

        if not self.state_store.consume_state(state):
            logger.warning("OAuth callback state did not match the pending attempt")
            self._fail(STATE_MISMATCH_MESSAGE)
            raise XeroOAuthError(STATE_MISMATCH_MESSAGE, error_code="invalid_state")

        try:
            result = await self.backend.exchange_code(code, state)
        except XeroDataFetchError as e:
            self._fail(e.message)
            raise XeroOAuthError(e.message, error_code="oauth_failed") from e

        tenants = parse_tenants(result.get("tenants"))
        self.state.tenants = tenants
        self.state.connected = True
        self.state.is_token_valid = True
        self.state.has_expired_tokens = False
        self.state.is_demo_mode = False
        self.state.last_error = None
        self._enter(ConnectionPhase.CONNECTED_NO_TENANT)

        logger.info("Xero authorization complete: %d tenant(s)", len(tenants))

        if len(tenants) == 1:
            self._select(tenants[0].id)

        return tenants

    async def _confirm_backend_authorization(self, state: Optional[str]) -> list[Tenant]:
        """The backend finished the exchange itself; learn the outcome from its status."""
        if state and not self.state_store.consume_state(state):
            self._fail(STATE_MISMATCH_MESSAGE)
            raise XeroOAuthError(STATE_MISMATCH_MESSAGE, error_code="invalid_state")

        self.state_store.clear()
        if self.state.phase == ConnectionPhase.AUTHORIZING:
            self._enter(ConnectionPhase.DISCONNECTED)

        self.refresh_guard.reset()
        refreshed = await self.refresh_status()
        if not refreshed or self.state.phase == ConnectionPhase.DISCONNECTED:
            message = CALLBACK_ERROR_MESSAGES["oauth_failed"]
            self._fail(message, ConnectionPhase.DISCONNECTED)
            raise XeroOAuthError(message, error_code="oauth_failed")

        return self.tenants

    def select_tenant(self, tenant_id: str) -> bool:
        """
        Select a tenant: ConnectedNoTenant/TenantSelected/Ready -> TenantSelected.

        Switching tenants drops all cached data and any in-flight results
        for the old tenant.

        Returns:
            True if the selection changed

        Raises:
            XeroSessionError: Not connected, or unknown tenant id
        """
        if self.state.phase not in TENANT_PHASES and self.state.phase != ConnectionPhase.CONNECTED_NO_TENANT:
            raise XeroSessionError(
                "Connect to Xero before selecting an organization",
                phase=self.state.phase.value,
            )

        if tenant_id not in {t.id for t in self.state.tenants}:
            raise XeroSessionError(f"Unknown Xero organization: {tenant_id}", phase=self.state.phase.value)

        if tenant_id == self.state.selected_tenant_id:
            return False

        self._select(tenant_id)
        return True

    async def refresh_status(self) -> bool:
        """
        Re-fetch connection status and apply the regression rules.

        Dropped silently inside the cooldown window or while another refresh
        runs. Network failures keep the last known state.

        Returns:
            True if a fresh status was applied
        """
        if not self.refresh_guard.try_acquire():
            return False

        async with self.refresh_guard.lock:
            try:
                status = await self.backend.get_status()
            except XeroDataFetchError as e:
                logger.warning("Connection status check failed (keeping last known state): %s", e.message)
                return False

            self._apply_status(status)
            return True

    def _apply_status(self, status: dict[str, Any]) -> None:
        """Replace the status fields atomically and re-derive phase/selection."""
        tenants = parse_tenants(status.get("tenants"))
        is_token_valid = bool(status.get("isTokenValid", False))
        connected = bool(status.get("connected", is_token_valid or bool(tenants)))

        self.state.tenants = tenants
        self.state.is_token_valid = is_token_valid
        self.state.connected = connected
        self.state.has_expired_tokens = bool(status.get("hasExpiredTokens", False))
        if "hasCredentials" in status:
            self.state.has_credentials = bool(status["hasCredentials"])
        self.state.is_demo_mode = False
        self.state.last_status_refresh = datetime.now(timezone.utc)

        if self.state.phase == ConnectionPhase.AUTHORIZING:
            # The callback decides where authorization lands
            return

        if not tenants:
            self._auto_load_pending = False
            if not connected:
                logger.info("No Xero session on the backend, clearing state")
                self._enter(ConnectionPhase.DISCONNECTED)
            else:
                logger.info("No Xero tenants available, clearing selection")
                self._enter(ConnectionPhase.CONNECTED_NO_TENANT)
            return

        selected = self.state.selected_tenant_id
        if selected and selected in {t.id for t in tenants}:
            # Keep phase even if the token expired; needs_reconnect reports that
            return

        self.state.last_error = None
        self._enter(ConnectionPhase.CONNECTED_NO_TENANT)
        if len(tenants) == 1:
            self._select(tenants[0].id)

    async def load_settings(self) -> bool:
        """
        Fetch OAuth client settings to learn whether credentials exist.

        Any failure falls back to assuming credentials are configured.

        Returns:
            True if settings came from the backend
        """
        try:
            data = await self.backend.get_settings()
        except XeroDataFetchError as e:
            logger.warning("Settings fetch failed, using defaults: %s", e.message)
            self.state.has_credentials = True
            return False

        if "hasCredentials" in data:
            self.state.has_credentials = bool(data["hasCredentials"])
        elif any(key in data for key in ("client_id", "clientId")):
            client_id = data.get("client_id") or data.get("clientId")
            client_secret = data.get("client_secret") or data.get("clientSecret")
            self.state.has_credentials = bool(client_id and client_secret)
        else:
            self.state.has_credentials = True

        logger.info("Xero settings loaded (credentials configured: %s)", self.state.has_credentials)
        return True

    async def disconnect(self) -> None:
        """
        Any state -> Disconnected.

        Local state is cleared even if the backend call fails; the failure
        is reported through last_error.
        """
        backend_error: Optional[str] = None
        try:
            await self.backend.disconnect()
        except XeroDataFetchError as e:
            backend_error = e.message
            logger.warning("Backend disconnect failed: %s", e.message)

        self.state_store.clear()
        self.refresh_guard.reset()
        self._auto_load_pending = False
        self.state.tenants = []
        self.state.connected = False
        self.state.is_token_valid = False
        self.state.has_expired_tokens = False
        self.state.is_demo_mode = False
        self._enter(ConnectionPhase.DISCONNECTED)
        self.cache.clear()
        self.state.last_error = (
            f"Failed to disconnect from Xero: {backend_error}" if backend_error else None
        )

    def clear_error(self) -> None:
        """Dismiss last_error; an ERROR phase relaxes to the nearest stable phase."""
        self.state.last_error = None
        if self.state.phase == ConnectionPhase.ERROR:
            if self.state.tenants:
                self._enter(ConnectionPhase.CONNECTED_NO_TENANT)
            else:
                self._enter(ConnectionPhase.DISCONNECTED)

    # =========================================================================
    # Loading hooks (driven by the data sync orchestrator)
    # =========================================================================

    def ensure_tenant_for_loading(self) -> str:
        """
        Make sure a tenant is selected before loading.

        Picks the first tenant if none is selected; with no tenants at all,
        switches to demo mode with a single demo tenant.

        Returns:
            Tenant id to load for
        """
        if self.state.selected_tenant_id:
            return self.state.selected_tenant_id

        if self.state.phase == ConnectionPhase.AUTHORIZING:
            raise XeroSessionError("Authorization is in progress", phase=self.state.phase.value)

        if self.state.tenants:
            tenant_id = self.state.tenants[0].id
            logger.info("Auto-selected tenant %s for data loading", tenant_id)
            self._select(tenant_id)
            return tenant_id

        demo = Tenant(id=self.settings.demo_tenant_id, name=self.settings.demo_tenant_name)
        logger.warning("No Xero tenants available, using demo tenant %s", demo.id)
        self.state.tenants = [demo]
        self.state.is_demo_mode = True
        self._select(demo.id)
        return demo.id

    @property
    def can_fetch(self) -> bool:
        """Credentials exist and the token is usable (or demo data is in use)."""
        return self.state.has_credentials and (self.state.is_demo_mode or not self.needs_reconnect)

    def ensure_can_fetch(self) -> None:
        """
        Refuse backend data requests that cannot succeed.

        Raises:
            XeroConfigurationError: Credentials are not configured
            XeroSessionError: The token expired and the user must reconnect
        """
        if not self.state.has_credentials:
            error = XeroConfigurationError()
            self.state.last_error = error.message
            raise error

        if self.needs_reconnect and not self.state.is_demo_mode:
            self.state.last_error = RECONNECT_REQUIRED_MESSAGE
            raise XeroSessionError(RECONNECT_REQUIRED_MESSAGE, phase=self.state.phase.value)

    def begin_loading(self, tenant_id: str) -> None:
        """
        TenantSelected/Ready -> LoadingData.

        Raises:
            XeroConfigurationError: Credentials are not configured
            XeroSessionError: Wrong tenant, wrong phase, or reconnect needed
        """
        self.ensure_can_fetch()

        if tenant_id != self.state.selected_tenant_id:
            raise XeroSessionError("Tenant changed before loading started", phase=self.state.phase.value)

        if self.state.phase not in (ConnectionPhase.TENANT_SELECTED, ConnectionPhase.READY):
            raise XeroSessionError(
                f"Cannot load data while {self.state.phase.value}",
                phase=self.state.phase.value,
            )

        self._auto_load_pending = False
        self.state.last_error = None
        self._enter(ConnectionPhase.LOADING_DATA, tenant_id)

    def complete_loading(self, tenant_id: str) -> bool:
        """
        LoadingData -> Ready (partial failures included).

        Returns:
            False if the run belonged to a tenant that is no longer selected
        """
        if not self._is_current_run(tenant_id):
            return False
        self._enter(ConnectionPhase.READY, tenant_id)
        return True

    def fail_loading(self, tenant_id: str, message: str) -> bool:
        """
        LoadingData -> Error when the backend is unreachable.

        Returns:
            False if the run belonged to a tenant that is no longer selected
        """
        if not self._is_current_run(tenant_id):
            return False
        self._fail(message)
        return True

    def _is_current_run(self, tenant_id: str) -> bool:
        if (
            self.state.phase != ConnectionPhase.LOADING_DATA
            or self.state.selected_tenant_id != tenant_id
        ):
            logger.info("Ignoring loading result for stale tenant %s", tenant_id)
            return False
        return True

    def consume_auto_load(self) -> Optional[str]:
        """
        Claim the one automatic load owed to a fresh tenant selection.

        The load stays owed while credentials are missing or the token
        has expired.

        Returns:
            Tenant id to load, or None if no automatic load is due
        """
        if not self._auto_load_pending or self.state.phase != ConnectionPhase.TENANT_SELECTED:
            return None

        if not self.can_fetch:
            logger.info("Deferring automatic Xero load until the connection is usable")
            return None

        self._auto_load_pending = False
        return self.state.selected_tenant_id
