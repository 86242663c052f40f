"""
Xero Integration Package
Connection lifecycle, data loading and report normalization for Xero via the compliance backend.
"""

from app.integrations.xero.backend_client import ComplianceBackendClient
from app.integrations.xero.exceptions import XeroDataFetchError, XeroOAuthError
from app.integrations.xero.oauth import XeroOAuth
from app.integrations.xero.orchestrator import SyncResult, XeroDataSyncOrchestrator
from app.integrations.xero.session import ConnectionPhase, XeroConnectionSession

__all__ = [
    "ComplianceBackendClient",
    "ConnectionPhase",
    "SyncResult",
    "XeroConnectionSession",
    "XeroDataSyncOrchestrator",
    "XeroOAuth",
    "XeroDataFetchError",
    "XeroOAuthError",
]
