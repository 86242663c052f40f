"""
Xero OAuth 2.0 Utilities
Handles state generation, fallback authorization URLs and callback error messages.

Token exchange happens on the compliance backend; this side only sees the
authorization URL, the redirect parameters and the resulting tenant list.
"""

import secrets
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

from app.config import Settings, settings
from app.integrations.xero.exceptions import XeroOAuthError


# Error codes the redirect route may receive, mapped to user-facing messages
CALLBACK_ERROR_MESSAGES: dict[str, str] = {
    "oauth_denied": "OAuth authorization was denied",
    "missing_parameters": "Missing authorization parameters",
    "invalid_state": "Invalid or expired authorization state",
    "oauth_failed": "OAuth flow failed",
    "invalid_grant": "Authorization code expired",
    "invalid_client": "Invalid Xero app configuration",
    "missing_credentials": "Xero credentials not configured",
}

STATE_MISMATCH_MESSAGE = "state mismatch"


def describe_callback_error(error_code: str, details: Optional[str] = None) -> str:
    """
    Map a callback error code to a human-readable message.

    Args:
        error_code: Error code from the redirect query string
        details: Optional provider error details

    Returns:
        Message suitable for lastError
    """
    message = CALLBACK_ERROR_MESSAGES.get(error_code, f"Connection failed: {error_code}")
    if details:
        return f"{message} ({details})"
    return message


class XeroOAuth:
    """
    Xero OAuth 2.0 client-side helper.

    Handles:
    - Anti-CSRF state generation
    - Fallback authorization URL construction (backend unreachable)
    - Reading the state embedded in a backend-issued authorization URL
    """

    # Xero OAuth 2.0 endpoints
    AUTHORIZATION_URL = "https://login.xero.com/identity/connect/authorize"

    def __init__(self, app_settings: Optional[Settings] = None):
        app_settings = app_settings or settings
        self.client_id = app_settings.xero_client_id
        self.redirect_uri = app_settings.xero_redirect_uri
        self.scopes = app_settings.xero_scopes

    @staticmethod
    def generate_state() -> str:
        """Generate a cryptographically secure state parameter."""
        return secrets.token_urlsafe(32)

    @property
    def can_build_fallback_url(self) -> bool:
        return bool(self.client_id)

    def get_authorization_url(self, state: str) -> str:
        """
        Generate the Xero authorization URL client-side.

        Used only when the backend cannot hand out one in time.

        Args:
            state: CSRF protection token held in the state store

        Returns:
            Full authorization URL to redirect user to

        Raises:
            XeroOAuthError: If no client id is configured locally
        """
        if not self.can_build_fallback_url:
            raise XeroOAuthError(
                message="Unable to generate Xero authorization URL. Please check your configuration.",
                error_code="oauth_failed",
            )

        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "state": state,
        }
        # Use urlencode for proper URL encoding of special characters
        query_string = urlencode(params)
        return f"{self.AUTHORIZATION_URL}?{query_string}"

    @staticmethod
    def extract_state(authorization_url: str) -> Optional[str]:
        """
        Read the state parameter from an authorization URL.

        The backend may issue its own state; the redirect will echo that one.
        """
        query = parse_qs(urlparse(authorization_url).query)
        values = query.get("state")
        return values[0] if values else None
