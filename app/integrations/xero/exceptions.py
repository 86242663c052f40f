"""
Xero Integration Exceptions
Custom exceptions for Xero integration.
"""

from typing import Optional, Sequence


class XeroDataFetchError(Exception):
    """Exception for data fetching errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(self.message)

    @property
    def is_unauthorized(self) -> bool:
        """True for 401-class failures (expired or missing authorization)."""
        return self.status_code == 401


class XeroBackendUnavailableError(XeroDataFetchError):
    """The compliance backend could not be reached at all (connect error or timeout)."""


class XeroOAuthError(Exception):
    """Custom exception for Xero OAuth errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class XeroConfigurationError(Exception):
    """Raised when OAuth client credentials are not configured for the account."""

    def __init__(self, message: str = "Xero credentials not configured"):
        self.message = message
        super().__init__(self.message)


class XeroSessionError(Exception):
    """Raised when an action is not valid for the current connection phase."""

    def __init__(self, message: str, phase: Optional[str] = None):
        self.message = message
        self.phase = phase
        super().__init__(self.message)


class TaxFieldNotFoundError(Exception):
    """
    Raised when no report row matches the descriptions a tax statement needs.

    Returning zero here would produce a silently wrong statement, so callers
    get the keywords that were searched for instead.
    """

    def __init__(self, statement: str, expected_keywords: Sequence[str]):
        self.statement = statement
        self.expected_keywords = list(expected_keywords)
        keywords = ", ".join(f"'{keyword}'" for keyword in self.expected_keywords)
        self.message = (
            f"No {statement} figures found in the report. "
            f"Expected row descriptions containing one of: {keywords}"
        )
        super().__init__(self.message)
