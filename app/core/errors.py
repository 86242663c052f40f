"""
Error Handling Utilities
Provides sanitized error messages and consistent error responses.
"""

import logging
from enum import Enum
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.integrations.xero.exceptions import (
    TaxFieldNotFoundError,
    XeroBackendUnavailableError,
    XeroConfigurationError,
    XeroDataFetchError,
    XeroOAuthError,
    XeroSessionError,
)

logger = logging.getLogger(__name__)

HTTP_422_UNPROCESSABLE = 422


class ErrorCode(str, Enum):
    """Error codes for frontend handling."""

    # Xero integration errors
    XERO_NOT_CONFIGURED = "xero_not_configured"
    XERO_AUTH_FAILED = "xero_auth_failed"
    XERO_TOKEN_INVALID = "xero_token_invalid"
    XERO_INVALID_STATE = "xero_invalid_state"
    XERO_DATA_FETCH_FAILED = "xero_data_fetch_failed"
    XERO_BACKEND_UNAVAILABLE = "xero_backend_unavailable"

    # Session and tax calculation errors
    SESSION_CONFLICT = "session_conflict"
    TAX_FIELDS_NOT_FOUND = "tax_fields_not_found"
    RESOURCE_NOT_LOADED = "resource_not_loaded"

    # General errors
    VALIDATION_ERROR = "validation_error"
    INTERNAL_ERROR = "internal_error"


# User-friendly error messages
ERROR_MESSAGES = {
    ErrorCode.XERO_NOT_CONFIGURED: "Xero credentials are not configured. Ask an administrator to add them.",
    ErrorCode.XERO_AUTH_FAILED: "Xero authorization failed. Please try connecting again.",
    ErrorCode.XERO_TOKEN_INVALID: "Xero connection has expired. Please reconnect your account.",
    ErrorCode.XERO_INVALID_STATE: "Invalid or expired authorization state. Please restart the connection.",
    ErrorCode.XERO_DATA_FETCH_FAILED: "Unable to fetch data from Xero. Please try again in a moment.",
    ErrorCode.XERO_BACKEND_UNAVAILABLE: "The compliance backend is unreachable. Please try again in a moment.",
    ErrorCode.SESSION_CONFLICT: "That action is not available right now.",
    ErrorCode.TAX_FIELDS_NOT_FOUND: "The report does not contain the expected tax figures.",
    ErrorCode.RESOURCE_NOT_LOADED: "That data has not been loaded yet.",
    ErrorCode.VALIDATION_ERROR: "Invalid request. Please check your input and try again.",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again later.",
}


def sanitize_error_message(
    exception: Exception,
    error_code: ErrorCode,
    log_details: bool = True,
) -> str:
    """
    Sanitize error message for user-facing responses.

    Integration exceptions carry messages written for the user and are
    passed through; anything else gets the generic text for its code.

    Args:
        exception: The exception that occurred
        error_code: Error code for categorization
        log_details: Whether to log full exception details

    Returns:
        User-friendly error message
    """
    if log_details:
        logger.error(
            "Error [%s]: %s",
            error_code.value,
            str(exception),
            exc_info=exception,
        )

    message = getattr(exception, "message", None)
    if error_code != ErrorCode.INTERNAL_ERROR and isinstance(message, str) and message:
        return message

    return ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCode.INTERNAL_ERROR])


def get_error_code_for_exception(exception: Exception) -> tuple[ErrorCode, int]:
    """
    Map exception types to error codes and HTTP status codes.

    Args:
        exception: The exception that occurred

    Returns:
        Tuple of (error_code, http_status_code)
    """
    if isinstance(exception, XeroConfigurationError):
        return ErrorCode.XERO_NOT_CONFIGURED, status.HTTP_412_PRECONDITION_FAILED

    if isinstance(exception, XeroOAuthError):
        if exception.error_code == "invalid_grant":
            return ErrorCode.XERO_TOKEN_INVALID, status.HTTP_401_UNAUTHORIZED
        if exception.error_code == "invalid_state":
            return ErrorCode.XERO_INVALID_STATE, status.HTTP_400_BAD_REQUEST
        return ErrorCode.XERO_AUTH_FAILED, status.HTTP_400_BAD_REQUEST

    if isinstance(exception, XeroSessionError):
        return ErrorCode.SESSION_CONFLICT, status.HTTP_409_CONFLICT

    if isinstance(exception, XeroBackendUnavailableError):
        return ErrorCode.XERO_BACKEND_UNAVAILABLE, status.HTTP_502_BAD_GATEWAY

    if isinstance(exception, XeroDataFetchError):
        return ErrorCode.XERO_DATA_FETCH_FAILED, status.HTTP_502_BAD_GATEWAY

    if isinstance(exception, TaxFieldNotFoundError):
        return ErrorCode.TAX_FIELDS_NOT_FOUND, HTTP_422_UNPROCESSABLE

    if isinstance(exception, ValueError):
        return ErrorCode.VALIDATION_ERROR, status.HTTP_400_BAD_REQUEST

    # Default to internal error
    return ErrorCode.INTERNAL_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR


async def global_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    """
    Exception handler for FastAPI.

    Returns {"error_code", "message"} with a sanitized message.
    HTTPException is left to FastAPI (intentional responses).
    """
    if isinstance(exc, HTTPException):
        raise exc

    error_code, http_status = get_error_code_for_exception(exc)
    # Expected domain failures are not worth a traceback
    message = sanitize_error_message(exc, error_code, log_details=http_status >= 500)
    if http_status < 500:
        logger.warning("Request failed [%s]: %s", error_code.value, message)

    return JSONResponse(
        status_code=http_status,
        content={
            "error_code": error_code.value,
            "message": message,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Route integration exceptions (and ValueError) through global_exception_handler."""
    for exception_class in (
        XeroConfigurationError,
        XeroOAuthError,
        XeroSessionError,
        XeroDataFetchError,
        TaxFieldNotFoundError,
        ValueError,
    ):
        app.add_exception_handler(exception_class, global_exception_handler)


def create_error_response(
    error_code: ErrorCode,
    message: Optional[str] = None,
    http_status: Optional[int] = None,
) -> HTTPException:
    """
    Create a standardized HTTPException with error code.

    Args:
        error_code: Error code enum
        message: Optional custom message (uses default if not provided)
        http_status: Optional HTTP status code (uses default if not provided)

    Returns:
        HTTPException with standardized format
    """
    if message is None:
        message = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCode.INTERNAL_ERROR])

    if http_status is None:
        # Default status codes by error type
        if error_code == ErrorCode.XERO_NOT_CONFIGURED:
            http_status = status.HTTP_412_PRECONDITION_FAILED
        elif error_code == ErrorCode.XERO_TOKEN_INVALID:
            http_status = status.HTTP_401_UNAUTHORIZED
        elif error_code in [ErrorCode.XERO_AUTH_FAILED, ErrorCode.XERO_INVALID_STATE, ErrorCode.VALIDATION_ERROR]:
            http_status = status.HTTP_400_BAD_REQUEST
        elif error_code in [ErrorCode.XERO_DATA_FETCH_FAILED, ErrorCode.XERO_BACKEND_UNAVAILABLE]:
            http_status = status.HTTP_502_BAD_GATEWAY
        elif error_code == ErrorCode.SESSION_CONFLICT:
            http_status = status.HTTP_409_CONFLICT
        elif error_code == ErrorCode.TAX_FIELDS_NOT_FOUND:
            http_status = HTTP_422_UNPROCESSABLE
        elif error_code == ErrorCode.RESOURCE_NOT_LOADED:
            http_status = status.HTTP_404_NOT_FOUND
        else:
            http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    return HTTPException(
        status_code=http_status,
        detail={
            "error_code": error_code.value,
            "message": message,
        },
    )
