"""
Error classification and user-facing messages.
"""

from __future__ import annotations

from enum import Enum

import httpx

from ..ledger_client import LedgerAPIError, LedgerConnectionError, LedgerTimeoutError


class ErrorKind(str, Enum):
    """Classified kind of an operational failure."""

    NETWORK = "network"
    SYNC_FAILURE = "sync_failure"
    VALIDATION = "validation"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


# Message fragments that indicate a transient network problem
NETWORK_MARKERS = (
    "network",
    "connection",
    "econnrefused",
    "econnreset",
    "429",
)

TIMEOUT_MARKERS = ("timeout", "timed out", "etimedout")


def _classify_status(status_code: int) -> ErrorKind:
    if status_code in (401, 403):
        return ErrorKind.PERMISSION
    if status_code == 409:
        return ErrorKind.CONFLICT
    if status_code in (400, 422):
        return ErrorKind.VALIDATION
    if status_code in (408, 504):
        return ErrorKind.TIMEOUT
    if status_code == 429 or status_code >= 500:
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def classify_exception(error: BaseException) -> ErrorKind:
    """
    Map an exception onto an ErrorKind.

    Rules (first match wins):
    - Timeouts (client or transport) -> TIMEOUT
    - Connection failures -> NETWORK
    - API errors by status code (401/403 permission, 409 conflict,
      400/422 validation, 408/504 timeout, 429/5xx network)
    - ValueError -> VALIDATION
    - Message heuristics (timeout, network/connection, sync)
    - Otherwise UNKNOWN
    """
    if isinstance(error, (LedgerTimeoutError, httpx.TimeoutException, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (LedgerConnectionError, httpx.NetworkError, ConnectionError)):
        return ErrorKind.NETWORK
    if isinstance(error, LedgerAPIError):
        return _classify_status(error.status_code)
    if isinstance(error, httpx.HTTPStatusError):
        return _classify_status(error.response.status_code)
    if isinstance(error, ValueError):
        return ErrorKind.VALIDATION

    message = str(error).lower()
    if any(marker in message for marker in TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    if any(marker in message for marker in NETWORK_MARKERS):
        return ErrorKind.NETWORK
    if "sync" in message:
        return ErrorKind.SYNC_FAILURE
    return ErrorKind.UNKNOWN


def get_error_message(error: object) -> str:
    """Extract a readable message from an exception or arbitrary error value."""
    default = "An unexpected error occurred"
    if error is None:
        return default
    if isinstance(error, str):
        return error or default
    if isinstance(error, LedgerAPIError):
        return error.message or str(error)
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, dict):
        if error.get("message"):
            return str(error["message"])
        if "code" in error:
            return f"Error code: {error['code']}"
    return default


def user_friendly_message(kind: ErrorKind, retry_count: int, max_retries: int = 3) -> str:
    """Kind-specific message shown to the user when an error is reported."""
    if kind == ErrorKind.NETWORK:
        hint = "Retrying..." if retry_count < max_retries else "Please check your internet connection."
        return f"Network connection issue. {hint}"
    if kind == ErrorKind.SYNC_FAILURE:
        hint = "Retrying..." if retry_count < min(2, max_retries) else "Please try again later."
        return f"Failed to sync with your bank. {hint}"
    if kind == ErrorKind.VALIDATION:
        return "Please check your information and try again."
    if kind == ErrorKind.PERMISSION:
        return "You don't have permission to perform this action. Please log in again."
    if kind == ErrorKind.TIMEOUT:
        hint = "Retrying..." if retry_count < max_retries else "Please try again later."
        return f"The operation timed out. {hint}"
    if kind == ErrorKind.CONFLICT:
        return "There are conflicts that need resolution. Please review and try again."
    return "An unexpected error occurred. Please try again later."
