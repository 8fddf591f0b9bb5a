"""
Error types for Flagsense SDK.

Provides structured error handling with categories for better error management.
"""

from enum import Enum
from typing import Optional

import httpx


RETRYABLE_STATUS_CODES = frozenset({205, 408, 422, 429})
"""Statuses outside 5xx that the service uses to ask for a retry."""


class ErrorCategory(str, Enum):
    """Categories of errors for classification."""

    CONFIGURATION = "configuration"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    NOT_READY = "not_ready"
    UNKNOWN = "unknown"


class FlagsenseError(Exception):
    """Base exception for all Flagsense SDK errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.status_code = status_code
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, category={self.category})"


class ConfigurationError(FlagsenseError):
    """Raised when the SDK is constructed without required credentials."""

    def __init__(self, message: str = "Empty sdk params not allowed"):
        super().__init__(message, category=ErrorCategory.CONFIGURATION)


class NetworkError(FlagsenseError):
    """Raised when a request never produced an HTTP response."""

    def __init__(self, message: str = "Network error"):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            status_code=None,
            retryable=True,
        )


class RateLimitError(FlagsenseError):
    """Raised when rate limited (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.RATE_LIMIT,
            status_code=429,
            retryable=True,
        )
        self.retry_after = retry_after


class ServerError(FlagsenseError):
    """Raised when the server answers with a 5xx status."""

    def __init__(self, message: str = "Internal server error", status_code: int = 500):
        super().__init__(
            message,
            category=ErrorCategory.SERVER,
            status_code=status_code,
            retryable=True,
        )


class RequestError(FlagsenseError):
    """Raised for any other unexpected status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(
            message,
            category=ErrorCategory.CLIENT,
            status_code=status_code,
            retryable=status_code in RETRYABLE_STATUS_CODES,
        )


class EvaluationError(FlagsenseError):
    """Raised when a variant cannot be evaluated (data not loaded, unknown flag)."""

    def __init__(self, message: str = "Loading data"):
        super().__init__(message, category=ErrorCategory.NOT_READY)


def is_retryable_status(status_code: int) -> bool:
    """Check whether an HTTP status should be retried."""
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600


def status_error(status_code: int, message: Optional[str] = None) -> FlagsenseError:
    """
    Build the error matching an HTTP status code.

    Args:
        status_code: HTTP status of the response
        message: Optional message override

    Returns:
        A FlagsenseError subclass with the right retryable flag
    """
    message = message or f"Request failed: {status_code}"
    if status_code == 429:
        return RateLimitError(message)
    if 500 <= status_code < 600:
        return ServerError(message, status_code)
    return RequestError(message, status_code)


def classify_error(error: Exception) -> FlagsenseError:
    """
    Classify an exception into a FlagsenseError.

    Args:
        error: The original exception

    Returns:
        A classified FlagsenseError
    """
    if isinstance(error, FlagsenseError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        return status_error(error.response.status_code, str(error))

    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return NetworkError(str(error) or error.__class__.__name__)

    return FlagsenseError(str(error))
