"""
Error taxonomy for the LLM engine.

Every provider-facing failure is an ``LLMError`` carrying the originating
provider id, an ``ErrorCode`` and whether the failure may be retried.
Retryability travels with the error; the dispatcher never guesses it.
"""

import asyncio
from enum import Enum
from typing import Any

import httpx


class ErrorCode(str, Enum):
    """Classified failure kinds."""
    # Authentication
    INVALID_API_KEY = "INVALID_API_KEY"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"

    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    # Request errors
    INVALID_REQUEST = "INVALID_REQUEST"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    CONTEXT_LENGTH_EXCEEDED = "CONTEXT_LENGTH_EXCEEDED"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"

    # Server errors
    SERVER_ERROR = "SERVER_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"

    # Network errors
    NETWORK_ERROR = "NETWORK_ERROR"
    CONNECTION_FAILED = "CONNECTION_FAILED"

    # Content errors
    CONTENT_FILTER = "CONTENT_FILTER"
    SAFETY_FILTER = "SAFETY_FILTER"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES = frozenset({
    ErrorCode.RATE_LIMIT_EXCEEDED,
    ErrorCode.SERVER_ERROR,
    ErrorCode.SERVICE_UNAVAILABLE,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.CONNECTION_FAILED,
})


class LLMError(Exception):
    """
    Exception raised when a completion fails.

    Args:
        provider_id: Provider that produced the failure
        message: Human readable message
        code: Classified error code
        retryable: Whether the dispatcher may retry. Defaults to the
            code's standard retryability when omitted.
        status_code: HTTP status code, if the failure came from HTTP
        details: Optional underlying cause payload (response body, exception)
    """

    def __init__(
        self,
        provider_id: str,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        retryable: bool | None = None,
        status_code: int | None = None,
        details: Any = None,
    ):
        self.provider_id = provider_id
        self.message = message
        self.code = code
        self.retryable = code in RETRYABLE_CODES if retryable is None else retryable
        self.status_code = status_code
        self.details = details
        super().__init__(f"[{provider_id}] {message}")

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(provider_id={self.provider_id!r}, "
            f"code={self.code.value}, retryable={self.retryable})"
        )


class RequestCancelledError(LLMError):
    """Raised to a stream consumer once its request has been cancelled."""

    def __init__(self, provider_id: str, request_id: str):
        self.request_id = request_id
        super().__init__(
            provider_id,
            f"Request {request_id} cancelled",
            code=ErrorCode.UNKNOWN_ERROR,
            retryable=False,
        )


class ProviderNotFoundError(LLMError):
    """Raised when a request resolves to a provider that is not registered."""

    def __init__(self, provider_id: str):
        super().__init__(
            provider_id,
            f"Provider {provider_id} not registered",
            code=ErrorCode.UNKNOWN_ERROR,
            retryable=False,
        )


class LLMEngineError(Exception):
    """Base exception for engine-level errors."""
    pass


class ValidationError(LLMEngineError):
    """Exception raised when request validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")


class ConcurrencyLimitError(LLMEngineError):
    """Raised under the ``reject`` policy when all request slots are busy."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Concurrent request limit reached ({limit})")


def error_from_status(
    provider_id: str,
    status_code: int,
    message: str,
    details: Any = None,
) -> LLMError:
    """
    Map an HTTP status code to a classified LLMError.

    Args:
        provider_id: Provider name
        status_code: HTTP status of the failed response
        message: Error message extracted from the response
        details: Parsed response body, if any

    Returns:
        LLMError with code and retryability set
    """
    lowered = message.lower()
    if status_code == 401:
        code = ErrorCode.INVALID_API_KEY
    elif status_code == 403:
        code = ErrorCode.AUTHENTICATION_FAILED
    elif status_code == 429:
        if "quota" in lowered or "insufficient" in lowered:
            code = ErrorCode.QUOTA_EXCEEDED
        else:
            code = ErrorCode.RATE_LIMIT_EXCEEDED
    elif status_code == 402:
        code = ErrorCode.QUOTA_EXCEEDED
    elif status_code == 400:
        if "context" in lowered and "length" in lowered:
            code = ErrorCode.CONTEXT_LENGTH_EXCEEDED
        elif "safety" in lowered:
            code = ErrorCode.SAFETY_FILTER
        elif "content" in lowered and "filter" in lowered:
            code = ErrorCode.CONTENT_FILTER
        else:
            code = ErrorCode.INVALID_REQUEST
    elif status_code == 404:
        code = ErrorCode.MODEL_NOT_FOUND
    elif status_code == 413:
        code = ErrorCode.CONTEXT_LENGTH_EXCEEDED
    elif status_code == 422:
        code = ErrorCode.INVALID_PARAMETERS
    elif status_code == 408:
        code = ErrorCode.TIMEOUT
    elif status_code in (503, 504):
        code = ErrorCode.SERVICE_UNAVAILABLE
    elif status_code >= 500:
        code = ErrorCode.SERVER_ERROR
    else:
        code = ErrorCode.UNKNOWN_ERROR

    return LLMError(
        provider_id,
        message,
        code=code,
        status_code=status_code,
        details=details,
    )


def classify_exception(provider_id: str, exc: BaseException) -> LLMError:
    """
    Wrap an arbitrary exception into an LLMError.

    httpx transport failures map to network/timeout codes (retryable);
    anything unrecognised becomes a non-retryable UNKNOWN_ERROR.
    """
    if isinstance(exc, LLMError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return LLMError(provider_id, "Request timed out", ErrorCode.TIMEOUT, details=exc)
    if isinstance(exc, httpx.ConnectError):
        return LLMError(
            provider_id,
            f"Connection failed: {exc}",
            ErrorCode.CONNECTION_FAILED,
            details=exc,
        )
    if isinstance(exc, httpx.TransportError):
        return LLMError(
            provider_id,
            f"Network error: {exc}",
            ErrorCode.NETWORK_ERROR,
            details=exc,
        )
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_status(
            provider_id,
            exc.response.status_code,
            f"API error: {exc.response.text}",
            details=exc,
        )
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return LLMError(provider_id, "Request timed out", ErrorCode.TIMEOUT, details=exc)
    return LLMError(
        provider_id,
        f"Request failed: {exc}",
        ErrorCode.UNKNOWN_ERROR,
        retryable=False,
        details=exc,
    )
