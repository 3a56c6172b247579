"""
Service layer exceptions.

Every error raised by the request pipeline carries an ``ErrorKind`` tag plus
the payload needed to act on it (retry-after, reset time, status code, field).
Callers classify failures through ``get_error_kind`` / ``is_retryable``
instead of walking the class hierarchy.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any

import httpx


class ErrorKind(str, Enum):
    """Tag identifying the category of a pipeline failure."""

    AUTH_ERROR = "AUTH_ERROR"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    RATE_LIMITED = "RATE_LIMITED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    API_ERROR = "API_ERROR"
    DEVICE_OFFLINE = "DEVICE_OFFLINE"
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    QUEUE_FULL = "QUEUE_FULL"
    QUEUE_CLEARED = "QUEUE_CLEARED"
    UNKNOWN = "UNKNOWN_ERROR"


# Retried under the default policy
RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.AUTH_ERROR,
        ErrorKind.TOKEN_EXPIRED,
        ErrorKind.RATE_LIMITED,
        ErrorKind.CIRCUIT_OPEN,
        ErrorKind.NETWORK_ERROR,
        ErrorKind.TIMEOUT,
    }
)

# Never retried, whatever a policy says
NEVER_RETRY_KINDS = frozenset({ErrorKind.VALIDATION_ERROR, ErrorKind.CONFIG_ERROR})

# Failures that say nothing about upstream health
NON_UPSTREAM_KINDS = frozenset(
    {
        ErrorKind.AUTH_ERROR,
        ErrorKind.TOKEN_EXPIRED,
        ErrorKind.RATE_LIMITED,
        ErrorKind.CIRCUIT_OPEN,
        ErrorKind.DEVICE_OFFLINE,
        ErrorKind.DEVICE_NOT_FOUND,
        ErrorKind.VALIDATION_ERROR,
        ErrorKind.CONFIG_ERROR,
        ErrorKind.QUEUE_FULL,
        ErrorKind.QUEUE_CLEARED,
    }
)


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    http_status: int | None = None

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        cause: BaseException | None = None,
    ):
        self.service_id = service_id
        self.cause = cause
        self.timestamp = datetime.now()
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "name": type(self).__name__,
            "kind": self.kind.value,
            "message": self.message,
            "retryable": is_retryable(self),
            "http_status": self.http_status,
            "service_id": self.service_id,
            "timestamp": self.timestamp.isoformat(),
        }


class AuthenticationError(ServiceError):
    """Authentication or authorization rejected (401/403)."""

    kind = ErrorKind.AUTH_ERROR
    http_status = 401

    def __init__(self, message: str = "Authentication failed", **kwargs: Any):
        super().__init__(message, **kwargs)


class TokenExpiredError(AuthenticationError):
    """Authentication token has expired."""

    kind = ErrorKind.TOKEN_EXPIRED

    def __init__(
        self, message: str = "Authentication token has expired", **kwargs: Any
    ):
        super().__init__(message, **kwargs)


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    kind = ErrorKind.RATE_LIMITED
    http_status = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        self.retry_after = retry_after
        if retry_after is not None:
            message += f", retry after {retry_after:.1f}s"
        super().__init__(message, **kwargs)


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, reset_after_seconds: float, service_id: str | None = None):
        self.reset_after_seconds = reset_after_seconds
        target = f" for service '{service_id}'" if service_id else ""
        super().__init__(
            f"Circuit breaker open{target}, retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )

    @property
    def retry_after(self) -> float:
        return self.reset_after_seconds


class NetworkError(ServiceError):
    """Connection-level failure talking to the upstream API."""

    kind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str = "Network request failed", **kwargs: Any):
        super().__init__(message, **kwargs)


class RequestTimeoutError(NetworkError):
    """Request timed out."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float, service_id: str | None = None, **kwargs: Any):
        self.timeout = timeout
        target = f" to service '{service_id}'" if service_id else ""
        super().__init__(
            f"Request{target} timed out after {timeout}s",
            service_id=service_id,
            **kwargs,
        )


class ResponseParseError(ServiceError):
    """Upstream returned a body that could not be decoded."""

    kind = ErrorKind.PARSE_ERROR

    def __init__(
        self, message: str, response_preview: str | None = None, **kwargs: Any
    ):
        self.response_preview = response_preview[:200] if response_preview else None
        super().__init__(message, **kwargs)


class UpstreamResponseError(ServiceError):
    """Upstream answered with a non-success status code."""

    kind = ErrorKind.API_ERROR

    def __init__(
        self,
        status_code: int,
        reason: str = "",
        response_body: str | None = None,
        **kwargs: Any,
    ):
        self.status_code = status_code
        self.http_status = status_code
        self.response_body = response_body[:500] if response_body else None
        super().__init__(f"API request failed: {status_code} {reason}".rstrip(), **kwargs)


class DeviceOfflineError(ServiceError):
    """Device is offline or unreachable."""

    kind = ErrorKind.DEVICE_OFFLINE

    def __init__(self, device_id: str, device_name: str | None = None, **kwargs: Any):
        self.device_id = device_id
        self.device_name = device_name
        super().__init__(
            f"Device {device_name or device_id} is offline or unreachable", **kwargs
        )


class DeviceNotFoundError(ServiceError):
    """Device does not exist upstream."""

    kind = ErrorKind.DEVICE_NOT_FOUND
    http_status = 404

    def __init__(self, device_id: str, **kwargs: Any):
        self.device_id = device_id
        super().__init__(f"Device {device_id} not found", **kwargs)


class ValidationError(ServiceError):
    """Invalid input supplied by the caller."""

    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, field: str, message: str, value: Any = None, **kwargs: Any):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {message}", **kwargs)


class ConfigurationError(ServiceError):
    """Configuration values are missing or out of range."""

    kind = ErrorKind.CONFIG_ERROR

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: list[str] | None = None,
        **kwargs: Any,
    ):
        self.field = field
        self.details = details or []
        super().__init__(message, **kwargs)


class QueueFullError(ServiceError):
    """Request queue has no room for another request."""

    kind = ErrorKind.QUEUE_FULL

    def __init__(self, message: str = "Request queue is full", **kwargs: Any):
        super().__init__(message, **kwargs)


class QueueClearedError(ServiceError):
    """Queued request was discarded before it was dispatched."""

    kind = ErrorKind.QUEUE_CLEARED

    def __init__(self, message: str = "Request queue cleared", **kwargs: Any):
        super().__init__(message, **kwargs)


def get_error_kind(error: BaseException) -> ErrorKind:
    """Map any exception onto an ``ErrorKind``."""
    if isinstance(error, ServiceError):
        return error.kind
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ErrorKind.NETWORK_ERROR
    return ErrorKind.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """Check if an error is worth retrying under the default policy."""
    kind = get_error_kind(error)
    if kind == ErrorKind.API_ERROR:
        status = getattr(error, "status_code", None)
        return status is not None and 500 <= status < 600
    return kind in RETRYABLE_KINDS


def counts_as_upstream_failure(error: BaseException) -> bool:
    """Whether an error says the upstream service itself is unhealthy.

    Client errors (4xx, validation, local admission refusals) are not fed
    to the circuit breaker.
    """
    kind = get_error_kind(error)
    if kind == ErrorKind.API_ERROR:
        status = getattr(error, "status_code", None)
        return status is None or status >= 500
    return kind not in NON_UPSTREAM_KINDS


def create_api_error(
    status_code: int,
    reason: str,
    response_body: str | None = None,
    retry_after: float | None = None,
    service_id: str | None = None,
) -> ServiceError:
    """Build the appropriate error for a non-success upstream response."""
    if status_code == 401:
        return AuthenticationError(f"Unauthorized: {reason}", service_id=service_id)
    if status_code == 403:
        return AuthenticationError(f"Forbidden: {reason}", service_id=service_id)
    if status_code == 429:
        return RateLimitError(
            f"Rate limited: {reason}", retry_after=retry_after, service_id=service_id
        )
    return UpstreamResponseError(
        status_code, reason, response_body, service_id=service_id
    )
