"""
Service layer infrastructure - resilience patterns for vendor API calls.

Provides:
- ResponseCache: TTL cache with bounded size
- CircuitBreaker: Prevents cascading failures
- RateLimiter: Sliding window limiter for writes
- RequestDeduplicator: Prevents duplicate concurrent requests
- RequestQueue: Priority ordered, bounded concurrency scheduling
- with_retry: Exponential backoff with jitter
- ResilienceContext: Owns one instance of each component
- ServiceClient: Unified client combining all patterns
"""

from switchlink.services.errors import (
    ErrorKind,
    ServiceError,
    AuthenticationError,
    TokenExpiredError,
    RateLimitError,
    CircuitOpenError,
    NetworkError,
    RequestTimeoutError,
    ResponseParseError,
    UpstreamResponseError,
    DeviceOfflineError,
    DeviceNotFoundError,
    ValidationError,
    ConfigurationError,
    QueueFullError,
    QueueClearedError,
    get_error_kind,
    is_retryable,
)
from switchlink.services.cache import CacheConfig, CacheEntry, ResponseCache
from switchlink.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from switchlink.services.rate_limiter import RateLimiter, RateLimiterConfig
from switchlink.services.deduplicator import RequestDeduplicator
from switchlink.services.request_queue import Priority, RequestQueue, RequestQueueConfig
from switchlink.services.retry import (
    AGGRESSIVE_RETRY_POLICY,
    CONSERVATIVE_RETRY_POLICY,
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    retryable,
    with_retry,
)
from switchlink.services.context import ResilienceContext
from switchlink.services.client import RequestOptions, ServiceClient

__all__ = [
    # Errors
    "ErrorKind",
    "ServiceError",
    "AuthenticationError",
    "TokenExpiredError",
    "RateLimitError",
    "CircuitOpenError",
    "NetworkError",
    "RequestTimeoutError",
    "ResponseParseError",
    "UpstreamResponseError",
    "DeviceOfflineError",
    "DeviceNotFoundError",
    "ValidationError",
    "ConfigurationError",
    "QueueFullError",
    "QueueClearedError",
    "get_error_kind",
    "is_retryable",
    # Cache
    "CacheConfig",
    "CacheEntry",
    "ResponseCache",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Rate Limiter
    "RateLimiter",
    "RateLimiterConfig",
    # Deduplicator
    "RequestDeduplicator",
    # Queue
    "Priority",
    "RequestQueue",
    "RequestQueueConfig",
    # Retry
    "RetryPolicy",
    "DEFAULT_RETRY_POLICY",
    "AGGRESSIVE_RETRY_POLICY",
    "CONSERVATIVE_RETRY_POLICY",
    "retryable",
    "with_retry",
    # Client
    "ResilienceContext",
    "RequestOptions",
    "ServiceClient",
]
