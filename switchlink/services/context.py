"""
ResilienceContext - Owns one instance of every pipeline component.

The application entry point builds a context, hands it to the clients that
need it, and tears it down with ``reset()`` / ``shutdown()``. Tests build a
fresh context per case with a fake clock.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from loguru import logger

from switchlink.services.cache import CacheConfig, ResponseCache
from switchlink.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from switchlink.services.deduplicator import RequestDeduplicator
from switchlink.services.rate_limiter import RateLimiter, RateLimiterConfig
from switchlink.services.request_queue import RequestQueue, RequestQueueConfig
from switchlink.services.retry import DEFAULT_RETRY_POLICY, RetryPolicy

if TYPE_CHECKING:
    from switchlink.settings import Settings


@dataclass
class ResilienceContext:
    """Registry of the shared components behind one upstream service."""

    cache: ResponseCache
    circuit_breaker: CircuitBreaker
    rate_limiter: RateLimiter
    deduplicator: RequestDeduplicator
    queue: RequestQueue
    retry_policy: RetryPolicy | None = None  # Applied to reads by ServiceClient.request()
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    @classmethod
    def create(
        cls,
        service_id: str = "leviton",
        cache_config: CacheConfig | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
        limiter_config: RateLimiterConfig | None = None,
        queue_config: RequestQueueConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        dedupe_max_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        debug: bool = False,
    ) -> "ResilienceContext":
        """Build a context, using component defaults for anything omitted."""
        return cls(
            cache=ResponseCache(cache_config, clock=clock, debug=debug),
            circuit_breaker=CircuitBreaker(service_id, breaker_config, clock=clock),
            rate_limiter=RateLimiter(
                limiter_config, clock=clock, sleep=sleep, debug=debug
            ),
            deduplicator=RequestDeduplicator(max_size=dedupe_max_size, debug=debug),
            queue=RequestQueue(queue_config, clock=clock, debug=debug),
            retry_policy=retry_policy,
            sleep=sleep,
        )

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        service_id: str = "leviton",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "ResilienceContext":
        """
        Build a context from validated settings.

        Raises:
            ConfigurationError: If any setting is out of range
        """
        from switchlink.settings import validate_settings

        validate_settings(settings)

        return cls.create(
            service_id=service_id,
            cache_config=CacheConfig(
                ttl=settings.cache_ttl,
                max_size=settings.cache_max_size,
                update_on_access=settings.cache_update_on_access,
            ),
            breaker_config=CircuitBreakerConfig(
                failure_threshold=settings.breaker_failure_threshold,
                reset_timeout=settings.breaker_reset_timeout,
                half_open_max=settings.breaker_half_open_max,
                failure_window=settings.breaker_failure_window,
            ),
            limiter_config=RateLimiterConfig(
                max_requests=settings.rate_limit_max_requests,
                window=settings.rate_limit_window,
                wait_on_limit=settings.rate_limit_wait,
                max_wait=settings.rate_limit_max_wait,
            ),
            queue_config=RequestQueueConfig(
                max_concurrent=settings.queue_max_concurrent,
                max_queue_size=settings.queue_max_size,
                request_timeout=settings.queue_request_timeout,
            ),
            retry_policy=DEFAULT_RETRY_POLICY.with_overrides(
                max_attempts=settings.retry_max_attempts
            ),
            clock=clock,
            sleep=sleep,
            debug=settings.debug,
        )

    def get_status(self) -> dict[str, Any]:
        """Snapshot for health checks."""
        breaker = self.circuit_breaker
        return {
            "circuit_breaker": breaker.get_status(),
            "rate_limiter": self.rate_limiter.get_status(),
            "cache": self.cache.get_stats().to_dict(),
            "deduplicator": self.deduplicator.get_stats().to_dict(),
            "queue": self.queue.get_stats(),
        }

    def reset(self) -> None:
        """Return every component to its initial state."""
        self.queue.reset()
        self.deduplicator.reset()
        self.cache.reset()
        self.circuit_breaker.reset()
        self.rate_limiter.reset()

    async def shutdown(self) -> None:
        """Reject queued work, let running requests settle, then reset."""
        self.queue.clear()
        await self.queue.drain()
        self.reset()
        logger.debug("ResilienceContext shut down")
