"""
RateLimiter - Sliding window limiter for upstream write operations.

Keeps a log of request instants and prunes entries older than the window
on every read, which gives token-bucket behaviour without a refill timer.

The vendor allows up to 99 devices per residence; a startup sweep issues
two reads per device, so only writes are limited by default.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from switchlink.services.errors import RateLimitError

T = TypeVar("T")


@dataclass
class RateLimiterConfig:
    """Configuration for the rate limiter."""

    max_requests: int = 300  # Requests allowed per window
    window: float = 60.0  # Window length in seconds
    wait_on_limit: bool = False  # execute() waits instead of failing
    max_wait: float = 30.0  # Longest acquire_async() will wait


class RateLimiter:
    """
    Sliding-window rate limiter.

    Usage:
        limiter = RateLimiter(RateLimiterConfig(max_requests=10, window=1.0))

        limiter.acquire()  # raises RateLimitError when exhausted
        await limiter.acquire_async()  # waits up to max_wait
    """

    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        debug: bool = False,
    ):
        self.config = config or RateLimiterConfig()
        self._requests: deque[float] = deque()
        self._clock = clock
        self._sleep = sleep
        self._debug = debug
        logger.debug(
            f"RateLimiter initialized: {self.config.max_requests} requests / "
            f"{self.config.window}s"
        )

    def _cleanup(self) -> None:
        """Drop request instants that have left the window."""
        now = self._clock()
        while self._requests and now - self._requests[0] >= self.config.window:
            self._requests.popleft()

    @property
    def current_count(self) -> int:
        self._cleanup()
        return len(self._requests)

    @property
    def remaining(self) -> int:
        return max(0, self.config.max_requests - self.current_count)

    @property
    def reset_time(self) -> float:
        """Seconds until the oldest recorded request leaves the window."""
        self._cleanup()
        if not self._requests:
            return 0.0
        return max(0.0, self.config.window - (self._clock() - self._requests[0]))

    def can_acquire(self) -> bool:
        """Check if a request could be admitted, without recording it."""
        self._cleanup()
        return len(self._requests) < self.config.max_requests

    def try_acquire(self) -> bool:
        """Record a request if there is capacity. Returns False when limited."""
        self._cleanup()

        if len(self._requests) >= self.config.max_requests:
            self._log("REFUSED: window full")
            return False

        self._requests.append(self._clock())
        return True

    def acquire(self) -> None:
        """
        Acquire a request slot or fail immediately.

        Raises:
            RateLimitError: If the window is full
        """
        if not self.try_acquire():
            raise RateLimitError(
                f"Rate limit exceeded. {self.config.max_requests} requests "
                f"per {self.config.window:g}s",
                retry_after=self.reset_time,
            )

    async def acquire_async(self) -> None:
        """
        Acquire a request slot, waiting for capacity if necessary.

        Raises:
            RateLimitError: If no slot frees up within ``max_wait``
        """
        start = self._clock()

        while not self.try_acquire():
            elapsed = self._clock() - start

            if elapsed >= self.config.max_wait:
                logger.warning(
                    f"Rate limit wait exceeded {self.config.max_wait}s "
                    f"({self.config.max_requests} requests per {self.config.window:g}s)"
                )
                raise RateLimitError(
                    f"Rate limit wait exceeded {self.config.max_wait:g}s",
                    retry_after=self.reset_time,
                )

            wait_time = min(self.reset_time, self.config.max_wait - elapsed, 1.0)
            if wait_time > 0:
                self._log(f"WAIT: {wait_time:.3f}s for capacity")
                await self._sleep(wait_time)

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once a slot is acquired."""
        if self.config.wait_on_limit:
            await self.acquire_async()
        else:
            self.acquire()
        return await fn()

    def reset(self) -> None:
        """Forget all recorded requests."""
        self._requests.clear()

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "current_count": self.current_count,
            "max_requests": self.config.max_requests,
            "remaining": self.remaining,
            "reset_time": self.reset_time,
            "window": self.config.window,
        }

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[RateLimiter] {message}")
