"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing services.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are blocked
- HALF_OPEN: Testing if service has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold failures land inside failure_window
- OPEN → HALF_OPEN: On the first can_request() after reset_timeout
- HALF_OPEN → CLOSED: After half_open_max successful probes
- HALF_OPEN → OPEN: On any failed probe
"""

import asyncio
import functools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from switchlink.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    reset_timeout: float = 30.0  # Seconds before half-open
    half_open_max: int = 3  # Probes allowed, and successes needed to close
    failure_window: float = 60.0  # Seconds a failure counts towards the threshold


class CircuitBreaker:
    """
    Circuit breaker implementation for a single service.

    Usage:
        cb = CircuitBreaker("leviton")

        if not cb.can_request():
            raise CircuitOpenError(...)

        if cb.state == CircuitState.HALF_OPEN:
            cb.track_half_open_request()

        try:
            result = await make_request()
            cb.record_success()
            return result
        except Exception:
            cb.record_failure()
            raise

    or simply ``await cb.execute(make_request)``.
    """

    def __init__(
        self,
        service_id: str = "default",
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_timestamps: list[float] = []
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._half_open_requests = 0

    @property
    def state(self) -> CircuitState:
        """Current state. Transitions happen in can_request(), not here."""
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return len(self._failure_timestamps)

    def _cleanup_failures(self) -> None:
        """Forget failures that fell out of the rolling window."""
        cutoff = self._clock() - self.config.failure_window
        self._failure_timestamps = [
            ts for ts in self._failure_timestamps if ts > cutoff
        ]

    def can_request(self) -> bool:
        """Check if a request is allowed."""
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if (
                self._last_failure_time is not None
                and self._clock() - self._last_failure_time
                >= self.config.reset_timeout
            ):
                self._state = CircuitState.HALF_OPEN
                self._half_open_requests = 0
                self._success_count = 0
                logger.info(
                    f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                )
                return True
            return False

        # HALF_OPEN: Allow limited requests
        return self._half_open_requests < self.config.half_open_max

    def track_half_open_request(self) -> None:
        """Count a probe admitted while HALF_OPEN."""
        if self._state == CircuitState.HALF_OPEN:
            self._half_open_requests += 1

    def release_half_open_request(self) -> None:
        """Give back a probe slot whose call ended without a verdict."""
        if self._state == CircuitState.HALF_OPEN and self._half_open_requests > 0:
            self._half_open_requests -= 1

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.half_open_max:
                self._close()
        elif self._state == CircuitState.CLOSED:
            # A success is a cleanup tick, not a hard reset
            self._cleanup_failures()

    def record_failure(self) -> None:
        """Record a failed request."""
        now = self._clock()
        self._last_failure_time = now
        self._failure_timestamps.append(now)

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
        elif self._state == CircuitState.CLOSED:
            self._cleanup_failures()
            if self.failure_count >= self.config.failure_threshold:
                self._open()

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._half_open_requests = 0
        self._success_count = 0
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after "
            f"{self.failure_count} failures"
        )

    def _close(self) -> None:
        """Transition to CLOSED state with all counters cleared."""
        self._clear()
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def _clear(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_timestamps = []
        self._success_count = 0
        self._last_failure_time = None
        self._half_open_requests = 0

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._clear()
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until the circuit may move to half-open."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return None

        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self.config.reset_timeout - elapsed)

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` under circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit does not admit the request
        """
        if not self.can_request():
            remaining = self.get_time_until_reset()
            raise CircuitOpenError(
                remaining if remaining is not None else self.config.reset_timeout,
                service_id=self.service_id,
            )

        trial = self._state == CircuitState.HALF_OPEN
        if trial:
            self.track_half_open_request()

        try:
            result = await fn()
        except asyncio.CancelledError:
            if trial:
                self.release_half_open_request()
            raise
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def wrap(
        self, fn: Callable[..., Awaitable[T]]
    ) -> Callable[..., Awaitable[T]]:
        """Return a version of ``fn`` that runs through execute()."""

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await self.execute(lambda: fn(*args, **kwargs))

        return wrapper

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self._state.value,
            "failure_count": self.failure_count,
            "success_count": self._success_count,
            "last_failure": self._last_failure_time,
            "half_open_requests": self._half_open_requests,
            "is_open": self.is_open,
            "time_until_reset": self.get_time_until_reset(),
        }
