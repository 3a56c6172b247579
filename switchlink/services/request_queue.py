"""
RequestQueue - Priority ordered request scheduler with bounded concurrency.

Requests wait in a single list sorted by priority (FIFO within a priority)
and are dispatched while fewer than ``max_concurrent`` are running. Each
dispatched operation is bounded by ``request_timeout``; the timeout cancels
the operation rather than abandoning it.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Awaitable, Callable

from loguru import logger

from switchlink.services.errors import (
    QueueClearedError,
    QueueFullError,
    RequestTimeoutError,
)


class Priority(IntEnum):
    """Dispatch priority. Lower values are served first."""

    HIGH = 0
    NORMAL = 1
    LOW = 2

    @classmethod
    def coerce(cls, value: "Priority | str") -> "Priority":
        if isinstance(value, cls):
            return value
        return cls[str(value).upper()]


@dataclass
class RequestQueueConfig:
    """Configuration for the request queue."""

    max_concurrent: int = 5
    max_queue_size: int = 100
    request_timeout: float = 30.0  # Seconds


@dataclass
class QueuedRequest:
    """A request waiting for a dispatch slot."""

    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    priority: Priority = Priority.NORMAL
    enqueued_at: float = 0.0
    dedupe_key: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class RequestQueue:
    """
    Priority queue that runs at most ``max_concurrent`` operations at once.

    Usage:
        queue = RequestQueue(RequestQueueConfig(max_concurrent=2))

        status = await queue.add(
            lambda: api.get_device_status("42"),
            priority=Priority.HIGH,
            dedupe_key="device:42",
        )
    """

    def __init__(
        self,
        config: RequestQueueConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self.config = config or RequestQueueConfig()
        self._clock = clock
        self._debug = debug

        self._queue: list[QueuedRequest] = []
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        # dedupe key -> future of the queued or running request
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def length(self) -> int:
        return len(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def is_full(self) -> bool:
        return len(self._queue) >= self.config.max_queue_size

    def add(
        self,
        operation: Callable[[], Awaitable[Any]],
        priority: Priority | str = Priority.NORMAL,
        dedupe_key: str | None = None,
    ) -> asyncio.Future:
        """
        Queue an operation and return a future for its result.

        Must be called from inside a running event loop.

        Raises:
            QueueFullError: If ``max_queue_size`` requests are already waiting
        """
        if dedupe_key is not None and dedupe_key in self._pending:
            self._log(f"DEDUPE: {dedupe_key[:50]}")
            return self._pending[dedupe_key]

        if self.is_full:
            raise QueueFullError(
                f"Request queue is full ({self.config.max_queue_size} waiting)"
            )

        future = asyncio.get_running_loop().create_future()
        request = QueuedRequest(
            operation=operation,
            future=future,
            priority=Priority.coerce(priority),
            enqueued_at=self._clock(),
            dedupe_key=dedupe_key,
        )

        if dedupe_key is not None:
            self._pending[dedupe_key] = future
            future.add_done_callback(
                lambda f, key=dedupe_key: self._forget_pending(key, f)
            )

        self._enqueue(request)
        self._process()
        return future

    def _forget_pending(self, key: str, future: asyncio.Future) -> None:
        if self._pending.get(key) is future:
            del self._pending[key]

    def _enqueue(self, request: QueuedRequest) -> None:
        """Insert before the first request with a strictly lower priority."""
        for index, queued in enumerate(self._queue):
            if queued.priority > request.priority:
                self._queue.insert(index, request)
                break
        else:
            self._queue.append(request)
        self._log(
            f"QUEUED: {request.id} ({request.priority.name}), length={len(self._queue)}"
        )

    def _process(self) -> None:
        """Dispatch from the front while there are free slots."""
        while self._queue and len(self._in_flight) < self.config.max_concurrent:
            request = self._queue.pop(0)
            if request.future.done():
                # Caller gave up while it was queued
                continue

            task = asyncio.create_task(self._execute(request))
            self._in_flight[request.id] = task
            task.add_done_callback(
                lambda _t, request_id=request.id: self._on_settled(request_id)
            )
            self._log(f"DISPATCH: {request.id}, in_flight={len(self._in_flight)}")

    def _on_settled(self, request_id: str) -> None:
        self._in_flight.pop(request_id, None)
        self._process()

    async def _execute(self, request: QueuedRequest) -> None:
        """Run one request under the per-request timeout."""
        future = request.future
        timeout = self.config.request_timeout
        try:
            result = await asyncio.wait_for(request.operation(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Queued request {request.id} timed out after {timeout}s")
            if not future.done():
                future.set_exception(RequestTimeoutError(timeout))
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)

    def clear(self) -> int:
        """Fail every request that has not been dispatched yet."""
        cleared = 0
        for request in self._queue:
            if not request.future.done():
                request.future.set_exception(QueueClearedError())
                cleared += 1
        self._queue = []
        if cleared:
            logger.info(f"Request queue cleared, {cleared} pending requests rejected")
        return cleared

    async def drain(self) -> None:
        """Wait for every currently in-flight operation to settle."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def reset(self) -> None:
        """Reject queued requests and cancel running ones."""
        self.clear()
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        self._pending.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "in_flight": len(self._in_flight),
            "max_concurrent": self.config.max_concurrent,
            "max_queue_size": self.config.max_queue_size,
        }

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[RequestQueue] {message}")
