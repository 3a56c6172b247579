"""Pytest configuration and fixtures for switchlink tests."""

import asyncio

import pytest

from switchlink.services.context import ResilienceContext


class FakeClock:
    """Monotonic clock under test control.

    ``sleep`` advances the clock instead of waiting, and records every delay.
    """

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    """Fresh fake clock per test."""
    return FakeClock()


@pytest.fixture
def context(clock):
    """Resilience context with default component settings on the fake clock."""
    return ResilienceContext.create(clock=clock, sleep=clock.sleep)
