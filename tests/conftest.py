"""Shared fixtures."""

import pytest

from device_registry import DeviceRegistry


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> DeviceRegistry:
    return DeviceRegistry(stats_ttl=60.0, clock=clock)
