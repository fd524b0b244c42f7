"""
Shared fixtures: a controllable clock and a sleep that records delays
instead of waiting.
"""

import pytest


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self, clock: FakeClock = None):
        self.delays = []
        self.clock = clock

    async def __call__(self, delay: float):
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()
