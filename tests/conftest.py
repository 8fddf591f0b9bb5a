"""Shared fixtures."""

import pytest


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_100_000):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    """Clock aligned to the start of a 5 minute bucket."""
    return FakeClock(1_700_000_100_000)
