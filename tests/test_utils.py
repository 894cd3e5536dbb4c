"""Test utilities: pinned clocks shared by unit and integration tests."""

from datetime import datetime

FIXED_NOW = datetime(2024, 6, 15, 12, 30, 0)


class FakeClock:
    """Monotonic clock that advances a fixed step every time it is read."""

    def __init__(self, step: float = 0.0, start: float = 1000.0):
        self.now = start
        self.step = step
        self.calls = 0

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        self.calls += 1
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds
