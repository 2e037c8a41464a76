import os
import tempfile

# services build file loggers at import time
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="inspect-logs-"))

import pytest

from batching.accumulator import BatchAccumulator
from batching.resolver import BatchKeyResolver


class FakeClock:
    def __init__(self, start_ms: float = 0.0) -> None:
        self.now = start_ms

    def __call__(self) -> float:
        return self.now


class FakeHandle:
    def __init__(self, when_ms: float, fn, args) -> None:
        self.when_ms = when_ms
        self.fn = fn
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """call_later on a manual clock; advance() fires due timers in expiry order."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.handles: list[FakeHandle] = []

    def call_later(self, delay_s: float, fn, *args) -> FakeHandle:
        handle = FakeHandle(self.clock.now + delay_s * 1000.0, fn, args)
        self.handles.append(handle)
        return handle

    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, ms: float) -> None:
        target = self.clock.now + ms
        while True:
            due = [h for h in self.pending() if h.when_ms <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when_ms)
            self.clock.now = handle.when_ms
            handle.fired = True
            handle.fn(*handle.args)
        self.clock.now = target


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_700_000_000_000.0)


@pytest.fixture
def loop(clock: FakeClock) -> FakeLoop:
    return FakeLoop(clock)


@pytest.fixture
def delivered() -> list:
    return []


@pytest.fixture
def accumulator(clock, loop, delivered) -> BatchAccumulator:
    resolver = BatchKeyResolver(window_ms=1000, clock=clock)
    acc = BatchAccumulator(window_ms=1000, loop=loop, clock=clock, resolver=resolver)
    acc.subscribe(delivered.append)
    return acc
