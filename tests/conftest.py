"""Shared fixtures and test doubles."""

import asyncio
import functools
import random

import pytest

from robustsession.network.backoff import BackoffLedger
from robustsession.network.directory import NetworkRegistry
from robustsession.session.handler import SessionHandler

pytest_plugins = ["pytest_asyncio"]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTimer:
    def __init__(self, when: float, delay: float, callback):
        self.when = when
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """call_later() that only fires when the test advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: list[FakeTimer] = []

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(self.clock.now + delay, delay, functools.partial(callback, *args))
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        for timer in sorted(self.pending, key=lambda t: t.when):
            if timer.when <= self.clock.now and not timer.cancelled:
                timer.fired = True
                timer.callback()


class FixedRandom(random.Random):
    """Deterministic picks: randrange() walks ``picks``, jitter is zero."""

    def __init__(self, picks=()):
        super().__init__(0)
        self.picks = list(picks)

    def randrange(self, stop):
        if self.picks:
            return self.picks.pop(0) % stop
        return 0

    def uniform(self, a, b):
        return a


class RecordingHandler(SessionHandler):
    """Collects everything a session reports to its owner."""

    def __init__(self):
        self.connected = asyncio.Event()
        self.lost = asyncio.Event()
        self.lines: list[str] = []
        self.lost_reason: str | None = None

    def on_connected(self) -> None:
        self.connected.set()

    def on_line_received(self, line: str) -> None:
        self.lines.append(line)

    def on_connection_lost(self, reason: str) -> None:
        self.lost_reason = reason
        self.lost.set()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or fail after ``timeout``."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def registry(clock):
    return NetworkRegistry(ledger_factory=lambda: BackoffLedger(clock=clock, rng=FixedRandom()))


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def fixed_random():
    """Factory for deterministic random sources."""
    return FixedRandom


@pytest.fixture
def wait():
    return wait_until
