import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from concierge.auth.auth_utils import create_token
from concierge.core import rate_limit
from concierge.core.rate_limit import InMemoryRateLimiter
from concierge.main import app


class FakeClock:
    """Wall clock for the rate limiter that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ManualTimer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose time only moves through advance(), firing due timers in order."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self._timers = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay, callback):
        timer = ManualTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float):
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback()
        self.now = target


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock, monkeypatch):
    fresh = InMemoryRateLimiter(clock=clock)
    monkeypatch.setattr(rate_limit, "_rate_limiter", fresh)
    return fresh


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def token():
    return create_token({"sub": "user-123"})


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def clear_overrides():
    yield
    app.dependency_overrides.clear()
