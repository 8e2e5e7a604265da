"""Shared fixtures for the sync engine tests.

Time never passes on its own here: ``FakeClock`` only moves when a test
advances it, and ``FakeTimers`` runs due callbacks in order while doing so.
HTTP goes through ``httpx.MockTransport`` backed by ``FakeApi``.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable

import httpx
import pytest

from newsdash.services.cache import CacheStore
from newsdash.services.connectivity import ConnectivityMonitor
from newsdash.services.poller import PollScheduler
from newsdash.services.ratelimit import RateLimitTracker

START_TIME = 1_700_000_000.0


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    def __init__(self, now: float = START_TIME):
        self._now = now

    def now(self) -> float:
        return self._now

    def set(self, now: float) -> None:
        self._now = now

    def advance(self, seconds: float) -> None:
        self._now += seconds


class FakeTimers:
    """Named one-shot timers driven by ``advance``."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._timers: dict[str, tuple[float, int, Callable[[], Any]]] = {}
        self._seq = 0

    def schedule(self, name: str, delay: float, callback: Callable[[], Any]) -> None:
        self._seq += 1
        self._timers[name] = (self.clock.now() + max(0.0, delay), self._seq, callback)

    def cancel(self, name: str) -> bool:
        return self._timers.pop(name, None) is not None

    def cancel_prefix(self, prefix: str) -> int:
        names = [n for n in self._timers if n.startswith(prefix)]
        for name in names:
            del self._timers[name]
        return len(names)

    def pending(self) -> list[str]:
        return sorted(self._timers)

    def due_in(self, name: str) -> float | None:
        timer = self._timers.get(name)
        return None if timer is None else timer[0] - self.clock.now()

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that falls due on the way."""
        target = self.clock.now() + seconds
        while True:
            due = [
                (at, seq, name)
                for name, (at, seq, _) in self._timers.items()
                if at <= target
            ]
            if not due:
                break
            at, _, name = min(due)
            _, _, callback = self._timers.pop(name)
            self.clock.set(max(self.clock.now(), at))
            result = callback()
            if inspect.isawaitable(result):
                await result
        self.clock.set(target)


# =============================================================================
# HTTP
# =============================================================================


def envelope(data: Any = None, **extra: Any) -> dict[str, Any]:
    return {"success": True, "data": data, **extra}


def error_body(code: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}, **extra}


class FakeApi:
    """Routes MockTransport requests by (method, path) and records them."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        path: str,
        data: Any = None,
        method: str = "GET",
        status: int = 200,
        headers: dict[str, str] | None = None,
        body: Any = None,
    ) -> None:
        payload = body if body is not None else envelope(data)
        self.routes[(method, path)] = lambda request: httpx.Response(
            status, json=payload, headers=headers
        )

    def route(
        self,
        path: str,
        handler: Callable[[httpx.Request], httpx.Response],
        method: str = "GET",
    ) -> None:
        self.routes[(method, path)] = handler

    def calls(self, path: str, method: str = "GET") -> int:
        return sum(
            1 for r in self.requests if r.method == method and r.url.path == path
        )

    def last(self, path: str) -> httpx.Request:
        return [r for r in self.requests if r.url.path == path][-1]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(
                404, json=error_body("NOT_FOUND", f"No route for {request.url.path}")
            )
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class ScriptedFetcher:
    """Async fetcher returning (or raising) queued outcomes, then ``default``."""

    def __init__(self, *outcomes: Any, default: Any = "ok"):
        self.outcomes = list(outcomes)
        self.default = default
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return FakeTimers(clock)


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def cache(clock, timers):
    return CacheStore(timers, clock=clock, gc_time=300.0)


@pytest.fixture
def rate_limits(clock):
    return RateLimitTracker(clock=clock)


@pytest.fixture
def connectivity(clock, timers):
    return ConnectivityMonitor(timers, clock=clock, grace_seconds=3.0)


@pytest.fixture
def poller(cache, timers, connectivity, rate_limits, clock):
    scheduler = PollScheduler(cache, timers, connectivity, rate_limits, clock=clock)
    connectivity.on_change(scheduler.on_connectivity_change)
    connectivity.on_reconnected(scheduler.catch_up)
    return scheduler
