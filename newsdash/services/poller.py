"""
PollScheduler - adaptive refetch cadence per polled cache key.

The delay until the next poll is

    base * backoff(consecutive_failures) * visibility * activity * connectivity

where ``base`` is the resource class freshness window, backoff doubles per
failure after the first (capped at ``max_interval``), visibility is
``hidden_multiplier`` while the dashboard is hidden, activity is
``idle_multiplier`` once no user activity was reported for ``idle_after``
seconds, and connectivity is infinite while offline. An infinite delay
means the subscription is suspended with no timer. While the API quota is exhausted, non-critical
subscriptions wait at least until the quota resets.

States:
    IDLE → SCHEDULED → FIRING → SCHEDULED (success, or failure with backoff)
    SCHEDULED ⇄ SUSPENDED (offline, hidden)
    any → CANCELLED (last consumer stopped)
"""

import asyncio
import functools
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from newsdash.services.cache import CacheStore, Fetcher, ResourceClass
from newsdash.services.clock import Clock, Timers
from newsdash.services.connectivity import ConnectivityMonitor, ConnectivityState
from newsdash.services.errors import ServiceError
from newsdash.services.ratelimit import RateLimitTracker


class PollState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    FIRING = "firing"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


@dataclass
class PollSubscription:
    key: str
    resource_class: ResourceClass
    fetcher: Fetcher
    critical: bool = False
    consecutive_failures: int = 0
    state: PollState = PollState.IDLE
    last_delay: float | None = None
    consumers: int = 1

    @property
    def interval_base(self) -> float:
        return self.resource_class.stale_after

    @property
    def timer_name(self) -> str:
        return PollScheduler.TIMER_PREFIX + self.key


class PollScheduler:
    TIMER_PREFIX = "poll:"

    def __init__(
        self,
        cache: CacheStore,
        timers: Timers,
        connectivity: ConnectivityMonitor,
        rate_limits: RateLimitTracker,
        clock: Clock | None = None,
        backoff_factor: float = 2.0,
        max_interval: float = 600.0,
        hidden_multiplier: float = math.inf,
        idle_after: float = 300.0,
        idle_multiplier: float = 1.0,
        debug: bool = False,
    ):
        self._cache = cache
        self._timers = timers
        self._connectivity = connectivity
        self._rate_limits = rate_limits
        self._clock = clock or Clock()
        self._backoff_factor = backoff_factor
        self._max_interval = max_interval
        self._hidden_multiplier = hidden_multiplier
        self._idle_after = idle_after
        self._idle_multiplier = idle_multiplier
        self._debug = debug

        self._visible = True
        self._last_activity = self._clock.now()
        self._subscriptions: dict[str, PollSubscription] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def visible(self) -> bool:
        return self._visible

    @property
    def idle(self) -> bool:
        """No user activity reported for ``idle_after`` seconds."""
        return self._clock.now() - self._last_activity >= self._idle_after

    def get_subscription(self, key: str) -> PollSubscription | None:
        return self._subscriptions.get(key)

    def subscriptions(self) -> list[PollSubscription]:
        return list(self._subscriptions.values())

    # ── Delay computation ────────────────────────────────────────────────────

    def backoff_interval(self, sub: PollSubscription) -> float:
        """Base interval with failure backoff: 1x, 1x, 2x, 4x ... capped."""
        exponent = max(0, sub.consecutive_failures - 1)
        return min(
            sub.interval_base * self._backoff_factor**exponent, self._max_interval
        )

    def _gate(self, sub: PollSubscription, delay: float) -> float:
        if not self._connectivity.is_online:
            return math.inf
        if not self._visible:
            if math.isinf(self._hidden_multiplier):
                return math.inf
            delay *= self._hidden_multiplier
        if self.idle:
            delay *= self._idle_multiplier
        if not self._rate_limits.allows_polling(sub.critical):
            delay = max(delay, self._rate_limits.reset_in_seconds())
        return delay

    def compute_delay(self, sub: PollSubscription) -> float:
        """Seconds until the next poll for ``sub``; ``inf`` means suspended."""
        return self._gate(sub, self.backoff_interval(sub))

    def _time_until_stale(self, sub: PollSubscription) -> float:
        entry = self._cache.peek(sub.key)
        now = self._clock.now()
        if entry is None or not entry.is_fresh(now) or sub.consecutive_failures:
            return 0.0
        return entry.fetched_at + entry.stale_after - now

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(
        self,
        key: str,
        resource_class: ResourceClass,
        fetcher: Fetcher,
        critical: bool = False,
    ) -> PollSubscription:
        """Begin polling ``key``; extra consumers share one subscription."""
        sub = self._subscriptions.get(key)
        if sub is not None:
            sub.consumers += 1
            return sub

        sub = PollSubscription(
            key=key,
            resource_class=resource_class,
            fetcher=fetcher,
            critical=critical,
        )
        self._subscriptions[key] = sub
        self._log(f"START: {key} every {sub.interval_base:.0f}s")
        self._schedule(sub, self._gate(sub, self._time_until_stale(sub)))
        return sub

    def stop(self, key: str) -> None:
        sub = self._subscriptions.get(key)
        if sub is None:
            return
        sub.consumers -= 1
        if sub.consumers > 0:
            return

        self._timers.cancel(sub.timer_name)
        sub.state = PollState.CANCELLED
        del self._subscriptions[key]
        self._log(f"STOP: {key}")

    def _schedule(self, sub: PollSubscription, delay: float | None = None) -> None:
        # Never leave an older timer behind for the same key
        self._timers.cancel(sub.timer_name)
        if sub.state == PollState.CANCELLED:
            return

        if delay is None:
            delay = self.compute_delay(sub)
        sub.last_delay = delay

        if math.isinf(delay):
            sub.state = PollState.SUSPENDED
            self._log(f"SUSPEND: {sub.key}")
            return

        sub.state = PollState.SCHEDULED
        self._timers.schedule(
            sub.timer_name, delay, functools.partial(self._fire, sub.key)
        )
        self._log(f"SCHEDULE: {sub.key} in {delay:.1f}s")

    async def _fire(self, key: str, force: bool = False) -> None:
        sub = self._subscriptions.get(key)
        if sub is None or sub.state in (PollState.CANCELLED, PollState.FIRING):
            return

        gated = self._gate(sub, 0.0)
        if gated > 0:
            # Went offline, hidden, or rate limited since the timer was set
            self._schedule(sub, gated if math.isinf(gated) else None)
            return

        sub.state = PollState.FIRING
        try:
            await self._cache.ensure_fresh(
                key, sub.resource_class, sub.fetcher, force=force
            )
        except ServiceError as e:
            sub.consecutive_failures += 1
            logger.warning(
                f"Poll failed for {key} ({sub.consecutive_failures} in a row): {e}"
            )
        else:
            if sub.consecutive_failures:
                self._log(f"RECOVERED: {key}, resetting interval")
            sub.consecutive_failures = 0

        if self._subscriptions.get(key) is not sub:
            return
        sub.state = PollState.IDLE
        self._schedule(sub)

    async def trigger(self, key: str) -> None:
        """Refresh a polled key now and restart its schedule."""
        sub = self._subscriptions.get(key)
        if sub is None:
            return
        if sub.state == PollState.FIRING:
            # The running poll reschedules itself when it completes
            await self._cache.ensure_fresh(
                key, sub.resource_class, sub.fetcher, force=True
            )
            return
        self._timers.cancel(sub.timer_name)
        sub.state = PollState.IDLE
        await self._fire(key, force=True)

    def _spawn(self, key: str, force: bool) -> None:
        task = asyncio.create_task(self._fire(key, force=force))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── Signals ──────────────────────────────────────────────────────────────

    def set_visible(self, visible: bool) -> None:
        """Dashboard visibility changed."""
        if visible == self._visible:
            return
        self._visible = visible
        logger.info(f"Dashboard {'visible' if visible else 'hidden'}, adjusting polling")

        for sub in self.subscriptions():
            if sub.state == PollState.FIRING:
                continue
            if visible:
                self._schedule(sub, self._gate(sub, self._time_until_stale(sub)))
            else:
                self._schedule(sub)

    def report_activity(self) -> None:
        """User interacted with the dashboard; leaving idle restores the full cadence."""
        was_idle = self.idle
        self._last_activity = self._clock.now()
        if not was_idle or self._idle_multiplier == 1:
            return

        logger.info("User active again, restoring polling cadence")
        for sub in self.subscriptions():
            if sub.state == PollState.FIRING:
                continue
            self._schedule(sub, self._gate(sub, self._time_until_stale(sub)))

    def on_connectivity_change(self, state: ConnectivityState) -> None:
        for sub in self.subscriptions():
            if sub.state == PollState.FIRING:
                continue
            if state.is_online:
                self._schedule(sub, self._gate(sub, self._time_until_stale(sub)))
            else:
                self._schedule(sub, math.inf)

    def catch_up(self) -> None:
        """Fire one immediate refresh for every subscription (after reconnect)."""
        subs = [s for s in self.subscriptions() if s.state != PollState.FIRING]
        logger.info(f"Catch-up refresh for {len(subs)} polled resources")
        for sub in subs:
            self._timers.cancel(sub.timer_name)
            sub.state = PollState.IDLE
            self._spawn(sub.key, force=True)

    async def drain(self) -> None:
        """Wait for catch-up fetches spawned so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._timers.cancel_prefix(self.TIMER_PREFIX)
        for sub in self.subscriptions():
            sub.state = PollState.CANCELLED
        self._subscriptions.clear()
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    def get_status(self) -> dict[str, Any]:
        return {
            "visible": self._visible,
            "idle": self.idle,
            "subscriptions": {
                s.key: {
                    "state": s.state.value,
                    "failures": s.consecutive_failures,
                    "last_delay": s.last_delay,
                }
                for s in self.subscriptions()
            },
        }

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[PollScheduler] {message}")
