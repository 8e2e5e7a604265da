"""
SyncEngine - owns and wires every component of the sync engine.

Construct one at application start and pass it (or its parts) to
whatever needs them; nothing in the engine reaches for module globals.

Usage:
    async with SyncEngine(Settings.from_env()) as engine:
        health = engine.resources.health().mount()
        ...
"""

from typing import Any

import httpx
from loguru import logger

from newsdash.datasource import InsightsSource, NewsSource, StockSource, SystemSource
from newsdash.resources.hooks import ResourceHooks
from newsdash.services.cache import CacheStore
from newsdash.services.client import ApiClient
from newsdash.services.clock import Clock, SchedulerTimers, Timers
from newsdash.services.connectivity import ConnectivityMonitor
from newsdash.services.poller import PollScheduler
from newsdash.services.ratelimit import RateLimitTracker
from newsdash.settings import Settings


class SyncEngine:
    PROBE_JOB = "connectivity:probe"

    def __init__(
        self,
        settings: Settings,
        clock: Clock | None = None,
        timers: Timers | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.clock = clock or Clock()
        self.timers = timers or SchedulerTimers()

        self.client = ApiClient.from_settings(settings, clock=self.clock, transport=transport)
        self.rate_limits = RateLimitTracker(clock=self.clock)
        self.connectivity = ConnectivityMonitor(
            self.timers,
            clock=self.clock,
            grace_seconds=settings.reconnect_grace_seconds,
            debounce_seconds=settings.connectivity_debounce_seconds,
        )
        self.client.add_observer(self.rate_limits)
        self.client.add_observer(self.connectivity)

        self.cache = CacheStore(
            self.timers,
            clock=self.clock,
            gc_time=settings.cache_gc_seconds,
            debug=settings.debug,
        )
        self.poller = PollScheduler(
            self.cache,
            self.timers,
            self.connectivity,
            self.rate_limits,
            clock=self.clock,
            backoff_factor=settings.poll_backoff_factor,
            max_interval=settings.poll_max_interval,
            hidden_multiplier=settings.poll_hidden_multiplier,
            idle_after=settings.poll_idle_after_seconds,
            idle_multiplier=settings.poll_idle_multiplier,
            debug=settings.debug,
        )

        self.resources = ResourceHooks(
            cache=self.cache,
            poller=self.poller,
            rate_limits=self.rate_limits,
            news=NewsSource(self.client),
            system=SystemSource(self.client),
            stocks=StockSource(self.client),
            insights=InsightsSource(self.client),
            clock=self.clock,
            refresh_age_on_reconnect=settings.reconnect_refresh_age_seconds,
        )

        self.connectivity.on_change(self.poller.on_connectivity_change)
        self.connectivity.on_reconnected(self.poller.catch_up)
        self.connectivity.on_reconnected(self.resources.on_reconnected)
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        if isinstance(self.timers, SchedulerTimers):
            self.timers.start()
            interval = self.settings.probe_interval_seconds
            if interval > 0:
                self.timers.add_interval_job(self.PROBE_JOB, interval, self.probe)
                logger.info(f"Connectivity probe every {interval:.0f}s")
        self._started = True
        logger.info(f"Sync engine started against {self.settings.api_url}")

    async def probe(self) -> bool:
        return await self.connectivity.check(self.client.probe)

    def set_visible(self, visible: bool) -> None:
        self.poller.set_visible(visible)

    def report_activity(self) -> None:
        self.poller.report_activity()

    async def close(self) -> None:
        await self.resources.close()
        await self.poller.close()
        await self.cache.close()
        self.connectivity.close()
        await self.client.close()
        if isinstance(self.timers, SchedulerTimers):
            self.timers.shutdown()
        self._started = False
        logger.info("Sync engine stopped")

    async def __aenter__(self) -> "SyncEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_health_status(self) -> dict[str, Any]:
        rate = self.rate_limits.state
        net = self.connectivity.state
        return {
            "client": self.client.get_health_status(),
            "cache": self.cache.get_stats().to_dict(),
            "poller": self.poller.get_status(),
            "connectivity": {
                "phase": net.phase.value,
                "is_online": net.is_online,
                "was_offline": net.was_offline,
            },
            "rate_limit": {
                "limit": rate.limit,
                "remaining": rate.remaining,
                "is_limited": rate.is_limited,
                "reset_in": self.rate_limits.reset_in_seconds(),
            },
        }
