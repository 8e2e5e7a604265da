"""
Time and timer abstractions.

Everything in the engine that waits goes through a ``Timers`` instance so
tests can drive time by hand. ``SchedulerTimers`` is the production
implementation backed by APScheduler one-shot jobs.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

TimerCallback = Callable[[], Awaitable[None] | None]


class Clock:
    """Wall clock in epoch seconds."""

    def now(self) -> float:
        return time.time()


class Timers(Protocol):
    """Named one-shot timers. Scheduling a name replaces its previous timer."""

    def schedule(self, name: str, delay: float, callback: TimerCallback) -> None: ...

    def cancel(self, name: str) -> bool: ...

    def cancel_prefix(self, prefix: str) -> int: ...

    def pending(self) -> list[str]: ...


class SchedulerTimers:
    """
    Timers backed by an APScheduler ``AsyncIOScheduler``.

    Each timer is a ``date`` job whose id is the timer name, added with
    ``replace_existing=True``, so a name never owns two pending jobs.
    Callbacks should be coroutine functions (or partials of them) so the
    asyncio executor awaits them on the loop.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self.scheduler = scheduler or AsyncIOScheduler()
        self._names: set[str] = set()

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.debug("Timer scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._names.clear()

    def schedule(self, name: str, delay: float, callback: TimerCallback) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(0.0, delay))
        self.scheduler.add_job(
            self._run,
            trigger="date",
            run_date=run_date,
            args=[name, callback],
            id=name,
            replace_existing=True,
            misfire_grace_time=None,
        )
        self._names.add(name)

    async def _run(self, name: str, callback: TimerCallback) -> None:
        self._names.discard(name)
        result = callback()
        if result is not None:
            await result

    def cancel(self, name: str) -> bool:
        self._names.discard(name)
        try:
            self.scheduler.remove_job(name)
        except JobLookupError:
            return False
        return True

    def cancel_prefix(self, prefix: str) -> int:
        names = [n for n in list(self._names) if n.startswith(prefix)]
        return sum(1 for n in names if self.cancel(n))

    def pending(self) -> list[str]:
        return sorted(self._names)

    def add_interval_job(
        self, name: str, seconds: float, func: Callable[..., Any]
    ) -> None:
        """Register a recurring job (used by the connectivity probe)."""
        self.scheduler.add_job(
            func,
            trigger="interval",
            seconds=seconds,
            id=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
