"""
CacheStore - observable cache of resource snapshots with freshness metadata.

Features:
- Freshness per ResourceClass (realtime, frequent, standard, static)
- Request coalescing: concurrent callers for a key share one fetch
- Fetch generations: a slow, superseded response never overwrites a newer one
- Stale-while-revalidate: invalidation keeps the last value visible
- Subscriber counting with delayed garbage collection
"""

import asyncio
import functools
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from newsdash.services.clock import Clock, Timers
from newsdash.services.errors import ErrorKind, NormalizedError, ServiceError

KEY_SEPARATOR = ":"

Fetcher = Callable[[], Awaitable[Any]]
CacheListener = Callable[[str, "CacheEntry"], None]


class ResourceClass(Enum):
    """Staleness policy; the value is (name, seconds a fetch stays fresh)."""

    REALTIME = ("realtime", 5.0)
    FREQUENT = ("frequent", 30.0)
    STANDARD = ("standard", 120.0)
    STATIC = ("static", 600.0)

    def __init__(self, label: str, stale_after: float):
        self.label = label
        self.stale_after = stale_after


class EntryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class CacheEntry:
    """A single cache entry. Only CacheStore mutates it."""

    key: str
    resource_class: ResourceClass | None = None
    value: Any = None
    fetched_at: float | None = None
    status: EntryStatus = EntryStatus.IDLE
    error: NormalizedError | None = None
    subscriber_count: int = 0
    has_value: bool = False
    generation: int = 0  # last fetch started
    applied_generation: int = 0  # last fetch whose result was stored
    invalidated_generation: int = 0  # fetches up to here land already stale
    updated_at: float | None = None

    @property
    def stale_after(self) -> float:
        return self.resource_class.stale_after if self.resource_class else 0.0

    def is_fresh(self, now: float) -> bool:
        return (
            self.status == EntryStatus.SUCCESS
            and self.fetched_at is not None
            and now - self.fetched_at < self.stale_after
        )

    def is_stale(self, now: float) -> bool:
        """True when a value exists but is past its freshness window."""
        if not self.has_value:
            return False
        return self.fetched_at is None or now - self.fetched_at >= self.stale_after


def make_key(*parts: Any) -> str:
    """
    Build a cache key from segments.

    Dicts become sorted ``k=v`` pairs joined with "&" (None and "" dropped);
    None segments are skipped.
    """
    segments = []
    for part in parts:
        if part is None:
            continue
        if isinstance(part, dict):
            rendered = "&".join(
                f"{k}={v}"
                for k, v in sorted(part.items())
                if v is not None and v != ""
            )
            if rendered:
                segments.append(rendered)
        elif isinstance(part, (list, tuple)):
            segments.append(",".join(str(p) for p in part))
        else:
            segments.append(str(part))
    return KEY_SEPARATOR.join(segments)


def key_matches(key: str, prefix: str) -> bool:
    """Prefix match on whole segments: "stock" matches "stock:x", not "stocks"."""
    return key == prefix or key.startswith(prefix + KEY_SEPARATOR)


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    fetches: int = 0
    coalesced: int = 0
    discarded: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.coalesced + self.fetches
        if total == 0:
            return 0.0
        return (self.hits + self.coalesced) / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "fetches": self.fetches,
            "coalesced": self.coalesced,
            "discarded": self.discarded,
            "evictions": self.evictions,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


def _consume_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class CacheStore:
    """
    Keyed cache of resource snapshots.

    Usage:
        store = CacheStore(timers)

        quote = await store.ensure_fresh(
            make_key("stock", "quote", "AAPL"),
            ResourceClass.FREQUENT,
            lambda: stocks.quote("AAPL"),
        )
    """

    GC_TIMER_PREFIX = "gc:"

    def __init__(
        self,
        timers: Timers,
        clock: Clock | None = None,
        gc_time: float = 300.0,
        debug: bool = False,
    ):
        self._timers = timers
        self._clock = clock or Clock()
        self._gc_time = gc_time
        self._debug = debug
        self._entries: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._listeners: list[CacheListener] = []
        self._stats = CacheStats()

    # ── Reads ────────────────────────────────────────────────────────────────

    def get(self, key: str) -> CacheEntry:
        """Return the entry for ``key``, creating an idle one if absent."""
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
            self._schedule_gc(key)
            self._log(f"CREATE: {key}")
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def keys(self) -> list[str]:
        return list(self._entries)

    def is_fetching(self, key: str) -> bool:
        return key in self._in_flight

    # ── Fetching ─────────────────────────────────────────────────────────────

    def _entry_for(self, key: str, resource_class: ResourceClass) -> CacheEntry:
        entry = self.get(key)
        if entry.resource_class is None:
            entry.resource_class = resource_class
        elif entry.resource_class is not resource_class:
            raise ValueError(
                f"Cache key '{key}' is bound to {entry.resource_class.label}, "
                f"not {resource_class.label}"
            )
        return entry

    async def ensure_fresh(
        self,
        key: str,
        resource_class: ResourceClass,
        fetcher: Fetcher,
        force: bool = False,
    ) -> Any:
        """
        Return a fresh value for ``key``, fetching only when needed.

        A fresh successful entry is returned without suspending. Otherwise
        callers join the in-flight fetch for the key, or start one. With
        ``force`` a new fetch generation starts even if one is in flight.

        Raises:
            ServiceError: The fetch failed; the error is also on the entry.
        """
        entry = self._entry_for(key, resource_class)

        if not force and entry.is_fresh(self._clock.now()):
            self._stats.hits += 1
            return entry.value

        task = self._in_flight.get(key)
        # A fetch started before the last invalidation cannot satisfy a new caller
        joinable = entry.generation > entry.invalidated_generation
        if task is not None and not force and joinable:
            self._stats.coalesced += 1
            self._log(f"COALESCE: {key}")
        else:
            task = self._start_fetch(entry, fetcher)

        return await asyncio.shield(task)

    def _start_fetch(self, entry: CacheEntry, fetcher: Fetcher) -> asyncio.Task[Any]:
        entry.generation += 1
        generation = entry.generation
        entry.status = EntryStatus.LOADING
        self._stats.fetches += 1
        self._log(f"FETCH: {entry.key} (generation {generation})")

        task = asyncio.create_task(self._run_fetch(entry, generation, fetcher))
        task.add_done_callback(_consume_exception)
        self._in_flight[entry.key] = task
        self._notify("updated", entry)
        return task

    async def _run_fetch(
        self, entry: CacheEntry, generation: int, fetcher: Fetcher
    ) -> Any:
        try:
            value = await fetcher()
        except ServiceError as e:
            self._apply_failure(entry, generation, e.error)
            raise
        except Exception as e:
            error = NormalizedError(code=ErrorKind.UNKNOWN, message=str(e) or repr(e))
            self._apply_failure(entry, generation, error)
            raise ServiceError(error.message, error=error) from e
        else:
            return self._apply_success(entry, generation, value)
        finally:
            if self._in_flight.get(entry.key) is asyncio.current_task():
                del self._in_flight[entry.key]

    def _accepts(self, entry: CacheEntry, generation: int) -> bool:
        if self._entries.get(entry.key) is not entry:
            self._stats.discarded += 1
            self._log(f"DISCARD: {entry.key} was evicted")
            return False
        if generation <= entry.applied_generation:
            self._stats.discarded += 1
            self._log(
                f"DISCARD: {entry.key} generation {generation} superseded by "
                f"{entry.applied_generation}"
            )
            return False
        return True

    def _apply_success(self, entry: CacheEntry, generation: int, value: Any) -> Any:
        if not self._accepts(entry, generation):
            return entry.value if entry.applied_generation > generation else value

        now = self._clock.now()
        entry.applied_generation = generation
        entry.value = value
        entry.has_value = True
        entry.fetched_at = None if generation <= entry.invalidated_generation else now
        entry.updated_at = now
        entry.error = None
        entry.status = (
            EntryStatus.LOADING if entry.generation > generation else EntryStatus.SUCCESS
        )
        self._notify("updated", entry)
        return value

    def _apply_failure(
        self, entry: CacheEntry, generation: int, error: NormalizedError
    ) -> None:
        logger.warning(f"Fetch failed for {entry.key}: [{error.code.value}] {error.message}")
        if not self._accepts(entry, generation):
            return

        # Previous value stays so the UI can show stale data with an error
        entry.applied_generation = generation
        entry.error = error
        entry.updated_at = self._clock.now()
        entry.status = (
            EntryStatus.LOADING if entry.generation > generation else EntryStatus.ERROR
        )
        self._notify("updated", entry)

    async def prefetch(
        self, key: str, resource_class: ResourceClass, fetcher: Fetcher
    ) -> CacheEntry:
        """Warm the cache without subscribing. Failures stay on the entry."""
        try:
            await self.ensure_fresh(key, resource_class, fetcher)
        except ServiceError as e:
            self._log(f"PREFETCH FAILED: {key}: {e}")
        entry = self.get(key)
        if entry.subscriber_count == 0:
            self._schedule_gc(key)
        return entry

    # ── Writes ───────────────────────────────────────────────────────────────

    def set(
        self, key: str, value: Any, resource_class: ResourceClass | None = None
    ) -> CacheEntry:
        """Store a value directly, superseding any fetch in flight."""
        entry = (
            self._entry_for(key, resource_class) if resource_class else self.get(key)
        )
        now = self._clock.now()
        entry.generation += 1
        entry.applied_generation = entry.generation
        entry.value = value
        entry.has_value = True
        entry.fetched_at = now
        entry.updated_at = now
        entry.error = None
        entry.status = EntryStatus.SUCCESS
        self._log(f"SET: {key}")
        self._notify("updated", entry)
        return entry

    def invalidate(self, key_or_prefix: str) -> int:
        """
        Mark matching entries stale, keeping their values.

        A fetch already in flight still stores its result, but the entry
        stays stale and the next caller starts a new fetch.

        Returns:
            Number of entries invalidated
        """
        matched = [e for k, e in self._entries.items() if key_matches(k, key_or_prefix)]
        for entry in matched:
            entry.fetched_at = None
            entry.invalidated_generation = entry.generation
            self._notify("invalidated", entry)

        if matched:
            self._log(f"INVALIDATE: {len(matched)} entries under '{key_or_prefix}'")
        return len(matched)

    def remove(self, key: str) -> bool:
        """Drop an entry immediately. An in-flight fetch result is ignored."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._timers.cancel(self.GC_TIMER_PREFIX + key)
        self._notify("evicted", entry)
        return True

    def clear(self) -> None:
        count = len(self._entries)
        for key in list(self._entries):
            self.remove(key)
        self._log(f"CLEAR: {count} entries removed")

    # ── Subscriptions & GC ───────────────────────────────────────────────────

    def subscribe(self, key: str) -> CacheEntry:
        entry = self.get(key)
        entry.subscriber_count += 1
        self._timers.cancel(self.GC_TIMER_PREFIX + key)
        self._log(f"SUBSCRIBE: {key} ({entry.subscriber_count})")
        return entry

    def unsubscribe(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.subscriber_count == 0:
            logger.warning(f"Unsubscribe without subscription: {key}")
            return

        entry.subscriber_count -= 1
        self._log(f"UNSUBSCRIBE: {key} ({entry.subscriber_count})")
        if entry.subscriber_count == 0:
            self._schedule_gc(key)

    def _schedule_gc(self, key: str) -> None:
        self._timers.schedule(
            self.GC_TIMER_PREFIX + key,
            self._gc_time,
            functools.partial(self._collect, key),
        )

    async def _collect(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.subscriber_count > 0:
            return
        if key in self._in_flight:
            self._schedule_gc(key)
            return

        del self._entries[key]
        self._stats.evictions += 1
        self._log(f"EVICT: {key}")
        self._notify("evicted", entry)

    # ── Observation ──────────────────────────────────────────────────────────

    def listen(self, callback: CacheListener) -> Callable[[], None]:
        """Register ``callback(event, entry)``; returns a function to remove it."""
        self._listeners.append(callback)

        def unlisten() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unlisten

    def _notify(self, event: str, entry: CacheEntry) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, entry)
            except Exception as e:
                logger.error(f"Cache listener failed on {event} {entry.key}: {e}")

    def get_stats(self) -> CacheStats:
        self._stats.size = len(self._entries)
        return self._stats

    async def close(self) -> None:
        """Cancel GC timers and outstanding fetches."""
        self._timers.cancel_prefix(self.GC_TIMER_PREFIX)
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()
        self._log("CLOSED")

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[CacheStore] {message}")
