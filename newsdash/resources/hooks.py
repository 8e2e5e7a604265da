"""
Resource hooks - the only integration point for presentation code.

Each accessor returns a ``Resource`` bound to a cache key, a resource
class and (optionally) adaptive polling. Presentation code mounts it,
reads snapshots and asks for refetches; it never touches the network.

Usage:
    quote = engine.resources.stock_quote("AAPL", polling=True)
    async with quote:
        snap = quote.snapshot()
        if snap.error:
            show_banner(snap.error_message("en"))
        render(snap.value)
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from newsdash.datasource import InsightsSource, NewsSource, StockSource, SystemSource
from newsdash.datasource.stocks import normalize_symbol
from newsdash.models import (
    Article,
    ArticleFilters,
    ArticlePage,
    CategoryInfo,
    HealthResponse,
    ProcessorStats,
    ScrapeRequest,
    ScrapeResponse,
    ScraperStats,
    SentimentStats,
    SourceInfo,
    StatsResponse,
    StockQuote,
    TrendingTopicsResponse,
)
from newsdash.services.cache import (
    CacheEntry,
    CacheStore,
    EntryStatus,
    ResourceClass,
    key_matches,
    make_key,
)
from newsdash.services.clock import Clock
from newsdash.services.errors import NormalizedError, ServiceError
from newsdash.services.normalizer import user_message
from newsdash.services.poller import PollScheduler
from newsdash.services.ratelimit import RateLimitTracker

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50


@dataclass(frozen=True)
class ResourceSnapshot(Generic[T]):
    """What a consumer renders: the value plus its status and staleness."""

    key: str
    value: T | None
    status: EntryStatus
    error: NormalizedError | None
    fetched_at: float | None
    is_stale: bool

    @property
    def is_loading(self) -> bool:
        return self.status == EntryStatus.LOADING

    @property
    def is_error(self) -> bool:
        return self.status == EntryStatus.ERROR

    def error_message(self, locale: str | None = None) -> str | None:
        return user_message(self.error, locale) if self.error else None

    @classmethod
    def from_entry(cls, entry: CacheEntry, now: float) -> "ResourceSnapshot[Any]":
        return cls(
            key=entry.key,
            value=entry.value,
            status=entry.status,
            error=entry.error,
            fetched_at=entry.fetched_at,
            is_stale=entry.is_stale(now),
        )


class Resource(Generic[T]):
    """A declared resource: cache key, staleness class, polling policy."""

    def __init__(
        self,
        hooks: "ResourceHooks",
        key: str,
        resource_class: ResourceClass,
        fetcher: Callable[[], Awaitable[T]],
        polling: bool = False,
        critical: bool = False,
    ):
        self._hooks = hooks
        self.key = key
        self.resource_class = resource_class
        self.fetcher = fetcher
        self.polling = polling
        self.critical = critical
        self._mounted = False

    @property
    def mounted(self) -> bool:
        return self._mounted

    def mount(self) -> "Resource[T]":
        """Subscribe to the cache entry and start polling if enabled."""
        if self._mounted:
            return self
        self._mounted = True
        self._hooks._attach(self)
        return self

    def unmount(self) -> None:
        if not self._mounted:
            return
        self._mounted = False
        self._hooks._detach(self)

    def snapshot(self) -> ResourceSnapshot[T]:
        return self._hooks.snapshot(self.key)

    async def load(self) -> ResourceSnapshot[T]:
        """Make sure the value is fresh. Failures land on the snapshot."""
        try:
            await self._hooks.cache.ensure_fresh(
                self.key, self.resource_class, self.fetcher
            )
        except ServiceError:
            pass
        return self.snapshot()

    async def refetch(self) -> ResourceSnapshot[T]:
        """
        User-initiated refresh, bypassing freshness.

        Raises:
            RateLimitError: The API quota is exhausted until its reset time.
        """
        self._hooks.rate_limits.check_manual_refresh()
        poller = self._hooks.poller
        try:
            if self.polling and self._mounted and poller.get_subscription(self.key):
                await poller.trigger(self.key)
            else:
                await self._hooks.cache.ensure_fresh(
                    self.key, self.resource_class, self.fetcher, force=True
                )
        except ServiceError:
            pass
        return self.snapshot()

    def watch(
        self, callback: Callable[[ResourceSnapshot[T]], None]
    ) -> Callable[[], None]:
        """Call ``callback`` with a new snapshot whenever the entry changes."""

        def on_event(event: str, entry: CacheEntry) -> None:
            if entry.key == self.key and event != "evicted":
                callback(self.snapshot())

        return self._hooks.cache.listen(on_event)

    async def __aenter__(self) -> "Resource[T]":
        self.mount()
        await self.load()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unmount()


class ResourceHooks:
    """Factory for typed resources over the shared cache and poller."""

    def __init__(
        self,
        cache: CacheStore,
        poller: PollScheduler,
        rate_limits: RateLimitTracker,
        news: NewsSource,
        system: SystemSource,
        stocks: StockSource,
        insights: InsightsSource,
        clock: Clock | None = None,
        refresh_age_on_reconnect: float = 60.0,
    ):
        self.cache = cache
        self.poller = poller
        self.rate_limits = rate_limits
        self.news = news
        self.system = system
        self.stocks = stocks
        self.insights = insights
        self._clock = clock or Clock()
        self._refresh_age_on_reconnect = refresh_age_on_reconnect
        self._mounted: dict[str, list[Resource[Any]]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    # ── Generic ──────────────────────────────────────────────────────────────

    def resource(
        self,
        key: str,
        resource_class: ResourceClass,
        fetcher: Callable[[], Awaitable[T]],
        polling: bool = False,
        critical: bool = False,
    ) -> Resource[T]:
        return Resource(self, key, resource_class, fetcher, polling, critical)

    def snapshot(self, key: str) -> ResourceSnapshot[Any]:
        entry = self.cache.peek(key) or CacheEntry(key=key)
        return ResourceSnapshot.from_entry(entry, self._clock.now())

    def _attach(self, resource: Resource[Any]) -> None:
        self.cache.subscribe(resource.key)
        self._mounted.setdefault(resource.key, []).append(resource)
        if resource.polling:
            self.poller.start(
                resource.key,
                resource.resource_class,
                resource.fetcher,
                critical=resource.critical,
            )

    def _detach(self, resource: Resource[Any]) -> None:
        if resource.polling:
            self.poller.stop(resource.key)
        mounted = self._mounted.get(resource.key, [])
        if resource in mounted:
            mounted.remove(resource)
        if not mounted:
            self._mounted.pop(resource.key, None)
        self.cache.unsubscribe(resource.key)

    def invalidate(self, key_or_prefix: str) -> int:
        """Mark entries stale and refetch the ones that are mounted."""
        count = self.cache.invalidate(key_or_prefix)
        for key, resources in list(self._mounted.items()):
            if resources and key_matches(key, key_or_prefix):
                self._spawn(resources[0].load())
        return count

    def on_reconnected(self) -> None:
        """
        Reload mounted, unpolled resources that failed or aged while offline.

        Polled keys are left to ``PollScheduler.catch_up``.
        """
        now = self._clock.now()
        reloaded = 0
        for key, resources in list(self._mounted.items()):
            if not resources or self.poller.get_subscription(key):
                continue
            entry = self.cache.peek(key)
            if entry is None or self.cache.is_fetching(key):
                continue
            if not self.rate_limits.allows_polling(resources[0].critical):
                continue

            outdated = entry.has_value and (
                entry.fetched_at is None
                or now - entry.fetched_at > self._refresh_age_on_reconnect
            )
            if entry.status != EntryStatus.ERROR and not outdated:
                continue
            if outdated:
                self.cache.invalidate(key)
            self._spawn(resources[0].load())
            reloaded += 1

        if reloaded:
            logger.info(f"Back online, reloading {reloaded} failed or outdated resources")

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for background refetches started by invalidation."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Articles ─────────────────────────────────────────────────────────────

    def articles(
        self, filters: ArticleFilters | None = None, polling: bool = False
    ) -> Resource[ArticlePage]:
        params = filters.to_params() if filters else None
        return self.resource(
            make_key("articles", "list", params),
            ResourceClass.STANDARD,
            lambda: self.news.articles(filters),
            polling=polling,
        )

    def watch_new_articles(
        self,
        resource: Resource[ArticlePage],
        callback: Callable[[int], None],
    ) -> Callable[[], None]:
        """
        Call ``callback(count)`` when a refresh of an article list brings
        articles newer than the previous top article.

        The first page seen only sets the baseline.

        Returns:
            Function that stops watching
        """
        current = resource.snapshot().value
        latest_id = current.items[0].id if current and current.items else None

        def on_snapshot(snap: ResourceSnapshot[ArticlePage]) -> None:
            nonlocal latest_id
            if snap.value is None or not snap.value.items:
                return
            top_id = snap.value.items[0].id
            if latest_id is not None and top_id > latest_id:
                count = sum(1 for a in snap.value.items if a.id > latest_id)
                logger.info(f"{count} new article(s) in {resource.key}")
                callback(count)
            latest_id = top_id if latest_id is None else max(latest_id, top_id)

        return resource.watch(on_snapshot)

    def article(self, article_id: int) -> Resource[Article]:
        return self.resource(
            make_key("article", article_id),
            ResourceClass.STANDARD,
            lambda: self.news.article(article_id),
        )

    def search_articles(
        self, query: str, filters: ArticleFilters | None = None
    ) -> Resource[list[Article]]:
        params = filters.to_params() if filters else None
        return self.resource(
            make_key("articles", "search", query.strip(), params),
            ResourceClass.STANDARD,
            lambda: self.news.search(query.strip(), filters),
        )

    def article_stats(self, polling: bool = False) -> Resource[StatsResponse]:
        return self.resource(
            make_key("articles", "stats"),
            ResourceClass.STANDARD,
            self.news.stats,
            polling=polling,
        )

    def sources(self) -> Resource[list[SourceInfo]]:
        return self.resource("sources", ResourceClass.STATIC, self.news.sources)

    def categories(self) -> Resource[list[CategoryInfo]]:
        return self.resource("categories", ResourceClass.STATIC, self.news.categories)

    # ── Monitoring ───────────────────────────────────────────────────────────

    def health(self, polling: bool = True) -> Resource[HealthResponse]:
        # Health stays polled while rate limited so outages remain visible
        return self.resource(
            "health",
            ResourceClass.FREQUENT,
            self.system.health,
            polling=polling,
            critical=True,
        )

    def scraper_stats(self, polling: bool = True) -> Resource[ScraperStats]:
        return self.resource(
            make_key("scraper", "stats"),
            ResourceClass.REALTIME,
            self.system.scraper_stats,
            polling=polling,
        )

    # ── Stocks ───────────────────────────────────────────────────────────────

    def stock_quote(self, symbol: str, polling: bool = False) -> Resource[StockQuote]:
        symbol = normalize_symbol(symbol)
        return self.resource(
            make_key("stock", "quote", symbol),
            ResourceClass.FREQUENT,
            lambda: self.stocks.quote(symbol),
            polling=polling,
        )

    def stock_quotes(
        self, symbols: list[str], polling: bool = False
    ) -> Resource[dict[str, StockQuote]]:
        cleaned = sorted({normalize_symbol(s) for s in symbols if s.strip()})
        return self.resource(
            make_key("stock", "quotes", cleaned),
            ResourceClass.FREQUENT,
            lambda: self.stocks.quotes(cleaned),
            polling=polling,
        )

    # ── AI insights ──────────────────────────────────────────────────────────

    def trending(
        self, hours: int = 24, min_articles: int = 3, polling: bool = False
    ) -> Resource[TrendingTopicsResponse]:
        return self.resource(
            make_key("trending", {"hours": hours, "min_articles": min_articles}),
            ResourceClass.FREQUENT,
            lambda: self.insights.trending(hours, min_articles),
            polling=polling,
        )

    def sentiment_stats(
        self,
        source: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> Resource[SentimentStats]:
        return self.resource(
            make_key(
                "sentiment",
                {"source": source, "start_date": start_date, "end_date": end_date},
            ),
            ResourceClass.STANDARD,
            lambda: self.insights.sentiment_stats(source, start_date, end_date),
        )

    def processor_stats(self, polling: bool = False) -> Resource[ProcessorStats]:
        return self.resource(
            make_key("ai", "processor"),
            ResourceClass.STANDARD,
            self.insights.processor_stats,
            polling=polling,
        )

    # ── Prefetching ──────────────────────────────────────────────────────────

    async def prefetch_next_page(
        self, filters: ArticleFilters | None, current_page: int
    ) -> None:
        """Warm the cache with the page after ``current_page`` (1-based)."""
        filters = filters or ArticleFilters()
        limit = filters.limit or DEFAULT_PAGE_SIZE
        next_filters = filters.model_copy(
            update={"limit": limit, "offset": current_page * limit}
        )
        resource = self.articles(next_filters)
        await self.cache.prefetch(resource.key, resource.resource_class, resource.fetcher)

    async def prefetch_static(self) -> None:
        """Warm rarely changing lists (sources, categories)."""
        await asyncio.gather(
            *(
                self.cache.prefetch(r.key, r.resource_class, r.fetcher)
                for r in (self.sources(), self.categories())
            )
        )

    # ── Mutations ────────────────────────────────────────────────────────────

    async def trigger_scrape(self, source: str | None = None) -> ScrapeResponse:
        result = await self.news.trigger_scrape(ScrapeRequest(source=source))
        self.invalidate("articles")
        self.invalidate("scraper")
        return result

    async def process_article(self, article_id: int) -> dict[str, Any]:
        result = await self.insights.process_article(article_id)
        logger.info(f"Article {article_id} queued for processing")
        self.invalidate(make_key("article", article_id))
        self.invalidate("articles")
        return result

    async def close(self) -> None:
        for resources in list(self._mounted.values()):
            for resource in list(resources):
                resource.unmount()
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
