"""
News API data source: articles, sources, categories and scraping.
"""

from typing import Any

from loguru import logger

from newsdash.datasource.base import BaseDataSource
from newsdash.models import (
    Article,
    ArticleFilters,
    ArticlePage,
    CategoryInfo,
    ScrapeRequest,
    ScrapeResponse,
    SourceInfo,
    StatsResponse,
)

ARTICLES_PATH = "/api/v1/articles"


class NewsSource(BaseDataSource):
    """Article endpoints of the news API."""

    async def articles(self, filters: ArticleFilters | None = None) -> ArticlePage:
        params = filters.to_params() if filters else None
        envelope = await self.client.request(ARTICLES_PATH, params=params)
        items = self._parse(envelope, list[Article])
        pagination = envelope.meta.pagination if envelope.meta else None
        return ArticlePage(items=items, pagination=pagination)

    async def article(self, article_id: int) -> Article:
        return await self._get(f"{ARTICLES_PATH}/{article_id}", Article)

    async def search(
        self, query: str, filters: ArticleFilters | None = None
    ) -> list[Article]:
        params: dict[str, Any] = {"q": query}
        if filters:
            params.update(filters.to_params())
        return await self._get(f"{ARTICLES_PATH}/search", list[Article], params)

    async def stats(self) -> StatsResponse:
        return await self._get(f"{ARTICLES_PATH}/stats", StatsResponse)

    async def sources(self) -> list[SourceInfo]:
        return await self._get("/api/v1/sources", list[SourceInfo])

    async def categories(self) -> list[CategoryInfo]:
        return await self._get("/api/v1/categories", list[CategoryInfo])

    async def trigger_scrape(self, request: ScrapeRequest | None = None) -> ScrapeResponse:
        """Start a scrape run (requires an API key)."""
        body = request.model_dump(exclude_none=True) if request else None
        result = await self._post("/api/v1/scrape", ScrapeResponse, body)
        logger.info(f"Scrape triggered: {result.message or result.status}")
        return result
