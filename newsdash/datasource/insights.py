"""
AI insight endpoints: trending topics, sentiment and article processing.
"""

from typing import Any
from urllib.parse import quote

from newsdash.datasource.base import BaseDataSource
from newsdash.models import (
    Article,
    ProcessorStats,
    SentimentStats,
    TrendingTopicsResponse,
)


class InsightsSource(BaseDataSource):
    async def trending(
        self, hours: int = 24, min_articles: int = 3, limit: int | None = None
    ) -> TrendingTopicsResponse:
        return await self._get(
            "/api/v1/ai/trending",
            TrendingTopicsResponse,
            {"hours": hours, "min_articles": min_articles, "limit": limit},
        )

    async def sentiment_stats(
        self,
        source: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> SentimentStats:
        return await self._get(
            "/api/v1/ai/sentiment/stats",
            SentimentStats,
            {"source": source, "start_date": start_date, "end_date": end_date},
        )

    async def processor_stats(self) -> ProcessorStats:
        return await self._get("/api/v1/ai/processor/stats", ProcessorStats)

    async def process_article(self, article_id: int) -> dict[str, Any]:
        return await self._post(f"/api/v1/articles/{article_id}/process", dict[str, Any])

    async def articles_by_entity(self, entity: str, limit: int = 50) -> list[Article]:
        return await self._get(
            f"/api/v1/ai/entity/{quote(entity)}", list[Article], {"limit": limit}
        )
