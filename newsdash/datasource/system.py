"""
Health and scraper monitoring endpoints.
"""

from typing import Any

from newsdash.datasource.base import BaseDataSource
from newsdash.models import (
    HealthResponse,
    LivenessResponse,
    ReadinessResponse,
    ScraperStats,
)


class SystemSource(BaseDataSource):
    async def health(self) -> HealthResponse:
        return await self._get("/health", HealthResponse)

    async def liveness(self) -> LivenessResponse:
        return await self._get("/health/live", LivenessResponse)

    async def readiness(self) -> ReadinessResponse:
        return await self._get("/health/ready", ReadinessResponse)

    async def metrics(self) -> dict[str, Any]:
        return await self._get("/health/metrics", dict[str, Any])

    async def scraper_stats(self) -> ScraperStats:
        return await self._get("/api/v1/scraper/stats", ScraperStats)
