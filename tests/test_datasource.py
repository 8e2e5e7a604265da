"""Tests for the typed endpoint wrappers."""

import pytest

from newsdash.datasource import InsightsSource, NewsSource, StockSource, SystemSource
from newsdash.models import ArticleFilters, ScrapeRequest
from newsdash.services.client import ApiClient
from newsdash.services.errors import ErrorKind, ServiceError, TransportError
from tests.conftest import envelope

ARTICLE = {
    "id": 1,
    "title": "Kabinet presenteert begroting",
    "url": "https://nu.nl/artikel/1",
    "published": "2024-09-17T10:00:00Z",
    "source": "nu.nl",
}


@pytest.fixture
async def client(fake_api):
    api_client = ApiClient("http://api.test", max_retries=0, transport=fake_api.transport)
    yield api_client
    await api_client.close()


class TestNewsSource:
    async def test_articles_page(self, client, fake_api):
        fake_api.add(
            "/api/v1/articles",
            body=envelope(
                [ARTICLE],
                meta={"pagination": {"total": 120, "limit": 50, "offset": 0, "has_more": True}},
            ),
        )

        page = await NewsSource(client).articles(ArticleFilters(source="nu.nl", limit=50))

        assert page.items[0].title == "Kabinet presenteert begroting"
        assert page.pagination.has_more
        assert dict(fake_api.last("/api/v1/articles").url.params) == {
            "source": "nu.nl",
            "limit": "50",
        }

    async def test_search_sends_query_first(self, client, fake_api):
        fake_api.add("/api/v1/articles/search", [ARTICLE])

        results = await NewsSource(client).search("begroting", ArticleFilters(limit=5))

        assert len(results) == 1
        params = fake_api.last("/api/v1/articles/search").url.params
        assert list(params.keys()) == ["q", "limit"]

    async def test_unexpected_payload_is_invalid_response(self, client, fake_api):
        fake_api.add("/api/v1/articles/1", {"id": "one"})

        with pytest.raises(TransportError) as exc_info:
            await NewsSource(client).article(1)

        assert exc_info.value.code == ErrorKind.INVALID_RESPONSE

    async def test_trigger_scrape(self, client, fake_api):
        fake_api.add(
            "/api/v1/scrape",
            {"status": "started", "articles_found": 12},
            method="POST",
        )

        result = await NewsSource(client).trigger_scrape(ScrapeRequest(source="nu.nl"))

        assert result.articles_found == 12
        assert fake_api.calls("/api/v1/scrape", method="POST") == 1


class TestStockSource:
    async def test_quote_normalizes_symbol(self, client, fake_api):
        fake_api.add("/api/v1/stocks/quote/ASML", {"symbol": "ASML", "price": 612.4})

        quote = await StockSource(client).quote(" asml ")

        assert quote.price == 612.4

    async def test_empty_symbol_is_rejected_locally(self, client, fake_api):
        with pytest.raises(ServiceError) as exc_info:
            await StockSource(client).quote("  ")

        assert exc_info.value.code == ErrorKind.INVALID_REQUEST
        assert fake_api.requests == []

    async def test_batch_quotes(self, client, fake_api):
        fake_api.add(
            "/api/v1/stocks/quotes",
            {
                "AAPL": {"symbol": "AAPL", "price": 189.5},
                "MSFT": {"symbol": "MSFT", "price": 410.1},
            },
        )

        quotes = await StockSource(client).quotes(["aapl", "msft"])

        assert set(quotes) == {"AAPL", "MSFT"}
        assert fake_api.last("/api/v1/stocks/quotes").url.params["symbols"] == "AAPL,MSFT"


class TestSystemAndInsights:
    async def test_health(self, client, fake_api):
        fake_api.add("/health", {"status": "degraded", "components": {"db": "slow"}})

        health = await SystemSource(client).health()

        assert health.status == "degraded"

    async def test_scraper_stats_tolerates_extra_fields(self, client, fake_api):
        fake_api.add(
            "/api/v1/scraper/stats",
            {"articles_by_source": {"nu.nl": 4}, "queue_depth": 2},
        )

        stats = await SystemSource(client).scraper_stats()

        assert stats.articles_by_source == {"nu.nl": 4}

    async def test_trending_params(self, client, fake_api):
        fake_api.add(
            "/api/v1/ai/trending",
            {"topics": [{"keyword": "klimaat", "article_count": 7}], "count": 1},
        )

        trending = await InsightsSource(client).trending(hours=12, min_articles=5)

        assert trending.topics[0].keyword == "klimaat"
        assert dict(fake_api.last("/api/v1/ai/trending").url.params) == {
            "hours": "12",
            "min_articles": "5",
        }

    async def test_process_article(self, client, fake_api):
        fake_api.add("/api/v1/articles/3/process", {"queued": True}, method="POST")

        result = await InsightsSource(client).process_article(3)

        assert result == {"queued": True}
