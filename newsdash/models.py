"""
API payload schemas.

The envelope is validated at the transport boundary; each data source
validates ``data`` into the model for its endpoint.
"""

from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ApiModel(BaseModel):
    """Base for payload models. Unknown server fields are kept, not rejected."""

    model_config = ConfigDict(extra="allow")


# ── Envelope ─────────────────────────────────────────────────────────────────


class ApiErrorBody(ApiModel):
    code: str = "UNKNOWN"
    message: str = ""
    details: str | None = None


class Pagination(ApiModel):
    total: int = 0
    limit: int = 0
    offset: int = 0
    has_more: bool | None = None


class ResponseMeta(ApiModel):
    pagination: Pagination | None = None
    sorting: dict[str, Any] | None = None
    filtering: dict[str, Any] | None = None


class RateLimitInfo(BaseModel):
    """Quota metadata taken from X-RateLimit-* response headers."""

    limit: int
    remaining: int
    reset: int  # epoch seconds


class ApiEnvelope(ApiModel, Generic[T]):
    """Contract every endpoint honours."""

    success: bool = True
    data: T | None = None
    error: ApiErrorBody | None = None
    meta: ResponseMeta | None = None
    request_id: str | None = None
    timestamp: str | None = None
    rate_limit: RateLimitInfo | None = Field(default=None, exclude=True)


# ── Articles ─────────────────────────────────────────────────────────────────


class AIEntity(ApiModel):
    entity: str
    entity_type: str
    relevance: float = 0.0
    sentiment: float = 0.0


class Article(ApiModel):
    id: int
    title: str
    summary: str = ""
    url: str
    published: str
    source: str
    keywords: list[str] = Field(default_factory=list)
    image_url: str = ""
    author: str = ""
    category: str = ""
    created_at: str | None = None
    updated_at: str | None = None
    content: str | None = None
    content_extracted: bool = False
    ai_summary: str | None = None
    ai_sentiment: Literal["positive", "negative", "neutral"] | None = None
    ai_sentiment_score: float | None = None
    ai_entities: list[AIEntity] | None = None
    stock_tickers: list[str] | None = None
    ai_processed: bool = False


class ArticleFilters(BaseModel):
    """Query parameters for article list endpoints. Insertion order is kept."""

    source: str | None = None
    category: str | None = None
    keyword: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    sort_by: Literal["published", "created_at"] | None = None
    sort_order: Literal["ASC", "DESC"] | None = None
    limit: int | None = None
    offset: int | None = None

    def to_params(self) -> dict[str, Any]:
        return self.model_dump()


class ArticlePage(BaseModel):
    """A page of articles with the pagination block from the envelope meta."""

    items: list[Article]
    pagination: Pagination | None = None


class SourceInfo(ApiModel):
    name: str
    url: str | None = None
    article_count: int | None = None
    is_active: bool | None = None


class CategoryInfo(ApiModel):
    name: str
    article_count: int | None = None


class StatsResponse(ApiModel):
    total_articles: int = 0
    sources: dict[str, Any] = Field(default_factory=dict)
    recent_articles_24h: int | None = None


# ── Health & scraper ─────────────────────────────────────────────────────────


class HealthResponse(ApiModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: str | None = None
    version: str | None = None
    uptime_seconds: float | None = None
    components: dict[str, Any] = Field(default_factory=dict)


class LivenessResponse(ApiModel):
    status: str
    time: str | None = None


class ReadinessResponse(ApiModel):
    status: str
    components: dict[str, Any] | None = None


class ScraperStats(ApiModel):
    """Scraper statistics; the server shape varies, so fields are loose."""

    articles_by_source: dict[str, int] = Field(default_factory=dict)
    rate_limit_delay: float | None = None
    sources_configured: list[str] = Field(default_factory=list)
    circuit_breakers: list[dict[str, Any]] | dict[str, Any] | None = None
    content_extraction: dict[str, Any] | None = None
    browser_pool: dict[str, Any] | None = None


class ScrapeRequest(BaseModel):
    source: str | None = None


class ScrapeResponse(ApiModel):
    status: str | None = None
    message: str | None = None
    articles_found: int | None = None
    articles_stored: int | None = None


# ── Stocks ───────────────────────────────────────────────────────────────────


class StockQuote(ApiModel):
    symbol: str
    name: str | None = None
    price: float
    change: float | None = None
    change_percent: float | None = None
    volume: int | None = None
    market_cap: float | None = None
    exchange: str | None = None
    currency: str | None = None
    timestamp: str | None = None


# ── AI insights ──────────────────────────────────────────────────────────────


class TrendingTopic(ApiModel):
    keyword: str
    article_count: int
    sources: list[str] = Field(default_factory=list)
    average_sentiment: float | None = None


class TrendingTopicsResponse(ApiModel):
    topics: list[TrendingTopic] = Field(default_factory=list)
    hours_back: int | None = None
    min_articles: int | None = None
    count: int | None = None


class SentimentStats(ApiModel):
    total_articles: int = 0
    positive_count: int = 0
    neutral_count: int = 0
    negative_count: int = 0
    average_sentiment: float = 0.0


class ProcessorStats(ApiModel):
    is_running: bool | None = None
    process_count: int | None = None
    last_run: str | None = None
