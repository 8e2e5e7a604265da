"""Tests for ApiClient over httpx.MockTransport."""

import json

import httpx
import pytest

from newsdash.services.circuit_breaker import CircuitBreakerConfig, CircuitState
from newsdash.services.client import ApiClient, build_query_string
from newsdash.services.errors import (
    ApplicationError,
    CircuitOpenError,
    ErrorKind,
    TransportError,
)
from newsdash.services.ratelimit import RateLimitTracker
from tests.conftest import envelope, error_body

BASE_URL = "http://api.test"


@pytest.fixture
def make_client(fake_api, clock):
    def factory(**kwargs):
        options = {
            "api_key": "secret",
            "retry_delay": 0,
            "clock": clock,
            "transport": fake_api.transport,
        }
        options.update(kwargs)
        return ApiClient(BASE_URL, **options)

    return factory


class RecordingObserver:
    def __init__(self):
        self.responses = []
        self.failures = []

    def observe_response(self, response):
        self.responses.append(response.status_code)

    def observe_network_failure(self, exc):
        self.failures.append(exc)


# =============================================================================
# Query strings and headers
# =============================================================================


class TestQueryString:
    def test_drops_empty_values_and_keeps_order(self):
        query = build_query_string(
            {"source": "nu", "category": None, "keyword": "", "limit": 20, "offset": 0}
        )

        assert query == "?source=nu&limit=20&offset=0"

    def test_booleans_and_lists(self):
        assert build_query_string({"active": True, "ids": [1, 2]}) == (
            "?active=true&ids=1%2C2"
        )

    def test_nothing_left(self):
        assert build_query_string(None) == ""
        assert build_query_string({"source": None, "q": ""}) == ""


class TestRequest:
    async def test_sends_key_request_id_and_params(self, make_client, fake_api):
        fake_api.add("/api/v1/articles", [])
        client = make_client()

        await client.request("/api/v1/articles", params={"limit": 20, "source": None})

        request = fake_api.last("/api/v1/articles")
        assert request.headers["X-API-Key"] == "secret"
        assert request.headers["X-Request-ID"]
        assert dict(request.url.params) == {"limit": "20"}
        await client.close()

    async def test_no_key_header_without_key(self, make_client, fake_api):
        fake_api.add("/health", {"status": "healthy"})
        client = make_client(api_key=None)

        await client.request("/health")

        assert "X-API-Key" not in fake_api.last("/health").headers
        await client.close()

    async def test_returns_envelope(self, make_client, fake_api):
        fake_api.add(
            "/api/v1/articles",
            body=envelope(
                [{"id": 1}],
                meta={"pagination": {"total": 10, "limit": 1, "offset": 0}},
                request_id="req-1",
            ),
        )
        client = make_client()

        result = await client.request("/api/v1/articles")

        assert result.data == [{"id": 1}]
        assert result.meta.pagination.total == 10
        assert result.request_id == "req-1"
        assert result.rate_limit is None
        await client.close()

    async def test_post_sends_json_body(self, make_client, fake_api):
        fake_api.add("/api/v1/scrape", {"status": "started"}, method="POST")
        client = make_client()

        await client.request("/api/v1/scrape", method="POST", json_data={"source": "nu"})

        assert json.loads(fake_api.last("/api/v1/scrape").content) == {"source": "nu"}
        await client.close()


# =============================================================================
# Error normalization
# =============================================================================


class TestErrors:
    async def test_structured_server_error(self, make_client, fake_api):
        fake_api.add(
            "/api/v1/articles/7",
            status=404,
            body=error_body("NOT_FOUND", "Article not found", request_id="req-7"),
        )
        client = make_client()

        with pytest.raises(ApplicationError) as exc_info:
            await client.request("/api/v1/articles/7")

        error = exc_info.value.error
        assert error.code == ErrorKind.NOT_FOUND
        assert error.message == "Article not found"
        assert error.status == 404
        assert error.request_id == "req-7"
        assert fake_api.calls("/api/v1/articles/7") == 1
        await client.close()

    async def test_unknown_server_code_is_kept(self, make_client, fake_api):
        fake_api.add("/x", status=400, body=error_body("QUOTA_EXCEEDED", "Too much"))
        client = make_client()

        with pytest.raises(ApplicationError) as exc_info:
            await client.request("/x")

        assert exc_info.value.code == ErrorKind.UNKNOWN
        assert exc_info.value.error.raw_code == "QUOTA_EXCEEDED"
        await client.close()

    async def test_unparseable_error_body_falls_back_to_status(self, make_client, fake_api):
        fake_api.route("/x", lambda request: httpx.Response(502, text="Bad Gateway"))
        client = make_client(max_retries=0)

        with pytest.raises(TransportError) as exc_info:
            await client.request("/x")

        assert exc_info.value.code == ErrorKind.HTTP_ERROR
        assert str(exc_info.value) == "HTTP 502"
        assert exc_info.value.error.status == 502
        await client.close()

    async def test_success_false_is_application_error(self, make_client, fake_api):
        fake_api.add("/x", body=error_body("SEARCH_ERROR", "Search failed"))
        client = make_client()

        with pytest.raises(ApplicationError) as exc_info:
            await client.request("/x")

        assert exc_info.value.code == ErrorKind.SEARCH_ERROR
        await client.close()

    async def test_invalid_json(self, make_client, fake_api):
        fake_api.route("/x", lambda request: httpx.Response(200, text="<html>"))
        client = make_client()

        with pytest.raises(TransportError) as exc_info:
            await client.request("/x")

        assert exc_info.value.code == ErrorKind.INVALID_RESPONSE
        await client.close()

    async def test_network_failure(self, make_client, fake_api):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_api.route("/x", refuse)
        observer = RecordingObserver()
        client = make_client(max_retries=0)
        client.add_observer(observer)

        with pytest.raises(TransportError) as exc_info:
            await client.request("/x")

        assert exc_info.value.code == ErrorKind.NETWORK_ERROR
        assert len(observer.failures) == 1
        await client.close()

    async def test_timeout(self, make_client, fake_api):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        fake_api.route("/x", slow)
        client = make_client(max_retries=0)

        with pytest.raises(TransportError) as exc_info:
            await client.request("/x")

        assert exc_info.value.code == ErrorKind.TIMEOUT
        await client.close()


# =============================================================================
# Retries and circuit breaker
# =============================================================================


class TestRetries:
    async def test_retries_transient_failures(self, make_client, fake_api):
        responses = iter([httpx.Response(503), httpx.Response(200, json=envelope("ok"))])
        fake_api.route("/x", lambda request: next(responses))
        client = make_client(max_retries=3)

        result = await client.request("/x")

        assert result.data == "ok"
        assert fake_api.calls("/x") == 2
        await client.close()

    async def test_gives_up_after_max_retries(self, make_client, fake_api):
        fake_api.route("/x", lambda request: httpx.Response(500))
        client = make_client(max_retries=2)

        with pytest.raises(TransportError):
            await client.request("/x")

        assert fake_api.calls("/x") == 3
        await client.close()

    async def test_skip_retry(self, make_client, fake_api):
        fake_api.route("/x", lambda request: httpx.Response(500))
        client = make_client(max_retries=2)

        with pytest.raises(TransportError):
            await client.request("/x", skip_retry=True)

        assert fake_api.calls("/x") == 1
        await client.close()

    async def test_circuit_opens_on_server_failures(self, make_client, fake_api):
        fake_api.route("/x", lambda request: httpx.Response(503))
        client = make_client(
            max_retries=0,
            circuit_breaker_config=CircuitBreakerConfig(failure_threshold=2),
        )

        for _ in range(2):
            with pytest.raises(TransportError):
                await client.request("/x")

        with pytest.raises(CircuitOpenError) as exc_info:
            await client.request("/x")

        assert exc_info.value.code == ErrorKind.CIRCUIT_OPEN
        assert fake_api.calls("/x") == 2
        await client.close()

    async def test_client_errors_do_not_trip_circuit(self, make_client, fake_api):
        fake_api.add("/x", status=404, body=error_body("NOT_FOUND", "gone"))
        client = make_client(circuit_breaker_config=CircuitBreakerConfig(failure_threshold=2))

        for _ in range(3):
            with pytest.raises(ApplicationError):
                await client.request("/x")

        assert client.circuit_breaker.state == CircuitState.CLOSED
        await client.close()


# =============================================================================
# Observers and probe
# =============================================================================


class TestObservers:
    async def test_rate_limit_headers_reach_tracker(self, make_client, fake_api, clock):
        reset = int(clock.now()) + 60
        fake_api.add(
            "/x",
            "ok",
            headers={
                "X-RateLimit-Limit": "100",
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(reset),
            },
        )
        tracker = RateLimitTracker(clock=clock)
        client = make_client()
        client.add_observer(tracker)

        result = await client.request("/x")

        assert result.rate_limit.remaining == 0
        assert tracker.is_limited
        await client.close()

    async def test_every_response_is_observed(self, make_client, fake_api):
        fake_api.add("/x", status=404, body=error_body("NOT_FOUND", "gone"))
        observer = RecordingObserver()
        client = make_client()
        client.add_observer(observer)

        with pytest.raises(ApplicationError):
            await client.request("/x")

        assert observer.responses == [404]
        await client.close()

    async def test_probe(self, make_client, fake_api):
        client = make_client()
        fake_api.route("/health/live", lambda request: httpx.Response(503))
        assert await client.probe() is True

        def refuse(request):
            raise httpx.ConnectError("down", request=request)

        fake_api.route("/health/live", refuse)
        assert await client.probe() is False
        await client.close()
