"""
ApiClient - async HTTP client for the news API.

Combines:
- Uniform error normalization (every failure is a ServiceError)
- CircuitBreaker for failure protection
- Retries with exponential backoff for transient failures
- Transport observers (rate-limit tracker, connectivity monitor)

No caching happens here; that is the CacheStore's job.
"""

import asyncio
import uuid
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx
from loguru import logger
from pydantic import ValidationError

from newsdash.models import ApiEnvelope, ApiErrorBody
from newsdash.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from newsdash.services.clock import Clock
from newsdash.services.errors import (
    ApplicationError,
    CircuitOpenError,
    ErrorKind,
    NormalizedError,
    ServiceError,
    TransportError,
)
from newsdash.services.ratelimit import parse_rate_limit
from newsdash.settings import Settings

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class TransportObserver(Protocol):
    """Receives every HTTP response and every network-level failure."""

    def observe_response(self, response: httpx.Response) -> None: ...

    def observe_network_failure(self, exc: Exception) -> None: ...


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def build_query_string(params: dict[str, Any] | None) -> str:
    """
    Serialize params in insertion order, dropping None and empty strings.

    Returns "" when nothing is left, otherwise a string starting with "?".
    """
    if not params:
        return ""
    pairs = [
        (key, _query_value(value))
        for key, value in params.items()
        if value is not None and value != ""
    ]
    if not pairs:
        return ""
    return "?" + urlencode(pairs)


def _parse_error_body(body: Any) -> ApiErrorBody | None:
    """Pull ``{code, message, details}`` out of an error response body."""
    if not isinstance(body, dict):
        return None
    raw = body.get("error")
    if isinstance(raw, dict):
        fields = raw
    else:
        fields = {
            "code": body.get("code"),
            "message": body.get("message") or (raw if isinstance(raw, str) else None),
            "details": body.get("details"),
        }
    if not isinstance(fields.get("code"), str):
        fields = {**fields, "code": "UNKNOWN"}
    if not fields.get("message") and fields["code"] == "UNKNOWN":
        return None
    try:
        return ApiErrorBody.model_validate(
            {k: v for k, v in fields.items() if v is not None}
        )
    except ValidationError:
        return None


class ApiClient:
    """
    HTTP client for the news API.

    Usage:
        client = ApiClient("http://localhost:8080", api_key="secret")

        envelope = await client.request(
            "/api/v1/articles", params={"limit": 20, "source": None}
        )
        articles = envelope.data
    """

    SERVICE_ID = "news-api"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        circuit_breaker_config: CircuitBreakerConfig | None = None,
        use_circuit_breaker: bool = True,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool = False,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._transport = transport
        self._debug = debug

        self._circuit_breaker = (
            CircuitBreaker(self.SERVICE_ID, circuit_breaker_config, clock=clock)
            if use_circuit_breaker
            else None
        )
        self._observers: list[TransportObserver] = []

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ApiClient":
        return cls(
            base_url=settings.api_url,
            api_key=settings.api_key,
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            circuit_breaker_config=CircuitBreakerConfig(
                failure_threshold=settings.circuit_failure_threshold,
                reset_timeout=settings.circuit_reset_seconds,
            ),
            clock=clock,
            transport=transport,
            debug=settings.debug,
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        return self._circuit_breaker

    def add_observer(self, observer: TransportObserver) -> None:
        self._observers.append(observer)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    def _build_headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Request-ID": uuid.uuid4().hex,
        }
        if extra:
            headers.update(extra)
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        return headers

    async def request(
        self,
        path: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
        skip_retry: bool = False,
    ) -> ApiEnvelope[Any]:
        """
        Make a request and return the parsed response envelope.

        Args:
            path: Path relative to the base URL, e.g. "/api/v1/articles"
            method: HTTP method
            params: Query parameters; None and "" values are dropped
            json_data: JSON body for POST/PUT requests
            headers: Additional headers
            skip_retry: Fail on the first error instead of retrying

        Raises:
            TransportError: Network failure, timeout, unparseable response
            ApplicationError: Structured error returned by the server
            CircuitOpenError: The circuit breaker is open
        """
        url = f"{path}{build_query_string(params)}"
        attempt = 0

        while True:
            try:
                return await self._execute_request(method, url, json_data, headers)
            except ServiceError as e:
                if (
                    skip_retry
                    or attempt >= self._max_retries
                    or not self._is_retryable(e)
                ):
                    raise
                attempt += 1
                delay = self._retry_delay * 2 ** (attempt - 1)
                logger.info(
                    f"Retrying {method} {url} ({attempt}/{self._max_retries}) "
                    f"after {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

    @staticmethod
    def _is_retryable(error: ServiceError) -> bool:
        if isinstance(error, CircuitOpenError):
            return False
        if error.code in (ErrorKind.NETWORK_ERROR, ErrorKind.TIMEOUT):
            return True
        return error.error.status in RETRYABLE_STATUS_CODES

    async def _execute_request(
        self,
        method: str,
        url: str,
        json_data: Any,
        headers: dict[str, str] | None,
    ) -> ApiEnvelope[Any]:
        """Run a single attempt through the circuit breaker."""
        cb = self._circuit_breaker
        if cb is not None and not cb.can_request():
            raise CircuitOpenError(self.SERVICE_ID, cb.get_time_until_reset() or 0)

        try:
            envelope = await self._send(method, url, json_data, headers)
        except ServiceError as e:
            if cb is not None:
                # A 4xx means the API is up and answering
                status = e.error.status
                if status is None or status >= 500:
                    cb.record_failure()
                else:
                    cb.record_success()
            raise

        if cb is not None:
            cb.record_success()
        return envelope

    async def _send(
        self,
        method: str,
        url: str,
        json_data: Any,
        headers: dict[str, str] | None,
    ) -> ApiEnvelope[Any]:
        client = await self._get_http_client()
        req_headers = self._build_headers(headers)
        request_id = req_headers["X-Request-ID"]

        try:
            response = await client.request(
                method=method,
                url=url,
                headers=req_headers,
                json=json_data,
            )
        except httpx.TimeoutException as e:
            raise TransportError.build(
                ErrorKind.TIMEOUT,
                f"Request to {url} timed out after {self._timeout}s",
                service_id=self.SERVICE_ID,
                request_id=request_id,
            ) from e
        except httpx.RequestError as e:
            self._notify_network_failure(e)
            raise TransportError.build(
                ErrorKind.NETWORK_ERROR,
                str(e) or type(e).__name__,
                service_id=self.SERVICE_ID,
                request_id=request_id,
            ) from e

        self._log(f"{method} {url} - {response.status_code}")
        self._notify_response(response)
        request_id = response.headers.get("X-Request-ID", request_id)

        if not response.is_success:
            raise self._error_from_response(response, request_id)

        try:
            payload = response.json()
            envelope = ApiEnvelope[Any].model_validate(payload)
        except (ValueError, ValidationError) as e:
            raise TransportError.build(
                ErrorKind.INVALID_RESPONSE,
                f"Invalid response body from {url}: {e}",
                service_id=self.SERVICE_ID,
                status=response.status_code,
                request_id=request_id,
            ) from e

        envelope.rate_limit = parse_rate_limit(response.headers)

        if not envelope.success:
            body = envelope.error or ApiErrorBody(message="Request failed")
            raise self._application_error(
                body, response.status_code, envelope.request_id or request_id
            )

        return envelope

    def _error_from_response(
        self, response: httpx.Response, request_id: str | None
    ) -> ServiceError:
        """Build the error for a non-2xx response."""
        try:
            body = response.json()
        except ValueError:
            body = None

        parsed = _parse_error_body(body)
        if isinstance(body, dict) and body.get("request_id"):
            request_id = str(body["request_id"])

        if parsed is None:
            code = (
                ErrorKind.RATE_LIMITED
                if response.status_code == 429
                else ErrorKind.HTTP_ERROR
            )
            return TransportError.build(
                code,
                f"HTTP {response.status_code}",
                service_id=self.SERVICE_ID,
                status=response.status_code,
                request_id=request_id,
            )

        return self._application_error(parsed, response.status_code, request_id)

    def _application_error(
        self, body: ApiErrorBody, status: int, request_id: str | None
    ) -> ApplicationError:
        kind = ErrorKind.parse(body.code)
        if kind == ErrorKind.UNKNOWN and status == 429:
            kind = ErrorKind.RATE_LIMITED
        message = body.message or f"HTTP {status}"
        logger.warning(f"API error [{request_id}] {body.code}: {message}")
        return ApplicationError(
            message,
            service_id=self.SERVICE_ID,
            error=NormalizedError(
                code=kind,
                message=message,
                request_id=request_id,
                status=status,
                details=body.details,
                raw_code=body.code if kind == ErrorKind.UNKNOWN else None,
            ),
        )

    async def probe(self, path: str = "/health/live") -> bool:
        """Cheap reachability check; bypasses retries and the circuit breaker."""
        try:
            await self._send("GET", path, None, None)
        except TransportError as e:
            return e.code not in (ErrorKind.NETWORK_ERROR, ErrorKind.TIMEOUT)
        except ServiceError:
            return True
        return True

    def _notify_response(self, response: httpx.Response) -> None:
        for observer in self._observers:
            observer.observe_response(response)

    def _notify_network_failure(self, exc: Exception) -> None:
        for observer in self._observers:
            observer.observe_network_failure(exc)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ApiClient closed")

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_health_status(self) -> dict[str, Any]:
        return {
            "base_url": self._base_url,
            "circuit_breaker": (
                self._circuit_breaker.get_status() if self._circuit_breaker else None
            ),
        }

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[ApiClient] {message}")
