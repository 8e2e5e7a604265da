"""
Service layer exceptions.

Every failure leaving the transport is one of these, and each carries a
``NormalizedError`` so callers never branch on httpx exceptions versus
server error payloads.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ErrorKind(str, Enum):
    """Error codes: the server taxonomy followed by client-side kinds."""

    NOT_FOUND = "NOT_FOUND"
    DATABASE_ERROR = "DATABASE_ERROR"
    INVALID_DATE = "INVALID_DATE"
    INVALID_SOURCE = "INVALID_SOURCE"
    MISSING_QUERY = "MISSING_QUERY"
    SEARCH_ERROR = "SEARCH_ERROR"
    SCRAPING_FAILED = "SCRAPING_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_ID = "INVALID_ID"

    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    HTTP_ERROR = "HTTP_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    RATE_LIMITED = "RATE_LIMITED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, code: str | None) -> "ErrorKind":
        if not code:
            return cls.UNKNOWN
        try:
            return cls(code.upper())
        except ValueError:
            return cls.UNKNOWN


class NormalizedError(BaseModel):
    """The single failure shape attached to cache entries."""

    model_config = ConfigDict(frozen=True)

    code: ErrorKind
    message: str
    request_id: str | None = None
    status: int | None = None
    details: str | None = None
    # Raw server code, kept when it is not part of the known taxonomy
    raw_code: str | None = None


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        error: NormalizedError | None = None,
    ):
        self.service_id = service_id
        self.error = error or NormalizedError(code=ErrorKind.UNKNOWN, message=message)
        super().__init__(message)

    @property
    def code(self) -> ErrorKind:
        return self.error.code

    @property
    def request_id(self) -> str | None:
        return self.error.request_id


class TransportError(ServiceError):
    """Network unreachable, timeout, or a response that could not be parsed."""

    @classmethod
    def build(
        cls,
        code: ErrorKind,
        message: str,
        service_id: str | None = None,
        status: int | None = None,
        request_id: str | None = None,
    ) -> "TransportError":
        return cls(
            message,
            service_id=service_id,
            error=NormalizedError(
                code=code, message=message, status=status, request_id=request_id
            ),
        )


class ApplicationError(ServiceError):
    """Structured ``{code, message}`` error returned by the server."""

    pass


class CircuitOpenError(TransportError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        message = (
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s"
        )
        super().__init__(
            message,
            service_id=service_id,
            error=NormalizedError(code=ErrorKind.CIRCUIT_OPEN, message=message),
        )


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    def __init__(self, service_id: str, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after:.0f}s"
        super().__init__(
            msg,
            service_id=service_id,
            error=NormalizedError(code=ErrorKind.RATE_LIMITED, message=msg),
        )
