"""
RateLimitTracker - passive observer of X-RateLimit-* response headers.

It never issues requests. The poll scheduler asks it whether background
polling may run, and resource handles ask it before a manual refresh.
"""

from dataclasses import dataclass
from typing import Callable, Mapping

import httpx
from loguru import logger

from newsdash.models import RateLimitInfo
from newsdash.services.clock import Clock
from newsdash.services.errors import RateLimitError

LIMIT_HEADER = "X-RateLimit-Limit"
REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"


def parse_rate_limit(headers: Mapping[str, str]) -> RateLimitInfo | None:
    """Read quota headers. Returns None when the response carries none."""
    raw = (
        headers.get(LIMIT_HEADER),
        headers.get(REMAINING_HEADER),
        headers.get(RESET_HEADER),
    )
    if all(v is None for v in raw):
        return None
    try:
        limit, remaining, reset = (int(float(v)) if v else 0 for v in raw)
    except ValueError:
        logger.warning(f"Ignoring malformed rate limit headers: {raw}")
        return None
    return RateLimitInfo(limit=limit, remaining=max(0, remaining), reset=reset)


@dataclass(frozen=True)
class RateLimitState:
    limit: int = 0
    remaining: int = 0
    reset_at: float = 0.0
    is_limited: bool = False

    def reset_in_seconds(self, now: float) -> float:
        return max(0.0, self.reset_at - now)

    @property
    def percentage(self) -> float:
        """Share of quota left, 100 when no limit is known."""
        if not self.limit:
            return 100.0
        return self.remaining / self.limit * 100


class RateLimitTracker:
    SERVICE_ID = "news-api"

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or Clock()
        self._state = RateLimitState()
        self._listeners: list[Callable[[RateLimitState], None]] = []

    @property
    def state(self) -> RateLimitState:
        """Current state; ``is_limited`` decays once ``reset_at`` has passed."""
        if self._state.is_limited and self._clock.now() >= self._state.reset_at:
            self._state = RateLimitState(
                limit=self._state.limit,
                remaining=self._state.limit,
                reset_at=self._state.reset_at,
                is_limited=False,
            )
            logger.info("Rate limit window reset")
            self._notify()
        return self._state

    @property
    def is_limited(self) -> bool:
        return self.state.is_limited

    def reset_in_seconds(self) -> float:
        return self.state.reset_in_seconds(self._clock.now())

    def percentage(self) -> float:
        return self.state.percentage

    def update(self, info: RateLimitInfo) -> None:
        limited = info.remaining == 0 and info.reset > self._clock.now()
        previous = self._state
        self._state = RateLimitState(
            limit=info.limit,
            remaining=info.remaining,
            reset_at=float(info.reset),
            is_limited=limited,
        )
        if limited and not previous.is_limited:
            logger.warning(
                f"Rate limit reached ({info.limit} requests), "
                f"resets in {self.reset_in_seconds():.0f}s"
            )
        if self._state != previous:
            self._notify()

    # TransportObserver

    def observe_response(self, response: httpx.Response) -> None:
        if not (response.is_success or response.status_code == 429):
            return
        info = parse_rate_limit(response.headers)
        if info is not None:
            self.update(info)

    def observe_network_failure(self, exc: Exception) -> None:
        pass

    # Gates

    def allows_polling(self, critical: bool = False) -> bool:
        return critical or not self.is_limited

    def check_manual_refresh(self) -> None:
        """Raise RateLimitError while the quota is exhausted."""
        if self.is_limited:
            raise RateLimitError(self.SERVICE_ID, retry_after=self.reset_in_seconds())

    def listen(
        self, callback: Callable[[RateLimitState], None]
    ) -> Callable[[], None]:
        self._listeners.append(callback)

        def unlisten() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unlisten

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self._state)
