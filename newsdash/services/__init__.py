"""
Sync engine services.

Provides:
- ApiClient: HTTP transport with error normalization and circuit breaker
- CacheStore: Keyed cache with freshness classes, coalescing, stale-while-revalidate
- PollScheduler: Adaptive polling driven by visibility, connectivity, failures
- ConnectivityMonitor: Online/offline state with reconnect catch-up
- RateLimitTracker: Quota observer that throttles polling and manual refresh

The SyncEngine context object lives in ``newsdash.services.engine``.
"""

from newsdash.services.errors import (
    ApplicationError,
    CircuitOpenError,
    ErrorKind,
    NormalizedError,
    RateLimitError,
    ServiceError,
    TransportError,
)
from newsdash.services.cache import (
    CacheEntry,
    CacheStore,
    EntryStatus,
    ResourceClass,
    make_key,
)
from newsdash.services.circuit_breaker import CircuitBreaker, CircuitState
from newsdash.services.client import ApiClient, build_query_string
from newsdash.services.connectivity import (
    ConnectivityMonitor,
    ConnectivityPhase,
    ConnectivityState,
)
from newsdash.services.poller import PollScheduler, PollState, PollSubscription
from newsdash.services.ratelimit import RateLimitState, RateLimitTracker

__all__ = [
    # Errors
    "ApplicationError",
    "CircuitOpenError",
    "ErrorKind",
    "NormalizedError",
    "RateLimitError",
    "ServiceError",
    "TransportError",
    # Cache
    "CacheEntry",
    "CacheStore",
    "EntryStatus",
    "ResourceClass",
    "make_key",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitState",
    # Client
    "ApiClient",
    "build_query_string",
    # Connectivity
    "ConnectivityMonitor",
    "ConnectivityPhase",
    "ConnectivityState",
    # Polling
    "PollScheduler",
    "PollState",
    "PollSubscription",
    # Rate limits
    "RateLimitState",
    "RateLimitTracker",
]
