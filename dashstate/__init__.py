"""
Ephemeral client-side state for the cash-flow dashboard.

- cache: process-wide TTL cache with prefix invalidation
- fetch: cached-or-produced values with loading/error state
- telemetry: batched, best-effort duration metrics
"""
from .cache import TTLCache, cache_key
from .fetch import FetchCoordinator, FetchOptions
from .telemetry import MetricBatcher, measure

__all__ = [
    "TTLCache",
    "cache_key",
    "FetchCoordinator",
    "FetchOptions",
    "MetricBatcher",
    "measure",
]
