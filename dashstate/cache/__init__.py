"""
In-memory TTL cache with prefix invalidation and optional request coalescing.
"""
from .core import CacheEntry, TTLCache, DEFAULT_TTL_SECONDS, get_cache
from .keys import cache_key, resource_prefix
from .coalescer import RequestCoalescer

__all__ = [
    # Core types
    "CacheEntry",
    "TTLCache",
    "DEFAULT_TTL_SECONDS",
    "get_cache",
    # Keys
    "cache_key",
    "resource_prefix",
    # Coalescing
    "RequestCoalescer",
]
