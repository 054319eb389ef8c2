"""
Core cache data structures and the in-memory TTL store.
"""
import threading
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.ttl")

DEFAULT_TTL_SECONDS = 60.0


@dataclass
class CacheEntry:
    """
    Represents a cached value with its creation and expiry times.

    Times come from the owning cache's clock (monotonic seconds by default).
    """
    value: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """An entry stays visible while now <= expires_at."""
        return now > self.expires_at

    def age_seconds(self, now: float) -> float:
        """Seconds since the value was stored."""
        return now - self.created_at


class TTLCache:
    """
    Keyed store of cached values with explicit expiry.

    - Expired entries are removed lazily when read; there is no sweeper
    - No capacity bound; callers keep the key space bounded
    - Keys are opaque strings, conventionally "<resource>:<params>" so a
      whole resource can be dropped with invalidate(prefix)

    Usage:
        cache = TTLCache(default_ttl=60.0)
        cache.set("orders:page=1", rows)
        rows = cache.get("orders:page=1")
        cache.invalidate("orders:")
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: Seconds a value lives when set() is given no ttl
            clock: Time source in seconds, injectable for tests
        """
        if default_ttl < 0:
            raise ValueError("default_ttl must be non-negative")
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._clock = clock
        self.default_ttl = default_ttl

        self._stats = {
            "hits": 0,
            "misses": 0,
            "expirations": 0,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return the cached value for key, or default on a miss.

        An expired entry counts as a miss and is removed.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return default

            if entry.is_expired(now):
                del self._entries[key]
                self._stats["expirations"] += 1
                self._stats["misses"] += 1
                logger.debug(f"CACHE EXPIRED: {key} [age={entry.age_seconds(now):.1f}s]")
                return default

            self._stats["hits"] += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> CacheEntry:
        """
        Store value under key, replacing any existing entry.

        Args:
            key: Cache key
            value: Any in-memory value
            ttl: Seconds until expiry (defaults to default_ttl)

        Returns:
            The stored entry
        """
        if ttl is None:
            ttl = self.default_ttl
        elif ttl < 0:
            raise ValueError("ttl must be non-negative")

        now = self._clock()
        entry = CacheEntry(value=value, created_at=now, expires_at=now + ttl)
        with self._lock:
            self._entries[key] = entry
        logger.debug(f"CACHE SET: {key} [ttl={ttl}s]")
        return entry

    def invalidate(self, prefix: str) -> int:
        """
        Remove every entry whose key starts with prefix.

        Returns:
            Number of entries removed
        """
        with self._lock:
            to_delete = [k for k in self._entries if k.startswith(prefix)]
            for key in to_delete:
                del self._entries[key]
        if to_delete:
            logger.info(f"Invalidated {len(to_delete)} entries with prefix '{prefix}'")
        return len(to_delete)

    def clear(self) -> int:
        """
        Remove all entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def __contains__(self, key: str) -> bool:
        # Does not evict or touch stats
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0

            return {
                "entries": len(self._entries),
                "hits": self._stats["hits"],
                "misses": self._stats["misses"],
                "expirations": self._stats["expirations"],
                "hit_rate_percent": round(hit_rate, 1),
            }


# Process-default cache instance
_cache: Optional[TTLCache] = None


def get_cache() -> TTLCache:
    """Get or create the process-default cache."""
    global _cache
    if _cache is None:
        from config.settings import settings
        _cache = TTLCache(default_ttl=settings.cache_default_ttl_seconds)
    return _cache
