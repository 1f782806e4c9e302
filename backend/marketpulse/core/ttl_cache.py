"""
Bounded in-memory cache with TTL expiry and metrics
"""

import time
from typing import Any, Callable, Dict, Hashable, Optional

from cachetools import TTLCache

from marketpulse.core.cache_metrics import CacheMetrics


class BoundedCache:
    """Entry-count and TTL bounded cache used for private component caches"""

    def __init__(
        self,
        name: str,
        max_size: int = 1000,
        ttl: float = 3600,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.max_size = max_size
        self.ttl = ttl
        self._cache = TTLCache(maxsize=max_size, ttl=ttl, timer=timer)
        self.metrics = CacheMetrics()

    def get(self, key: Hashable) -> Optional[Any]:
        """Get value or None, recording hit/miss"""
        value = self._cache.get(key)
        if value is None:
            self.metrics.record_miss()
        else:
            self.metrics.record_hit()
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._cache[key] = value
        self.metrics.record_set()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def expire(self) -> None:
        """Drop expired entries now instead of on next access"""
        self._cache.expire()

    def clear(self) -> None:
        self._cache.clear()
        self.metrics.record_invalidation()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.metrics.to_dict()
        stats.update({"name": self.name, "size": len(self._cache), "max_size": self.max_size})
        return stats
