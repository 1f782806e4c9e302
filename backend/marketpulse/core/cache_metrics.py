"""
Cache performance metrics tracking
"""

from datetime import datetime, timezone
from typing import Any, Dict


class CacheMetrics:
    """Track cache performance metrics"""

    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.invalidations = 0
        self.total_requests = 0
        self.start_time = datetime.now(timezone.utc)

    def record_hit(self):
        self.hits += 1
        self.total_requests += 1

    def record_miss(self):
        self.misses += 1
        self.total_requests += 1

    def record_set(self):
        self.sets += 1

    def record_invalidation(self):
        self.invalidations += 1

    @property
    def hit_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        """Get metrics as dictionary"""
        uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "invalidations": self.invalidations,
            "total_requests": self.total_requests,
            "hit_rate": round(self.hit_rate, 4),
            "uptime_seconds": round(uptime, 1),
        }

    def reset(self):
        """Reset all metrics"""
        self.__init__()
