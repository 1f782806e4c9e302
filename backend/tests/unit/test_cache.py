"""
Test cache metrics and the bounded TTL cache
"""

from datetime import datetime

from marketpulse.core.cache_metrics import CacheMetrics
from marketpulse.core.ttl_cache import BoundedCache


class FakeTimer:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestCacheMetrics:
    """Test cache metrics tracking"""

    def test_initial_state(self):
        """Test initial metrics state"""
        metrics = CacheMetrics()

        assert metrics.hits == 0
        assert metrics.misses == 0
        assert metrics.sets == 0
        assert metrics.invalidations == 0
        assert metrics.total_requests == 0
        assert metrics.hit_rate == 0.0
        assert isinstance(metrics.start_time, datetime)

    def test_hit_rate(self):
        """Test hit rate calculation"""
        metrics = CacheMetrics()
        metrics.record_hit()
        metrics.record_hit()
        metrics.record_hit()
        metrics.record_miss()

        assert metrics.total_requests == 4
        assert metrics.hit_rate == 0.75

    def test_to_dict_and_reset(self):
        """Test dictionary export and reset"""
        metrics = CacheMetrics()
        metrics.record_set()
        metrics.record_invalidation()

        data = metrics.to_dict()
        assert data["sets"] == 1
        assert data["invalidations"] == 1
        assert "uptime_seconds" in data

        metrics.reset()
        assert metrics.sets == 0
        assert metrics.invalidations == 0


class TestBoundedCache:
    """Test BoundedCache expiry and bounds"""

    def test_get_set(self):
        """Test hit and miss accounting"""
        cache = BoundedCache("test", max_size=10, ttl=60)

        assert cache.get("missing") is None
        cache.set("key", "value")
        assert cache.get("key") == "value"
        assert "key" in cache

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["name"] == "test"
        assert stats["size"] == 1

    def test_ttl_expiry(self):
        """Test entries vanish after their TTL"""
        timer = FakeTimer()
        cache = BoundedCache("ttl", max_size=10, ttl=30, timer=timer)
        cache.set("key", 1)

        timer.now = 29
        assert cache.get("key") == 1
        timer.now = 31
        assert cache.get("key") is None

    def test_max_size(self):
        """Test the cache never exceeds its entry bound"""
        cache = BoundedCache("bounded", max_size=3, ttl=60)
        for i in range(10):
            cache.set(i, i)

        assert len(cache) == 3

    def test_clear(self):
        """Test clearing records an invalidation"""
        cache = BoundedCache("clear", max_size=3, ttl=60)
        cache.set("a", 1)
        cache.clear()

        assert len(cache) == 0
        assert cache.metrics.invalidations == 1
