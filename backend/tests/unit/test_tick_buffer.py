"""
Test the per-symbol tick ring buffer
"""

import pytest

from marketpulse.models.market_data import Tick
from marketpulse.state.tick_buffer import TickBuffer


def tick(ts, price=100.0, volume=1, symbol="TSLA"):
    return Tick(symbol, price, volume, ts)


class TestTickBuffer:
    """Test ordering, reordering tolerance and capacity"""

    def test_late_tick_within_tolerance_is_reordered(self):
        buffer = TickBuffer()
        for ts in (1000, 1100, 1300, 1200, 1400):
            assert buffer.insert(tick(ts))

        assert [t.timestamp for t in buffer.snapshot()] == [1000, 1100, 1200, 1300, 1400]
        assert buffer.reordered == 1
        assert buffer.dropped == 0

    def test_tick_beyond_tolerance_is_dropped(self):
        buffer = TickBuffer(tolerance_ms=2000)
        buffer.insert(tick(10_000))

        assert not buffer.insert(tick(7_999))
        assert buffer.insert(tick(8_000))
        assert [t.timestamp for t in buffer] == [8_000, 10_000]
        assert buffer.dropped == 1

    def test_equal_timestamps_keep_arrival_order(self):
        buffer = TickBuffer()
        buffer.insert(tick(1000, price=1.0))
        buffer.insert(tick(1000, price=2.0))
        buffer.insert(tick(900, price=3.0))

        assert [t.price for t in buffer] == [3.0, 1.0, 2.0]

    def test_capacity_evicts_oldest(self):
        buffer = TickBuffer(capacity=3)
        for ts in range(1, 6):
            buffer.insert(tick(ts * 100))

        assert len(buffer) == 3
        assert buffer.first.timestamp == 300
        assert buffer.last.timestamp == 500

    def test_late_tick_older_than_retained_window(self):
        buffer = TickBuffer(capacity=2)
        buffer.insert(tick(1000))
        buffer.insert(tick(1100))

        assert not buffer.insert(tick(900))
        assert [t.timestamp for t in buffer] == [1000, 1100]

    def test_empty_buffer(self):
        buffer = TickBuffer()

        assert buffer.last is None
        assert buffer.first is None
        assert buffer.snapshot() == ()

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            TickBuffer(capacity=0)
