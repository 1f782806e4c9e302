"""
Test the in-memory state store
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from marketpulse.models.market_data import MarketPhase, Quote, Tick
from marketpulse.models.news import ResolutionReason, ResolutionVerdict
from marketpulse.models.scanner import ScannerPreset, ScannerResult
from marketpulse.models.status import WsState
from marketpulse.state.store import StateStore, StoreDiff

from tests.mocks import make_news


def tick(symbol, ts, price=100.0, volume=10):
    return Tick(symbol, price, volume, ts)


@pytest.fixture
def diffs(store):
    received = []
    store.subscribe(received.append)
    return received


class TestTicksAndQuotes:
    """Test tick ingestion and quote derivation"""

    def test_append_ticks_notifies_once(self, store, diffs):
        accepted = store.append_ticks([tick("TSLA", 1000), tick("AAPL", 1000), tick("TSLA", 1100)])

        assert accepted == 3
        assert len(diffs) == 1
        assert diffs[0].ticks == {"TSLA", "AAPL"}
        assert diffs[0].quotes == {"TSLA", "AAPL"}

    def test_tick_ordering_through_store(self, store):
        store.append_ticks([tick("TSLA", ts) for ts in (1000, 1100, 1300, 1200, 1400)])

        assert [t.timestamp for t in store.get_ticks("tsla")] == [1000, 1100, 1200, 1300, 1400]

    def test_quote_follows_tail(self, store):
        store.set_previous_closes({"TSLA": 100.0})
        store.append_ticks([tick("TSLA", 1000, 101.0, 5), tick("TSLA", 2000, 104.0, 5)])
        # Late tick: price stays at the tail, volume still counts
        store.append_ticks([tick("TSLA", 1500, 99.0, 3)])

        quote = store.get_quote("TSLA")
        assert quote.price == 104.0
        assert quote.volume == 13
        assert quote.change_percent == 4.0
        assert quote.last_update == 2000

    def test_dropped_tick_not_counted(self, store, diffs):
        store.append_ticks([tick("TSLA", 10_000)])
        assert store.append_ticks([tick("TSLA", 1_000)]) == 0
        assert len(diffs) == 1

    def test_previous_close_updates_existing_quote(self, store):
        store.append_ticks([tick("AAPL", 1000, 110.0)])
        store.set_previous_closes({"aapl": 100.0, "MSFT": 0})

        quote = store.get_quote("AAPL")
        assert quote.previous_close == 100.0
        assert quote.change_percent == 10.0
        assert store.previous_closes() == {"AAPL": 100.0}

    def test_put_quotes_keeps_buffers_untouched(self, store):
        store.put_quotes([Quote("NVDA", 120.0, previous_close=118.0, source="fmp")])

        assert store.get_quote("NVDA").source == "fmp"
        assert store.get_ticks("NVDA") == []
        assert store.get_previous_close("NVDA") == 118.0

    def test_quote_views_flag_staleness_by_phase(self, store, clock):
        now = clock.ms()
        store.append_ticks([tick("AAPL", now - 10 * 60 * 1000), tick("TSLA", now - 60 * 1000)])

        store.set_market_phase(MarketPhase.REGULAR)
        views = {view["symbol"]: view for view in store.get_quote_views()}
        assert views["AAPL"]["is_stale"]
        assert not views["TSLA"]["is_stale"]

        store.set_market_phase(MarketPhase.CLOSED)
        assert [v["is_stale"] for v in store.get_quote_views(["aapl", "TSLA"])] == [False, False]

        clock.advance(20 * 60)
        views = store.get_quote_views(["AAPL", "TSLA", "NVDA"])
        assert [v["symbol"] for v in views] == ["AAPL", "TSLA"]
        assert all(v["is_stale"] for v in views)

    def test_snapshot_is_a_copy(self, store):
        store.append_ticks([tick("TSLA", 1000)])
        snapshot = store.snapshot_ticks()
        store.append_ticks([tick("TSLA", 2000)])

        assert len(snapshot["TSLA"]) == 1
        assert store.symbols_with_ticks() == ["TSLA"]


class TestNewsAndResolutions:
    """Test news upserts, priorities and verdicts"""

    def test_upsert_returns_new_ids(self, store):
        first = make_news("Apple unveils new iPhone")
        second = make_news("Tesla deliveries beat")

        assert store.upsert_news([first, second]) == [first.id, second.id]
        assert store.upsert_news([first]) == []

    def test_higher_priority_provider_replaces(self, store):
        priority = {"fmp": 1, "finnhub": 2}.get
        low = make_news("Apple unveils new iPhone", provider="finnhub", source="Low")
        high = make_news("Apple unveils new iPhone", provider="fmp", source="High")

        store.upsert_news([low], priority)
        store.upsert_news([high], priority)
        assert store.get_news_item(high.id).source == "High"

        store.upsert_news([low], priority)
        assert store.get_news_item(high.id).source == "High"

    def test_news_bound_evicts_oldest(self):
        store = StateStore(news_max_items=2)
        items = [make_news(f"Headline number {i}") for i in range(3)]
        store.upsert_news(items)

        assert store.get_news_item(items[0].id) is None
        assert len(store.get_news()) == 2

    def test_resolutions_ignore_unknown_news(self, store, diffs):
        item = make_news("Apple unveils new iPhone")
        store.upsert_news([item])
        diffs.clear()

        store.put_resolutions(
            [
                ResolutionVerdict(item.id, "AAPL", 0.9, reason=ResolutionReason.MATCHED),
                ResolutionVerdict("missing", "MSFT", 0.9, reason=ResolutionReason.MATCHED),
            ]
        )

        assert store.get_resolution(item.id).ticker == "AAPL"
        assert store.get_resolution("missing") is None
        assert diffs[0].resolutions == {item.id}

    def test_news_for_symbol(self, store):
        tagged = make_news("Chip stocks rally", provider_symbols=["NVDA"])
        resolved = make_news("Nvidia unveils new GPU")
        other = make_news("Bank earnings loom")
        store.upsert_news([tagged, resolved, other])
        store.put_resolutions([ResolutionVerdict(resolved.id, "NVDA", 0.95)])

        ids = {item.id for item in store.get_news_for_symbol("nvda")}
        assert ids == {tagged.id, resolved.id}

    def test_recent_resolved_news(self, store):
        published = datetime(2026, 10, 15, 14, 0, tzinfo=timezone.utc)
        item = make_news("Nvidia unveils new GPU", published_at=published)
        store.upsert_news([item])
        store.put_resolutions([ResolutionVerdict(item.id, "NVDA", 0.95)])

        assert len(store.recent_resolved_news(published - timedelta(minutes=1))) == 1
        assert store.recent_resolved_news(published + timedelta(minutes=1)) == []

    def test_evict_expired_news(self, clock):
        store = StateStore(news_retention=timedelta(days=1), clock_ms=clock.ms)
        now = datetime.fromtimestamp(clock(), tz=timezone.utc)
        old = make_news("Old story", published_at=now - timedelta(days=2))
        fresh = make_news("Fresh story", published_at=now - timedelta(hours=1))
        store.upsert_news([old, fresh])
        store.put_resolutions([ResolutionVerdict(old.id, "AAPL", 0.9)])

        assert store.cleanup() == {"news_expired": 1}
        assert store.get_news_item(old.id) is None
        assert store.get_resolution(old.id) is None
        assert store.get_news_item(fresh.id) is not None


class TestBatchingAndWatchers:
    """Test notification coalescing"""

    def test_batch_yields_single_notification(self, store, diffs):
        with store.batch():
            store.append_ticks([tick("TSLA", 1000)])
            store.set_market_phase(MarketPhase.REGULAR)
            with store.batch():
                store.set_watchlist(["aapl"])

        assert len(diffs) == 1
        assert diffs[0].ticks == {"TSLA"}
        assert diffs[0].status and diffs[0].watchlist

    def test_no_op_mutations_do_not_notify(self, store, diffs):
        store.update_session(ws_state=WsState.OFFLINE)
        store.set_watchlist([])
        with store.batch():
            pass

        assert diffs == []
        assert store.notifications == 0

    def test_failing_listener_does_not_break_others(self, store):
        received = []

        def broken(diff):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(received.append)
        store.set_watchlist(["AAPL"])

        assert len(received) == 1

    def test_unsubscribe(self, store):
        received = []
        unsubscribe = store.subscribe(received.append)
        unsubscribe()
        store.set_watchlist(["AAPL"])
        assert received == []

    @pytest.mark.asyncio
    async def test_watcher_coalesces_while_busy(self, store):
        watcher = store.watch()
        store.append_ticks([tick("TSLA", 1000)])
        store.append_ticks([tick("AAPL", 1000)])

        diff = await asyncio.wait_for(watcher.__anext__(), timeout=1)

        assert diff.ticks == {"TSLA", "AAPL"}
        assert watcher.coalesced == 1

        watcher.close()
        with pytest.raises(StopAsyncIteration):
            await watcher.__anext__()

    def test_diff_merge(self):
        merged = StoreDiff(quotes=frozenset({"A"})).merge(StoreDiff(status=True))

        assert merged.quotes == {"A"}
        assert merged.status
        assert StoreDiff().is_empty


class TestStatus:
    def test_report_error_once(self, store):
        error = {"code": "CFG_001", "message": "missing key"}

        assert store.report_error("auth:fmp", error, once=True)
        assert not store.report_error("auth:fmp", error, once=True)
        assert len(store.errors()) == 1
        assert store.errors()[0]["code"] == "CFG_001"

    def test_scanner_results(self, store, diffs):
        result = ScannerResult(ScannerPreset.MOVERS, (), datetime.now(timezone.utc))
        store.put_scanner_results({ScannerPreset.MOVERS: result})

        assert store.get_scanner_result(ScannerPreset.MOVERS) is result
        assert diffs[0].scanners == {"movers"}

    def test_data_age_and_status(self, store, clock):
        ages = store.get_data_age()
        assert ages["ticks"] is None

        store.append_ticks([tick("TSLA", 1000)])
        clock.advance(2)
        store.set_provider_health({"fmp": {"status": "healthy"}})

        status = store.get_status()
        assert status["ages_ms"]["ticks"] == 2000
        assert status["ages_ms"]["status"] == 0
        assert status["providers"]["fmp"]["status"] == "healthy"
        assert status["counts"]["tick_symbols"] == 1
        assert status["ws_state"] == "OFFLINE"
