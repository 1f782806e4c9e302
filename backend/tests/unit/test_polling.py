"""
Test the REST polling fallback
"""

from unittest.mock import patch

import pytest

from marketpulse.core.exceptions import ProviderConnectionError
from marketpulse.models.market_data import Quote
from marketpulse.models.status import WsState
from marketpulse.providers.pool import ProviderClientPool
from marketpulse.streaming.polling import PollingFallback
from marketpulse.streaming.tick_stream import TickStreamSession

from tests.mocks import StubAdapter, wait_until


async def make_poller(store, clock, adapter, interval=5.0):
    session = TickStreamSession(store, "key", clock=clock)
    await session.subscribe("TSLA")
    pool = ProviderClientPool([adapter], priority=[adapter.name])
    return PollingFallback(store, pool, session, interval=interval, clock_ms=clock.ms)


class TestPollOnce:
    """Test synthetic ticks from quote snapshots"""

    @pytest.mark.asyncio
    async def test_volume_is_the_snapshot_delta(self, store, clock):
        adapter = StubAdapter(
            "fmp", quotes=[Quote("TSLA", 250.0, volume=1000, previous_close=245.0, source="fmp")]
        )
        poller = await make_poller(store, clock, adapter)

        assert await poller.poll_once() == 1
        adapter.quotes = [Quote("TSLA", 251.0, volume=1300, previous_close=245.0, source="fmp")]
        clock.advance(5)
        assert await poller.poll_once() == 1

        ticks = store.get_ticks("TSLA")
        assert [t.volume for t in ticks] == [0, 300]
        assert [t.price for t in ticks] == [250.0, 251.0]
        assert ticks[1].timestamp == clock.ms()
        assert store.get_previous_close("TSLA") == 245.0
        assert store.get_quote("TSLA").change_percent == pytest.approx(2.449, abs=0.001)

    @pytest.mark.asyncio
    async def test_nothing_subscribed(self, store, clock):
        adapter = StubAdapter("fmp")
        poller = await make_poller(store, clock, adapter)
        await poller.session.unsubscribe("TSLA")

        assert await poller.poll_once() == 0
        assert adapter.fetches == 0

    @pytest.mark.asyncio
    async def test_failure_is_counted(self, store, clock):
        adapter = StubAdapter("fmp", error=ProviderConnectionError("fmp", "reset"), max_retries=0)
        poller = await make_poller(store, clock, adapter)

        assert await poller.poll_once() == 0
        assert poller.failures == 1
        assert store.get_ticks("TSLA") == []

    @pytest.mark.asyncio
    async def test_result_discarded_once_stream_is_live(self, store, clock):
        adapter = StubAdapter("fmp", quotes=[Quote("TSLA", 250.0, volume=10, source="fmp")])
        poller = await make_poller(store, clock, adapter)
        store.update_session(ws_state=WsState.LIVE)

        assert await poller.poll_once() == 0
        assert store.get_ticks("TSLA") == []


class TestPollingLoop:
    @pytest.mark.asyncio
    async def test_runs_only_while_stream_is_down(self, store, clock):
        adapter = StubAdapter("fmp", quotes=[Quote("TSLA", 250.0, volume=10, source="fmp")])
        poller = await make_poller(store, clock, adapter, interval=0.01)

        poller.start()
        await wait_until(lambda: poller.polls >= 2)
        assert poller.active
        assert store.session_status.polling_active

        store.update_session(ws_state=WsState.LIVE)
        await wait_until(lambda: not poller.active)
        polls = poller.polls

        store.update_session(ws_state=WsState.DEGRADED)
        await wait_until(lambda: poller.polls > polls)

        await poller.stop()
        assert not store.session_status.polling_active

    @pytest.mark.asyncio
    async def test_unexpected_round_error_keeps_polling(self, store, clock):
        adapter = StubAdapter("fmp", quotes=[Quote("TSLA", 250.0, volume=10, source="fmp")])
        poller = await make_poller(store, clock, adapter, interval=0.01)
        rounds = []

        async def flaky_round():
            rounds.append(len(rounds))
            if len(rounds) == 1:
                raise RuntimeError("quote mapping broke")
            return 1

        with patch.object(poller, "poll_once", side_effect=flaky_round):
            poller.start()
            await wait_until(lambda: len(rounds) >= 3)

            assert poller.failures == 1
            assert poller.active
            await poller.stop()
