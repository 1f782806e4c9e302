"""
Test the tick stream session state machine
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from marketpulse.models.status import WsState
from marketpulse.streaming.tick_stream import SessionState, TickStreamSession

from tests.mocks import FakeConnector, wait_until


def trade(symbol, ts, price=100.0, volume=1):
    return {"s": symbol, "p": price, "v": volume, "t": ts}


def make_session(store, clock, connector=None, api_key="stream-key", **kwargs):
    connector = connector or FakeConnector()
    options = dict(
        heartbeat_interval=1000.0,
        reconnect_base_delay=0.001,
        reconnect_max_delay=0.005,
        clock=clock,
    )
    options.update(kwargs)
    session = TickStreamSession(store, api_key, "wss://stream.test", connector, **options)
    return session, connector


async def go_live(session):
    session.start()
    await wait_until(lambda: session.state == SessionState.LIVE)


class TestLifecycle:
    """Test connecting, subscriptions and shutdown"""

    @pytest.mark.asyncio
    async def test_connects_and_replays_desired_set(self, store, clock):
        session, connector = make_session(store, clock)
        assert await session.subscribe("tsla")
        assert session.active_subscriptions == []

        await go_live(session)

        conn = connector.latest
        assert connector.urls == ["wss://stream.test?token=stream-key"]
        assert conn.sent_of_type("subscribe") == [{"type": "subscribe", "symbol": "TSLA"}]
        assert store.session_status.ws_state == WsState.LIVE
        assert store.session_status.subscribed_count == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_subscribe_is_idempotent(self, store, clock):
        session, connector = make_session(store, clock)
        await go_live(session)
        conn = connector.latest

        assert await session.subscribe("NVDA")
        assert not await session.subscribe("nvda")
        assert not await session.subscribe("BRK.B")

        assert conn.sent_of_type("subscribe") == [{"type": "subscribe", "symbol": "NVDA"}]
        assert session.active_subscriptions == ["NVDA"]

        assert await session.unsubscribe("NVDA")
        assert not await session.unsubscribe("NVDA")
        assert conn.sent_of_type("unsubscribe") == [{"type": "unsubscribe", "symbol": "NVDA"}]
        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_settles_disconnected(self, store, clock):
        session, connector = make_session(store, clock)
        await go_live(session)

        await session.stop()

        assert session.state == SessionState.DISCONNECTED
        assert connector.latest.closed
        assert not session.is_running
        assert store.session_status.ws_state == WsState.OFFLINE


class TestInbound:
    """Test frame handling while live"""

    @pytest.mark.asyncio
    async def test_trades_are_buffered_in_order(self, store, clock):
        session, connector = make_session(store, clock)
        await session.subscribe("TSLA")
        await go_live(session)

        connector.latest.push(
            {
                "type": "trade",
                "data": [trade("TSLA", ts) for ts in (1000, 1100, 1300, 1200, 1400)]
                + [trade("AAPL", 1000)],
            }
        )
        await wait_until(lambda: len(store.get_ticks("TSLA")) == 5)

        assert [t.timestamp for t in store.get_ticks("TSLA")] == [1000, 1100, 1200, 1300, 1400]
        # Frames for symbols outside the desired set are ignored
        assert store.get_ticks("AAPL") == []
        assert session.ticks_received == 5
        await session.stop()

    @pytest.mark.asyncio
    async def test_ping_gets_pong(self, store, clock):
        session, connector = make_session(store, clock)
        await go_live(session)

        connector.latest.push({"type": "ping"})
        await wait_until(lambda: connector.latest.sent_of_type("pong"))
        await session.stop()

    @pytest.mark.asyncio
    async def test_malformed_frame_keeps_session_live(self, store, clock):
        session, connector = make_session(store, clock)
        await go_live(session)

        connector.latest.push("{{ not json")
        await wait_until(lambda: session.malformed_frames == 1)

        assert session.state == SessionState.LIVE
        assert len(connector.connections) == 1
        await session.stop()

    @pytest.mark.asyncio
    async def test_error_frame_is_reported_once(self, store, clock):
        session, connector = make_session(store, clock)
        await go_live(session)

        connector.latest.push({"type": "error", "msg": "Subscribing to too many symbols"})
        connector.latest.push({"type": "error", "msg": "Subscribing to too many symbols"})
        await wait_until(lambda: session.frames_received == 2)

        errors = [e for e in store.errors() if e["key"] == "stream:error_frame"]
        assert len(errors) == 1
        assert errors[0]["detail"] == "Subscribing to too many symbols"
        await session.stop()


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_silence_degrades_and_traffic_recovers(self, store, clock):
        session, connector = make_session(store, clock, heartbeat_interval=25.0)
        await session.subscribe("TSLA")
        await go_live(session)

        clock.advance(49)
        assert session.check_heartbeat() == SessionState.LIVE

        clock.advance(2)
        assert session.check_heartbeat() == SessionState.DEGRADED
        assert store.session_status.ws_state == WsState.DEGRADED

        connector.latest.push({"type": "pong"})
        await wait_until(lambda: session.state == SessionState.LIVE)

        # Recovery replays the desired set
        assert len(connector.latest.sent_of_type("subscribe")) == 2
        await session.stop()


class TestReconnect:
    """Test backoff, resubscription and giving up"""

    def test_backoff_delays(self, store, clock):
        session = TickStreamSession(store, "key", clock=clock)

        assert [session.backoff_delay(n) for n in (1, 2, 3, 5, 6, 10)] == [
            0.5, 1.0, 2.0, 8.0, 10.0, 10.0
        ]

    @pytest.mark.asyncio
    async def test_drop_reconnects_and_resubscribes(self, store, clock):
        session, connector = make_session(store, clock)
        await session.subscribe("TSLA")
        await session.subscribe("NVDA")
        await go_live(session)

        connector.latest.drop()
        await wait_until(
            lambda: len(connector.connections) == 2 and session.state == SessionState.LIVE
        )

        assert connector.latest.sent_of_type("subscribe") == [
            {"type": "subscribe", "symbol": "NVDA"},
            {"type": "subscribe", "symbol": "TSLA"},
        ]
        assert session.reconnect_attempts == 0
        await session.stop()

    @pytest.mark.asyncio
    async def test_connect_failures_then_success(self, store, clock):
        session, connector = make_session(store, clock, FakeConnector(failures=2))

        await go_live(session)

        assert len(connector.urls) == 3
        await session.stop()

    @pytest.mark.asyncio
    async def test_unexpected_connect_error_is_retried(self, store, clock):
        session, connector = make_session(
            store, clock, FakeConnector(failures=1, failure_error=RuntimeError("handshake parser broke"))
        )

        await go_live(session)

        assert len(connector.urls) == 2
        assert session.is_running
        await session.stop()

    @pytest.mark.asyncio
    async def test_unexpected_session_error_reconnects(self, store, clock):
        session, connector = make_session(store, clock)
        await session.subscribe("NVDA")
        await go_live(session)

        with patch.object(session, "handle_message", AsyncMock(side_effect=RuntimeError("bad frame"))):
            connector.latest.push({"type": "ping"})
            await wait_until(
                lambda: len(connector.connections) == 2 and session.state == SessionState.LIVE
            )

        assert connector.connections[0].closed
        assert connector.latest.sent_of_type("subscribe") == [{"type": "subscribe", "symbol": "NVDA"}]
        await session.stop()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store, clock):
        session, connector = make_session(
            store, clock, FakeConnector(failures=100), reconnect_max_attempts=3
        )

        session.start()
        await wait_until(lambda: session.state == SessionState.OFFLINE)

        assert len(connector.urls) == 4
        errors = store.errors()
        assert errors[-1]["key"] == "stream:reconnect_exhausted"
        assert errors[-1]["code"] == "STREAM_002"
        assert store.session_status.ws_state == WsState.OFFLINE
        await session.stop()


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_rejected_credential_goes_offline(self, store, clock):
        session, connector = make_session(store, clock, FakeConnector(reject_auth=True))

        session.start()
        await wait_until(lambda: session.state == SessionState.OFFLINE)
        await wait_until(lambda: not session.is_running)

        assert len(connector.urls) == 1
        assert store.errors()[0]["key"] == "stream:auth"
        assert store.errors()[0]["code"] == "STREAM_001"

    @pytest.mark.asyncio
    async def test_missing_key_reports_once(self, store, clock):
        session, connector = make_session(store, clock, api_key="")

        session.start()
        session.start()

        assert session.state == SessionState.OFFLINE
        assert not session.is_running
        assert connector.urls == []
        assert [e["key"] for e in store.errors()] == ["stream:auth_missing"]
        assert store.errors()[0]["code"] == "CFG_001"


class TestSlowSends:
    """Test the subscription set stays consistent while sends are suspended"""

    @pytest.mark.asyncio
    async def test_unsubscribe_during_replay(self, store, clock):
        session, connector = make_session(store, clock, FakeConnector(send_delay=0.01))
        await session.subscribe("AAPL")
        await session.subscribe("TSLA")

        session.start()
        await wait_until(lambda: connector.latest is not None and connector.latest.sent)
        assert await session.unsubscribe("TSLA")
        await asyncio.sleep(0.1)

        conn = connector.latest
        assert session.desired_symbols == ["AAPL"]
        assert session.active_subscriptions == ["AAPL"]
        tsla_frames = [frame["type"] for frame in conn.sent if frame.get("symbol") == "TSLA"]
        assert tsla_frames in ([], ["subscribe", "unsubscribe"])
        await session.stop()

    @pytest.mark.asyncio
    async def test_unsubscribe_while_subscribe_in_flight(self, store, clock):
        session, connector = make_session(store, clock, FakeConnector(send_delay=0.01))
        await go_live(session)

        pending = asyncio.create_task(session.subscribe("MSFT"))
        await asyncio.sleep(0)
        assert await session.unsubscribe("MSFT")
        assert await pending
        await asyncio.sleep(0.05)

        conn = connector.latest
        assert session.desired_symbols == []
        assert session.active_subscriptions == []
        assert [frame["type"] for frame in conn.sent if frame.get("symbol") == "MSFT"] == [
            "subscribe",
            "unsubscribe",
        ]
        await session.stop()
