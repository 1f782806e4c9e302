"""
Tick Stream Session - one long-lived upstream trade session with a dynamic
subscription set
"""

import asyncio
import re
import time
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Set

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, WebSocketException

from marketpulse.core.exceptions import (
    AuthMissingError,
    MalformedPayloadError,
    StreamAuthenticationError,
)
from marketpulse.core.error_definitions import MarketDataErrorCodes
from marketpulse.models.status import WsState
from marketpulse.state.store import StateStore
from marketpulse.streaming.frames import (
    ControlFrame,
    ErrorFrame,
    PingFrame,
    TradeFrame,
    decode_frame,
    encode_ping,
    encode_pong,
    encode_subscribe,
    encode_unsubscribe,
)

logger = structlog.get_logger(__name__)

SYMBOL_RE = re.compile(r"^[A-Z]{1,5}$")
STREAM_PROVIDER = "finnhub"


class SessionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    LIVE = "LIVE"
    DEGRADED = "DEGRADED"
    OFFLINE = "OFFLINE"

    @property
    def ws_state(self) -> WsState:
        if self in (SessionState.DISCONNECTED, SessionState.OFFLINE):
            return WsState.OFFLINE
        return WsState(self.value)


class StreamConnection(Protocol):
    async def send(self, message: str) -> Any: ...

    async def recv(self) -> Any: ...

    async def close(self) -> Any: ...


Connector = Callable[[str], Awaitable[StreamConnection]]


async def websocket_connector(url: str) -> StreamConnection:
    """Open the upstream socket; application-level heartbeats replace protocol pings"""
    try:
        return await websockets.connect(url, ping_interval=None, max_queue=1024)
    except InvalidHandshake as e:
        status = getattr(getattr(e, "response", None), "status_code", None)
        status = status or getattr(e, "status_code", None)
        if status in (401, 403):
            raise StreamAuthenticationError(f"stream rejected credential ({status})") from e
        raise


class TickStreamSession:
    """
    Explicit state machine over the realtime trade socket.

    DISCONNECTED -> CONNECTING -> LIVE <-> DEGRADED -> DISCONNECTED, with
    exponential reconnect backoff and OFFLINE once the attempts run out.
    ``subscribe``/``unsubscribe`` only edit the desired set and never raise
    for transport problems; the desired set is replayed on every transition
    to LIVE.
    """

    def __init__(
        self,
        store: StateStore,
        api_key: str,
        stream_url: str = "wss://ws.finnhub.io",
        connector: Connector = websocket_connector,
        heartbeat_interval: float = 25.0,
        reconnect_base_delay: float = 0.5,
        reconnect_max_delay: float = 10.0,
        reconnect_max_attempts: int = 10,
        connect_timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.api_key = api_key or ""
        self.stream_url = stream_url.rstrip("/")
        self._connector = connector
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.reconnect_max_attempts = reconnect_max_attempts
        self.connect_timeout = connect_timeout
        self._clock = clock

        self.state = SessionState.DISCONNECTED
        self._desired: Set[str] = set()
        self._active: Set[str] = set()
        self._conn: Optional[StreamConnection] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._last_inbound: Optional[float] = None
        self.reconnect_attempts = 0

        self.frames_received = 0
        self.malformed_frames = 0
        self.ticks_received = 0

    @classmethod
    def from_settings(cls, store: StateStore, settings, **overrides) -> "TickStreamSession":
        kwargs = dict(
            api_key=settings.FINNHUB_API_KEY,
            stream_url=settings.STREAM_URL,
            heartbeat_interval=settings.HEARTBEAT_INTERVAL,
            reconnect_base_delay=settings.RECONNECT_BASE_DELAY,
            reconnect_max_delay=settings.RECONNECT_MAX_DELAY,
            reconnect_max_attempts=settings.RECONNECT_MAX_ATTEMPTS,
        )
        kwargs.update(overrides)
        return cls(store, **kwargs)

    # Lifecycle

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        if not self.api_key:
            self._set_state(SessionState.OFFLINE)
            error = AuthMissingError(STREAM_PROVIDER)
            self.store.report_error("stream:auth_missing", error.to_dict(), once=True)
            logger.warning("Tick stream disabled", reason="api key missing")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="tick-stream")

    async def stop(self) -> None:
        """Abort any backoff, close the socket and settle DISCONNECTED"""
        self._stop_event.set()
        task, self._task = self._task, None
        await self._close_connection()
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._active.clear()
        self._set_state(SessionState.DISCONNECTED)
        logger.info("Tick stream stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            self._set_state(SessionState.CONNECTING)
            try:
                conn = await asyncio.wait_for(
                    self._connector(f"{self.stream_url}?token={self.api_key}"),
                    timeout=self.connect_timeout,
                )
            except StreamAuthenticationError as e:
                self._go_offline("stream:auth", e.to_dict())
                return
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("Tick stream connect failed", error=str(e) or type(e).__name__)
            except Exception:
                logger.exception("Tick stream connect raised unexpectedly")
            else:
                self.reconnect_attempts = 0
                try:
                    await self._serve(conn)
                except Exception:
                    logger.exception("Tick stream session failed")

            if self._stop_event.is_set():
                break
            self._set_state(SessionState.DISCONNECTED)
            self.reconnect_attempts += 1
            if self.reconnect_attempts > self.reconnect_max_attempts:
                self._go_offline(
                    "stream:reconnect_exhausted",
                    {
                        "code": MarketDataErrorCodes.STREAM_002.value,
                        "name": "ReconnectExhausted",
                        "detail": f"gave up after {self.reconnect_max_attempts} attempts",
                    },
                )
                return
            delay = self.backoff_delay(self.reconnect_attempts)
            logger.info(
                "Tick stream reconnecting",
                attempt=self.reconnect_attempts,
                delay_seconds=delay,
            )
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def backoff_delay(self, attempt: int) -> float:
        return min(self.reconnect_max_delay, self.reconnect_base_delay * (2 ** (attempt - 1)))

    def _go_offline(self, key: str, error: dict) -> None:
        self._set_state(SessionState.OFFLINE)
        self.store.report_error(key, error, once=True)
        logger.error("Tick stream offline", reason=key, detail=error.get("detail"))

    async def _serve(self, conn: StreamConnection) -> None:
        self._conn = conn
        self._last_inbound = self._clock()
        heartbeat = asyncio.create_task(self._heartbeat_loop(), name="tick-stream-heartbeat")
        try:
            await self._enter_live()
            while not self._stop_event.is_set():
                try:
                    raw = await conn.recv()
                except (ConnectionClosed, OSError) as e:
                    logger.warning("Tick stream closed", error=str(e) or type(e).__name__)
                    break
                await self.handle_message(raw)
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            await self._close_connection()
            self._active.clear()

    async def _enter_live(self) -> None:
        self._set_state(SessionState.LIVE)
        self._active.clear()
        for symbol in sorted(self._desired):
            if symbol in self._desired:
                await self._subscribe_upstream(symbol)
        logger.info("Tick stream live", subscribed=len(self._active))

    async def _close_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.close()
        except (WebSocketException, OSError) as e:
            logger.debug("Error closing tick stream", error=str(e))

    # Heartbeat

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self._send(encode_ping())
            self.check_heartbeat()

    def check_heartbeat(self) -> SessionState:
        """LIVE -> DEGRADED when nothing arrived within two heartbeat intervals"""
        if self.state == SessionState.LIVE and self._last_inbound is not None:
            silent_for = self._clock() - self._last_inbound
            if silent_for > 2 * self.heartbeat_interval:
                logger.warning("Tick stream heartbeat missed", silent_seconds=round(silent_for, 1))
                self._set_state(SessionState.DEGRADED)
        return self.state

    # Inbound

    async def handle_message(self, raw: Any) -> None:
        self.frames_received += 1
        self._last_inbound = self._clock()

        frame = None
        try:
            frame = decode_frame(raw)
        except MalformedPayloadError as e:
            self.malformed_frames += 1
            logger.warning("Dropping malformed stream frame", detail=e.detail)

        with self.store.batch():
            self._publish_status()
            if isinstance(frame, TradeFrame):
                ticks = [tick for tick in frame.ticks if tick.symbol in self._desired]
                if ticks:
                    self.ticks_received += len(ticks)
                    self.store.append_ticks(ticks)
            elif isinstance(frame, ErrorFrame):
                logger.warning("Tick stream error frame", message=frame.message)
                self.store.report_error(
                    "stream:error_frame",
                    {"name": "StreamError", "detail": frame.message},
                    once=True,
                )
            elif isinstance(frame, ControlFrame):
                logger.debug("Tick stream control frame", type=frame.type, symbols=frame.symbols)

        if self.state == SessionState.DEGRADED:
            await self._enter_live()
        if isinstance(frame, PingFrame):
            await self._send(encode_pong())

    # Subscriptions

    async def subscribe(self, symbol: str) -> bool:
        """Add ``symbol`` to the desired set; True when the set changed"""
        symbol = (symbol or "").strip().upper()
        if not SYMBOL_RE.match(symbol) or symbol in self._desired:
            return False
        self._desired.add(symbol)
        if self._conn is not None and self.state in (SessionState.LIVE, SessionState.DEGRADED):
            await self._subscribe_upstream(symbol)
        self._publish_status()
        return True

    async def _subscribe_upstream(self, symbol: str) -> None:
        # The desired set can change while a send is suspended
        if not await self._send(encode_subscribe(symbol)):
            return
        if symbol in self._desired:
            self._active.add(symbol)
        else:
            await self._send(encode_unsubscribe(symbol))

    async def unsubscribe(self, symbol: str) -> bool:
        symbol = (symbol or "").strip().upper()
        if symbol not in self._desired:
            return False
        self._desired.discard(symbol)
        if symbol in self._active:
            self._active.discard(symbol)
            await self._send(encode_unsubscribe(symbol))
        self._publish_status()
        return True

    @property
    def desired_symbols(self) -> List[str]:
        return sorted(self._desired)

    @property
    def active_subscriptions(self) -> List[str]:
        return sorted(self._active)

    async def _send(self, message: str) -> bool:
        conn = self._conn
        if conn is None:
            return False
        try:
            await conn.send(message)
            return True
        except (ConnectionClosed, OSError) as e:
            # The receive loop observes the close and drives reconnection
            logger.debug("Tick stream send failed", error=str(e) or type(e).__name__)
            return False

    # Status

    def _set_state(self, state: SessionState) -> None:
        if state != self.state:
            logger.info("Tick stream state", previous=self.state.value, current=state.value)
        self.state = state
        self._publish_status()

    def _publish_status(self) -> None:
        last = int(self._last_inbound * 1000) if self._last_inbound is not None else None
        self.store.update_session(
            ws_state=self.state.ws_state,
            last_heartbeat=last,
            subscribed_count=len(self._desired),
            reconnect_attempts=self.reconnect_attempts,
        )

    def status(self):
        return self.store.session_status

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "desired": len(self._desired),
            "active": len(self._active),
            "reconnect_attempts": self.reconnect_attempts,
            "frames_received": self.frames_received,
            "malformed_frames": self.malformed_frames,
            "ticks_received": self.ticks_received,
        }
