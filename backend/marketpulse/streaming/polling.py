"""
REST polling fallback used while the trade stream is not LIVE
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional

import structlog

from marketpulse.models.market_data import Quote, Tick
from marketpulse.models.status import WsState
from marketpulse.providers.pool import ProviderClientPool
from marketpulse.state.store import StateStore, StoreDiff
from marketpulse.streaming.tick_stream import TickStreamSession

logger = structlog.get_logger(__name__)

POLLING_STATES = frozenset({WsState.DEGRADED, WsState.OFFLINE})


class PollingFallback:
    """
    Store-driven poller.

    Watches session status diffs and, while the stream is DEGRADED or
    OFFLINE, fetches quote snapshots for the subscribed set every
    ``interval`` seconds and writes one synthetic tick per symbol. The
    synthetic volume is the change in the snapshot's cumulative volume
    since the previous poll, so the first poll of a symbol carries 0.
    """

    def __init__(
        self,
        store: StateStore,
        pool: ProviderClientPool,
        session: TickStreamSession,
        interval: float = 5.0,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.store = store
        self.pool = pool
        self.session = session
        self.interval = interval
        self._clock_ms = clock_ms
        self._last_volume: Dict[str, int] = {}
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.polls = 0
        self.failures = 0

    @property
    def should_poll(self) -> bool:
        return self.store.session_status.ws_state in POLLING_STATES

    @property
    def active(self) -> bool:
        return self.store.session_status.polling_active

    def start(self) -> None:
        if self._task is not None:
            return
        self._unsubscribe = self.store.subscribe(self._on_diff)
        self._task = asyncio.create_task(self._run(), name="polling-fallback")

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_active(False)

    def _on_diff(self, diff: StoreDiff) -> None:
        if diff.status:
            self._wake.set()

    async def _run(self) -> None:
        while True:
            if not self.should_poll:
                self._set_active(False)
                self._wake.clear()
                await self._wake.wait()
                continue

            self._set_active(True)
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception("Polling fallback round raised")
            try:
                await asyncio.wait_for(self._sleep_until_live(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def _sleep_until_live(self) -> None:
        while self.should_poll:
            self._wake.clear()
            await self._wake.wait()

    async def poll_once(self) -> int:
        """One polling round; returns the number of ticks written"""
        symbols = self.session.desired_symbols
        if not symbols:
            return 0
        result = await self.pool.get_quotes(symbols)
        self.polls += 1
        if not result.ok:
            self.failures += 1
            logger.warning("Polling fallback failed", error=result.error.detail)
            return 0

        ticks = self._synthesize(result.value)
        # The stream may have come back while the request was in flight
        if not self.should_poll:
            return 0
        closes = {
            quote.symbol: quote.previous_close
            for quote in result.value
            if quote.previous_close and self.store.get_previous_close(quote.symbol) is None
        }
        with self.store.batch():
            if closes:
                self.store.set_previous_closes(closes)
            written = self.store.append_ticks(ticks.values())
        logger.debug("Polling fallback round", symbols=len(symbols), ticks=written)
        return written

    def _synthesize(self, quotes: List[Quote]) -> Dict[str, Tick]:
        now_ms = self._clock_ms()
        ticks: Dict[str, Tick] = {}
        for quote in quotes:
            if not quote.price or quote.price <= 0:
                continue
            previous = self._last_volume.get(quote.symbol)
            self._last_volume[quote.symbol] = quote.volume
            delta = 0 if previous is None else max(0, quote.volume - previous)
            ticks[quote.symbol] = Tick(quote.symbol, quote.price, delta, now_ms)
        return ticks

    def _set_active(self, active: bool) -> None:
        if self.store.session_status.polling_active != active:
            logger.info("Polling fallback", active=active)
            self.store.update_session(polling_active=active)
