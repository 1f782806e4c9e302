"""
State Store - single in-memory source of truth for the market data plane
"""

import asyncio
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
)

import structlog

from marketpulse.models.market_data import MarketPhase, Quote, Tick
from marketpulse.models.news import NewsItem, ResolutionVerdict
from marketpulse.models.scanner import ScannerPreset, ScannerResult
from marketpulse.models.status import SessionStatus
from marketpulse.state.tick_buffer import TickBuffer

logger = structlog.get_logger(__name__)

COMPONENTS = ("quotes", "ticks", "news", "resolutions", "scanners", "status")
MAX_ERRORS = 50


@dataclass(frozen=True)
class StoreDiff:
    """Keys changed since the previous notification"""

    quotes: FrozenSet[str] = frozenset()
    ticks: FrozenSet[str] = frozenset()
    news: FrozenSet[str] = frozenset()
    resolutions: FrozenSet[str] = frozenset()
    scanners: FrozenSet[str] = frozenset()
    status: bool = False
    watchlist: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.quotes or self.ticks or self.news or self.resolutions or self.scanners
            or self.status or self.watchlist
        )

    def merge(self, other: "StoreDiff") -> "StoreDiff":
        return StoreDiff(
            quotes=self.quotes | other.quotes,
            ticks=self.ticks | other.ticks,
            news=self.news | other.news,
            resolutions=self.resolutions | other.resolutions,
            scanners=self.scanners | other.scanners,
            status=self.status or other.status,
            watchlist=self.watchlist or other.watchlist,
        )


@dataclass
class _PendingDiff:
    quotes: Set[str] = field(default_factory=set)
    ticks: Set[str] = field(default_factory=set)
    news: Set[str] = field(default_factory=set)
    resolutions: Set[str] = field(default_factory=set)
    scanners: Set[str] = field(default_factory=set)
    status: bool = False
    watchlist: bool = False

    def freeze(self) -> StoreDiff:
        return StoreDiff(
            quotes=frozenset(self.quotes),
            ticks=frozenset(self.ticks),
            news=frozenset(self.news),
            resolutions=frozenset(self.resolutions),
            scanners=frozenset(self.scanners),
            status=self.status,
            watchlist=self.watchlist,
        )


class StoreWatcher:
    """
    Async diff stream for one observer.

    Diffs that arrive while the observer is busy are merged into a single
    pending diff, so a slow observer sees the latest state without ever
    blocking the producer.
    """

    def __init__(self, on_close: Callable[["StoreWatcher"], None]):
        self._pending: Optional[StoreDiff] = None
        self._event = asyncio.Event()
        self._closed = False
        self._on_close = on_close
        self.coalesced = 0

    def push(self, diff: StoreDiff) -> None:
        if self._closed:
            return
        if self._pending is None:
            self._pending = diff
        else:
            self._pending = self._pending.merge(diff)
            self.coalesced += 1
        self._event.set()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._event.set()
            self._on_close(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> StoreDiff:
        while self._pending is None:
            if self._closed:
                raise StopAsyncIteration
            self._event.clear()
            await self._event.wait()
        diff, self._pending = self._pending, None
        return diff

    async def __aenter__(self) -> "StoreWatcher":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class StateStore:
    """
    Owns quotes, tick buffers, news, resolution verdicts, scanner outputs and
    connection status.

    Every mutator records what it touched; outside a ``batch()`` region the
    observers are notified immediately, inside one they are notified exactly
    once when the outermost batch exits.
    """

    def __init__(
        self,
        tick_capacity: int = 300,
        reorder_tolerance_ms: int = 2000,
        news_max_items: int = 10_000,
        news_retention: timedelta = timedelta(days=14),
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.tick_capacity = tick_capacity
        self.reorder_tolerance_ms = reorder_tolerance_ms
        self.news_max_items = news_max_items
        self.news_retention = news_retention
        self._clock_ms = clock_ms

        self._quotes: Dict[str, Quote] = {}
        self._ticks: Dict[str, TickBuffer] = {}
        self._news: "OrderedDict[str, NewsItem]" = OrderedDict()
        self._resolutions: Dict[str, ResolutionVerdict] = {}
        self._scanners: Dict[ScannerPreset, ScannerResult] = {}
        self._session = SessionStatus()
        self._provider_health: Dict[str, dict] = {}
        self._errors: List[dict] = []
        self._error_keys: Set[str] = set()
        self._watchlist: List[str] = []
        self._previous_closes: Dict[str, float] = {}
        self._last_updated: Dict[str, Optional[int]] = {name: None for name in COMPONENTS}

        self._listeners: List[Callable[[StoreDiff], None]] = []
        self._watchers: List[StoreWatcher] = []
        self._batch_depth = 0
        self._pending = _PendingDiff()
        self.notifications = 0

    # Observers

    def subscribe(self, listener: Callable[[StoreDiff], None]) -> Callable[[], None]:
        """Register a synchronous listener; returns the unsubscribe function"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def watch(self) -> StoreWatcher:
        watcher = StoreWatcher(self._remove_watcher)
        self._watchers.append(watcher)
        return watcher

    def _remove_watcher(self, watcher: StoreWatcher) -> None:
        if watcher in self._watchers:
            self._watchers.remove(watcher)

    @contextmanager
    def batch(self) -> Iterator["StateStore"]:
        """Coalesce every mutation inside the block into one notification"""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                self._flush()

    def _touch(self, component: str, keys: Iterable[str] = ()) -> None:
        if component in ("status", "watchlist"):
            setattr(self._pending, component, True)
        else:
            getattr(self._pending, component).update(keys)
        if component in self._last_updated:
            self._last_updated[component] = self._clock_ms()
        if self._batch_depth == 0:
            self._flush()

    def _flush(self) -> None:
        diff = self._pending.freeze()
        self._pending = _PendingDiff()
        if diff.is_empty:
            return
        self.notifications += 1
        for listener in list(self._listeners):
            try:
                listener(diff)
            except Exception:
                logger.exception("Store listener failed", listener=repr(listener))
        for watcher in list(self._watchers):
            watcher.push(diff)

    # Ticks and quotes

    def append_ticks(self, ticks: Iterable[Tick]) -> int:
        """Insert ticks into their ring buffers; returns how many were kept"""
        accepted = 0
        with self.batch():
            touched = set()
            for tick in ticks:
                buffer = self._ticks.get(tick.symbol)
                if buffer is None:
                    buffer = TickBuffer(self.tick_capacity, self.reorder_tolerance_ms)
                    self._ticks[tick.symbol] = buffer
                if not buffer.insert(tick):
                    continue
                accepted += 1
                touched.add(tick.symbol)
                self._roll_quote(tick, buffer)
            if touched:
                self._touch("ticks", touched)
                self._touch("quotes", touched)
        return accepted

    def _roll_quote(self, tick: Tick, buffer: TickBuffer) -> None:
        previous_close = self._previous_closes.get(tick.symbol)
        quote = self._quotes.get(tick.symbol)
        tail = buffer.last
        if quote is None:
            quote = Quote.from_tick(tail, previous_close)
            if tail is not tick:
                quote = replace(quote, volume=tick.volume)
        else:
            quote = quote.with_tick(tail, previous_close)
            if tail is not tick:
                # Late tick: price stays at the tail, only the volume moves
                quote = replace(quote, volume=quote.volume - tail.volume + tick.volume)
        self._quotes[tick.symbol] = quote

    def put_quotes(self, quotes: Iterable[Quote]) -> None:
        """Store provider quote snapshots (REST) without touching tick buffers"""
        with self.batch():
            touched = set()
            for quote in quotes:
                self._quotes[quote.symbol] = quote
                if quote.previous_close:
                    self._previous_closes.setdefault(quote.symbol, quote.previous_close)
                touched.add(quote.symbol)
            if touched:
                self._touch("quotes", touched)

    def get_ticks(self, symbol: str) -> List[Tick]:
        buffer = self._ticks.get(symbol.upper())
        return list(buffer.snapshot()) if buffer else []

    def snapshot_ticks(self, symbols: Optional[Iterable[str]] = None) -> Dict[str, Tuple[Tick, ...]]:
        """Copy of the requested buffers taken at one instant"""
        wanted = self._ticks.keys() if symbols is None else [s.upper() for s in symbols]
        return {s: self._ticks[s].snapshot() for s in wanted if s in self._ticks}

    def symbols_with_ticks(self) -> List[str]:
        return sorted(s for s, buffer in self._ticks.items() if len(buffer))

    def get_quote(self, symbol: str) -> Optional[Quote]:
        return self._quotes.get(symbol.upper())

    def get_quotes(self, symbols: Optional[Iterable[str]] = None) -> List[Quote]:
        if symbols is None:
            return [self._quotes[s] for s in sorted(self._quotes)]
        return [self._quotes[s.upper()] for s in symbols if s.upper() in self._quotes]

    def get_quote_views(self, symbols: Optional[Iterable[str]] = None) -> List[dict]:
        """Quotes as served to readers, each flagged against the current phase's staleness bound"""
        phase, now_ms = self._session.market_phase, self._clock_ms()
        return [quote.to_dict(phase, now_ms) for quote in self.get_quotes(symbols)]

    def set_previous_closes(self, closes: Mapping[str, float]) -> None:
        with self.batch():
            for symbol, close in closes.items():
                if close and close > 0:
                    self._previous_closes[symbol.upper()] = float(close)
                    quote = self._quotes.get(symbol.upper())
                    if quote is not None and quote.previous_close != close:
                        change = quote.price - close
                        self._quotes[symbol.upper()] = replace(
                            quote,
                            previous_close=float(close),
                            change=round(change, 4),
                            change_percent=round(change / close * 100, 4),
                        )
                        self._touch("quotes", [symbol.upper()])

    def previous_closes(self) -> Dict[str, float]:
        return dict(self._previous_closes)

    def get_previous_close(self, symbol: str) -> Optional[float]:
        return self._previous_closes.get(symbol.upper())

    # News and resolutions

    def upsert_news(
        self,
        items: Iterable[NewsItem],
        priority_of: Callable[[str], int] = lambda provider: 0,
    ) -> List[str]:
        """
        Insert or refresh news items; returns ids that were not present.

        An existing item is replaced only by one from a higher-priority
        provider. The store is bounded; least recently upserted items go
        first.
        """
        new_ids: List[str] = []
        with self.batch():
            touched = []
            for item in items:
                existing = self._news.get(item.id)
                if existing is None:
                    self._news[item.id] = item
                    new_ids.append(item.id)
                    touched.append(item.id)
                elif priority_of(item.provider) < priority_of(existing.provider):
                    self._news[item.id] = item
                    touched.append(item.id)
                self._news.move_to_end(item.id)

            evicted = []
            while len(self._news) > self.news_max_items:
                news_id, _ = self._news.popitem(last=False)
                self._resolutions.pop(news_id, None)
                evicted.append(news_id)
            if evicted:
                logger.debug("News store bound reached", evicted=len(evicted))
                new_ids = [news_id for news_id in new_ids if news_id in self._news]
            if touched or evicted:
                self._touch("news", [t for t in touched if t in self._news] + evicted)
        return new_ids

    def get_news(self, limit: Optional[int] = None) -> List[NewsItem]:
        items = sorted(self._news.values(), key=lambda n: (n.published_at, n.id), reverse=True)
        return items[:limit] if limit is not None else items

    def get_news_item(self, news_id: str) -> Optional[NewsItem]:
        return self._news.get(news_id)

    def get_news_for_symbol(self, symbol: str, since: Optional[datetime] = None) -> List[NewsItem]:
        symbol = symbol.upper()
        matches = []
        for item in self._news.values():
            if since is not None and item.published_at < since:
                continue
            verdict = self._resolutions.get(item.id)
            if (verdict is not None and verdict.ticker == symbol) or symbol in item.provider_symbols:
                matches.append(item)
        return sorted(matches, key=lambda n: n.published_at, reverse=True)

    def evict_expired_news(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.fromtimestamp(self._clock_ms() / 1000, tz=timezone.utc)
        cutoff = now - self.news_retention
        expired = [news_id for news_id, item in self._news.items() if item.published_at < cutoff]
        if expired:
            with self.batch():
                for news_id in expired:
                    del self._news[news_id]
                    self._resolutions.pop(news_id, None)
                self._touch("news", expired)
        return len(expired)

    def put_resolutions(self, verdicts: Iterable[ResolutionVerdict]) -> None:
        with self.batch():
            touched = []
            for verdict in verdicts:
                if verdict.news_id not in self._news:
                    continue
                self._resolutions[verdict.news_id] = verdict
                touched.append(verdict.news_id)
            if touched:
                self._touch("resolutions", touched)

    def get_resolution(self, news_id: str) -> Optional[ResolutionVerdict]:
        return self._resolutions.get(news_id)

    def resolutions(self) -> Dict[str, ResolutionVerdict]:
        return dict(self._resolutions)

    def recent_resolved_news(
        self, since: datetime
    ) -> List[Tuple[NewsItem, ResolutionVerdict]]:
        """Items published at or after ``since`` whose verdict carries a ticker"""
        pairs = []
        for news_id, verdict in self._resolutions.items():
            item = self._news.get(news_id)
            if item is not None and verdict.ticker and item.published_at >= since:
                pairs.append((item, verdict))
        return pairs

    # Scanner outputs

    def put_scanner_results(self, results: Mapping[ScannerPreset, ScannerResult]) -> None:
        """Replace scanner outputs; one call is one notification"""
        with self.batch():
            for preset, result in results.items():
                self._scanners[preset] = result
            self._touch("scanners", [preset.value for preset in results])

    def get_scanner_result(self, preset: ScannerPreset) -> Optional[ScannerResult]:
        return self._scanners.get(preset)

    # Status

    @property
    def session_status(self) -> SessionStatus:
        return self._session

    def update_session(self, **changes: Any) -> SessionStatus:
        updated = replace(self._session, **changes)
        if updated != self._session:
            self._session = updated
            self._touch("status")
        return self._session

    def set_market_phase(self, phase: MarketPhase) -> None:
        self.update_session(market_phase=phase)

    def set_provider_health(self, health: Mapping[str, dict]) -> None:
        snapshot = {name: dict(values) for name, values in health.items()}
        if snapshot != self._provider_health:
            self._provider_health = snapshot
            self._touch("status")

    def provider_health(self) -> Dict[str, dict]:
        return {name: dict(values) for name, values in self._provider_health.items()}

    def report_error(self, key: str, error: Mapping[str, Any], once: bool = False) -> bool:
        """Record a user-visible error; with ``once`` a key is reported a single time"""
        if once and key in self._error_keys:
            return False
        self._error_keys.add(key)
        entry = {"key": key, "at": self._clock_ms(), **error}
        self._errors.append(entry)
        del self._errors[:-MAX_ERRORS]
        self._touch("status")
        return True

    def errors(self) -> List[dict]:
        return list(self._errors)

    # Watchlist

    def set_watchlist(self, symbols: Sequence[str]) -> None:
        cleaned = []
        for symbol in symbols:
            symbol = (symbol or "").strip().upper()
            if symbol and symbol not in cleaned:
                cleaned.append(symbol)
        if cleaned != self._watchlist:
            self._watchlist = cleaned
            self._touch("watchlist")

    def watchlist(self) -> List[str]:
        return list(self._watchlist)

    # Ages and housekeeping

    def get_data_age(self, now_ms: Optional[int] = None) -> Dict[str, Optional[int]]:
        """Milliseconds since each component last changed (None if never)"""
        now_ms = now_ms if now_ms is not None else self._clock_ms()
        return {
            name: (now_ms - updated if updated is not None else None)
            for name, updated in self._last_updated.items()
        }

    def cleanup(self) -> Dict[str, int]:
        return {"news_expired": self.evict_expired_news()}

    def get_status(self) -> Dict[str, Any]:
        now_ms = self._clock_ms()
        return {
            **self._session.to_dict(),
            "ages_ms": self.get_data_age(now_ms),
            "providers": self.provider_health(),
            "errors": self.errors(),
            "counts": {
                "quotes": len(self._quotes),
                "tick_symbols": len(self._ticks),
                "news": len(self._news),
                "resolutions": len(self._resolutions),
                "scanners": len(self._scanners),
            },
        }
