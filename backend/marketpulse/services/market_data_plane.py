"""
Market data plane - explicitly constructed context object wiring every
component, with the interfaces the UI and HTTP facade consume
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

import httpx
import structlog

from marketpulse.core.config import Settings, get_settings
from marketpulse.events.broadcast import ChannelRegistry, default_registry
from marketpulse.events.leader_election import LeaderElection
from marketpulse.events.market_calendar import MarketCalendar
from marketpulse.events.scanner_scheduler import ScannerScheduler
from marketpulse.models.market_data import Exchange, Quote, Symbol, Tick
from marketpulse.models.news import NewsItem, ResolutionVerdict
from marketpulse.models.scanner import ScannerPreset, ScannerResult
from marketpulse.models.status import SessionStatus
from marketpulse.news.aggregator import NewsAggregator, NewsRefresh
from marketpulse.providers.pool import ProviderClientPool
from marketpulse.resolver.ticker_resolver import TickerResolver
from marketpulse.scanners.engine import ScannerEngine
from marketpulse.scanners.universe import UniverseBuilder
from marketpulse.state.store import StateStore
from marketpulse.streaming.polling import PollingFallback
from marketpulse.streaming.tick_stream import Connector, TickStreamSession, websocket_connector
from marketpulse.symbols.symbol_master import SymbolMaster

logger = structlog.get_logger(__name__)


@dataclass
class MarketDataPlane:
    """Handle returned by ``init_plane``; pass it to ``shutdown_plane``"""

    settings: Settings
    store: StateStore
    pool: ProviderClientPool
    master: SymbolMaster
    aggregator: NewsAggregator
    resolver: TickerResolver
    stream: TickStreamSession
    polling: PollingFallback
    engine: ScannerEngine
    universe: UniverseBuilder
    calendar: MarketCalendar
    scheduler: ScannerScheduler
    client: Optional[httpx.AsyncClient] = None
    started: bool = False
    resolved_version: int = 0
    _tasks: List[asyncio.Task] = field(default_factory=list, repr=False)

    # NewsFeed

    async def refresh_news(self, limit: Optional[int] = None) -> NewsRefresh:
        """
        One news round: fan-out, resolve new items, then subscribe the tick
        stream to every accepted ticker it does not already follow.
        """
        refresh = await self.aggregator.refresh(limit)
        if self.master.version != self.resolved_version:
            # Verdicts follow the catalog: a new snapshot re-resolves everything held
            new_items = self.store.get_news()
            self.resolved_version = self.master.version
        else:
            new_items = [
                item for item in map(self.store.get_news_item, refresh.new_ids) if item is not None
            ]
        if new_items:
            verdicts = self.resolver.resolve_batch(new_items)
            self.store.put_resolutions(verdicts.values())
            tickers = sorted({v.ticker for v in verdicts.values() if v.ticker})
            await self._auto_subscribe(tickers)
        return refresh

    def get_news(self, limit: Optional[int] = None) -> List[NewsItem]:
        return self.store.get_news(limit)

    async def _auto_subscribe(self, tickers: Sequence[str]) -> List[str]:
        added = [ticker for ticker in tickers if await self.stream.subscribe(ticker)]
        if added:
            logger.info("Auto-subscribed from news", symbols=added)
            await self._load_previous_closes(added)
        return added

    async def _load_previous_closes(self, symbols: Sequence[str]) -> None:
        missing = [s for s in symbols if self.store.get_previous_close(s) is None]
        if missing:
            closes = await self.pool.get_previous_closes(missing)
            if closes:
                self.store.set_previous_closes(closes)

    # TickerResolver

    def resolve(self, item: NewsItem) -> ResolutionVerdict:
        return self.resolver.resolve(item)

    # TickStream

    async def subscribe(self, symbol: str) -> bool:
        added = await self.stream.subscribe(symbol)
        if added:
            await self._load_previous_closes([symbol.strip().upper()])
        return added

    async def unsubscribe(self, symbol: str) -> bool:
        return await self.stream.unsubscribe(symbol)

    def stream_status(self) -> SessionStatus:
        return self.stream.status()

    # Ticks / Quotes

    def get_ticks(self, symbol: str) -> List[Tick]:
        return self.store.get_ticks(symbol)

    def get_quotes(self, symbols: Sequence[str]) -> List[Quote]:
        return self.store.get_quotes(symbols)

    def get_quote_views(self, symbols: Sequence[str]) -> List[Dict[str, Any]]:
        """Quotes with an ``is_stale`` flag; stale quotes are still served"""
        return self.store.get_quote_views(symbols)

    # Scanner

    def get_scanner(self, preset: Union[str, ScannerPreset], limit: Optional[int] = None) -> ScannerResult:
        preset = ScannerPreset(preset)
        result = self.store.get_scanner_result(preset)
        if result is None:
            result = ScannerResult(preset, (), datetime.now(timezone.utc))
        return result.limited(limit) if limit is not None else result

    def set_watchlist(self, symbols: Sequence[str]) -> None:
        self.store.set_watchlist(symbols)

    # Status

    def get_status(self) -> Dict[str, Any]:
        status = self.store.get_status()
        status["symbol_master"] = self.master.get_stats()
        status["scheduler"] = self.scheduler.get_status()
        status["stream"] = self.stream.get_stats()
        return status

    # Symbols

    def search_symbols(
        self,
        query: str,
        limit: int = 10,
        exchange: Optional[Union[str, Exchange]] = None,
        sector: Optional[str] = None,
        active_only: bool = True,
    ) -> List[Symbol]:
        if exchange is not None and not isinstance(exchange, Exchange):
            exchange = Exchange.from_raw(exchange)
        return self.master.search(
            query, limit=limit, exchange=exchange, sector=sector, active_only=active_only
        )

    # Background loops

    async def _news_loop(self) -> None:
        interval = self.settings.NEWS_REFRESH_INTERVAL
        while True:
            try:
                await self.refresh_news()
                self.store.cleanup()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("News loop iteration failed")
            await asyncio.sleep(interval)


def build_plane(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
    connector: Connector = websocket_connector,
    registry: ChannelRegistry = default_registry,
) -> MarketDataPlane:
    """Construct every component without performing any I/O"""
    store = StateStore(
        tick_capacity=settings.TICK_BUFFER_CAPACITY,
        reorder_tolerance_ms=settings.TICK_REORDER_TOLERANCE_MS,
        news_max_items=settings.NEWS_MAX_ITEMS,
        news_retention=timedelta(days=settings.NEWS_RETENTION_DAYS),
    )
    pool = ProviderClientPool.from_settings(settings, client)
    for error in pool.auth_missing:
        store.report_error(f"auth_missing:{error.provider}", error.to_dict(), once=True)
    store.set_provider_health(pool.get_health())

    master = SymbolMaster(
        pool,
        refresh_hours=settings.SYMBOL_MASTER_REFRESH_HOURS,
        load_timeout=settings.MASTER_TIMEOUT,
    )
    aggregator = NewsAggregator(
        pool,
        store,
        default_limit=settings.NEWS_LIMIT,
        retention_days=settings.NEWS_RETENTION_DAYS,
        bucket_seconds=settings.NEWS_DEDUP_WINDOW_MINUTES * 60,
    )
    resolver = TickerResolver.from_settings(master, settings)
    stream = TickStreamSession.from_settings(store, settings, connector=connector)
    polling = PollingFallback(store, pool, stream, interval=settings.POLL_INTERVAL)
    engine = ScannerEngine.from_settings(settings)
    universe = UniverseBuilder(
        store,
        pool,
        seed_symbols=settings.SCANNER_SEED_SYMBOLS,
        top_gainers_limit=settings.TOP_GAINERS_LIMIT,
    )
    calendar = MarketCalendar.from_settings(settings)
    election = LeaderElection(
        settings.LEADER_CHANNEL,
        registry=registry,
        heartbeat_interval=settings.LEADER_HEARTBEAT_INTERVAL,
        timeout=settings.LEADER_TIMEOUT,
    )
    scheduler = ScannerScheduler(
        store,
        engine,
        universe,
        calendar,
        election,
        cadence_overrides=settings.SCANNER_CADENCE_OVERRIDES,
        phase_refresh_interval=settings.PHASE_REFRESH_INTERVAL,
    )
    return MarketDataPlane(
        settings=settings,
        store=store,
        pool=pool,
        master=master,
        aggregator=aggregator,
        resolver=resolver,
        stream=stream,
        polling=polling,
        engine=engine,
        universe=universe,
        calendar=calendar,
        scheduler=scheduler,
        client=client,
    )


async def init_plane(
    settings: Optional[Settings] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
    connector: Connector = websocket_connector,
    registry: ChannelRegistry = default_registry,
    run_background: bool = True,
) -> MarketDataPlane:
    """
    Build the plane, load the symbol master and start the live components.

    A symbol master that cannot produce its first snapshot is fatal: the
    plane releases what it built and the error propagates, so nothing goes
    LIVE without a catalog.
    """
    settings = settings or get_settings()
    plane = build_plane(settings, client=client, connector=connector, registry=registry)
    started = time.perf_counter()
    try:
        await plane.master.load()
        plane.store.set_provider_health(plane.pool.get_health())
        await plane._load_previous_closes(plane.universe.fallback_seeds)

        plane.stream.start()
        plane.polling.start()
        plane.scheduler.start()
        if run_background:
            plane._tasks = [
                asyncio.create_task(plane._news_loop(), name="news-refresh"),
                asyncio.create_task(
                    plane.master.run_refresh_loop(asyncio.Event()), name="symbol-master-refresh"
                ),
            ]
        plane.started = True
    except BaseException:
        await shutdown_plane(plane)
        raise

    logger.info(
        "Market data plane started",
        symbols=len(plane.master.snapshot.symbols),
        providers=[a.name for a in plane.pool.adapters if a.enabled],
        duration_ms=round((time.perf_counter() - started) * 1000, 3),
    )
    return plane


async def shutdown_plane(plane: MarketDataPlane) -> None:
    """Stop every task and release every connection; safe to call twice"""
    tasks, plane._tasks = plane._tasks, []
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Background task failed during shutdown", task=task.get_name())

    await plane.scheduler.stop()
    await plane.polling.stop()
    await plane.stream.stop()
    await plane.pool.close()
    if plane.client is not None:
        await plane.client.aclose()
    plane.started = False
    logger.info("Market data plane stopped")


@asynccontextmanager
async def plane_context(settings: Optional[Settings] = None, **kwargs) -> AsyncIterator[MarketDataPlane]:
    plane = await init_plane(settings, **kwargs)
    try:
        yield plane
    finally:
        await shutdown_plane(plane)
