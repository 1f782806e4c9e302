"""
Scan universe: live buffers, watchlist, recent news tickers and top movers
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

import structlog

from marketpulse.providers.pool import ProviderClientPool
from marketpulse.state.store import StateStore

logger = structlog.get_logger(__name__)

DEFAULT_MAX_UNIVERSE = 500


class UniverseBuilder:
    """
    Deduplicated union of symbols considered by one scan, in priority order:
    live tick buffers, the user watchlist, tickers of recently resolved news,
    then the top-gainers seed. The result is capped at ``max_size``.
    """

    def __init__(
        self,
        store: StateStore,
        pool: Optional[ProviderClientPool] = None,
        seed_symbols: Sequence[str] = (),
        top_gainers_limit: int = 20,
        news_window_minutes: float = 90.0,
        max_size: int = DEFAULT_MAX_UNIVERSE,
        watchlist_provider: Optional[Callable[[], Sequence[str]]] = None,
    ):
        self.store = store
        self.pool = pool
        self.fallback_seeds = [s.upper() for s in seed_symbols]
        self.top_gainers_limit = top_gainers_limit
        self.news_window = timedelta(minutes=news_window_minutes)
        self.max_size = max_size
        self.watchlist_provider = watchlist_provider
        self.seeds: List[str] = list(self.fallback_seeds)

    async def refresh_seeds(self) -> List[str]:
        """Top gainers from the pool; the configured seed list when unavailable"""
        if self.pool is None:
            return self.seeds
        result = await self.pool.get_top_gainers(self.top_gainers_limit)
        if result.ok and result.value:
            self.seeds = [s.upper() for s in result.value]
        else:
            if not result.ok:
                logger.info("Top gainers unavailable, using seed list", error=result.error.detail)
            self.seeds = list(self.fallback_seeds)
        return self.seeds

    def build(self, now: Optional[datetime] = None) -> List[str]:
        now = now or datetime.now(timezone.utc)
        if self.watchlist_provider is not None:
            self.store.set_watchlist(self.watchlist_provider())

        universe: List[str] = []
        seen = set()

        def add(symbols) -> None:
            for symbol in symbols:
                symbol = (symbol or "").strip().upper()
                if symbol and symbol not in seen:
                    seen.add(symbol)
                    universe.append(symbol)

        add(self.store.symbols_with_ticks())
        add(self.store.watchlist())
        add(verdict.ticker for _, verdict in self.store.recent_resolved_news(now - self.news_window))
        add(self.seeds)

        if len(universe) > self.max_size:
            logger.warning("Scan universe truncated", size=len(universe), max_size=self.max_size)
            universe = universe[: self.max_size]
        return universe
