"""
Symbol Master - refreshable catalog of US-listed stocks and ETFs
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

import structlog

from marketpulse.core.exceptions import SymbolMasterUnavailableError
from marketpulse.core.logging_decorators import log_execution_time
from marketpulse.models.market_data import Exchange, Symbol, SymbolListing
from marketpulse.symbols.aliases import (
    TICKER_BLACKLIST,
    generate_aliases,
    normalize_text,
    strip_corporate_suffixes,
)

logger = structlog.get_logger(__name__)

SYMBOL_RE = re.compile(r"^[A-Z]{1,5}$")


class AliasKind(Enum):
    """How an alias was derived from its listing"""

    SYMBOL = "symbol"
    NAME = "name"
    CORE_NAME = "core_name"
    DERIVED = "derived"


class ListingSource(Protocol):
    async def list_symbols(self) -> Any:
        """Return a ProviderResult carrying a list of SymbolListing"""


@dataclass(frozen=True)
class SymbolSnapshot:
    """Immutable published state of the master"""

    symbols: Mapping[str, Symbol]
    alias_index: Mapping[str, Tuple[Tuple[str, AliasKind], ...]]
    core_names: Mapping[str, str]
    name_prefix_index: Mapping[str, Tuple[str, ...]]
    loaded_at: float
    version: int
    sources: Tuple[str, ...] = field(default_factory=tuple)


class SymbolMaster:
    """
    Authoritative symbol catalog.

    Each successful ``load()`` builds a complete new snapshot and swaps it in
    with a single assignment; readers always see either the old or the new
    snapshot, never a mix.
    """

    def __init__(
        self,
        source: ListingSource,
        refresh_hours: float = 24,
        load_timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self._source = source
        self.refresh_interval = refresh_hours * 3600
        self.load_timeout = load_timeout
        self._clock = clock
        self._snapshot: Optional[SymbolSnapshot] = None
        self.last_error: Optional[str] = None
        self.load_failures = 0

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def version(self) -> int:
        return self._snapshot.version if self._snapshot else 0

    @property
    def snapshot(self) -> SymbolSnapshot:
        if self._snapshot is None:
            raise SymbolMasterUnavailableError("Symbol master has never been loaded")
        return self._snapshot

    def needs_refresh(self) -> bool:
        if self._snapshot is None:
            return True
        return self._clock() - self._snapshot.loaded_at >= self.refresh_interval

    async def load(self) -> bool:
        """
        Refresh from the provider pool.

        Returns True when a new snapshot was published and False when the
        previous snapshot was retained. Raises SymbolMasterUnavailableError
        only when no snapshot has ever been loaded.
        """
        try:
            result = await asyncio.wait_for(self._source.list_symbols(), self.load_timeout)
            if not result.ok:
                raise result.error
            listings = result.value or []
            if not listings:
                raise ValueError("provider returned an empty symbol list")
            snapshot = self.build_snapshot(listings, version=self.version + 1)
            if not snapshot.symbols:
                raise ValueError("no listings survived filtering")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.load_failures += 1
            self.last_error = str(e) or type(e).__name__
            if self._snapshot is None:
                logger.error("Symbol master load failed with no snapshot", error=self.last_error)
                raise SymbolMasterUnavailableError(
                    f"Symbol master load failed: {self.last_error}"
                ) from e
            logger.warning(
                "Symbol master refresh failed, keeping previous snapshot",
                error=self.last_error,
                version=self._snapshot.version,
            )
            return False

        self._snapshot = snapshot
        self.last_error = None
        logger.info(
            "Symbol master loaded",
            symbols=len(snapshot.symbols),
            aliases=len(snapshot.alias_index),
            version=snapshot.version,
        )
        return True

    def load_listings(self, listings: Sequence[SymbolListing]) -> SymbolSnapshot:
        """Publish a snapshot built from already-fetched listings"""
        snapshot = self.build_snapshot(listings, version=self.version + 1)
        self._snapshot = snapshot
        return snapshot

    @log_execution_time()
    def build_snapshot(self, listings: Sequence[SymbolListing], version: int) -> SymbolSnapshot:
        merged: Dict[str, SymbolListing] = {}
        dropped = 0
        for listing in listings:
            ticker = (listing.symbol or "").strip().upper()
            if not SYMBOL_RE.match(ticker) or ticker in TICKER_BLACKLIST:
                dropped += 1
                continue
            if not (listing.name or "").strip():
                dropped += 1
                continue
            existing = merged.get(ticker)
            if existing is None:
                merged[ticker] = listing
            else:
                merged[ticker] = _merge_listing(existing, listing)

        symbols: Dict[str, Symbol] = {}
        alias_index: Dict[str, List[Tuple[str, AliasKind]]] = {}
        core_names: Dict[str, str] = {}
        prefix_index: Dict[str, List[str]] = {}

        for ticker in sorted(merged):
            listing = merged[ticker]
            name = listing.name.strip()
            aliases = generate_aliases(ticker, name)
            symbols[ticker] = Symbol(
                symbol=ticker,
                company_name=name,
                aliases=aliases,
                exchange=Exchange.from_raw(listing.exchange),
                type=listing.type,
                is_active=True,
                sector=listing.sector,
                market_cap=listing.market_cap,
            )

            full = normalize_text(name)
            core = strip_corporate_suffixes(full)
            core_names[ticker] = core
            for alias in aliases:
                if alias == ticker:
                    kind = AliasKind.SYMBOL
                elif alias == full:
                    kind = AliasKind.NAME
                elif alias == core:
                    kind = AliasKind.CORE_NAME
                else:
                    kind = AliasKind.DERIVED
                alias_index.setdefault(alias, []).append((ticker, kind))
            if len(core) >= 3:
                prefix_index.setdefault(core[:3], []).append(ticker)

        logger.debug("Symbol snapshot built", kept=len(symbols), dropped=dropped)
        return SymbolSnapshot(
            symbols=MappingProxyType(symbols),
            alias_index=MappingProxyType({k: tuple(v) for k, v in alias_index.items()}),
            core_names=MappingProxyType(core_names),
            name_prefix_index=MappingProxyType({k: tuple(v) for k, v in prefix_index.items()}),
            loaded_at=self._clock(),
            version=version,
            sources=tuple(sorted({l.source for l in merged.values() if l.source})),
        )

    # Lookups

    def get_by_symbol(self, symbol: str) -> Optional[Symbol]:
        if self._snapshot is None or not symbol:
            return None
        return self._snapshot.symbols.get(symbol.strip().upper())

    def is_active(self, symbol: str) -> bool:
        found = self.get_by_symbol(symbol)
        return bool(found and found.is_active)

    def search_by_alias(self, text: str) -> Iterator[Symbol]:
        """Symbols whose alias set contains ``text`` exactly"""
        for symbol, _kind in self.alias_matches(text):
            yield symbol

    def alias_matches(self, text: str) -> Iterator[Tuple[Symbol, AliasKind]]:
        if self._snapshot is None or not text:
            return
        for ticker, kind in self._snapshot.alias_index.get(text, ()):
            yield self._snapshot.symbols[ticker], kind

    def core_name(self, symbol: str) -> Optional[str]:
        if self._snapshot is None:
            return None
        return self._snapshot.core_names.get(symbol)

    def names_with_prefix(self, prefix: str) -> Tuple[str, ...]:
        if self._snapshot is None:
            return ()
        return self._snapshot.name_prefix_index.get(prefix[:3], ())

    def get_by_exchange(self, exchange: Exchange) -> List[Symbol]:
        if self._snapshot is None:
            return []
        return [s for s in self._snapshot.symbols.values() if s.exchange == exchange]

    def get_by_sector(self, sector: str) -> List[Symbol]:
        if self._snapshot is None:
            return []
        wanted = sector.lower()
        return [
            s for s in self._snapshot.symbols.values() if s.sector and s.sector.lower() == wanted
        ]

    def search(
        self,
        query: str,
        limit: int = 10,
        exchange: Optional[Exchange] = None,
        sector: Optional[str] = None,
        active_only: bool = True,
    ) -> List[Symbol]:
        """
        Ranked symbol search.

        Exact ticker 100, exact alias 95, alias prefix 80, fuzzy name
        similarity (>= 0.7) scaled to 70.
        """
        if self._snapshot is None or not query or not query.strip():
            return []

        upper = query.strip().upper()
        normalized = normalize_text(query)
        scores: Dict[str, float] = {}

        def offer(ticker: str, score: float) -> None:
            if score > scores.get(ticker, 0):
                scores[ticker] = score

        if upper in self._snapshot.symbols:
            offer(upper, 100)
        for ticker, _kind in self._snapshot.alias_index.get(normalized, ()):
            offer(ticker, 95)

        if normalized:
            for alias, entries in self._snapshot.alias_index.items():
                if alias.startswith(normalized) or (len(normalized) >= 3 and normalized in alias):
                    for ticker, _kind in entries:
                        offer(ticker, 80)

        if len(normalized) >= 3 and len(scores) < limit:
            for ticker, core in self._snapshot.core_names.items():
                if ticker in scores or not core:
                    continue
                ratio = SequenceMatcher(None, normalized, core).ratio()
                if ratio >= 0.7:
                    offer(ticker, round(ratio * 70, 2))

        results = []
        for ticker, score in sorted(scores.items(), key=lambda item: (-item[1], item[0])):
            symbol = self._snapshot.symbols[ticker]
            if active_only and not symbol.is_active:
                continue
            if exchange is not None and symbol.exchange != exchange:
                continue
            if sector is not None and (symbol.sector or "").lower() != sector.lower():
                continue
            results.append(symbol)
            if len(results) >= limit:
                break
        return results

    def get_stats(self) -> Dict[str, Any]:
        if self._snapshot is None:
            return {"loaded": False, "total": 0, "load_failures": self.load_failures}

        by_exchange: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for symbol in self._snapshot.symbols.values():
            by_exchange[symbol.exchange.value] = by_exchange.get(symbol.exchange.value, 0) + 1
            by_type[symbol.type.value] = by_type.get(symbol.type.value, 0) + 1

        return {
            "loaded": True,
            "total": len(self._snapshot.symbols),
            "aliases": len(self._snapshot.alias_index),
            "by_exchange": by_exchange,
            "by_type": by_type,
            "version": self._snapshot.version,
            "loaded_at": self._snapshot.loaded_at,
            "sources": list(self._snapshot.sources),
            "load_failures": self.load_failures,
            "last_error": self.last_error,
        }

    async def run_refresh_loop(
        self,
        stop_event: asyncio.Event,
        check_interval: float = 300.0,
    ) -> None:
        """Reload whenever the snapshot is older than the refresh interval"""
        while not stop_event.is_set():
            if self.needs_refresh():
                try:
                    await self.load()
                except SymbolMasterUnavailableError as e:
                    logger.error("Symbol master still unavailable", error=e.detail)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=check_interval)
            except asyncio.TimeoutError:
                pass


def _merge_listing(first: SymbolListing, second: SymbolListing) -> SymbolListing:
    """First source wins; later sources only fill missing fields"""
    return SymbolListing(
        symbol=first.symbol,
        name=first.name or second.name,
        exchange=first.exchange or second.exchange,
        type=first.type,
        sector=first.sector or second.sector,
        market_cap=first.market_cap if first.market_cap is not None else second.market_cap,
        source=first.source or second.source,
    )
