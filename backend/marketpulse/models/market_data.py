"""
Symbols, ticks and quotes
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import FrozenSet, Optional


class Exchange(str, Enum):
    NASDAQ = "NASDAQ"
    NYSE = "NYSE"
    AMEX = "AMEX"
    OTHER = "OTHER"

    @classmethod
    def from_raw(cls, raw: Optional[str]) -> "Exchange":
        """Map provider exchange labels onto the four supported venues"""
        if not raw:
            return cls.OTHER
        label = raw.upper()
        if "NASDAQ" in label:
            return cls.NASDAQ
        if "AMEX" in label or "AMERICAN" in label or label == "NYSEARCA":
            return cls.AMEX
        if "NYSE" in label or label == "NEW YORK STOCK EXCHANGE":
            return cls.NYSE
        return cls.OTHER


class SecurityType(str, Enum):
    STOCK = "stock"
    ETF = "etf"


class MarketPhase(str, Enum):
    CLOSED = "CLOSED"
    PRE = "PRE"
    REGULAR = "REGULAR"
    POST = "POST"


@dataclass(frozen=True)
class Symbol:
    """A listed US security as published by the symbol master"""

    symbol: str
    company_name: str
    aliases: FrozenSet[str] = field(default_factory=frozenset)
    exchange: Exchange = Exchange.OTHER
    type: SecurityType = SecurityType.STOCK
    is_active: bool = True
    sector: Optional[str] = None
    market_cap: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "company_name": self.company_name,
            "aliases": sorted(self.aliases),
            "exchange": self.exchange.value,
            "type": self.type.value,
            "is_active": self.is_active,
            "sector": self.sector,
            "market_cap": self.market_cap,
        }


@dataclass(frozen=True)
class Tick:
    """One trade print; timestamp is epoch milliseconds"""

    symbol: str
    price: float
    volume: int
    timestamp: int

    def __post_init__(self):
        if not self.symbol:
            raise ValueError("tick symbol is required")
        if not self.price > 0:
            raise ValueError(f"tick price must be positive, got {self.price!r}")
        if self.volume < 0:
            raise ValueError(f"tick volume must be non-negative, got {self.volume!r}")


# Quote staleness thresholds in milliseconds
REGULAR_STALE_AFTER_MS = 5 * 60 * 1000
OFF_HOURS_STALE_AFTER_MS = 15 * 60 * 1000


@dataclass(frozen=True)
class Quote:
    """Latest derived price snapshot for a symbol"""

    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: int = 0
    last_update: int = 0
    previous_close: Optional[float] = None
    source: str = "stream"

    def is_stale(self, phase: MarketPhase, now_ms: int) -> bool:
        threshold = REGULAR_STALE_AFTER_MS if phase == MarketPhase.REGULAR else OFF_HOURS_STALE_AFTER_MS
        return now_ms - self.last_update > threshold

    def with_tick(self, tick: Tick, previous_close: Optional[float] = None) -> "Quote":
        """Roll the quote forward by one tick"""
        reference = previous_close if previous_close is not None else self.previous_close
        return replace(
            self,
            price=tick.price,
            volume=self.volume + tick.volume,
            last_update=max(self.last_update, tick.timestamp),
            previous_close=reference,
            source="stream",
            **_change_fields(tick.price, reference),
        )

    @classmethod
    def from_tick(cls, tick: Tick, previous_close: Optional[float] = None) -> "Quote":
        return cls(
            symbol=tick.symbol,
            price=tick.price,
            volume=tick.volume,
            last_update=tick.timestamp,
            previous_close=previous_close,
            **_change_fields(tick.price, previous_close),
        )

    def to_dict(self, phase: Optional[MarketPhase] = None, now_ms: Optional[int] = None) -> dict:
        data = {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "volume": self.volume,
            "last_update": self.last_update,
            "previous_close": self.previous_close,
            "source": self.source,
        }
        if phase is not None and now_ms is not None:
            data["is_stale"] = self.is_stale(phase, now_ms)
        return data


def _change_fields(price: float, reference: Optional[float]) -> dict:
    if not reference:
        return {"change": 0.0, "change_percent": 0.0}
    change = price - reference
    return {"change": round(change, 4), "change_percent": round(change / reference * 100, 4)}


@dataclass(frozen=True)
class SymbolListing:
    """Raw listing row as reported by a provider before master filtering"""

    symbol: str
    name: str
    exchange: Optional[str] = None
    type: SecurityType = SecurityType.STOCK
    sector: Optional[str] = None
    market_cap: Optional[float] = None
    source: str = ""


@dataclass(frozen=True)
class Candle:
    """OHLCV bar; timestamp is epoch milliseconds at bar open"""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: int = 0
