"""
Domain models for the market data plane
"""

from marketpulse.models.market_data import (
    Candle,
    Exchange,
    MarketPhase,
    Quote,
    SecurityType,
    Symbol,
    SymbolListing,
    Tick,
)
from marketpulse.models.news import (
    MatchContext,
    MatchType,
    NewsItem,
    ResolutionReason,
    ResolutionVerdict,
)
from marketpulse.models.scanner import ScannerPreset, ScannerResult, ScannerRow
from marketpulse.models.status import (
    ProviderHealth,
    ProviderStatus,
    SessionStatus,
    WsState,
)

__all__ = [
    "Candle",
    "Exchange",
    "MarketPhase",
    "MatchContext",
    "MatchType",
    "NewsItem",
    "ProviderHealth",
    "ProviderStatus",
    "Quote",
    "ResolutionReason",
    "ResolutionVerdict",
    "ScannerPreset",
    "ScannerResult",
    "ScannerRow",
    "SecurityType",
    "SessionStatus",
    "Symbol",
    "SymbolListing",
    "Tick",
    "WsState",
]
