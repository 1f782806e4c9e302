"""
Financial Modeling Prep adapter - fundamentals, stock news, batch quotes, gainers
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pytz
import structlog

from marketpulse.models.market_data import Candle, Quote, SecurityType, SymbolListing
from marketpulse.models.news import NewsItem
from marketpulse.providers.base import (
    CANDLES,
    NEWS,
    QUOTES,
    SYMBOLS,
    TOP_GAINERS,
    ProviderAdapter,
    build_news_item,
    to_float,
    to_int,
)

logger = structlog.get_logger(__name__)

EASTERN = pytz.timezone("America/New_York")
QUOTE_BATCH_SIZE = 100
LISTED_EXCHANGES = {"NASDAQ", "NYSE", "AMEX"}
INTERVALS = {"1min", "5min", "15min", "30min", "1hour", "4hour"}


def parse_eastern(raw: str) -> datetime:
    """FMP timestamps are naive US/Eastern wall-clock strings"""
    naive = datetime.strptime(raw.strip()[:19], "%Y-%m-%d %H:%M:%S")
    return EASTERN.localize(naive).astimezone(pytz.utc)


class FmpAdapter(ProviderAdapter):
    """Fundamentals-and-news provider"""

    name = "fmp"
    capabilities = frozenset({NEWS, QUOTES, CANDLES, SYMBOLS, TOP_GAINERS})

    def _auth_params(self) -> Dict[str, str]:
        return {"apikey": self.api_key}

    async def _fetch_news(self, limit: int, symbols: Optional[Sequence[str]]) -> List[NewsItem]:
        params = {"limit": limit}
        if symbols:
            params["tickers"] = ",".join(symbols)
        payload = await self._request_json("stock_news", params, timeout=self.policy.news_timeout)

        items = []
        for raw in self._expect_list(payload, "stock_news"):
            try:
                symbol = raw.get("symbol")
                items.append(
                    build_news_item(
                        self.name,
                        title=raw["title"],
                        summary=raw.get("text", ""),
                        url=raw.get("url", ""),
                        source=raw.get("site", ""),
                        published_at=parse_eastern(raw["publishedDate"]),
                        symbols=[symbol] if symbol else [],
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self._skip_item("news", e)
        return items[:limit]

    async def _fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        quotes = []
        for start in range(0, len(symbols), QUOTE_BATCH_SIZE):
            batch = symbols[start : start + QUOTE_BATCH_SIZE]
            payload = await self._request_json(
                f"quote/{','.join(batch)}", timeout=self.policy.quotes_timeout
            )
            for raw in self._expect_list(payload, "quote"):
                try:
                    price = to_float(raw.get("price"))
                    if not price:
                        continue
                    quotes.append(
                        Quote(
                            symbol=raw["symbol"].upper(),
                            price=price,
                            change=to_float(raw.get("change")) or 0.0,
                            change_percent=to_float(raw.get("changesPercentage")) or 0.0,
                            volume=to_int(raw.get("volume")),
                            last_update=to_int(raw.get("timestamp")) * 1000,
                            previous_close=to_float(raw.get("previousClose")),
                            source=self.name,
                        )
                    )
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    self._skip_item("quote", e)
        return quotes

    async def _fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        interval = interval if interval in INTERVALS else "5min"
        payload = await self._request_json(
            f"historical-chart/{interval}/{symbol}", timeout=self.policy.quotes_timeout
        )
        candles = []
        for raw in self._expect_list(payload, "historical-chart"):
            try:
                candles.append(
                    Candle(
                        timestamp=int(parse_eastern(raw["date"]).timestamp() * 1000),
                        open=float(raw["open"]),
                        high=float(raw["high"]),
                        low=float(raw["low"]),
                        close=float(raw["close"]),
                        volume=to_int(raw.get("volume")),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                self._skip_item("candle", e)
        # Newest first upstream
        candles.sort(key=lambda c: c.timestamp)
        return candles[-limit:]

    async def _fetch_symbols(self) -> List[SymbolListing]:
        payload = await self._request_json("stock/list", timeout=self.policy.master_timeout)
        listings = []
        for raw in self._expect_list(payload, "stock/list"):
            try:
                exchange = (raw.get("exchangeShortName") or "").upper()
                if exchange not in LISTED_EXCHANGES:
                    continue
                listings.append(
                    SymbolListing(
                        symbol=raw["symbol"],
                        name=raw.get("name") or "",
                        exchange=exchange,
                        type=SecurityType.ETF if raw.get("type") == "etf" else SecurityType.STOCK,
                        source=self.name,
                    )
                )
            except (KeyError, TypeError, AttributeError) as e:
                self._skip_item("symbol", e)
        return listings

    async def _fetch_top_gainers(self, limit: int) -> List[str]:
        payload = await self._request_json("stock_market/gainers", timeout=self.policy.quotes_timeout)
        gainers = []
        for raw in self._expect_list(payload, "gainers"):
            symbol = (raw.get("symbol") or "").upper() if isinstance(raw, dict) else ""
            if symbol and symbol not in gainers:
                gainers.append(symbol)
            if len(gainers) >= limit:
                break
        return gainers
