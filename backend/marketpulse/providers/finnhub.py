"""
Finnhub adapter - realtime quotes, general news, candles and the US symbol list
"""

import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import structlog

from marketpulse.core.exceptions import RateLimitedError
from marketpulse.models.market_data import Candle, Quote, SecurityType, SymbolListing
from marketpulse.models.news import NewsItem
from marketpulse.providers.base import (
    CANDLES,
    NEWS,
    QUOTES,
    SYMBOLS,
    ProviderAdapter,
    build_news_item,
    to_float,
    to_int,
)

logger = structlog.get_logger(__name__)

# Market identifier codes reported by /stock/symbol
MIC_TO_EXCHANGE = {
    "XNAS": "NASDAQ",
    "XNGS": "NASDAQ",
    "XNCM": "NASDAQ",
    "XNMS": "NASDAQ",
    "XNYS": "NYSE",
    "ARCX": "NYSE",
    "XASE": "AMEX",
}

LISTED_TYPES = {"Common Stock": SecurityType.STOCK, "ETP": SecurityType.ETF, "ETF": SecurityType.ETF}

# Seconds per candle for the supported resolutions
RESOLUTIONS = {"1min": ("1", 60), "5min": ("5", 300), "15min": ("15", 900), "30min": ("30", 1800),
               "1hour": ("60", 3600), "1day": ("D", 86400)}


class FinnhubAdapter(ProviderAdapter):
    """Realtime-quote provider; also owns the trade stream credential"""

    name = "finnhub"
    capabilities = frozenset({NEWS, QUOTES, CANDLES, SYMBOLS})

    def _auth_params(self) -> Dict[str, str]:
        return {"token": self.api_key}

    def stream_url(self, base_url: str) -> str:
        return f"{base_url}?token={self.api_key}"

    async def _fetch_news(self, limit: int, symbols: Optional[Sequence[str]]) -> List[NewsItem]:
        payload = await self._request_json(
            "news", {"category": "general"}, timeout=self.policy.news_timeout
        )
        items = []
        for raw in self._expect_list(payload, "news"):
            try:
                related = raw.get("related") or ""
                items.append(
                    build_news_item(
                        self.name,
                        title=raw["headline"],
                        summary=raw.get("summary", ""),
                        url=raw.get("url", ""),
                        source=raw.get("source", ""),
                        published_at=datetime.fromtimestamp(int(raw["datetime"]), tz=timezone.utc),
                        symbols=[s for s in related.split(",") if s],
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self._skip_item("news", e)
            if len(items) >= limit:
                break
        return items

    async def _fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        quotes = []
        for symbol in symbols:
            try:
                payload = await self._request_json(
                    "quote", {"symbol": symbol}, timeout=self.policy.quotes_timeout
                )
            except RateLimitedError:
                # One request per symbol: keep what already arrived
                if quotes:
                    logger.debug("Finnhub quote batch truncated by rate limit", returned=len(quotes))
                    return quotes
                raise
            data = self._expect_dict(payload, "quote")
            try:
                price = to_float(data.get("c"))
                if not price:
                    continue
                quotes.append(
                    Quote(
                        symbol=symbol,
                        price=price,
                        change=to_float(data.get("d")) or 0.0,
                        change_percent=to_float(data.get("dp")) or 0.0,
                        volume=to_int(data.get("v")),
                        last_update=int(data.get("t") or time.time()) * 1000,
                        previous_close=to_float(data.get("pc")),
                        source=self.name,
                    )
                )
            except (TypeError, ValueError) as e:
                self._skip_item("quote", e)
        return quotes

    async def _fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        resolution, seconds = RESOLUTIONS.get(interval, RESOLUTIONS["5min"])
        now = int(time.time())
        payload = self._expect_dict(
            await self._request_json(
                "stock/candle",
                {
                    "symbol": symbol,
                    "resolution": resolution,
                    "from": now - seconds * limit,
                    "to": now,
                },
                timeout=self.policy.quotes_timeout,
            ),
            "candles",
        )
        if payload.get("s") != "ok":
            return []
        candles = []
        for i, ts in enumerate(payload.get("t") or []):
            try:
                candles.append(
                    Candle(
                        timestamp=int(ts) * 1000,
                        open=float(payload["o"][i]),
                        high=float(payload["h"][i]),
                        low=float(payload["l"][i]),
                        close=float(payload["c"][i]),
                        volume=to_int(payload["v"][i]),
                    )
                )
            except (KeyError, IndexError, TypeError, ValueError) as e:
                self._skip_item("candle", e)
        return candles[-limit:]

    async def _fetch_symbols(self) -> List[SymbolListing]:
        payload = await self._request_json(
            "stock/symbol", {"exchange": "US"}, timeout=self.policy.master_timeout
        )
        listings = []
        for raw in self._expect_list(payload, "symbols"):
            try:
                security_type = LISTED_TYPES.get(raw.get("type"))
                exchange = MIC_TO_EXCHANGE.get(raw.get("mic") or "")
                if security_type is None or exchange is None:
                    continue
                listings.append(
                    SymbolListing(
                        symbol=raw["symbol"],
                        name=raw.get("description") or "",
                        exchange=exchange,
                        type=security_type,
                        source=self.name,
                    )
                )
            except (KeyError, TypeError, AttributeError) as e:
                self._skip_item("symbol", e)
        return listings
