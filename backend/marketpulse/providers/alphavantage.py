"""
Alpha Vantage adapter - news sentiment feed, global quotes, intraday series
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import pytz
import structlog

from marketpulse.core.exceptions import MalformedPayloadError, RateLimitedError
from marketpulse.models.market_data import Candle, Quote
from marketpulse.models.news import NewsItem
from marketpulse.providers.base import (
    CANDLES,
    NEWS,
    QUOTES,
    ProviderAdapter,
    build_news_item,
    to_float,
    to_int,
)

logger = structlog.get_logger(__name__)

EASTERN = pytz.timezone("America/New_York")
INTERVALS = {"1min", "5min", "15min", "30min", "60min"}
# Only tickers the feed scores as clearly about the article
MIN_TICKER_RELEVANCE = 0.3


class AlphaVantageAdapter(ProviderAdapter):
    """News-sentiment provider (free tier: 5 requests per minute)"""

    name = "alphavantage"
    capabilities = frozenset({NEWS, QUOTES, CANDLES})

    def _auth_params(self) -> Dict[str, str]:
        return {"apikey": self.api_key}

    def _check_throttle(self, payload: Any) -> dict:
        # Throttling arrives as HTTP 200 with a Note/Information body
        data = self._expect_dict(payload, "response")
        for key in ("Note", "Information"):
            if key in data and len(data) == 1:
                raise RateLimitedError(self.name, str(data[key])[:200])
        if "Error Message" in data:
            raise MalformedPayloadError(self.name, str(data["Error Message"])[:200])
        return data

    async def _fetch_news(self, limit: int, symbols: Optional[Sequence[str]]) -> List[NewsItem]:
        params = {"function": "NEWS_SENTIMENT", "limit": limit, "sort": "LATEST"}
        if symbols:
            params["tickers"] = ",".join(symbols)
        data = self._check_throttle(
            await self._request_json("", params, timeout=self.policy.news_timeout)
        )
        feed = data.get("feed")
        if not isinstance(feed, list):
            raise MalformedPayloadError(self.name, "NEWS_SENTIMENT response without feed list")

        items = []
        for raw in feed:
            try:
                published = datetime.strptime(raw["time_published"], "%Y%m%dT%H%M%S")
                tickers = [
                    entry["ticker"]
                    for entry in raw.get("ticker_sentiment") or []
                    if (to_float(entry.get("relevance_score")) or 0) >= MIN_TICKER_RELEVANCE
                    and ":" not in entry.get("ticker", "")
                ]
                items.append(
                    build_news_item(
                        self.name,
                        title=raw["title"],
                        summary=raw.get("summary", ""),
                        url=raw.get("url", ""),
                        source=raw.get("source", ""),
                        published_at=pytz.utc.localize(published),
                        symbols=tickers,
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self._skip_item("news", e)
        return items[:limit]

    async def _fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        quotes = []
        for symbol in symbols:
            try:
                payload = await self._request_json(
                    "", {"function": "GLOBAL_QUOTE", "symbol": symbol},
                    timeout=self.policy.quotes_timeout,
                )
                data = self._check_throttle(payload)
            except RateLimitedError:
                if quotes:
                    return quotes
                raise
            raw = data.get("Global Quote")
            if not isinstance(raw, dict):
                raise MalformedPayloadError(self.name, "GLOBAL_QUOTE response without quote")
            try:
                price = to_float(raw.get("05. price"))
                if not price:
                    continue
                trading_day = raw.get("07. latest trading day")
                last_update = (
                    int(EASTERN.localize(datetime.strptime(trading_day, "%Y-%m-%d").replace(hour=16))
                        .timestamp() * 1000)
                    if trading_day else 0
                )
                quotes.append(
                    Quote(
                        symbol=symbol,
                        price=price,
                        change=to_float(raw.get("09. change")) or 0.0,
                        change_percent=to_float(raw.get("10. change percent")) or 0.0,
                        volume=to_int(raw.get("06. volume")),
                        last_update=last_update,
                        previous_close=to_float(raw.get("08. previous close")),
                        source=self.name,
                    )
                )
            except (TypeError, ValueError) as e:
                self._skip_item("quote", e)
        return quotes

    async def _fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        interval = "60min" if interval == "1hour" else interval
        interval = interval if interval in INTERVALS else "5min"
        data = self._check_throttle(
            await self._request_json(
                "",
                {"function": "TIME_SERIES_INTRADAY", "symbol": symbol, "interval": interval},
                timeout=self.policy.quotes_timeout,
            )
        )
        series = data.get(f"Time Series ({interval})")
        if not isinstance(series, dict):
            raise MalformedPayloadError(self.name, "intraday response without time series")

        candles = []
        for stamp, bar in series.items():
            try:
                opened = EASTERN.localize(datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S"))
                candles.append(
                    Candle(
                        timestamp=int(opened.timestamp() * 1000),
                        open=float(bar["1. open"]),
                        high=float(bar["2. high"]),
                        low=float(bar["3. low"]),
                        close=float(bar["4. close"]),
                        volume=to_int(bar.get("5. volume")),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                self._skip_item("candle", e)
        candles.sort(key=lambda c: c.timestamp)
        return candles[-limit:]
