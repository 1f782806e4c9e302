"""
IEX Cloud adapter - free web quotes, market news and intraday prices
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytz
import structlog

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
BATCH_SIZE = 100


class IexAdapter(ProviderAdapter):
    """Free web-quote provider"""

    name = "iex"
    capabilities = frozenset({NEWS, QUOTES, CANDLES})

    def _auth_params(self) -> Dict[str, str]:
        return {"token": self.api_key}

    async def _fetch_news(self, limit: int, symbols: Optional[Sequence[str]]) -> List[NewsItem]:
        payload = await self._request_json(
            f"stock/market/news/last/{limit}", timeout=self.policy.news_timeout
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
                        published_at=datetime.fromtimestamp(int(raw["datetime"]) / 1000, tz=timezone.utc),
                        symbols=[s for s in related.split(",") if s],
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                self._skip_item("news", e)
        return items[:limit]

    async def _fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        quotes = []
        for start in range(0, len(symbols), BATCH_SIZE):
            batch = symbols[start : start + BATCH_SIZE]
            payload = self._expect_dict(
                await self._request_json(
                    "stock/market/batch",
                    {"symbols": ",".join(batch), "types": "quote"},
                    timeout=self.policy.quotes_timeout,
                ),
                "batch",
            )
            for symbol, entry in payload.items():
                try:
                    raw = entry["quote"]
                    price = to_float(raw.get("latestPrice"))
                    if not price:
                        continue
                    change_fraction = to_float(raw.get("changePercent")) or 0.0
                    quotes.append(
                        Quote(
                            symbol=symbol.upper(),
                            price=price,
                            change=to_float(raw.get("change")) or 0.0,
                            change_percent=round(change_fraction * 100, 4),
                            volume=to_int(raw.get("latestVolume") or raw.get("volume")),
                            last_update=to_int(raw.get("latestUpdate")),
                            previous_close=to_float(raw.get("previousClose")),
                            source=self.name,
                        )
                    )
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    self._skip_item("quote", e)
        return quotes

    async def _fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        payload = await self._request_json(
            f"stock/{symbol}/intraday-prices",
            {"chartLast": limit},
            timeout=self.policy.quotes_timeout,
        )
        candles = []
        for raw in self._expect_list(payload, "intraday-prices"):
            try:
                if raw.get("close") is None:
                    continue
                opened = EASTERN.localize(
                    datetime.strptime(f"{raw['date']} {raw['minute']}", "%Y-%m-%d %H:%M")
                )
                candles.append(
                    Candle(
                        timestamp=int(opened.timestamp() * 1000),
                        open=float(raw["open"]),
                        high=float(raw["high"]),
                        low=float(raw["low"]),
                        close=float(raw["close"]),
                        volume=to_int(raw.get("volume")),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                self._skip_item("candle", e)
        return candles[-limit:]
