"""
Test provider adapters against mocked HTTP transports
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock
from urllib.parse import unquote

import httpx
import pytest

from marketpulse.core.exceptions import (
    AuthMissingError,
    ProviderConnectionError,
    ProviderUnavailableError,
    RateLimitedError,
    UnauthorizedError,
)
from marketpulse.models.market_data import SecurityType
from marketpulse.providers.base import AdapterPolicy, to_float, to_int
from marketpulse.providers.finnhub import FinnhubAdapter
from marketpulse.providers.fmp import FmpAdapter, parse_eastern
from marketpulse.providers.iex import IexAdapter

FMP_BASE = "https://financialmodelingprep.com/api/v3"
FINNHUB_BASE = "https://finnhub.io/api/v1"


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def fmp_adapter(handler, api_key="fmp-key", **kwargs):
    sleep = AsyncMock()
    adapter = FmpAdapter(
        api_key, FMP_BASE, 300, 10, AdapterPolicy(**kwargs), make_client(handler), sleep=sleep
    )
    return adapter, sleep


def fmp_quote(symbol, price=101.5, previous_close=100.0, volume=12_000):
    return {
        "symbol": symbol,
        "price": price,
        "change": price - previous_close,
        "changesPercentage": (price - previous_close) / previous_close * 100,
        "volume": volume,
        "timestamp": 1_760_536_800,
        "previousClose": previous_close,
    }


class TestValueParsing:
    def test_to_float(self):
        assert to_float("1.23%") == 1.23
        assert to_float("1,234.5") == 1234.5
        assert to_float("") is None
        assert to_float(None) is None
        assert to_int("42.9") == 42
        assert to_int(None) == 0

    def test_parse_eastern(self):
        parsed = parse_eastern("2026-10-15 10:00:00")
        assert parsed == datetime(2026, 10, 15, 14, 0, tzinfo=timezone.utc)

        winter = parse_eastern("2026-12-15 10:00:00")
        assert winter == datetime(2026, 12, 15, 15, 0, tzinfo=timezone.utc)


class TestFmpAdapter:
    """Test FMP parsing and the shared retry plumbing"""

    @pytest.mark.asyncio
    async def test_get_quotes(self):
        seen = []

        def handler(request):
            seen.append(request)
            symbols = unquote(request.url.path).rsplit("/", 1)[-1].split(",")
            return httpx.Response(200, json=[fmp_quote(s) for s in symbols])

        adapter, _ = fmp_adapter(handler)
        result = await adapter.get_quotes(["aapl", "MSFT", "AAPL"])

        assert result.ok
        assert [q.symbol for q in result.value] == ["AAPL", "MSFT"]
        quote = result.value[0]
        assert quote.price == 101.5
        assert quote.previous_close == 100.0
        assert quote.last_update == 1_760_536_800_000
        assert quote.source == "fmp"
        assert seen[0].url.params["apikey"] == "fmp-key"

    @pytest.mark.asyncio
    async def test_empty_symbol_list_makes_no_request(self):
        handler = AsyncMock()
        adapter, _ = fmp_adapter(handler)

        result = await adapter.get_quotes(["", "  "])

        assert result.ok and result.value == []
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_items_are_skipped(self):
        def handler(request):
            return httpx.Response(200, json=[fmp_quote("AAPL"), {"symbol": "MSFT", "price": "n/a"}])

        adapter, _ = fmp_adapter(handler)
        result = await adapter.get_quotes(["AAPL", "MSFT"])

        assert [q.symbol for q in result.value] == ["AAPL"]
        assert adapter.skipped_items == 1

    @pytest.mark.asyncio
    async def test_rate_limited_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        adapter, sleep = fmp_adapter(handler)
        result = await adapter.get_quotes(["AAPL"])

        assert isinstance(result.error, RateLimitedError)
        assert result.attempts == 1
        assert len(calls) == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        adapter, _ = fmp_adapter(lambda request: httpx.Response(401))
        result = await adapter.get_quotes(["AAPL"])

        assert isinstance(result.error, UnauthorizedError)
        assert result.error.additional_context["status"] == 401

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        responses = [httpx.Response(503), httpx.Response(200, json=[fmp_quote("AAPL")])]

        adapter, sleep = fmp_adapter(lambda request: responses.pop(0))
        result = await adapter.get_quotes(["AAPL"])

        assert result.ok
        assert result.attempts == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeouts_exhaust_into_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        adapter, sleep = fmp_adapter(handler, max_retries=2)
        result = await adapter.get_quotes(["AAPL"])

        assert isinstance(result.error, ProviderUnavailableError)
        assert result.attempts == 3
        assert sleep.await_count == 2
        assert "timed out" in str(result.error.last_error)

    @pytest.mark.asyncio
    async def test_decoding_error_is_a_failed_result(self):
        def handler(request):
            raise httpx.DecodingError("bad gzip stream", request=request)

        adapter, _ = fmp_adapter(handler, max_retries=0)
        result = await adapter.get_quotes(["AAPL"])

        assert not result.ok
        assert isinstance(result.error, ProviderUnavailableError)
        assert isinstance(result.error.last_error, ProviderConnectionError)
        assert "bad gzip" in str(result.error.last_error)

    @pytest.mark.asyncio
    async def test_wrong_root_shape(self):
        adapter, _ = fmp_adapter(lambda request: httpx.Response(200, json={"error": "x"}), max_retries=0)
        result = await adapter.get_quotes(["AAPL"])

        assert isinstance(result.error, ProviderUnavailableError)
        assert result.error.last_error.error_name == "MalformedPayload"

    @pytest.mark.asyncio
    async def test_disabled_without_key(self):
        handler = AsyncMock()
        adapter, _ = fmp_adapter(handler, api_key="")

        result = await adapter.get_news()

        assert not adapter.enabled
        assert isinstance(result.error, AuthMissingError)
        assert result.attempts == 0
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_news(self):
        def handler(request):
            assert request.url.path.endswith("/stock_news")
            return httpx.Response(
                200,
                json=[
                    {
                        "symbol": "NVDA",
                        "publishedDate": "2026-10-15 10:00:00",
                        "title": "  Nvidia unveils new chip  ",
                        "text": "Details inside.",
                        "url": "https://example.com/nvda?utm=1",
                        "site": "Example",
                    },
                    {"symbol": "AAPL", "publishedDate": "2026-10-15 10:00:00", "title": ""},
                ],
            )

        adapter, _ = fmp_adapter(handler)
        result = await adapter.get_news(limit=10)

        assert len(result.value) == 1
        item = result.value[0]
        assert item.title == "Nvidia unveils new chip"
        assert item.provider_symbols == ("NVDA",)
        assert item.published_at == datetime(2026, 10, 15, 14, 0, tzinfo=timezone.utc)
        assert item.provider == "fmp"
        assert item.source == "Example"
        assert len(item.id) == 20

    @pytest.mark.asyncio
    async def test_symbols_and_gainers(self):
        def handler(request):
            if request.url.path.endswith("/stock/list"):
                return httpx.Response(
                    200,
                    json=[
                        {"symbol": "AAPL", "name": "Apple Inc.", "exchangeShortName": "NASDAQ", "type": "stock"},
                        {"symbol": "SPY", "name": "SPDR S&P 500", "exchangeShortName": "AMEX", "type": "etf"},
                        {"symbol": "VOD.L", "name": "Vodafone", "exchangeShortName": "LSE", "type": "stock"},
                    ],
                )
            return httpx.Response(200, json=[{"symbol": "smci"}, {"symbol": "SMCI"}, {"symbol": "PLTR"}])

        adapter, _ = fmp_adapter(handler)
        listings = (await adapter.list_symbols()).value
        gainers = (await adapter.get_top_gainers(limit=5)).value

        assert [l.symbol for l in listings] == ["AAPL", "SPY"]
        assert listings[1].type == SecurityType.ETF
        assert gainers == ["SMCI", "PLTR"]


class TestFinnhubAdapter:
    def adapter(self, handler):
        return FinnhubAdapter(
            "fh-key", FINNHUB_BASE, 60, 5, AdapterPolicy(), make_client(handler), sleep=AsyncMock()
        )

    @pytest.mark.asyncio
    async def test_symbols_filtered_by_type_and_venue(self):
        def handler(request):
            assert request.url.params["token"] == "fh-key"
            return httpx.Response(
                200,
                json=[
                    {"symbol": "AAPL", "description": "APPLE INC", "type": "Common Stock", "mic": "XNAS"},
                    {"symbol": "QQQ", "description": "INVESCO QQQ TRUST", "type": "ETP", "mic": "XNAS"},
                    {"symbol": "ABCDW", "description": "ABC WARRANT", "type": "Warrant", "mic": "XNAS"},
                    {"symbol": "OTCX", "description": "OTC CO", "type": "Common Stock", "mic": "OOTC"},
                ],
            )

        result = await self.adapter(handler).list_symbols()

        assert [(l.symbol, l.exchange, l.type) for l in result.value] == [
            ("AAPL", "NASDAQ", SecurityType.STOCK),
            ("QQQ", "NASDAQ", SecurityType.ETF),
        ]

    @pytest.mark.asyncio
    async def test_news_uses_epoch_seconds(self):
        def handler(request):
            return httpx.Response(
                200,
                json=[
                    {
                        "headline": "Microsoft expands cloud deal",
                        "summary": "",
                        "url": "https://example.com/msft",
                        "source": "Wire",
                        "datetime": 1_760_536_800,
                        "related": "MSFT,",
                    }
                ],
            )

        result = await self.adapter(handler).get_news()
        item = result.value[0]

        assert item.published_at == datetime.fromtimestamp(1_760_536_800, tz=timezone.utc)
        assert item.provider_symbols == ("MSFT",)

    @pytest.mark.asyncio
    async def test_quotes_skip_zero_prices(self):
        def handler(request):
            if request.url.params["symbol"] == "AAPL":
                return httpx.Response(200, json={"c": 230.1, "d": 1.1, "dp": 0.48, "pc": 229.0, "t": 1_760_536_800})
            return httpx.Response(200, json={"c": 0, "pc": 0})

        result = await self.adapter(handler).get_quotes(["AAPL", "NOPE"])

        assert [q.symbol for q in result.value] == ["AAPL"]
        assert result.value[0].previous_close == 229.0

    def test_stream_url(self):
        adapter = self.adapter(lambda request: httpx.Response(200))
        assert adapter.stream_url("wss://ws.finnhub.io") == "wss://ws.finnhub.io?token=fh-key"


class TestCapabilities:
    @pytest.mark.asyncio
    async def test_unsupported_capability(self):
        adapter = IexAdapter("iex-key", "https://cloud.iexapis.com/stable", 100, 5, sleep=AsyncMock())

        result = await adapter.list_symbols()

        assert not result.ok
        assert "does not support" in result.error.detail
        assert result.attempts == 0
        await adapter.close()
