"""
Base provider adapter: rate limiting, timeouts, retries and result wrapping
"""

import asyncio
import random
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Generic,
    List,
    Optional,
    Sequence,
    TypeVar,
)

import httpx
import structlog

from marketpulse.core.exceptions import (
    AuthMissingError,
    MalformedPayloadError,
    ProviderConnectionError,
    ProviderError,
    ProviderHttpError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    UnauthorizedError,
    is_transient,
)
from marketpulse.core.rate_limiter import TokenBucket
from marketpulse.models.market_data import Candle, Quote, SymbolListing
from marketpulse.models.news import NewsItem
from marketpulse.news.fingerprint import make_news_id

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Capability names
NEWS = "news"
QUOTES = "quotes"
CANDLES = "candles"
SYMBOLS = "symbols"
TOP_GAINERS = "top_gainers"


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    """Outcome of one adapter call; exactly one of value/error is meaningful"""

    provider: str
    value: Optional[T] = None
    error: Optional[ProviderError] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, provider: str, value: T, attempts: int = 1) -> "ProviderResult[T]":
        return cls(provider=provider, value=value, attempts=attempts)

    @classmethod
    def failure(cls, provider: str, error: ProviderError, attempts: int = 1) -> "ProviderResult[T]":
        return cls(provider=provider, error=error, attempts=attempts)


@dataclass(frozen=True)
class AdapterPolicy:
    """Timeouts and retry policy shared by every adapter"""

    news_timeout: float = 5.0
    quotes_timeout: float = 3.0
    master_timeout: float = 10.0
    max_retries: int = 2
    retry_base_delay: float = 0.3
    retry_max_delay: float = 5.0
    rate_limit_max_wait: float = 1.0

    @classmethod
    def from_settings(cls, settings) -> "AdapterPolicy":
        return cls(
            news_timeout=settings.NEWS_TIMEOUT,
            quotes_timeout=settings.QUOTES_TIMEOUT,
            master_timeout=settings.MASTER_TIMEOUT,
            max_retries=settings.PROVIDER_MAX_RETRIES,
            retry_base_delay=settings.PROVIDER_RETRY_BASE_DELAY,
            retry_max_delay=settings.PROVIDER_RETRY_MAX_DELAY,
            rate_limit_max_wait=settings.RATE_LIMIT_MAX_WAIT,
        )


class ProviderAdapter:
    """
    Base class for upstream adapters.

    Public ``get_*`` methods never raise provider errors: every outcome is
    returned as a ProviderResult. Transient failures are retried here and
    nowhere else; exhausting the retries yields ProviderUnavailableError.
    Cancellation propagates unchanged and nothing partial is returned.
    """

    name: str = "base"
    capabilities: FrozenSet[str] = frozenset()

    def __init__(
        self,
        api_key: str,
        base_url: str,
        rate_per_minute: float,
        burst: int = 1,
        policy: Optional[AdapterPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.policy = policy or AdapterPolicy()
        self.bucket = TokenBucket(
            self.name,
            rate_per_minute=rate_per_minute,
            burst=burst,
            max_wait=self.policy.rate_limit_max_wait,
            sleep=sleep,
        )
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self.skipped_items = 0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    # Public surface

    async def get_news(
        self, limit: int = 50, symbols: Optional[Sequence[str]] = None
    ) -> ProviderResult[List[NewsItem]]:
        return await self._call(NEWS, lambda: self._fetch_news(limit, symbols))

    async def get_quotes(self, symbols: Sequence[str]) -> ProviderResult[List[Quote]]:
        wanted = _unique_upper(symbols)
        if not wanted:
            return ProviderResult.success(self.name, [])
        return await self._call(QUOTES, lambda: self._fetch_quotes(wanted))

    async def get_candles(
        self, symbol: str, interval: str = "5min", limit: int = 100
    ) -> ProviderResult[List[Candle]]:
        return await self._call(
            CANDLES,
            lambda: self._fetch_candles(symbol.upper(), interval, limit),
        )

    async def list_symbols(self) -> ProviderResult[List[SymbolListing]]:
        return await self._call(SYMBOLS, self._fetch_symbols)

    async def get_top_gainers(self, limit: int = 20) -> ProviderResult[List[str]]:
        return await self._call(TOP_GAINERS, lambda: self._fetch_top_gainers(limit))

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    # Adapter hooks

    async def _fetch_news(self, limit: int, symbols: Optional[Sequence[str]]) -> List[NewsItem]:
        raise NotImplementedError

    async def _fetch_quotes(self, symbols: List[str]) -> List[Quote]:
        raise NotImplementedError

    async def _fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        raise NotImplementedError

    async def _fetch_symbols(self) -> List[SymbolListing]:
        raise NotImplementedError

    async def _fetch_top_gainers(self, limit: int) -> List[str]:
        raise NotImplementedError

    def _auth_params(self) -> Dict[str, str]:
        return {}

    # Plumbing

    async def _call(
        self, capability: str, fetch: Callable[[], Awaitable[T]]
    ) -> ProviderResult[T]:
        if not self.enabled:
            return ProviderResult.failure(self.name, AuthMissingError(self.name), attempts=0)
        if not self.supports(capability):
            return ProviderResult.failure(
                self.name,
                ProviderError(self.name, f"{self.name} does not support {capability}"),
                attempts=0,
            )

        attempt = 0
        while True:
            attempt += 1
            try:
                value = await fetch()
                return ProviderResult.success(self.name, value, attempts=attempt)
            except ProviderError as e:
                if not is_transient(e):
                    logger.warning(
                        "Provider call failed",
                        provider=self.name,
                        capability=capability,
                        error=e.error_name,
                        detail=e.detail,
                    )
                    return ProviderResult.failure(self.name, e, attempts=attempt)
                if attempt > self.policy.max_retries:
                    logger.warning(
                        "Provider unavailable after retries",
                        provider=self.name,
                        capability=capability,
                        attempts=attempt,
                        error=e.detail,
                    )
                    return ProviderResult.failure(
                        self.name,
                        ProviderUnavailableError(
                            self.name, f"{self.name} {capability} failed after {attempt} attempts", e
                        ),
                        attempts=attempt,
                    )
                delay = self._backoff_delay(attempt)
                logger.debug(
                    "Retrying provider call",
                    provider=self.name,
                    capability=capability,
                    attempt=attempt,
                    delay_seconds=round(delay, 3),
                    error=e.detail,
                )
                await self._sleep(delay)

    def _backoff_delay(self, attempt: int) -> float:
        delay = min(
            self.policy.retry_max_delay, self.policy.retry_base_delay * (2 ** (attempt - 1))
        )
        return delay * (1 + random.uniform(0, 0.1))

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"User-Agent": "marketpulse/1.0"})
            self._owns_client = True
        return self._client

    async def _request_json(
        self, path: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Any:
        """GET a JSON document, mapping every failure onto the provider taxonomy"""
        await self.bucket.acquire()

        if not path:
            url = self.base_url
        elif path.startswith("http"):
            url = path
        else:
            url = f"{self.base_url}/{path.lstrip('/')}"
        query = dict(params or {})
        query.update(self._auth_params())
        timeout = timeout or self.policy.quotes_timeout

        try:
            response = await self._get_client().get(url, params=query, timeout=timeout)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(self.name, f"{self.name} timed out after {timeout}s") from e
        except httpx.RequestError as e:
            raise ProviderConnectionError(self.name, f"{self.name} request failed: {e}") from e

        if response.status_code in (401, 403):
            raise UnauthorizedError(
                self.name, f"{self.name} rejected credential",
                additional_context={"status": response.status_code},
            )
        if response.status_code == 429:
            raise RateLimitedError(self.name, f"{self.name} upstream rate limit (429)")
        if response.status_code >= 400:
            raise ProviderHttpError(self.name, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayloadError(self.name, f"{self.name} returned non-JSON body") from e

    def _expect_list(self, payload: Any, what: str) -> list:
        if not isinstance(payload, list):
            raise MalformedPayloadError(
                self.name, f"{self.name} {what}: expected list, got {type(payload).__name__}"
            )
        return payload

    def _expect_dict(self, payload: Any, what: str) -> dict:
        if not isinstance(payload, dict):
            raise MalformedPayloadError(
                self.name, f"{self.name} {what}: expected object, got {type(payload).__name__}"
            )
        return payload

    def _skip_item(self, what: str, error: Exception) -> None:
        self.skipped_items += 1
        logger.debug("Skipping malformed item", provider=self.name, item=what, error=str(error))


def _unique_upper(symbols: Sequence[str]) -> List[str]:
    seen = []
    for symbol in symbols:
        cleaned = (symbol or "").strip().upper()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def to_float(value: Any) -> Optional[float]:
    """Parse provider numerics that may arrive as strings like '1.23%'"""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").replace(",", "")
    return float(value)


def to_int(value: Any) -> int:
    parsed = to_float(value)
    return int(parsed) if parsed is not None else 0


def build_news_item(
    provider: str,
    title: str,
    summary: str,
    url: str,
    source: str,
    published_at,
    symbols: Sequence[str] = (),
) -> NewsItem:
    """Canonical NewsItem with its dedup fingerprint as id"""
    title = (title or "").strip()
    if not title:
        raise ValueError("news item without title")
    return NewsItem(
        id=make_news_id(title, url or "", published_at),
        title=title,
        summary=(summary or "").strip(),
        url=(url or "").strip(),
        source=(source or provider).strip(),
        published_at=published_at,
        provider_symbols=tuple(_unique_upper(symbols)),
        provider=provider,
    )
