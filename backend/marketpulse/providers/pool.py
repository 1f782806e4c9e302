"""
Provider Client Pool - owns every adapter, their health, and quote fallback
"""

import asyncio
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import httpx
import structlog

from marketpulse.core.exceptions import (
    AuthMissingError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitedError,
    UnauthorizedError,
)
from marketpulse.models.market_data import Quote, SymbolListing
from marketpulse.models.status import ProviderHealth, ProviderStatus
from marketpulse.providers.alphavantage import AlphaVantageAdapter
from marketpulse.providers.base import (
    QUOTES,
    SYMBOLS,
    TOP_GAINERS,
    AdapterPolicy,
    ProviderAdapter,
    ProviderResult,
)
from marketpulse.providers.finnhub import FinnhubAdapter
from marketpulse.providers.fmp import FmpAdapter
from marketpulse.providers.iex import IexAdapter

logger = structlog.get_logger(__name__)

POOL = "pool"

# Seconds a provider is skipped after a failure of each kind
RATE_LIMIT_BACKOFF = 60.0
UNAUTHORIZED_BACKOFF = 300.0
FAILURE_BACKOFF = 30.0
FAILURES_BEFORE_BACKOFF = 3


def build_adapters(settings, client: Optional[httpx.AsyncClient] = None) -> List[ProviderAdapter]:
    """Instantiate every known adapter from settings (disabled ones included)"""
    policy = AdapterPolicy.from_settings(settings)
    return [
        FmpAdapter(
            settings.FMP_API_KEY, settings.FMP_BASE_URL,
            settings.FMP_RATE_LIMIT_RPM, settings.FMP_BURST, policy, client,
        ),
        FinnhubAdapter(
            settings.FINNHUB_API_KEY, settings.FINNHUB_BASE_URL,
            settings.FINNHUB_RATE_LIMIT_RPM, settings.FINNHUB_BURST, policy, client,
        ),
        AlphaVantageAdapter(
            settings.ALPHAVANTAGE_API_KEY, settings.ALPHAVANTAGE_BASE_URL,
            settings.ALPHAVANTAGE_RATE_LIMIT_RPM, settings.ALPHAVANTAGE_BURST, policy, client,
        ),
        IexAdapter(
            settings.IEX_API_KEY, settings.IEX_BASE_URL,
            settings.IEX_RATE_LIMIT_RPM, settings.IEX_BURST, policy, client,
        ),
    ]


class ProviderClientPool:
    """Adapters ordered by configured priority, with per-provider health"""

    def __init__(
        self,
        adapters: Iterable[ProviderAdapter],
        priority: Sequence[str] = ("fmp", "finnhub", "alphavantage", "iex"),
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self.priority = [name.lower() for name in priority]
        self._adapters: Dict[str, ProviderAdapter] = {}
        self.health: Dict[str, ProviderHealth] = {}
        self.auth_missing: List[AuthMissingError] = []

        for adapter in sorted(adapters, key=lambda a: self.priority_of(a.name)):
            self._adapters[adapter.name] = adapter
            health = ProviderHealth(provider=adapter.name)
            if not adapter.enabled:
                health.status = ProviderStatus.DISABLED
                error = AuthMissingError(adapter.name)
                health.last_error = error.detail
                self.auth_missing.append(error)
                logger.warning("Provider disabled", provider=adapter.name, reason="api key missing")
            self.health[adapter.name] = health

    @classmethod
    def from_settings(cls, settings, client: Optional[httpx.AsyncClient] = None) -> "ProviderClientPool":
        return cls(build_adapters(settings, client), priority=settings.PROVIDER_PRIORITY)

    def priority_of(self, name: str) -> int:
        """Lower wins; unknown providers rank after every configured one"""
        try:
            return self.priority.index(name) + 1
        except ValueError:
            return len(self.priority) + 1

    def get(self, name: str) -> Optional[ProviderAdapter]:
        return self._adapters.get(name)

    @property
    def adapters(self) -> List[ProviderAdapter]:
        return list(self._adapters.values())

    def is_available(self, name: str) -> bool:
        adapter = self._adapters.get(name)
        if adapter is None or not adapter.enabled:
            return False
        health = self.health[name]
        if health.backoff_until is not None and self._clock() < health.backoff_until:
            return False
        return True

    def adapters_for(self, capability: str) -> List[ProviderAdapter]:
        """Enabled, non-backed-off adapters supporting a capability, by priority"""
        return [
            adapter
            for adapter in self._adapters.values()
            if adapter.supports(capability) and self.is_available(adapter.name)
        ]

    def record_result(self, result: ProviderResult) -> None:
        health = self.health.get(result.provider)
        if health is None:
            return
        now = self._clock()

        if result.ok:
            health.status = ProviderStatus.HEALTHY
            health.last_success = now
            health.consecutive_failures = 0
            health.backoff_until = None
            return

        error = result.error
        if isinstance(error, AuthMissingError):
            health.status = ProviderStatus.DISABLED
            health.last_error = error.detail
            return

        health.consecutive_failures += 1
        health.last_error = error.detail
        backoff = None
        if isinstance(error, RateLimitedError):
            backoff = RATE_LIMIT_BACKOFF
        elif isinstance(error, UnauthorizedError):
            backoff = UNAUTHORIZED_BACKOFF
        elif health.consecutive_failures >= FAILURES_BEFORE_BACKOFF:
            backoff = FAILURE_BACKOFF

        if backoff is not None:
            health.status = ProviderStatus.BACKOFF
            health.backoff_until = now + backoff
            logger.info(
                "Provider backing off",
                provider=result.provider,
                seconds=backoff,
                error=error.error_name,
            )
        else:
            health.status = ProviderStatus.DEGRADED

    async def get_quotes(self, symbols: Sequence[str]) -> ProviderResult[List[Quote]]:
        """
        Quote snapshots, trying providers in priority order until every
        requested symbol is covered.
        """
        remaining = []
        for symbol in symbols:
            cleaned = (symbol or "").strip().upper()
            if cleaned and cleaned not in remaining:
                remaining.append(cleaned)
        if not remaining:
            return ProviderResult.success(POOL, [])

        quotes: Dict[str, Quote] = {}
        errors: List[ProviderError] = []
        for adapter in self.adapters_for(QUOTES):
            result = await adapter.get_quotes(remaining)
            self.record_result(result)
            if not result.ok:
                errors.append(result.error)
                continue
            for quote in result.value:
                quotes.setdefault(quote.symbol, quote)
            remaining = [s for s in remaining if s not in quotes]
            if not remaining:
                break

        if not quotes and errors:
            return ProviderResult.failure(
                POOL,
                ProviderUnavailableError(POOL, "no quote provider succeeded", errors[-1]),
            )
        return ProviderResult.success(POOL, [quotes[s] for s in quotes])

    async def get_previous_closes(self, symbols: Sequence[str]) -> Dict[str, float]:
        result = await self.get_quotes(symbols)
        if not result.ok:
            logger.warning("Previous close fetch failed", error=result.error.detail)
            return {}
        return {
            quote.symbol: quote.previous_close
            for quote in result.value
            if quote.previous_close
        }

    async def get_top_gainers(self, limit: int = 20) -> ProviderResult[List[str]]:
        adapters = self.adapters_for(TOP_GAINERS)
        if not adapters:
            return ProviderResult.success(POOL, [])
        last_error = None
        for adapter in adapters:
            result = await adapter.get_top_gainers(limit)
            self.record_result(result)
            if result.ok:
                return result
            last_error = result.error
        return ProviderResult.failure(POOL, last_error)

    async def list_symbols(self) -> ProviderResult[List[SymbolListing]]:
        """Merged listings from every symbol-capable provider, priority order"""
        adapters = self.adapters_for(SYMBOLS)
        if not adapters:
            return ProviderResult.failure(
                POOL, ProviderUnavailableError(POOL, "no provider can list symbols")
            )
        results = await asyncio.gather(*(adapter.list_symbols() for adapter in adapters))
        listings: List[SymbolListing] = []
        errors = []
        for result in results:
            self.record_result(result)
            if result.ok:
                listings.extend(result.value)
            else:
                errors.append(result.error)
        if not listings:
            return ProviderResult.failure(
                POOL,
                ProviderUnavailableError(
                    POOL, "symbol listing failed on every provider", errors[-1] if errors else None
                ),
            )
        return ProviderResult.success(POOL, listings)

    def get_health(self) -> Dict[str, dict]:
        return {name: health.to_dict() for name, health in self.health.items()}

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()
