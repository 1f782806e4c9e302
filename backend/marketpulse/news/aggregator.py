"""
News Aggregator - parallel provider fan-out, deduplication and normalization
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import structlog

from marketpulse.core.exceptions import ProviderError
from marketpulse.models.news import NewsItem
from marketpulse.news.fingerprint import DEDUP_BUCKET_SECONDS, DedupKey, dedup_key
from marketpulse.providers.base import NEWS, ProviderAdapter, ProviderResult
from marketpulse.providers.pool import ProviderClientPool
from marketpulse.state.store import StateStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderFailure:
    provider: str
    kind: str
    message: str
    code: Optional[str] = None

    @classmethod
    def from_error(cls, error: ProviderError) -> "ProviderFailure":
        return cls(
            provider=error.provider,
            kind=error.error_name,
            message=error.detail,
            code=error.error_code,
        )

    def to_dict(self) -> dict:
        return {"provider": self.provider, "kind": self.kind, "message": self.message, "code": self.code}


@dataclass(frozen=True)
class NewsRefresh:
    news: List[NewsItem]
    provider_counts: Dict[str, int]
    errors: List[ProviderFailure] = field(default_factory=list)
    new_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "news": [item.to_dict() for item in self.news],
            "provider_counts": dict(self.provider_counts),
            "errors": [error.to_dict() for error in self.errors],
            "new_ids": list(self.new_ids),
        }


@dataclass(frozen=True)
class NewsFilter:
    source: Optional[str] = None
    provider: Optional[str] = None
    symbol: Optional[str] = None
    general: Optional[bool] = None
    since: Optional[datetime] = None
    limit: Optional[int] = None


def merge_news(
    results: Sequence[ProviderResult],
    priority_of: Callable[[str], int],
    bucket_seconds: int = DEDUP_BUCKET_SECONDS,
    cutoff: Optional[datetime] = None,
) -> List[NewsItem]:
    """
    Deduplicate successful results by (title, host+path, 5-minute bucket).

    On collision the item from the highest-priority provider wins; within one
    provider the first occurrence wins. The output is sorted by publish time,
    newest first, with id as the final tie-break, so it depends only on the
    adapter outputs and the priority order.
    """
    ordered = sorted(
        (result for result in results if result.ok),
        key=lambda result: (priority_of(result.provider), result.provider),
    )
    winners: Dict[DedupKey, NewsItem] = {}
    for result in ordered:
        for item in result.value or []:
            if cutoff is not None and item.published_at < cutoff:
                continue
            key = dedup_key(item.title, item.url, item.published_at, bucket_seconds)
            if key not in winners:
                winners[key] = item
    return sorted(winners.values(), key=lambda item: (item.published_at, item.id), reverse=True)


class NewsAggregator:
    """Fans out to every enabled news adapter and publishes into the store"""

    def __init__(
        self,
        pool: ProviderClientPool,
        store: StateStore,
        default_limit: int = 100,
        retention_days: int = 14,
        bucket_seconds: int = DEDUP_BUCKET_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.pool = pool
        self.store = store
        self.default_limit = default_limit
        self.retention = timedelta(days=retention_days)
        self.bucket_seconds = bucket_seconds
        self._clock = clock
        self.refreshes = 0
        self.last_refresh: Optional[float] = None

    async def refresh(self, limit: Optional[int] = None) -> NewsRefresh:
        """One fan-out round; never raises for provider failures"""
        limit = limit or self.default_limit
        adapters = self.pool.adapters_for(NEWS)
        results = await asyncio.gather(*(self._fetch(adapter, limit) for adapter in adapters))

        provider_counts: Dict[str, int] = {}
        errors: List[ProviderFailure] = []
        for result in results:
            self.pool.record_result(result)
            if result.ok:
                provider_counts[result.provider] = len(result.value or [])
            else:
                provider_counts[result.provider] = 0
                errors.append(ProviderFailure.from_error(result.error))

        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        merged = merge_news(
            results, self.pool.priority_of, self.bucket_seconds, cutoff=now - self.retention
        )
        new_ids = self.store.upsert_news(merged, self.pool.priority_of)
        self.store.set_provider_health(self.pool.get_health())

        self.refreshes += 1
        self.last_refresh = self._clock()
        logger.info(
            "News refresh complete",
            providers=len(adapters),
            merged=len(merged),
            new_items=len(new_ids),
            errors=len(errors),
        )
        return NewsRefresh(
            news=merged[:limit],
            provider_counts=provider_counts,
            errors=errors,
            new_ids=new_ids,
        )

    async def _fetch(self, adapter: ProviderAdapter, limit: int) -> ProviderResult:
        try:
            return await adapter.get_news(limit=limit)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Adapter contract broken; report it as that provider's failure
            logger.exception("News adapter raised", provider=adapter.name)
            return ProviderResult.failure(
                adapter.name, ProviderError(adapter.name, f"unexpected adapter error: {e}")
            )

    def get_news(self, filters: Optional[NewsFilter] = None) -> List[NewsItem]:
        filters = filters or NewsFilter()
        items: Iterable[NewsItem] = self.store.get_news()
        selected = []
        for item in items:
            if filters.source and item.source.lower() != filters.source.lower():
                continue
            if filters.provider and item.provider != filters.provider:
                continue
            if filters.since and item.published_at < filters.since:
                continue
            verdict = self.store.get_resolution(item.id)
            if filters.general is not None:
                is_general = bool(verdict and verdict.is_general)
                if is_general != filters.general:
                    continue
            if filters.symbol:
                wanted = filters.symbol.upper()
                ticker = verdict.ticker if verdict else None
                if ticker != wanted and wanted not in item.provider_symbols:
                    continue
            selected.append(item)
            if filters.limit is not None and len(selected) >= filters.limit:
                break
        return selected

    def get_stats(self) -> Dict[str, Any]:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        by_source: Dict[str, int] = {}
        by_provider: Dict[str, int] = {}
        by_age = {"last_hour": 0, "last_day": 0, "last_week": 0, "older": 0}
        with_tickers = 0
        general = 0

        for item in self.store.get_news():
            by_source[item.source] = by_source.get(item.source, 0) + 1
            by_provider[item.provider] = by_provider.get(item.provider, 0) + 1
            age = now - item.published_at
            if age <= timedelta(hours=1):
                by_age["last_hour"] += 1
            elif age <= timedelta(days=1):
                by_age["last_day"] += 1
            elif age <= timedelta(days=7):
                by_age["last_week"] += 1
            else:
                by_age["older"] += 1
            verdict = self.store.get_resolution(item.id)
            if verdict is not None and verdict.ticker:
                with_tickers += 1
            elif verdict is not None and verdict.is_general:
                general += 1

        return {
            "total": sum(by_source.values()),
            "by_source": by_source,
            "by_provider": by_provider,
            "by_age": by_age,
            "with_tickers": with_tickers,
            "general": general,
            "refreshes": self.refreshes,
            "last_refresh": self.last_refresh,
        }
