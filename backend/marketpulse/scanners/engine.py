"""
Scanner Engine - evaluates every preset over a consistent tick snapshot
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from marketpulse.core.logging_decorators import log_execution_time
from marketpulse.models.market_data import Tick
from marketpulse.models.scanner import ScannerPreset, ScannerResult, ScannerRow
from marketpulse.scanners.presets import MIN_TICKS, PRESETS, ScannerThresholds, SymbolView
from marketpulse.state.store import StateStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ScanSnapshot:
    """Copy of everything one scan reads, taken at a single instant"""

    ticks: Mapping[str, Tuple[Tick, ...]]
    now_ms: int
    previous_closes: Mapping[str, float] = field(default_factory=dict)
    news_published_ms: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_store(
        cls,
        store: StateStore,
        universe: Iterable[str],
        now_ms: int,
        news_window_minutes: float = 30.0,
    ) -> "ScanSnapshot":
        symbols = list(universe)
        since = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc) - timedelta(
            minutes=news_window_minutes
        )
        latest_news: Dict[str, int] = {}
        for item, verdict in store.recent_resolved_news(since):
            published_ms = int(item.published_at.timestamp() * 1000)
            if published_ms > now_ms:
                continue
            if published_ms > latest_news.get(verdict.ticker, -1):
                latest_news[verdict.ticker] = published_ms
        closes = store.previous_closes()
        return cls(
            ticks=store.snapshot_ticks(symbols),
            now_ms=now_ms,
            previous_closes={s: closes[s] for s in symbols if s in closes},
            news_published_ms=latest_news,
        )


class ScannerEngine:
    """
    Pure, synchronous scanner evaluation.

    ``run`` performs no I/O; every preset reads the same snapshot and rows
    are ordered by score descending with symbol ascending as tie-break.
    """

    def __init__(self, thresholds: Optional[ScannerThresholds] = None, limit: int = 50):
        self.thresholds = thresholds or ScannerThresholds()
        self.limit = limit
        self.runs = 0

    @classmethod
    def from_settings(cls, settings) -> "ScannerEngine":
        return cls(ScannerThresholds.from_settings(settings), limit=settings.SCANNER_LIMIT)

    @log_execution_time(logger)
    def run(
        self,
        snapshot: ScanSnapshot,
        presets: Optional[Sequence[ScannerPreset]] = None,
        limit: Optional[int] = None,
    ) -> Dict[ScannerPreset, ScannerResult]:
        presets = list(presets or PRESETS.keys())
        limit = limit or self.limit
        generated_at = datetime.fromtimestamp(snapshot.now_ms / 1000, tz=timezone.utc)
        rows: Dict[ScannerPreset, List[ScannerRow]] = {preset: [] for preset in presets}

        for symbol in sorted(snapshot.ticks):
            ticks = snapshot.ticks[symbol]
            if not ticks:
                continue
            view = SymbolView(
                symbol=symbol,
                ticks=ticks,
                now_ms=snapshot.now_ms,
                previous_close=snapshot.previous_closes.get(symbol),
                news_published_ms=snapshot.news_published_ms.get(symbol),
            )
            for preset in presets:
                if len(ticks) < MIN_TICKS[preset]:
                    continue
                row = PRESETS[preset](view, self.thresholds)
                if row is not None:
                    rows[preset].append(row)

        self.runs += 1
        results = {
            preset: ScannerResult(
                preset=preset,
                rows=tuple(sorted(found, key=lambda row: row.sort_key)[:limit]),
                generated_at=generated_at,
            )
            for preset, found in rows.items()
        }
        logger.debug(
            "Scan complete",
            symbols=len(snapshot.ticks),
            hits={preset.value: len(result.rows) for preset, result in results.items()},
        )
        return results
