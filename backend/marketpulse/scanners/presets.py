"""
Scanner presets - pure functions over one symbol's tick buffer
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Sequence

import numpy as np

from marketpulse.models.market_data import Tick
from marketpulse.models.scanner import ScannerPreset, ScannerRow

MS_PER_MINUTE = 60_000


@dataclass(frozen=True)
class ScannerThresholds:
    movers_min_pct: float = 2.0
    movers_max_pct: float = 100.0
    rvol_threshold: float = 2.0
    unusual_volume_ratio: float = 2.0
    unusual_volume_window: int = 10
    range_break_min_pct: float = 2.0
    range_break_proximity: float = 0.01
    gap_min_pct: float = 2.0
    news_window_minutes: float = 30.0
    news_decay_minutes: float = 60.0
    news_momentum_min_score: float = 30.0

    @classmethod
    def from_settings(cls, settings) -> "ScannerThresholds":
        return cls(
            movers_min_pct=settings.MOVERS_MIN_PCT,
            movers_max_pct=settings.MOVERS_MAX_PCT,
            rvol_threshold=settings.RVOL_THRESHOLD,
            unusual_volume_ratio=settings.UNUSUAL_VOLUME_RATIO,
            range_break_min_pct=settings.RANGE_BREAK_MIN_PCT,
            gap_min_pct=settings.GAP_MIN_PCT,
            news_momentum_min_score=settings.NEWS_MOMENTUM_MIN_SCORE,
        )


@dataclass(frozen=True)
class SymbolView:
    """Everything a preset may look at for one symbol"""

    symbol: str
    ticks: Sequence[Tick]
    now_ms: int
    previous_close: Optional[float] = None
    news_published_ms: Optional[int] = None
    prices: np.ndarray = field(init=False, repr=False, compare=False)
    volumes: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "prices", np.array([t.price for t in self.ticks], dtype=float))
        object.__setattr__(self, "volumes", np.array([t.volume for t in self.ticks], dtype=float))


def _pct(current: float, reference: float) -> float:
    return (current - reference) / reference * 100.0


def movers(view: SymbolView, limits: ScannerThresholds) -> Optional[ScannerRow]:
    first, last = float(view.prices[0]), float(view.prices[-1])
    change_pct = _pct(last, first)
    if not limits.movers_min_pct <= abs(change_pct) <= limits.movers_max_pct:
        return None
    return ScannerRow(
        view.symbol,
        round(abs(change_pct), 4),
        {
            "price": last,
            "change": round(last - first, 4),
            "change_percent": round(change_pct, 4),
            "volume": int(view.volumes.sum()),
        },
    )


def rvol(view: SymbolView, limits: ScannerThresholds) -> Optional[ScannerRow]:
    average = float(view.volumes.mean())
    if average <= 0:
        return None
    current = float(view.volumes[-1])
    ratio = current / average
    if ratio < limits.rvol_threshold:
        return None
    return ScannerRow(
        view.symbol,
        round(ratio, 4),
        {"price": float(view.prices[-1]), "current_volume": int(current), "average_volume": round(average, 2)},
    )


def unusual_volume(view: SymbolView, limits: ScannerThresholds) -> Optional[ScannerRow]:
    window = limits.unusual_volume_window
    recent = float(view.volumes[-window:].mean())
    prior = float(view.volumes[-2 * window : -window].mean())
    if prior <= 0:
        return None
    ratio = recent / prior
    if ratio < limits.unusual_volume_ratio:
        return None
    return ScannerRow(
        view.symbol,
        round(ratio, 4),
        {"price": float(view.prices[-1]), "recent_volume": round(recent, 2), "prior_volume": round(prior, 2)},
    )


def range_break(view: SymbolView, limits: ScannerThresholds) -> Optional[ScannerRow]:
    high, low = float(view.prices.max()), float(view.prices.min())
    current = float(view.prices[-1])
    range_pct = _pct(high, low)
    if range_pct < limits.range_break_min_pct:
        return None
    if current >= high * (1 - limits.range_break_proximity):
        direction = "high"
    elif current <= low * (1 + limits.range_break_proximity):
        direction = "low"
    else:
        return None
    return ScannerRow(
        view.symbol,
        round(range_pct, 4),
        {"price": current, "high": high, "low": low, "direction": direction},
    )


def _gap(view: SymbolView) -> Optional[float]:
    if not view.previous_close or view.previous_close <= 0:
        return None
    return _pct(float(view.prices[-1]), view.previous_close)


def _gap_row(view: SymbolView, gap_pct: float) -> ScannerRow:
    return ScannerRow(
        view.symbol,
        round(abs(gap_pct), 4),
        {
            "price": float(view.prices[-1]),
            "previous_close": view.previous_close,
            "gap_percent": round(gap_pct, 4),
        },
    )


def gap_up(view: SymbolView, limits: ScannerThresholds) -> Optional[ScannerRow]:
    gap_pct = _gap(view)
    if gap_pct is None or gap_pct < limits.gap_min_pct:
        return None
    return _gap_row(view, gap_pct)


def gap_down(view: SymbolView, limits: ScannerThresholds) -> Optional[ScannerRow]:
    gap_pct = _gap(view)
    if gap_pct is None or gap_pct > -limits.gap_min_pct:
        return None
    return _gap_row(view, gap_pct)


def news_momentum(view: SymbolView, limits: ScannerThresholds) -> Optional[ScannerRow]:
    """
    Weighted blend of news recency (40%), price move since the news (40%)
    and volume surge since the news (20%), scaled to 0-100.
    """
    published = view.news_published_ms
    if published is None:
        return None
    age_minutes = (view.now_ms - published) / MS_PER_MINUTE
    if age_minutes < 0 or age_minutes > limits.news_window_minutes:
        return None

    timestamps = np.array([t.timestamp for t in view.ticks], dtype=np.int64)
    start = int(np.searchsorted(timestamps, published, side="left"))
    if start >= len(timestamps):
        start = 0

    recency = max(0.0, 1.0 - age_minutes / limits.news_decay_minutes)
    move_pct = _pct(float(view.prices[-1]), float(view.prices[start]))
    price_score = min(abs(move_pct) / 10.0, 1.0)
    average = float(view.volumes.mean())
    volume_ratio = float(view.volumes[start:].mean()) / average if average > 0 else 0.0
    volume_score = min(volume_ratio / 3.0, 1.0)

    score = (0.4 * recency + 0.4 * price_score + 0.2 * volume_score) * 100.0
    if score < limits.news_momentum_min_score:
        return None
    return ScannerRow(
        view.symbol,
        round(score, 4),
        {
            "price": float(view.prices[-1]),
            "news_age_minutes": round(age_minutes, 2),
            "change_since_news_percent": round(move_pct, 4),
            "volume_ratio": round(volume_ratio, 4),
        },
    )


PresetFn = Callable[[SymbolView, ScannerThresholds], Optional[ScannerRow]]

PRESETS: Dict[ScannerPreset, PresetFn] = {
    ScannerPreset.MOVERS: movers,
    ScannerPreset.RVOL: rvol,
    ScannerPreset.UNUSUAL_VOLUME: unusual_volume,
    ScannerPreset.RANGE_BREAK: range_break,
    ScannerPreset.GAP_UP: gap_up,
    ScannerPreset.GAP_DOWN: gap_down,
    ScannerPreset.NEWS_MOMENTUM: news_momentum,
}

MIN_TICKS: Mapping[ScannerPreset, int] = {
    ScannerPreset.MOVERS: 2,
    ScannerPreset.RVOL: 10,
    ScannerPreset.UNUSUAL_VOLUME: 20,
    ScannerPreset.RANGE_BREAK: 20,
    ScannerPreset.GAP_UP: 1,
    ScannerPreset.GAP_DOWN: 1,
    ScannerPreset.NEWS_MOMENTUM: 5,
}
