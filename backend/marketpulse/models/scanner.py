"""
Scanner outputs
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Tuple


class ScannerPreset(str, Enum):
    MOVERS = "movers"
    RVOL = "rvol"
    UNUSUAL_VOLUME = "unusual-volume"
    RANGE_BREAK = "range-break"
    GAP_UP = "gap-up"
    GAP_DOWN = "gap-down"
    NEWS_MOMENTUM = "news-momentum"


@dataclass(frozen=True)
class ScannerRow:
    symbol: str
    score: float
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def sort_key(self) -> Tuple[float, str]:
        return (-self.score, self.symbol)

    def to_dict(self) -> dict:
        return {"symbol": self.symbol, "score": self.score, **self.fields}


@dataclass(frozen=True)
class ScannerResult:
    """Ranked rows for one preset; rows sorted by score desc then symbol asc"""

    preset: ScannerPreset
    rows: Tuple[ScannerRow, ...]
    generated_at: datetime

    def limited(self, limit: int) -> "ScannerResult":
        return ScannerResult(self.preset, self.rows[:limit], self.generated_at)

    def to_dict(self) -> dict:
        return {
            "preset": self.preset.value,
            "rows": [row.to_dict() for row in self.rows],
            "generated_at": self.generated_at.isoformat(),
        }
