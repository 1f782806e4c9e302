"""
News items and ticker resolution verdicts
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class NewsItem:
    """Normalized news article; id is the dedup fingerprint"""

    id: str
    title: str
    summary: str
    url: str
    source: str
    published_at: datetime
    provider_symbols: Tuple[str, ...] = field(default_factory=tuple)
    provider: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "url": self.url,
            "source": self.source,
            "published_at": self.published_at.isoformat(),
            "provider_symbols": list(self.provider_symbols),
            "provider": self.provider,
        }


class MatchContext(str, Enum):
    PROVIDED = "provided"
    TITLE = "title"
    SUMMARY = "summary"
    URL = "url"

    @property
    def rank(self) -> int:
        return _CONTEXT_RANK[self]


_CONTEXT_RANK = {
    MatchContext.PROVIDED: 0,
    MatchContext.TITLE: 1,
    MatchContext.SUMMARY: 2,
    MatchContext.URL: 3,
}


class MatchType(str, Enum):
    PROVIDER = "provider"
    CASHTAG = "cashtag"
    TICKER_LITERAL = "ticker_literal"
    URL_HINT = "url_hint"
    EXACT_COMPANY_NAME = "exact_company_name"
    ALIAS = "alias"
    FUZZY = "fuzzy"


class ResolutionReason(str, Enum):
    MATCHED = "matched"
    GENERAL = "general"
    AMBIGUOUS = "ambiguous"
    NO_CANDIDATES = "no_candidates"


@dataclass(frozen=True)
class ResolutionVerdict:
    news_id: str
    ticker: Optional[str] = None
    confidence: float = 0.0
    is_general: bool = False
    reason: ResolutionReason = ResolutionReason.NO_CANDIDATES
    match_type: Optional[MatchType] = None
    matched_phrase: Optional[str] = None
    context: Optional[MatchContext] = None
    score: float = 0.0

    def __post_init__(self):
        if self.is_general and self.ticker is not None:
            raise ValueError("a general verdict cannot carry a ticker")
        if self.ticker is not None and self.confidence < 0.6:
            raise ValueError("accepted ticker needs confidence >= 0.60")

    def to_dict(self) -> dict:
        return {
            "news_id": self.news_id,
            "ticker": self.ticker,
            "confidence": self.confidence,
            "is_general": self.is_general,
            "reason": self.reason.value,
            "match_type": self.match_type.value if self.match_type else None,
            "matched_phrase": self.matched_phrase,
            "context": self.context.value if self.context else None,
            "score": self.score,
        }
