"""
Stopword and market-general vocabularies used by the ticker resolver
"""

import re
from typing import FrozenSet, Iterable, List, Optional, Pattern

from marketpulse.symbols.aliases import AMBIGUOUS_TOKENS, ENGLISH_STOPWORDS, TICKER_BLACKLIST

DEFAULT_STOPWORDS: FrozenSet[str] = ENGLISH_STOPWORDS | frozenset(
    token.lower() for token in TICKER_BLACKLIST | AMBIGUOUS_TOKENS
)

# Matched on word boundaries, singular or plural
DEFAULT_GENERAL_VOCABULARY: List[str] = [
    "market",
    "stock",
    "trading",
    "investor",
    "economy",
    "fed",
    "federal reserve",
    "inflation",
    "recession",
    "rate",
    "interest rate",
    "treasury",
    "yield",
    "bull market",
    "bear market",
    "volatility",
    "sector",
    "industry",
    "index",
    "wall street",
    "nasdaq",
    "dow jones",
    "s&p 500",
    "spy",
    "qqq",
    "vix",
    "gdp",
    "cpi",
    "jobs report",
    "earnings season",
]


class Vocabulary:
    """Configured stopword set plus compiled general-market keyword patterns"""

    def __init__(
        self,
        stopwords: Optional[Iterable[str]] = None,
        general_vocabulary: Optional[Iterable[str]] = None,
    ):
        stopwords = list(stopwords or [])
        general_vocabulary = list(general_vocabulary or [])
        self.stopwords: FrozenSet[str] = (
            frozenset(word.lower() for word in stopwords) if stopwords else DEFAULT_STOPWORDS
        )
        self.general_terms: List[str] = [
            term.lower() for term in (general_vocabulary or DEFAULT_GENERAL_VOCABULARY)
        ]
        self._patterns: List[Pattern] = [
            re.compile(rf"(?<![a-z0-9]){re.escape(term)}s?(?![a-z0-9])")
            for term in self.general_terms
        ]

    @classmethod
    def from_settings(cls, settings) -> "Vocabulary":
        return cls(settings.RESOLVER_STOPWORDS, settings.RESOLVER_GENERAL_VOCABULARY)

    def is_stopword(self, phrase: str) -> bool:
        return phrase.lower() in self.stopwords

    def general_terms_in(self, text: str) -> List[str]:
        """Distinct general-market terms present in ``text``"""
        lowered = text.lower()
        return [
            term for term, pattern in zip(self.general_terms, self._patterns) if pattern.search(lowered)
        ]
