"""
Ticker Resolver - maps a news item to at most one high-confidence symbol
"""

import time
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog

from marketpulse.core.ttl_cache import BoundedCache
from marketpulse.models.news import MatchType, NewsItem, ResolutionReason, ResolutionVerdict
from marketpulse.news.fingerprint import content_fingerprint
from marketpulse.resolver import stages
from marketpulse.resolver.stages import ArticleText, Candidate
from marketpulse.resolver.vocabulary import Vocabulary
from marketpulse.symbols.symbol_master import SymbolMaster

logger = structlog.get_logger(__name__)

ACCEPT_SCORE = 60.0
ACCEPT_MARGIN = 15.0
GENERAL_MIN_TERMS = 3

# A match of one of these types marks the article as company-specific
EXPLICIT_MATCH_TYPES = frozenset(
    {MatchType.PROVIDER, MatchType.CASHTAG, MatchType.EXACT_COMPANY_NAME}
)


class TickerResolver:
    """
    Staged candidate pipeline with a content-addressed verdict cache.

    Verdicts are cached by a fingerprint of title, summary and url for 24h.
    The cache is dropped whenever the symbol master publishes a new snapshot
    so every verdict reflects the snapshot it was computed against.
    """

    def __init__(
        self,
        master: SymbolMaster,
        vocabulary: Optional[Vocabulary] = None,
        cache_size: int = 10000,
        cache_ttl: float = 86400,
        fuzzy_threshold: float = 0.82,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.master = master
        self.vocabulary = vocabulary or Vocabulary()
        self.fuzzy_threshold = fuzzy_threshold
        self._cache = BoundedCache("resolver", max_size=cache_size, ttl=cache_ttl, timer=timer)
        self._master_version = master.version
        self._reasons: Dict[str, int] = {reason.value: 0 for reason in ResolutionReason}
        self.resolved = 0

    @classmethod
    def from_settings(cls, master: SymbolMaster, settings) -> "TickerResolver":
        return cls(
            master,
            Vocabulary.from_settings(settings),
            cache_size=settings.RESOLVER_CACHE_SIZE,
            cache_ttl=settings.RESOLVER_CACHE_TTL,
            fuzzy_threshold=settings.RESOLVER_FUZZY_THRESHOLD,
        )

    def resolve(self, item: NewsItem) -> ResolutionVerdict:
        self._sync_master_version()
        key = content_fingerprint(item.title, item.summary, item.url)
        cached = self._cache.get(key)
        if cached is not None:
            return replace(cached, news_id=item.id)

        verdict = self._decide(item, self.rank(item))
        self._cache.set(key, verdict)
        self.resolved += 1
        self._reasons[verdict.reason.value] += 1
        logger.debug(
            "News item resolved",
            news_id=item.id,
            ticker=verdict.ticker,
            reason=verdict.reason.value,
            confidence=verdict.confidence,
        )
        return verdict

    def resolve_batch(self, items: Iterable[NewsItem]) -> Dict[str, ResolutionVerdict]:
        return {item.id: self.resolve(item) for item in items}

    def resolve_many(self, item: NewsItem, limit: int = 3) -> List[ResolutionVerdict]:
        """Up to ``limit`` tickers with the same ranking; no margin rule"""
        verdicts = []
        for candidate in self.rank(item):
            if candidate.score < ACCEPT_SCORE or len(verdicts) >= limit:
                break
            verdicts.append(self._accepted(item, candidate))
        return verdicts

    def rank(self, item: NewsItem) -> List[Candidate]:
        """Every surviving candidate, best first"""
        article = ArticleText(
            title=item.title or "",
            summary=item.summary or "",
            url=item.url or "",
            provider_symbols=tuple(item.provider_symbols),
        )
        raw: List[Candidate] = []
        raw.extend(stages.provider_candidates(article, self.master))
        raw.extend(stages.cashtag_candidates(article, self.master, self.vocabulary))
        raw.extend(stages.ticker_literal_candidates(article, self.master, self.vocabulary))
        raw.extend(stages.url_candidates(article, self.master))
        raw.extend(stages.name_candidates(article, self.master, self.vocabulary))
        raw.extend(stages.symbol_alias_candidates(article, self.master, self.vocabulary))

        scored = [stages.apply_negative_signals(c, article, self.vocabulary) for c in raw]

        strong_stage = (
            MatchType.CASHTAG,
            MatchType.TICKER_LITERAL,
            MatchType.URL_HINT,
            MatchType.EXACT_COMPANY_NAME,
        )
        if stages.first_survivor(c for c in scored if c.match_type in strong_stage) is None:
            fuzzy = stages.fuzzy_candidates(
                article, self.master, self.vocabulary, self.fuzzy_threshold
            )
            scored.extend(stages.apply_negative_signals(c, article, self.vocabulary) for c in fuzzy)

        return [c for c in stages.aggregate(scored) if c.score > 0]

    def _decide(self, item: NewsItem, ranked: List[Candidate]) -> ResolutionVerdict:
        general_terms = self.vocabulary.general_terms_in(f"{item.title} {item.summary}")
        explicit = any(c.match_type in EXPLICIT_MATCH_TYPES for c in ranked)
        if len(general_terms) >= GENERAL_MIN_TERMS and not explicit:
            return ResolutionVerdict(
                news_id=item.id, is_general=True, reason=ResolutionReason.GENERAL
            )

        if not ranked:
            return ResolutionVerdict(news_id=item.id, reason=ResolutionReason.NO_CANDIDATES)

        top = ranked[0]
        runner_up = ranked[1].score if len(ranked) > 1 else 0.0
        if top.score >= ACCEPT_SCORE and top.score - runner_up >= ACCEPT_MARGIN:
            return self._accepted(item, top)

        return ResolutionVerdict(
            news_id=item.id,
            reason=ResolutionReason.AMBIGUOUS,
            match_type=top.match_type,
            matched_phrase=top.matched_phrase,
            context=top.context,
            score=top.score,
        )

    def _accepted(self, item: NewsItem, candidate: Candidate) -> ResolutionVerdict:
        return ResolutionVerdict(
            news_id=item.id,
            ticker=candidate.symbol,
            confidence=round(min(1.0, candidate.score / 100.0), 4),
            is_general=False,
            reason=ResolutionReason.MATCHED,
            match_type=candidate.match_type,
            matched_phrase=candidate.matched_phrase,
            context=candidate.context,
            score=candidate.score,
        )

    def _sync_master_version(self) -> None:
        version = self.master.version
        if version != self._master_version:
            logger.info(
                "Symbol master changed, clearing resolver cache",
                old_version=self._master_version,
                new_version=version,
                cached=len(self._cache),
            )
            self._cache.clear()
            self._master_version = version

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "resolved": self.resolved,
            "by_reason": dict(self._reasons),
            "master_version": self._master_version,
            "cache": self._cache.get_stats(),
        }
