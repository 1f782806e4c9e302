"""
Candidate stages and negative signals for ticker resolution
"""

import re
from dataclasses import dataclass, field, replace
from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from marketpulse.models.news import MatchContext, MatchType
from marketpulse.resolver.vocabulary import Vocabulary
from marketpulse.symbols.aliases import TICKER_BLACKLIST, normalize_text
from marketpulse.symbols.symbol_master import AliasKind, SymbolMaster

# Base scores per stage
PROVIDER_SCORE = 100.0
CASHTAG_SCORE = 95.0
BRACKET_SCORE = 90.0
COLON_SCORE = 80.0
URL_HINT_SCORE = 85.0
COMPANY_NAME_TITLE_SCORE = 60.0
COMPANY_NAME_SUMMARY_SCORE = 30.0
ALIAS_TITLE_SCORE = 20.0
ALIAS_SUMMARY_SCORE = 10.0
SYMBOL_ALIAS_SCORE = 80.0
FUZZY_SCALE = 70.0
TITLE_BONUS = 5.0

# Negative signals
STOPWORD_PENALTY = 40.0
TICKER_LIST_PENALTY = 30.0
SUBSTRING_PENALTY = 40.0

MAX_NGRAM = 6
MIN_PHRASE_LENGTH = 3

CASHTAG_RE = re.compile(r"\$([A-Za-z]{1,5})(?![A-Za-z0-9])")
BRACKET_RE = re.compile(
    r"\(\s*(?:(?:NASDAQ|NYSE|NYSEARCA|NYSEAMERICAN|NYSE American|AMEX|OTC)\s*:\s*)?([A-Z]{1,5})\s*\)"
)
EXCHANGE_PREFIX_RE = re.compile(r"\b(?:NASDAQ|NYSE|NYSEARCA|AMEX)\s*:\s*([A-Z]{1,5})\b")
COLON_RE = re.compile(r"(?<![A-Za-z0-9$])([A-Z]{2,5}):(?!\d)")
URL_HINT_RES = (
    re.compile(r"/quote/([A-Za-z]{1,5})(?:[/?#.]|$)"),
    re.compile(r"/symbol/([A-Za-z]{1,5})(?:[/?#.]|$)"),
    re.compile(r"[?&]symbols?=([A-Za-z]{1,5})(?:[&#]|$)"),
)
UPPER_TOKEN_RE = re.compile(r"(?<![A-Za-z0-9$])([A-Z]{3,5})(?:['’]s)?(?![A-Za-z0-9])")
TICKER_LIST_RE = re.compile(r"(?i:tickers?|symbols?|stocks?)\s*:\s*([A-Z$][A-Z0-9$.,;/\s]*)")


@dataclass(frozen=True)
class Candidate:
    symbol: str
    score: float
    match_type: MatchType
    context: MatchContext
    matched_phrase: str
    penalties: Tuple[str, ...] = field(default_factory=tuple)

    def penalize(self, amount: float, reason: str) -> "Candidate":
        return replace(self, score=self.score - amount, penalties=self.penalties + (reason,))

    @property
    def sort_key(self) -> Tuple[float, int, str]:
        return (-self.score, self.context.rank, self.symbol)


@dataclass(frozen=True)
class ArticleText:
    title: str
    summary: str
    url: str
    provider_symbols: Tuple[str, ...] = ()

    def text_for(self, context: MatchContext) -> str:
        if context == MatchContext.TITLE:
            return self.title
        if context == MatchContext.SUMMARY:
            return self.summary
        if context == MatchContext.URL:
            return self.url
        return ""


def _narrative_contexts(article: ArticleText) -> Iterable[Tuple[MatchContext, str]]:
    yield MatchContext.TITLE, article.title
    yield MatchContext.SUMMARY, article.summary


def _is_ticker_stopword(symbol: str, vocabulary: Vocabulary) -> bool:
    return symbol in TICKER_BLACKLIST or vocabulary.is_stopword(symbol)


def provider_candidates(article: ArticleText, master: SymbolMaster) -> List[Candidate]:
    """S1: symbols attached by the upstream provider"""
    found = []
    for raw in article.provider_symbols:
        symbol = (raw or "").strip().upper()
        if master.is_active(symbol):
            found.append(
                Candidate(symbol, PROVIDER_SCORE, MatchType.PROVIDER, MatchContext.PROVIDED, symbol)
            )
    return found


def cashtag_candidates(
    article: ArticleText, master: SymbolMaster, vocabulary: Vocabulary
) -> List[Candidate]:
    """S2: $SYMBOL"""
    found = []
    for context, text in _narrative_contexts(article):
        for match in CASHTAG_RE.finditer(text):
            symbol = match.group(1).upper()
            if symbol in TICKER_BLACKLIST or not master.is_active(symbol):
                continue
            score = CASHTAG_SCORE + (TITLE_BONUS if context == MatchContext.TITLE else 0)
            found.append(Candidate(symbol, score, MatchType.CASHTAG, context, match.group(0)))
    return found


def ticker_literal_candidates(
    article: ArticleText, master: SymbolMaster, vocabulary: Vocabulary
) -> List[Candidate]:
    """S3: (SYMBOL), (NASDAQ: SYMBOL), NYSE: SYMBOL, SYMBOL:"""
    found = []
    for context, text in _narrative_contexts(article):
        bonus = TITLE_BONUS if context == MatchContext.TITLE else 0
        # Bracketed and exchange-qualified forms are explicit; a bare "WORD:" is not
        for pattern, base, explicit in (
            (BRACKET_RE, BRACKET_SCORE, True),
            (EXCHANGE_PREFIX_RE, BRACKET_SCORE, True),
            (COLON_RE, COLON_SCORE, False),
        ):
            for match in pattern.finditer(text):
                symbol = match.group(1)
                if not master.is_active(symbol):
                    continue
                if symbol in TICKER_BLACKLIST or (
                    not explicit and _is_ticker_stopword(symbol, vocabulary)
                ):
                    continue
                found.append(
                    Candidate(symbol, base + bonus, MatchType.TICKER_LITERAL, context, symbol)
                )
    return found


def url_candidates(article: ArticleText, master: SymbolMaster) -> List[Candidate]:
    """S4: /quote/XYZ and ?symbol=XYZ style hints"""
    found = []
    if not article.url:
        return found
    for pattern in URL_HINT_RES:
        for match in pattern.finditer(article.url):
            symbol = match.group(1).upper()
            if symbol in TICKER_BLACKLIST or not master.is_active(symbol):
                continue
            found.append(
                Candidate(symbol, URL_HINT_SCORE, MatchType.URL_HINT, MatchContext.URL, match.group(1))
            )
    return found


def _ngrams(tokens: Sequence[str], max_n: int = MAX_NGRAM) -> Iterable[str]:
    for n in range(1, max_n + 1):
        for i in range(len(tokens) - n + 1):
            yield " ".join(tokens[i : i + n])


def name_candidates(
    article: ArticleText, master: SymbolMaster, vocabulary: Vocabulary
) -> List[Candidate]:
    """S5 exact company names and S6 SM-derived aliases"""
    found = []
    for context, text in _narrative_contexts(article):
        tokens = normalize_text(text).split()
        is_title = context == MatchContext.TITLE
        for gram in _ngrams(tokens):
            if len(gram) < MIN_PHRASE_LENGTH:
                continue
            for symbol, kind in master.alias_matches(gram):
                if not symbol.is_active:
                    continue
                if kind in (AliasKind.NAME, AliasKind.CORE_NAME):
                    score = COMPANY_NAME_TITLE_SCORE if is_title else COMPANY_NAME_SUMMARY_SCORE
                    found.append(
                        Candidate(symbol.symbol, score, MatchType.EXACT_COMPANY_NAME, context, gram)
                    )
                elif kind == AliasKind.DERIVED and not vocabulary.is_stopword(gram):
                    score = ALIAS_TITLE_SCORE if is_title else ALIAS_SUMMARY_SCORE
                    found.append(Candidate(symbol.symbol, score, MatchType.ALIAS, context, gram))
    return found


def _mostly_uppercase(text: str) -> bool:
    letters = [c for c in text if c.isalpha()]
    if len(letters) < 12:
        return False
    return sum(1 for c in letters if c.isupper()) / len(letters) > 0.6


def symbol_alias_candidates(
    article: ArticleText, master: SymbolMaster, vocabulary: Vocabulary
) -> List[Candidate]:
    """
    S6 symbol-form alias: a listed ticker written bare in uppercase prose
    ("chipmaker AMD's"). Only tickers of three or more letters qualify and
    all-caps text is ignored.
    """
    found = []
    for context, text in _narrative_contexts(article):
        if not text or _mostly_uppercase(text):
            continue
        for match in UPPER_TOKEN_RE.finditer(text):
            symbol = match.group(1)
            if _is_ticker_stopword(symbol, vocabulary) or not master.is_active(symbol):
                continue
            score = SYMBOL_ALIAS_SCORE + (TITLE_BONUS if context == MatchContext.TITLE else 0)
            found.append(Candidate(symbol, score, MatchType.ALIAS, context, symbol))
    return found


def token_set_ratio(left: str, right: str) -> float:
    """Similarity of two phrases after ordering their shared and unique tokens"""
    left_tokens, right_tokens = set(left.split()), set(right.split())
    if not left_tokens or not right_tokens:
        return 0.0
    shared = " ".join(sorted(left_tokens & right_tokens))
    left_rest = " ".join(sorted(left_tokens - right_tokens))
    right_rest = " ".join(sorted(right_tokens - left_tokens))
    combined_left = f"{shared} {left_rest}".strip()
    combined_right = f"{shared} {right_rest}".strip()
    return SequenceMatcher(None, combined_left, combined_right).ratio()


def fuzzy_candidates(
    article: ArticleText,
    master: SymbolMaster,
    vocabulary: Vocabulary,
    threshold: float = 0.82,
) -> List[Candidate]:
    """S7: near-miss company names (typos, missing punctuation)"""
    best: Dict[str, Candidate] = {}
    for context, text in _narrative_contexts(article):
        tokens = normalize_text(text).split()
        for gram in _ngrams(tokens, max_n=3):
            head = gram.split()[0]
            if len(head) < 4 or vocabulary.is_stopword(head):
                continue
            word_count = len(gram.split())
            for ticker in master.names_with_prefix(head[:3]):
                core = master.core_name(ticker)
                if not core or len(core.split()) != word_count:
                    continue
                similarity = token_set_ratio(gram, core)
                if similarity < threshold:
                    continue
                candidate = Candidate(
                    ticker, round(similarity * FUZZY_SCALE, 2), MatchType.FUZZY, context, gram
                )
                current = best.get(ticker)
                if current is None or candidate.sort_key < current.sort_key:
                    best[ticker] = candidate
    return list(best.values())


# Negative signals


def _ticker_list_spans(text: str) -> List[Tuple[int, int]]:
    return [match.span(1) for match in TICKER_LIST_RE.finditer(text)]


def _occurrences(phrase: str, text: str) -> List[Tuple[int, int]]:
    if not phrase or not text:
        return []
    pattern = re.compile(re.escape(phrase), re.IGNORECASE)
    return [match.span() for match in pattern.finditer(text)]


def only_in_ticker_list(phrase: str, text: str) -> bool:
    spans = _ticker_list_spans(text)
    if not spans:
        return False
    occurrences = _occurrences(phrase, text)
    if not occurrences:
        return False
    return all(any(lo <= start and end <= hi for lo, hi in spans) for start, end in occurrences)


def only_inside_longer_token(phrase: str, text: str) -> bool:
    occurrences = _occurrences(phrase, text)
    if not occurrences:
        return False
    for start, end in occurrences:
        before = text[start - 1] if start > 0 else ""
        after = text[end] if end < len(text) else ""
        if not (before.isalnum() or after.isalnum()):
            return False
    return True


def apply_negative_signals(
    candidate: Candidate, article: ArticleText, vocabulary: Vocabulary
) -> Candidate:
    if candidate.context == MatchContext.PROVIDED:
        return candidate

    phrase = candidate.matched_phrase.lstrip("$")
    if candidate.match_type not in (MatchType.CASHTAG, MatchType.TICKER_LITERAL, MatchType.URL_HINT):
        if vocabulary.is_stopword(phrase):
            candidate = candidate.penalize(STOPWORD_PENALTY, "stopword")

    if candidate.context == MatchContext.URL:
        return candidate

    text = article.text_for(candidate.context)
    if only_in_ticker_list(phrase, text):
        candidate = candidate.penalize(TICKER_LIST_PENALTY, "ticker_list")
    if candidate.match_type != MatchType.CASHTAG and only_inside_longer_token(
        candidate.matched_phrase, text
    ):
        candidate = candidate.penalize(SUBSTRING_PENALTY, "substring")
    return candidate


def aggregate(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Best candidate per symbol, ranked by score, context, then symbol"""
    best: Dict[str, Candidate] = {}
    for candidate in candidates:
        current = best.get(candidate.symbol)
        if current is None or candidate.sort_key < current.sort_key:
            best[candidate.symbol] = candidate
    return sorted(best.values(), key=lambda c: c.sort_key)


def first_survivor(candidates: Iterable[Candidate]) -> Optional[Candidate]:
    for candidate in candidates:
        if candidate.score > 0:
            return candidate
    return None
