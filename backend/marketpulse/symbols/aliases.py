"""
Text normalization and alias generation for the symbol master
"""

import re
from typing import FrozenSet, Iterable, List, Set

# Uppercase tokens that look like tickers but are acronyms, country codes,
# agency names or venue names. Listings with these symbols are dropped.
TICKER_BLACKLIST: FrozenSet[str] = frozenset(
    {
        "US", "AI", "TV", "CEO", "CFO", "CTO", "COO", "VP", "PR", "HR", "IT", "UI", "UX",
        "API", "URL", "PDF", "HTML", "CSS", "JS", "PHP", "SQL", "XML", "JSON", "YAML",
        "USA", "UK", "EU", "UN", "WHO", "FDA", "SEC", "FTC", "IRS", "FBI", "CIA",
        "COVID", "GDP", "CPI", "PCE", "FOMC", "QE", "ETF", "IPO", "SPAC", "REIT",
        "NYSE", "NASDAQ", "AMEX", "OTC", "PINK", "GREY", "OTCQB", "OTCQX",
    }
)

# Tokens that are real symbols but usually mean something else in prose
# ("5 PM ET", "EV makers"). They never match bare; $PM or (PM) still resolves.
AMBIGUOUS_TOKENS: FrozenSet[str] = frozenset(
    {
        "DOJ", "PPI", "EPS", "ESG", "ECB", "IMF", "OPEC", "EV", "EVS", "AM", "PM", "ET",
        "EST", "EDT", "UTC", "YOY", "QOQ", "Q1", "Q2", "Q3", "Q4", "FY", "USD", "EUR",
        "GBP", "JPY", "CNY", "OK",
    }
)

# Common English words that must never act as aliases on their own.
ENGLISH_STOPWORDS: FrozenSet[str] = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "from", "up", "about", "into", "through", "during", "before", "after",
        "above", "below", "between", "among", "is", "are", "was", "were", "be", "been",
        "being", "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "must", "can", "this", "that", "these", "those", "i",
        "you", "he", "she", "it", "we", "they", "me", "him", "her", "us", "them", "new",
        "all", "one", "now", "out", "big", "top", "best", "next", "more", "most", "over",
        "just", "also", "than", "then", "here", "there", "what", "when", "where", "who",
        "why", "how", "not", "no", "yes", "so", "if", "as", "its", "our", "their", "your",
        "says", "said", "year", "week", "day", "today", "news", "report", "shares",
        "stock", "stocks", "market", "markets", "company", "group", "global", "first",
        "american", "international", "national", "general", "united", "capital",
        "financial", "energy", "health", "technology", "technologies", "systems", "trust",
    }
)

CORPORATE_SUFFIXES: FrozenSet[str] = frozenset(
    {
        "inc", "incorporated", "corp", "corporation", "co", "company", "ltd", "limited",
        "llc", "plc", "lp", "llp", "holdings", "holding", "group", "sa", "nv", "ag", "se",
        "the", "adr", "ads", "common", "stock", "shares", "ordinary", "class", "cl",
        "a", "b", "c", "new", "de", "del",
    }
)

_NON_TICKER_TOKENS = TICKER_BLACKLIST | AMBIGUOUS_TOKENS

_POSSESSIVE_RE = re.compile(r"['’]s\b", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_PUNCT_RE = re.compile(r"[^a-z0-9\s]+")
_SPACES_RE = re.compile(r"\s+")

MIN_COMPACT_ALIAS_LENGTH = 4


def normalize_text(text: str) -> str:
    """Lowercase, drop possessives, replace non-alphanumerics with single spaces"""
    if not text:
        return ""
    lowered = _POSSESSIVE_RE.sub("", text.lower())
    return _NON_ALNUM_RE.sub(" ", lowered).strip()


def tokenize(text: str) -> List[str]:
    normalized = normalize_text(text)
    return normalized.split() if normalized else []


def strip_corporate_suffixes(normalized_name: str) -> str:
    """Drop trailing corporate-form tokens ("apple inc" -> "apple")"""
    tokens = normalized_name.split()
    while len(tokens) > 1 and tokens[-1] in CORPORATE_SUFFIXES:
        tokens.pop()
    while len(tokens) > 1 and tokens[0] == "the":
        tokens.pop(0)
    return " ".join(tokens)


def is_stopword(phrase: str, extra: Iterable[str] = ()) -> bool:
    """True when a normalized phrase is a pure stopword"""
    lowered = phrase.lower()
    if lowered in ENGLISH_STOPWORDS or phrase.upper() in _NON_TICKER_TOKENS:
        return True
    return lowered in set(extra)


def generate_aliases(symbol: str, company_name: str) -> FrozenSet[str]:
    """
    Build the alias set for a listing.

    The ticker itself is kept in its uppercase form and is only ever matched
    as written; every name-derived alias is lowercase and normalized.
    """
    aliases: Set[str] = {symbol.upper()}

    full = normalize_text(company_name)
    if not full:
        return frozenset(aliases)
    core = strip_corporate_suffixes(full)

    for candidate in (full, core):
        if candidate and not is_stopword(candidate):
            aliases.add(candidate)

    # Punctuation removed without splitting words: "at&t inc" -> "att inc"
    punct_full = _SPACES_RE.sub(
        " ", _PUNCT_RE.sub("", _POSSESSIVE_RE.sub("", company_name.lower()))
    ).strip()
    punct_core = strip_corporate_suffixes(punct_full)

    for candidate in (full, core, punct_full, punct_core):
        for form in (candidate, candidate.replace(" ", "")):
            if form in aliases or len(form) < MIN_COMPACT_ALIAS_LENGTH:
                continue
            if not is_stopword(form):
                aliases.add(form)

    return frozenset(alias for alias in aliases if alias)
