"""
Deduplication keys and stable ids for news items
"""

import hashlib
import re
from datetime import datetime, timezone
from typing import Tuple
from urllib.parse import urlsplit

DEDUP_BUCKET_SECONDS = 5 * 60

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]+")
_SPACES_RE = re.compile(r"\s+")

DedupKey = Tuple[str, str, int]


def normalize_title(title: str) -> str:
    """Lowercase, strip non-alphanumerics, collapse whitespace"""
    if not title:
        return ""
    return _SPACES_RE.sub(" ", _NON_ALNUM_RE.sub("", title.lower())).strip()


def normalize_url(url: str) -> str:
    """Hostname plus pathname; query and fragment dropped"""
    if not url:
        return ""
    parts = urlsplit(url.strip())
    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    path = parts.path.rstrip("/")
    return f"{host}{path}"


def time_bucket(published_at: datetime, bucket_seconds: int = DEDUP_BUCKET_SECONDS) -> int:
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    return int(published_at.timestamp()) // bucket_seconds


def dedup_key(
    title: str, url: str, published_at: datetime, bucket_seconds: int = DEDUP_BUCKET_SECONDS
) -> DedupKey:
    return (normalize_title(title), normalize_url(url), time_bucket(published_at, bucket_seconds))


def make_news_id(
    title: str, url: str, published_at: datetime, bucket_seconds: int = DEDUP_BUCKET_SECONDS
) -> str:
    """Stable fingerprint; identical dedup keys produce identical ids"""
    key = dedup_key(title, url, published_at, bucket_seconds)
    digest = hashlib.sha1(f"{key[0]}|{key[1]}|{key[2]}".encode("utf-8")).hexdigest()
    return digest[:20]


def content_fingerprint(title: str, summary: str, url: str) -> str:
    """Cache key for ticker resolution (title + summary + url)"""
    payload = f"{title or ''}|{summary or ''}|{url or ''}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
