"""Evidence ranking for raw web search results.

Scores each hit by its original position, how recently it was published,
how trusted its domain is and how much snippet text it carries. The output
is consumed immediately by the evidence gatherer and never persisted.
"""
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from models.schema import RankedSearchResult, SearchResultItem

TRUSTED_DOMAIN_BONUS = {
    "gov": 8,
    "edu": 6,
    "org": 4,
}

# (max age in days, bonus), checked in order
RECENCY_TIERS = ((7, 10), (30, 6), (120, 3))

MAX_POSITION_SCORE = 14
SNIPPET_CHARS_PER_POINT = 120
MAX_SNIPPET_SIGNAL = 5


def parse_published_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 or RFC 2822 date; naive values are taken as UTC."""
    if not value or not value.strip():
        return None
    text = value.strip()

    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError, OverflowError):
            return None
    if parsed is None:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def recency_bonus(published_date: Optional[str], now: datetime) -> int:
    parsed = parse_published_date(published_date)
    if parsed is None:
        return 0
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    try:
        age_days = (now - parsed).total_seconds() // 86400
    except OverflowError:
        return 0
    for max_age, bonus in RECENCY_TIERS:
        if age_days <= max_age:
            return bonus
    return 0


def domain_bonus(url: str) -> int:
    """Bonus for the hostname's top-level label; malformed URLs score 0."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return 0
    if not hostname:
        return 0
    tld = hostname.lower().rstrip(".").rsplit(".", 1)[-1]
    return TRUSTED_DOMAIN_BONUS.get(tld, 0)


def snippet_signal(snippet: Optional[str]) -> int:
    return min(MAX_SNIPPET_SIGNAL, len(snippet or "") // SNIPPET_CHARS_PER_POINT)


def rank_search_results(
    results: Iterable[SearchResultItem], now: Optional[datetime] = None
) -> List[RankedSearchResult]:
    """
    Deduplicate, score and order raw search results.

    Args:
        results: Raw hits in the order the search providers returned them
        now: Reference time for recency (default: current UTC time)

    Returns:
        Ranked results, best first, with 1-based ``rank``. Ties keep
        their input order.
    """
    now = now or datetime.now(timezone.utc)

    unique: List[SearchResultItem] = []
    seen = set()
    for item in results:
        url = (item.url or "").strip()
        if not url or url in seen:
            continue
        seen.add(url)
        unique.append(item.model_copy(update={"url": url}))

    scored = []
    for index, item in enumerate(unique):
        score = (
            max(0, MAX_POSITION_SCORE - index)
            + recency_bonus(item.published_date, now)
            + domain_bonus(item.url)
            + snippet_signal(item.snippet)
        )
        scored.append((score, item))

    # sorted() is stable, so equal scores keep input order
    scored = sorted(scored, key=lambda pair: pair[0], reverse=True)

    raw_fields = set(SearchResultItem.model_fields)
    return [
        RankedSearchResult(
            **item.model_dump(include=raw_fields), score=score, rank=rank
        )
        for rank, (score, item) in enumerate(scored, start=1)
    ]
