"""
Aggregator
----------
Fans the active sources out to the per-source fetcher in small concurrent
batches, caps each source, merges, applies the global keyword exclusion and
produces the final ordering.

Order of operations matters:
    per-source allowlist -> newest-first -> cap -> concat -> global exclusion -> ordering
Caps are spent before the exclusion pass, so the final pool size depends on
what the feeds published, not only on configuration.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, List, Optional, Sequence

import httpx

from sonaa.config import settings
from sonaa.workers.fetcher import fetch_feed_articles, http_client
from sonaa.workers.keywords import DEFAULT_KEYWORD_RULES, KeywordRules, apply_exclusions, passes_source_filter
from sonaa.workers.models import Article, FeedSource

log = logging.getLogger("sonaa.aggregator")

Fetch = Callable[[FeedSource, httpx.AsyncClient], Awaitable[List[Article]]]

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def parse_pub_date(value: Optional[str]) -> Optional[datetime]:
    """rss2json "YYYY-MM-DD HH:MM:SS", ISO-8601 or RFC 822; None if unparseable."""
    s = (value or "").strip()
    if not s:
        return None
    dt: Optional[datetime] = None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = parsedate_to_datetime(s)
        except (TypeError, ValueError, IndexError):
            dt = None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def sort_newest_first(articles: Sequence[Article]) -> List[Article]:
    """Unparseable dates sort last; ties keep feed order."""
    return sorted(articles, key=lambda a: parse_pub_date(a.pub_date) or _OLDEST, reverse=True)


def cap_source(
    source: FeedSource,
    articles: Sequence[Article],
    *,
    rules: KeywordRules = DEFAULT_KEYWORD_RULES,
    standard_cap: Optional[int] = None,
    video_cap: Optional[int] = None,
) -> List[Article]:
    kept = [a for a in articles if passes_source_filter(a, source.id, rules)]
    if source.is_video_source:
        limit = settings.video_cap if video_cap is None else video_cap
    else:
        limit = settings.standard_cap if standard_cap is None else standard_cap
    return sort_newest_first(kept)[:limit]


def order_pool(pool: Sequence[Article], ordering: Optional[str] = None, rng: Optional[random.Random] = None) -> List[Article]:
    ordering = ordering or settings.final_ordering
    if ordering == "shuffle":
        out = list(pool)
        (rng or random.Random()).shuffle(out)
        return out
    if ordering == "newest":
        return sort_newest_first(pool)
    raise ValueError(f"unknown ordering {ordering!r}")


async def collect_pool(
    sources: Sequence[FeedSource],
    client: Optional[httpx.AsyncClient] = None,
    *,
    fetch: Fetch = fetch_feed_articles,
    rules: KeywordRules = DEFAULT_KEYWORD_RULES,
    batch_size: Optional[int] = None,
    batch_pause_seconds: Optional[float] = None,
    standard_cap: Optional[int] = None,
    video_cap: Optional[int] = None,
) -> List[Article]:
    """Merged, capped pool before the global exclusion pass."""
    active = [s for s in sources if s.is_active]
    size = max(1, batch_size or settings.batch_size)
    pause = settings.batch_pause_seconds if batch_pause_seconds is None else batch_pause_seconds

    pool: List[Article] = []
    async with http_client(client) as cli:
        for start in range(0, len(active), size):
            batch = active[start:start + size]
            results = await asyncio.gather(*(fetch(s, cli) for s in batch), return_exceptions=True)

            # recombine by source order, not completion order
            for source, result in zip(batch, results):
                if isinstance(result, BaseException):
                    log.error("%s: fetch crashed: %r", source.id, result)
                    continue
                pool.extend(
                    cap_source(source, result, rules=rules, standard_cap=standard_cap, video_cap=video_cap)
                )

            if start + size < len(active) and pause > 0:
                await asyncio.sleep(pause)

    log.info("collected %d articles from %d active sources", len(pool), len(active))
    return pool


async def fetch_all_feeds(
    sources: Sequence[FeedSource],
    client: Optional[httpx.AsyncClient] = None,
    *,
    rules: KeywordRules = DEFAULT_KEYWORD_RULES,
    ordering: Optional[str] = None,
    rng: Optional[random.Random] = None,
    **pool_kwargs,
) -> List[Article]:
    """The full refresh: collect, exclude, order."""
    pool = await collect_pool(sources, client, rules=rules, **pool_kwargs)
    filtered = apply_exclusions(pool, rules)
    log.info("global exclusion kept %d/%d articles", len(filtered), len(pool))
    return order_pool(filtered, ordering, rng)
