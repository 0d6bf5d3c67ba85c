"""Per-source fetch: one rss2json call -> one Article per item."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import ValidationError

from sonaa.config import settings
from sonaa.workers.extractors import (
    DEFAULT_IMAGE_RULES,
    ImageRules,
    decode_title,
    image_frequency,
    select_thumbnail,
    strip_html,
    to_https,
    truncate,
    upgrade_video_thumbnail,
)
from sonaa.workers.models import Article, FeedSource, RawFeedItem

log = logging.getLogger("sonaa.fetcher")


@asynccontextmanager
async def http_client(client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield `client` untouched, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        timeout=timeout or settings.http_timeout,
        follow_redirects=True,
        headers={"User-Agent": settings.user_agent},
    ) as own:
        yield own


def _parse_items(raw_items: Any, source_id: str) -> List[RawFeedItem]:
    items: List[RawFeedItem] = []
    if not isinstance(raw_items, list):
        return items
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        try:
            items.append(RawFeedItem.model_validate(raw))
        except ValidationError as e:
            log.debug("%s: skipping malformed item: %s", source_id, e)
    return items


def build_article(
    item: RawFeedItem,
    source: FeedSource,
    feed_image: Optional[str],
    frequency,
    *,
    rules: ImageRules = DEFAULT_IMAGE_RULES,
    repeat_threshold: Optional[int] = None,
    snippet_chars: Optional[int] = None,
    video_snippet_chars: Optional[int] = None,
) -> Article:
    threshold = settings.repeat_threshold if repeat_threshold is None else repeat_threshold

    thumb = select_thumbnail(item, feed_image, frequency, rules, threshold)
    thumb = to_https(thumb)
    if thumb and source.is_video_source:
        thumb = upgrade_video_thumbnail(thumb)

    if source.is_video_source:
        limit = settings.video_snippet_chars if video_snippet_chars is None else video_snippet_chars
    else:
        limit = settings.snippet_chars if snippet_chars is None else snippet_chars
    snippet = truncate(strip_html(item.description or item.content), limit)

    return Article(
        id=item.guid or item.link,
        title=decode_title(item.title),
        link=item.link,
        pub_date=item.pub_date,
        content_snippet=snippet,
        thumbnail=thumb,
        source_title=source.name,
        source_icon=feed_image,
        categories=list(item.categories),
        is_video=source.is_video_source,
    )


async def fetch_feed_articles(
    source: FeedSource,
    client: Optional[httpx.AsyncClient] = None,
    *,
    rules: ImageRules = DEFAULT_IMAGE_RULES,
    api_url: Optional[str] = None,
    api_key: Optional[str] = None,
    repeat_threshold: Optional[int] = None,
    snippet_chars: Optional[int] = None,
    video_snippet_chars: Optional[int] = None,
) -> List[Article]:
    """
    Fetch one feed through the conversion endpoint.

    Soft-fails: transport errors, non-2xx, undecodable bodies and
    status != "ok" all return [] so one dead feed never sinks a refresh.
    Items without a usable image are kept with thumbnail=None.
    """
    params: Dict[str, str] = {"rss_url": source.rss_url}
    key = api_key if api_key is not None else settings.feed_api_key
    if key:
        params["api_key"] = key

    async with http_client(client) as cli:
        try:
            resp = await cli.get(api_url or settings.feed_api_url, params=params)
        except httpx.HTTPError as e:
            log.warning("%s: feed request failed: %s", source.id, type(e).__name__)
            return []

        if not resp.is_success:
            log.warning("%s: feed endpoint returned HTTP %s", source.id, resp.status_code)
            return []

        try:
            data = resp.json()
        except ValueError:
            log.warning("%s: feed endpoint returned a non-JSON body", source.id)
            return []

    if not isinstance(data, dict) or data.get("status") != "ok":
        status = data.get("status") if isinstance(data, dict) else None
        log.warning("%s: feed endpoint status=%r", source.id, status)
        return []

    feed = data.get("feed") if isinstance(data.get("feed"), dict) else {}
    feed_image = feed.get("image") if isinstance(feed.get("image"), str) and feed.get("image") else None

    items = _parse_items(data.get("items"), source.id)
    frequency = image_frequency(items)

    articles = [
        build_article(
            item,
            source,
            feed_image,
            frequency,
            rules=rules,
            repeat_threshold=repeat_threshold,
            snippet_chars=snippet_chars,
            video_snippet_chars=video_snippet_chars,
        )
        for item in items
    ]
    with_image = sum(1 for a in articles if a.thumbnail)
    log.info("%s: %d items, %d with image", source.id, len(articles), with_image)
    return articles
