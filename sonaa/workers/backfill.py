"""
Background image backfill
-------------------------
Second pass for articles that left the primary pipeline without an image.
For each one we download the article page (direct, then through mirror
endpoints), pull og:image / JSON-LD / twitter:image / first article image,
and report (article_id, image_url) through a callback as results arrive.

The pass is post-hoc enrichment: schedule it after the pool has been handed
to the consumer (the API runs it as a background task) and let it finish on
its own. Results, negative ones included, are memoized per article link for
the life of the process.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from sonaa.config import settings
from sonaa.workers.extractors import page_image
from sonaa.workers.fetcher import http_client
from sonaa.workers.models import Article

log = logging.getLogger("sonaa.backfill")

OnUpdate = Callable[[str, str], None]


class OgImageCache:
    """link -> image URL or None. Unbounded unless `maxsize` is given (then LRU)."""

    def __init__(self, maxsize: Optional[int] = None):
        self.maxsize = maxsize
        self._data: "OrderedDict[str, Optional[str]]" = OrderedDict()

    def lookup(self, link: str) -> Tuple[bool, Optional[str]]:
        if link not in self._data:
            return False, None
        if self.maxsize:
            self._data.move_to_end(link)
        return True, self._data[link]

    def store(self, link: str, image: Optional[str]) -> None:
        self._data[link] = image
        if self.maxsize:
            self._data.move_to_end(link)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, link: object) -> bool:
        return link in self._data

    def __len__(self) -> int:
        return len(self._data)


OG_CACHE = OgImageCache(settings.og_cache_size)


def endpoint_urls(link: str, endpoints: Optional[Sequence[str]] = None) -> List[str]:
    """Expand endpoint templates; {url} is percent-encoded, {raw_url} is not."""
    templates = settings.page_endpoints if endpoints is None else endpoints
    return [t.format(url=quote(link, safe=""), raw_url=link) for t in templates]


async def fetch_page(
    link: str,
    client: httpx.AsyncClient,
    *,
    endpoints: Optional[Sequence[str]] = None,
    timeout: Optional[float] = None,
    min_length: Optional[int] = None,
) -> Optional[str]:
    """First usable HTML for `link` across the endpoints, or None."""
    per_try = settings.page_timeout if timeout is None else timeout
    floor = settings.page_min_length if min_length is None else min_length

    for target in endpoint_urls(link, endpoints):
        try:
            resp = await client.get(target, timeout=per_try)
        except httpx.HTTPError as e:
            log.debug("page fetch %s failed: %s", target, type(e).__name__)
            continue
        if not resp.is_success:
            log.debug("page fetch %s: HTTP %s", target, resp.status_code)
            continue
        text = resp.text
        if len(text) < floor:
            log.debug("page fetch %s: only %d chars", target, len(text))
            continue
        return text
    return None


async def resolve_og_image(
    link: str,
    client: Optional[httpx.AsyncClient] = None,
    *,
    cache: Optional[OgImageCache] = None,
    endpoints: Optional[Sequence[str]] = None,
    timeout: Optional[float] = None,
    min_length: Optional[int] = None,
) -> Optional[str]:
    """Representative image of the page at `link`; cached, including misses."""
    cache = OG_CACHE if cache is None else cache
    hit, cached = cache.lookup(link)
    if hit:
        return cached

    async with http_client(client) as cli:
        page = await fetch_page(link, cli, endpoints=endpoints, timeout=timeout, min_length=min_length)

    image: Optional[str] = None
    if page:
        try:
            image = page_image(page, link)
        except ValueError as e:
            log.warning("%s: unreadable page markup: %s", link, e)

    cache.store(link, image)
    return image


async def backfill_images(
    articles: Sequence[Article],
    on_update: OnUpdate,
    client: Optional[httpx.AsyncClient] = None,
    *,
    cache: Optional[OgImageCache] = None,
    max_count: Optional[int] = None,
    batch_size: Optional[int] = None,
    batch_pause_seconds: Optional[float] = None,
    endpoints: Optional[Sequence[str]] = None,
    timeout: Optional[float] = None,
    min_length: Optional[int] = None,
) -> int:
    """
    Resolve images for image-less, non-video articles and report each hit
    once through on_update(article_id, image_url). Returns the hit count.
    Articles that already have a thumbnail are never touched.
    """
    limit = settings.backfill_max if max_count is None else max_count
    size = max(1, batch_size or settings.backfill_batch_size)
    pause = settings.backfill_pause_seconds if batch_pause_seconds is None else batch_pause_seconds

    targets = [a for a in articles if a.thumbnail is None and not a.is_video and a.link][:limit]
    if not targets:
        return 0

    found = 0
    async with http_client(client) as cli:
        for start in range(0, len(targets), size):
            batch = targets[start:start + size]
            links = list(dict.fromkeys(a.link for a in batch))
            results = await asyncio.gather(
                *(
                    resolve_og_image(
                        link, cli, cache=cache, endpoints=endpoints, timeout=timeout, min_length=min_length
                    )
                    for link in links
                ),
                return_exceptions=True,
            )
            by_link: Dict[str, Optional[str]] = {}
            for link, result in zip(links, results):
                if isinstance(result, BaseException):
                    log.warning("backfill %s crashed: %r", link, result)
                    continue
                by_link[link] = result

            for article in batch:
                image = by_link.get(article.link)
                if not image:
                    continue
                try:
                    on_update(article.id, image)
                except Exception:
                    log.exception("backfill update callback failed for %s", article.id)
                    continue
                found += 1

            if start + size < len(targets) and pause > 0:
                await asyncio.sleep(pause)

    log.info("backfill resolved %d/%d images", found, len(targets))
    return found

