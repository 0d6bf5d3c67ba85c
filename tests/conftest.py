"""Shared test fixtures."""

import asyncio

import httpx
import pytest

from sonaa.workers.models import Article, FeedSource


def _item_link(n):
    return f"https://www.synthanatomy.com/2024/01/story-{n}/"


@pytest.fixture
def raw_item():
    """Factory for one rss2json item dict."""

    def _make(n=1, *, image=None, title=None, pub_date=None, description="<p>Body text</p>", link=None, **extra):
        item = {
            "title": title if title is not None else f"Moog update {n}",
            "link": link or _item_link(n),
            "guid": link or _item_link(n),
            "pubDate": pub_date if pub_date is not None else f"2024-01-{n:02d} 10:00:00",
            "description": description,
            "content": "",
            "thumbnail": "",
            "enclosure": {},
            "categories": [],
        }
        if image:
            item["enclosure"] = {"link": image, "type": "image/jpeg"}
        item.update(extra)
        return item

    return _make


@pytest.fixture
def own_image():
    """An image URL on the item's own domain that passes validation."""

    def _make(n):
        return f"https://www.synthanatomy.com/wp-content/uploads/2024/01/moog-{n}.jpg"

    return _make


@pytest.fixture
def feed_payload():
    """Factory for a successful rss2json response body."""

    def _make(items, *, image="", status="ok"):
        return {
            "status": status,
            "feed": {"url": "https://www.synthanatomy.com/feed/", "title": "Synth Anatomy", "image": image},
            "items": items,
        }

    return _make


@pytest.fixture
def source():
    def _make(sid="a", *, video=False, active=True):
        return FeedSource(
            id=sid,
            name=f"Source {sid.upper()}",
            url=f"https://{sid}.example.com/",
            rss_url=f"https://{sid}.example.com/feed/",
            is_active=active,
            is_video_source=video,
        )

    return _make


@pytest.fixture
def article():
    """Factory for a pipeline Article."""

    def _make(n=1, *, title=None, pub_date=None, thumbnail=None, snippet="Body text", categories=None, video=False, link=None):
        return Article(
            id=f"art-{n}",
            title=title if title is not None else f"Moog update {n}",
            link=link or _item_link(n),
            pub_date=pub_date if pub_date is not None else f"2024-01-{n:02d} 10:00:00",
            content_snippet=snippet,
            thumbnail=thumbnail,
            source_title="Synth Anatomy",
            categories=categories or [],
            is_video=video,
        )

    return _make


@pytest.fixture
def run_with_client():
    """Run `fn(client)` on a fresh loop with an AsyncClient over `transport`."""

    def _run(transport, fn):
        async def go():
            async with httpx.AsyncClient(transport=transport) as client:
                return await fn(client)

        return asyncio.run(go())

    return _run
