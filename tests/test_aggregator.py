"""Tests for sonaa/workers/aggregator.py: batching, caps, filters, ordering."""

import asyncio
import random
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from sonaa.workers.aggregator import (
    cap_source,
    collect_pool,
    fetch_all_feeds,
    order_pool,
    parse_pub_date,
    sort_newest_first,
)
from sonaa.workers.fetcher import fetch_feed_articles
from sonaa.workers.keywords import KeywordRules


def _fake_fetch(results, calls=None, delays=None):
    """Stand-in for fetch_feed_articles: source id -> article list (or exception)."""

    async def fetch(src, client):
        if calls is not None:
            calls.append(src.id)
        if delays and src.id in delays:
            await asyncio.sleep(delays[src.id])
        result = results.get(src.id, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    return fetch


def _collect(sources, fetch, **kwargs):
    kwargs.setdefault("batch_pause_seconds", 0)

    async def go():
        async with httpx.AsyncClient() as client:
            return await collect_pool(sources, client, fetch=fetch, **kwargs)

    return asyncio.run(go())


class TestParsePubDate:
    def test_rss2json_format(self):
        assert parse_pub_date("2024-01-05 10:00:00") == datetime(2024, 1, 5, 10, tzinfo=timezone.utc)

    def test_rfc822(self):
        assert parse_pub_date("Fri, 05 Jan 2024 10:00:00 +0000") == datetime(2024, 1, 5, 10, tzinfo=timezone.utc)

    def test_iso_zulu(self):
        assert parse_pub_date("2024-01-05T10:00:00Z") == datetime(2024, 1, 5, 10, tzinfo=timezone.utc)

    def test_garbage(self):
        assert parse_pub_date("yesterday-ish") is None
        assert parse_pub_date("") is None
        assert parse_pub_date(None) is None


class TestSortNewestFirst:
    def test_unparseable_sorts_last(self, article):
        arts = [article(1, pub_date="not a date"), article(2), article(3)]
        assert [a.id for a in sort_newest_first(arts)] == ["art-3", "art-2", "art-1"]

    def test_mixed_formats(self, article):
        arts = [article(1, pub_date="Wed, 10 Jan 2024 08:00:00 GMT"), article(2, pub_date="2024-01-09 23:00:00")]
        assert [a.id for a in sort_newest_first(arts)] == ["art-1", "art-2"]


class TestCapSource:
    def test_standard_cap(self, source, article):
        arts = [article(n) for n in range(1, 13)]
        capped = cap_source(source("a"), arts, standard_cap=5)
        assert [a.id for a in capped] == ["art-12", "art-11", "art-10", "art-9", "art-8"]

    def test_video_cap(self, source, article):
        arts = [article(n, video=True) for n in range(1, 11)]
        capped = cap_source(source("v", video=True), arts, video_cap=2)
        assert [a.id for a in capped] == ["art-10", "art-9"]

    def test_allowlist_applied_before_cap(self, source, article):
        arts = [article(n, title=f"Folk ballads {n}") for n in range(3, 9)]
        arts += [article(1, title="Techno picks 1"), article(2, title="Ambient drift 2")]
        capped = cap_source(source("bandcamp-daily"), arts, standard_cap=5)
        assert [a.id for a in capped] == ["art-2", "art-1"]

    def test_allowlist_matches_categories(self, source, article):
        arts = [article(1, title="Weekly picks", categories=["Electronic"])]
        assert len(cap_source(source("bandcamp-daily"), arts)) == 1

    def test_custom_allowlist(self, source, article):
        rules = KeywordRules(exclude=(), include_by_source={"a": ("modular",)})
        arts = [article(1, title="Modular news"), article(2, title="Laptop news")]
        assert [a.id for a in cap_source(source("a"), arts, rules=rules)] == ["art-1"]


class TestCollectPool:
    def test_caps_per_source_type(self, source, article):
        sources = [source("a"), source("b", video=True)]
        results = {
            "a": [article(n) for n in range(1, 9)],
            "b": [article(n, video=True) for n in range(10, 15)],
        }
        pool = _collect(sources, _fake_fetch(results), standard_cap=5, video_cap=2)

        assert len(pool) == 7
        assert sum(1 for a in pool if a.is_video) == 2

    def test_only_active_sources(self, source, article):
        calls = []
        sources = [source("a"), source("off", active=False)]
        _collect(sources, _fake_fetch({"a": [article(1)], "off": [article(2)]}, calls))
        assert calls == ["a"]

    def test_source_order_not_completion_order(self, source, article):
        sources = [source("slow"), source("fast")]
        results = {"slow": [article(1)], "fast": [article(2)]}
        pool = _collect(sources, _fake_fetch(results, delays={"slow": 0.05}), batch_size=2)
        assert [a.id for a in pool] == ["art-1", "art-2"]

    def test_crashing_fetch_isolated(self, source, article):
        results = {"a": RuntimeError("boom"), "b": [article(1)]}
        pool = _collect([source("a"), source("b")], _fake_fetch(results))
        assert [a.id for a in pool] == ["art-1"]

    def test_batches_and_pauses(self, source):
        calls = []
        sources = [source(s) for s in "abcde"]
        with patch("sonaa.workers.aggregator.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            _collect(sources, _fake_fetch({}, calls), batch_size=2, batch_pause_seconds=0.5)

        assert calls == ["a", "b", "c", "d", "e"]
        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.5)

    def test_no_pause_for_single_batch(self, source):
        with patch("sonaa.workers.aggregator.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            _collect([source("a")], _fake_fetch({}), batch_size=4, batch_pause_seconds=0.5)
        mock_sleep.assert_not_awaited()

    def test_soft_failure_through_real_fetcher(self, source, raw_item, own_image, feed_payload):
        def handler(request):
            if request.url.params["rss_url"] == "https://a.example.com/feed/":
                return httpx.Response(500, text="upstream error")
            return httpx.Response(200, json=feed_payload([raw_item(1, image=own_image(1)), raw_item(2)]))

        async def fetch(src, client):
            return await fetch_feed_articles(src, client, api_url="https://rss2json.test/v1/api.json")

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await collect_pool([source("a"), source("b")], client, fetch=fetch, batch_pause_seconds=0)

        pool = asyncio.run(go())
        assert len(pool) == 2
        assert all(a.source_title == "Source B" for a in pool)


class TestExclusionAndOrdering:
    def test_exclusion_after_cap(self, source, article):
        arts = [article(n) for n in range(1, 4)]
        arts += [article(4, title="New Fender Jazzmaster"), article(5, categories=["Guitar"])]
        pool = asyncio.run(
            fetch_all_feeds([source("a")], fetch=_fake_fetch({"a": arts}), batch_pause_seconds=0, standard_cap=5)
        )
        assert [a.id for a in pool] == ["art-3", "art-2", "art-1"]

    def test_empty_when_everything_fails(self, source):
        results = {"a": RuntimeError("down"), "b": []}
        pool = asyncio.run(fetch_all_feeds([source("a"), source("b")], fetch=_fake_fetch(results), batch_pause_seconds=0))
        assert pool == []

    def test_newest_ordering_across_sources(self, source, article):
        results = {"a": [article(1), article(4)], "b": [article(3), article(2)]}
        pool = asyncio.run(
            fetch_all_feeds(
                [source("a"), source("b")],
                fetch=_fake_fetch(results),
                ordering="newest",
                batch_pause_seconds=0,
            )
        )
        assert [a.id for a in pool] == ["art-4", "art-3", "art-2", "art-1"]

    def test_shuffle_is_permutation(self, article):
        pool = [article(n) for n in range(1, 10)]
        first = order_pool(pool, "shuffle", random.Random(7))
        second = order_pool(pool, "shuffle", random.Random(7))
        assert [a.id for a in first] == [a.id for a in second]
        assert sorted(a.id for a in first) == sorted(a.id for a in pool)
        assert [a.id for a in pool] == [f"art-{n}" for n in range(1, 10)]

    def test_unknown_ordering(self, article):
        with pytest.raises(ValueError):
            order_pool([article(1)], "alphabetical")
