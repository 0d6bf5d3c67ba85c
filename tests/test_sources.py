"""Tests for sonaa/scheduler/sources.py: YAML feed lists."""

from textwrap import dedent
from unittest.mock import patch

import pytest

from sonaa.config import settings
from sonaa.scheduler.sources import (
    DEFAULT_SOURCES_FILE,
    SourceConfigError,
    active_sources,
    load_sources,
    parse_sources,
)


def _write(tmp_path, text):
    path = tmp_path / "sources.yml"
    path.write_text(dedent(text), encoding="utf-8")
    return path


class TestParseSources:
    def test_flat_feeds(self):
        data = {"feeds": [{"id": "cdm", "name": "CDM", "url": "https://cdm.link/", "rss_url": "https://cdm.link/feed/"}]}
        (src,) = parse_sources(data)
        assert src.id == "cdm"
        assert src.rss_url == "https://cdm.link/feed/"
        assert src.is_active and not src.is_video_source

    def test_camel_case_keys(self):
        data = {"feeds": [{"id": "yt", "name": "YT", "rssUrl": "https://yt.test/feed", "isVideoSource": True}]}
        assert parse_sources(data)[0].is_video_source

    def test_enabled_flag_marks_inactive(self):
        data = {"feeds": [{"id": "x", "name": "X", "rss_url": "https://x.test/feed", "enabled": False}]}
        (src,) = parse_sources(data)
        assert not src.is_active
        assert active_sources([src]) == []

    def test_disabled_bucket_skipped(self):
        data = {
            "buckets": {
                "on": {"enabled": True, "feeds": [{"id": "a", "name": "A", "rss_url": "https://a.test/feed"}]},
                "off": {"enabled": False, "feeds": [{"id": "b", "name": "B", "rss_url": "https://b.test/feed"}]},
            }
        }
        assert [s.id for s in parse_sources(data)] == ["a"]

    def test_duplicate_ids_rejected(self):
        feed = {"id": "a", "name": "A", "rss_url": "https://a.test/feed"}
        with pytest.raises(SourceConfigError, match="duplicate"):
            parse_sources({"feeds": [feed, dict(feed)]})

    def test_missing_rss_url_rejected(self):
        with pytest.raises(SourceConfigError):
            parse_sources({"feeds": [{"id": "a", "name": "A"}]})

    def test_sources_are_frozen(self):
        (src,) = parse_sources({"feeds": [{"id": "a", "name": "A", "rss_url": "https://a.test/feed"}]})
        with pytest.raises(Exception):
            src.is_active = False


class TestLoadSources:
    def test_from_path(self, tmp_path):
        path = _write(
            tmp_path,
            """
            feeds:
              - id: cdm
                name: "CDM"
                rss_url: "https://cdm.link/feed/"
            """,
        )
        assert [s.id for s in load_sources(str(path))] == ["cdm"]

    def test_settings_path(self, tmp_path):
        path = _write(tmp_path, "feeds:\n  - {id: kvr, name: KVR, rss_url: 'https://kvr.test/rss'}\n")
        with patch.object(settings, "sources_file", str(path)):
            assert [s.id for s in load_sources()] == ["kvr"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceConfigError):
            load_sources(str(tmp_path / "nope.yml"))

    def test_invalid_yaml(self, tmp_path):
        path = _write(tmp_path, "feeds: [unclosed\n")
        with pytest.raises(SourceConfigError):
            load_sources(str(path))

    def test_top_level_must_be_mapping(self, tmp_path):
        path = _write(tmp_path, "- just\n- a list\n")
        with pytest.raises(SourceConfigError):
            load_sources(str(path))

    def test_bundled_list(self):
        with patch.object(settings, "sources_file", None):
            sources = load_sources()
        assert DEFAULT_SOURCES_FILE.exists()
        assert len(sources) == 43
        assert sum(1 for s in sources if s.is_video_source) == 7
        assert len({s.id for s in sources}) == len(sources)
        assert all(s.rss_url.startswith("http") for s in sources)
        assert "bandcamp-daily" in {s.id for s in sources}
