"""
Feed configuration loader.

One YAML file lists the feeds, either flat:

    feeds:
      - { id: cdm, name: CDM, url: https://cdm.link/, rss_url: https://cdm.link/feed/ }

or grouped in buckets that can be switched off as a whole:

    buckets:
      tech_production:
        enabled: true
        feeds: [ ... ]

Per-feed keys: id, name, url, rss_url (or rssUrl), enabled / is_active,
is_video_source. Disabled feeds are kept but marked inactive; disabled
buckets are skipped. Ids must be unique.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from sonaa.config import settings
from sonaa.workers.models import FeedSource

log = logging.getLogger("sonaa.sources")

DEFAULT_SOURCES_FILE = Path(__file__).with_name("default_sources.yml")


class SourceConfigError(ValueError):
    pass


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise SourceConfigError(f"could not read {path}: {e}") from e
    if not isinstance(data, dict):
        raise SourceConfigError(f"{path}: top level must be a mapping")
    return data


def _feed_entries(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = [fd for fd in data.get("feeds") or [] if isinstance(fd, dict)]

    buckets = data.get("buckets") or {}
    if isinstance(buckets, dict):
        for name, bucket in buckets.items():
            if not isinstance(bucket, dict):
                continue
            if not bucket.get("enabled", True):
                log.info("bucket %s disabled, skipping", name)
                continue
            entries.extend(fd for fd in bucket.get("feeds") or [] if isinstance(fd, dict))
    return entries


def _to_source(entry: Dict[str, Any]) -> FeedSource:
    fields = dict(entry)
    enabled = fields.pop("enabled", None)
    if enabled is not None and "is_active" not in fields and "isActive" not in fields:
        fields["is_active"] = bool(enabled)
    try:
        return FeedSource.model_validate(fields)
    except ValidationError as e:
        raise SourceConfigError(f"invalid feed {entry.get('id')!r}: {e}") from e


def parse_sources(data: Dict[str, Any]) -> List[FeedSource]:
    sources: List[FeedSource] = []
    seen: set = set()
    for entry in _feed_entries(data):
        source = _to_source(entry)
        if source.id in seen:
            raise SourceConfigError(f"duplicate feed id {source.id!r}")
        seen.add(source.id)
        sources.append(source)
    return sources


def load_sources(path: Optional[str] = None) -> List[FeedSource]:
    """Feeds from `path` (or settings.sources_file); the bundled list when neither is set."""
    target = path or settings.sources_file
    file = Path(target) if target else DEFAULT_SOURCES_FILE
    sources = parse_sources(_read_yaml(file))
    log.info("loaded %d feeds from %s", len(sources), file)
    return sources


def active_sources(sources: Iterable[FeedSource]) -> List[FeedSource]:
    return [s for s in sources if s.is_active]
