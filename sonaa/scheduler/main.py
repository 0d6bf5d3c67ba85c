# sonaa/scheduler/main.py
#
# One-shot refresh from the command line:
#
#   python -m sonaa.scheduler.main [--sources FILE] [--ordering newest|shuffle] [--no-backfill]
#
# Loads the feed list, runs the full aggregation, then (unless --no-backfill)
# waits for the og:image pass and folds its results into the pool before
# printing the articles as camelCase JSON on stdout. Logs go to stderr.

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional, Sequence

from sonaa.config import settings
from sonaa.scheduler.sources import SourceConfigError, load_sources
from sonaa.workers.aggregator import fetch_all_feeds
from sonaa.workers.backfill import backfill_images
from sonaa.workers.fetcher import http_client
from sonaa.workers.models import Article, apply_thumbnail

log = logging.getLogger("sonaa.scheduler")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fetch every configured feed once and print the article pool")
    parser.add_argument("--sources", default=None, help="YAML feed list (defaults to the bundled list)")
    parser.add_argument(
        "--ordering",
        choices=("newest", "shuffle"),
        default=None,
        help=f"Final ordering of the pool (default: {settings.final_ordering})",
    )
    parser.add_argument("--no-backfill", action="store_true", help="Skip the og:image pass")
    return parser


async def refresh(sources_path: Optional[str] = None, ordering: Optional[str] = None, backfill: bool = True) -> List[Article]:
    sources = load_sources(sources_path)
    async with http_client() as client:
        articles = await fetch_all_feeds(sources, client, ordering=ordering)
        if backfill:
            found = await backfill_images(
                articles,
                lambda article_id, url: apply_thumbnail(articles, article_id, url),
                client,
            )
            log.info("backfill added %d thumbnails", found)
    return articles


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s", stream=sys.stderr)
    args = build_parser().parse_args(argv)

    try:
        articles = asyncio.run(refresh(args.sources, args.ordering, not args.no_backfill))
    except SourceConfigError as e:
        log.error("bad feed configuration: %s", e)
        return 2

    payload = [a.model_dump(by_alias=True) for a in articles]
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
