# sonaa/api/app/main.py
#
# SONAA FEED API
#
# LIFECYCLE:
#
#   /v1/feed         → one full refresh per call:
#                        sources.yml → aggregator.fetch_all_feeds()
#                        (batched rss2json fetch, image selection, caps,
#                        keyword exclusion, final ordering)
#                      The result becomes the "latest snapshot" and is
#                      returned immediately. Image-less articles go out
#                      with thumbnail = null.
#
#   backfill         → scheduled as a BackgroundTask after the response:
#                        resolves og:image for the image-less articles,
#                        applies each hit to the snapshot (apply_thumbnail,
#                        never overwriting) and publishes it on the
#                        realtime bus.
#
#   /v1/feed/latest  → the snapshot as it is right now (backfilled images
#                      included), without touching the network.
#
#   /v1/realtime/stream → SSE relay of backfill hits (see realtime.py).

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Literal, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from sonaa.api.app.realtime import bus, router as realtime_router
from sonaa.config import settings
from sonaa.scheduler.sources import active_sources, load_sources
from sonaa.workers.aggregator import fetch_all_feeds
from sonaa.workers.backfill import backfill_images
from sonaa.workers.models import Article, FeedSource, apply_thumbnail

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
log = logging.getLogger("sonaa.api")

VERSION = "0.3.0"

# -----------------------------------------------------------------------------
# Response models
# -----------------------------------------------------------------------------

class FeedResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ordering: str
    generated_at: Optional[str] = None
    pending_images: int = 0
    items: List[Article]


class SourcesResponse(BaseModel):
    items: List[FeedSource]


class ErrorBody(BaseModel):
    ok: bool = False
    status: int
    error: str
    message: str


# -----------------------------------------------------------------------------
# FastAPI app + CORS
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Sonaa API",
    version=VERSION,
    description=(
        "Aggregated music / audio-tech news feed.\n"
        "/v1/feed refreshes every configured source; thumbnails missing from the feeds "
        "are backfilled from article pages and pushed over /v1/realtime/stream."
    ),
)

_cors = settings.cors_origins.strip()
if _cors == "*":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in _cors.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(realtime_router)  # /v1/realtime/*

# -----------------------------------------------------------------------------
# Error handlers
# -----------------------------------------------------------------------------

def _json_error(status_code: int, err: str, msg: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorBody(status=status_code, error=err, message=msg).model_dump(),
    )

@app.exception_handler(HTTPException)
async def http_exc_handler(_: Request, exc: HTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else json.dumps(exc.detail)
    return _json_error(exc.status_code, "http_error", detail)

@app.exception_handler(RequestValidationError)
async def validation_exc_handler(_: Request, exc: RequestValidationError):
    return _json_error(422, "validation_error", exc.errors().__repr__())

@app.exception_handler(Exception)
async def unhandled_exc_handler(_: Request, exc: Exception):
    log.exception("unhandled error")
    return _json_error(500, exc.__class__.__name__, "Internal server error")

# -----------------------------------------------------------------------------
# Sources + snapshot
# -----------------------------------------------------------------------------

@lru_cache(maxsize=1)
def configured_sources() -> List[FeedSource]:
    return load_sources()


class _Snapshot:
    def __init__(self) -> None:
        self.articles: List[Article] = []
        self.ordering: str = settings.final_ordering
        self.generated_at: Optional[str] = None

    def replace(self, articles: List[Article], ordering: str) -> None:
        self.articles = articles
        self.ordering = ordering
        self.generated_at = datetime.now(timezone.utc).isoformat()

    def pending(self) -> int:
        return sum(1 for a in self.articles if a.thumbnail is None and not a.is_video)


snapshot = _Snapshot()


def _feed_response(articles: List[Article], ordering: str) -> FeedResponse:
    return FeedResponse(
        ordering=ordering,
        generated_at=snapshot.generated_at,
        pending_images=sum(1 for a in articles if a.thumbnail is None and not a.is_video),
        items=articles,
    )


async def run_backfill(articles: List[Article]) -> int:
    """Backfill one snapshot; hits land on the articles and on the realtime bus."""

    def on_update(article_id: str, image_url: str) -> None:
        if apply_thumbnail(articles, article_id, image_url):
            bus.publish(article_id, image_url)

    try:
        return await backfill_images(articles, on_update)
    except Exception:
        log.exception("backfill pass failed")
        return 0

# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------

@app.get("/health")
def health():
    """Basic health + some debug info."""
    return {
        "status": "ok",
        "env": settings.env,
        "version": VERSION,
        "sources": len(configured_sources()),
        "snapshot_items": len(snapshot.articles),
        "snapshot_at": snapshot.generated_at,
        "realtime_clients": bus.subscriber_count,
    }


@app.get(
    "/v1/sources",
    response_model=SourcesResponse,
    summary="Configured feed sources",
)
def list_sources(active: bool = Query(False, description="Only sources that are fetched")):
    sources = configured_sources()
    if active:
        sources = active_sources(sources)
    return SourcesResponse(items=sources)


@app.get(
    "/v1/feed",
    response_model=FeedResponse,
    summary="Refresh all feeds",
    description=(
        "Fetches every active source, applies per-source caps and keyword filters, "
        "and returns the merged pool.\n"
        "- ordering=newest|shuffle overrides the configured final ordering.\n"
        "- backfill=false skips the background og:image pass."
    ),
)
async def feed(
    background_tasks: BackgroundTasks,
    ordering: Optional[Literal["newest", "shuffle"]] = Query(None),
    backfill: bool = Query(True),
):
    chosen = ordering or settings.final_ordering
    articles = await fetch_all_feeds(configured_sources(), ordering=chosen)
    snapshot.replace(articles, chosen)

    if backfill:
        background_tasks.add_task(run_backfill, articles)

    return _feed_response(articles, chosen)


@app.get(
    "/v1/feed/latest",
    response_model=FeedResponse,
    summary="Last refreshed feed, with backfilled thumbnails",
)
def feed_latest():
    if snapshot.generated_at is None:
        raise HTTPException(status_code=404, detail="No feed fetched yet; call /v1/feed first")
    return _feed_response(snapshot.articles, snapshot.ordering)


@app.get("/")
def root():
    """Basic ping."""
    return {"ok": True, "service": "sonaa-api", "env": settings.env, "version": VERSION}
