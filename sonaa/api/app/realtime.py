# sonaa/api/app/realtime.py
from __future__ import annotations

import asyncio
import json
import os
from typing import AsyncIterator, Dict, Set

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

"""
REALTIME CONTRACT

The backfill pass is the single writer. Every time it resolves an image for
an article of the latest feed snapshot, main.py publishes:

    {"type": "thumbnail", "id": <article id>, "thumbnail": <https url>}

/v1/realtime/stream relays those as Server-Sent Events:

    event: thumbnail
    data: {"type":"thumbnail","id":"...","thumbnail":"https://..."}

plus ": keep-alive" comments when quiet. Clients patch the card in place;
there is no replay, so a client connecting late should re-read
/v1/feed/latest.
"""

HEARTBEAT_SEC = float(os.getenv("SSE_HEARTBEAT_SEC", "20"))
QUEUE_MAX = 256

router = APIRouter(prefix="/v1/realtime", tags=["realtime"])


class ThumbnailBus:
    """In-process fanout: one bounded queue per connected client."""

    def __init__(self) -> None:
        self._subscribers: Set["asyncio.Queue[Dict[str, str]]"] = set()

    def subscribe(self) -> "asyncio.Queue[Dict[str, str]]":
        q: "asyncio.Queue[Dict[str, str]]" = asyncio.Queue(maxsize=QUEUE_MAX)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: "asyncio.Queue[Dict[str, str]]") -> None:
        self._subscribers.discard(q)

    def publish(self, article_id: str, image_url: str) -> int:
        payload = {"type": "thumbnail", "id": article_id, "thumbnail": image_url}
        delivered = 0
        for q in list(self._subscribers):
            try:
                q.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                # slow client: it will catch up from /v1/feed/latest
                pass
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


bus = ThumbnailBus()


def sse_frame(payload: Dict[str, str]) -> bytes:
    return f"event: thumbnail\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n".encode()


async def _event_source(q: "asyncio.Queue[Dict[str, str]]") -> AsyncIterator[bytes]:
    try:
        while True:
            try:
                payload = await asyncio.wait_for(q.get(), timeout=HEARTBEAT_SEC)
            except asyncio.TimeoutError:
                # A comment line in SSE starts with ':'
                yield b": keep-alive\n\n"
                continue
            yield sse_frame(payload)
    finally:
        bus.unsubscribe(q)


@router.get(
    "/stream",
    summary="Server-Sent Events stream of backfilled thumbnails",
)
async def sse_stream() -> StreamingResponse:
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        # Disable proxy buffering (esp. nginx) so events flush immediately
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(
        _event_source(bus.subscribe()),
        media_type="text/event-stream",
        headers=headers,
    )
