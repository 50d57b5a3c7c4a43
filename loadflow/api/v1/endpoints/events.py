"""
Load change stream (Server-Sent Events).

SSE format::

    event: update
    data: {"type": "update", "record": {...}, "old_record": {...}}

Keepalive comments (``: keepalive``) are sent while idle. The stream is
not replayable: a client that disconnects must re-fetch ``GET /loads``
after reconnecting.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from loadflow.api.v1.deps import get_current_actor
from loadflow.core.config import settings
from loadflow.core.permissions import Actor
from loadflow.realtime.broker import Subscription, broker

router = APIRouter(tags=["events"])
logger = logging.getLogger(__name__)


def format_sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


async def _generate_sse(request: Request, sub: Subscription) -> AsyncGenerator[str, None]:
    async with sub:
        yield ": connected\n\n"
        async for message in sub.events(settings.EVENT_KEEPALIVE_SECONDS):
            if await request.is_disconnected():
                logger.info("SSE: client for user %s disconnected", sub.actor.id)
                return
            if message is None:
                yield ": keepalive\n\n"
                continue
            yield format_sse(message.type, message.model_dump_json())


@router.get("/loads/events")
async def stream_load_events(
    request: Request,
    actor: Actor = Depends(get_current_actor),
) -> StreamingResponse:
    sub = broker.subscribe(actor)
    return StreamingResponse(
        _generate_sse(request, sub),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
