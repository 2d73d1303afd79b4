"""Server-sent event stream for one client connection."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from ..constants import HEARTBEAT_INTERVAL_SECONDS
from ..contracts import utc_now
from .base import BaseFanout

logger = logging.getLogger(__name__)


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def stream_events(
    fanout: BaseFanout,
    user_id: str,
    is_disconnected: Callable[[], Awaitable[bool]],
    heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for ``user_id`` until the client goes away.

    The first frame is ``connected``. A ``heartbeat`` frame is sent whenever
    nothing was published within ``heartbeat_interval`` seconds. The channel
    is released when the generator finishes, is closed or is cancelled.
    """
    channel, unsubscribe = fanout.subscribe(user_id)
    logger.info(f"Event stream opened for user_id={user_id}")
    try:
        yield format_sse(
            "connected",
            {"message": "Connected to event stream", "userId": user_id, "timestamp": utc_now()},
        )
        while not await is_disconnected():
            try:
                frame = await asyncio.wait_for(channel.get(), timeout=heartbeat_interval)
            except asyncio.TimeoutError:
                yield format_sse("heartbeat", {"timestamp": utc_now()})
                continue
            yield format_sse(frame.event, frame.data)
    finally:
        unsubscribe()
        logger.info(f"Event stream closed for user_id={user_id}")
