"""Server-sent event stream of notifications and worker events."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ...contracts import Principal
from ...fanout import stream_events
from ..deps import Services, current_principal, get_services

router = APIRouter(prefix="/api", tags=["events"])


@router.get("/events")
async def events(
    request: Request,
    principal: Principal = Depends(current_principal),
    services: Services = Depends(get_services),
):
    stream = stream_events(
        services.fanout,
        principal.user_id,
        request.is_disconnected,
        services.config.fanout.heartbeat_interval,
    )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
