"""
Notification Router for Chest of Notes API.

Pushes upload outcome events to connected clients:
- GET /notifications/     Server-Sent Events stream
- WS  /notifications/ws   the same events as JSON frames

Each connection owns one bus subscription for its lifetime. Events are never
replayed, so a client only sees outcomes published while it is connected.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from models import UploadEvent
from services.container import NotesContainer, get_container
from services.notification_bus import NotificationBus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: UploadEvent) -> str:
    data = json.dumps(event.to_api())
    return f"id: {event.id}\nevent: {event.outcome.event_name}\ndata: {data}\n\n"


async def event_stream(
    request: Request,
    bus: NotificationBus,
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    """SSE frames for every published event until the client goes away."""
    subscription = bus.subscribe()
    logger.info(f"SSE client connected ({subscription.handle})")
    try:
        yield ": connected\n\n"
        while True:
            if await request.is_disconnected():
                break
            event = await subscription.get(timeout=keepalive_seconds)
            if event is None:
                yield ": keep-alive\n\n"
                continue
            yield format_sse(event)
    finally:
        subscription.close()
        logger.info(f"SSE client disconnected ({subscription.handle})")


@router.get("/")
async def stream_notifications(
    request: Request,
    container: NotesContainer = Depends(get_container),
):
    return StreamingResponse(
        event_stream(request, container.bus, container.settings.sse_keepalive_seconds),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws")
async def notifications_websocket(
    websocket: WebSocket,
    container: NotesContainer = Depends(get_container),
):
    await websocket.accept()
    subscription = container.bus.subscribe()
    receiver = asyncio.ensure_future(_wait_for_disconnect(websocket))
    getter: Optional[asyncio.Future] = None
    try:
        await websocket.send_json({"type": "connected", "subscriber": subscription.handle})
        while True:
            getter = asyncio.ensure_future(subscription.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                break
            event = getter.result()
            if event is not None:
                await websocket.send_json(
                    {"type": event.outcome.event_name, "data": event.to_api()}
                )
    except WebSocketDisconnect:
        pass
    finally:
        if getter is not None and not getter.done():
            getter.cancel()
        receiver.cancel()
        subscription.close()
        logger.info(f"WebSocket client disconnected ({subscription.handle})")
