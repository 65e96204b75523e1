"""Push channel: WebSocket /api/events.

Connecting subscribes to the notification hub. The first message is a
refresh so the client pulls /api/state; after that one JSON message is sent
per reconciliation transition. Messages from the client are ignored.
"""

from __future__ import annotations

import asyncio
import contextlib

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from tabq.api.routes._deps import get_engine
from tabq.observability.logging import get_logger
from tabq.state.events import Notification
from tabq.sync.hub import Subscription

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["events"])


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        notification = await subscription.next()
        await websocket.send_json(notification.to_dict())


async def _drain_client(websocket: WebSocket) -> None:
    while True:
        await websocket.receive_text()


@router.websocket("/events")
async def events_websocket(websocket: WebSocket) -> None:
    hub = get_engine().hub
    await websocket.accept()
    subscription = hub.subscribe()
    tasks: list[asyncio.Task[None]] = []
    try:
        await websocket.send_json(Notification(type="refresh").to_dict())
        sender = asyncio.create_task(_forward(websocket, subscription))
        receiver = asyncio.create_task(_drain_client(websocket))
        tasks = [sender, receiver]
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning("Push channel closed with error: %s", error)
    finally:
        hub.unsubscribe(subscription)
        for task in tasks:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                await task
