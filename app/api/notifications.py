"""Notification stream for operator consoles."""
import asyncio
import logging
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.core.dependencies import get_notification_hub
from app.services.notifications import NotificationHub

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/notifications")
async def notifications_stream(
    websocket: WebSocket,
    hub: NotificationHub = Depends(get_notification_hub),
):
    """Push user notifications and call broadcasts to a console."""
    queue = hub.subscribe()
    await websocket.accept()
    logger.info(
        f"[NOTIFY] Console connected - Client: {websocket.client.host if websocket.client else 'unknown'}"
    )

    async def forward():
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    async def wait_for_disconnect():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return

    tasks = {asyncio.create_task(forward()), asyncio.create_task(wait_for_disconnect())}
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning(f"[NOTIFY] Console stream ended: {task.exception()}")
    finally:
        hub.unsubscribe(queue)
        logger.info("[NOTIFY] Console disconnected")
