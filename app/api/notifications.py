"""WebSocket endpoint for per-user transaction notifications."""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.services.notifier import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/notifications")

# Global connection manager
manager = ConnectionManager()


@router.websocket("/ws")
async def notifications_websocket(
    websocket: WebSocket,
    user_address: Optional[str] = Query(None, alias="userAddress"),
):
    """
    Join the room for ``userAddress`` and receive ``statusUpdate`` and
    ``reorged`` events. Incoming messages other than ping are ignored.
    """
    if not user_address:
        await websocket.accept()
        await websocket.send_json({"event": "error", "data": {"error": "userAddress is required"}})
        await websocket.close()
        return

    await manager.connect(websocket, user_address)
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user_address}")
    finally:
        await manager.disconnect(websocket, user_address)
