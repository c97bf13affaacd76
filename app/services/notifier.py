"""Push lifecycle events to the users that own the transactions."""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.websockets import WebSocketState

from app.models.transaction import TxStatus
from app.schemas.events import BusEvent, TxSentEvent
from app.schemas.transaction import TransactionResponse
from app.services.record_store import RecordStore

logger = logging.getLogger(__name__)

STATUS_UPDATE = "statusUpdate"
REORGED = "reorged"


class Notifier(Protocol):
    async def notify(self, user_address: str, event_name: str, payload: Dict[str, Any]) -> None:
        ...


class ConnectionManager:
    """WebSocket rooms keyed by user address."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_address: str):
        await websocket.accept()
        async with self._lock:
            self.rooms.setdefault(user_address.lower(), set()).add(websocket)
        logger.info(f"Client connected and joined room: {user_address}")

    async def disconnect(self, websocket: WebSocket, user_address: str):
        async with self._lock:
            room = self.rooms.get(user_address.lower())
            if room is not None:
                room.discard(websocket)
                if not room:
                    del self.rooms[user_address.lower()]
        logger.info(f"Client disconnected from room: {user_address}")

    async def notify(self, user_address: str, event_name: str, payload: Dict[str, Any]) -> None:
        message = {"event": event_name, "data": jsonable_encoder(payload)}
        sockets = list(self.rooms.get(user_address.lower(), ()))
        for ws in sockets:
            if ws.client_state != WebSocketState.CONNECTED:
                await self.disconnect(ws, user_address)
                continue
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send {event_name} to {user_address}: {e}")
                await self.disconnect(ws, user_address)
        logger.info(f"Sent event {event_name} to user (room) {user_address}")


class NotificationDispatcher:
    """
    Event bus subscriber that turns ``tx.sent``/``tx.status`` into user
    notifications. Read-only with respect to the record store.
    """

    def __init__(self, session_maker: async_sessionmaker, notifier: Notifier):
        self.session_maker = session_maker
        self.notifier = notifier

    async def handle(self, event: BusEvent) -> Optional[str]:
        """Notify the record's owner. Returns the event name sent, if any."""
        async with self.session_maker() as session:
            tx = await RecordStore(session).get(event.transaction_id)
        if not tx:
            logger.error(f"Transaction with id {event.transaction_id} not found.")
            return None

        if isinstance(event, TxSentEvent):
            payload = TransactionResponse.model_validate(tx).model_dump(by_alias=True)
            payload["txHash"] = event.tx_hash
            await self.notifier.notify(tx.user_address, STATUS_UPDATE, payload)
            return STATUS_UPDATE

        event_name = REORGED if event.status == TxStatus.REORGED else STATUS_UPDATE
        payload = {
            "id": tx.id,
            "status": event.status.value,
            "txHash": event.tx_hash,
            "blockNumber": event.block_number if event.block_number is not None else tx.block_number,
            "updatedAt": event.updated_at or tx.updated_at,
        }
        if event.reason is not None:
            payload["reason"] = event.reason.value
        await self.notifier.notify(tx.user_address, event_name, payload)
        return event_name
