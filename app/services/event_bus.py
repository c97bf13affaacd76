"""Publish/subscribe lifecycle events over Redis Streams consumer groups."""
import asyncio
import logging
import os
import socket
from typing import Awaitable, Callable, Dict, Optional, Sequence, Union

import redis.asyncio as redis
from pydantic import BaseModel

from app.exceptions import MalformedEventError
from app.schemas.events import BusEvent, decode_event, encode_event
from app.services.redis_client import connect_with_retry

logger = logging.getLogger(__name__)

EventHandler = Callable[[BusEvent], Awaitable[None]]


class EventBus:
    """
    At-least-once event bus.

    Each topic is a stream. Every logical subscriber reads through its own
    consumer group, so each message reaches every subscriber type once.
    Messages are acknowledged only after the handler returns.
    """

    def __init__(
        self,
        client: redis.Redis,
        connect_attempts: int = 10,
        connect_initial_seconds: float = 2,
        connect_growth: float = 1.5,
        connect_max_seconds: float = 30,
        error_backoff_seconds: float = 5,
    ):
        self.client = client
        self.connect_attempts = connect_attempts
        self.connect_initial_seconds = connect_initial_seconds
        self.connect_growth = connect_growth
        self.connect_max_seconds = connect_max_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.degraded = False
        self._running = False

    async def connect(self) -> bool:
        """Connect with capped backoff; fall back to degraded mode on failure."""
        connected = await connect_with_retry(
            self.client,
            "event bus",
            attempts=self.connect_attempts,
            initial_seconds=self.connect_initial_seconds,
            growth=self.connect_growth,
            max_seconds=self.connect_max_seconds,
        )
        self.degraded = not connected
        return connected

    async def publish(self, topic: str, payload: Union[BaseModel, Dict]) -> bool:
        """
        Publish ``payload`` on ``topic``.

        Failures are logged and reported through the return value; they are
        never retried and never raised.
        """
        try:
            body = encode_event(payload) if isinstance(payload, BaseModel) else encode_event(
                decode_event(topic, payload)
            )
            await self.client.xadd(topic, {"payload": body})
            logger.info(f"Published {topic}: {body}")
            return True
        except Exception as e:
            logger.error(f"Failed to publish {topic} message: {e}")
            return False

    async def _ensure_group(self, topic: str, group: str) -> None:
        # New groups read from the first entry, so events published before they exist are kept
        try:
            await self.client.xgroup_create(topic, group, id="0", mkstream=True)
            logger.info(f"Created consumer group {group} on {topic}")
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def _dispatch(
        self,
        topic: str,
        group: str,
        message_id: str,
        fields: Optional[Dict[str, str]],
        handler: EventHandler,
    ) -> None:
        try:
            event = decode_event(topic, (fields or {}).get("payload"))
        except MalformedEventError as e:
            logger.error(f"Discarding malformed message {message_id} from {topic}: {e}")
            await self.client.xack(topic, group, message_id)
            return

        try:
            await handler(event)
        except Exception as e:
            # Left pending; redelivered when this consumer restarts
            logger.error(f"Error processing message {message_id} from {topic}: {e}", exc_info=True)
            return

        await self.client.xack(topic, group, message_id)

    async def _drain_pending(
        self,
        topic: str,
        group: str,
        consumer: str,
        handler: EventHandler,
    ) -> None:
        """Replay entries delivered to this consumer but never acknowledged."""
        last_id = "0"
        while self._running:
            response = await self.client.xreadgroup(group, consumer, {topic: last_id}, count=10)
            messages = response[0][1] if response else []
            if not messages:
                return
            for message_id, fields in messages:
                await self._dispatch(topic, group, message_id, fields, handler)
                last_id = message_id

    async def _read(
        self,
        topics: Sequence[str],
        group: str,
        consumer: str,
        handler: EventHandler,
        block_ms: Optional[int],
    ) -> int:
        response = await self.client.xreadgroup(
            group, consumer, {topic: ">" for topic in topics}, count=10, block=block_ms
        )
        handled = 0
        for topic, messages in response or []:
            for message_id, fields in messages:
                await self._dispatch(topic, group, message_id, fields, handler)
                handled += 1
        return handled

    async def _join(
        self,
        topics: Sequence[str],
        group: str,
        consumer: str,
        handler: EventHandler,
    ) -> None:
        for topic in topics:
            await self._ensure_group(topic, group)
        logger.info(f"Subscribed to topics: {', '.join(topics)} as {group}/{consumer}")

        for topic in topics:
            await self._drain_pending(topic, group, consumer, handler)

    async def subscribe(
        self,
        topics: Sequence[str],
        group: str,
        handler: EventHandler,
        consumer: Optional[str] = None,
        block_ms: int = 5000,
    ) -> None:
        """
        Consume ``topics`` as ``group`` until ``stop`` is called.

        Joining the group is retried like any read, so a consumer started
        while Redis is down begins delivering once it comes back. Any failure
        joins again, which recreates groups lost with a Redis restart.
        """
        consumer = consumer or f"{group}-{socket.gethostname()}-{os.getpid()}"
        self._running = True
        joined = False

        while self._running:
            try:
                if not joined:
                    await self._join(topics, group, consumer, handler)
                    joined = True
                await self._read(topics, group, consumer, handler, block_ms)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                joined = False
                logger.error(
                    f"Event bus read failed: {e}. Retrying in {self.error_backoff_seconds}s...",
                    exc_info=True,
                )
                await asyncio.sleep(self.error_backoff_seconds)

    async def stop(self) -> None:
        self._running = False
        logger.info("Event bus consumer stopped")
