"""Submission queue on a Redis stream."""
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import redis.asyncio as redis

from app.exceptions import InfrastructureUnavailableError, MalformedEventError

logger = logging.getLogger(__name__)

# Cursor meaning "before the first entry"
BEGINNING = "0"

_REQUIRED_FIELDS = ("transactionId", "chainId", "contractAddress", "method", "args", "userAddress")


@dataclass
class QueueEntry:
    """One unit of submission work as it travels over the stream."""
    cursor: str
    transaction_id: str
    chain_id: str
    contract_address: str
    method: str
    args: List[str] = field(default_factory=list)
    user_address: str = ""

    @classmethod
    def from_fields(cls, cursor: str, fields: Dict[str, str]) -> "QueueEntry":
        """Decode the flat field list of a stream entry."""
        missing = [name for name in _REQUIRED_FIELDS if name not in fields]
        if missing:
            raise MalformedEventError(f"Queue entry {cursor} missing fields", missing)
        try:
            args = json.loads(fields["args"])
        except (TypeError, ValueError) as e:
            raise MalformedEventError(f"Queue entry {cursor} has invalid args", str(e))
        if not isinstance(args, list):
            raise MalformedEventError(f"Queue entry {cursor} args is not a list", args)

        return cls(
            cursor=cursor,
            transaction_id=fields["transactionId"],
            chain_id=fields["chainId"],
            contract_address=fields["contractAddress"],
            method=fields["method"],
            args=[str(arg) for arg in args],
            user_address=fields["userAddress"],
        )


def encode_fields(
    transaction_id: str,
    chain_id: str,
    contract_address: str,
    method: str,
    args: Sequence[str],
    user_address: str,
) -> Dict[str, str]:
    return {
        "transactionId": transaction_id,
        "chainId": chain_id,
        "contractAddress": contract_address,
        "method": method,
        "args": json.dumps(list(args)),
        "userAddress": user_address,
    }


class SubmissionQueue:
    """
    Durable FIFO of records waiting to be signed and sent.

    Delivery is at-least-once: entries stay in the stream until
    ``delete`` is called for them once their record resolves.
    """

    def __init__(self, client: redis.Redis, stream: str = "tx:to-sign"):
        self.client = client
        self.stream = stream

    async def enqueue(
        self,
        record_id: str,
        chain_id: str,
        contract_address: str,
        method: str,
        args: Sequence[str],
        user_address: str,
    ) -> str:
        """Append an entry and return its cursor."""
        try:
            cursor = await self.client.xadd(
                self.stream,
                encode_fields(record_id, chain_id, contract_address, method, args, user_address),
            )
        except redis.RedisError as e:
            raise InfrastructureUnavailableError(f"Submission queue {self.stream} unavailable", str(e))
        logger.info(f"Enqueued transaction {record_id} on {self.stream} as {cursor}")
        return cursor

    async def read_next(self, after_cursor: str, block_timeout_ms: int) -> Optional[QueueEntry]:
        """
        Return the first entry after ``after_cursor``.

        Blocks up to ``block_timeout_ms`` and returns None if nothing
        arrived. Raises MalformedEventError for an undecodable entry; its
        cursor is available as ``details["cursor"]``.
        """
        response = await self.client.xread(
            {self.stream: after_cursor}, count=1, block=block_timeout_ms
        )
        if not response:
            return None

        _, messages = response[0]
        if not messages:
            return None
        cursor, fields = messages[0]
        try:
            return QueueEntry.from_fields(cursor, fields or {})
        except MalformedEventError as e:
            raise MalformedEventError(e.message, {"cursor": cursor, "reason": e.details})

    async def delete(self, cursor: str) -> None:
        await self.client.xdel(self.stream, cursor)
