"""Lifecycle event payloads carried on the event bus."""
import json
from datetime import datetime
from typing import Any, Dict, Optional, Type, Union

from pydantic import BaseModel, Field, ValidationError

from app.exceptions import MalformedEventError
from app.models.transaction import StatusReason, TxStatus

TX_SENT = "tx.sent"
TX_STATUS = "tx.status"


class TxSentEvent(BaseModel):
    """Published once a record's transaction has been broadcast."""
    transaction_id: str = Field(..., alias="transactionId", min_length=1)
    tx_hash: str = Field(..., alias="txHash", min_length=1)

    class Config:
        populate_by_name = True


class TxStatusEvent(BaseModel):
    """Published on every watcher or resolver transition."""
    transaction_id: str = Field(..., alias="transactionId", min_length=1)
    status: TxStatus
    tx_hash: Optional[str] = Field(None, alias="txHash")
    block_number: Optional[int] = Field(None, alias="blockNumber")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    reason: Optional[StatusReason] = None

    class Config:
        populate_by_name = True


BusEvent = Union[TxSentEvent, TxStatusEvent]

TOPIC_SCHEMAS: Dict[str, Type[BaseModel]] = {
    TX_SENT: TxSentEvent,
    TX_STATUS: TxStatusEvent,
}


def encode_event(event: BaseModel) -> str:
    """Serialize an event to its JSON wire form (camelCase, no nulls)."""
    return event.model_dump_json(by_alias=True, exclude_none=True)


def decode_event(topic: str, raw: Union[str, bytes, Dict[str, Any], None]) -> BusEvent:
    """
    Decode a raw payload against the schema registered for ``topic``.

    Raises MalformedEventError for unknown topics, invalid JSON or a
    payload that does not match the topic's schema.
    """
    schema = TOPIC_SCHEMAS.get(topic)
    if schema is None:
        raise MalformedEventError(f"Unknown topic {topic}")
    if raw is None:
        raise MalformedEventError(f"Empty {topic} payload")

    data = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MalformedEventError(f"Invalid {topic} payload", str(e))
    if not isinstance(data, dict):
        raise MalformedEventError(f"Invalid {topic} payload", data)

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise MalformedEventError(f"Invalid {topic} payload", e.errors())
