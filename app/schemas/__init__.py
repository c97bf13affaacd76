"""Pydantic schemas for API validation and bus payloads."""
from app.schemas.common import (
    CorrelatedResponse,
    ErrorResponse,
    HealthResponse,
)
from app.schemas.events import (
    TX_SENT,
    TX_STATUS,
    TxSentEvent,
    TxStatusEvent,
    decode_event,
    encode_event,
)
from app.schemas.transaction import (
    TransactionCreate,
    TransactionResponse,
)

__all__ = [
    "CorrelatedResponse",
    "ErrorResponse",
    "HealthResponse",
    "TX_SENT",
    "TX_STATUS",
    "TxSentEvent",
    "TxStatusEvent",
    "decode_event",
    "encode_event",
    "TransactionCreate",
    "TransactionResponse",
]
