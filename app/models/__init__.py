"""Database models package."""
from app.models.transaction import (
    Transaction,
    TxStatus,
    StatusReason,
    QueueCheckpoint,
    VALID_TRANSITIONS,
)

__all__ = [
    "Transaction",
    "TxStatus",
    "StatusReason",
    "QueueCheckpoint",
    "VALID_TRANSITIONS",
]
