"""Transaction record model and status state machine."""
import enum
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, Enum, Index, JSON, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class TxStatus(str, enum.Enum):
    """
    Transaction status state machine.

    PENDING_SIGN -> PENDING -> CONFIRMED, with FAILED and REORGED as the
    failure exits. REORGED records are either resubmitted or failed.
    """
    PENDING_SIGN = "PENDING_SIGN"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    REORGED = "REORGED"


VALID_TRANSITIONS = {
    # Submission worker
    TxStatus.PENDING_SIGN: [TxStatus.PENDING, TxStatus.FAILED],
    # Confirmation watcher
    TxStatus.PENDING: [TxStatus.CONFIRMED, TxStatus.FAILED, TxStatus.REORGED],
    # Reorg resolver
    TxStatus.REORGED: [TxStatus.FAILED, TxStatus.PENDING_SIGN],
    TxStatus.CONFIRMED: [],  # Terminal state
    TxStatus.FAILED: [],  # Terminal state
}


class StatusReason(str, enum.Enum):
    """Reason attached to a tx.status event by the reorg resolver."""
    NONCE_REPLACED = "nonce_replaced"
    AUTO_RESUBMITTED = "auto_resubmitted"


class Transaction(Base):
    """A user's contract call, tracked from queue to finality."""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4()))

    user_address: Mapped[str] = mapped_column(String(42), nullable=False)
    chain_id: Mapped[str] = mapped_column(String(20), nullable=False)

    # The call, immutable after creation
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    method: Mapped[str] = mapped_column(String(100), nullable=False)
    args: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Submission tracking
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    queue_cursor: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    nonce: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    status: Mapped[TxStatus] = mapped_column(Enum(TxStatus), default=TxStatus.PENDING_SIGN, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_transactions_chain_status", "chain_id", "status"),
        Index("ix_transactions_user_address", "user_address"),
    )

    def can_transition_to(self, new_status: TxStatus) -> bool:
        """Check if transition to new status is valid."""
        return new_status in VALID_TRANSITIONS.get(self.status, [])

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.chain_id} {self.status.value if self.status else None}>"


class QueueCheckpoint(Base):
    """Last submission-queue cursor a consumer has fully processed."""
    __tablename__ = "queue_checkpoints"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    cursor: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
