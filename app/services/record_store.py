"""Persistence for transaction records and queue checkpoints."""
import logging
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import InvalidTransitionError
from app.models.transaction import QueueCheckpoint, Transaction, TxStatus

logger = logging.getLogger(__name__)


class RecordStore:
    """
    Reads and writes transaction records.

    Every write commits, so a transition is durable before the caller
    touches the queue or the event bus.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_address: str,
        chain_id: str,
        contract_address: str,
        method: str,
        args: Sequence[str],
    ) -> Transaction:
        """Create a record in PENDING_SIGN."""
        tx = Transaction(
            id=str(uuid4()),
            user_address=user_address,
            chain_id=chain_id.lower(),
            contract_address=contract_address,
            method=method,
            args=list(args),
            status=TxStatus.PENDING_SIGN,
        )
        self.db.add(tx)
        await self.db.commit()
        await self.db.refresh(tx)
        return tx

    async def get(self, tx_id: str) -> Optional[Transaction]:
        result = await self.db.execute(select(Transaction).where(Transaction.id == tx_id))
        return result.scalar_one_or_none()

    async def find_by_user_address(self, user_address: str) -> List[Transaction]:
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.user_address == user_address)
            .order_by(Transaction.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_by_chain_and_status(self, chain_id: str, status: TxStatus) -> List[Transaction]:
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.chain_id == chain_id.lower())
            .where(Transaction.status == status)
            .order_by(Transaction.created_at)
        )
        return list(result.scalars().all())

    async def save(self, tx: Transaction) -> Transaction:
        """Persist field changes that do not move the status."""
        tx.updated_at = datetime.utcnow()
        await self.db.commit()
        return tx

    async def transition(self, tx: Transaction, new_status: TxStatus, **fields) -> Transaction:
        """
        Move a record to ``new_status`` and persist it together with ``fields``.

        Raises InvalidTransitionError for edges outside VALID_TRANSITIONS.
        """
        if not tx.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Invalid transition for tx {tx.id}",
                f"{tx.status.value} -> {new_status.value}",
            )

        old_status = tx.status
        for name, value in fields.items():
            setattr(tx, name, value)
        tx.status = new_status
        tx.updated_at = datetime.utcnow()
        await self.db.commit()

        logger.info(f"Transaction {tx.id} status {old_status.value} -> {new_status.value}")
        return tx

    async def rollback(self) -> None:
        await self.db.rollback()


class CheckpointStore:
    """Durable last-processed cursor per queue consumer."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, name: str) -> Optional[str]:
        result = await self.db.execute(select(QueueCheckpoint).where(QueueCheckpoint.name == name))
        checkpoint = result.scalar_one_or_none()
        return checkpoint.cursor if checkpoint else None

    async def store(self, name: str, cursor: str) -> None:
        result = await self.db.execute(select(QueueCheckpoint).where(QueueCheckpoint.name == name))
        checkpoint = result.scalar_one_or_none()
        if checkpoint is None:
            self.db.add(QueueCheckpoint(name=name, cursor=cursor))
        else:
            checkpoint.cursor = cursor
            checkpoint.updated_at = datetime.utcnow()
        await self.db.commit()
