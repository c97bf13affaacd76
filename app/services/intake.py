"""Intake: create records and hand them to the submission queue."""
import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import InfrastructureUnavailableError
from app.models.transaction import Transaction, TxStatus
from app.schemas.transaction import TransactionCreate
from app.services.queue import SubmissionQueue
from app.services.record_store import RecordStore

logger = logging.getLogger(__name__)


class TransactionService:
    """Service behind the intake and query endpoints."""

    def __init__(self, db: AsyncSession, queue: SubmissionQueue):
        self.store = RecordStore(db)
        self.queue = queue

    async def create(self, tx_data: TransactionCreate) -> Transaction:
        """Create a PENDING_SIGN record and enqueue it for submission."""
        tx = await self.store.create(
            user_address=tx_data.user_address,
            chain_id=tx_data.chain_id,
            contract_address=tx_data.contract_address,
            method=tx_data.method,
            args=tx_data.args,
        )

        try:
            cursor = await self.queue.enqueue(
                tx.id,
                tx.chain_id,
                tx.contract_address,
                tx.method,
                tx.args,
                tx.user_address,
            )
        except InfrastructureUnavailableError:
            # No queue entry exists for it
            await self.store.transition(tx, TxStatus.FAILED)
            raise
        tx.queue_cursor = cursor
        await self.store.save(tx)

        logger.info(f"Transaction {tx.id} created for {tx.user_address} on chain {tx.chain_id}")
        return tx

    async def find_by_user_address(self, user_address: str) -> List[Transaction]:
        return await self.store.find_by_user_address(user_address)
