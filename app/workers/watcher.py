"""Confirmation watcher: PENDING -> CONFIRMED | FAILED | REORGED."""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.models.transaction import Transaction, TxStatus
from app.schemas.events import TX_STATUS, TxStatusEvent
from app.services.event_bus import EventBus
from app.services.gateway import ChainGateway, GatewayRegistry, normalize_hash
from app.services.queue import SubmissionQueue
from app.services.record_store import RecordStore

logger = logging.getLogger(__name__)


async def publish_status(bus: EventBus, tx: Transaction, reason=None, tx_hash: Optional[str] = None) -> bool:
    """Publish a ``tx.status`` event for the record's current state."""
    event = TxStatusEvent(
        transaction_id=tx.id,
        status=tx.status,
        tx_hash=tx_hash if tx_hash is not None else tx.tx_hash,
        block_number=tx.block_number,
        updated_at=tx.updated_at,
        reason=reason,
    )
    return await bus.publish(TX_STATUS, event)


async def drain_queue_entry(queue: SubmissionQueue, tx: Transaction) -> None:
    """Remove the record's submission entry once it has resolved."""
    if not tx.queue_cursor:
        return
    try:
        await queue.delete(tx.queue_cursor)
        logger.info(f"Deleted queue entry {tx.queue_cursor} for transaction {tx.id}")
    except Exception as e:
        logger.error(f"Failed to delete queue entry for transaction {tx.id}: {e}")


class ConfirmationWatcher:
    """
    Resolves PENDING records on one chain per call.

    Records with a known block number go through the finality check: once
    the block is finalized the tx must be in it, otherwise it was reorged
    out. The rest go through the receipt and confirmation count.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        queue: SubmissionQueue,
        bus: EventBus,
        gateways: GatewayRegistry,
        required_confirmations: int = 3,
        track_finality: bool = False,
    ):
        self.session_maker = session_maker
        self.queue = queue
        self.bus = bus
        self.gateways = gateways
        self.required_confirmations = required_confirmations
        self.track_finality = track_finality

    async def check_pending_transactions(self, chain_id: str) -> None:
        logger.info(f"Checking pending transactions on chain {chain_id}")

        async with self.session_maker() as session:
            pending_txs = await RecordStore(session).find_by_chain_and_status(chain_id, TxStatus.PENDING)
            tx_ids: List[str] = [tx.id for tx in pending_txs]

        if not tx_ids:
            return
        logger.info(f"Found {len(tx_ids)} pending tx(s) to check on chain {chain_id}.")
        gateway = self.gateways.get(chain_id)

        for tx_id in tx_ids:
            try:
                await self._check_transaction(gateway, tx_id)
            except Exception as e:
                logger.error(f"Error checking transaction {tx_id}: {e}", exc_info=True)

    async def _check_transaction(self, gateway: ChainGateway, tx_id: str) -> Optional[TxStatus]:
        async with self.session_maker() as session:
            store = RecordStore(session)
            tx = await store.get(tx_id)
            # Another process may have moved it since the scan
            if tx is None or tx.status != TxStatus.PENDING:
                return None

            if not tx.tx_hash:
                logger.warning(f"Pending transaction {tx.id} has no hash yet. Skipping.")
                return None

            if tx.block_number is not None:
                new_status = await self._check_finality(gateway, tx)
            else:
                new_status = await self._check_receipt(gateway, store, tx)

            if new_status is None:
                return None

            await store.transition(tx, new_status)
            await publish_status(self.bus, tx)
            await drain_queue_entry(self.queue, tx)
            return new_status

    async def _check_finality(self, gateway: ChainGateway, tx: Transaction) -> Optional[TxStatus]:
        if not await gateway.is_block_finalized(tx.block_number):
            logger.info(f"Block {tx.block_number} for tx {tx.tx_hash} is not finalized yet.")
            return None

        hashes = await gateway.get_block_transaction_hashes(tx.block_number)
        if normalize_hash(tx.tx_hash) in hashes:
            logger.info(f"Transaction {tx.tx_hash} is finalized and confirmed!")
            return TxStatus.CONFIRMED

        logger.error(f"Transaction {tx.tx_hash} not found in finalized block {tx.block_number}. Marking as REORGED.")
        return TxStatus.REORGED

    async def _check_receipt(
        self,
        gateway: ChainGateway,
        store: RecordStore,
        tx: Transaction,
    ) -> Optional[TxStatus]:
        receipt = await gateway.get_transaction_receipt(tx.tx_hash)
        if not receipt:
            return None

        confirmations = await gateway.get_confirmations(receipt)
        logger.info(
            f"Tx {tx.tx_hash} has {confirmations}/{self.required_confirmations} confirmations."
        )

        succeeded = receipt.get("status") == 1
        if confirmations < self.required_confirmations:
            if self.track_finality and succeeded and receipt.get("blockNumber") is not None:
                tx.block_number = receipt["blockNumber"]
                await store.save(tx)
                logger.info(f"Tracking finality of tx {tx.tx_hash} in block {tx.block_number}")
            return None

        if succeeded:
            logger.info(f"Transaction {tx.tx_hash} confirmed!")
            return TxStatus.CONFIRMED

        logger.error(f"Transaction {tx.tx_hash} failed (reverted).")
        return TxStatus.FAILED
