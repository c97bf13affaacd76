"""Reorg resolver: REORGED -> FAILED | PENDING_SIGN."""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.exceptions import InfrastructureUnavailableError
from app.models.transaction import StatusReason, TxStatus
from app.services.event_bus import EventBus
from app.services.gateway import ChainGateway, GatewayRegistry
from app.services.queue import SubmissionQueue
from app.services.record_store import RecordStore
from app.workers.watcher import publish_status

logger = logging.getLogger(__name__)


class ReorgResolver:
    """
    Decides what happens to transactions displaced by a reorg.

    The account nonce is compared with the nonce stashed on the record:
    past it means another transaction took the slot, equal means the slot
    is still free and the call is queued again, below it means wait.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        queue: SubmissionQueue,
        bus: EventBus,
        gateways: GatewayRegistry,
    ):
        self.session_maker = session_maker
        self.queue = queue
        self.bus = bus
        self.gateways = gateways

    async def check_reorged_transactions(self, chain_id: str) -> None:
        async with self.session_maker() as session:
            reorged_txs = await RecordStore(session).find_by_chain_and_status(chain_id, TxStatus.REORGED)
            tx_ids: List[str] = [tx.id for tx in reorged_txs]

        if not tx_ids:
            return
        logger.info(f"Found {len(tx_ids)} reorged tx(s) to resolve on chain {chain_id}.")
        gateway = self.gateways.get(chain_id)

        for tx_id in tx_ids:
            try:
                await self._resolve(gateway, tx_id)
            except Exception as e:
                logger.error(f"Error resolving reorged transaction {tx_id}: {e}", exc_info=True)

    async def _resolve(self, gateway: ChainGateway, tx_id: str) -> Optional[TxStatus]:
        async with self.session_maker() as session:
            store = RecordStore(session)
            tx = await store.get(tx_id)
            if tx is None or tx.status != TxStatus.REORGED:
                return None
            if tx.nonce is None or not tx.user_address:
                logger.warning(f"Reorged transaction {tx.id} has no nonce or user address. Skipping.")
                return None

            account_nonce = await gateway.get_transaction_count(tx.user_address, "latest")

            if account_nonce > tx.nonce:
                logger.warning(
                    f"Nonce {tx.nonce} of transaction {tx.id} was replaced "
                    f"(account nonce {account_nonce}). Marking as FAILED."
                )
                await store.transition(tx, TxStatus.FAILED)
                await publish_status(self.bus, tx, reason=StatusReason.NONCE_REPLACED)
                return TxStatus.FAILED

            if account_nonce == tx.nonce:
                previous_hash = tx.tx_hash
                # Committed before the XADD so a submitter woken by it sees PENDING_SIGN
                await store.transition(
                    tx,
                    TxStatus.PENDING_SIGN,
                    queue_cursor=None,
                    tx_hash=None,
                    block_number=None,
                    nonce=None,
                )
                await publish_status(self.bus, tx, reason=StatusReason.AUTO_RESUBMITTED, tx_hash=previous_hash)

                try:
                    cursor = await self.queue.enqueue(
                        tx.id,
                        tx.chain_id,
                        tx.contract_address,
                        tx.method,
                        tx.args,
                        tx.user_address,
                    )
                except InfrastructureUnavailableError as e:
                    logger.error(f"Could not requeue transaction {tx.id}: {e}. Marking as FAILED.")
                    await store.transition(tx, TxStatus.FAILED)
                    await publish_status(self.bus, tx, tx_hash=previous_hash)
                    return TxStatus.FAILED

                tx.queue_cursor = cursor
                await store.save(tx)
                logger.info(f"Transaction {tx.id} resubmitted as queue entry {cursor}")
                return TxStatus.PENDING_SIGN

            logger.info(
                f"Account nonce {account_nonce} still below {tx.nonce} for transaction {tx.id}. Waiting."
            )
            return None
