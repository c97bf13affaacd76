"""Submission worker: PENDING_SIGN -> PENDING | FAILED."""
import asyncio
import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from app.exceptions import (
    GatewayNotFoundError,
    MalformedEventError,
    PreflightRejectedError,
    SendRetriesExhaustedError,
)
from app.models.transaction import Transaction, TxStatus
from app.schemas.events import TX_SENT, TxSentEvent
from app.services.event_bus import EventBus
from app.services.gateway import ChainGateway, GatewayRegistry, SentTransaction, SignedCall, encode_call
from app.services.queue import BEGINNING, QueueEntry, SubmissionQueue
from app.services.record_store import CheckpointStore, RecordStore

logger = logging.getLogger(__name__)


class SubmissionWorker:
    """
    Pulls entries off the submission queue one at a time, signs and sends
    each record's call, and publishes ``tx.sent``.

    The cursor only advances after the record's outcome is committed, so a
    crash mid-entry leads to redelivery. Redelivered entries whose record
    already left PENDING_SIGN are skipped without sending.
    """

    CHECKPOINT_NAME = "submission-worker"

    def __init__(
        self,
        session_maker: async_sessionmaker,
        queue: SubmissionQueue,
        bus: EventBus,
        gateways: GatewayRegistry,
        block_timeout_ms: int = 5000,
        error_backoff_seconds: float = 5,
        send_attempts: int = 5,
        send_initial_seconds: float = 1,
        resume_from_checkpoint: bool = True,
    ):
        self.session_maker = session_maker
        self.queue = queue
        self.bus = bus
        self.gateways = gateways
        self.block_timeout_ms = block_timeout_ms
        self.error_backoff_seconds = error_backoff_seconds
        self.send_attempts = send_attempts
        self.send_initial_seconds = send_initial_seconds
        self.resume_from_checkpoint = resume_from_checkpoint
        self.last_cursor = BEGINNING
        self._running = False

    async def start(self):
        """Run the processing loop until ``stop`` is called."""
        self._running = True
        if self.resume_from_checkpoint:
            async with self.session_maker() as session:
                saved = await CheckpointStore(session).load(self.CHECKPOINT_NAME)
            if saved:
                self.last_cursor = saved
        logger.info(f"Submission worker started from cursor {self.last_cursor}")

        while self._running:
            try:
                await self.process_next()
            except Exception as e:
                logger.error(
                    f"Error in processing loop: {e}. Retrying in {self.error_backoff_seconds}s...",
                    exc_info=True,
                )
                await asyncio.sleep(self.error_backoff_seconds)

    async def stop(self):
        self._running = False
        logger.info("Submission worker stopped")

    async def process_next(self) -> bool:
        """Handle at most one queue entry. Returns False if the read timed out."""
        try:
            entry = await self.queue.read_next(self.last_cursor, self.block_timeout_ms)
        except MalformedEventError as e:
            cursor = e.details["cursor"]
            logger.error(f"Skipping malformed queue entry {cursor}: {e.details.get('reason')}")
            await self._advance(cursor)
            return True

        if entry is None:
            return False

        logger.info(f"Processing transaction {entry.transaction_id} from queue entry {entry.cursor}")
        await self.process_entry(entry)
        await self._advance(entry.cursor)
        return True

    async def _advance(self, cursor: str) -> None:
        self.last_cursor = cursor
        if self.resume_from_checkpoint:
            async with self.session_maker() as session:
                await CheckpointStore(session).store(self.CHECKPOINT_NAME, cursor)

    async def process_entry(self, entry: QueueEntry) -> Optional[TxStatus]:
        """Drive one record out of PENDING_SIGN. Returns the resulting status."""
        async with self.session_maker() as session:
            store = RecordStore(session)

            tx = await store.get(entry.transaction_id)
            if not tx:
                logger.error(f"Transaction {entry.transaction_id} not found in database.")
                return None

            if tx.status != TxStatus.PENDING_SIGN:
                logger.warning(
                    f"Transaction {tx.id} is {tx.status.value}, not PENDING_SIGN. "
                    f"Skipping redelivered entry {entry.cursor}."
                )
                return tx.status

            tx.queue_cursor = entry.cursor
            await store.save(tx)

            try:
                gateway = self.gateways.get(entry.chain_id)
            except GatewayNotFoundError as e:
                logger.error(f"No gateway for tx {tx.id}: {e}. Marking as FAILED.")
                await self._fail(store, tx, entry)
                return TxStatus.FAILED

            try:
                data, gas = await self._preflight(gateway, entry)
                logger.info(f"Gas estimation successful for tx {tx.id}: {gas}")
            except PreflightRejectedError as e:
                logger.error(f"Preflight rejected tx {tx.id}: {e}. Marking as FAILED.")
                await self._fail(store, tx, entry)
                return TxStatus.FAILED

            try:
                sent = await self._send_with_retry(gateway, entry.contract_address, data, gas)
            except SendRetriesExhaustedError as e:
                logger.error(f"Transaction {tx.id} failed after multiple retries: {e}")
                await self._fail(store, tx, entry)
                return TxStatus.FAILED

            logger.info(f"Transaction sent: {sent.tx_hash}")
            await store.transition(tx, TxStatus.PENDING, tx_hash=sent.tx_hash, nonce=sent.nonce)

            logger.info(f"Emitting '{TX_SENT}' for transaction {tx.id} with hash {sent.tx_hash}")
            await self.bus.publish(TX_SENT, TxSentEvent(transaction_id=tx.id, tx_hash=sent.tx_hash))
            return TxStatus.PENDING

    async def _preflight(self, gateway: ChainGateway, entry: QueueEntry) -> Tuple[str, int]:
        """Encode the call and estimate gas. Either failing is a deterministic rejection."""
        try:
            data = encode_call(entry.method, entry.args)
        except Exception as e:
            raise PreflightRejectedError("Call could not be encoded", str(e))
        try:
            gas = await gateway.estimate_gas(entry.contract_address, data)
        except Exception as e:
            raise PreflightRejectedError("Gas estimation failed", str(e))
        return data, gas

    async def _send_with_retry(
        self,
        gateway: ChainGateway,
        contract_address: str,
        data: str,
        gas: int,
    ) -> SentTransaction:
        """
        Sign once, then broadcast with exponential backoff doubling from
        ``send_initial_seconds``. Retries resend the same signed bytes, so a
        broadcast whose response was lost cannot produce a second transaction.
        """
        signed: Optional[SignedCall] = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.send_attempts),
                wait=wait_exponential(multiplier=self.send_initial_seconds, exp_base=2),
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    logger.info(f"Attempt {number} to send transaction...")
                    try:
                        if signed is None:
                            signed = await gateway.sign_transaction(contract_address, data, gas)
                        tx_hash = await gateway.broadcast(signed)
                    except Exception as e:
                        logger.warning(f"Attempt {number} failed: {e}")
                        raise
                    return SentTransaction(tx_hash=tx_hash, nonce=signed.nonce)
        except RetryError as e:
            raise SendRetriesExhaustedError(
                "All retries failed.", str(e.last_attempt.exception())
            )

    async def _fail(self, store: RecordStore, tx: Transaction, entry: QueueEntry) -> None:
        await store.transition(tx, TxStatus.FAILED)
        # A record failed here never reaches PENDING, so nothing else drains its entry
        try:
            await self.queue.delete(entry.cursor)
        except Exception as e:
            logger.error(f"Failed to delete queue entry {entry.cursor} for transaction {tx.id}: {e}")
