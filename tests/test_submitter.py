"""Tests for the submission worker."""
from uuid import uuid4

import pytest

from app.models.transaction import TxStatus
from app.schemas.events import TX_SENT, TxSentEvent
from app.services.record_store import CheckpointStore
from app.workers.submitter import SubmissionWorker
from conftest import TX_HASH


def _worker(session_maker, queue, bus, gateways, **kwargs) -> SubmissionWorker:
    kwargs.setdefault("send_initial_seconds", 0)
    return SubmissionWorker(session_maker, queue, bus, gateways, **kwargs)


async def _enqueue(queue, tx) -> str:
    return await queue.enqueue(tx.id, tx.chain_id, tx.contract_address, tx.method, tx.args, tx.user_address)


@pytest.mark.asyncio
async def test_submit_success(session_maker, queue, bus, gateways, gateway, make_record, load_record):
    """A sent transaction moves to PENDING with hash and nonce, and emits tx.sent."""
    tx = await make_record()
    cursor = await _enqueue(queue, tx)
    worker = _worker(session_maker, queue, bus, gateways)

    assert await worker.process_next() is True

    saved = await load_record(tx.id)
    assert saved.status == TxStatus.PENDING
    assert saved.tx_hash == TX_HASH
    assert saved.nonce == 5
    assert saved.queue_cursor == cursor
    assert worker.last_cursor == cursor

    assert len(gateway.sent) == 1
    assert bus.topics() == [TX_SENT]
    event = bus.published[0][1]
    assert isinstance(event, TxSentEvent)
    assert event.transaction_id == tx.id
    assert event.tx_hash == TX_HASH

    # The entry stays until the watcher resolves the record
    assert cursor in queue.entries


@pytest.mark.asyncio
async def test_empty_queue_returns_false(session_maker, queue, bus, gateways):
    worker = _worker(session_maker, queue, bus, gateways)

    assert await worker.process_next() is False
    assert worker.last_cursor == "0"


@pytest.mark.asyncio
async def test_estimate_failure_marks_failed(session_maker, queue, bus, gateways, gateway, make_record, load_record):
    """Preflight rejection fails the record without sending or publishing."""
    gateway.estimate_error = ValueError("execution reverted")
    tx = await make_record()
    cursor = await _enqueue(queue, tx)

    await _worker(session_maker, queue, bus, gateways).process_next()

    saved = await load_record(tx.id)
    assert saved.status == TxStatus.FAILED
    assert gateway.sent == []
    assert bus.published == []
    assert cursor in queue.deleted


@pytest.mark.asyncio
async def test_unencodable_call_marks_failed(session_maker, queue, bus, gateways, gateway, make_record, load_record):
    tx = await make_record(args=["not-an-address", "1"])
    await _enqueue(queue, tx)

    await _worker(session_maker, queue, bus, gateways).process_next()

    saved = await load_record(tx.id)
    assert saved.status == TxStatus.FAILED
    assert gateway.estimated == []


@pytest.mark.asyncio
async def test_send_retries_then_succeeds(session_maker, queue, bus, gateways, gateway, make_record, load_record):
    gateway.send_errors = [ConnectionError("rpc down"), ConnectionError("rpc down")]
    tx = await make_record()
    await _enqueue(queue, tx)

    await _worker(session_maker, queue, bus, gateways, send_attempts=5).process_next()

    saved = await load_record(tx.id)
    assert saved.status == TxStatus.PENDING
    assert len(gateway.sent) == 1
    # One signature, broadcast three times
    assert len(gateway.signed) == 1
    assert gateway.broadcasts == gateway.signed * 3


@pytest.mark.asyncio
async def test_send_retries_exhausted_marks_failed(
    session_maker, queue, bus, gateways, gateway, make_record, load_record
):
    gateway.send_errors = [ConnectionError("rpc down")] * 3
    tx = await make_record()
    cursor = await _enqueue(queue, tx)
    worker = _worker(session_maker, queue, bus, gateways, send_attempts=3)

    await worker.process_next()

    saved = await load_record(tx.id)
    assert saved.status == TxStatus.FAILED
    assert saved.tx_hash is None
    assert bus.published == []
    assert cursor in queue.deleted
    assert worker.last_cursor == cursor


@pytest.mark.asyncio
async def test_unknown_chain_marks_failed(session_maker, queue, bus, gateways, make_record, load_record):
    tx = await make_record(chain_id="0xaa36a7")
    await _enqueue(queue, tx)

    await _worker(session_maker, queue, bus, gateways).process_next()

    saved = await load_record(tx.id)
    assert saved.status == TxStatus.FAILED


@pytest.mark.asyncio
async def test_redelivered_entry_is_not_resent(session_maker, queue, bus, gateways, gateway, make_record, load_record):
    """An entry whose record already left PENDING_SIGN is skipped."""
    tx = await make_record(status=TxStatus.PENDING, tx_hash=TX_HASH, nonce=5)
    cursor = await _enqueue(queue, tx)
    worker = _worker(session_maker, queue, bus, gateways)

    assert await worker.process_next() is True

    saved = await load_record(tx.id)
    assert saved.status == TxStatus.PENDING
    assert gateway.sent == []
    assert bus.published == []
    assert worker.last_cursor == cursor


@pytest.mark.asyncio
async def test_missing_record_is_skipped(session_maker, queue, bus, gateways, gateway):
    cursor = await queue.enqueue(str(uuid4()), "0x61", "0x" + "11" * 20, "transfer", ["0x" + "22" * 20, "1"], "0xU")
    worker = _worker(session_maker, queue, bus, gateways)

    assert await worker.process_next() is True

    assert gateway.sent == []
    assert worker.last_cursor == cursor


@pytest.mark.asyncio
async def test_malformed_entry_is_skipped(session_maker, queue, bus, gateways, gateway):
    cursor = queue.push_raw({"transactionId": "abc"})
    worker = _worker(session_maker, queue, bus, gateways)

    assert await worker.process_next() is True

    assert worker.last_cursor == cursor
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_publish_failure_keeps_pending(session_maker, queue, bus, gateways, make_record, load_record):
    """The record change is committed even when tx.sent cannot be published."""
    bus.fail = True
    tx = await make_record()
    await _enqueue(queue, tx)

    await _worker(session_maker, queue, bus, gateways).process_next()

    saved = await load_record(tx.id)
    assert saved.status == TxStatus.PENDING
    assert saved.tx_hash == TX_HASH


@pytest.mark.asyncio
async def test_cursor_checkpoint_persisted(session_maker, queue, bus, gateways, make_record):
    tx = await make_record()
    cursor = await _enqueue(queue, tx)

    await _worker(session_maker, queue, bus, gateways).process_next()

    async with session_maker() as session:
        assert await CheckpointStore(session).load(SubmissionWorker.CHECKPOINT_NAME) == cursor


@pytest.mark.asyncio
async def test_checkpoint_disabled(session_maker, queue, bus, gateways, make_record):
    tx = await make_record()
    await _enqueue(queue, tx)

    await _worker(session_maker, queue, bus, gateways, resume_from_checkpoint=False).process_next()

    async with session_maker() as session:
        assert await CheckpointStore(session).load(SubmissionWorker.CHECKPOINT_NAME) is None


@pytest.mark.asyncio
async def test_entries_processed_in_order(session_maker, queue, bus, gateways, gateway, make_record, load_record):
    first = await make_record()
    second = await make_record()
    await _enqueue(queue, first)
    await _enqueue(queue, second)
    worker = _worker(session_maker, queue, bus, gateways)

    await worker.process_next()
    assert (await load_record(first.id)).status == TxStatus.PENDING
    assert (await load_record(second.id)).status == TxStatus.PENDING_SIGN

    await worker.process_next()
    assert (await load_record(second.id)).status == TxStatus.PENDING
    assert [event.transaction_id for _, event in bus.published] == [first.id, second.id]
