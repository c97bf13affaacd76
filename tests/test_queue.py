"""Tests for the Redis-stream submission queue."""
import json
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from app.exceptions import InfrastructureUnavailableError, MalformedEventError
from app.services.queue import QueueEntry, SubmissionQueue, encode_fields


def _fields(**overrides):
    fields = encode_fields("tx-1", "0x61", "0xC1", "transfer", ["0xR", "42"], "0xU")
    fields.update(overrides)
    return fields


@pytest.mark.asyncio
async def test_enqueue_appends_to_stream():
    client = AsyncMock()
    client.xadd.return_value = "1700000000000-0"
    queue = SubmissionQueue(client, "tx:to-sign")

    cursor = await queue.enqueue("tx-1", "0x61", "0xC1", "transfer", ["0xR", "42"], "0xU")

    assert cursor == "1700000000000-0"
    stream, fields = client.xadd.call_args.args
    assert stream == "tx:to-sign"
    assert fields["transactionId"] == "tx-1"
    assert json.loads(fields["args"]) == ["0xR", "42"]


@pytest.mark.asyncio
async def test_read_next_returns_first_entry_after_cursor():
    client = AsyncMock()
    client.xread.return_value = [["tx:to-sign", [("5-0", _fields())]]]
    queue = SubmissionQueue(client, "tx:to-sign")

    entry = await queue.read_next("4-0", 5000)

    client.xread.assert_awaited_once_with({"tx:to-sign": "4-0"}, count=1, block=5000)
    assert entry == QueueEntry(
        cursor="5-0",
        transaction_id="tx-1",
        chain_id="0x61",
        contract_address="0xC1",
        method="transfer",
        args=["0xR", "42"],
        user_address="0xU",
    )


@pytest.mark.asyncio
async def test_read_next_timeout_returns_none():
    client = AsyncMock()
    client.xread.return_value = []
    queue = SubmissionQueue(client)

    assert await queue.read_next("0", 10) is None


@pytest.mark.asyncio
async def test_read_next_malformed_carries_cursor():
    client = AsyncMock()
    client.xread.return_value = [["tx:to-sign", [("9-0", {"transactionId": "tx-1"})]]]
    queue = SubmissionQueue(client)

    with pytest.raises(MalformedEventError) as exc_info:
        await queue.read_next("0", 10)

    assert exc_info.value.details["cursor"] == "9-0"


def test_entry_rejects_non_list_args():
    with pytest.raises(MalformedEventError):
        QueueEntry.from_fields("1-0", _fields(args=json.dumps({"a": 1})))


def test_entry_rejects_invalid_json_args():
    with pytest.raises(MalformedEventError):
        QueueEntry.from_fields("1-0", _fields(args="[not json"))


@pytest.mark.asyncio
async def test_delete_removes_entry():
    client = AsyncMock()
    queue = SubmissionQueue(client, "tx:to-sign")

    await queue.delete("5-0")

    client.xdel.assert_awaited_once_with("tx:to-sign", "5-0")


@pytest.mark.asyncio
async def test_enqueue_connection_error_is_infrastructure_failure():
    client = AsyncMock()
    client.xadd.side_effect = redis.ConnectionError("Connection refused")
    queue = SubmissionQueue(client)

    with pytest.raises(InfrastructureUnavailableError):
        await queue.enqueue("tx-1", "0x61", "0xC1", "transfer", ["0xR", "42"], "0xU")


@pytest.mark.asyncio
async def test_enqueue_server_error_is_infrastructure_failure():
    client = AsyncMock()
    client.xadd.side_effect = redis.ResponseError("OOM command not allowed when used memory > 'maxmemory'")
    queue = SubmissionQueue(client)

    with pytest.raises(InfrastructureUnavailableError):
        await queue.enqueue("tx-1", "0x61", "0xC1", "transfer", ["0xR", "42"], "0xU")
