"""Tests for event payload encoding and validation."""
import json

import pytest

from app.exceptions import MalformedEventError
from app.models.transaction import StatusReason, TxStatus
from app.schemas.events import TX_SENT, TX_STATUS, TxSentEvent, TxStatusEvent, decode_event, encode_event


def test_encode_uses_camel_case_and_drops_nulls():
    event = TxStatusEvent(transaction_id="tx-1", status=TxStatus.CONFIRMED, tx_hash="0xabc")

    body = json.loads(encode_event(event))

    assert body == {"transactionId": "tx-1", "status": "CONFIRMED", "txHash": "0xabc"}


def test_decode_tx_sent():
    event = decode_event(TX_SENT, '{"transactionId": "tx-1", "txHash": "0xabc"}')

    assert isinstance(event, TxSentEvent)
    assert event.transaction_id == "tx-1"
    assert event.tx_hash == "0xabc"


def test_decode_tx_status_with_reason():
    event = decode_event(
        TX_STATUS,
        {"transactionId": "tx-1", "status": "PENDING_SIGN", "reason": "auto_resubmitted"},
    )

    assert isinstance(event, TxStatusEvent)
    assert event.status == TxStatus.PENDING_SIGN
    assert event.reason == StatusReason.AUTO_RESUBMITTED


@pytest.mark.parametrize(
    "topic,raw",
    [
        (TX_SENT, "{not json"),
        (TX_SENT, '{"transactionId": "tx-1"}'),
        (TX_SENT, '["tx-1", "0xabc"]'),
        (TX_STATUS, '{"transactionId": "tx-1", "status": "LOST"}'),
        (TX_STATUS, None),
        ("tx.unknown", '{"transactionId": "tx-1"}'),
    ],
)
def test_decode_rejects_bad_payloads(topic, raw):
    with pytest.raises(MalformedEventError):
        decode_event(topic, raw)
