"""Pytest configuration and fixtures."""
from typing import AsyncGenerator, Dict, List, Optional, Sequence, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.database import Base, create_session_maker
from app.exceptions import MalformedEventError
from app.models.transaction import Transaction, TxStatus
from app.services.gateway import GatewayRegistry, SignedCall
from app.services.queue import QueueEntry, encode_fields
from app.services.record_store import RecordStore

BSC_TESTNET = "0x61"
TX_HASH = "0x" + "ab" * 32
OTHER_HASH = "0x" + "cd" * 32
CONTRACT = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20
USER = "0x" + "33" * 20


class FakeGateway:
    """Scriptable stand-in for ChainGateway."""

    def __init__(self, chain_id: str = BSC_TESTNET):
        self.chain_id = chain_id
        self.estimate_error: Optional[Exception] = None
        self.send_errors: List[Exception] = []
        self.tx_hash = TX_HASH
        self.next_nonce = 5
        self.estimated: List[Tuple[str, str]] = []
        self.sent: List[Tuple[str, str, int]] = []
        self.signed: List[bytes] = []
        self.broadcasts: List[bytes] = []
        self._calls: Dict[bytes, Tuple[str, str, int]] = {}
        self.receipts: Dict[str, dict] = {}
        self.receipt_errors: Dict[str, Exception] = {}
        self.current_block = 0
        self.finalized_block = 0
        self.blocks: Dict[int, List[str]] = {}
        self.account_nonces: Dict[str, int] = {}

    async def estimate_gas(self, contract_address: str, data: str) -> int:
        self.estimated.append((contract_address, data))
        if self.estimate_error:
            raise self.estimate_error
        return 60000

    async def sign_transaction(self, contract_address: str, data: str, gas: int) -> SignedCall:
        raw_tx = f"raw-{len(self.signed)}".encode()
        self.signed.append(raw_tx)
        self._calls[raw_tx] = (contract_address, data, gas)
        return SignedCall(raw_tx=raw_tx, tx_hash=self.tx_hash, nonce=self.next_nonce)

    async def broadcast(self, signed: SignedCall) -> str:
        self.broadcasts.append(signed.raw_tx)
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append(self._calls[signed.raw_tx])
        return signed.tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        if tx_hash in self.receipt_errors:
            raise self.receipt_errors[tx_hash]
        return self.receipts.get(tx_hash)

    async def get_confirmations(self, receipt: dict) -> int:
        return max(0, self.current_block - receipt["blockNumber"] + 1)

    async def is_block_finalized(self, block_number: int) -> bool:
        return self.finalized_block >= block_number

    async def get_block_transaction_hashes(self, block_number: int) -> List[str]:
        return self.blocks.get(block_number, [])

    async def get_transaction_count(self, address: str, block_identifier: str = "latest") -> int:
        return self.account_nonces.get(address, 0)


class FakeQueue:
    """In-memory SubmissionQueue with stream-style cursors."""

    def __init__(self):
        self.entries: Dict[str, Dict[str, str]] = {}
        self.deleted: List[str] = []
        self._seq = 0

    async def enqueue(
        self,
        record_id: str,
        chain_id: str,
        contract_address: str,
        method: str,
        args: Sequence[str],
        user_address: str,
    ) -> str:
        self._seq += 1
        cursor = f"{self._seq}-0"
        self.entries[cursor] = encode_fields(record_id, chain_id, contract_address, method, args, user_address)
        return cursor

    def push_raw(self, fields: Dict[str, str]) -> str:
        self._seq += 1
        cursor = f"{self._seq}-0"
        self.entries[cursor] = fields
        return cursor

    async def read_next(self, after_cursor: str, block_timeout_ms: int) -> Optional[QueueEntry]:
        after = int(after_cursor.split("-")[0])
        for cursor in sorted(self.entries, key=lambda c: int(c.split("-")[0])):
            if int(cursor.split("-")[0]) > after:
                try:
                    return QueueEntry.from_fields(cursor, self.entries[cursor])
                except MalformedEventError as e:
                    raise MalformedEventError(e.message, {"cursor": cursor, "reason": e.details})
        return None

    async def delete(self, cursor: str) -> None:
        self.deleted.append(cursor)
        self.entries.pop(cursor, None)


class FakeBus:
    """Records published events; can be told to fail."""

    def __init__(self):
        self.published: List[Tuple[str, object]] = []
        self.fail = False
        self.degraded = False

    async def publish(self, topic: str, payload) -> bool:
        if self.fail:
            return False
        self.published.append((topic, payload))
        return True

    def topics(self) -> List[str]:
        return [topic for topic, _ in self.published]


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create test database engine on a throwaway SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path}/test.db",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker:
    return create_session_maker(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateways(gateway: FakeGateway) -> GatewayRegistry:
    return GatewayRegistry({BSC_TESTNET: gateway})


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def make_record(session_maker):
    """Insert a record directly, bypassing intake."""

    async def _make(**overrides) -> Transaction:
        fields = dict(
            user_address=USER,
            chain_id=BSC_TESTNET,
            contract_address=CONTRACT,
            method="transfer",
            args=[RECIPIENT, "1000"],
            status=TxStatus.PENDING_SIGN,
        )
        fields.update(overrides)
        async with session_maker() as session:
            tx = Transaction(**fields)
            session.add(tx)
            await session.commit()
            await session.refresh(tx)
            return tx

    return _make


@pytest.fixture
def load_record(session_maker):
    """Read the committed state of a record."""

    async def _load(tx_id: str) -> Optional[Transaction]:
        async with session_maker() as session:
            return await RecordStore(session).get(tx_id)

    return _load
