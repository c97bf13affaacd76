"""Per-chain RPC and signing facade."""
import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from eth_abi import encode
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TransactionNotFound

from app.config import Settings
from app.exceptions import ConfigurationError, GatewayNotFoundError
from app.chains import ChainInfo, SUPPORTED_CHAINS

logger = logging.getLogger(__name__)

# Every relayed call has the shape method(address, uint256)
CALL_ARG_TYPES = ("address", "uint256")

_METHOD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Node errors for a raw transaction it already holds (geth, erigon, parity)
_ALREADY_KNOWN = re.compile(r"already known|known transaction|already imported", re.IGNORECASE)


def encode_call(method: str, args: Sequence[str]) -> str:
    """ABI-encode ``method(address,uint256)`` with string arguments."""
    if not _METHOD_NAME.match(method or ""):
        raise ValueError(f"Invalid method name: {method!r}")
    if len(args) != len(CALL_ARG_TYPES):
        raise ValueError(
            f"{method} expects {len(CALL_ARG_TYPES)} arguments, got {len(args)}"
        )

    signature = f"{method}({','.join(CALL_ARG_TYPES)})"
    selector = Web3.keccak(text=signature)[:4]
    params = encode(list(CALL_ARG_TYPES), [Web3.to_checksum_address(args[0]), int(args[1])])
    return Web3.to_hex(selector + params)


def normalize_hash(value: Any) -> str:
    """Render a tx hash (str, bytes or HexBytes) as lowercase 0x-hex."""
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else f"0x{value.lower()}"
    return Web3.to_hex(value).lower()


@dataclass(frozen=True)
class SentTransaction:
    """Result of a successful broadcast."""
    tx_hash: str
    nonce: int


@dataclass(frozen=True)
class SignedCall:
    """A signed transaction, broadcast as the same raw bytes on every attempt."""
    raw_tx: bytes
    tx_hash: str
    nonce: int


class ChainGateway:
    """RPC access and signing for one chain."""

    def __init__(self, chain: ChainInfo, web3: Web3, account: Optional[LocalAccount] = None):
        self.chain = chain
        self.web3 = web3
        self._account = account

    @property
    def chain_id(self) -> str:
        return self.chain.hex_chain_id

    @property
    def account(self) -> LocalAccount:
        """Signing identity for this process."""
        if self._account is None:
            raise ConfigurationError("SIGNER_PRIVATE_KEY not configured.")
        return self._account

    @property
    def signer_address(self) -> str:
        return self.account.address

    def _call_tx(self, contract_address: str, data: str) -> Dict[str, Any]:
        return {
            "from": self.signer_address,
            "to": Web3.to_checksum_address(contract_address),
            "data": data,
            "value": 0,
        }

    async def estimate_gas(self, contract_address: str, data: str) -> int:
        """Estimate gas for the call. Raises when the node rejects it."""
        estimate = self.web3.eth.estimate_gas(self._call_tx(contract_address, data))
        # Add 20% buffer
        return int(estimate * 1.2)

    async def sign_transaction(self, contract_address: str, data: str, gas: int) -> SignedCall:
        """Sign the call with the process key at the pending nonce."""
        nonce = self.web3.eth.get_transaction_count(self.signer_address, "pending")
        tx = self._call_tx(contract_address, data)
        tx.pop("from")
        tx.update({
            "nonce": nonce,
            "gas": gas,
            "gasPrice": self.web3.eth.gas_price,
            "chainId": self.chain.chain_id,
        })

        signed = self.account.sign_transaction(tx)
        # eth-account renamed rawTransaction to raw_transaction
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        return SignedCall(raw_tx=bytes(raw_tx), tx_hash=normalize_hash(signed.hash), nonce=nonce)

    async def broadcast(self, signed: SignedCall) -> str:
        """
        Broadcast an already signed transaction and return its hash.

        A rejection for a transaction the node already holds counts as
        success, since an earlier attempt got it through.
        """
        try:
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_tx)
        except Exception as e:
            if _ALREADY_KNOWN.search(str(e)) or await self._is_known(signed.tx_hash):
                logger.info(f"Transaction {signed.tx_hash} already known to {self.chain.name}: {e}")
                return signed.tx_hash
            logger.error(f"Broadcast failed for tx {signed.tx_hash}: {e}")
            raise
        return normalize_hash(tx_hash)

    async def _is_known(self, tx_hash: str) -> bool:
        try:
            return self.web3.eth.get_transaction(tx_hash) is not None
        except TransactionNotFound:
            return False
        except Exception as e:
            logger.warning(f"Could not look up {tx_hash} on {self.chain.name}: {e}")
            return False

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Get transaction receipt, or None while the tx is still unmined."""
        try:
            receipt = self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt) if receipt else None

    async def get_block_number(self) -> int:
        return self.web3.eth.block_number

    async def get_confirmations(self, receipt: Mapping[str, Any]) -> int:
        """Blocks mined on top of the receipt's block, counting that block."""
        tx_block = receipt.get("blockNumber")
        if tx_block is None:
            return 0
        current_block = await self.get_block_number()
        return max(0, current_block - tx_block + 1)

    async def get_finalized_block_number(self) -> int:
        """Latest finalized block, falling back to latest on nodes without the tag."""
        try:
            block = self.web3.eth.get_block("finalized")
        except Exception as e:
            logger.warning(f"Finalized tag unavailable on {self.chain.name}: {e}, using latest")
            block = self.web3.eth.get_block("latest")
        if not block:
            raise RuntimeError(f"Could not fetch finalized or latest block on {self.chain.name}")
        return block["number"]

    async def is_block_finalized(self, block_number: int) -> bool:
        return await self.get_finalized_block_number() >= block_number

    async def get_block_transaction_hashes(self, block_number: int) -> List[str]:
        """Hashes of all transactions included in a block."""
        block = self.web3.eth.get_block(block_number, full_transactions=False)
        return [normalize_hash(tx) for tx in block.get("transactions", [])]

    async def get_transaction_count(self, address: str, block_identifier: str = "latest") -> int:
        """Account nonce at the given block tag."""
        return self.web3.eth.get_transaction_count(Web3.to_checksum_address(address), block_identifier)


class GatewayRegistry:
    """Immutable chain id -> gateway mapping, built once at startup."""

    def __init__(self, gateways: Mapping[str, ChainGateway]):
        self._gateways = MappingProxyType({k.lower(): v for k, v in gateways.items()})

    @classmethod
    def from_settings(cls, settings: Settings, require_signer: bool = True) -> "GatewayRegistry":
        """
        Build a gateway for every supported chain with a configured RPC URL.

        A missing signing key is fatal when ``require_signer`` is set. A
        missing or broken RPC endpoint only makes that chain unavailable.
        """
        account: Optional[LocalAccount] = None
        if settings.signer_private_key:
            account = Account.from_key(settings.signer_private_key)
        elif require_signer:
            raise ConfigurationError("SIGNER_PRIVATE_KEY not configured.")

        gateways: Dict[str, ChainGateway] = {}
        for chain in SUPPORTED_CHAINS.values():
            try:
                rpc_url = settings.rpc_url_for(chain.rpc_setting)
                if not rpc_url:
                    raise ConfigurationError(f"RPC URL setting {chain.rpc_setting.upper()} not set.")
                web3 = Web3(Web3.HTTPProvider(rpc_url))
                gateways[chain.hex_chain_id] = ChainGateway(chain, web3, account)
            except Exception as e:
                logger.warning(
                    f"Failed to initialize provider for chain {chain.name} ({chain.hex_chain_id}). Error: {e}"
                )

        logger.info(f"Chain gateways ready for: {sorted(gateways)}")
        return cls(gateways)

    def get(self, chain_id: str) -> ChainGateway:
        gateway = self._gateways.get(chain_id.lower())
        if gateway is None:
            raise GatewayNotFoundError(f"Provider for chainId {chain_id} not found.")
        return gateway

    def chain_ids(self) -> List[str]:
        return list(self._gateways.keys())

    def __contains__(self, chain_id: object) -> bool:
        return isinstance(chain_id, str) and chain_id.lower() in self._gateways

    def __iter__(self) -> Iterator[str]:
        return iter(self._gateways)

    def __len__(self) -> int:
        return len(self._gateways)
