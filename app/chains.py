"""Chains the relay can submit to."""
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class ChainInfo:
    """Static description of a supported chain."""
    name: str
    chain_id: int
    hex_chain_id: str
    rpc_setting: str


SUPPORTED_CHAINS: Dict[str, ChainInfo] = {
    "ETHEREUM_SEPOLIA": ChainInfo(
        name="Ethereum Sepolia",
        chain_id=11155111,
        hex_chain_id="0xaa36a7",
        rpc_setting="ethereum_sepolia_rpc_url",
    ),
    "POLYGON_AMOY": ChainInfo(
        name="Polygon Amoy",
        chain_id=80002,
        hex_chain_id="0x13882",
        rpc_setting="polygon_amoy_rpc_url",
    ),
    "BSC_TESTNET": ChainInfo(
        name="BSC Testnet",
        chain_id=97,
        hex_chain_id="0x61",
        rpc_setting="bsc_testnet_rpc_url",
    ),
}

CHAIN_BY_HEX_ID: Dict[str, ChainInfo] = {
    chain.hex_chain_id: chain for chain in SUPPORTED_CHAINS.values()
}


def get_chain(hex_chain_id: str) -> Optional[ChainInfo]:
    """Look up a supported chain by its hex chain id."""
    return CHAIN_BY_HEX_ID.get(hex_chain_id.lower())
