"""Static chain table for SuperDappAirdrop deployments.

A zero airdrop address marks a chain that is known but not yet deployed to;
such chains are listed but not supported for automatic contract resolution.
"""

from __future__ import annotations

from typing import Any, TypedDict

from superdapp_payouts.errors import ChainConfigError
from superdapp_payouts.models import ZERO_ADDRESS, ChainId, TokenInfo

ROLLUX_MAINNET = 570
ROLLUX_TESTNET = 57000


class ChainMetadata(TypedDict, total=False):
    name: str
    nativeToken: str
    isTestnet: bool
    blockExplorer: str
    rpcUrls: dict[str, Any]
    contracts: dict[str, str]


CHAIN_METADATA: dict[int, ChainMetadata] = {
    1: {
        "name": "Ethereum Mainnet",
        "nativeToken": "ETH",
        "isTestnet": False,
        "blockExplorer": "https://etherscan.io",
        "contracts": {"airdrop": ZERO_ADDRESS},
    },
    ROLLUX_MAINNET: {
        "name": "Rollux Mainnet",
        "nativeToken": "SYS",
        "isTestnet": False,
        "blockExplorer": "https://explorer.rollux.com",
        "rpcUrls": {
            "default": "https://api.superdapp.ai/rpc/rollux/mainnet",
            "public": [
                "https://api.superdapp.ai/rpc/rollux/mainnet",
                "https://rpc.rollux.com",
                "https://rollux.rpc.syscoin.org",
            ],
        },
        "contracts": {
            "airdrop": "0x2aACce8B9522F81F14834883198645BB6894Bfc0",
            "suprToken": "0x3390108E913824B8eaD638444cc52B9aBdF63798",
        },
    },
    ROLLUX_TESTNET: {
        "name": "Rollux Testnet",
        "nativeToken": "tSYS",
        "isTestnet": True,
        "blockExplorer": "https://rollux-tanenbaum.blockscout.com",
        "rpcUrls": {
            "default": "https://api.superdapp.ai/rpc/rollux/testnet",
            "public": [
                "https://api.superdapp.ai/rpc/rollux/testnet",
                "https://rpc-tanenbaum.rollux.com",
            ],
        },
        "contracts": {"airdrop": ZERO_ADDRESS, "suprToken": ZERO_ADDRESS},
    },
    137: {
        "name": "Polygon Mainnet",
        "nativeToken": "MATIC",
        "isTestnet": False,
        "blockExplorer": "https://polygonscan.com",
        "contracts": {"airdrop": ZERO_ADDRESS},
    },
    42161: {
        "name": "Arbitrum One",
        "nativeToken": "ETH",
        "isTestnet": False,
        "blockExplorer": "https://arbiscan.io",
        "contracts": {"airdrop": ZERO_ADDRESS},
    },
    10: {
        "name": "Optimism",
        "nativeToken": "ETH",
        "isTestnet": False,
        "blockExplorer": "https://optimistic.etherscan.io",
        "contracts": {"airdrop": ZERO_ADDRESS},
    },
    8453: {
        "name": "Base",
        "nativeToken": "ETH",
        "isTestnet": False,
        "blockExplorer": "https://basescan.org",
        "contracts": {"airdrop": ZERO_ADDRESS},
    },
}

NATIVE_TOKEN_NAMES: dict[int, str] = {
    ROLLUX_MAINNET: "Syscoin",
    ROLLUX_TESTNET: "Syscoin Testnet",
    137: "Polygon",
}

SUPR_TOKEN_CONFIG: dict[int, TokenInfo] = {
    ROLLUX_MAINNET: {
        "address": "0x3390108E913824B8eaD638444cc52B9aBdF63798",
        "symbol": "SUPR",
        "name": "SuperDapp Token",
        "decimals": 18,
        "chainId": ROLLUX_MAINNET,
        "isNative": False,
    },
    ROLLUX_TESTNET: {
        "address": ZERO_ADDRESS,
        "symbol": "tSUPR",
        "name": "SuperDapp Token (Testnet)",
        "decimals": 18,
        "chainId": ROLLUX_TESTNET,
        "isNative": False,
    },
}


def normalize_chain_id(chain_id: ChainId) -> int | None:
    if isinstance(chain_id, bool):
        return None
    if isinstance(chain_id, int):
        return chain_id
    if isinstance(chain_id, str) and chain_id.strip().isdigit():
        return int(chain_id.strip())
    return None


def get_chain_metadata(chain_id: ChainId) -> ChainMetadata | None:
    key = normalize_chain_id(chain_id)
    if key is None:
        return None
    return CHAIN_METADATA.get(key)


def get_airdrop_address(chain_id: ChainId) -> str | None:
    meta = get_chain_metadata(chain_id)
    if meta is None:
        return None
    return meta.get("contracts", {}).get("airdrop")


def is_supported_chain(chain_id: ChainId) -> bool:
    address = get_airdrop_address(chain_id)
    return address is not None and address.lower() != ZERO_ADDRESS


def get_supported_chain_ids() -> list[int]:
    return [chain_id for chain_id in CHAIN_METADATA if is_supported_chain(chain_id)]


def get_all_configured_chain_ids() -> list[int]:
    return list(CHAIN_METADATA)


def chain_display_name(chain_id: ChainId) -> str:
    meta = get_chain_metadata(chain_id)
    if meta and meta.get("name"):
        return str(meta["name"])
    return f"Chain ID {chain_id}"


def get_supr_token_config(chain_id: ChainId) -> TokenInfo:
    key = normalize_chain_id(chain_id)
    if key not in SUPR_TOKEN_CONFIG:
        raise ChainConfigError(f"SUPR token not available on chain {chain_id}")
    return dict(SUPR_TOKEN_CONFIG[key])  # type: ignore[return-value]


def is_rollux_chain(chain_id: ChainId) -> bool:
    return normalize_chain_id(chain_id) in (ROLLUX_MAINNET, ROLLUX_TESTNET)


def get_default_rpc_url(chain_id: ChainId) -> str:
    meta = get_chain_metadata(chain_id)
    default = (meta or {}).get("rpcUrls", {}).get("default")
    if not isinstance(default, str) or not default:
        raise ChainConfigError(f"No RPC URL configured for chain {chain_id}")
    return default


def get_explorer_url(chain_id: ChainId, hash_or_address: str) -> str:
    meta = get_chain_metadata(chain_id)
    explorer = (meta or {}).get("blockExplorer")
    if not explorer:
        raise ChainConfigError(f"No block explorer configured for chain {chain_id}")
    is_transaction = len(hash_or_address) == 66 and hash_or_address.startswith("0x")
    path = "tx" if is_transaction else "address"
    return f"{explorer}/{path}/{hash_or_address}"


def get_native_token_config(chain_id: ChainId) -> TokenInfo:
    key = normalize_chain_id(chain_id)
    meta = get_chain_metadata(chain_id)
    if key is None or meta is None:
        raise ChainConfigError(f"Chain {chain_id} is not configured")
    symbol = meta.get("nativeToken", "ETH")
    return {
        "address": ZERO_ADDRESS,
        "symbol": symbol,
        "name": NATIVE_TOKEN_NAMES.get(key, symbol),
        "decimals": 18,
        "chainId": key,
        "isNative": True,
    }
