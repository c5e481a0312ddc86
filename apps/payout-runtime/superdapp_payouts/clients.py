"""Client construction and the RPC URL registry."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping, TypedDict

from superdapp_payouts.cast_client import CastPublicClient, CastWalletClient
from superdapp_payouts.chain_config import CHAIN_METADATA, normalize_chain_id
from superdapp_payouts.config import RPC_URL_ENV_PREFIX
from superdapp_payouts.errors import ConfigError, PayoutError
from superdapp_payouts.models import ChainId

logger = logging.getLogger(__name__)


class RpcValidation(TypedDict, total=False):
    isValid: bool
    error: str
    actualChainId: int


def _chain_key(chain_id: ChainId) -> int:
    key = normalize_chain_id(chain_id)
    if key is None:
        raise ConfigError(f"Invalid chain id: {chain_id!r}")
    return key


class RpcRegistry:
    """Chain id to RPC URL map, last write wins.

    Not thread-safe; guard it yourself if several threads mutate one instance.
    """

    def __init__(self, urls: Mapping[ChainId, str] | None = None):
        self._urls: dict[int, str] = {}
        for chain_id, url in (urls or {}).items():
            self.set(chain_id, url)

    def set(self, chain_id: ChainId, rpc_url: str | None) -> None:
        key = _chain_key(chain_id)
        url = (rpc_url or "").strip()
        if url:
            self._urls[key] = url
        else:
            self._urls.pop(key, None)

    def clear(self, chain_id: ChainId) -> None:
        self._urls.pop(_chain_key(chain_id), None)

    def get(self, chain_id: ChainId) -> str | None:
        key = normalize_chain_id(chain_id)
        if key is None:
            return None
        return self._urls.get(key)

    def as_dict(self) -> dict[int, str]:
        return dict(self._urls)

    def __contains__(self, chain_id: object) -> bool:
        return self.get(chain_id) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._urls)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RpcRegistry":
        """Collect ``PAYOUTS_RPC_URL_<chainId>`` variables."""
        env = os.environ if environ is None else environ
        registry = cls()
        for name, value in env.items():
            if not name.startswith(RPC_URL_ENV_PREFIX):
                continue
            suffix = name[len(RPC_URL_ENV_PREFIX) :]
            if not suffix.isdigit():
                raise ConfigError(f"{name} must end with a numeric chain id.")
            registry.set(int(suffix), value)
        return registry

    @classmethod
    def with_defaults(cls, environ: Mapping[str, str] | None = None) -> "RpcRegistry":
        """Chain-table default RPC URLs, overridden by environment entries."""
        registry = cls()
        for chain_id, meta in CHAIN_METADATA.items():
            default = meta.get("rpcUrls", {}).get("default")
            if default:
                registry.set(chain_id, default)
        for chain_id, url in cls.from_env(environ).as_dict().items():
            registry.set(chain_id, url)
        return registry


def create_public_client(rpc_url: str, chain_id: ChainId | None = None) -> CastPublicClient:
    return CastPublicClient(rpc_url, chain_id)


def create_wallet_client_from_private_key(rpc_url: str, chain_id: ChainId | None, private_key: str) -> CastWalletClient:
    return CastWalletClient(rpc_url, private_key, chain_id)


class ChainClients:
    """Public client plus a wallet factory bound to one chain's RPC URL."""

    def __init__(self, rpc_url: str, chain_id: int):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.public_client = create_public_client(rpc_url, chain_id)

    def create_wallet_client(self, private_key: str) -> CastWalletClient:
        return create_wallet_client_from_private_key(self.rpc_url, self.chain_id, private_key)


def create_clients_for_chain(registry: RpcRegistry, chain_id: ChainId) -> ChainClients:
    rpc_url = registry.get(chain_id)
    if not rpc_url:
        raise ConfigError(
            f"No RPC URL configured for chain {chain_id}. "
            f"Register one on the RpcRegistry or set {RPC_URL_ENV_PREFIX}{chain_id}."
        )
    return ChainClients(rpc_url, _chain_key(chain_id))


def validate_rpc_connection(rpc_url: str, chain_id: ChainId, client: Any = None) -> RpcValidation:
    """Check that ``rpc_url`` answers and reports ``chain_id``; never raises."""
    public_client = client or create_public_client(rpc_url, chain_id)
    try:
        expected = normalize_chain_id(chain_id)
        actual = int(public_client.get_chain_id())
    except (PayoutError, ValueError) as exc:
        logger.warning("RPC check failed for %s: %s", rpc_url, exc)
        return {"isValid": False, "error": str(exc)}
    if actual != expected:
        return {
            "isValid": False,
            "error": f"Chain ID mismatch: expected {chain_id}, got {actual}",
            "actualChainId": actual,
        }
    return {"isValid": True, "actualChainId": actual}
