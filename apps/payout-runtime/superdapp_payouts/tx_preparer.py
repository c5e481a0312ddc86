"""Prepare push-payout transaction plans against the SuperDappAirdrop contract.

Nothing here touches the network. Every plan is returned with a validation
block; an invalid plan always has an empty transaction list.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterator, Sequence

from eth_abi import encode

from superdapp_payouts import config
from superdapp_payouts.chain_config import (
    chain_display_name,
    get_airdrop_address,
    get_chain_metadata,
    is_supported_chain,
)
from superdapp_payouts.models import ZERO_ADDRESS, PayoutManifest, PreparedPayout, PreparedTx, TokenInfo
from superdapp_payouts.normalize import keccak256, validate_and_checksum_address

logger = logging.getLogger(__name__)

DEFAULT_MAX_PER_BATCH = 50
SECONDS_PER_TX = 15

APPROVE_SIGNATURE = "approve(address,uint256)"
BATCH_TOKEN_TRANSFER_SIGNATURE = "batchTokenTransfer(address,address[],uint256[])"
BATCH_NATIVE_TRANSFER_SIGNATURE = "batchNativeTransfer(address[],uint256[])"


def function_selector(signature: str) -> bytes:
    return keccak256(signature.encode("ascii"))[:4]


def _calldata(signature: str, types: list[str], args: list[Any]) -> str:
    return "0x" + (function_selector(signature) + encode(types, args)).hex()


def encode_approve(spender: str, amount: int) -> str:
    return _calldata(APPROVE_SIGNATURE, ["address", "uint256"], [spender, int(amount)])


def encode_batch_token_transfer(token: str, recipients: Sequence[str], amounts: Sequence[int]) -> str:
    if len(recipients) != len(amounts):
        raise ValueError("Recipients and amounts arrays must have same length")
    return _calldata(
        BATCH_TOKEN_TRANSFER_SIGNATURE,
        ["address", "address[]", "uint256[]"],
        [token, list(recipients), [int(a) for a in amounts]],
    )


def encode_batch_native_transfer(recipients: Sequence[str], amounts: Sequence[int]) -> str:
    if len(recipients) != len(amounts):
        raise ValueError("Recipients and amounts arrays must have same length")
    return _calldata(
        BATCH_NATIVE_TRANSFER_SIGNATURE,
        ["address[]", "uint256[]"],
        [list(recipients), [int(a) for a in amounts]],
    )


def chunk(items: Sequence[Any], size: int) -> Iterator[list[Any]]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _tx(to: str, value: int, data: str, gas_limit: int, chain_id: Any, fees: config.FeeSettings) -> PreparedTx:
    return {
        "to": to,
        "value": str(value),
        "data": data,
        "gasLimit": str(gas_limit),
        "gasPrice": str(fees["gasPrice"]),
        "nonce": 0,
        "chainId": chain_id,
        "type": 2,
        "maxFeePerGas": str(fees["maxFeePerGas"]),
        "maxPriorityFeePerGas": str(fees["maxPriorityFeePerGas"]),
    }


def _parse_amount(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _failed(manifest: PayoutManifest, errors: list[str], warnings: list[str]) -> PreparedPayout:
    return {
        "manifestId": manifest.get("id", ""),
        "transactions": [],
        "estimatedGasCost": "0",
        "preparedAt": _now_iso(),
        "summary": {
            "recipientCount": 0,
            "totalAmount": "0",
            "token": manifest.get("token"),  # type: ignore[typeddict-item]
            "estimatedDuration": "0s",
        },
        "validation": {"isValid": False, "errors": errors, "warnings": warnings},
    }


def prepare_push_txs(
    manifest: PayoutManifest,
    *,
    token: TokenInfo,
    airdrop: str | None = None,
    max_per_batch: int = DEFAULT_MAX_PER_BATCH,
    single_approval: bool = True,
    fees: config.FeeSettings | None = None,
) -> PreparedPayout:
    """Turn ``manifest`` into an ordered plan of unsigned transactions.

    Native payouts fund the airdrop contract first, then call
    ``batchNativeTransfer`` per chunk. Token payouts optionally approve the
    manifest total for the airdrop contract, then call ``batchTokenTransfer``
    per chunk. Every nonce is ``0``; assign real nonces before signing.
    """
    errors: list[str] = []
    warnings: list[str] = []
    chain_id = token["chainId"]

    if isinstance(max_per_batch, bool) or not isinstance(max_per_batch, int) or max_per_batch < 1:
        errors.append(f"maxPerBatch must be a positive integer, got {max_per_batch!r}")

    if airdrop:
        target = validate_and_checksum_address(airdrop)
        if target is None or target == ZERO_ADDRESS:
            errors.append(f"Invalid airdrop contract address: '{airdrop}'")
        elif get_chain_metadata(chain_id) is None:
            warnings.append(f"Chain ID {chain_id} is not in the chain configuration table; using provided airdrop address")
    else:
        target = validate_and_checksum_address(get_airdrop_address(chain_id))
        if target is None or not is_supported_chain(chain_id):
            errors.append(
                f"SuperDappAirdrop contract not configured for {chain_display_name(chain_id)}. "
                "Please provide the airdrop contract address manually."
            )

    is_native = token.get("isNative") is True
    token_address = None
    if not is_native:
        token_address = validate_and_checksum_address(token.get("address"))
        if token_address is None or token_address == ZERO_ADDRESS:
            errors.append(f"Invalid token contract address: '{token.get('address')}'")

    manifest_token = manifest.get("token") or {}
    if str(manifest_token.get("address", "")).lower() != str(token.get("address", "")).lower() or str(
        manifest_token.get("chainId")
    ) != str(chain_id):
        warnings.append("Token option does not match the manifest token")

    recipients: list[str] = []
    amounts: list[int] = []
    for winner in manifest.get("winners", []):
        recipient = validate_and_checksum_address(winner.get("address"))
        amount = _parse_amount(winner.get("amount"))
        if recipient is None:
            errors.append(f"Invalid recipient address: '{winner.get('address')}'")
            continue
        if amount is None:
            errors.append(f"Invalid amount for {recipient}: {winner.get('amount')!r}")
            continue
        recipients.append(recipient)
        amounts.append(amount)

    total = _parse_amount(manifest.get("totalAmount"))
    if total is None:
        errors.append(f"Invalid manifest totalAmount: {manifest.get('totalAmount')!r}")
    elif len(amounts) == len(manifest.get("winners", [])) and sum(amounts) != total:
        errors.append("Manifest totalAmount does not equal the sum of winner amounts")

    if errors:
        for message in errors:
            logger.warning("Payout preparation rejected: %s", message)
        return _failed(manifest, errors, warnings)

    if fees is None:
        fees = config.fee_settings()

    transactions: list[PreparedTx] = []
    batches = zip(chunk(recipients, max_per_batch), chunk(amounts, max_per_batch))
    if is_native:
        transactions.append(_tx(target, total, "0x", config.FUND_GAS_LIMIT, chain_id, fees))
        for batch_recipients, batch_amounts in batches:
            data = encode_batch_native_transfer(batch_recipients, batch_amounts)
            transactions.append(_tx(target, 0, data, config.BATCH_GAS_LIMIT, chain_id, fees))
    else:
        if single_approval:
            data = encode_approve(target, total)
            transactions.append(_tx(token_address, 0, data, config.APPROVE_GAS_LIMIT, chain_id, fees))
        for batch_recipients, batch_amounts in batches:
            data = encode_batch_token_transfer(token_address, batch_recipients, batch_amounts)
            transactions.append(_tx(target, 0, data, config.BATCH_GAS_LIMIT, chain_id, fees))

    estimated_gas = sum(int(tx["gasLimit"]) * int(tx["gasPrice"]) for tx in transactions)

    return {
        "manifestId": manifest["id"],
        "transactions": transactions,
        "estimatedGasCost": str(estimated_gas),
        "preparedAt": _now_iso(),
        "summary": {
            "recipientCount": len(manifest["winners"]),
            "totalAmount": manifest["totalAmount"],
            "token": manifest["token"],
            "estimatedDuration": f"{math.ceil(len(transactions) * SECONDS_PER_TX)}s",
        },
        "validation": {"isValid": True, "errors": errors, "warnings": warnings},
    }
