"""Reconcile executed payout transactions against their manifest.

Receipts are scanned for ERC-20 ``Transfer`` events; each event paying an
expected recipient its exact manifest amount counts as a successful transfer.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from superdapp_payouts.models import ZERO_ADDRESS, PayoutManifest, ReconcileResult, is_reverted
from superdapp_payouts.normalize import extract_address_from_topic, is_hex_address, keccak256

logger = logging.getLogger(__name__)

TRANSFER_EVENT_TOPIC = "0x" + keccak256(b"Transfer(address,address,uint256)").hex()


def _log_amount(data: Any) -> int:
    text = str(data or "0x")
    if text in ("0x", ""):
        return 0
    return int(text, 16)


def _emitter_filter(token_address: str | None) -> str | None:
    if not isinstance(token_address, str) or not is_hex_address(token_address):
        return None
    lowered = token_address.lower()
    return None if lowered == ZERO_ADDRESS else lowered


def reconcile_push(
    public_client: Any,
    token_address: str | None,
    manifest: PayoutManifest,
    tx_hashes: Iterable[str],
) -> ReconcileResult:
    """Match on-chain Transfer events in ``tx_hashes`` against ``manifest``.

    Always returns a fully populated result. Reverted transactions, fetch
    failures and amount mismatches are recorded in ``errors``; expected
    recipients never paid are listed under ``details.missingTransfers``.
    """
    hashes = list(tx_hashes or [])
    winners = manifest.get("winners") or []
    result: ReconcileResult = {
        "success": False,
        "totalAmountFound": "0",
        "expectedTotalAmount": manifest.get("totalAmount", "0"),
        "recipientsFound": 0,
        "expectedRecipients": len(winners),
        "errors": [],
        "details": {"successfulTransfers": [], "missingTransfers": []},
    }

    if not hashes:
        result["errors"].append("No transaction hashes provided for reconciliation")
        return result

    try:
        pending: dict[str, str] = {winner["address"].lower(): str(winner["amount"]) for winner in winners}
        emitter = _emitter_filter(token_address)
        total_found = 0

        for tx_hash in hashes:
            try:
                receipt = public_client.get_transaction_receipt(tx_hash)
            except Exception as exc:
                result["errors"].append(f"Failed to analyze transaction {tx_hash}: {exc}")
                logger.error("Reconciling transaction %s failed: %s", tx_hash, exc)
                continue

            if not isinstance(receipt, dict):
                result["errors"].append(f"No receipt found for transaction {tx_hash}")
                continue

            if is_reverted(receipt):
                result["errors"].append(f"Transaction {tx_hash} was reverted")
                continue

            for position, log in enumerate(receipt.get("logs") or []):
                if not isinstance(log, dict):
                    continue
                topics = log.get("topics") or []
                if len(topics) < 3 or str(topics[0]).lower() != TRANSFER_EVENT_TOPIC:
                    continue
                log_address = log.get("address")
                if emitter and log_address and str(log_address).lower() != emitter:
                    continue
                try:
                    recipient = extract_address_from_topic(topics[2])
                    amount = _log_amount(log.get("data"))
                except ValueError as exc:
                    result["errors"].append(f"Failed to decode Transfer log in transaction {tx_hash}: {exc}")
                    continue

                expected = pending.get(recipient.lower())
                if expected is None:
                    continue
                if amount != int(expected):
                    result["errors"].append(f"Amount mismatch for {recipient}: expected {expected}, found {amount}")
                    continue

                log_index = log.get("logIndex")
                result["details"]["successfulTransfers"].append(
                    {
                        "recipient": recipient,
                        "amount": str(amount),
                        "txHash": tx_hash,
                        "logIndex": position if log_index is None else int(log_index),
                    }
                )
                total_found += amount
                del pending[recipient.lower()]

        for recipient, expected in pending.items():
            result["details"]["missingTransfers"].append({"recipient": recipient, "expectedAmount": expected})

        result["totalAmountFound"] = str(total_found)
        result["recipientsFound"] = len(result["details"]["successfulTransfers"])

        total_matches = result["totalAmountFound"] == str(manifest.get("totalAmount"))
        count_matches = result["recipientsFound"] == len(winners)
        result["success"] = total_matches and count_matches and not result["errors"]

        if not total_matches:
            result["errors"].append(
                f"Total amount mismatch: expected {manifest.get('totalAmount')}, found {result['totalAmountFound']}"
            )
        if not count_matches:
            result["errors"].append(
                f"Recipient count mismatch: expected {len(winners)}, found {result['recipientsFound']}"
            )
    except (KeyError, TypeError, ValueError) as exc:
        result["success"] = False
        result["errors"].append(f"Reconciliation failed: {exc}")
        logger.error("Payout reconciliation failed: %s", exc)

    return result


def quick_reconcile_check(public_client: Any, manifest: PayoutManifest, tx_hashes: Iterable[str]) -> bool:
    try:
        token = manifest.get("token") or {}
        return reconcile_push(public_client, token.get("address"), manifest, tx_hashes)["success"]
    except Exception as exc:
        logger.error("Quick reconcile check failed: %s", exc)
        return False
