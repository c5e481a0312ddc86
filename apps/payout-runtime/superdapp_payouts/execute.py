"""Sequential execution of a prepared payout plan."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Optional, Protocol

from superdapp_payouts.errors import ExecutionError, PayoutError
from superdapp_payouts.models import ExecutionResult, PreparedPayout, PreparedTx, Receipt, is_reverted

logger = logging.getLogger(__name__)

ProgressCallback = Callable[..., None]
ReceiptCallback = Callable[[int, str], None]


class WalletClient(Protocol):
    address: str

    def send_transaction(self, params: dict[str, Any]) -> str: ...


class PublicClient(Protocol):
    def wait_for_transaction_receipt(self, tx_hash: str, confirmations: int = 1) -> Receipt: ...

    def get_transaction_receipt(self, tx_hash: str) -> Receipt: ...


def _plan_transactions(plan: PreparedPayout | dict[str, Any]) -> list[PreparedTx]:
    transactions = plan.get("transactions") or plan.get("txs") or []
    return list(transactions)


def to_send_params(tx: PreparedTx) -> dict[str, Any]:
    """Translate a PreparedTx into signer parameters.

    A transaction is EIP-1559 when it is tagged ``type == 2`` or carries
    ``maxFeePerGas``; otherwise it is sent as legacy with ``gasPrice``.
    """
    params: dict[str, Any] = {
        "to": tx["to"],
        "value": int(tx.get("value") or 0),
        "data": tx.get("data") or "0x",
        "gas": int(tx["gasLimit"]),
        "nonce": tx.get("nonce"),
    }
    if tx.get("type") == 2 or tx.get("maxFeePerGas"):
        if tx.get("maxFeePerGas"):
            params["maxFeePerGas"] = int(tx["maxFeePerGas"])
        elif tx.get("gasPrice"):
            params["maxFeePerGas"] = int(tx["gasPrice"])
        if tx.get("maxPriorityFeePerGas"):
            params["maxPriorityFeePerGas"] = int(tx["maxPriorityFeePerGas"])
        params["type"] = "eip1559"
    elif tx.get("gasPrice"):
        params["gasPrice"] = int(tx["gasPrice"])
        params["type"] = "legacy"
    return params


def assign_nonces(plan: PreparedPayout, start_nonce: int) -> PreparedPayout:
    """Return a copy of ``plan`` whose transactions carry sequential nonces."""
    if isinstance(start_nonce, bool) or not isinstance(start_nonce, int) or start_nonce < 0:
        raise PayoutError(f"start_nonce must be a non-negative integer, got {start_nonce!r}")
    updated = copy.deepcopy(plan)
    transactions = _plan_transactions(updated)
    for offset, tx in enumerate(transactions):
        tx["nonce"] = start_nonce + offset
    updated["transactions"] = transactions
    return updated


def execute_tx_plan_detailed(
    plan: PreparedPayout,
    *,
    wallet: WalletClient,
    public_client: PublicClient,
    on_progress: Optional[ProgressCallback] = None,
    on_receipt: Optional[ReceiptCallback] = None,
    stop_on_fail: bool = False,
    confirmations: int = 1,
) -> ExecutionResult:
    """Send every transaction of ``plan`` in order, awaiting each receipt.

    Returns the hashes obtained, the error messages recorded and the hashes of
    reverted transactions. With ``stop_on_fail`` the first failure is raised
    and nothing after it is sent.
    """
    transactions = _plan_transactions(plan)
    if not transactions:
        raise ExecutionError("No transactions to execute in the payout plan")

    tx_hashes: list[str] = []
    errors: list[str] = []
    reverted: list[str] = []

    for index, tx in enumerate(transactions):
        tx_hash: str | None = None
        try:
            if on_progress:
                on_progress(index, tx)
            tx_hash = wallet.send_transaction(to_send_params(tx))
            tx_hashes.append(tx_hash)
            if on_progress:
                on_progress(index, tx, tx_hash)

            receipt = public_client.wait_for_transaction_receipt(tx_hash=tx_hash, confirmations=confirmations)
            if on_receipt:
                on_receipt(index, tx_hash)

            if is_reverted(receipt):
                raise ExecutionError(f"Transaction {tx_hash} was reverted", index=index, tx_hash=tx_hash)
        except Exception as exc:
            if isinstance(exc, ExecutionError) and exc.tx_hash is not None:
                reverted.append(exc.tx_hash)
            errors.append(f"Transaction {index}: {exc}")
            logger.error("Transaction %d execution failed: %s", index, exc)
            if stop_on_fail:
                raise

    if errors:
        logger.warning(
            "Execution completed with %d failed transactions out of %d total", len(errors), len(transactions)
        )

    return {"txHashes": tx_hashes, "errors": errors, "reverted": reverted}


def execute_tx_plan(
    plan: PreparedPayout,
    *,
    wallet: WalletClient,
    public_client: PublicClient,
    on_progress: Optional[ProgressCallback] = None,
    on_receipt: Optional[ReceiptCallback] = None,
    stop_on_fail: bool = False,
    confirmations: int = 1,
) -> list[str]:
    """Execute ``plan`` and return the hashes of every sent transaction."""
    result = execute_tx_plan_detailed(
        plan,
        wallet=wallet,
        public_client=public_client,
        on_progress=on_progress,
        on_receipt=on_receipt,
        stop_on_fail=stop_on_fail,
        confirmations=confirmations,
    )
    return result["txHashes"]
