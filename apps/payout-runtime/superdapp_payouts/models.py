"""Payout data shapes.

Entities are plain dicts keyed by their camelCase wire names so they can be
hashed, exported, and written to disk without a translation layer. The
TypedDicts below document the shapes; nothing enforces them at runtime.
"""

from __future__ import annotations

from typing import Any, TypedDict, Union

ChainId = Union[int, str]

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MANIFEST_VERSION = "1.0"


class _TokenInfoBase(TypedDict):
    address: str
    symbol: str
    name: str
    decimals: int
    chainId: ChainId


class TokenInfo(_TokenInfoBase, total=False):
    isNative: bool


class _WinnerRowBase(TypedDict):
    address: str
    amount: Union[str, int, float]
    rank: int


class WinnerRow(_WinnerRowBase, total=False):
    id: str
    metadata: dict[str, Any]


class NormalizedWinner(TypedDict):
    address: str
    amount: str
    rank: int
    id: str
    token: TokenInfo
    metadata: dict[str, Any]


class PayoutManifest(TypedDict):
    id: str
    winners: list[NormalizedWinner]
    token: TokenInfo
    totalAmount: str
    createdBy: str
    createdAt: str
    roundId: str
    groupId: str
    version: str
    hash: str


class BuildManifestResult(TypedDict):
    manifest: PayoutManifest
    rejectedAddresses: list[str]


class _PreparedTxBase(TypedDict):
    to: str
    value: str
    data: str
    gasLimit: str
    gasPrice: str
    nonce: int
    chainId: ChainId


class PreparedTx(_PreparedTxBase, total=False):
    type: int
    maxFeePerGas: str
    maxPriorityFeePerGas: str


class PayoutSummary(TypedDict):
    recipientCount: int
    totalAmount: str
    token: TokenInfo
    estimatedDuration: str


class ValidationResult(TypedDict):
    isValid: bool
    errors: list[str]
    warnings: list[str]


class PreparedPayout(TypedDict):
    manifestId: str
    transactions: list[PreparedTx]
    estimatedGasCost: str
    preparedAt: str
    summary: PayoutSummary
    validation: ValidationResult


class ExecutionResult(TypedDict):
    txHashes: list[str]
    errors: list[str]
    reverted: list[str]


class TransferMatch(TypedDict):
    recipient: str
    amount: str
    txHash: str
    logIndex: int


class MissingTransfer(TypedDict):
    recipient: str
    expectedAmount: str


class ReconcileDetails(TypedDict):
    successfulTransfers: list[TransferMatch]
    missingTransfers: list[MissingTransfer]


class ReconcileResult(TypedDict):
    success: bool
    totalAmountFound: str
    expectedTotalAmount: str
    recipientsFound: int
    expectedRecipients: int
    errors: list[str]
    details: ReconcileDetails


class ReceiptLog(TypedDict, total=False):
    address: str
    topics: list[str]
    data: str
    logIndex: Union[int, str]


class Receipt(TypedDict, total=False):
    transactionHash: str
    status: Union[str, int, bool]
    blockNumber: Union[int, str]
    logs: list[ReceiptLog]


def is_reverted(receipt: Any) -> bool:
    """Return True when a receipt reports a mined-but-failed transaction."""
    if not isinstance(receipt, dict):
        return False
    status = receipt.get("status")
    if isinstance(status, bool):
        return not status
    if isinstance(status, int):
        return status == 0
    if isinstance(status, str):
        return status.strip().lower() in {"reverted", "0x0", "0", "failure", "failed"}
    return False
