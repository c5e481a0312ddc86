"""Build hash-stamped payout manifests from raw winner rows."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from superdapp_payouts.canonical import canonical_json, sha256_hex
from superdapp_payouts.errors import InvalidAmountError, PayoutError
from superdapp_payouts.models import (
    MANIFEST_VERSION,
    ZERO_ADDRESS,
    BuildManifestResult,
    NormalizedWinner,
    PayoutManifest,
    TokenInfo,
)
from superdapp_payouts.normalize import clamp_decimals as clamp_amount
from superdapp_payouts.normalize import decimal_to_wei, validate_and_checksum_address

logger = logging.getLogger(__name__)

HASHED_FIELDS = (
    "id",
    "winners",
    "token",
    "totalAmount",
    "createdBy",
    "createdAt",
    "roundId",
    "groupId",
    "version",
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def compute_manifest_hash(manifest: dict[str, Any]) -> str:
    body = {field: manifest[field] for field in HASHED_FIELDS}
    return sha256_hex(canonical_json(body))


def verify_manifest(manifest: dict[str, Any]) -> bool:
    try:
        return compute_manifest_hash(manifest) == manifest.get("hash")
    except KeyError:
        return False


def build_manifest(
    rows: Iterable[dict[str, Any]],
    *,
    token: TokenInfo,
    round_id: str,
    group_id: str,
    clamp_decimals: int | None = None,
    created_by: str = ZERO_ADDRESS,
    id_factory: Callable[[], str] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> BuildManifestResult:
    """Validate, convert and deduplicate ``rows`` into a PayoutManifest.

    Rows whose address fails validation are returned in ``rejectedAddresses``
    rather than dropped. Repeated addresses are merged by summing their
    minor-unit amounts; the first row's rank, id and metadata win.

    ``id_factory`` and ``clock`` default to random UUIDs and wall-clock UTC.
    Inject fixed ones to reproduce a manifest hash across runs.
    """
    make_id = id_factory or _new_id
    now = clock or _utc_now
    decimals = int(token["decimals"])

    creator = validate_and_checksum_address(created_by)
    if creator is None:
        raise PayoutError(f"Invalid createdBy address: '{created_by}'.")

    rejected: list[str] = []
    merged: dict[str, dict[str, Any]] = {}

    for index, row in enumerate(rows):
        raw_address = row.get("address")
        address = validate_and_checksum_address(raw_address)
        if address is None:
            rejected.append(raw_address if isinstance(raw_address, str) else str(raw_address))
            logger.warning("Invalid address rejected: %s", raw_address)
            continue

        if "amount" not in row:
            raise InvalidAmountError(f"Row {index} ({raw_address}) is missing an amount.")
        try:
            amount = decimal_to_wei(row["amount"], decimals)
        except InvalidAmountError as exc:
            raise InvalidAmountError(f"Row {index} ({raw_address}): {exc}") from exc
        if clamp_decimals is not None:
            amount = clamp_amount(amount, decimals, clamp_decimals)

        entry = merged.get(address)
        if entry is None:
            merged[address] = {"row": row, "amount": amount}
        else:
            entry["amount"] += amount

    winners: list[NormalizedWinner] = []
    for address, entry in merged.items():
        row = entry["row"]
        winners.append(
            {
                "address": address,
                "amount": str(entry["amount"]),
                "rank": row.get("rank", 0),
                "id": row.get("id") or make_id(),
                "token": token,
                "metadata": dict(row.get("metadata") or {}),
            }
        )

    total = sum(entry["amount"] for entry in merged.values())

    body: dict[str, Any] = {
        "id": make_id(),
        "winners": winners,
        "token": token,
        "totalAmount": str(total),
        "createdBy": creator,
        "createdAt": _iso_timestamp(now()),
        "roundId": round_id,
        "groupId": group_id,
        "version": MANIFEST_VERSION,
    }
    manifest: PayoutManifest = {**body, "hash": compute_manifest_hash(body)}  # type: ignore[typeddict-item]

    logger.debug("Built manifest %s with %d winners, %d rejected", manifest["id"], len(winners), len(rejected))
    return {"manifest": manifest, "rejectedAddresses": rejected}
