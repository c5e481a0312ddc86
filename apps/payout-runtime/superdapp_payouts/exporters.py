"""Export payout manifests as CSV and canonical JSON."""

from __future__ import annotations

import csv
import io
import json

from superdapp_payouts.builder import HASHED_FIELDS, compute_manifest_hash
from superdapp_payouts.canonical import canonical_json
from superdapp_payouts.errors import PayoutError
from superdapp_payouts.models import PayoutManifest

CSV_HEADER = ("address", "amountWei", "symbol", "roundId", "groupId")


def to_csv(manifest: PayoutManifest) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    symbol = manifest["token"]["symbol"]
    for winner in manifest["winners"]:
        writer.writerow([winner["address"], winner["amount"], symbol, manifest["roundId"], manifest["groupId"]])
    return buf.getvalue().rstrip("\n")


def to_json(manifest: PayoutManifest) -> str:
    return canonical_json(manifest)


def load_manifest(text: str) -> PayoutManifest:
    """Parse an exported manifest and check its content hash."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PayoutError(f"Manifest is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise PayoutError("Manifest must be a JSON object.")
    missing = [field for field in (*HASHED_FIELDS, "hash") if field not in payload]
    if missing:
        raise PayoutError(f"Manifest is missing required fields: {', '.join(missing)}.")
    expected = compute_manifest_hash(payload)
    if expected != payload["hash"]:
        raise PayoutError(f"Manifest hash mismatch: stored {payload['hash']}, computed {expected}.")
    return payload  # type: ignore[return-value]
