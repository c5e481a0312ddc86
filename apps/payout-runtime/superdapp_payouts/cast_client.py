"""Chain clients backed by Foundry's ``cast`` binary.

``CastPublicClient`` covers the read side (chain id, receipts, nonces) and
``CastWalletClient`` signs and broadcasts with a raw private key. Every call is
a bounded subprocess; timeouts come from ``superdapp_payouts.config``.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import re
import shutil
import subprocess
import time
from typing import Any

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from superdapp_payouts import config
from superdapp_payouts.errors import ChainClientError, SubprocessTimeout
from superdapp_payouts.models import ChainId, Receipt, ReceiptLog
from superdapp_payouts.normalize import is_hex_address, keccak256, to_checksum_address

logger = logging.getLogger(__name__)

RETRY_SLEEP_SEC = 0.25


def _find_cast_bin() -> str | None:
    # Foundry installs to ~/.foundry/bin, which minimal service PATHs often miss.
    candidates: list[str] = []
    explicit = (os.environ.get("PAYOUTS_CAST_BIN") or "").strip()
    if explicit:
        candidates.append(explicit)

    foundry_bin = (os.environ.get("FOUNDRY_BIN") or "").strip()
    if foundry_bin:
        candidates.append(str(pathlib.Path(foundry_bin) / "cast"))

    which_cast = shutil.which("cast")
    if which_cast:
        candidates.append(which_cast)

    candidates.append(str(pathlib.Path.home() / ".foundry" / "bin" / "cast"))

    for entry in candidates:
        path = pathlib.Path(entry).expanduser()
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)
    return None


def _require_cast_bin() -> str:
    cast_bin = _find_cast_bin()
    if not cast_bin:
        raise ChainClientError("Missing dependency: cast. Install Foundry or set PAYOUTS_CAST_BIN.")
    return cast_bin


def _run_subprocess(cmd: list[str], *, timeout_sec: int, kind: str) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(cmd, text=True, capture_output=True, timeout=timeout_sec)
    except subprocess.TimeoutExpired as exc:
        raise SubprocessTimeout(kind=kind, timeout_sec=timeout_sec, cmd=cmd) from exc


def _proc_error(proc: subprocess.CompletedProcess[str], fallback: str) -> str:
    stderr = (proc.stderr or "").strip()
    stdout = (proc.stdout or "").strip()
    return stderr or stdout or fallback


def _parse_uint_text(value: str) -> int:
    raw = value.strip()
    if re.fullmatch(r"[0-9]+", raw):
        return int(raw)
    if re.fullmatch(r"0x[a-fA-F0-9]+", raw):
        return int(raw, 16)
    # cast may append a scientific hint, e.g. "20000000000000000000000 [2e22]".
    prefix = re.match(r"^(0x[a-fA-F0-9]+|[0-9]+)", raw)
    if prefix:
        token = prefix.group(1)
        if token.startswith("0x"):
            return int(token, 16)
        return int(token)
    raise ChainClientError(f"Unable to parse uint value: '{value}'.")


def _extract_tx_hash(output: str) -> str:
    trimmed = (output or "").strip()
    if not trimmed:
        raise ChainClientError("cast send returned empty output.")
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        parsed = None

    candidates: list[Any] = []
    if isinstance(parsed, dict):
        candidates.extend([parsed.get("transactionHash"), parsed.get("txHash"), parsed.get("hash")])
    elif isinstance(parsed, str):
        candidates.append(parsed)

    for value in candidates:
        if isinstance(value, str) and re.fullmatch(r"0x[a-fA-F0-9]{64}", value):
            return value

    match = re.search(r"0x[a-fA-F0-9]{64}", trimmed)
    if match:
        return match.group(0)
    raise ChainClientError(f"Unable to find transaction hash in cast output: '{trimmed[:200]}'.")


def _retryable_send_error(stderr: str) -> bool:
    normalized = stderr.lower()
    retryable_fragments = (
        "replacement transaction underpriced",
        "nonce too low",
        "already known",
        "temporarily underpriced",
        "transaction underpriced",
    )
    return any(fragment in normalized for fragment in retryable_fragments)


def _parse_next_nonce_from_error(stderr: str) -> int | None:
    match = re.search(r"nonce too low: next nonce ([0-9]+), tx nonce ([0-9]+)", stderr.lower())
    if not match:
        return None
    return int(match.group(1))


def _already_known_hash(stderr: str) -> str | None:
    if "already known" not in stderr.lower():
        return None
    match = re.search(r"0x[a-fA-F0-9]{64}", stderr)
    return match.group(0) if match else None


def _bump_fees(params: dict[str, Any], bump_wei: int) -> dict[str, Any]:
    if bump_wei <= 0:
        return params
    bumped = dict(params)
    for key in ("gasPrice", "maxFeePerGas", "maxPriorityFeePerGas"):
        if bumped.get(key) is not None:
            bumped[key] = int(bumped[key]) + bump_wei
    return bumped


def _normalize_private_key_hex(value: str) -> str | None:
    stripped = value.strip()
    if stripped.startswith("0x"):
        stripped = stripped[2:]
    if re.fullmatch(r"[a-fA-F0-9]{64}", stripped):
        return stripped.lower()
    return None


def derive_address(private_key_hex: str) -> str:
    """Return the checksummed account address controlled by ``private_key_hex``."""
    normalized = _normalize_private_key_hex(private_key_hex)
    if normalized is None:
        raise ChainClientError("Private key must be 32 bytes of hex.")
    private_value = int.from_bytes(bytes.fromhex(normalized), byteorder="big")
    # cryptography validates the secp256k1 scalar range.
    try:
        private_key = ec.derive_private_key(private_value, ec.SECP256K1())
    except ValueError as exc:
        raise ChainClientError("Private key is outside the secp256k1 range.") from exc
    public_key_bytes = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return to_checksum_address("0x" + keccak256(public_key_bytes[1:])[-20:].hex())


def _receipt_status(value: Any) -> str:
    if isinstance(value, bool):
        return "success" if value else "reverted"
    if isinstance(value, int):
        return "success" if value == 1 else "reverted"
    text = str(value or "").strip().lower()
    if text in {"0x1", "1", "success"}:
        return "success"
    # cast prints "1 (success)" / "0 (failed)" in some versions.
    if text.startswith("1 ") or "success" in text:
        return "success"
    return "reverted"


def _maybe_uint(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return _parse_uint_text(str(value))
    except ChainClientError:
        return None


def normalize_receipt(payload: dict[str, Any]) -> Receipt:
    """Reduce a ``cast receipt --json`` payload to the fields reconciliation reads."""
    logs: list[ReceiptLog] = []
    for position, entry in enumerate(payload.get("logs") or []):
        if not isinstance(entry, dict):
            continue
        log_index = _maybe_uint(entry.get("logIndex"))
        logs.append(
            {
                "address": str(entry.get("address") or ""),
                "topics": [str(topic) for topic in entry.get("topics") or []],
                "data": str(entry.get("data") or "0x"),
                "logIndex": position if log_index is None else log_index,
            }
        )
    receipt: Receipt = {
        "transactionHash": str(payload.get("transactionHash") or ""),
        "status": _receipt_status(payload.get("status")),
        "logs": logs,
    }
    block_number = _maybe_uint(payload.get("blockNumber"))
    if block_number is not None:
        receipt["blockNumber"] = block_number
    return receipt


def _parse_receipt_output(output: str, tx_hash: str) -> Receipt:
    try:
        payload = json.loads((output or "").strip() or "{}")
    except json.JSONDecodeError as exc:
        raise ChainClientError(f"cast receipt returned invalid JSON for {tx_hash}.") from exc
    if not isinstance(payload, dict) or not payload:
        raise ChainClientError(f"cast receipt returned no receipt for {tx_hash}.")
    return normalize_receipt(payload)


class CastPublicClient:
    """Read-only chain access through ``cast``."""

    def __init__(self, rpc_url: str, chain_id: ChainId | None = None, *, cast_bin: str | None = None):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self._cast_bin = cast_bin

    @property
    def cast_bin(self) -> str:
        if self._cast_bin is None:
            self._cast_bin = _require_cast_bin()
        return self._cast_bin

    def get_chain_id(self) -> int:
        proc = _run_subprocess(
            [self.cast_bin, "chain-id", "--rpc-url", self.rpc_url],
            timeout_sec=config.cast_call_timeout_sec(),
            kind="cast_call",
        )
        if proc.returncode != 0:
            raise ChainClientError(_proc_error(proc, "cast chain-id failed."))
        return _parse_uint_text(proc.stdout or "")

    def get_transaction_receipt(self, tx_hash: str) -> Receipt:
        proc = _run_subprocess(
            [self.cast_bin, "receipt", "--json", "--async", "--rpc-url", self.rpc_url, tx_hash],
            timeout_sec=config.cast_call_timeout_sec(),
            kind="cast_receipt",
        )
        if proc.returncode != 0:
            raise ChainClientError(_proc_error(proc, "cast receipt failed."))
        return _parse_receipt_output(proc.stdout, tx_hash)

    def wait_for_transaction_receipt(self, tx_hash: str, confirmations: int = 1) -> Receipt:
        proc = _run_subprocess(
            [
                self.cast_bin,
                "receipt",
                "--json",
                "--confirmations",
                str(max(1, int(confirmations))),
                "--rpc-url",
                self.rpc_url,
                tx_hash,
            ],
            timeout_sec=config.cast_receipt_timeout_sec(),
            kind="cast_receipt",
        )
        if proc.returncode != 0:
            raise ChainClientError(_proc_error(proc, "cast receipt failed."))
        return _parse_receipt_output(proc.stdout, tx_hash)

    def get_transaction_count(self, address: str, block_tag: str = "pending") -> int:
        if not is_hex_address(address):
            raise ChainClientError(f"Invalid address for nonce lookup: '{address}'.")
        proc = _run_subprocess(
            [self.cast_bin, "nonce", "--rpc-url", self.rpc_url, address, "--block", block_tag],
            timeout_sec=config.cast_call_timeout_sec(),
            kind="cast_call",
        )
        if proc.returncode != 0:
            raise ChainClientError(_proc_error(proc, "cast nonce failed."))
        return _parse_uint_text(proc.stdout or "")


class CastWalletClient:
    """Private-key signer that broadcasts through ``cast send``."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        chain_id: ChainId | None = None,
        *,
        cast_bin: str | None = None,
    ):
        normalized = _normalize_private_key_hex(private_key)
        if normalized is None:
            raise ChainClientError("Private key must be 32 bytes of hex.")
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self._private_key = normalized
        self.address = derive_address(normalized)
        self._cast_bin = cast_bin

    def __repr__(self) -> str:
        return f"CastWalletClient(rpc_url={self.rpc_url!r}, address={self.address!r})"

    @property
    def cast_bin(self) -> str:
        if self._cast_bin is None:
            self._cast_bin = _require_cast_bin()
        return self._cast_bin

    def _send_command(self, params: dict[str, Any]) -> list[str]:
        to_addr = params.get("to")
        if not isinstance(to_addr, str) or not is_hex_address(to_addr):
            raise ChainClientError("send_transaction requires 'to' as a hex address.")
        data = params.get("data") or "0x"
        if not isinstance(data, str) or not re.fullmatch(r"0x[a-fA-F0-9]*", data):
            raise ChainClientError("send_transaction requires 'data' as hex calldata.")

        cmd = [
            self.cast_bin,
            "send",
            "--json",
            "--rpc-url",
            self.rpc_url,
            "--private-key",
            "0x" + self._private_key,
        ]
        if self.chain_id is not None:
            cmd.extend(["--chain", str(self.chain_id)])
        if params.get("maxFeePerGas") is not None:
            cmd.extend(["--gas-price", str(int(params["maxFeePerGas"]))])
            if params.get("maxPriorityFeePerGas") is not None:
                cmd.extend(["--priority-gas-price", str(int(params["maxPriorityFeePerGas"]))])
        else:
            cmd.append("--legacy")
            if params.get("gasPrice") is not None:
                cmd.extend(["--gas-price", str(int(params["gasPrice"]))])
        if params.get("gas") is not None:
            cmd.extend(["--gas-limit", str(int(params["gas"]))])
        if int(params.get("value") or 0) > 0:
            cmd.extend(["--value", str(int(params["value"]))])
        if params.get("nonce") is not None:
            cmd.extend(["--nonce", str(int(params["nonce"]))])
        cmd.append(to_addr)
        if data != "0x":
            cmd.append(data)
        return cmd

    def send_transaction(self, params: dict[str, Any]) -> str:
        """Broadcast ``params`` and return the transaction hash.

        Transient pool errors ("nonce too low", "underpriced", "already known")
        are retried up to ``PAYOUTS_TX_SEND_MAX_ATTEMPTS`` times. Each retry
        raises the fee by ``config.tx_gas_price_bump_wei`` and moves to the
        next nonce when the node reports one. An "already known" error that
        carries the pending hash counts as sent.
        """
        attempts = config.tx_send_max_attempts()
        pending = dict(params)
        last_err = "cast send failed."
        for attempt in range(attempts):
            cmd = self._send_command(_bump_fees(pending, config.tx_gas_price_bump_wei(attempt)))
            proc = _run_subprocess(cmd, timeout_sec=config.cast_send_timeout_sec(), kind="cast_send")
            if proc.returncode == 0:
                return _extract_tx_hash(proc.stdout)
            last_err = _proc_error(proc, "cast send failed.")
            known_hash = _already_known_hash(last_err)
            if known_hash is not None:
                logger.info("cast send reported %s as already known; treating it as sent.", known_hash)
                return known_hash
            if attempt < (attempts - 1) and _retryable_send_error(last_err):
                next_nonce = _parse_next_nonce_from_error(last_err)
                if next_nonce is not None:
                    pending["nonce"] = next_nonce
                logger.info("cast send attempt %d failed with retryable error: %s", attempt + 1, last_err)
                time.sleep(RETRY_SLEEP_SEC)
                continue
            break
        raise ChainClientError(f"{last_err} (after {attempt + 1} attempts)")
