#!/usr/bin/env python3
"""superdapp-payouts: operator CLI for building, preparing, executing and reconciling payouts.

Every command prints exactly one JSON object on stdout. Logs go to stderr.
"""

from __future__ import annotations

import argparse
import csv
import io
import json
import logging
import os
import pathlib
import sys
from typing import Any

from superdapp_payouts import chain_config
from superdapp_payouts.builder import build_manifest
from superdapp_payouts.clients import RpcRegistry, create_clients_for_chain, validate_rpc_connection
from superdapp_payouts.config import LOG_LEVEL_ENV, PRIVATE_KEY_ENV, private_key_from_env
from superdapp_payouts.errors import (
    ChainClientError,
    ConfigError,
    ExecutionError,
    InvalidAmountError,
    PayoutError,
    SubprocessTimeout,
)
from superdapp_payouts.execute import assign_nonces, execute_tx_plan_detailed
from superdapp_payouts.exporters import load_manifest, to_csv, to_json
from superdapp_payouts.normalize import format_units, validate_and_checksum_address
from superdapp_payouts.reconcile import reconcile_push
from superdapp_payouts.tx_preparer import DEFAULT_MAX_PER_BATCH, prepare_push_txs

logger = logging.getLogger("superdapp_payouts.cli")


def emit(payload: dict) -> int:
    print(json.dumps(payload, separators=(",", ":")))
    return 0


def ok(message: str, **extra: object) -> int:
    payload = {"ok": True, "code": "ok", "message": message}
    payload.update(extra)
    return emit(payload)


def fail(code: str, message: str, action_hint: str | None = None, details: dict | None = None, exit_code: int = 1) -> int:
    payload: dict[str, object] = {"ok": False, "code": code, "message": message}
    if action_hint:
        payload["actionHint"] = action_hint
    if details:
        payload["details"] = details
    emit(payload)
    return exit_code


def require_json_flag(args: argparse.Namespace) -> int | None:
    if getattr(args, "json", False):
        return None
    return fail("missing_flag", "This command requires --json output mode.", "Re-run with --json.", exit_code=2)


def _configure_logging() -> None:
    level_name = (os.environ.get(LOG_LEVEL_ENV) or "WARNING").strip().upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(stream=sys.stderr, level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _read_text(path: str) -> str:
    try:
        return pathlib.Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Unable to read '{path}': {exc.strerror or exc}") from exc


def _read_json(path: str) -> Any:
    try:
        return json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"'{path}' is not valid JSON: {exc.msg}.") from exc


def _write_text(path: str, text: str) -> None:
    target = pathlib.Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")


def _load_rows(path: str) -> list[dict[str, Any]]:
    if path.lower().endswith(".csv"):
        reader = csv.DictReader(io.StringIO(_read_text(path)))
        rows: list[dict[str, Any]] = []
        for record in reader:
            row: dict[str, Any] = {"address": (record.get("address") or "").strip(), "amount": (record.get("amount") or "").strip()}
            rank = (record.get("rank") or "").strip()
            row["rank"] = int(rank) if rank.isdigit() else 0
            if (record.get("id") or "").strip():
                row["id"] = record["id"].strip()
            rows.append(row)
        return rows
    data = _read_json(path)
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ConfigError(f"'{path}' must contain a JSON array of winner objects.")
    return data


def _resolve_token(args: argparse.Namespace) -> dict[str, Any]:
    choice = (args.token or "").strip()
    if choice.lower() == "supr":
        return chain_config.get_supr_token_config(args.chain)
    if choice.lower() == "native":
        return chain_config.get_native_token_config(args.chain)
    address = validate_and_checksum_address(choice)
    if address is None:
        raise ConfigError(f"--token must be 'supr', 'native' or a token contract address, got '{choice}'.")
    chain_id = chain_config.normalize_chain_id(args.chain)
    if chain_id is None:
        raise ConfigError(f"--chain must be a numeric chain id, got '{args.chain}'.")
    return {
        "address": address,
        "symbol": args.symbol or "TOKEN",
        "name": args.name or args.symbol or "Token",
        "decimals": int(args.decimals),
        "chainId": chain_id,
        "isNative": False,
    }


def _load_manifest_file(path: str) -> dict[str, Any]:
    return load_manifest(_read_text(path))


def _registry_for(args: argparse.Namespace, chain_id: Any) -> RpcRegistry:
    registry = RpcRegistry.with_defaults()
    explicit = (getattr(args, "rpc_url", None) or "").strip()
    if explicit:
        registry.set(chain_id, explicit)
    return registry


def _handle_error(exc: Exception, details: dict[str, Any] | None = None) -> int:
    if isinstance(exc, InvalidAmountError):
        return fail("invalid_amount", str(exc), "Fix the offending row amount and retry.", details, exit_code=2)
    if isinstance(exc, ConfigError):
        return fail("invalid_input", str(exc), "Check command arguments and PAYOUTS_* environment variables.", details, exit_code=2)
    if isinstance(exc, SubprocessTimeout):
        return fail("timeout", str(exc), "Check RPC reachability or raise the PAYOUTS_CAST_*_TIMEOUT_SEC limits.", details, exit_code=1)
    if isinstance(exc, ChainClientError):
        msg = str(exc)
        if "Missing dependency: cast" in msg:
            return fail("missing_dependency", msg, "Install Foundry and ensure `cast` is on PATH.", details, exit_code=1)
        return fail("chain_client_error", msg, "Verify RPC URL, signer and chain id.", details, exit_code=1)
    if isinstance(exc, ExecutionError):
        merged = dict(details or {})
        if exc.index is not None:
            merged["index"] = exc.index
        if exc.tx_hash:
            merged["txHash"] = exc.tx_hash
        return fail("execution_failed", str(exc), "Inspect the failed transaction before re-running.", merged, exit_code=1)
    if isinstance(exc, PayoutError):
        return fail("payout_error", str(exc), None, details, exit_code=1)
    return fail("unexpected_error", str(exc), None, details, exit_code=1)


def cmd_build(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        token = _resolve_token(args)
        rows = _load_rows(args.rows)
        result = build_manifest(
            rows,
            token=token,
            round_id=args.round_id,
            group_id=args.group_id,
            clamp_decimals=args.clamp_decimals,
            created_by=args.created_by,
        )
        manifest = result["manifest"]
        if args.out:
            _write_text(args.out, to_json(manifest))
        return ok(
            "Payout manifest built.",
            manifestId=manifest["id"],
            hash=manifest["hash"],
            winnerCount=len(manifest["winners"]),
            totalAmount=manifest["totalAmount"],
            totalDisplay=format_units(int(manifest["totalAmount"]), int(token["decimals"])),
            symbol=token["symbol"],
            rejectedAddresses=result["rejectedAddresses"],
            out=args.out,
        )
    except PayoutError as exc:
        return _handle_error(exc, {"rows": args.rows})


def cmd_export(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        manifest = _load_manifest_file(args.manifest)
        text = to_csv(manifest) if args.format == "csv" else to_json(manifest)
        if args.out:
            _write_text(args.out, text + ("\n" if args.format == "csv" else ""))
            return ok("Manifest exported.", format=args.format, out=args.out, manifestId=manifest["id"])
        return ok("Manifest exported.", format=args.format, manifestId=manifest["id"], content=text)
    except PayoutError as exc:
        return _handle_error(exc, {"manifest": args.manifest})


def cmd_prepare(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        manifest = _load_manifest_file(args.manifest)
        plan = prepare_push_txs(
            manifest,
            token=manifest["token"],
            airdrop=args.airdrop,
            max_per_batch=args.max_per_batch,
            single_approval=not args.no_approval,
        )
        if not plan["validation"]["isValid"]:
            return fail(
                "invalid_plan",
                "; ".join(plan["validation"]["errors"]),
                "Provide --airdrop for chains without a configured SuperDappAirdrop contract.",
                {"validation": plan["validation"]},
                exit_code=2,
            )
        if args.out:
            _write_text(args.out, json.dumps(plan, indent=2))
        return ok(
            "Payout plan prepared.",
            manifestId=plan["manifestId"],
            transactionCount=len(plan["transactions"]),
            estimatedGasCost=plan["estimatedGasCost"],
            summary=plan["summary"],
            warnings=plan["validation"]["warnings"],
            out=args.out,
        )
    except PayoutError as exc:
        return _handle_error(exc, {"manifest": args.manifest})


def _check_plan_chain(plan: dict[str, Any], chain: str) -> None:
    expected = chain_config.normalize_chain_id(chain)
    if expected is None:
        raise ConfigError(f"--chain must be a numeric chain id, got '{chain}'.")
    summary = plan.get("summary")
    token = summary.get("token") if isinstance(summary, dict) else None
    found = [token.get("chainId")] if isinstance(token, dict) else []
    found += [tx.get("chainId") for tx in plan.get("transactions") or [] if isinstance(tx, dict)]
    for value in found:
        if value is not None and chain_config.normalize_chain_id(value) != expected:
            raise ConfigError(f"Plan targets chain {value} but --chain is {expected}.")


def cmd_execute(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        plan = _read_json(args.plan)
        if not isinstance(plan, dict):
            raise ConfigError(f"'{args.plan}' must contain a JSON object.")
        _check_plan_chain(plan, args.chain)
        private_key = private_key_from_env()
        if private_key is None:
            return fail(
                "missing_signer",
                f"{PRIVATE_KEY_ENV} is not set.",
                f"Export {PRIVATE_KEY_ENV} with the payout signer's private key.",
                exit_code=2,
            )
        clients = create_clients_for_chain(_registry_for(args, args.chain), args.chain)
        wallet = clients.create_wallet_client(private_key)
        public_client = clients.public_client
        start_nonce = args.start_nonce
        if start_nonce is None:
            start_nonce = public_client.get_transaction_count(wallet.address, "pending")
        plan = assign_nonces(plan, start_nonce)

        def on_progress(index: int, tx: dict[str, Any], tx_hash: str | None = None) -> None:
            if tx_hash:
                logger.info("tx %d sent: %s", index, tx_hash)
            else:
                logger.info("sending tx %d to %s", index, tx["to"])

        result = execute_tx_plan_detailed(
            plan,
            wallet=wallet,
            public_client=public_client,
            on_progress=on_progress,
            stop_on_fail=args.stop_on_fail,
        )
        if result["errors"]:
            return fail(
                "execution_partial",
                f"{len(result['errors'])} of {len(plan['transactions'])} transactions failed.",
                "Reconcile the sent hashes before retrying the failed transactions.",
                {"txHashes": result["txHashes"], "errors": result["errors"], "reverted": result["reverted"]},
                exit_code=1,
            )
        return ok("Payout plan executed.", chain=args.chain, sender=wallet.address, txHashes=result["txHashes"])
    except PayoutError as exc:
        return _handle_error(exc, {"plan": args.plan, "chain": args.chain})


def _collect_hashes(args: argparse.Namespace) -> list[str]:
    hashes = list(args.tx_hash or [])
    if args.hashes_file:
        data = _read_json(args.hashes_file)
        if isinstance(data, dict):
            data = data.get("txHashes") or (data.get("details") or {}).get("txHashes") or []
        if not isinstance(data, list):
            raise ConfigError(f"'{args.hashes_file}' must contain a JSON array of hashes or an object with txHashes.")
        hashes.extend(str(item) for item in data)
    return hashes


def cmd_reconcile(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        manifest = _load_manifest_file(args.manifest)
        chain_id = manifest["token"]["chainId"]
        public_client = create_clients_for_chain(_registry_for(args, chain_id), chain_id).public_client
        result = reconcile_push(public_client, manifest["token"].get("address"), manifest, _collect_hashes(args))
        if not result["success"]:
            return fail(
                "reconcile_mismatch",
                "On-chain transfers do not match the manifest.",
                "Review errors and missingTransfers before paying out again.",
                {"result": result},
                exit_code=1,
            )
        return ok("Payout reconciled.", result=result)
    except PayoutError as exc:
        return _handle_error(exc, {"manifest": args.manifest})


def cmd_chains(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    chains = []
    for chain_id in chain_config.get_all_configured_chain_ids():
        meta = chain_config.get_chain_metadata(chain_id) or {}
        chains.append(
            {
                "chainId": chain_id,
                "name": meta.get("name"),
                "nativeToken": meta.get("nativeToken"),
                "isTestnet": bool(meta.get("isTestnet")),
                "airdrop": chain_config.get_airdrop_address(chain_id),
                "supported": chain_config.is_supported_chain(chain_id),
            }
        )
    return ok("Configured chains.", chains=chains, supportedChainIds=chain_config.get_supported_chain_ids())


def cmd_rpc_check(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        rpc_url = create_clients_for_chain(_registry_for(args, args.chain), args.chain).rpc_url
        check = validate_rpc_connection(rpc_url, args.chain)
        if not check["isValid"]:
            return fail("rpc_invalid", check.get("error", "RPC check failed."), "Verify --rpc-url or PAYOUTS_RPC_URL_<chainId>.", {"chain": args.chain, **check})
        return ok("RPC connection valid.", chain=args.chain, rpcUrl=rpc_url, actualChainId=check["actualChainId"])
    except PayoutError as exc:
        return _handle_error(exc, {"chain": args.chain})


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="superdapp-payouts", add_help=True)
    sub = p.add_subparsers(dest="top")

    build = sub.add_parser("build")
    build.add_argument("--rows", required=True, help="JSON array or CSV (address,amount[,rank,id]) of winners")
    build.add_argument("--chain", required=True)
    build.add_argument("--token", required=True, help="'supr', 'native' or an ERC-20 contract address")
    build.add_argument("--symbol")
    build.add_argument("--name")
    build.add_argument("--decimals", type=int, default=18)
    build.add_argument("--round-id", required=True)
    build.add_argument("--group-id", required=True)
    build.add_argument("--clamp-decimals", type=int)
    build.add_argument("--created-by", default="0x0000000000000000000000000000000000000000")
    build.add_argument("--out")
    build.add_argument("--json", action="store_true")
    build.set_defaults(func=cmd_build)

    export = sub.add_parser("export")
    export.add_argument("--manifest", required=True)
    export.add_argument("--format", choices=("csv", "json"), default="csv")
    export.add_argument("--out")
    export.add_argument("--json", action="store_true")
    export.set_defaults(func=cmd_export)

    prepare = sub.add_parser("prepare")
    prepare.add_argument("--manifest", required=True)
    prepare.add_argument("--airdrop")
    prepare.add_argument("--max-per-batch", type=int, default=DEFAULT_MAX_PER_BATCH)
    prepare.add_argument("--no-approval", action="store_true")
    prepare.add_argument("--out")
    prepare.add_argument("--json", action="store_true")
    prepare.set_defaults(func=cmd_prepare)

    execute = sub.add_parser("execute")
    execute.add_argument("--plan", required=True)
    execute.add_argument("--chain", required=True)
    execute.add_argument("--rpc-url")
    execute.add_argument("--start-nonce", type=int)
    execute.add_argument("--stop-on-fail", action="store_true")
    execute.add_argument("--json", action="store_true")
    execute.set_defaults(func=cmd_execute)

    reconcile = sub.add_parser("reconcile")
    reconcile.add_argument("--manifest", required=True)
    reconcile.add_argument("--tx-hash", action="append")
    reconcile.add_argument("--hashes-file")
    reconcile.add_argument("--rpc-url")
    reconcile.add_argument("--json", action="store_true")
    reconcile.set_defaults(func=cmd_reconcile)

    chains = sub.add_parser("chains")
    chains.add_argument("--json", action="store_true")
    chains.set_defaults(func=cmd_chains)

    rpc_check = sub.add_parser("rpc-check")
    rpc_check.add_argument("--chain", required=True)
    rpc_check.add_argument("--rpc-url")
    rpc_check.add_argument("--json", action="store_true")
    rpc_check.set_defaults(func=cmd_rpc_check)

    return p


def main(argv: list[str] | None = None) -> int:
    _configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
