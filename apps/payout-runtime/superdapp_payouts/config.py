"""Environment-driven runtime settings.

Every knob is an unsigned integer read from the environment; a malformed value
raises ConfigError naming the variable instead of silently falling back.
"""

from __future__ import annotations

import os
import re
from typing import TypedDict

from superdapp_payouts.errors import ConfigError

GWEI = 10**9

DEFAULT_CAST_CALL_TIMEOUT_SEC = 30
DEFAULT_CAST_RECEIPT_TIMEOUT_SEC = 120
DEFAULT_CAST_SEND_TIMEOUT_SEC = 60
DEFAULT_TX_SEND_MAX_ATTEMPTS = 3
DEFAULT_GAS_PRICE_GWEI = 20
DEFAULT_MAX_FEE_GWEI = 25
DEFAULT_PRIORITY_FEE_GWEI = 2
DEFAULT_TX_GAS_PRICE_BUMP_GWEI = 5

FUND_GAS_LIMIT = 21000
APPROVE_GAS_LIMIT = 100000
BATCH_GAS_LIMIT = 500000

RPC_URL_ENV_PREFIX = "PAYOUTS_RPC_URL_"
PRIVATE_KEY_ENV = "PAYOUTS_PRIVATE_KEY"
LOG_LEVEL_ENV = "PAYOUTS_LOG_LEVEL"


class FeeSettings(TypedDict):
    gasPrice: int
    maxFeePerGas: int
    maxPriorityFeePerGas: int


def env_uint(name: str, default: int, minimum: int = 1) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    if not re.fullmatch(r"[0-9]+", raw):
        raise ConfigError(f"{name} must be an integer >= {minimum}.")
    value = int(raw)
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}.")
    return value


def cast_call_timeout_sec() -> int:
    return env_uint("PAYOUTS_CAST_CALL_TIMEOUT_SEC", DEFAULT_CAST_CALL_TIMEOUT_SEC)


def cast_receipt_timeout_sec() -> int:
    return env_uint("PAYOUTS_CAST_RECEIPT_TIMEOUT_SEC", DEFAULT_CAST_RECEIPT_TIMEOUT_SEC)


def cast_send_timeout_sec() -> int:
    return env_uint("PAYOUTS_CAST_SEND_TIMEOUT_SEC", DEFAULT_CAST_SEND_TIMEOUT_SEC)


def tx_send_max_attempts() -> int:
    return env_uint("PAYOUTS_TX_SEND_MAX_ATTEMPTS", DEFAULT_TX_SEND_MAX_ATTEMPTS)


def tx_gas_price_bump_wei(attempt_index: int) -> int:
    """Extra fee added on retry ``attempt_index``: 0, bump, 3*bump, 7*bump, ..."""
    bump = env_uint("PAYOUTS_TX_GAS_PRICE_BUMP_GWEI", DEFAULT_TX_GAS_PRICE_BUMP_GWEI)
    return ((2**attempt_index) - 1) * bump * GWEI


def fee_settings() -> FeeSettings:
    gas_price = env_uint("PAYOUTS_GAS_PRICE_GWEI", DEFAULT_GAS_PRICE_GWEI)
    max_fee = env_uint("PAYOUTS_MAX_FEE_GWEI", DEFAULT_MAX_FEE_GWEI)
    priority_fee = env_uint("PAYOUTS_PRIORITY_FEE_GWEI", DEFAULT_PRIORITY_FEE_GWEI, minimum=0)
    if priority_fee > max_fee:
        raise ConfigError("PAYOUTS_PRIORITY_FEE_GWEI must not exceed PAYOUTS_MAX_FEE_GWEI.")
    return {
        "gasPrice": gas_price * GWEI,
        "maxFeePerGas": max_fee * GWEI,
        "maxPriorityFeePerGas": priority_fee * GWEI,
    }


def private_key_from_env() -> str | None:
    value = (os.environ.get(PRIVATE_KEY_ENV) or "").strip()
    return value or None
