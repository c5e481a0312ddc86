"""Address and amount normalization for payout inputs."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from Crypto.Hash import keccak

from superdapp_payouts.errors import InvalidAmountError

MAX_TOKEN_DECIMALS = 255


def keccak256(data: bytes) -> bytes:
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def is_hex_address(value: Any) -> bool:
    return isinstance(value, str) and bool(re.fullmatch(r"0x[a-fA-F0-9]{40}", value))


def to_checksum_address(address: str) -> str:
    """Return the EIP-55 mixed-case form of a 20-byte hex address."""
    stripped = address[2:] if address[:2].lower() == "0x" else address
    lowered = stripped.lower()
    if not re.fullmatch(r"[a-f0-9]{40}", lowered):
        raise ValueError(f"Invalid address: '{address}'.")
    hashed = keccak256(lowered.encode("ascii")).hex()
    chars = [ch.upper() if ch.isalpha() and int(hashed[i], 16) >= 8 else ch for i, ch in enumerate(lowered)]
    return "0x" + "".join(chars)


def validate_and_checksum_address(address: Any) -> str | None:
    if not isinstance(address, str) or not address:
        return None
    stripped = address.strip()
    if stripped[:2].lower() == "0x":
        stripped = stripped[2:]
    if not re.fullmatch(r"[a-fA-F0-9]{40}", stripped):
        return None
    return to_checksum_address(stripped)


def _amount_text(amount: Any) -> str:
    if isinstance(amount, bool):
        raise InvalidAmountError(f"Invalid amount format '{amount}'.")
    if isinstance(amount, int):
        return str(amount)
    if isinstance(amount, (float, Decimal)):
        try:
            value = Decimal(str(amount))
        except InvalidOperation as exc:
            raise InvalidAmountError(f"Invalid amount format '{amount}'.") from exc
        if not value.is_finite():
            raise InvalidAmountError(f"Invalid amount format '{amount}'.")
        return format(value, "f")
    if isinstance(amount, str):
        trimmed = amount.strip()
        if "e" in trimmed.lower():
            raise InvalidAmountError("Scientific notation is not supported for amounts. Use a normal decimal string.")
        return trimmed
    raise InvalidAmountError(f"Unsupported amount type '{type(amount).__name__}'.")


def decimal_to_wei(amount: Any, decimals: int) -> int:
    """Convert a decimal token amount to integer minor units.

    Fractional digits beyond ``decimals`` are truncated, never rounded.
    """
    if not isinstance(decimals, int) or isinstance(decimals, bool) or decimals < 0 or decimals > MAX_TOKEN_DECIMALS:
        raise InvalidAmountError(f"Token decimals must be 0..{MAX_TOKEN_DECIMALS}.")
    text = _amount_text(amount)
    if not text:
        raise InvalidAmountError("Amount must not be empty.")
    if text.startswith("-"):
        raise InvalidAmountError(f"Amount must not be negative: '{text}'.")
    if text.startswith("+"):
        text = text[1:]
    match = re.fullmatch(r"([0-9]*)(?:\.([0-9]*))?", text)
    if not match or not (match.group(1) or match.group(2)):
        raise InvalidAmountError(f"Invalid amount format '{amount}'.")

    integer_part = match.group(1) or "0"
    fractional_part = match.group(2) or ""
    wei = int(integer_part) * (10**decimals)
    if fractional_part:
        wei += int(fractional_part.ljust(decimals, "0")[:decimals] or "0")
    return wei


def clamp_decimals(amount: int, decimals: int, clamp: int) -> int:
    """Zero the low-order ``decimals - clamp`` digits of a minor-unit amount."""
    if clamp < 0:
        raise InvalidAmountError("clamp_decimals must be >= 0.")
    if clamp >= decimals:
        return amount
    dust_factor = 10 ** (decimals - clamp)
    return (amount // dust_factor) * dust_factor


def format_units(amount_wei: int, decimals: int) -> str:
    if decimals <= 0:
        return str(amount_wei)
    if amount_wei == 0:
        return "0"
    s = str(amount_wei)
    if len(s) <= decimals:
        s = s.rjust(decimals + 1, "0")
    whole = s[:-decimals]
    frac = s[-decimals:].rstrip("0")
    if not frac:
        return whole
    return f"{whole}.{frac}"


def extract_address_from_topic(topic: Any) -> str:
    """Return the address packed into a 32-byte indexed event topic."""
    if not isinstance(topic, str) or not topic:
        raise ValueError("Topic must be a non-empty string")
    if not topic.startswith("0x"):
        raise ValueError("Topic must start with 0x prefix")
    if len(topic) != 66:
        raise ValueError(f"Topic must be 66 characters long (0x + 64 hex chars), got {len(topic)}")
    if not re.fullmatch(r"[a-fA-F0-9]{64}", topic[2:]):
        raise ValueError("Topic contains invalid hex characters")
    return "0x" + topic[-40:]
