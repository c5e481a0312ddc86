"""Deterministic JSON encoding used for manifest hashing and export."""

from __future__ import annotations

import hashlib
import json
import math
from decimal import Decimal
from typing import Any


def canonical_json(value: Any) -> str:
    """Serialize ``value`` with sorted object keys and no whitespace.

    Integers are always written as plain decimal digits. Floats follow the
    ECMAScript number formatting, so integral floats print as integers and
    the output matches a JSON producer that has a single number type.
    """
    if isinstance(value, dict):
        parts = []
        for key in sorted(value):
            if not isinstance(key, str):
                raise TypeError(f"Canonical JSON object keys must be strings, got {type(key).__name__}.")
            parts.append(f"{_scalar(key)}:{canonical_json(value[key])}")
        return "{" + ",".join(parts) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonical_json(item) for item in value) + "]"
    return _scalar(value)


def _scalar(value: Any) -> str:
    if isinstance(value, float):
        return _number_text(value)
    return json.dumps(value, ensure_ascii=False, allow_nan=False)


def _number_text(value: float) -> str:
    """Format a float the way ECMAScript ``Number.prototype.toString`` does.

    Both use the shortest round-tripping digits; they differ only in where
    exponent notation starts and how the exponent is written (``1e-7``,
    ``1e+21``).
    """
    if not math.isfinite(value):
        raise ValueError(f"Out of range float values are not JSON compliant: {value!r}")
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).as_tuple()
    digits = "".join(str(d) for d in digit_tuple).rstrip("0")
    exponent += len(digit_tuple) - len(digits)
    k = len(digits)
    n = k + exponent

    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return sign + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return sign + "0." + "0" * (-n) + digits
    mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
    power = n - 1
    return f"{sign}{mantissa}e{'+' if power >= 0 else '-'}{abs(power)}"



def sha256_hex(text: str) -> str:
    return "0x" + hashlib.sha256(text.encode("utf-8")).hexdigest()
