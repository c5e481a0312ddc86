"""Exception types shared by the payout runtime."""

from __future__ import annotations


class PayoutError(Exception):
    """Payout operation failed."""


class InvalidAmountError(PayoutError, ValueError):
    """Token amount is malformed, negative, or out of range."""


class ConfigError(PayoutError):
    """Runtime configuration (environment, RPC registry) is missing or invalid."""


class ChainConfigError(PayoutError):
    """Requested chain or chain asset is not configured."""


class ChainClientError(PayoutError):
    """The external chain client failed or returned unusable output."""


class SubprocessTimeout(ChainClientError):
    """A cast operation timed out (call/receipt/send/etc)."""

    def __init__(self, kind: str, timeout_sec: int, cmd: list[str]):
        super().__init__(f"Timed out after {timeout_sec}s running: {' '.join(_redact(cmd))}")
        self.kind = kind
        self.timeout_sec = timeout_sec
        self.cmd = cmd


class ExecutionError(PayoutError):
    """A prepared transaction could not be executed."""

    def __init__(self, message: str, index: int | None = None, tx_hash: str | None = None):
        super().__init__(message)
        self.index = index
        self.tx_hash = tx_hash


def _redact(cmd: list[str]) -> list[str]:
    out: list[str] = []
    hide_next = False
    for part in cmd:
        if hide_next:
            out.append("<redacted>")
            hide_next = False
            continue
        out.append(part)
        if part == "--private-key":
            hide_next = True
    return out
