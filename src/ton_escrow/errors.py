"""Escrow error codes and exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    # Success
    SUCCESS = 0

    # Contract exit codes (must match the on-chain deal code)
    NOT_ACTIVE = 101
    INVALID_OP = 102
    NOT_EXPIRED = 103
    INVALID_SIGNATURE = 104
    WRONG_TARGET = 105
    NOT_ENOUGH_COINS = 106
    UNKNOWN_SENDER = 107

    # Codec
    CAPACITY_EXCEEDED = 0x0100
    MALFORMED_FIELD = 0x0101
    MALFORMED_ADDRESS = 0x0102
    INVALID_AMOUNT = 0x0103
    INVALID_FORMAT = 0x0104
    INVALID_BOC = 0x0105
    DECODE_ERROR = 0x0106

    # Mirror / query
    SELF_DEAL = 0x0200
    QUERY_FAILED = 0x0201
    QUERY_TIMEOUT = 0x0202
    DEAL_TOO_SMALL = 0x0203

    # Configuration
    INVALID_CONFIG = 0x0300


@dataclass(frozen=True)
class EscrowError(Exception):
    code: ErrorCode
    message: str
    field: Optional[str] = None

    def __str__(self) -> str:
        if self.field is not None:
            return f"{self.code.name}({self.code:#06x}) [{self.field}]: {self.message}"
        return f"{self.code.name}({self.code:#06x}): {self.message}"


# Allow Python's Exception machinery to set __traceback__/__context__/__cause__
# while keeping dataclass fields frozen (Python 3.13 contextlib compat).
_EXCEPTION_ATTRS = frozenset(("__traceback__", "__context__", "__cause__", "__notes__"))
_frozen_setattr = EscrowError.__setattr__


def _escrow_error_setattr(self: EscrowError, name: str, value: object) -> None:
    if name in _EXCEPTION_ATTRS:
        object.__setattr__(self, name, value)
    else:
        _frozen_setattr(self, name, value)


EscrowError.__setattr__ = _escrow_error_setattr  # type: ignore[method-assign]


def decode_error(field: str, cause: EscrowError) -> EscrowError:
    """Wrap a low-level codec failure into a DECODE_ERROR naming the field."""
    return EscrowError(ErrorCode.DECODE_ERROR, f"cannot read {field}: {cause.message}", field)
