"""Core types for the deal escrow.

A deal is a small contract holding the buyer's committed coins and fee until
the guarantor completes it (coins to the seller, fee to the fee gainer) or it
is cancelled (everything back to the buyer).
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, localcontext
from enum import IntEnum
from typing import Union

from .cell import Cell
from .config import ADDRESS_HASH_BYTES, COIN_DECIMALS, MAX_COINS_BYTES, PUBLIC_KEY_BYTES
from .errors import ErrorCode, EscrowError

_U64_MAX = (1 << 64) - 1
_MAX_COINS = (1 << (MAX_COINS_BYTES * 8)) - 1

# User-friendly address flags
_FLAG_BOUNCEABLE = 0x11
_FLAG_NON_BOUNCEABLE = 0x51
_FLAG_TESTNET = 0x80


class DealState(IntEnum):
    UNINITIALIZED = 0
    ACTIVE = 1
    COMPLETED = 2
    CANCELLED = 3

    @property
    def is_terminal(self) -> bool:
        return self in (DealState.COMPLETED, DealState.CANCELLED)


class OpCode(IntEnum):
    COMPLETE = 1
    CANCEL = 2
    SELLER_COMPLETION = 0x4E8EEC8F
    FEE_GAINER_COMPLETION = 0x11397F78
    CANCELLATION = 0x72551DA1


@dataclass(frozen=True)
class Address:
    workchain: int
    hash_part: bytes

    def __post_init__(self) -> None:
        if not -128 <= self.workchain <= 127:
            raise EscrowError(ErrorCode.MALFORMED_ADDRESS, "workchain must fit int8")
        if len(self.hash_part) != ADDRESS_HASH_BYTES:
            raise EscrowError(ErrorCode.MALFORMED_ADDRESS, "address hash must be 32 bytes")
        object.__setattr__(self, "hash_part", bytes(self.hash_part))

    @classmethod
    def parse(cls, text: str) -> "Address":
        """Parse the raw form `wc:hex` or the 48-char user-friendly form."""
        text = text.strip()
        if ":" in text:
            return cls.parse_raw(text)
        return cls.parse_friendly(text)[0]

    @classmethod
    def parse_raw(cls, text: str) -> "Address":
        wc, _, hex_part = text.partition(":")
        try:
            return cls(int(wc), bytes.fromhex(hex_part))
        except ValueError as exc:
            raise EscrowError(ErrorCode.MALFORMED_ADDRESS, f"invalid raw address: {text!r}") from exc

    @classmethod
    def parse_friendly(cls, text: str) -> tuple["Address", bool, bool]:
        """Return (address, bounceable, testnet)."""
        if len(text) != 48:
            raise EscrowError(ErrorCode.MALFORMED_ADDRESS, "friendly address must be 48 characters")
        try:
            raw = base64.b64decode(text.replace("-", "+").replace("_", "/"), validate=True)
        except (ValueError, binascii.Error) as exc:
            raise EscrowError(ErrorCode.MALFORMED_ADDRESS, "friendly address is not base64") from exc
        if binascii.crc_hqx(raw[:34], 0).to_bytes(2, "big") != raw[34:]:
            raise EscrowError(ErrorCode.MALFORMED_ADDRESS, "friendly address checksum mismatch")
        tag = raw[0]
        testnet = bool(tag & _FLAG_TESTNET)
        tag &= ~_FLAG_TESTNET
        if tag not in (_FLAG_BOUNCEABLE, _FLAG_NON_BOUNCEABLE):
            raise EscrowError(ErrorCode.MALFORMED_ADDRESS, f"unknown address tag {raw[0]:#x}")
        wc = int.from_bytes(raw[1:2], "big", signed=True)
        return cls(wc, raw[2:34]), tag == _FLAG_BOUNCEABLE, testnet

    def to_raw(self) -> str:
        return f"{self.workchain}:{self.hash_part.hex()}"

    def to_friendly(self, *, bounceable: bool = True, url_safe: bool = True, testnet: bool = False) -> str:
        tag = _FLAG_BOUNCEABLE if bounceable else _FLAG_NON_BOUNCEABLE
        if testnet:
            tag |= _FLAG_TESTNET
        raw = bytes([tag]) + self.workchain.to_bytes(1, "big", signed=True) + self.hash_part
        raw += binascii.crc_hqx(raw, 0).to_bytes(2, "big")
        if url_safe:
            return base64.urlsafe_b64encode(raw).decode()
        return base64.b64encode(raw).decode()

    def __str__(self) -> str:
        return self.to_raw()


def check_amount(name: str, value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise EscrowError(ErrorCode.INVALID_AMOUNT, f"{name} must be an integer")
    if value < 0:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, f"{name} must be non-negative")
    if value > _MAX_COINS:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, f"{name} does not fit {MAX_COINS_BYTES} bytes")
    return value


def to_nano(value: Union[str, int, Decimal]) -> int:
    """Convert whole coins ("1.5", 2, Decimal) into the smallest unit."""
    try:
        d = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, f"not a coin amount: {value!r}") from exc
    with localcontext() as ctx:
        ctx.prec = 80
        nano = d.scaleb(COIN_DECIMALS)
    if nano != nano.to_integral_value():
        raise EscrowError(ErrorCode.INVALID_AMOUNT, f"more than {COIN_DECIMALS} decimals: {value!r}")
    return check_amount("amount", int(nano))


def from_nano(value: int) -> str:
    whole, frac = divmod(check_amount("amount", value), 10**COIN_DECIMALS)
    frac_text = f"{frac:0{COIN_DECIMALS}d}".rstrip("0")
    return f"{whole}.{frac_text}" if frac_text else str(whole)


def _check_u64(name: str, value: int) -> None:
    if not isinstance(value, int) or not 0 <= value <= _U64_MAX:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{name} must fit uint64")


def _check_address(name: str, value: object) -> None:
    if not isinstance(value, Address):
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{name} must be an Address, got {type(value).__name__}")


@dataclass(frozen=True)
class CommonDealPart:
    """Deployment parameters shared by every deal of this process."""

    guarantor_public_key: bytes
    fee_gainer_address: Address

    def __post_init__(self) -> None:
        if len(self.guarantor_public_key) != PUBLIC_KEY_BYTES:
            raise EscrowError(ErrorCode.INVALID_FORMAT, "guarantor_public_key must be 32 bytes")
        _check_address("fee_gainer_address", self.fee_gainer_address)
        object.__setattr__(self, "guarantor_public_key", bytes(self.guarantor_public_key))


@dataclass(frozen=True)
class DealRecord:
    deal_id: int
    state: DealState
    buyer_address: Address
    seller_address: Address
    expires_at: int
    guarantor_public_key: bytes
    fee_gainer_address: Address
    fee_amount: int
    coins_amount: int

    def __post_init__(self) -> None:
        _check_u64("deal_id", self.deal_id)
        _check_u64("expires_at", self.expires_at)
        _check_address("buyer_address", self.buyer_address)
        _check_address("seller_address", self.seller_address)
        _check_address("fee_gainer_address", self.fee_gainer_address)
        if len(self.guarantor_public_key) != PUBLIC_KEY_BYTES:
            raise EscrowError(ErrorCode.INVALID_FORMAT, "guarantor_public_key must be 32 bytes")
        check_amount("fee_amount", self.fee_amount)
        check_amount("coins_amount", self.coins_amount)
        object.__setattr__(self, "state", DealState(self.state))
        object.__setattr__(self, "guarantor_public_key", bytes(self.guarantor_public_key))

    @property
    def total_amount(self) -> int:
        return self.fee_amount + self.coins_amount

    def with_state(self, state: DealState) -> "DealRecord":
        return replace(self, state=state)


@dataclass(frozen=True)
class PendingDeal:
    """A deal agreed off-chain but not yet observed on-chain."""

    buyer_address: Address
    seller_address: Address
    expires_at: int
    fee_amount: int
    coins_amount: int

    def __post_init__(self) -> None:
        _check_address("buyer_address", self.buyer_address)
        _check_address("seller_address", self.seller_address)
        _check_u64("expires_at", self.expires_at)
        check_amount("fee_amount", self.fee_amount)
        check_amount("coins_amount", self.coins_amount)

    def to_record(self, deal_id: int, common: CommonDealPart) -> DealRecord:
        return DealRecord(
            deal_id=deal_id,
            state=DealState.UNINITIALIZED,
            buyer_address=self.buyer_address,
            seller_address=self.seller_address,
            expires_at=self.expires_at,
            guarantor_public_key=common.guarantor_public_key,
            fee_gainer_address=common.fee_gainer_address,
            fee_amount=self.fee_amount,
            coins_amount=self.coins_amount,
        )


# --- Messages ---


@dataclass(frozen=True)
class Command:
    op: int
    query_id: int = 0


@dataclass(frozen=True)
class SignedCommand:
    op: int
    query_id: int
    target: Address
    signature: bytes
    signed_hash: bytes


@dataclass(frozen=True)
class InternalMessage:
    """Message from a party address, optionally carrying funds."""

    sender: Address
    value: int
    body: Cell


@dataclass(frozen=True)
class ExternalMessage:
    """Inbound message with no sender and no funds (guarantor commands)."""

    body: Cell


@dataclass(frozen=True)
class OutMessage:
    destination: Address
    amount: int
    mode: int
    body: Cell


@dataclass(frozen=True)
class ExecutionContext:
    now: int
    myself: Address
