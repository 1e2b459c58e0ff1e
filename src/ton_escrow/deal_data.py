"""Deal record codec.

Cell layout (must match the deployed deal code):

    root:  deal_id:uint64 state:uint2 buyer:MsgAddress seller:MsgAddress expires_at:uint64
    ref0:  guarantor_public_key:bits256 fee_gainer:MsgAddress
    ref1:  fee_amount:Coins coins_amount:Coins

The `get_deal_state` get-method returns the same fields as a flat stack of
nine entries in the same order, with addresses as slices and the public key
as a 256-bit integer.
"""

from __future__ import annotations

import base64
from typing import Any, Callable, Sequence, TypeVar, Union

from .cell import Cell, CellBuilder, Slice
from .config import DEAL_ID_BITS, DEAL_STACK_SIZE, DEAL_STATE_BITS, PUBLIC_KEY_BYTES, TIMESTAMP_BITS
from .encoding import (
    read_address,
    read_coins,
    read_public_key,
    read_uint,
    write_address,
    write_coins,
    write_public_key,
    write_uint,
)
from .errors import ErrorCode, EscrowError, decode_error
from .types import Address, DealRecord, DealState, check_amount

T = TypeVar("T")

StackEntry = Any
DealSource = Union[Cell, Slice, Sequence[StackEntry]]

STACK_FIELDS = (
    "deal_id",
    "state",
    "buyer_address",
    "seller_address",
    "expires_at",
    "guarantor_public_key",
    "fee_gainer_address",
    "fee_amount",
    "coins_amount",
)


def build_deal_data_cell(record: DealRecord) -> Cell:
    admins = CellBuilder()
    write_public_key(admins, record.guarantor_public_key)
    write_address(admins, record.fee_gainer_address)

    amounts = CellBuilder()
    write_coins(amounts, record.fee_amount)
    write_coins(amounts, record.coins_amount)

    b = CellBuilder()
    write_uint(b, record.deal_id, DEAL_ID_BITS)
    write_uint(b, record.state, DEAL_STATE_BITS)
    write_address(b, record.buyer_address)
    write_address(b, record.seller_address)
    write_uint(b, record.expires_at, TIMESTAMP_BITS)
    b.store_ref(admins.end_cell())
    b.store_ref(amounts.end_cell())
    return b.end_cell()


def _field(name: str, read: Callable[[], T]) -> T:
    try:
        return read()
    except EscrowError as exc:
        if exc.code == ErrorCode.DECODE_ERROR:
            raise
        raise decode_error(name, exc) from exc


def _decode_slice(s: Slice) -> DealRecord:
    deal_id = _field("deal_id", lambda: read_uint(s, DEAL_ID_BITS, "deal_id"))
    state = _field("state", lambda: read_uint(s, DEAL_STATE_BITS, "state"))
    buyer = _field("buyer_address", lambda: read_address(s, "buyer_address"))
    seller = _field("seller_address", lambda: read_address(s, "seller_address"))
    expires_at = _field("expires_at", lambda: read_uint(s, TIMESTAMP_BITS, "expires_at"))

    admins = _field("guarantor_public_key", lambda: s.load_ref("guarantor_public_key").begin_parse())
    public_key = _field("guarantor_public_key", lambda: read_public_key(admins, "guarantor_public_key"))
    fee_gainer = _field("fee_gainer_address", lambda: read_address(admins, "fee_gainer_address"))

    amounts = _field("fee_amount", lambda: s.load_ref("fee_amount").begin_parse())
    fee_amount = _field("fee_amount", lambda: read_coins(amounts, "fee_amount"))
    coins_amount = _field("coins_amount", lambda: read_coins(amounts, "coins_amount"))

    return DealRecord(
        deal_id=deal_id,
        state=DealState(state),
        buyer_address=buyer,
        seller_address=seller,
        expires_at=expires_at,
        guarantor_public_key=public_key,
        fee_gainer_address=fee_gainer,
        fee_amount=fee_amount,
        coins_amount=coins_amount,
    )


# --- get-method stack ---


def _entry_tag(entry: StackEntry) -> tuple[str, Any]:
    if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[0], str):
        return entry[0], entry[1]
    if isinstance(entry, dict) and "type" in entry:
        return entry["type"], entry.get("value", entry)
    return "", entry


def stack_int(entry: StackEntry, field: str) -> int:
    if isinstance(entry, bool):
        raise EscrowError(ErrorCode.MALFORMED_FIELD, "expected a number, got bool", field)
    if isinstance(entry, int):
        return entry
    tag, value = _entry_tag(entry)
    if tag == "num":
        if isinstance(value, int):
            return value
        try:
            return int(str(value), 16)
        except ValueError as exc:
            raise EscrowError(ErrorCode.MALFORMED_FIELD, f"bad number {value!r}", field) from exc
    raise EscrowError(ErrorCode.MALFORMED_FIELD, f"expected a number, got {entry!r}", field)


def stack_slice(entry: StackEntry, field: str) -> Slice:
    if isinstance(entry, Cell):
        return entry.begin_parse()
    if isinstance(entry, Slice):
        return entry.copy()
    tag, value = _entry_tag(entry)
    if tag in ("cell", "slice", "tvm.Cell", "tvm.Slice"):
        if isinstance(value, Cell):
            return value.begin_parse()
        if isinstance(value, dict):
            value = value.get("bytes")
        if isinstance(value, str):
            return Cell.from_boc(value).begin_parse()
    raise EscrowError(ErrorCode.MALFORMED_FIELD, f"expected a cell or slice, got {entry!r}", field)


def _stack_uint(entry: StackEntry, field: str, width: int) -> int:
    value = stack_int(entry, field)
    if value < 0 or value >> width:
        raise EscrowError(ErrorCode.MALFORMED_FIELD, f"{value} does not fit uint{width}", field)
    return value


def _stack_address(entry: StackEntry, field: str) -> Address:
    return read_address(stack_slice(entry, field), field)


def _stack_public_key(entry: StackEntry, field: str) -> bytes:
    return _stack_uint(entry, field, PUBLIC_KEY_BYTES * 8).to_bytes(PUBLIC_KEY_BYTES, "big")


def _stack_coins(entry: StackEntry, field: str) -> int:
    return check_amount(field, stack_int(entry, field))


def parse_deal_data_stack(stack: Sequence[StackEntry]) -> DealRecord:
    if len(stack) != DEAL_STACK_SIZE:
        raise EscrowError(
            ErrorCode.DECODE_ERROR,
            f"expected {DEAL_STACK_SIZE} stack entries, got {len(stack)}",
            "stack",
        )
    values = dict(zip(STACK_FIELDS, stack))
    return DealRecord(
        deal_id=_field("deal_id", lambda: _stack_uint(values["deal_id"], "deal_id", DEAL_ID_BITS)),
        state=DealState(_field("state", lambda: _stack_uint(values["state"], "state", DEAL_STATE_BITS))),
        buyer_address=_field("buyer_address", lambda: _stack_address(values["buyer_address"], "buyer_address")),
        seller_address=_field("seller_address", lambda: _stack_address(values["seller_address"], "seller_address")),
        expires_at=_field("expires_at", lambda: _stack_uint(values["expires_at"], "expires_at", TIMESTAMP_BITS)),
        guarantor_public_key=_field(
            "guarantor_public_key",
            lambda: _stack_public_key(values["guarantor_public_key"], "guarantor_public_key"),
        ),
        fee_gainer_address=_field(
            "fee_gainer_address",
            lambda: _stack_address(values["fee_gainer_address"], "fee_gainer_address"),
        ),
        fee_amount=_field("fee_amount", lambda: _stack_coins(values["fee_amount"], "fee_amount")),
        coins_amount=_field("coins_amount", lambda: _stack_coins(values["coins_amount"], "coins_amount")),
    )


def decode_deal_record(source: DealSource) -> DealRecord:
    """Decode a deal from its data cell, a slice over it, or a get-method stack."""
    if isinstance(source, Cell):
        return _decode_slice(source.begin_parse())
    if isinstance(source, Slice):
        return _decode_slice(source.copy())
    if isinstance(source, (list, tuple)):
        return parse_deal_data_stack(source)
    raise EscrowError(ErrorCode.DECODE_ERROR, f"cannot decode a deal from {type(source).__name__}", "source")


def _address_cell(address: Address) -> Cell:
    b = CellBuilder()
    write_address(b, address)
    return b.end_cell()


def deal_record_to_stack(record: DealRecord) -> list[StackEntry]:
    """Native stack as returned by `get_deal_state`."""
    return [
        record.deal_id,
        int(record.state),
        _address_cell(record.buyer_address),
        _address_cell(record.seller_address),
        record.expires_at,
        int.from_bytes(record.guarantor_public_key, "big"),
        _address_cell(record.fee_gainer_address),
        record.fee_amount,
        record.coins_amount,
    ]


def stack_to_json(stack: Sequence[StackEntry]) -> list[list[Any]]:
    """Render a native stack in the toncenter v2 JSON shape."""
    out: list[list[Any]] = []
    for entry in stack:
        if isinstance(entry, Cell):
            out.append(["cell", {"bytes": base64.b64encode(entry.to_boc()).decode()}])
        elif isinstance(entry, int) and not isinstance(entry, bool):
            out.append(["num", hex(entry)])
        else:
            raise EscrowError(ErrorCode.INVALID_FORMAT, f"unsupported stack entry {entry!r}")
    return out


# --- JSON ---


def record_to_json(record: DealRecord) -> dict[str, Any]:
    return {
        "deal_id": record.deal_id,
        "state": record.state.name.lower(),
        "buyer_address": record.buyer_address.to_raw(),
        "seller_address": record.seller_address.to_raw(),
        "expires_at": record.expires_at,
        "guarantor_public_key": record.guarantor_public_key.hex(),
        "fee_gainer_address": record.fee_gainer_address.to_raw(),
        "fee_amount": str(record.fee_amount),
        "coins_amount": str(record.coins_amount),
    }


def record_from_json(data: dict[str, Any]) -> DealRecord:
    try:
        return DealRecord(
            deal_id=int(data["deal_id"]),
            state=DealState[str(data["state"]).upper()],
            buyer_address=Address.parse(data["buyer_address"]),
            seller_address=Address.parse(data["seller_address"]),
            expires_at=int(data["expires_at"]),
            guarantor_public_key=bytes.fromhex(data["guarantor_public_key"]),
            fee_gainer_address=Address.parse(data["fee_gainer_address"]),
            fee_amount=int(data["fee_amount"]),
            coins_amount=int(data["coins_amount"]),
        )
    except (KeyError, ValueError) as exc:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"invalid deal record JSON: {exc}") from exc
