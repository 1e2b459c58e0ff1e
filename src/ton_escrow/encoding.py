"""Primitive field encoders on top of cells."""

from __future__ import annotations

from .cell import CellBuilder, Slice
from .config import ADDRESS_HASH_BYTES, COINS_LEN_BITS, PUBLIC_KEY_BYTES
from .errors import ErrorCode, EscrowError
from .types import Address, check_amount

# addr_std$10 anycast:(Maybe Anycast) workchain_id:int8 address:bits256
ADDR_STD_TAG = 0b10
ADDR_NONE_TAG = 0b00
ADDRESS_BITS = 2 + 1 + 8 + ADDRESS_HASH_BYTES * 8


def write_uint(b: CellBuilder, value: int, width: int) -> None:
    b.store_uint(value, width)


def read_uint(s: Slice, width: int, field: str = "uint") -> int:
    return s.load_uint(width, field)


def write_address(b: CellBuilder, address: Address) -> None:
    b.store_uint(ADDR_STD_TAG, 2)
    b.store_bit(False)
    b.store_int(address.workchain, 8)
    b.store_bytes(address.hash_part)


def read_address(s: Slice, field: str = "address") -> Address:
    if s.remaining_bits < 2:
        raise EscrowError(ErrorCode.MALFORMED_ADDRESS, "address tag missing", field)
    tag = s.load_uint(2, field)
    if tag == ADDR_NONE_TAG:
        raise EscrowError(ErrorCode.MALFORMED_ADDRESS, "address is addr_none", field)
    if tag != ADDR_STD_TAG:
        raise EscrowError(ErrorCode.MALFORMED_ADDRESS, f"unsupported address tag {tag:#b}", field)
    if s.remaining_bits < ADDRESS_BITS - 2:
        raise EscrowError(
            ErrorCode.MALFORMED_ADDRESS,
            f"address needs {ADDRESS_BITS - 2} more bits, {s.remaining_bits} remain",
            field,
        )
    if s.load_bit(field):
        raise EscrowError(ErrorCode.MALFORMED_ADDRESS, "anycast addresses are not supported", field)
    workchain = s.load_int(8, field)
    return Address(workchain, s.load_bytes(ADDRESS_HASH_BYTES, field))


def write_coins(b: CellBuilder, amount: int) -> None:
    check_amount("coins", amount)
    size = (amount.bit_length() + 7) // 8
    b.store_uint(size, COINS_LEN_BITS)
    if size:
        b.store_uint(amount, size * 8)


def read_coins(s: Slice, field: str = "coins") -> int:
    size = s.load_uint(COINS_LEN_BITS, field)
    return s.load_uint(size * 8, field)


def write_public_key(b: CellBuilder, public_key: bytes) -> None:
    if len(public_key) != PUBLIC_KEY_BYTES:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"public key must be {PUBLIC_KEY_BYTES} bytes")
    b.store_bytes(public_key)


def read_public_key(s: Slice, field: str = "public_key") -> bytes:
    return s.load_bytes(PUBLIC_KEY_BYTES, field)
