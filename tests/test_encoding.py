"""Field encoders, addresses and amounts."""

from __future__ import annotations

import pytest

from ton_escrow.cell import begin_cell
from ton_escrow.config import COIN_VALUE
from ton_escrow.encoding import (
    ADDRESS_BITS,
    read_address,
    read_coins,
    write_address,
    write_coins,
    write_public_key,
)
from ton_escrow.errors import ErrorCode, EscrowError
from ton_escrow.test_accounts import BUYER, SELLER
from ton_escrow.types import Address, check_amount, from_nano, to_nano


def test_address_layout() -> None:
    b = begin_cell()
    write_address(b, BUYER)
    cell = b.end_cell()
    assert cell.bit_length == ADDRESS_BITS == 267
    s = cell.begin_parse()
    assert s.load_uint(2) == 0b10
    assert s.load_bit() is False
    assert s.load_int(8) == 0
    assert s.load_bytes(32) == BUYER.hash_part


def test_address_roundtrip_masterchain() -> None:
    addr = Address(-1, SELLER.hash_part)
    b = begin_cell()
    write_address(b, addr)
    assert read_address(b.end_cell().begin_parse()) == addr


def test_address_none_rejected() -> None:
    s = begin_cell().store_uint(0, 2).end_cell().begin_parse()
    with pytest.raises(EscrowError) as exc:
        read_address(s, "buyer_address")
    assert exc.value.code == ErrorCode.MALFORMED_ADDRESS
    assert exc.value.field == "buyer_address"


def test_address_truncated() -> None:
    s = begin_cell().store_uint(0b10, 2).store_uint(0, 100).end_cell().begin_parse()
    with pytest.raises(EscrowError) as exc:
        read_address(s)
    assert exc.value.code == ErrorCode.MALFORMED_ADDRESS


def test_anycast_rejected() -> None:
    s = begin_cell().store_uint(0b10, 2).store_bit(True).store_uint(0, 264).end_cell().begin_parse()
    with pytest.raises(EscrowError) as exc:
        read_address(s)
    assert exc.value.code == ErrorCode.MALFORMED_ADDRESS


@pytest.mark.parametrize("amount, size", [(0, 0), (1, 1), (255, 1), (256, 2), (10 * COIN_VALUE, 5)])
def test_coins_length_prefix(amount: int, size: int) -> None:
    b = begin_cell()
    write_coins(b, amount)
    cell = b.end_cell()
    assert cell.bit_length == 4 + size * 8
    s = cell.begin_parse()
    assert s.preload_uint(4) == size
    assert read_coins(s) == amount


def test_coins_max() -> None:
    top = (1 << 120) - 1
    b = begin_cell()
    write_coins(b, top)
    assert read_coins(b.end_cell().begin_parse()) == top
    with pytest.raises(EscrowError) as exc:
        write_coins(begin_cell(), top + 1)
    assert exc.value.code == ErrorCode.INVALID_AMOUNT


def test_negative_amount() -> None:
    with pytest.raises(EscrowError) as exc:
        check_amount("fee_amount", -1)
    assert exc.value.code == ErrorCode.INVALID_AMOUNT


def test_public_key_length() -> None:
    with pytest.raises(EscrowError) as exc:
        write_public_key(begin_cell(), b"\x00" * 31)
    assert exc.value.code == ErrorCode.INVALID_FORMAT


def test_friendly_address_roundtrip() -> None:
    text = BUYER.to_friendly()
    assert len(text) == 48
    addr, bounceable, testnet = Address.parse_friendly(text)
    assert addr == BUYER
    assert bounceable and not testnet

    text = BUYER.to_friendly(bounceable=False, testnet=True, url_safe=False)
    addr, bounceable, testnet = Address.parse_friendly(text)
    assert addr == BUYER
    assert not bounceable and testnet


def test_friendly_address_prefix() -> None:
    # Bounceable basechain addresses start with "EQ", non-bounceable with "UQ".
    assert BUYER.to_friendly().startswith("EQ")
    assert BUYER.to_friendly(bounceable=False).startswith("UQ")


def test_friendly_address_checksum() -> None:
    text = BUYER.to_friendly()
    broken = text[:10] + ("A" if text[10] != "A" else "B") + text[11:]
    with pytest.raises(EscrowError) as exc:
        Address.parse(broken)
    assert exc.value.code == ErrorCode.MALFORMED_ADDRESS


def test_raw_address_parse() -> None:
    assert Address.parse(BUYER.to_raw()) == BUYER
    assert str(BUYER) == BUYER.to_raw()
    with pytest.raises(EscrowError):
        Address.parse("0:zz")
    with pytest.raises(EscrowError):
        Address.parse("0:" + "00" * 31)


@pytest.mark.parametrize(
    "text, nano",
    [("1", COIN_VALUE), ("0.05", 50_000_000), ("12.5", 12_500_000_000), ("0.000000001", 1)],
)
def test_to_nano(text: str, nano: int) -> None:
    assert to_nano(text) == nano


def test_to_nano_rejects_dust() -> None:
    with pytest.raises(EscrowError) as exc:
        to_nano("0.0000000001")
    assert exc.value.code == ErrorCode.INVALID_AMOUNT
    with pytest.raises(EscrowError):
        to_nano("abc")


def test_from_nano() -> None:
    assert from_nano(12_500_000_000) == "12.5"
    assert from_nano(COIN_VALUE) == "1"
    assert from_nano(1) == "0.000000001"
