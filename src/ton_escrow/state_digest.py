"""Canonical deal record digest (v1)."""
from __future__ import annotations

from blake3 import blake3

from .types import Address, DealRecord


def _u64_be(value: int) -> bytes:
    return int(value).to_bytes(8, "big", signed=False)


def _address(value: Address) -> bytes:
    return value.workchain.to_bytes(1, "big", signed=True) + value.hash_part


def compute_deal_digest(record: DealRecord) -> str:
    """Fields are encoded in record order and hashed with BLAKE3-256.

    Amounts take 16 big-endian bytes (coins never exceed 120 bits).
    """
    buf = bytearray()
    buf += _u64_be(record.deal_id)
    buf += bytes([int(record.state)])
    buf += _address(record.buyer_address)
    buf += _address(record.seller_address)
    buf += _u64_be(record.expires_at)
    buf += record.guarantor_public_key
    buf += _address(record.fee_gainer_address)
    buf += record.fee_amount.to_bytes(16, "big")
    buf += record.coins_amount.to_bytes(16, "big")
    return blake3(bytes(buf)).hexdigest()
