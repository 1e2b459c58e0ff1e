"""Deterministic test identities."""

from __future__ import annotations

import hashlib

from ton_escrow.messages import keypair_from_seed
from ton_escrow.test_accounts import (
    BUYER,
    FEE_GAINER,
    GUARANTOR,
    IMPOSTOR,
    INITIALIZER,
    SELLER,
    STRANGER,
    account,
    keypair,
)


def test_accounts_deterministic(vector_test_group) -> None:
    """Account hashes are sha256(name) on workchain 0; keys use the same seed."""
    parties = {
        "buyer": BUYER,
        "seller": SELLER,
        "fee_gainer": FEE_GAINER,
        "initializer": INITIALIZER,
        "stranger": STRANGER,
    }
    for name, addr in parties.items():
        assert addr.workchain == 0
        assert addr.hash_part == hashlib.sha256(name.encode()).digest()
        assert account(name) == addr
        vector_test_group(
            "accounts.json",
            {"name": name, "address": addr.to_raw(), "friendly": addr.to_friendly()},
        )

    assert len(set(parties.values())) == len(parties)


def test_keypairs_deterministic() -> None:
    assert keypair("guarantor") == GUARANTOR
    assert GUARANTOR == keypair_from_seed(hashlib.sha256(b"guarantor").digest())
    assert GUARANTOR.public_key != IMPOSTOR.public_key
    assert len(GUARANTOR.secret_key) == 64
