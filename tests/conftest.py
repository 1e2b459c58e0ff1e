"""Pytest hooks to collect deal fixtures while the suite runs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Union

import pytest

from ton_escrow.cell import Cell, begin_cell
from ton_escrow.config import COIN_VALUE
from ton_escrow.deployment import deal_address
from ton_escrow.state_transition import TransitionResult, apply_external, apply_internal
from ton_escrow.test_accounts import BUYER, FEE_GAINER, GUARANTOR, SELLER
from ton_escrow.types import (
    CommonDealPart,
    DealRecord,
    DealState,
    ExecutionContext,
    ExternalMessage,
    InternalMessage,
    PendingDeal,
)
from tools.fixtures_io import context_to_json, message_to_json, result_to_json, state_to_json

EXPIRES_AT = 1_700_000_000

_STATE_CASES: dict[str, list[dict[str, Any]]] = {}
_VECTOR_CASES: dict[str, list[dict[str, Any]]] = {}

StateTest = Callable[
    [str, str, DealRecord, Union[InternalMessage, ExternalMessage], ExecutionContext],
    tuple[DealRecord, TransitionResult],
]


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--output",
        action="store",
        default=None,
        help="Output directory for generated fixtures",
    )


@pytest.fixture
def deal_code() -> Cell:
    """Stand-in for the compiled deal program; only its hash matters here."""
    return begin_cell().store_uint(0xDEA1C0DE, 32).store_bytes(b"escrow-deal").end_cell()


@pytest.fixture
def common() -> CommonDealPart:
    return CommonDealPart(
        guarantor_public_key=GUARANTOR.public_key,
        fee_gainer_address=FEE_GAINER,
    )


@pytest.fixture
def pending() -> PendingDeal:
    return PendingDeal(
        buyer_address=BUYER,
        seller_address=SELLER,
        expires_at=EXPIRES_AT,
        fee_amount=COIN_VALUE // 10,
        coins_amount=10 * COIN_VALUE,
    )


@pytest.fixture
def new_record(pending: PendingDeal, common: CommonDealPart) -> DealRecord:
    return pending.to_record(7, common)


@pytest.fixture
def active_record(new_record: DealRecord) -> DealRecord:
    return new_record.with_state(DealState.ACTIVE)


@pytest.fixture
def myself(pending: PendingDeal, common: CommonDealPart, deal_code: Cell):
    return deal_address(7, pending, common, deal_code)


@pytest.fixture
def state_test() -> StateTest:
    """Apply a message, record the case under a fixture path and return the outcome."""

    def _state_test(rel_path, name, pre_record, msg, ctx):
        if isinstance(msg, InternalMessage):
            post_record, result = apply_internal(pre_record, msg, ctx)
        else:
            post_record, result = apply_external(pre_record, msg, ctx)
        _STATE_CASES.setdefault(rel_path, []).append(
            {
                "name": name,
                "pre_state": state_to_json(pre_record),
                "message": message_to_json(msg),
                "context": context_to_json(ctx),
                "expected": result_to_json(post_record, result),
            }
        )
        return post_record, result

    return _state_test


@pytest.fixture
def vector_test_group() -> Callable[[str, dict[str, Any]], None]:
    """Collect pre-built test_vectors under a specific fixture path."""

    def _vector_test_group(rel_path: str, vector: dict[str, Any]) -> None:
        _VECTOR_CASES.setdefault(rel_path, []).append(vector)

    return _vector_test_group


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    output_dir = session.config.getoption("--output")
    if not output_dir:
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    for rel_path, cases in _STATE_CASES.items():
        if not cases:
            continue
        target = out / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps({"cases": cases}, indent=2))

    for rel_path, vectors in _VECTOR_CASES.items():
        if not vectors:
            continue
        target = out / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps({"test_vectors": vectors}, indent=2))
