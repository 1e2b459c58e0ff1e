"""Deal transition fixtures: funding, party cancels and guarantor commands."""

from __future__ import annotations

from dataclasses import replace

import pytest

from ton_escrow.cell import Cell, begin_cell
from ton_escrow.config import EXCESS_AMOUNT, SEND_MODE_PAY_FEES_SEPARATELY
from ton_escrow.errors import ErrorCode
from ton_escrow.messages import (
    cancellation,
    create_signed_message,
    external_cancel,
    external_complete,
    fee_gainer_completion,
    internal_cancel,
    parse_command,
    seller_completion,
)
from ton_escrow.state_transition import required_funding
from ton_escrow.test_accounts import BUYER, FEE_GAINER, GUARANTOR, IMPOSTOR, SELLER, STRANGER
from ton_escrow.types import (
    DealRecord,
    DealState,
    ExecutionContext,
    ExternalMessage,
    InternalMessage,
    OpCode,
)

# Same expiry as the `pending` fixture.
EXPIRES_AT = 1_700_000_000
BEFORE = EXPIRES_AT - 1


def _ctx(myself, now: int = BEFORE) -> ExecutionContext:
    return ExecutionContext(now=now, myself=myself)


def _cancel_from(sender, query_id: int = 0) -> InternalMessage:
    return InternalMessage(sender=sender, value=0, body=internal_cancel(query_id))


def _assert_rejected(pre: DealRecord, post: DealRecord, result, code: ErrorCode) -> None:
    assert not result.ok
    assert result.error.code == code
    assert result.exit_code == int(code)
    assert result.out_messages == ()
    assert post == pre


# --- funding ---


def test_fund_exact_amount(state_test, new_record: DealRecord, myself) -> None:
    value = new_record.fee_amount + new_record.coins_amount + EXCESS_AMOUNT
    assert required_funding(new_record) == value
    msg = InternalMessage(sender=BUYER, value=value, body=Cell())
    post, result = state_test("deal/fund.json", "fund_exact", new_record, msg, _ctx(myself))
    assert result.ok
    assert result.exit_code == 0
    assert post.state == DealState.ACTIVE
    assert post == new_record.with_state(DealState.ACTIVE)
    assert result.out_messages == ()


def test_fund_one_short(state_test, new_record: DealRecord, myself) -> None:
    msg = InternalMessage(sender=BUYER, value=required_funding(new_record) - 1, body=Cell())
    post, result = state_test("deal/fund.json", "fund_one_short", new_record, msg, _ctx(myself))
    _assert_rejected(new_record, post, result, ErrorCode.NOT_ENOUGH_COINS)


def test_fund_from_anyone_with_any_body(state_test, new_record: DealRecord, myself) -> None:
    # The funding transfer is not inspected: a stray cancel body still funds.
    msg = InternalMessage(sender=STRANGER, value=required_funding(new_record) + 1, body=internal_cancel())
    post, result = state_test("deal/fund.json", "fund_stranger_cancel_body", new_record, msg, _ctx(myself))
    assert result.ok
    assert post.state == DealState.ACTIVE


def test_external_before_funding(state_test, new_record: DealRecord, myself) -> None:
    msg = ExternalMessage(external_complete(myself, GUARANTOR.secret_key))
    post, result = state_test("deal/fund.json", "complete_unfunded", new_record, msg, _ctx(myself))
    _assert_rejected(new_record, post, result, ErrorCode.NOT_ACTIVE)


# --- party cancels ---


def test_seller_cancel_refunds_buyer(state_test, active_record: DealRecord, myself) -> None:
    post, result = state_test(
        "deal/cancel.json", "seller_cancel", active_record, _cancel_from(SELLER, 5), _ctx(myself)
    )
    assert result.ok
    assert post.state == DealState.CANCELLED
    (refund,) = result.out_messages
    assert refund.destination == BUYER
    assert refund.amount == active_record.fee_amount + active_record.coins_amount
    assert refund.mode == SEND_MODE_PAY_FEES_SEPARATELY
    assert refund.body == cancellation(5)


def test_buyer_cancel_before_expiry(state_test, active_record: DealRecord, myself) -> None:
    post, result = state_test(
        "deal/cancel.json", "buyer_cancel_before_expiry", active_record, _cancel_from(BUYER), _ctx(myself, BEFORE)
    )
    _assert_rejected(active_record, post, result, ErrorCode.NOT_EXPIRED)


@pytest.mark.parametrize("now, name", [(EXPIRES_AT, "at"), (EXPIRES_AT + 3600, "after")])
def test_buyer_cancel_after_expiry(state_test, active_record: DealRecord, myself, now: int, name: str) -> None:
    post, result = state_test(
        "deal/cancel.json", f"buyer_cancel_{name}_expiry", active_record, _cancel_from(BUYER), _ctx(myself, now)
    )
    assert result.ok
    assert post.state == DealState.CANCELLED
    (refund,) = result.out_messages
    assert refund.destination == BUYER
    assert refund.amount == active_record.total_amount


def test_unknown_sender_cancel(state_test, active_record: DealRecord, myself) -> None:
    post, result = state_test(
        "deal/cancel.json", "stranger_cancel", active_record, _cancel_from(STRANGER), _ctx(myself, EXPIRES_AT + 1)
    )
    _assert_rejected(active_record, post, result, ErrorCode.UNKNOWN_SENDER)


def test_internal_unknown_op(state_test, active_record: DealRecord, myself) -> None:
    body = begin_cell().store_uint(OpCode.COMPLETE, 32).store_uint(0, 64).end_cell()
    msg = InternalMessage(sender=SELLER, value=0, body=body)
    post, result = state_test("deal/cancel.json", "seller_complete_op", active_record, msg, _ctx(myself))
    _assert_rejected(active_record, post, result, ErrorCode.INVALID_OP)


def test_internal_empty_body(state_test, active_record: DealRecord, myself) -> None:
    msg = InternalMessage(sender=SELLER, value=0, body=Cell())
    post, result = state_test("deal/cancel.json", "seller_empty_body", active_record, msg, _ctx(myself))
    _assert_rejected(active_record, post, result, ErrorCode.MALFORMED_FIELD)


def test_top_up_while_active_is_not_funding(state_test, active_record: DealRecord, myself) -> None:
    msg = InternalMessage(sender=BUYER, value=required_funding(active_record), body=Cell())
    post, result = state_test("deal/cancel.json", "buyer_top_up_active", active_record, msg, _ctx(myself))
    assert not result.ok
    assert post == active_record


# --- guarantor commands ---


def test_guarantor_complete_with_fee(state_test, active_record: DealRecord, myself) -> None:
    msg = ExternalMessage(external_complete(myself, GUARANTOR.secret_key, query_id=11))
    post, result = state_test("deal/guarantor.json", "complete_with_fee", active_record, msg, _ctx(myself))
    assert result.ok
    assert post.state == DealState.COMPLETED
    seller_payout, fee_payout = result.out_messages
    assert seller_payout.destination == SELLER
    assert seller_payout.amount == active_record.coins_amount
    assert seller_payout.body == seller_completion(11)
    assert fee_payout.destination == FEE_GAINER
    assert fee_payout.amount == active_record.fee_amount
    assert fee_payout.body == fee_gainer_completion(11)


def test_guarantor_complete_zero_fee(state_test, active_record: DealRecord, myself) -> None:
    record = replace(active_record, fee_amount=0)
    msg = ExternalMessage(external_complete(myself, GUARANTOR.secret_key))
    post, result = state_test("deal/guarantor.json", "complete_zero_fee", record, msg, _ctx(myself))
    assert result.ok
    assert post.state == DealState.COMPLETED
    (payout,) = result.out_messages
    assert payout.destination == SELLER
    assert payout.amount == record.coins_amount
    assert parse_command(payout.body).op == OpCode.SELLER_COMPLETION


def test_guarantor_cancel(state_test, active_record: DealRecord, myself) -> None:
    msg = ExternalMessage(external_cancel(myself, GUARANTOR.secret_key))
    post, result = state_test("deal/guarantor.json", "guarantor_cancel", active_record, msg, _ctx(myself))
    assert result.ok
    assert post.state == DealState.CANCELLED
    (refund,) = result.out_messages
    assert refund.destination == BUYER
    assert refund.amount == active_record.total_amount


def test_guarantor_cancel_ignores_expiry(state_test, active_record: DealRecord, myself) -> None:
    msg = ExternalMessage(external_cancel(myself, GUARANTOR.secret_key))
    post, result = state_test(
        "deal/guarantor.json", "guarantor_cancel_after_expiry", active_record, msg, _ctx(myself, EXPIRES_AT + 10)
    )
    assert result.ok
    assert post.state == DealState.CANCELLED


def test_guarantor_wrong_target(state_test, active_record: DealRecord, myself) -> None:
    msg = ExternalMessage(external_complete(SELLER, GUARANTOR.secret_key))
    post, result = state_test("deal/guarantor.json", "complete_wrong_target", active_record, msg, _ctx(myself))
    _assert_rejected(active_record, post, result, ErrorCode.WRONG_TARGET)


def test_guarantor_target_bit_flip(state_test, active_record: DealRecord, myself) -> None:
    body = external_complete(myself, GUARANTOR.secret_key)
    # The target hash occupies the lowest bits of the signed prefix.
    flipped = Cell(body.data ^ 1, body.bit_length, body.refs)
    post, result = state_test(
        "deal/guarantor.json", "complete_target_bit_flip", active_record, ExternalMessage(flipped), _ctx(myself)
    )
    _assert_rejected(active_record, post, result, ErrorCode.WRONG_TARGET)


@pytest.mark.parametrize("bit", [0, 100, 511])
def test_guarantor_signature_bit_flip(state_test, active_record: DealRecord, myself, bit: int) -> None:
    body = external_complete(myself, GUARANTOR.secret_key)
    sig = body.refs[0]
    flipped = Cell(body.data, body.bit_length, (Cell(sig.data ^ (1 << bit), sig.bit_length),))
    post, result = state_test(
        "deal/guarantor.json", f"complete_signature_bit_{bit}", active_record, ExternalMessage(flipped), _ctx(myself)
    )
    _assert_rejected(active_record, post, result, ErrorCode.INVALID_SIGNATURE)


def test_impostor_signature(state_test, active_record: DealRecord, myself) -> None:
    msg = ExternalMessage(external_complete(myself, IMPOSTOR.secret_key))
    post, result = state_test("deal/guarantor.json", "complete_impostor", active_record, msg, _ctx(myself))
    _assert_rejected(active_record, post, result, ErrorCode.INVALID_SIGNATURE)


def test_guarantor_unknown_op(state_test, active_record: DealRecord, myself) -> None:
    msg = ExternalMessage(create_signed_message(OpCode.CANCELLATION, myself, GUARANTOR.secret_key))
    post, result = state_test("deal/guarantor.json", "signed_unknown_op", active_record, msg, _ctx(myself))
    _assert_rejected(active_record, post, result, ErrorCode.INVALID_OP)


# --- terminal states ---


@pytest.mark.parametrize("state", [DealState.COMPLETED, DealState.CANCELLED])
def test_terminal_states_reject_everything(state_test, active_record: DealRecord, myself, state: DealState) -> None:
    record = active_record.with_state(state)
    assert state.is_terminal
    late = _ctx(myself, EXPIRES_AT + 1)
    messages = [
        InternalMessage(sender=BUYER, value=required_funding(record), body=Cell()),
        _cancel_from(SELLER),
        _cancel_from(BUYER),
        _cancel_from(STRANGER),
        ExternalMessage(external_complete(myself, GUARANTOR.secret_key)),
        ExternalMessage(external_cancel(myself, GUARANTOR.secret_key)),
    ]
    for attempt in range(2):
        for i, msg in enumerate(messages):
            post, result = state_test(
                "deal/terminal.json", f"{state.name.lower()}_{i}_{attempt}", record, msg, late
            )
            _assert_rejected(record, post, result, ErrorCode.NOT_ACTIVE)
            record = post


def test_negative_value_rejected(state_test, new_record: DealRecord, myself) -> None:
    msg = InternalMessage(sender=BUYER, value=-1, body=Cell())
    post, result = state_test("deal/fund.json", "fund_negative", new_record, msg, _ctx(myself))
    _assert_rejected(new_record, post, result, ErrorCode.INVALID_AMOUNT)
