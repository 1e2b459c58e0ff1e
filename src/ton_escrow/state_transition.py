"""Deal state transitions.

Pure mirror of the on-chain deal logic: each entrypoint takes the current
record and one inbound message and returns the next record together with a
TransitionResult. A rejected message leaves the record unchanged and emits
nothing; an accepted one emits all of its payouts at once.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import EXCESS_AMOUNT, SEND_MODE_PAY_FEES_SEPARATELY
from .errors import ErrorCode, EscrowError
from .messages import (
    cancellation,
    check_target,
    fee_gainer_completion,
    parse_command,
    parse_signed_command,
    seller_completion,
    verify_signature,
)
from .types import (
    DealRecord,
    DealState,
    ExecutionContext,
    ExternalMessage,
    InternalMessage,
    OpCode,
    OutMessage,
    check_amount,
)

logger = logging.getLogger(__name__)

Payouts = tuple[OutMessage, ...]


class TransitionResult:
    """Outcome of a single message: ok flag, error, and emitted payouts."""

    def __init__(self, ok: bool, error: Optional[EscrowError] = None, out_messages: Payouts = ()):
        self.ok = ok
        self.error = error
        self.out_messages = tuple(out_messages)

    @classmethod
    def success(cls, out_messages: Payouts = ()) -> "TransitionResult":
        return cls(True, None, out_messages)

    @classmethod
    def failure(cls, error: EscrowError) -> "TransitionResult":
        return cls(False, error)

    @property
    def exit_code(self) -> int:
        return 0 if self.error is None else int(self.error.code)

    def __repr__(self) -> str:
        if self.ok:
            return f"TransitionResult(ok, out_messages={len(self.out_messages)})"
        return f"TransitionResult(failed, {self.error})"


def required_funding(record: DealRecord) -> int:
    return record.fee_amount + record.coins_amount + EXCESS_AMOUNT


def _refund_buyer(record: DealRecord, query_id: int) -> Payouts:
    return (
        OutMessage(
            destination=record.buyer_address,
            amount=record.fee_amount + record.coins_amount,
            mode=SEND_MODE_PAY_FEES_SEPARATELY,
            body=cancellation(query_id),
        ),
    )


def _complete_payouts(record: DealRecord, query_id: int) -> Payouts:
    payouts = [
        OutMessage(
            destination=record.seller_address,
            amount=record.coins_amount,
            mode=SEND_MODE_PAY_FEES_SEPARATELY,
            body=seller_completion(query_id),
        )
    ]
    if record.fee_amount > 0:
        payouts.append(
            OutMessage(
                destination=record.fee_gainer_address,
                amount=record.fee_amount,
                mode=SEND_MODE_PAY_FEES_SEPARATELY,
                body=fee_gainer_completion(query_id),
            )
        )
    return tuple(payouts)


def _execute_internal(
    record: DealRecord, msg: InternalMessage, ctx: ExecutionContext
) -> tuple[DealRecord, Payouts]:
    check_amount("value", msg.value)

    if record.state == DealState.UNINITIALIZED:
        # Any inbound transfer funds the deal; the body is not inspected.
        if msg.value < required_funding(record):
            raise EscrowError(
                ErrorCode.NOT_ENOUGH_COINS,
                f"got {msg.value}, need {required_funding(record)}",
            )
        return record.with_state(DealState.ACTIVE), ()

    if record.state != DealState.ACTIVE:
        raise EscrowError(ErrorCode.NOT_ACTIVE, f"deal is {record.state.name.lower()}")

    cmd = parse_command(msg.body)
    if cmd.op != OpCode.CANCEL:
        raise EscrowError(ErrorCode.INVALID_OP, f"unsupported op {cmd.op:#x}")

    if msg.sender == record.seller_address:
        pass
    elif msg.sender == record.buyer_address:
        if ctx.now < record.expires_at:
            raise EscrowError(ErrorCode.NOT_EXPIRED, f"deal expires at {record.expires_at}")
    else:
        raise EscrowError(ErrorCode.UNKNOWN_SENDER, f"{msg.sender.to_raw()} is not a party")

    return record.with_state(DealState.CANCELLED), _refund_buyer(record, cmd.query_id)


def _execute_external(
    record: DealRecord, msg: ExternalMessage, ctx: ExecutionContext
) -> tuple[DealRecord, Payouts]:
    if record.state != DealState.ACTIVE:
        raise EscrowError(ErrorCode.NOT_ACTIVE, f"deal is {record.state.name.lower()}")

    cmd = parse_signed_command(msg.body)
    check_target(cmd, ctx.myself)
    verify_signature(cmd, record.guarantor_public_key)

    if cmd.op == OpCode.COMPLETE:
        return record.with_state(DealState.COMPLETED), _complete_payouts(record, cmd.query_id)
    if cmd.op == OpCode.CANCEL:
        return record.with_state(DealState.CANCELLED), _refund_buyer(record, cmd.query_id)
    raise EscrowError(ErrorCode.INVALID_OP, f"unsupported op {cmd.op:#x}")


def apply_internal(
    record: DealRecord, msg: InternalMessage, ctx: ExecutionContext
) -> tuple[DealRecord, TransitionResult]:
    """Apply a message sent by an account (funding, buyer/seller cancel)."""
    try:
        new_record, payouts = _execute_internal(record, msg, ctx)
    except EscrowError as exc:
        logger.debug("deal %d: internal message rejected: %s", record.deal_id, exc)
        return record, TransitionResult.failure(exc)
    logger.debug("deal %d: %s -> %s", record.deal_id, record.state.name, new_record.state.name)
    return new_record, TransitionResult.success(payouts)


def apply_external(
    record: DealRecord, msg: ExternalMessage, ctx: ExecutionContext
) -> tuple[DealRecord, TransitionResult]:
    """Apply a guarantor-signed command."""
    try:
        new_record, payouts = _execute_external(record, msg, ctx)
    except EscrowError as exc:
        logger.debug("deal %d: external message rejected: %s", record.deal_id, exc)
        return record, TransitionResult.failure(exc)
    logger.debug("deal %d: %s -> %s", record.deal_id, record.state.name, new_record.state.name)
    return new_record, TransitionResult.success(payouts)
