"""Helpers to serialize/deserialize deal transition fixtures."""

from __future__ import annotations

import base64
from typing import Any, Union

from ton_escrow.cell import Cell
from ton_escrow.deal_data import record_from_json, record_to_json
from ton_escrow.state_digest import compute_deal_digest
from ton_escrow.state_transition import TransitionResult
from ton_escrow.types import (
    Address,
    DealRecord,
    ExecutionContext,
    ExternalMessage,
    InternalMessage,
    OutMessage,
)

Message = Union[InternalMessage, ExternalMessage]


def _cell_to_b64(cell: Cell) -> str:
    return base64.b64encode(cell.to_boc()).decode()


def _cell_from_b64(text: str) -> Cell:
    return Cell.from_boc(text)


def state_to_json(record: DealRecord) -> dict[str, Any]:
    out = record_to_json(record)
    out["digest"] = compute_deal_digest(record)
    return out


def state_from_json(data: dict[str, Any]) -> DealRecord:
    return record_from_json({k: v for k, v in data.items() if k != "digest"})


def message_to_json(msg: Message) -> dict[str, Any]:
    if isinstance(msg, InternalMessage):
        return {
            "kind": "internal",
            "sender": msg.sender.to_raw(),
            "value": str(msg.value),
            "body": _cell_to_b64(msg.body),
        }
    return {"kind": "external", "body": _cell_to_b64(msg.body)}


def message_from_json(data: dict[str, Any]) -> Message:
    body = _cell_from_b64(data["body"])
    if data["kind"] == "internal":
        return InternalMessage(
            sender=Address.parse(data["sender"]),
            value=int(data["value"]),
            body=body,
        )
    return ExternalMessage(body=body)


def context_to_json(ctx: ExecutionContext) -> dict[str, Any]:
    return {"now": ctx.now, "myself": ctx.myself.to_raw()}


def context_from_json(data: dict[str, Any]) -> ExecutionContext:
    return ExecutionContext(now=int(data["now"]), myself=Address.parse(data["myself"]))


def out_message_to_json(msg: OutMessage) -> dict[str, Any]:
    return {
        "destination": msg.destination.to_raw(),
        "amount": str(msg.amount),
        "mode": msg.mode,
        "body": _cell_to_b64(msg.body),
    }


def result_to_json(post_record: DealRecord, result: TransitionResult) -> dict[str, Any]:
    return {
        "ok": result.ok,
        "error": result.error.code.name if result.error else None,
        "exit_code": result.exit_code,
        "post_state": state_to_json(post_record),
        "out_messages": [out_message_to_json(m) for m in result.out_messages],
    }
