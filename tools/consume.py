"""Replay generated fixtures against the deal state machine."""

from __future__ import annotations

import json
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT / "tools"))

from ton_escrow.cell import Cell  # noqa: E402
from ton_escrow.deal_data import decode_deal_record  # noqa: E402
from ton_escrow.state_transition import apply_external, apply_internal  # noqa: E402
from ton_escrow.types import InternalMessage  # noqa: E402
from fixtures_io import (  # noqa: E402
    context_from_json,
    message_from_json,
    result_to_json,
    state_from_json,
)


def _check_state_cases(path: Path) -> list[str]:
    failures: list[str] = []
    data = json.loads(path.read_text())

    for case in data.get("cases", []):
        pre_record = state_from_json(case["pre_state"])
        msg = message_from_json(case["message"])
        ctx = context_from_json(case["context"])
        if isinstance(msg, InternalMessage):
            post_record, result = apply_internal(pre_record, msg, ctx)
        else:
            post_record, result = apply_external(pre_record, msg, ctx)

        expected = case["expected"]
        actual = result_to_json(post_record, result)
        if actual["ok"] != expected["ok"]:
            failures.append(f"{case['name']}: ok_mismatch")
            continue
        if actual["error"] != expected["error"]:
            failures.append(f"{case['name']}: error_mismatch")
            continue
        if actual["post_state"]["digest"] != expected["post_state"]["digest"]:
            failures.append(f"{case['name']}: state_mismatch")
            continue
        if actual["out_messages"] != expected["out_messages"]:
            failures.append(f"{case['name']}: out_messages_mismatch")

    return failures


def _check_data_vectors(path: Path) -> list[str]:
    failures: list[str] = []
    data = json.loads(path.read_text())
    for vec in data.get("test_vectors", []):
        if "data_boc" not in vec:
            continue
        record = decode_deal_record(Cell.from_boc(vec["data_boc"]))
        expected = state_from_json(vec["record"])
        if record != expected:
            failures.append(f"{vec['name']}: record_mismatch")
    return failures


def main() -> None:
    fixtures = ROOT / "fixtures"
    if not fixtures.exists():
        raise SystemExit(f"no fixtures in {fixtures}, run tools/fill.py first")

    failures: list[str] = []
    for path in sorted(fixtures.rglob("*.json")):
        failures.extend(_check_state_cases(path))
        failures.extend(_check_data_vectors(path))

    if failures:
        for f in failures:
            print("FAIL", f)
        raise SystemExit(1)

    print("All fixtures passed")


if __name__ == "__main__":
    main()
