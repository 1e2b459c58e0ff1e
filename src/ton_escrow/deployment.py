"""Deployment: state init and deal address derivation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from .cell import Cell, CellBuilder
from .config import BOC_MAGIC, DEAL_WORKCHAIN
from .deal_data import build_deal_data_cell
from .errors import ErrorCode, EscrowError
from .types import Address, CommonDealPart, DealRecord, DealState, PendingDeal

logger = logging.getLogger(__name__)


def build_state_init(code: Cell, data: Cell) -> Cell:
    """StateInit with code and data only.

    Bits: split_depth absent, special absent, code present, data present,
    library absent.
    """
    b = CellBuilder()
    b.store_bit(False)
    b.store_bit(False)
    b.store_bit(True)
    b.store_bit(True)
    b.store_bit(False)
    b.store_ref(code)
    b.store_ref(data)
    return b.end_cell()


def contract_address(workchain: int, code: Cell, data: Cell) -> Address:
    return Address(workchain, build_state_init(code, data).hash())


def initial_record(deal_id: int, deal: PendingDeal, common: CommonDealPart) -> DealRecord:
    return deal.to_record(deal_id, common)


def deal_data_cell(deal_id: int, deal: PendingDeal, common: CommonDealPart) -> Cell:
    return build_deal_data_cell(initial_record(deal_id, deal, common))


def deal_address(deal_id: int, deal: PendingDeal, common: CommonDealPart, code: Cell) -> Address:
    return contract_address(DEAL_WORKCHAIN, code, deal_data_cell(deal_id, deal, common))


def record_address(record: DealRecord, code: Cell, workchain: int = DEAL_WORKCHAIN) -> Address:
    """Address a record was deployed at (derived from its uninitialized form)."""
    data = build_deal_data_cell(record.with_state(DealState.UNINITIALIZED))
    return contract_address(workchain, code, data)


def load_code_cell(source: Union[str, Path, bytes]) -> Cell:
    """Load the deal program image from a BoC file or raw BoC bytes.

    Files may hold the BoC as raw bytes, base64 or hex text.
    """
    if isinstance(source, bytes):
        return Cell.from_boc(source)
    path = Path(source)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise EscrowError(ErrorCode.INVALID_CONFIG, f"cannot read deal code {path}: {exc}") from exc
    logger.debug("loading deal code from %s (%d bytes)", path, len(raw))
    if raw.startswith(BOC_MAGIC):
        return Cell.from_boc(raw)
    try:
        text = raw.decode("ascii")
    except UnicodeDecodeError as exc:
        raise EscrowError(ErrorCode.INVALID_BOC, f"{path} is not a bag of cells") from exc
    return Cell.from_boc(text)
