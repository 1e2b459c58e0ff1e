"""Off-chain deal mirror.

Pending deals are remembered by id until they show up on-chain; a snapshot
combines the pending parameters, the derived deal address and, once the
contract is deployed, the decoded on-chain record. Guarantor commands are
only sent to deals whose on-chain record is active.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Iterable, Optional, Protocol, TypeVar

from .cell import Cell
from .client import DealStateReader, GetMethodResult, MessageSender
from .config import ABSENT_EXIT_CODES, MIN_DEAL_AMOUNT
from .deal_data import decode_deal_record
from .deployment import deal_address
from .errors import ErrorCode, EscrowError
from .messages import create_signed_message
from .types import Address, CommonDealPart, DealRecord, DealState, OpCode, PendingDeal, from_nano

logger = logging.getLogger(__name__)

T = TypeVar("T")

GUARANTOR_OPS = frozenset({OpCode.COMPLETE, OpCode.CANCEL})


def record_from_result(result: GetMethodResult, address: Address) -> Optional[DealRecord]:
    """Interpret a `get_deal_state` reply: record, None when absent, or raise."""
    if result.exit_code == 0:
        return decode_deal_record(result.stack)
    if result.exit_code in ABSENT_EXIT_CODES:
        logger.debug("no deal deployed at %s (exit code %d)", address, result.exit_code)
        return None
    raise EscrowError(
        ErrorCode.QUERY_FAILED,
        f"get_deal_state at {address} exited with {result.exit_code}",
    )


def deal_status(record: Optional[DealRecord], now: int) -> str:
    """One-line reading of an on-chain record as of `now`.

    An active deal past its expiry is reported separately: the buyer may
    withdraw it with a cancel of their own.
    """
    if record is None:
        return "not deployed"
    if record.state == DealState.UNINITIALIZED:
        return "deployed but not funded"
    if record.state == DealState.ACTIVE:
        if now < record.expires_at:
            return "active"
        return "active but expired, buyer can withdraw"
    return record.state.name.lower()


def check_new_deal(deal: PendingDeal) -> None:
    """Refuse deals a buyer could not sensibly fund."""
    if deal.buyer_address == deal.seller_address:
        raise EscrowError(ErrorCode.SELF_DEAL, "buyer and seller must differ")
    if deal.coins_amount < MIN_DEAL_AMOUNT:
        raise EscrowError(
            ErrorCode.DEAL_TOO_SMALL,
            f"cannot create deal with less than {from_nano(MIN_DEAL_AMOUNT)} coins",
            "coins_amount",
        )


def check_active(record: Optional[DealRecord], address: Address) -> DealRecord:
    if record is None:
        raise EscrowError(ErrorCode.NOT_ACTIVE, f"no deal deployed at {address}")
    if record.state != DealState.ACTIVE:
        raise EscrowError(ErrorCode.NOT_ACTIVE, f"deal at {address} is {record.state.name.lower()}")
    return record


def guarantor_command(op: int, address: Address, secret_key: bytes, query_id: int = 0) -> Cell:
    if op not in GUARANTOR_OPS:
        raise EscrowError(ErrorCode.INVALID_OP, f"op {op:#x} is not a guarantor command")
    return create_signed_message(op, address, secret_key, query_id)


async def _bounded(call: Awaitable[T], timeout: Optional[float], what: str) -> T:
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError as exc:
        raise EscrowError(ErrorCode.QUERY_TIMEOUT, f"{what} timed out") from exc


async def send_guarantor_command(
    reader: DealStateReader,
    sender: MessageSender,
    address: Address,
    op: int,
    secret_key: bytes,
    query_id: int = 0,
    timeout: Optional[float] = None,
) -> DealRecord:
    """Sign `op` for the deal at `address` and send it if the deal is active.

    Returns the record the decision was made on. Raises NOT_ACTIVE when the
    deal is absent, unfunded or finished, without sending anything.
    """
    body = guarantor_command(op, address, secret_key, query_id)
    result = await _bounded(reader.get_deal_state(address), timeout, f"get_deal_state at {address}")
    record = check_active(record_from_result(result, address), address)
    await _bounded(sender.send_external(address, body), timeout, f"sending to {address}")
    logger.info("sent %s to deal %d at %s", OpCode(op).name.lower(), record.deal_id, address)
    return record


class DealRepository(Protocol):
    async def create_deal(self, deal: PendingDeal) -> int: ...

    async def get_deal(self, deal_id: int) -> Optional[PendingDeal]: ...


class InMemoryDealRepository:
    """Ids start at 1.

    Only id assignment is serialized under the lock; reads go straight to
    the dict, whose entries are never replaced once written.
    """

    def __init__(self) -> None:
        self._previous_id = 0
        self._deals: dict[int, PendingDeal] = {}
        self._lock = asyncio.Lock()

    async def create_deal(self, deal: PendingDeal) -> int:
        async with self._lock:
            self._previous_id += 1
            deal_id = self._previous_id
            self._deals[deal_id] = deal
        return deal_id

    async def get_deal(self, deal_id: int) -> Optional[PendingDeal]:
        return self._deals.get(deal_id)


@dataclass(frozen=True)
class DealSnapshot:
    deal_id: int
    deal: PendingDeal
    address: Address
    record: Optional[DealRecord] = None

    @property
    def deployed(self) -> bool:
        return self.record is not None

    def status(self, now: int) -> str:
        return deal_status(self.record, now)


class DealStorage:
    def __init__(
        self,
        repository: DealRepository,
        reader: DealStateReader,
        common: CommonDealPart,
        code: Cell,
        sender: Optional[MessageSender] = None,
    ):
        self.repository = repository
        self.reader = reader
        self.common = common
        self.code = code
        self.sender = sender

    async def create_deal(self, deal: PendingDeal) -> int:
        check_new_deal(deal)
        deal_id = await self.repository.create_deal(deal)
        logger.info("created deal %d", deal_id)
        return deal_id

    def deal_address(self, deal_id: int, deal: PendingDeal) -> Address:
        return deal_address(deal_id, deal, self.common, self.code)

    async def get_deal_address(self, deal_id: int) -> Optional[Address]:
        deal = await self.repository.get_deal(deal_id)
        if deal is None:
            return None
        return self.deal_address(deal_id, deal)

    async def get_snapshot(self, deal_id: int, timeout: Optional[float] = None) -> Optional[DealSnapshot]:
        """Return None for unknown ids, an undeployed snapshot while the
        contract is absent, or the decoded on-chain record.

        Exit codes other than 0 and the known "absent" codes raise
        QUERY_FAILED; a deployed record that does not decode raises
        DECODE_ERROR.
        """
        deal = await self.repository.get_deal(deal_id)
        if deal is None:
            return None

        address = self.deal_address(deal_id, deal)
        result = await _bounded(self.reader.get_deal_state(address), timeout, f"get_deal_state for deal {deal_id}")
        return DealSnapshot(deal_id, deal, address, record_from_result(result, address))

    async def get_snapshots(
        self, deal_ids: Iterable[int], timeout: Optional[float] = None
    ) -> list[Optional[DealSnapshot]]:
        return list(await asyncio.gather(*(self.get_snapshot(i, timeout) for i in deal_ids)))

    async def send_guarantor_command(
        self,
        deal_id: int,
        op: int,
        secret_key: bytes,
        query_id: int = 0,
        timeout: Optional[float] = None,
    ) -> Optional[DealSnapshot]:
        """Complete or cancel a registered deal; None for unknown ids."""
        if self.sender is None:
            raise EscrowError(ErrorCode.INVALID_CONFIG, "no message sender configured")
        if op not in GUARANTOR_OPS:
            raise EscrowError(ErrorCode.INVALID_OP, f"op {op:#x} is not a guarantor command")
        snapshot = await self.get_snapshot(deal_id, timeout)
        if snapshot is None:
            return None
        check_active(snapshot.record, snapshot.address)
        body = create_signed_message(op, snapshot.address, secret_key, query_id)
        await _bounded(self.sender.send_external(snapshot.address, body), timeout, f"sending to deal {deal_id}")
        logger.info("sent %s to deal %d", OpCode(op).name.lower(), deal_id)
        return snapshot
