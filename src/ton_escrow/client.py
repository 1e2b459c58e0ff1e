"""HTTP client for the get-method read and message submission (toncenter v2 JSON API)."""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

import aiohttp

from .cell import Cell
from .config import DEFAULT_REQUEST_TIMEOUT, DEFAULT_TONCENTER_ENDPOINT, GET_DEAL_STATE_METHOD
from .errors import ErrorCode, EscrowError
from .messages import external_message
from .types import Address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GetMethodResult:
    exit_code: int
    stack: list[Any] = field(default_factory=list)


class DealStateReader(Protocol):
    async def get_deal_state(self, address: Address) -> GetMethodResult: ...


class MessageSender(Protocol):
    async def send_external(self, destination: Address, body: Cell) -> None: ...


class ToncenterClient:
    """Async client for `runGetMethod` and `sendBoc`.

    Transport failures, `ok: false` replies and replies of the wrong shape
    raise QUERY_FAILED, timeouts raise QUERY_TIMEOUT. A non-zero exit code
    is a normal result; deciding what it means is up to the caller.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_TONCENTER_ENDPOINT,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Initialize HTTP session."""
        headers = {"X-API-Key": self.api_key} if self.api_key else None
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers=headers,
        )

    async def close(self) -> None:
        """Close HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "ToncenterClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _call(self, api_method: str, payload: dict[str, Any], what: str) -> Any:
        """POST one toncenter call and return the `result` of an `ok` reply."""
        if self.session is None:
            raise EscrowError(ErrorCode.QUERY_FAILED, "client is not connected")
        try:
            async with self.session.post(f"{self.endpoint}/{api_method}", json=payload) as resp:
                status = resp.status
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            logger.warning("%s %s timed out after %.1fs", api_method, what, self.timeout)
            raise EscrowError(ErrorCode.QUERY_TIMEOUT, f"{api_method} {what} timed out") from exc
        except aiohttp.ClientError as exc:
            logger.error("%s %s failed: %s", api_method, what, exc)
            raise EscrowError(ErrorCode.QUERY_FAILED, f"{api_method} {what} request failed: {exc}") from exc
        except ValueError as exc:
            raise EscrowError(ErrorCode.QUERY_FAILED, f"{api_method} {what} returned invalid JSON") from exc

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error") if isinstance(data, dict) else data
            logger.error("%s %s rejected (HTTP %d): %s", api_method, what, status, error)
            raise EscrowError(ErrorCode.QUERY_FAILED, f"{api_method} {what} rejected: {error}")
        return data.get("result")

    async def run_get_method(
        self, address: Address, method: str, stack: Sequence[Any] = ()
    ) -> GetMethodResult:
        payload = {"address": address.to_raw(), "method": method, "stack": list(stack)}
        logger.debug("runGetMethod %s %s", method, address.to_raw())
        result = await self._call("runGetMethod", payload, method)
        if not isinstance(result, dict):
            raise EscrowError(ErrorCode.QUERY_FAILED, f"{method} reply result is not an object")
        exit_code = result.get("exit_code")
        if not isinstance(exit_code, int) or isinstance(exit_code, bool):
            raise EscrowError(ErrorCode.QUERY_FAILED, f"{method} reply has no exit_code")
        stack_out = result.get("stack") or []
        if not isinstance(stack_out, list):
            raise EscrowError(ErrorCode.QUERY_FAILED, f"{method} reply stack is not a list")
        return GetMethodResult(exit_code=exit_code, stack=stack_out)

    async def get_deal_state(self, address: Address) -> GetMethodResult:
        return await self.run_get_method(address, GET_DEAL_STATE_METHOD)

    async def send_boc(self, boc: bytes) -> None:
        """Submit a serialized external message (`sendBoc`)."""
        logger.debug("sendBoc %d bytes", len(boc))
        await self._call("sendBoc", {"boc": base64.b64encode(boc).decode()}, "message")

    async def send_external(self, destination: Address, body: Cell) -> None:
        await self.send_boc(external_message(destination, body).to_boc())
