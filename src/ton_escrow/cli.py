"""Command-line tools for the guarantor.

Deal parameters are read from a YAML file:

    buyer: 0:5c...          # raw or user-friendly address
    seller: EQ...
    coins: "12.5"           # whole coins
    fee: "0.1"              # optional, defaults to FEE
    expires_in_hours: 24    # or expires_at: <unix time>; defaults to DEALS_EXPIRE_HOURS

Deployment parameters (guarantor key, fee gainer, deal code) come from the
environment, see EscrowSettings.
"""

from __future__ import annotations

import asyncio
import base64
import functools
import logging
import sys
import time
from typing import Any, Callable, Optional

import click
import yaml

from .cell import Cell
from .deal_data import record_to_json
from .deployment import deal_address
from .errors import ErrorCode, EscrowError
from .messages import create_signed_message, internal_cancel
from .settings import EscrowSettings
from .state_digest import compute_deal_digest
from .storage import check_new_deal, deal_status, record_from_result, send_guarantor_command
from .types import Address, OpCode, PendingDeal, to_nano

logger = logging.getLogger(__name__)

_SIGNED_OPS = {"complete": OpCode.COMPLETE, "cancel": OpCode.CANCEL}


def load_pending_deal(path: str, settings: EscrowSettings, now: Optional[int] = None) -> PendingDeal:
    """Read deal parameters from a YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise EscrowError(ErrorCode.INVALID_CONFIG, f"cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{path} must hold a mapping")

    missing = [key for key in ("buyer", "seller", "coins") if key not in data]
    if missing:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{path} is missing {', '.join(missing)}")

    try:
        if "expires_at" in data:
            expires_at = int(data["expires_at"])
        else:
            now = int(time.time()) if now is None else now
            hours = int(data.get("expires_in_hours", settings.deals_expire_hours))
            expires_at = now + hours * 3600
    except (TypeError, ValueError) as exc:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"invalid expiry in {path}: {exc}") from exc

    fee = to_nano(str(data["fee"])) if "fee" in data else settings.fee
    return PendingDeal(
        buyer_address=Address.parse(str(data["buyer"])),
        seller_address=Address.parse(str(data["seller"])),
        expires_at=expires_at,
        fee_amount=fee,
        coins_amount=to_nano(str(data["coins"])),
    )


def _boc_text(cell: Cell) -> str:
    return base64.b64encode(cell.to_boc()).decode()


def _reports_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except EscrowError as exc:
            logger.debug("command failed", exc_info=True)
            raise click.ClickException(str(exc)) from exc

    return wrapper


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Guarantor tools for escrow deals."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stderr,
    )
    try:
        ctx.obj = EscrowSettings.from_env()
    except EscrowError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.argument("deal_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--deal-id", type=int, required=True, help="Id the deal was registered under")
@click.option("--testnet", is_flag=True, help="Print testnet user-friendly forms")
@click.pass_obj
@_reports_errors
def address(settings: EscrowSettings, deal_file: str, deal_id: int, testnet: bool) -> None:
    """Print the address a deal will be deployed at."""
    deal = load_pending_deal(deal_file, settings)
    check_new_deal(deal)
    addr = deal_address(deal_id, deal, settings.common_deal_part(), settings.load_code())
    logger.debug("deal %d expires at %d", deal_id, deal.expires_at)
    click.echo(f"raw:            {addr.to_raw()}")
    click.echo(f"bounceable:     {addr.to_friendly(bounceable=True, testnet=testnet)}")
    click.echo(f"non-bounceable: {addr.to_friendly(bounceable=False, testnet=testnet)}")


@main.command()
@click.argument("target")
@click.pass_obj
@_reports_errors
def state(settings: EscrowSettings, target: str) -> None:
    """Query the on-chain record of a deal."""
    addr = Address.parse(target)

    async def run() -> Optional[dict[str, Any]]:
        async with settings.client() as client:
            result = await client.get_deal_state(addr)
        record = record_from_result(result, addr)
        if record is None:
            return None
        out = record_to_json(record)
        out["status"] = deal_status(record, int(time.time()))
        out["digest"] = compute_deal_digest(record)
        return out

    out = asyncio.run(run())
    if out is None:
        click.echo(f"{addr.to_raw()}: not deployed")
        return
    click.echo(yaml.safe_dump(out, sort_keys=False), nl=False)


@main.command()
@click.argument("op", type=click.Choice(sorted(_SIGNED_OPS)))
@click.argument("target")
@click.option("--query-id", type=int, default=0, show_default=True)
@click.pass_obj
@_reports_errors
def sign(settings: EscrowSettings, op: str, target: str, query_id: int) -> None:
    """Print a guarantor-signed command for the deal at TARGET (base64 BoC)."""
    keypair = settings.guarantor_keypair()
    body = create_signed_message(_SIGNED_OPS[op], Address.parse(target), keypair.secret_key, query_id)
    logger.info("signed %s for %s", op, target)
    click.echo(_boc_text(body))


@main.command()
@click.argument("op", type=click.Choice(sorted(_SIGNED_OPS)))
@click.argument("target")
@click.option("--query-id", type=int, default=0, show_default=True)
@click.pass_obj
@_reports_errors
def send(settings: EscrowSettings, op: str, target: str, query_id: int) -> None:
    """Complete or cancel the active deal at TARGET as the guarantor."""
    keypair = settings.guarantor_keypair()
    addr = Address.parse(target)

    async def run() -> int:
        async with settings.client() as client:
            record = await send_guarantor_command(
                client, client, addr, _SIGNED_OPS[op], keypair.secret_key, query_id
            )
        return record.deal_id

    deal_id = asyncio.run(run())
    click.echo(f"sent {op} for deal {deal_id} to {addr.to_raw()}")


@main.command("cancel-body")
@click.option("--query-id", type=int, default=0, show_default=True)
@_reports_errors
def cancel_body(query_id: int) -> None:
    """Print the body a buyer or seller attaches to cancel (base64 BoC)."""
    click.echo(_boc_text(internal_cancel(query_id)))


if __name__ == "__main__":
    main()
