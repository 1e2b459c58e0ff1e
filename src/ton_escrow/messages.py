"""Deal command messages.

Unsigned commands are sent by a party the deal already knows by address
(buyer or seller), signed commands by the guarantor, who is known only by
public key:

    unsigned: op:uint32 query_id:uint64
    signed:   op:uint32 query_id:uint64 target:MsgAddress ^[signature:bits512]

The signature covers the representation hash of the cell holding only the
unsigned prefix (op, query_id, target). Notifications attached to payouts
use the unsigned shape.
"""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

from .cell import Cell, CellBuilder
from .config import OP_CODE_BITS, PUBLIC_KEY_BYTES, QUERY_ID_BITS, SIGNATURE_BYTES
from .encoding import read_address, read_coins, write_address, write_coins
from .errors import ErrorCode, EscrowError
from .types import Address, Command, OpCode, SignedCommand

_SEED_BYTES = 32


# --- keys ---


@dataclass(frozen=True)
class KeyPair:
    public_key: bytes
    secret_key: bytes  # seed || public_key

    @property
    def seed(self) -> bytes:
        return self.secret_key[:_SEED_BYTES]


def keypair_from_seed(seed: bytes) -> KeyPair:
    if len(seed) != _SEED_BYTES:
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"seed must be {_SEED_BYTES} bytes")
    private = Ed25519PrivateKey.from_private_bytes(bytes(seed))
    public = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return KeyPair(public_key=public, secret_key=bytes(seed) + public)


def keypair_from_secret_key(secret_key: bytes) -> KeyPair:
    """Accept a 64-byte secret (seed || public key) or a bare 32-byte seed."""
    if len(secret_key) == _SEED_BYTES:
        return keypair_from_seed(secret_key)
    if len(secret_key) != _SEED_BYTES + PUBLIC_KEY_BYTES:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "secret key must be 32 or 64 bytes")
    kp = keypair_from_seed(secret_key[:_SEED_BYTES])
    if kp.public_key != bytes(secret_key[_SEED_BYTES:]):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "secret key does not match its public half")
    return kp


def generate_keypair() -> KeyPair:
    seed = Ed25519PrivateKey.generate().private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    return keypair_from_seed(seed)


def sign(data: bytes, secret_key: bytes) -> bytes:
    seed = keypair_from_secret_key(secret_key).seed
    return Ed25519PrivateKey.from_private_bytes(seed).sign(data)


# --- builders ---


def _simple_command(op: int, query_id: int) -> Cell:
    b = CellBuilder()
    b.store_uint(op, OP_CODE_BITS)
    b.store_uint(query_id, QUERY_ID_BITS)
    return b.end_cell()


def internal_cancel(query_id: int = 0) -> Cell:
    return _simple_command(OpCode.CANCEL, query_id)


def cancellation(query_id: int = 0) -> Cell:
    return _simple_command(OpCode.CANCELLATION, query_id)


def seller_completion(query_id: int = 0) -> Cell:
    return _simple_command(OpCode.SELLER_COMPLETION, query_id)


def fee_gainer_completion(query_id: int = 0) -> Cell:
    return _simple_command(OpCode.FEE_GAINER_COMPLETION, query_id)


def signed_prefix(op: int, query_id: int, target: Address) -> Cell:
    b = CellBuilder()
    b.store_uint(op, OP_CODE_BITS)
    b.store_uint(query_id, QUERY_ID_BITS)
    write_address(b, target)
    return b.end_cell()


def create_signed_message(op: int, target: Address, secret_key: bytes, query_id: int = 0) -> Cell:
    prefix = signed_prefix(op, query_id, target)
    signature = sign(prefix.hash(), secret_key)
    b = CellBuilder()
    b.store_slice(prefix.begin_parse())
    b.store_ref(CellBuilder().store_bytes(signature).end_cell())
    return b.end_cell()


def external_cancel(target: Address, secret_key: bytes, query_id: int = 0) -> Cell:
    return create_signed_message(OpCode.CANCEL, target, secret_key, query_id)


def external_complete(target: Address, secret_key: bytes, query_id: int = 0) -> Cell:
    return create_signed_message(OpCode.COMPLETE, target, secret_key, query_id)


def external_message(destination: Address, body: Cell) -> Cell:
    """Wrap a command body into an inbound external message.

    ext_in_msg_info$10 src:addr_none dest:MsgAddressInt import_fee:(Grams 0),
    no state init, body by reference.
    """
    b = CellBuilder()
    b.store_uint(0b10, 2)
    b.store_uint(0b00, 2)
    write_address(b, destination)
    write_coins(b, 0)
    b.store_bit(False)
    b.store_bit(True)
    b.store_ref(body)
    return b.end_cell()


def parse_external_message(message: Cell) -> tuple[Address, Cell]:
    """Return (destination, body) of a message built by `external_message`."""
    s = message.begin_parse()
    if s.load_uint(2) != 0b10 or s.load_uint(2) != 0b00:
        raise EscrowError(ErrorCode.MALFORMED_FIELD, "not an external message from addr_none", "info")
    destination = read_address(s, "destination")
    read_coins(s, "import_fee")
    if s.load_bit() or not s.load_bit():
        raise EscrowError(ErrorCode.MALFORMED_FIELD, "expected no state init and a body reference", "body")
    return destination, s.load_ref("body")


# --- parsing / verification ---


def parse_command(body: Cell) -> Command:
    s = body.begin_parse()
    op = s.load_uint(OP_CODE_BITS, "op")
    query_id = s.load_uint(QUERY_ID_BITS, "query_id")
    return Command(op=op, query_id=query_id)


def parse_signed_command(body: Cell) -> SignedCommand:
    """Split a signed command into its prefix fields and signature.

    A missing or short signature ref yields an empty signature, which never
    verifies.
    """
    s = body.begin_parse()
    op = s.load_uint(OP_CODE_BITS, "op")
    query_id = s.load_uint(QUERY_ID_BITS, "query_id")
    target = read_address(s, "target")

    signature = b""
    if body.refs:
        sig_cell = body.refs[0]
        if sig_cell.bit_length == SIGNATURE_BYTES * 8:
            signature = sig_cell.data.to_bytes(SIGNATURE_BYTES, "big")

    # Everything except the signature ref is covered by the signature.
    unsigned = Cell(body.data, body.bit_length, body.refs[1:])
    return SignedCommand(
        op=op,
        query_id=query_id,
        target=target,
        signature=signature,
        signed_hash=unsigned.hash(),
    )


def check_target(command: SignedCommand, myself: Address) -> None:
    if command.target != myself:
        raise EscrowError(
            ErrorCode.WRONG_TARGET,
            f"command targets {command.target.to_raw()}, not {myself.to_raw()}",
        )


def verify_signature(command: SignedCommand, public_key: bytes) -> None:
    if len(command.signature) != SIGNATURE_BYTES:
        raise EscrowError(ErrorCode.INVALID_SIGNATURE, "signature missing or malformed")
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(command.signature, command.signed_hash)
    except (InvalidSignature, ValueError) as exc:
        raise EscrowError(ErrorCode.INVALID_SIGNATURE, "signature does not verify") from exc
