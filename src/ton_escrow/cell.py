"""Cells: bounded bit containers with ordered child references.

A cell carries up to 1023 bits of payload and up to 4 child cells. Its
representation hash is computed bottom-up (SHA-256 over the descriptor
bytes, the padded payload, and the depth and hash of every child); that hash
is the identity used for contract addresses and signature payloads.

Cells are serialized to a flat "bag of cells" (BoC) where the tree is
flattened into an indexed arena, root first, children always after parents.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from typing import Optional, Sequence, Union

import crc32c

from .config import BOC_MAGIC, CELL_MAX_BITS, CELL_MAX_REFS
from .errors import ErrorCode, EscrowError


class Cell:
    """Immutable cell. Payload bits are held as an int of `bit_length` bits."""

    __slots__ = ("_data", "_bit_length", "_refs", "_hash", "_depth")

    def __init__(self, data: int = 0, bit_length: int = 0, refs: Sequence["Cell"] = ()):
        if bit_length < 0 or bit_length > CELL_MAX_BITS:
            raise EscrowError(ErrorCode.CAPACITY_EXCEEDED, f"cell holds at most {CELL_MAX_BITS} bits")
        if len(refs) > CELL_MAX_REFS:
            raise EscrowError(ErrorCode.CAPACITY_EXCEEDED, f"cell holds at most {CELL_MAX_REFS} refs")
        if data < 0 or data >> bit_length:
            raise EscrowError(ErrorCode.INVALID_FORMAT, "cell data does not fit bit_length")
        self._data = data
        self._bit_length = bit_length
        self._refs = tuple(refs)
        self._hash: Optional[bytes] = None
        self._depth: Optional[int] = None

    @property
    def data(self) -> int:
        return self._data

    @property
    def bit_length(self) -> int:
        return self._bit_length

    @property
    def refs(self) -> tuple["Cell", ...]:
        return self._refs

    @property
    def depth(self) -> int:
        if self._depth is None:
            self._depth = 0 if not self._refs else 1 + max(r.depth for r in self._refs)
        return self._depth

    def descriptors(self) -> bytes:
        d1 = len(self._refs)
        d2 = (self._bit_length + 7) // 8 + self._bit_length // 8
        return bytes((d1, d2))

    def augmented_data(self) -> bytes:
        """Payload padded to a byte boundary with a single 1 bit then zeros."""
        nbytes = (self._bit_length + 7) // 8
        pad = nbytes * 8 - self._bit_length
        value = self._data
        if pad:
            value = (value << pad) | (1 << (pad - 1))
        return value.to_bytes(nbytes, "big")

    def hash(self) -> bytes:
        if self._hash is None:
            h = hashlib.sha256()
            h.update(self.descriptors())
            h.update(self.augmented_data())
            for ref in self._refs:
                h.update(ref.depth.to_bytes(2, "big"))
            for ref in self._refs:
                h.update(ref.hash())
            self._hash = h.digest()
        return self._hash

    def begin_parse(self) -> "Slice":
        return Slice(self)

    def to_boc(self, *, has_idx: bool = False, has_crc32c: bool = True) -> bytes:
        return serialize_boc(self, has_idx=has_idx, has_crc32c=has_crc32c)

    @classmethod
    def from_boc(cls, data: Union[bytes, str]) -> "Cell":
        if isinstance(data, str):
            data = _decode_text(data)
        return deserialize_boc(data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Cell):
            return NotImplemented
        return self.hash() == other.hash()

    def __hash__(self) -> int:
        return hash(self.hash())

    def __repr__(self) -> str:
        return f"Cell(bits={self._bit_length}, refs={len(self._refs)}, hash={self.hash().hex()[:16]})"


class CellBuilder:
    """Append-only writer producing a Cell."""

    def __init__(self) -> None:
        self._data = 0
        self._bits = 0
        self._refs: list[Cell] = []

    @property
    def bits(self) -> int:
        return self._bits

    @property
    def remaining_bits(self) -> int:
        return CELL_MAX_BITS - self._bits

    @property
    def remaining_refs(self) -> int:
        return CELL_MAX_REFS - len(self._refs)

    def _append(self, value: int, width: int) -> "CellBuilder":
        if self._bits + width > CELL_MAX_BITS:
            raise EscrowError(
                ErrorCode.CAPACITY_EXCEEDED,
                f"writing {width} bits exceeds cell capacity ({self._bits} used)",
            )
        self._data = (self._data << width) | value
        self._bits += width
        return self

    def store_uint(self, value: int, width: int) -> "CellBuilder":
        value = int(value)
        if width < 0 or value < 0 or value >> width:
            raise EscrowError(ErrorCode.CAPACITY_EXCEEDED, f"{value} does not fit uint{width}")
        return self._append(value, width)

    def store_int(self, value: int, width: int) -> "CellBuilder":
        value = int(value)
        if width <= 0:
            raise EscrowError(ErrorCode.CAPACITY_EXCEEDED, "signed width must be positive")
        bound = 1 << (width - 1)
        if not -bound <= value < bound:
            raise EscrowError(ErrorCode.CAPACITY_EXCEEDED, f"{value} does not fit int{width}")
        return self._append(value & ((1 << width) - 1), width)

    def store_bit(self, flag: bool) -> "CellBuilder":
        return self._append(1 if flag else 0, 1)

    def store_bytes(self, data: bytes) -> "CellBuilder":
        data = bytes(data)
        return self._append(int.from_bytes(data, "big"), len(data) * 8)

    def store_slice(self, s: "Slice") -> "CellBuilder":
        width = s.remaining_bits
        self._append(s.preload_uint(width), width)
        for ref in s.remaining_ref_cells():
            self.store_ref(ref)
        return self

    def store_ref(self, cell: Cell) -> "CellBuilder":
        if len(self._refs) >= CELL_MAX_REFS:
            raise EscrowError(ErrorCode.CAPACITY_EXCEEDED, f"cell holds at most {CELL_MAX_REFS} refs")
        self._refs.append(cell)
        return self

    def end_cell(self) -> Cell:
        return Cell(self._data, self._bits, self._refs)


class Slice:
    """Read cursor over a cell's bits and refs."""

    def __init__(self, cell: Cell):
        self._cell = cell
        self._pos = 0
        self._ref_pos = 0

    @property
    def remaining_bits(self) -> int:
        return self._cell.bit_length - self._pos

    @property
    def remaining_refs(self) -> int:
        return len(self._cell.refs) - self._ref_pos

    def remaining_ref_cells(self) -> tuple[Cell, ...]:
        return self._cell.refs[self._ref_pos:]

    def preload_uint(self, width: int, field: str = "uint") -> int:
        if width < 0 or width > self.remaining_bits:
            raise EscrowError(
                ErrorCode.MALFORMED_FIELD,
                f"need {width} bits, {self.remaining_bits} remain",
                field,
            )
        shift = self._cell.bit_length - self._pos - width
        return (self._cell.data >> shift) & ((1 << width) - 1)

    def load_uint(self, width: int, field: str = "uint") -> int:
        value = self.preload_uint(width, field)
        self._pos += width
        return value

    def load_int(self, width: int, field: str = "int") -> int:
        value = self.load_uint(width, field)
        if width and value >> (width - 1):
            value -= 1 << width
        return value

    def load_bit(self, field: str = "bit") -> bool:
        return bool(self.load_uint(1, field))

    def load_bytes(self, size: int, field: str = "bytes") -> bytes:
        return self.load_uint(size * 8, field).to_bytes(size, "big")

    def skip_bits(self, width: int, field: str = "bits") -> "Slice":
        self.load_uint(width, field)
        return self

    def load_ref(self, field: str = "ref") -> Cell:
        if self._ref_pos >= len(self._cell.refs):
            raise EscrowError(ErrorCode.MALFORMED_FIELD, "no refs remain", field)
        ref = self._cell.refs[self._ref_pos]
        self._ref_pos += 1
        return ref

    def end_parse(self, field: str = "slice") -> None:
        if self.remaining_bits or self.remaining_refs:
            raise EscrowError(
                ErrorCode.MALFORMED_FIELD,
                f"{self.remaining_bits} bits and {self.remaining_refs} refs left unread",
                field,
            )

    def copy(self) -> "Slice":
        c = Slice(self._cell)
        c._pos = self._pos
        c._ref_pos = self._ref_pos
        return c

    def __repr__(self) -> str:
        return f"Slice(pos={self._pos}/{self._cell.bit_length}, refs={self._ref_pos}/{len(self._cell.refs)})"


def begin_cell() -> CellBuilder:
    return CellBuilder()


EMPTY_CELL = Cell()


# --- bag of cells ---


def _byte_len(n: int) -> int:
    return max(1, (n.bit_length() + 7) // 8)


def _topological_order(root: Cell) -> list[Cell]:
    """Unique cells, every parent before all of its children, root first."""
    seen: set[bytes] = set()
    postorder: list[Cell] = []
    stack: list[tuple[Cell, int]] = [(root, 0)]
    while stack:
        cell, i = stack.pop()
        if i == 0:
            if cell.hash() in seen:
                continue
            seen.add(cell.hash())
        if i < len(cell.refs):
            stack.append((cell, i + 1))
            stack.append((cell.refs[i], 0))
        else:
            postorder.append(cell)
    postorder.reverse()
    return postorder


def serialize_boc(root: Cell, *, has_idx: bool = False, has_crc32c: bool = True) -> bytes:
    cells = _topological_order(root)
    index = {c.hash(): i for i, c in enumerate(cells)}
    size_bytes = _byte_len(len(cells))

    chunks: list[bytes] = []
    for cell in cells:
        buf = bytearray(cell.descriptors())
        buf += cell.augmented_data()
        for ref in cell.refs:
            buf += index[ref.hash()].to_bytes(size_bytes, "big")
        chunks.append(bytes(buf))

    total = sum(len(c) for c in chunks)
    off_bytes = _byte_len(total)

    out = bytearray(BOC_MAGIC)
    out.append((0x80 if has_idx else 0) | (0x40 if has_crc32c else 0) | size_bytes)
    out.append(off_bytes)
    out += len(cells).to_bytes(size_bytes, "big")
    out += (1).to_bytes(size_bytes, "big")  # roots
    out += (0).to_bytes(size_bytes, "big")  # absent
    out += total.to_bytes(off_bytes, "big")
    out += (0).to_bytes(size_bytes, "big")  # root index
    if has_idx:
        offset = 0
        for chunk in chunks:
            offset += len(chunk)
            out += offset.to_bytes(off_bytes, "big")
    for chunk in chunks:
        out += chunk
    if has_crc32c:
        out += crc32c.crc32c(bytes(out)).to_bytes(4, "little")
    return bytes(out)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise EscrowError(ErrorCode.INVALID_BOC, "unexpected end of boc")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def uint(self, n: int) -> int:
        return int.from_bytes(self.take(n), "big")


def _strip_padding(raw: bytes) -> tuple[int, int]:
    value = int.from_bytes(raw, "big")
    bit_length = len(raw) * 8
    if value == 0:
        raise EscrowError(ErrorCode.INVALID_BOC, "missing completion tag in padded cell data")
    while not value & 1:
        value >>= 1
        bit_length -= 1
    return value >> 1, bit_length - 1


def deserialize_boc(data: bytes) -> Cell:
    data = bytes(data)
    r = _Reader(data)
    if r.take(4) != BOC_MAGIC:
        raise EscrowError(ErrorCode.INVALID_BOC, "bad boc magic")
    flags = r.uint(1)
    has_idx = bool(flags & 0x80)
    has_crc = bool(flags & 0x40)
    size_bytes = flags & 0x07
    if not 1 <= size_bytes <= 4:
        raise EscrowError(ErrorCode.INVALID_BOC, "invalid ref size")
    off_bytes = r.uint(1)
    if not 1 <= off_bytes <= 8:
        raise EscrowError(ErrorCode.INVALID_BOC, "invalid offset size")
    cells_num = r.uint(size_bytes)
    roots_num = r.uint(size_bytes)
    absent_num = r.uint(size_bytes)
    tot_size = r.uint(off_bytes)
    if roots_num != 1:
        raise EscrowError(ErrorCode.INVALID_BOC, f"expected a single root, got {roots_num}")
    if absent_num:
        raise EscrowError(ErrorCode.INVALID_BOC, "absent cells are not supported")
    root_index = r.uint(size_bytes)
    if root_index >= cells_num:
        raise EscrowError(ErrorCode.INVALID_BOC, "root index out of range")
    if has_idx:
        r.take(cells_num * off_bytes)
    body = _Reader(r.take(tot_size))
    if has_crc:
        expected = crc32c.crc32c(data[:r.pos])
        if r.take(4) != expected.to_bytes(4, "little"):
            raise EscrowError(ErrorCode.INVALID_BOC, "crc32c mismatch")
    if r.pos != len(data):
        raise EscrowError(ErrorCode.INVALID_BOC, "trailing bytes after boc")

    parsed: list[tuple[int, int, list[int]]] = []
    for i in range(cells_num):
        d1, d2 = body.take(2)
        if d1 & 0xF8:
            raise EscrowError(ErrorCode.INVALID_BOC, "exotic or leveled cells are not supported")
        ref_count = d1 & 0x07
        if ref_count > CELL_MAX_REFS:
            raise EscrowError(ErrorCode.INVALID_BOC, "too many refs")
        raw = body.take((d2 + 1) // 2)
        if d2 % 2:
            value, bit_length = _strip_padding(raw)
        else:
            value, bit_length = int.from_bytes(raw, "big"), len(raw) * 8
        refs = [body.uint(size_bytes) for _ in range(ref_count)]
        for ref in refs:
            if ref <= i or ref >= cells_num:
                raise EscrowError(ErrorCode.INVALID_BOC, "refs must point forward")
        parsed.append((value, bit_length, refs))
    if body.pos != len(body.data):
        raise EscrowError(ErrorCode.INVALID_BOC, "cell data size mismatch")

    built: list[Optional[Cell]] = [None] * cells_num
    for i in range(cells_num - 1, -1, -1):
        value, bit_length, refs = parsed[i]
        built[i] = Cell(value, bit_length, [built[j] for j in refs])  # type: ignore[misc]
    return built[root_index]  # type: ignore[return-value]


def _decode_text(text: str) -> bytes:
    text = text.strip()
    try:
        if text.lower().startswith(BOC_MAGIC.hex()):
            return bytes.fromhex(text)
        padded = text + "=" * (-len(text) % 4)
        return base64.b64decode(padded.replace("-", "+").replace("_", "/"), validate=True)
    except (ValueError, binascii.Error) as exc:
        raise EscrowError(ErrorCode.INVALID_BOC, f"boc text is neither hex nor base64: {exc}") from exc
