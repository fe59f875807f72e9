"""Primitive encoding and decoding for the protobuf binary wire format."""

import struct as _struct
from enum import IntEnum

from .errors import (
    InvalidVarintError,
    RecursionLimitError,
    TruncatedError,
    UnexpectedWireTypeError,
)

MAX_FIELD_NUMBER = (1 << 29) - 1
MAX_VARINT_LEN = 10

_UINT32_MASK = (1 << 32) - 1
_UINT64_MASK = (1 << 64) - 1


class WireType(IntEnum):
    """The low three bits of every tag."""

    VARINT = 0
    FIXED64 = 1
    LENGTH_DELIMITED = 2
    START_GROUP = 3
    END_GROUP = 4
    FIXED32 = 5


def zigzag_encode(value: int) -> int:
    """Map a signed integer onto an unsigned one, small magnitudes first."""
    if value >= 0:
        return value << 1
    return ((-value) << 1) - 1


def zigzag_decode(value: int) -> int:
    """Inverse of zigzag_encode()."""
    if not value & 0x1:
        return value >> 1
    return (value >> 1) ^ (~0)


def to_signed32(value: int) -> int:
    value &= _UINT32_MASK
    return value - (1 << 32) if value & (1 << 31) else value


def to_signed64(value: int) -> int:
    value &= _UINT64_MASK
    return value - (1 << 64) if value & (1 << 63) else value


def encode_varint(value: int) -> bytes:
    """Encode an integer as a base-128 varint.

    Negative values are written as their 64-bit two's complement, which
    always takes ten bytes.
    """
    value &= _UINT64_MASK
    out = bytearray()
    while value > 0x7F:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def varint_size(value: int) -> int:
    value &= _UINT64_MASK
    size = 1
    while value > 0x7F:
        value >>= 7
        size += 1
    return size


def encode_tag(number: int, wire_type: WireType) -> bytes:
    return encode_varint((number << 3) | wire_type)


class Reader:
    """Cursor over an immutable buffer.

    A reader may be bounded to a window of the underlying buffer so nested
    length-delimited values can be read without copying.
    """

    __slots__ = ("_data", "_pos", "_end")

    def __init__(self, data: bytes | memoryview, pos: int = 0, end: int | None = None) -> None:
        self._data = memoryview(data) if not isinstance(data, memoryview) else data
        self._pos = pos
        self._end = len(self._data) if end is None else end

    @property
    def pos(self) -> int:
        return self._pos

    def at_end(self) -> bool:
        return self._pos >= self._end

    def remaining(self) -> int:
        return self._end - self._pos

    def slice(self, start: int, end: int) -> bytes:
        return bytes(self._data[start:end])

    def read_varint(self) -> int:
        result = 0
        shift = 0
        pos = self._pos
        for _ in range(MAX_VARINT_LEN):
            if pos >= self._end:
                raise TruncatedError("buffer ended inside a varint")
            byte = self._data[pos]
            pos += 1
            if shift == 63 and byte > 1:
                raise InvalidVarintError("varint overflows 64 bits")
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                self._pos = pos
                return result & _UINT64_MASK
            shift += 7
        raise InvalidVarintError("varint is longer than 10 bytes")

    def read_tag(self) -> tuple[int, WireType]:
        key = self.read_varint()
        if key > _UINT32_MASK:
            raise UnexpectedWireTypeError(f"tag {key} does not fit in 32 bits")
        number = key >> 3
        raw_type = key & 0x7
        if raw_type > WireType.FIXED32:
            raise UnexpectedWireTypeError(f"invalid wire type {raw_type} for field {number}")
        if number == 0:
            raise UnexpectedWireTypeError("invalid field number 0")
        return number, WireType(raw_type)

    def _take(self, size: int) -> memoryview:
        if size < 0 or self._pos + size > self._end:
            raise TruncatedError(f"expected {size} bytes, {self.remaining()} available")
        view = self._data[self._pos : self._pos + size]
        self._pos += size
        return view

    def read_fixed32(self) -> int:
        return _struct.unpack("<I", self._take(4))[0]

    def read_fixed64(self) -> int:
        return _struct.unpack("<Q", self._take(8))[0]

    def read_sfixed32(self) -> int:
        return _struct.unpack("<i", self._take(4))[0]

    def read_sfixed64(self) -> int:
        return _struct.unpack("<q", self._take(8))[0]

    def read_float(self) -> float:
        return _struct.unpack("<f", self._take(4))[0]

    def read_double(self) -> float:
        return _struct.unpack("<d", self._take(8))[0]

    def read_length_delimited(self) -> memoryview:
        size = self.read_varint()
        return self._take(size)

    def sub_reader(self) -> "Reader":
        """Read a length prefix and return a reader bounded to the payload."""
        size = self.read_varint()
        if size > self.remaining():
            raise TruncatedError(f"length-delimited value of {size} bytes exceeds buffer")
        sub = Reader(self._data, self._pos, self._pos + size)
        self._pos += size
        return sub

    def skip_field(self, number: int, wire_type: WireType, depth: int = 0) -> None:
        """Advance past the payload of a field whose tag was just read."""
        if wire_type == WireType.VARINT:
            self.read_varint()
        elif wire_type == WireType.FIXED64:
            self._take(8)
        elif wire_type == WireType.FIXED32:
            self._take(4)
        elif wire_type == WireType.LENGTH_DELIMITED:
            self._take(self.read_varint())
        elif wire_type == WireType.START_GROUP:
            self.skip_group(number, depth)
        else:
            raise UnexpectedWireTypeError(f"unexpected end group tag for field {number}")

    def skip_group(self, number: int, depth: int) -> None:
        # Groups nest, so skipping one is bounded by the same limit as messages.
        if depth <= 0:
            raise RecursionLimitError("group nesting exceeds recursion limit")
        while True:
            if self.at_end():
                raise TruncatedError(f"group {number} is missing its end tag")
            inner, wire_type = self.read_tag()
            if wire_type == WireType.END_GROUP:
                if inner != number:
                    raise UnexpectedWireTypeError(
                        f"end group tag {inner} does not match start group {number}"
                    )
                return
            self.skip_field(inner, wire_type, depth - 1)


class Writer:
    """Append-only output buffer."""

    __slots__ = ("_buf",)

    def __init__(self) -> None:
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def write_raw(self, data: bytes | bytearray | memoryview) -> None:
        self._buf.extend(data)

    def write_varint(self, value: int) -> None:
        self._buf.extend(encode_varint(value))

    def write_tag(self, number: int, wire_type: WireType) -> None:
        self._buf.extend(encode_tag(number, wire_type))

    def write_fixed32(self, value: int) -> None:
        self._buf.extend(_struct.pack("<I", value & _UINT32_MASK))

    def write_fixed64(self, value: int) -> None:
        self._buf.extend(_struct.pack("<Q", value & _UINT64_MASK))

    def write_sfixed32(self, value: int) -> None:
        self._buf.extend(_struct.pack("<i", value))

    def write_sfixed64(self, value: int) -> None:
        self._buf.extend(_struct.pack("<q", value))

    def write_float(self, value: float) -> None:
        self._buf.extend(_struct.pack("<f", value))

    def write_double(self, value: float) -> None:
        self._buf.extend(_struct.pack("<d", value))

    def write_length_delimited(self, data: bytes | bytearray | memoryview) -> None:
        self._buf.extend(encode_varint(len(data)))
        self._buf.extend(data)
