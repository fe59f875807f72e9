"""The Value model: every value a protobuf field can hold.

A Value is a (kind, payload) pair. Scalars carry the Python int, float,
bool, str or bytes; ENUM carries the enum number; MESSAGE carries a
DynamicMessage; LIST carries a list of Values; MAP carries a dict from
scalar key Values to Values.
"""

import math
import struct as _struct
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from .descriptor.types import FieldType
from .errors import TypeMismatchError

if TYPE_CHECKING:
    from .descriptor.handles import FieldDescriptor
    from .message import DynamicMessage


class ValueKind(StrEnum):
    BOOL = "bool"
    I32 = "i32"
    I64 = "i64"
    U32 = "u32"
    U64 = "u64"
    F32 = "f32"
    F64 = "f64"
    STRING = "string"
    BYTES = "bytes"
    ENUM = "enum"
    MESSAGE = "message"
    LIST = "list"
    MAP = "map"


VALUE_KINDS: dict[FieldType, ValueKind] = {
    FieldType.DOUBLE: ValueKind.F64,
    FieldType.FLOAT: ValueKind.F32,
    FieldType.INT64: ValueKind.I64,
    FieldType.UINT64: ValueKind.U64,
    FieldType.INT32: ValueKind.I32,
    FieldType.FIXED64: ValueKind.U64,
    FieldType.FIXED32: ValueKind.U32,
    FieldType.BOOL: ValueKind.BOOL,
    FieldType.STRING: ValueKind.STRING,
    FieldType.GROUP: ValueKind.MESSAGE,
    FieldType.MESSAGE: ValueKind.MESSAGE,
    FieldType.BYTES: ValueKind.BYTES,
    FieldType.UINT32: ValueKind.U32,
    FieldType.ENUM: ValueKind.ENUM,
    FieldType.SFIXED32: ValueKind.I32,
    FieldType.SFIXED64: ValueKind.I64,
    FieldType.SINT32: ValueKind.I32,
    FieldType.SINT64: ValueKind.I64,
}

INT_RANGES: dict[ValueKind, tuple[int, int]] = {
    ValueKind.I32: (-(1 << 31), (1 << 31) - 1),
    ValueKind.I64: (-(1 << 63), (1 << 63) - 1),
    ValueKind.U32: (0, (1 << 32) - 1),
    ValueKind.U64: (0, (1 << 64) - 1),
    ValueKind.ENUM: (-(1 << 31), (1 << 31) - 1),
}

MAP_KEY_KINDS = frozenset(
    [ValueKind.BOOL, ValueKind.I32, ValueKind.I64, ValueKind.U32, ValueKind.U64, ValueKind.STRING]
)

_FLOAT32_MAX = 3.4028234663852886e38


def round_float32(value: float) -> float:
    """Round a double to the nearest float32, as storing it on the wire would."""
    if math.isnan(value) or math.isinf(value):
        return value
    if abs(value) > _FLOAT32_MAX:
        raise OverflowError(f"{value} is out of range for float")
    return _struct.unpack("<f", _struct.pack("<f", value))[0]


def check_scalar(kind: ValueKind, payload: Any) -> Any:
    """Validate a scalar payload for ``kind`` and return it normalized.

    Raises:
        TypeMismatchError: The payload has the wrong Python type or is out
            of range.
    """
    if kind == ValueKind.BOOL:
        if not isinstance(payload, bool):
            raise TypeMismatchError(f"expected bool, got {type(payload).__name__}")
        return payload
    if kind in INT_RANGES:
        if isinstance(payload, bool) or not isinstance(payload, int):
            raise TypeMismatchError(f"expected {kind.value} integer, got {type(payload).__name__}")
        low, high = INT_RANGES[kind]
        if not low <= payload <= high:
            raise TypeMismatchError(f"{payload} is out of range for {kind.value}")
        return payload
    if kind in (ValueKind.F32, ValueKind.F64):
        if isinstance(payload, bool) or not isinstance(payload, (int, float)):
            raise TypeMismatchError(f"expected float, got {type(payload).__name__}")
        if kind == ValueKind.F64:
            return float(payload)
        try:
            return round_float32(float(payload))
        except OverflowError as e:
            raise TypeMismatchError(str(e)) from e
    if kind == ValueKind.STRING:
        if not isinstance(payload, str):
            raise TypeMismatchError(f"expected str, got {type(payload).__name__}")
        return payload
    if kind == ValueKind.BYTES:
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeMismatchError(f"expected bytes, got {type(payload).__name__}")
        return bytes(payload)
    raise TypeMismatchError(f"{kind.value} is not a scalar kind")


@dataclass(frozen=True, slots=True)
class Value:
    """A tagged protobuf value.

    Use the ``from_*`` constructors, which check ranges, and the ``as_*``
    accessors, which raise TypeMismatchError on a kind mismatch.
    """

    kind: ValueKind
    value: Any

    @classmethod
    def from_bool(cls, value: bool) -> "Value":
        return cls(ValueKind.BOOL, check_scalar(ValueKind.BOOL, value))

    @classmethod
    def from_i32(cls, value: int) -> "Value":
        return cls(ValueKind.I32, check_scalar(ValueKind.I32, value))

    @classmethod
    def from_i64(cls, value: int) -> "Value":
        return cls(ValueKind.I64, check_scalar(ValueKind.I64, value))

    @classmethod
    def from_u32(cls, value: int) -> "Value":
        return cls(ValueKind.U32, check_scalar(ValueKind.U32, value))

    @classmethod
    def from_u64(cls, value: int) -> "Value":
        return cls(ValueKind.U64, check_scalar(ValueKind.U64, value))

    @classmethod
    def from_f32(cls, value: float) -> "Value":
        return cls(ValueKind.F32, check_scalar(ValueKind.F32, value))

    @classmethod
    def from_f64(cls, value: float) -> "Value":
        return cls(ValueKind.F64, check_scalar(ValueKind.F64, value))

    @classmethod
    def from_string(cls, value: str) -> "Value":
        return cls(ValueKind.STRING, check_scalar(ValueKind.STRING, value))

    @classmethod
    def from_bytes(cls, value: bytes) -> "Value":
        return cls(ValueKind.BYTES, check_scalar(ValueKind.BYTES, value))

    @classmethod
    def from_enum(cls, number: int) -> "Value":
        return cls(ValueKind.ENUM, check_scalar(ValueKind.ENUM, number))

    @classmethod
    def from_message(cls, message: "DynamicMessage") -> "Value":
        return cls(ValueKind.MESSAGE, message)

    @classmethod
    def from_list(cls, items: Iterable["Value"]) -> "Value":
        return cls(ValueKind.LIST, list(items))

    @classmethod
    def from_map(cls, entries: Mapping["Value", "Value"]) -> "Value":
        for key in entries:
            if key.kind not in MAP_KEY_KINDS:
                raise TypeMismatchError(f"{key.kind.value} cannot be a map key")
        return cls(ValueKind.MAP, dict(entries))

    def _expect(self, *kinds: ValueKind) -> Any:
        if self.kind not in kinds:
            expected = " or ".join(k.value for k in kinds)
            raise TypeMismatchError(f"value is {self.kind.value}, not {expected}")
        return self.value

    def as_bool(self) -> bool:
        return self._expect(ValueKind.BOOL)

    def as_int(self) -> int:
        """Any integer kind, including enum numbers."""
        return self._expect(
            ValueKind.I32, ValueKind.I64, ValueKind.U32, ValueKind.U64, ValueKind.ENUM
        )

    def as_i32(self) -> int:
        return self._expect(ValueKind.I32)

    def as_i64(self) -> int:
        return self._expect(ValueKind.I64)

    def as_u32(self) -> int:
        return self._expect(ValueKind.U32)

    def as_u64(self) -> int:
        return self._expect(ValueKind.U64)

    def as_float(self) -> float:
        return self._expect(ValueKind.F32, ValueKind.F64)

    def as_str(self) -> str:
        return self._expect(ValueKind.STRING)

    def as_bytes(self) -> bytes:
        return self._expect(ValueKind.BYTES)

    def as_enum(self) -> int:
        return self._expect(ValueKind.ENUM)

    def as_message(self) -> "DynamicMessage":
        return self._expect(ValueKind.MESSAGE)

    def as_list(self) -> list["Value"]:
        return self._expect(ValueKind.LIST)

    def as_map(self) -> dict["Value", "Value"]:
        return self._expect(ValueKind.MAP)

    def to_python(self) -> Any:
        """Unwrap recursively. Messages are returned as they are."""
        if self.kind == ValueKind.LIST:
            return [item.to_python() for item in self.value]
        if self.kind == ValueKind.MAP:
            return {key.value: item.to_python() for key, item in self.value.items()}
        return self.value

    def __repr__(self) -> str:
        return f"Value.{self.kind.name}({self.value!r})"


def unescape_bytes(text: str) -> bytes:
    """Decode C-style escapes (``\\n``, ``\\001``, ``\\x7f``) into bytes."""
    return text.encode("latin-1", "backslashreplace").decode("unicode_escape").encode("latin-1")


def zero_scalar(field: "FieldDescriptor") -> Value:
    """The zero value of a singular scalar or enum field."""
    kind = VALUE_KINDS[field.type]
    if kind == ValueKind.BOOL:
        return Value(kind, False)
    if kind in (ValueKind.F32, ValueKind.F64):
        return Value(kind, 0.0)
    if kind == ValueKind.STRING:
        return Value(kind, "")
    if kind == ValueKind.BYTES:
        return Value(kind, b"")
    if kind == ValueKind.ENUM:
        return Value(kind, field.enum_type.default_value.number)  # type: ignore[union-attr]
    return Value(kind, 0)


def default_scalar(field: "FieldDescriptor") -> Value:
    """The declared default of a scalar field, else its zero value."""
    text = field.default_value
    if text is None:
        return zero_scalar(field)

    kind = VALUE_KINDS[field.type]
    try:
        if kind == ValueKind.BOOL:
            return Value(kind, text == "true")
        if kind in (ValueKind.F32, ValueKind.F64):
            return Value(kind, check_scalar(kind, float(text)))
        if kind == ValueKind.STRING:
            return Value(kind, text)
        if kind == ValueKind.BYTES:
            return Value(kind, unescape_bytes(text))
        if kind == ValueKind.ENUM:
            enum_value = field.enum_type.get_value_by_name(text)  # type: ignore[union-attr]
            if enum_value is None:
                return zero_scalar(field)
            return Value(kind, enum_value.number)
        return Value(kind, check_scalar(kind, int(text)))
    except (ValueError, TypeMismatchError):
        return zero_scalar(field)


def is_zero(value: Value) -> bool:
    """Whether a scalar holds its type's zero value.

    Negative zero is not zero: its bit pattern differs, so it is kept on the
    wire.
    """
    payload = value.value
    if value.kind in (ValueKind.F32, ValueKind.F64):
        return payload == 0.0 and math.copysign(1.0, payload) > 0
    if value.kind in (ValueKind.LIST, ValueKind.MAP):
        return not payload
    if value.kind == ValueKind.MESSAGE:
        return False
    return not payload
