"""Canonical protobuf JSON mapping for dynamic messages."""

import base64
import binascii
import json
import math
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from . import well_known
from .descriptor.handles import EnumDescriptor, FieldDescriptor, MessageDescriptor
from .errors import (
    InvalidBase64Error,
    InvalidEnumNameError,
    JsonError,
    JsonTypeMismatchError,
    RecursionLimitError,
    UnknownFieldError,
)
from .message import DEFAULT_RECURSION_LIMIT, DynamicMessage
from .value import INT_RANGES, VALUE_KINDS, Value, ValueKind, round_float32

_INTEGER_RE = re.compile(r"^-?\d+$")
_NUMBER_RE = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_FLOAT32_MAX = 3.4028234663852886e38

_SPECIAL_FLOATS = {"NaN": math.nan, "Infinity": math.inf, "-Infinity": -math.inf}


@dataclass(frozen=True)
class SerializeOptions:
    """Options for to_json() and to_dict().

    Attributes:
        stringify_64_bit_integers: Write 64-bit integer kinds as strings.
        use_enum_numbers: Write enums as numbers instead of names.
        use_proto_field_name: Use declared field names, not lowerCamelCase.
        skip_default_fields: Omit fields that are not present. When False,
            fields without presence tracking are written with their
            default values.
        indent: Pretty-print with this indent (to_json() only).
        recursion_limit: Maximum message nesting depth, counting the
            payloads of Any messages.
    """

    stringify_64_bit_integers: bool = True
    use_enum_numbers: bool = False
    use_proto_field_name: bool = False
    skip_default_fields: bool = True
    indent: int | None = None
    recursion_limit: int = DEFAULT_RECURSION_LIMIT


@dataclass(frozen=True)
class DeserializeOptions:
    """Options for from_json() and from_dict().

    Attributes:
        deny_unknown_fields: Reject properties that name no field. When
            False, they are ignored, as are unknown enum value names.
        recursion_limit: Maximum message nesting depth.
    """

    deny_unknown_fields: bool = True
    recursion_limit: int = DEFAULT_RECURSION_LIMIT


def to_dict(message: DynamicMessage, options: SerializeOptions = SerializeOptions()) -> Any:
    """Convert a message to its JSON value.

    This is a dict for ordinary messages; well-known types may map to a
    string, number, list or None.
    """
    return _Printer(options).message(message)


def to_json(message: DynamicMessage, options: SerializeOptions = SerializeOptions()) -> str:
    return json.dumps(to_dict(message, options), indent=options.indent, allow_nan=False)


def from_dict(
    descriptor: MessageDescriptor,
    data: Any,
    options: DeserializeOptions = DeserializeOptions(),
    message_class: type[DynamicMessage] = DynamicMessage,
) -> DynamicMessage:
    """Build a message of the given type from parsed JSON."""
    return _Parser(options, message_class).message(descriptor, data)


def from_json(
    descriptor: MessageDescriptor,
    text: str | bytes,
    options: DeserializeOptions = DeserializeOptions(),
    message_class: type[DynamicMessage] = DynamicMessage,
) -> DynamicMessage:
    try:
        data = json.loads(text, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as e:
        raise JsonTypeMismatchError(f"invalid JSON: {e}") from e
    return from_dict(descriptor, data, options, message_class)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} must be quoted")


def format_float(value: Value) -> Any:
    """A float as JSON: a number, or one of the special strings."""
    number = value.value
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Infinity" if number > 0 else "-Infinity"
    if value.kind == ValueKind.F32:
        # Shortest decimal that reads back as the same float32.
        for digits in range(1, 10):
            candidate = float(f"{number:.{digits}g}")
            if round_float32(candidate) == number:
                return candidate
    return number


class _Printer:
    def __init__(self, options: SerializeOptions) -> None:
        self.options = options
        self.depth = 0

    def message(self, message: DynamicMessage) -> Any:
        if self.depth >= self.options.recursion_limit:
            raise RecursionLimitError(
                f"{message.descriptor().full_name}: nesting exceeds recursion limit {self.options.recursion_limit}"
            )
        self.depth += 1
        try:
            writer = well_known.WRITERS.get(message.descriptor().full_name)
            if writer is not None:
                return writer(self, message)
            return self.fields(message)
        finally:
            self.depth -= 1

    def fields(self, message: DynamicMessage) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for field in message.descriptor().fields_by_number():
            value = message.get_field(field)
            if value is None:
                if self.options.skip_default_fields or (
                    field.supports_presence and not field.is_list and not field.is_map
                ):
                    continue
                value = message.get_field_or_default(field)
            out[self.key(field)] = self.field_value(field, value)
        for field, value in message.fields():
            if field.is_extension:
                out[field.json_key] = self.field_value(field, value)
        return out

    def key(self, field: FieldDescriptor) -> str:
        return field.name if self.options.use_proto_field_name else field.json_name

    def field_value(self, field: FieldDescriptor, value: Value) -> Any:
        if field.is_map:
            value_field = field.message_type.map_entry_value()  # type: ignore[union-attr]
            return {
                self.map_key(key): self.single(value_field, item) for key, item in value.value.items()
            }
        if field.is_list:
            return [self.single(field, item) for item in value.value]
        return self.single(field, value)

    def map_key(self, key: Value) -> str:
        if key.kind == ValueKind.BOOL:
            return "true" if key.value else "false"
        return str(key.value)

    def single(self, field: FieldDescriptor, value: Value) -> Any:
        kind = value.kind
        if kind == ValueKind.MESSAGE:
            return self.message(value.value)
        if kind == ValueKind.ENUM:
            return self.enum(field.enum_type, value.value)  # type: ignore[arg-type]
        if kind in (ValueKind.I64, ValueKind.U64):
            return str(value.value) if self.options.stringify_64_bit_integers else value.value
        if kind in (ValueKind.F32, ValueKind.F64):
            return format_float(value)
        if kind == ValueKind.BYTES:
            return base64.b64encode(value.value).decode("ascii")
        return value.value

    def enum(self, enum: EnumDescriptor, number: int) -> Any:
        if enum.full_name == well_known.NULL_VALUE:
            return None
        if self.options.use_enum_numbers:
            return number
        enum_value = enum.get_value(number)
        return number if enum_value is None else enum_value.name


class _SkipValue(Exception):
    """An unknown enum name was ignored; the value it was part of is dropped."""


class _Parser:
    def __init__(self, options: DeserializeOptions, message_class: type[DynamicMessage]) -> None:
        self.options = options
        self.message_class = message_class
        self.path: list[str] = []
        self.depth = 0

    @contextmanager
    def at(self, segment: str) -> Iterator[None]:
        """Track the position of the value being read, for error messages."""
        self.path.append(segment)
        try:
            yield
        finally:
            self.path.pop()

    def render_path(self) -> str:
        out = ""
        for segment in self.path:
            if segment.startswith("[") or not out:
                out += segment
            else:
                out += f".{segment}"
        return out

    def error(self, cls: type[JsonError], message: str) -> JsonError:
        return cls(message, self.render_path())

    def message(self, descriptor: MessageDescriptor, data: Any) -> DynamicMessage:
        if self.depth >= self.options.recursion_limit:
            raise RecursionLimitError(
                f"{self.render_path()}: nesting exceeds recursion limit {self.options.recursion_limit}"
            )
        self.depth += 1
        try:
            message = self.message_class(descriptor)
            reader = well_known.READERS.get(descriptor.full_name)
            if reader is not None:
                reader(self, message, data)
            else:
                self.fields(message, data)
            return message
        finally:
            self.depth -= 1

    def fields(self, message: DynamicMessage, data: Any) -> None:
        descriptor = message.descriptor()
        if not isinstance(data, dict):
            raise self.error(
                JsonTypeMismatchError,
                f"expected object for {descriptor.full_name}, got {well_known._json_type(data)}",
            )

        oneofs_seen: dict[int, str] = {}
        for key, item in data.items():
            field = self.lookup(descriptor, key)
            if field is None:
                if self.options.deny_unknown_fields:
                    with self.at(key):
                        raise self.error(
                            UnknownFieldError, f"{descriptor.full_name} has no field {key!r}"
                        )
                continue

            with self.at(key):
                if item is None and (field.is_list or field.is_map or not _accepts_null(field)):
                    continue
                oneof = field.real_containing_oneof
                if oneof is not None:
                    if oneof.index in oneofs_seen:
                        raise self.error(
                            JsonTypeMismatchError,
                            f"oneof {oneof.name} already set by {oneofs_seen[oneof.index]!r}",
                        )
                    oneofs_seen[oneof.index] = key
                try:
                    value = self.field_value(field, item)
                except _SkipValue:
                    continue
                message.set_field(field, value)

    def lookup(self, descriptor: MessageDescriptor, key: str) -> FieldDescriptor | None:
        field = descriptor.get_field_by_json_name(key) or descriptor.get_field_by_name(key)
        if field is None and key.startswith("[") and key.endswith("]"):
            extension = descriptor.pool.get_extension_by_name(key[1:-1])
            if extension is not None and extension.containing_message == descriptor:
                field = extension
        return field

    def field_value(self, field: FieldDescriptor, data: Any) -> Value:
        if field.is_map:
            if not isinstance(data, dict):
                raise self.error(
                    JsonTypeMismatchError, f"expected object for map, got {well_known._json_type(data)}"
                )
            entry = field.message_type
            key_field = entry.map_entry_key()  # type: ignore[union-attr]
            value_field = entry.map_entry_value()  # type: ignore[union-attr]
            entries: dict[Value, Value] = {}
            for key, item in data.items():
                with self.at(f"[{key}]"):
                    try:
                        entries[self.map_key(key_field, key)] = self.element(value_field, item)
                    except _SkipValue:
                        continue
            return Value(ValueKind.MAP, entries)

        if field.is_list:
            if not isinstance(data, list):
                raise self.error(
                    JsonTypeMismatchError, f"expected array, got {well_known._json_type(data)}"
                )
            items = []
            for i, item in enumerate(data):
                with self.at(f"[{i}]"):
                    try:
                        items.append(self.element(field, item))
                    except _SkipValue:
                        continue
            return Value(ValueKind.LIST, items)

        return self.single(field, data)

    def element(self, field: FieldDescriptor, data: Any) -> Value:
        if data is None and not _accepts_null(field):
            raise self.error(JsonTypeMismatchError, "null is not allowed here")
        return self.single(field, data)

    def map_key(self, field: FieldDescriptor, key: str) -> Value:
        kind = VALUE_KINDS[field.type]
        if kind == ValueKind.STRING:
            return Value(kind, key)
        if kind == ValueKind.BOOL:
            if key not in ("true", "false"):
                raise self.error(JsonTypeMismatchError, f"invalid bool map key {key!r}")
            return Value(kind, key == "true")
        return Value(kind, self.read_integer(kind, key))

    def single(self, field: FieldDescriptor, data: Any) -> Value:
        kind = VALUE_KINDS[field.type]
        if kind == ValueKind.MESSAGE:
            return Value(kind, self.message(field.message_type, data))  # type: ignore[arg-type]
        if kind == ValueKind.ENUM:
            return Value(kind, self.read_enum(field.enum_type, data))  # type: ignore[arg-type]
        if kind == ValueKind.BOOL:
            if not isinstance(data, bool):
                raise self.error(JsonTypeMismatchError, f"expected boolean, got {well_known._json_type(data)}")
            return Value(kind, data)
        if kind in INT_RANGES:
            return Value(kind, self.read_integer(kind, data))
        if kind in (ValueKind.F32, ValueKind.F64):
            return Value(kind, self.read_float(kind, data))
        if kind == ValueKind.STRING:
            if not isinstance(data, str):
                raise self.error(JsonTypeMismatchError, f"expected string, got {well_known._json_type(data)}")
            return Value(kind, data)
        return Value(kind, self.read_bytes(data))

    def read_integer(self, kind: ValueKind, data: Any) -> int:
        number: int | None = None
        if isinstance(data, bool):
            pass
        elif isinstance(data, int):
            number = data
        elif isinstance(data, float):
            if math.isfinite(data) and data.is_integer():
                number = int(data)
        elif isinstance(data, str):
            if _INTEGER_RE.match(data):
                number = int(data)
            elif _NUMBER_RE.match(data):
                try:
                    exact = Decimal(data)
                except InvalidOperation:
                    exact = None
                if exact is not None and exact == exact.to_integral_value():
                    number = int(exact)
        if number is None:
            raise self.error(JsonTypeMismatchError, f"{data!r} is not a valid {kind.value} integer")
        low, high = INT_RANGES[kind]
        if not low <= number <= high:
            raise self.error(JsonTypeMismatchError, f"{number} is out of range for {kind.value}")
        return number

    def read_float(self, kind: ValueKind, data: Any) -> float:
        if isinstance(data, str):
            if data in _SPECIAL_FLOATS:
                return _SPECIAL_FLOATS[data]
            if not _NUMBER_RE.match(data):
                raise self.error(JsonTypeMismatchError, f"{data!r} is not a valid number")
            number = float(data)
        elif isinstance(data, (int, float)) and not isinstance(data, bool):
            try:
                number = float(data)
            except OverflowError as e:
                raise self.error(JsonTypeMismatchError, f"{data} is out of range") from e
        else:
            raise self.error(JsonTypeMismatchError, f"expected number, got {well_known._json_type(data)}")

        if math.isinf(number):
            raise self.error(JsonTypeMismatchError, f"{data} is out of range for {kind.value}")
        if kind == ValueKind.F32:
            if abs(number) > _FLOAT32_MAX:
                raise self.error(JsonTypeMismatchError, f"{data} is out of range for f32")
            return round_float32(number)
        return number

    def read_bytes(self, data: Any) -> bytes:
        if not isinstance(data, str):
            raise self.error(JsonTypeMismatchError, f"expected base64 string, got {well_known._json_type(data)}")
        text = data.replace("-", "+").replace("_", "/").rstrip("=")
        if len(text) % 4 == 1:
            raise self.error(InvalidBase64Error, f"invalid base64 length in {data!r}")
        text += "=" * (-len(text) % 4)
        try:
            return base64.b64decode(text, validate=True)
        except binascii.Error as e:
            raise self.error(InvalidBase64Error, f"invalid base64 {data!r}: {e}") from e

    def read_enum(self, enum: EnumDescriptor, data: Any) -> int:
        if enum.full_name == well_known.NULL_VALUE and data is None:
            return 0
        if isinstance(data, str):
            enum_value = enum.get_value_by_name(data)
            if enum_value is None:
                if not self.options.deny_unknown_fields:
                    raise _SkipValue()
                raise self.error(InvalidEnumNameError, f"{data!r} is not a value of {enum.full_name}")
            return enum_value.number
        return self.read_integer(ValueKind.ENUM, data)


def _accepts_null(field: FieldDescriptor) -> bool:
    message = field.message_type
    if message is not None:
        return message.full_name == well_known.VALUE
    enum = field.enum_type
    return enum is not None and enum.full_name == well_known.NULL_VALUE
