"""DynamicMessage: a protobuf message whose type is known only at runtime."""

from collections.abc import Iterator, Mapping
from typing import Any, Self, TypeVar

from .codec import UnknownField, encode_message, merge_message
from .descriptor.handles import FieldDescriptor, MessageDescriptor
from .errors import (
    TruncatedError,
    TypeMismatchError,
    UnknownFieldNameError,
    UnknownFieldNumberError,
)
from .value import (
    MAP_KEY_KINDS,
    VALUE_KINDS,
    Value,
    ValueKind,
    check_scalar,
    default_scalar,
    is_zero,
)
from .wire import Reader, Writer, encode_varint

DEFAULT_RECURSION_LIMIT = 100

TDecoded = TypeVar("TDecoded")

FieldKey = int | str | FieldDescriptor


class DynamicMessage:
    """A mutable message bound to a MessageDescriptor.

    Only explicitly set fields are stored; reads of unset fields return
    None from get_field() or the declared default from
    get_field_or_default(). Fields the descriptor does not know about are
    kept verbatim and written back out by encode().

    Example:
        point = pool.get_message_by_name("geo.Point")
        message = DynamicMessage(point)
        message.set_field("x", 150)
        assert message.encode() == b"\\x08\\x96\\x01"
    """

    __slots__ = ("_descriptor", "_fields", "_extensions", "_unknown", "_oneof_cases")

    def __init__(self, descriptor: MessageDescriptor) -> None:
        self._descriptor = descriptor
        self._fields: dict[int, Value] = {}
        self._extensions: dict[int, Value] = {}
        self._unknown: list[UnknownField] = []
        # oneof index -> number of the member that was set last
        self._oneof_cases: dict[int, int] = {}

    def descriptor(self) -> MessageDescriptor:
        return self._descriptor

    # Wire format

    @classmethod
    def decode(
        cls,
        descriptor: MessageDescriptor,
        data: bytes | memoryview,
        *,
        recursion_limit: int = DEFAULT_RECURSION_LIMIT,
    ) -> Self:
        """Decode a message from protobuf binary data.

        Raises:
            WireDecodeError: The data is not a valid encoding of the message.
        """
        message = cls(descriptor)
        merge_message(message, Reader(data), recursion_limit)
        return message

    @classmethod
    def decode_length_delimited(
        cls,
        descriptor: MessageDescriptor,
        data: bytes | memoryview,
        *,
        recursion_limit: int = DEFAULT_RECURSION_LIMIT,
    ) -> tuple[Self, int]:
        """Decode a varint-length-prefixed message.

        Returns:
            Tuple of (message, bytes_consumed).
        """
        reader = Reader(data)
        size = reader.read_varint()
        start = reader.pos
        if size > reader.remaining():
            raise TruncatedError(f"message of {size} bytes exceeds buffer")
        message = cls(descriptor)
        merge_message(message, Reader(data, start, start + size), recursion_limit)
        return message, start + size

    def merge(self, data: bytes | memoryview, *, recursion_limit: int = DEFAULT_RECURSION_LIMIT) -> None:
        """Merge protobuf binary data into this message.

        The data is decoded into a copy first, so the message is unchanged
        if decoding fails.
        """
        scratch = self.clone()
        merge_message(scratch, Reader(data), recursion_limit)
        self._fields = scratch._fields
        self._extensions = scratch._extensions
        self._unknown = scratch._unknown
        self._oneof_cases = scratch._oneof_cases

    def encode(self) -> bytes:
        writer = Writer()
        encode_message(self, writer)
        return writer.getvalue()

    def encode_length_delimited(self) -> bytes:
        body = self.encode()
        return encode_varint(len(body)) + body

    def encoded_len(self) -> int:
        return len(self.encode())

    def transcode_to(self, cls: type[TDecoded]) -> TDecoded:
        """Re-decode this message as a static type with a ``decode`` classmethod."""
        return cls.decode(self.encode())  # type: ignore[attr-defined]

    # Field access

    def _resolve(self, key: FieldKey) -> FieldDescriptor:
        if isinstance(key, FieldDescriptor):
            if key.containing_message != self._descriptor:
                raise UnknownFieldNameError(
                    f"{key.full_name} is not a field of {self._descriptor.full_name}"
                )
            return key
        if isinstance(key, str):
            field = self._descriptor.get_field_by_name(key)
            if field is None:
                raise UnknownFieldNameError(f"{self._descriptor.full_name} has no field {key!r}")
            return field
        field = self._descriptor.get_field(key)
        if field is None:
            raise UnknownFieldNumberError(f"{self._descriptor.full_name} has no field number {key}")
        return field

    def _store(self, field: FieldDescriptor) -> dict[int, Value]:
        return self._extensions if field.is_extension else self._fields

    def _is_present(self, field: FieldDescriptor, value: Value) -> bool:
        if value.kind in (ValueKind.LIST, ValueKind.MAP):
            return bool(value.value)
        if field.supports_presence:
            return True
        return not is_zero(value)

    def get_field(self, key: FieldKey) -> Value | None:
        """The field's value, or None if it is not present."""
        field = self._resolve(key)
        value = self._store(field).get(field.number)
        if value is None or not self._is_present(field, value):
            return None
        return value

    def get_field_or_default(self, key: FieldKey) -> Value:
        """The field's value, or its default if unset. Presence is unchanged."""
        field = self._resolve(key)
        value = self._store(field).get(field.number)
        if value is not None:
            return value
        return default_value(field, type(self))

    def has_field(self, key: FieldKey) -> bool:
        field = self._resolve(key)
        value = self._store(field).get(field.number)
        return value is not None and self._is_present(field, value)

    def set_field(self, key: FieldKey, value: Any) -> None:
        """Set a field from a Value or a plain Python object.

        Plain objects are converted to the field's kind: ints, floats,
        bools, str and bytes for scalars, an int or value name for enums,
        a DynamicMessage or a dict of field names for messages, any
        iterable for repeated fields and a dict for maps.

        Raises:
            TypeMismatchError: The value does not fit the field.
        """
        field = self._resolve(key)
        self._set(field, coerce_value(field, value, type(self)))

    def clear_field(self, key: FieldKey) -> None:
        field = self._resolve(key)
        self._store(field).pop(field.number, None)
        oneof = field.containing_oneof
        if oneof is not None and self._oneof_cases.get(oneof.index) == field.number:
            del self._oneof_cases[oneof.index]

    def which_oneof(self, name: str) -> FieldDescriptor | None:
        """The member of the named oneof that is set, if any."""
        oneof = self._descriptor.get_oneof_by_name(name)
        if oneof is None:
            raise UnknownFieldNameError(f"{self._descriptor.full_name} has no oneof {name!r}")
        number = self._oneof_cases.get(oneof.index)
        return None if number is None else self._descriptor.get_field(number)

    def fields(self) -> Iterator[tuple[FieldDescriptor, Value]]:
        """Present fields in number order, then present extensions."""
        return iter(self._present_items())

    # Extensions

    def _resolve_extension(self, extension: FieldDescriptor) -> FieldDescriptor:
        if not extension.is_extension or extension.containing_message != self._descriptor:
            raise UnknownFieldNumberError(
                f"{extension.full_name} is not an extension of {self._descriptor.full_name}"
            )
        return extension

    def get_extension(self, extension: FieldDescriptor) -> Value | None:
        return self.get_field(self._resolve_extension(extension))

    def set_extension(self, extension: FieldDescriptor, value: Any) -> None:
        self.set_field(self._resolve_extension(extension), value)

    def has_extension(self, extension: FieldDescriptor) -> bool:
        return self.has_field(self._resolve_extension(extension))

    def clear_extension(self, extension: FieldDescriptor) -> None:
        self.clear_field(self._resolve_extension(extension))

    # Unknown fields

    def unknown_fields(self) -> list[UnknownField]:
        return list(self._unknown)

    def clear_unknown_fields(self) -> None:
        self._unknown = []

    # Whole-message operations

    def clear(self) -> None:
        self._fields = {}
        self._extensions = {}
        self._unknown = []
        self._oneof_cases = {}

    def clone(self) -> Self:
        """A deep copy."""
        copy = type(self)(self._descriptor)
        copy._fields = {n: _copy_value(v) for n, v in self._fields.items()}
        copy._extensions = {n: _copy_value(v) for n, v in self._extensions.items()}
        copy._unknown = list(self._unknown)
        copy._oneof_cases = dict(self._oneof_cases)
        return copy

    def merge_from(self, other: "DynamicMessage") -> None:
        """Merge another message of the same type into this one.

        Singular fields present in ``other`` overwrite, messages merge
        recursively, lists append and map entries overwrite by key.
        """
        if other._descriptor != self._descriptor:
            raise TypeMismatchError(
                f"cannot merge {other._descriptor.full_name} into {self._descriptor.full_name}"
            )
        for field, value in other._present_items():
            if value.kind == ValueKind.LIST:
                self._mutable_list(field).extend(_copy_value(v) for v in value.value)
            elif value.kind == ValueKind.MAP:
                self._mutable_map(field).update(
                    (k, _copy_value(v)) for k, v in value.value.items()
                )
            elif value.kind == ValueKind.MESSAGE:
                self._mutable_message(field).merge_from(value.value)
            else:
                self._set(field, value)
        self._unknown.extend(other._unknown)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DynamicMessage):
            return NotImplemented
        return (
            self._descriptor == other._descriptor
            and self._present_items() == other._present_items()
            and self._unknown == other._unknown
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        parts = [f"{field.name}={_repr_value(value)}" for field, value in self._present_items()]
        if self._unknown:
            parts.append(f"<{len(self._unknown)} unknown>")
        return f"{self._descriptor.full_name}({', '.join(parts)})"

    # Internal helpers shared with the codec

    def _present_items(self) -> list[tuple[FieldDescriptor, Value]]:
        items = []
        for store in (self._fields, self._extensions):
            for number in sorted(store):
                value = store[number]
                if store is self._fields:
                    field = self._descriptor.get_field(number)
                else:
                    field = self._descriptor.get_extension(number)
                if field is not None and self._is_present(field, value):
                    items.append((field, value))
        return items

    def _set(self, field: FieldDescriptor, value: Value) -> None:
        oneof = field.containing_oneof
        if oneof is not None:
            current = self._oneof_cases.get(oneof.index)
            if current is not None and current != field.number:
                self._fields.pop(current, None)
            self._oneof_cases[oneof.index] = field.number
        self._store(field)[field.number] = value

    def _mutable_list(self, field: FieldDescriptor) -> list[Value]:
        store = self._store(field)
        value = store.get(field.number)
        if value is None:
            value = store[field.number] = Value(ValueKind.LIST, [])
        return value.value

    def _mutable_map(self, field: FieldDescriptor) -> dict[Value, Value]:
        store = self._store(field)
        value = store.get(field.number)
        if value is None:
            value = store[field.number] = Value(ValueKind.MAP, {})
        return value.value

    def _mutable_message(self, field: FieldDescriptor) -> "DynamicMessage":
        value = self._store(field).get(field.number)
        if value is None:
            value = Value(ValueKind.MESSAGE, type(self)(field.message_type))  # type: ignore[arg-type]
            self._set(field, value)
        return value.value


def _copy_value(value: Value) -> Value:
    if value.kind == ValueKind.MESSAGE:
        return Value(value.kind, value.value.clone())
    if value.kind == ValueKind.LIST:
        return Value(value.kind, [_copy_value(v) for v in value.value])
    if value.kind == ValueKind.MAP:
        return Value(value.kind, {k: _copy_value(v) for k, v in value.value.items()})
    return value


def _repr_value(value: Value) -> str:
    if value.kind == ValueKind.LIST:
        return "[" + ", ".join(_repr_value(v) for v in value.value) + "]"
    if value.kind == ValueKind.MAP:
        return "{" + ", ".join(f"{k.value!r}: {_repr_value(v)}" for k, v in value.value.items()) + "}"
    return repr(value.value)


def default_value(field: FieldDescriptor, message_class: type[DynamicMessage] = DynamicMessage) -> Value:
    """The value an unset field reads as."""
    if field.is_map:
        return Value(ValueKind.MAP, {})
    if field.is_list:
        return Value(ValueKind.LIST, [])
    if field.message_type is not None:
        return Value(ValueKind.MESSAGE, message_class(field.message_type))
    return default_scalar(field)


def coerce_value(
    field: FieldDescriptor, obj: Any, message_class: type[DynamicMessage] = DynamicMessage
) -> Value:
    """Convert a Value or plain Python object to a Value fit for ``field``."""
    if field.is_map:
        return _coerce_map(field, obj, message_class)
    if field.is_list:
        if isinstance(obj, Value):
            if obj.kind != ValueKind.LIST:
                raise TypeMismatchError(f"{field.full_name} is repeated, got {obj.kind.value}")
            items = obj.value
        elif isinstance(obj, (str, bytes, bytearray, Mapping)) or not hasattr(obj, "__iter__"):
            raise TypeMismatchError(f"{field.full_name} is repeated, got {type(obj).__name__}")
        else:
            items = obj
        return Value(ValueKind.LIST, [coerce_single(field, item, message_class) for item in items])
    return coerce_single(field, obj, message_class)


def _coerce_map(
    field: FieldDescriptor, obj: Any, message_class: type[DynamicMessage]
) -> Value:
    entry = field.message_type
    key_field = entry.map_entry_key()  # type: ignore[union-attr]
    value_field = entry.map_entry_value()  # type: ignore[union-attr]
    if isinstance(obj, Value):
        if obj.kind != ValueKind.MAP:
            raise TypeMismatchError(f"{field.full_name} is a map, got {obj.kind.value}")
        obj = obj.value
    if not isinstance(obj, Mapping):
        raise TypeMismatchError(f"{field.full_name} is a map, got {type(obj).__name__}")
    entries = {}
    for key, item in obj.items():
        key_value = coerce_single(key_field, key, message_class)
        if key_value.kind not in MAP_KEY_KINDS:
            raise TypeMismatchError(f"{field.full_name} has invalid key kind {key_value.kind.value}")
        entries[key_value] = coerce_single(value_field, item, message_class)
    return Value(ValueKind.MAP, entries)


def coerce_single(
    field: FieldDescriptor, obj: Any, message_class: type[DynamicMessage] = DynamicMessage
) -> Value:
    """Convert one element (not a list or map) for ``field``."""
    kind = VALUE_KINDS[field.type]
    if isinstance(obj, Value):
        if obj.kind != kind:
            raise TypeMismatchError(f"{field.full_name} expects {kind.value}, got {obj.kind.value}")
        obj = obj.value

    if kind == ValueKind.MESSAGE:
        expected = field.message_type
        if isinstance(obj, DynamicMessage):
            if obj.descriptor() != expected:
                raise TypeMismatchError(
                    f"{field.full_name} expects {expected.full_name}, "  # type: ignore[union-attr]
                    f"got {obj.descriptor().full_name}"
                )
            return Value(kind, obj)
        if isinstance(obj, Mapping):
            message = message_class(expected)  # type: ignore[arg-type]
            for name, item in obj.items():
                message.set_field(name, item)
            return Value(kind, message)
        raise TypeMismatchError(f"{field.full_name} expects a message, got {type(obj).__name__}")

    if kind == ValueKind.ENUM and isinstance(obj, str):
        enum_value = field.enum_type.get_value_by_name(obj)  # type: ignore[union-attr]
        if enum_value is None:
            raise TypeMismatchError(f"{field.full_name}: {obj!r} is not a value of {field.type_name}")
        obj = enum_value.number

    try:
        return Value(kind, check_scalar(kind, obj))
    except TypeMismatchError as e:
        raise TypeMismatchError(f"{field.full_name}: {e}") from e
