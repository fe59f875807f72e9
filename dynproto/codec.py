"""Field-level protobuf wire encoding and decoding for dynamic messages."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .descriptor.handles import FieldDescriptor
from .descriptor.types import FieldType
from .errors import (
    EncodeError,
    InvalidTextError,
    RecursionLimitError,
    TruncatedError,
    UnexpectedWireTypeError,
)
from .value import VALUE_KINDS, Value, ValueKind, zero_scalar
from .wire import (
    Reader,
    WireType,
    Writer,
    to_signed32,
    to_signed64,
    zigzag_decode,
    zigzag_encode,
)

if TYPE_CHECKING:
    from .message import DynamicMessage

logger = logging.getLogger(__name__)

_UINT32_MASK = (1 << 32) - 1


@dataclass(frozen=True, slots=True)
class UnknownField:
    """A field the descriptor does not declare, kept for re-encoding.

    ``data`` holds the bytes that followed the tag on the wire: the varint,
    the fixed-width value, the length prefix and payload, or the group body
    including its end tag.
    """

    number: int
    wire_type: WireType
    data: bytes


def read_scalar(reader: Reader, field_type: FieldType) -> Any:
    """Read one scalar or enum payload of the given declared type."""
    if field_type == FieldType.INT32 or field_type == FieldType.ENUM:
        return to_signed32(reader.read_varint())
    if field_type == FieldType.INT64:
        return to_signed64(reader.read_varint())
    if field_type == FieldType.UINT32:
        return reader.read_varint() & _UINT32_MASK
    if field_type == FieldType.UINT64:
        return reader.read_varint()
    if field_type == FieldType.SINT32:
        return zigzag_decode(reader.read_varint() & _UINT32_MASK)
    if field_type == FieldType.SINT64:
        return zigzag_decode(reader.read_varint())
    if field_type == FieldType.BOOL:
        return reader.read_varint() != 0
    if field_type == FieldType.FIXED32:
        return reader.read_fixed32()
    if field_type == FieldType.SFIXED32:
        return reader.read_sfixed32()
    if field_type == FieldType.FIXED64:
        return reader.read_fixed64()
    if field_type == FieldType.SFIXED64:
        return reader.read_sfixed64()
    if field_type == FieldType.FLOAT:
        return reader.read_float()
    if field_type == FieldType.DOUBLE:
        return reader.read_double()
    if field_type == FieldType.STRING:
        data = reader.read_length_delimited()
        try:
            return str(data, "utf-8")
        except UnicodeDecodeError as e:
            raise InvalidTextError(f"string field holds invalid UTF-8: {e}") from e
    if field_type == FieldType.BYTES:
        return bytes(reader.read_length_delimited())
    raise UnexpectedWireTypeError(f"{field_type.name} is not a scalar type")


def write_scalar(writer: Writer, field_type: FieldType, payload: Any) -> None:
    """Write one scalar or enum payload, without its tag."""
    if field_type in (FieldType.INT32, FieldType.INT64, FieldType.UINT32, FieldType.UINT64):
        writer.write_varint(payload)
    elif field_type == FieldType.ENUM:
        writer.write_varint(payload)
    elif field_type in (FieldType.SINT32, FieldType.SINT64):
        writer.write_varint(zigzag_encode(payload))
    elif field_type == FieldType.BOOL:
        writer.write_varint(1 if payload else 0)
    elif field_type == FieldType.FIXED32:
        writer.write_fixed32(payload)
    elif field_type == FieldType.SFIXED32:
        writer.write_sfixed32(payload)
    elif field_type == FieldType.FIXED64:
        writer.write_fixed64(payload)
    elif field_type == FieldType.SFIXED64:
        writer.write_sfixed64(payload)
    elif field_type == FieldType.FLOAT:
        writer.write_float(payload)
    elif field_type == FieldType.DOUBLE:
        writer.write_double(payload)
    elif field_type == FieldType.STRING:
        try:
            writer.write_length_delimited(payload.encode("utf-8"))
        except UnicodeEncodeError as e:
            raise EncodeError(f"string cannot be encoded as UTF-8: {e}") from e
    elif field_type == FieldType.BYTES:
        writer.write_length_delimited(payload)
    else:
        raise EncodeError(f"{field_type.name} is not a scalar type")


def merge_message(
    message: "DynamicMessage", reader: Reader, depth: int, end_group: int | None = None
) -> None:
    """Merge wire data from ``reader`` into ``message``.

    Args:
        message: The message to merge into; it is mutated in place.
        reader: The input, bounded to this message's bytes.
        depth: Remaining nesting depth; nested messages and groups use one
            level each.
        end_group: For a group body, the field number whose end tag
            terminates it.
    """
    if depth <= 0:
        logger.debug("Recursion limit reached decoding %s", message.descriptor().full_name)
        raise RecursionLimitError(f"nesting exceeds recursion limit in {message.descriptor().full_name}")

    descriptor = message.descriptor()
    while not reader.at_end():
        number, wire_type = reader.read_tag()
        if wire_type == WireType.END_GROUP:
            if number == end_group:
                return
            raise UnexpectedWireTypeError(f"unmatched end group tag for field {number}")

        field = descriptor.get_field(number)
        if field is None:
            field = descriptor.get_extension(number)
        if field is None:
            start = reader.pos
            reader.skip_field(number, wire_type, depth)
            message._unknown.append(UnknownField(number, wire_type, reader.slice(start, reader.pos)))
            continue
        _merge_field(message, field, reader, wire_type, depth)

    if end_group is not None:
        raise TruncatedError(f"group {end_group} is missing its end tag")


def _check_wire_type(field: FieldDescriptor, wire_type: WireType) -> None:
    expected = field.wire_type
    if wire_type != expected:
        raise UnexpectedWireTypeError(
            f"{field.full_name} is {field.type.name}, which cannot be read from {wire_type.name}"
        )


def decode_field(
    reader: Reader,
    field: FieldDescriptor,
    wire_type: WireType,
    depth: int,
    message_class: type["DynamicMessage"],
) -> Value:
    """Decode one occurrence of ``field`` by its declared kind.

    A packed blob yields a LIST of every value in it and a map entry yields
    a MAP holding that one entry. Folding the result into a message is left
    to the caller.
    """
    if field.is_map:
        if wire_type != WireType.LENGTH_DELIMITED:
            raise UnexpectedWireTypeError(f"map field {field.full_name} read from {wire_type.name}")
        key, value = _read_map_entry(message_class, field, reader.sub_reader(), depth)
        return Value(ValueKind.MAP, {key: value})

    kind = VALUE_KINDS[field.type]
    if field.is_list and wire_type == WireType.LENGTH_DELIMITED and field.is_packable:
        packed = reader.sub_reader()
        items = []
        while not packed.at_end():
            items.append(Value(kind, read_scalar(packed, field.type)))
        return Value(ValueKind.LIST, items)

    _check_wire_type(field, wire_type)
    if kind == ValueKind.MESSAGE:
        item = message_class(field.message_type)  # type: ignore[arg-type]
        _read_message_body(item, field, reader, depth)
        return Value(kind, item)
    return Value(kind, read_scalar(reader, field.type))


def _merge_field(
    message: "DynamicMessage",
    field: FieldDescriptor,
    reader: Reader,
    wire_type: WireType,
    depth: int,
) -> None:
    if field.is_map:
        entry = decode_field(reader, field, wire_type, depth, type(message))
        message._mutable_map(field).update(entry.value)
        return

    if field.is_list:
        decoded = decode_field(reader, field, wire_type, depth, type(message))
        items = message._mutable_list(field)
        if decoded.kind == ValueKind.LIST:
            items.extend(decoded.value)
        else:
            items.append(decoded)
        return

    if VALUE_KINDS[field.type] == ValueKind.MESSAGE:
        # A repeated occurrence of a singular message merges into the first.
        _check_wire_type(field, wire_type)
        _read_message_body(message._mutable_message(field), field, reader, depth)
        return
    message._set(field, decode_field(reader, field, wire_type, depth, type(message)))


def _read_message_body(
    target: "DynamicMessage", field: FieldDescriptor, reader: Reader, depth: int
) -> None:
    if field.type == FieldType.GROUP:
        merge_message(target, reader, depth - 1, end_group=field.number)
    else:
        merge_message(target, reader.sub_reader(), depth - 1)


def _read_map_entry(
    message_class: type["DynamicMessage"], field: FieldDescriptor, reader: Reader, depth: int
) -> tuple[Value, Value]:
    entry = field.message_type
    key_field = entry.map_entry_key()  # type: ignore[union-attr]
    value_field = entry.map_entry_value()  # type: ignore[union-attr]
    value_kind = VALUE_KINDS[value_field.type]

    key: Value | None = None
    value: Value | None = None
    while not reader.at_end():
        number, wire_type = reader.read_tag()
        if number == 1 and wire_type == key_field.wire_type:
            key = Value(VALUE_KINDS[key_field.type], read_scalar(reader, key_field.type))
        elif number == 2 and wire_type == value_field.wire_type:
            if value_kind == ValueKind.MESSAGE:
                if value is None:
                    value = Value(value_kind, message_class(value_field.message_type))  # type: ignore[arg-type]
                merge_message(value.value, reader.sub_reader(), depth - 1)
            else:
                value = Value(value_kind, read_scalar(reader, value_field.type))
        else:
            reader.skip_field(number, wire_type, depth)

    if key is None:
        key = zero_scalar(key_field)
    if value is None:
        if value_kind == ValueKind.MESSAGE:
            value = Value(value_kind, message_class(value_field.message_type))  # type: ignore[arg-type]
        else:
            value = zero_scalar(value_field)
    return key, value


def encode_message(message: "DynamicMessage", writer: Writer) -> None:
    """Write known fields by number, then extensions, then unknown fields."""
    for field, value in message._present_items():
        encode_field(writer, field, value)
    for unknown in message._unknown:
        writer.write_tag(unknown.number, unknown.wire_type)
        writer.write_raw(unknown.data)


def encode_field(writer: Writer, field: FieldDescriptor, value: Value) -> None:
    """Write every occurrence of one field, tags included."""
    if field.is_map:
        entry = field.message_type
        key_field = entry.map_entry_key()  # type: ignore[union-attr]
        value_field = entry.map_entry_value()  # type: ignore[union-attr]
        for key, item in value.value.items():
            body = Writer()
            _write_single(body, key_field, key)
            _write_single(body, value_field, item)
            writer.write_tag(field.number, WireType.LENGTH_DELIMITED)
            writer.write_length_delimited(body.getvalue())
    elif field.is_list:
        items = value.value
        if not items:
            return
        if field.is_packed:
            packed = Writer()
            for item in items:
                write_scalar(packed, field.type, item.value)
            writer.write_tag(field.number, WireType.LENGTH_DELIMITED)
            writer.write_length_delimited(packed.getvalue())
        else:
            for item in items:
                _write_single(writer, field, item)
    else:
        _write_single(writer, field, value)


def _write_single(writer: Writer, field: FieldDescriptor, value: Value) -> None:
    if field.type == FieldType.GROUP:
        writer.write_tag(field.number, WireType.START_GROUP)
        encode_message(value.value, writer)
        writer.write_tag(field.number, WireType.END_GROUP)
    elif field.type == FieldType.MESSAGE:
        body = Writer()
        encode_message(value.value, body)
        writer.write_tag(field.number, WireType.LENGTH_DELIMITED)
        writer.write_length_delimited(body.getvalue())
    else:
        writer.write_tag(field.number, field.wire_type)
        write_scalar(writer, field.type, value.value)
