"""Bootstrap codec for descriptor.proto records.

A descriptor set is itself protobuf data, described by descriptor.proto.
Decoding it with DynamicMessage would need a pool, which is what is being
built, so the subset of descriptor.proto the pool consumes is written out
here as plain dataclasses. Each field carries its number and wire type in
dataclass metadata and one generic routine reads or writes any of them.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, fields
from functools import cache
from typing import Any, TypeVar

from ..errors import MalformedDescriptorBytesError, WireDecodeError
from ..wire import Reader, WireType, Writer, to_signed32

# Descriptor records are shallow; this only guards against hostile input.
_MAX_DEPTH = 100

_SCALARS = frozenset(["string", "bytes", "int32", "bool"])

_RECORDS: dict[str, type] = {}

TRecord = TypeVar("TRecord")


@dataclass(frozen=True)
class ProtoFieldInfo:
    """Metadata for a descriptor record field."""

    number: int
    type: str  # a scalar name, or the name of another record class
    repeated: bool = False


def proto_field(number: int, type: str, *, repeated: bool = False) -> Any:
    """Define a record field with its descriptor.proto number and type.

    Args:
        number: The field number in descriptor.proto.
        type: "string", "bytes", "int32", "bool", or a record class name.
        repeated: Whether the field is a list.

    Returns:
        A dataclass field with proto metadata attached. Singular fields
        default to None (absent), repeated fields to an empty list.
    """
    metadata = {"proto": ProtoFieldInfo(number, type, repeated)}
    if repeated:
        return field(default_factory=list, metadata=metadata)
    return field(default=None, metadata=metadata)


def _record(cls: type[TRecord]) -> type[TRecord]:
    _RECORDS[cls.__name__] = cls
    return cls


@_record
@dataclass
class FieldOptions:
    packed: bool | None = proto_field(2, "bool")
    deprecated: bool | None = proto_field(3, "bool")


@_record
@dataclass
class MessageOptions:
    deprecated: bool | None = proto_field(3, "bool")
    map_entry: bool | None = proto_field(7, "bool")


@_record
@dataclass
class EnumOptions:
    allow_alias: bool | None = proto_field(2, "bool")
    deprecated: bool | None = proto_field(3, "bool")


@_record
@dataclass
class FieldDescriptorProto:
    name: str | None = proto_field(1, "string")
    extendee: str | None = proto_field(2, "string")
    number: int | None = proto_field(3, "int32")
    label: int | None = proto_field(4, "int32")
    type: int | None = proto_field(5, "int32")
    type_name: str | None = proto_field(6, "string")
    default_value: str | None = proto_field(7, "string")
    options: FieldOptions | None = proto_field(8, "FieldOptions")
    oneof_index: int | None = proto_field(9, "int32")
    json_name: str | None = proto_field(10, "string")
    proto3_optional: bool | None = proto_field(17, "bool")


@_record
@dataclass
class OneofDescriptorProto:
    name: str | None = proto_field(1, "string")


@_record
@dataclass
class EnumValueDescriptorProto:
    name: str | None = proto_field(1, "string")
    number: int | None = proto_field(2, "int32")


@_record
@dataclass
class EnumDescriptorProto:
    name: str | None = proto_field(1, "string")
    value: list[EnumValueDescriptorProto] = proto_field(
        2, "EnumValueDescriptorProto", repeated=True
    )
    options: EnumOptions | None = proto_field(3, "EnumOptions")
    reserved_name: list[str] = proto_field(5, "string", repeated=True)


@_record
@dataclass
class ExtensionRange:
    start: int | None = proto_field(1, "int32")
    end: int | None = proto_field(2, "int32")


@_record
@dataclass
class ReservedRange:
    start: int | None = proto_field(1, "int32")
    end: int | None = proto_field(2, "int32")


@_record
@dataclass
class DescriptorProto:
    name: str | None = proto_field(1, "string")
    field: list[FieldDescriptorProto] = proto_field(2, "FieldDescriptorProto", repeated=True)
    nested_type: list["DescriptorProto"] = proto_field(3, "DescriptorProto", repeated=True)
    enum_type: list[EnumDescriptorProto] = proto_field(4, "EnumDescriptorProto", repeated=True)
    extension_range: list[ExtensionRange] = proto_field(5, "ExtensionRange", repeated=True)
    extension: list[FieldDescriptorProto] = proto_field(6, "FieldDescriptorProto", repeated=True)
    options: MessageOptions | None = proto_field(7, "MessageOptions")
    oneof_decl: list[OneofDescriptorProto] = proto_field(8, "OneofDescriptorProto", repeated=True)
    reserved_range: list[ReservedRange] = proto_field(9, "ReservedRange", repeated=True)
    reserved_name: list[str] = proto_field(10, "string", repeated=True)


@_record
@dataclass
class MethodDescriptorProto:
    name: str | None = proto_field(1, "string")
    input_type: str | None = proto_field(2, "string")
    output_type: str | None = proto_field(3, "string")
    client_streaming: bool | None = proto_field(5, "bool")
    server_streaming: bool | None = proto_field(6, "bool")


@_record
@dataclass
class ServiceDescriptorProto:
    name: str | None = proto_field(1, "string")
    method: list[MethodDescriptorProto] = proto_field(2, "MethodDescriptorProto", repeated=True)


@_record
@dataclass
class FileDescriptorProto:
    name: str | None = proto_field(1, "string")
    package: str | None = proto_field(2, "string")
    dependency: list[str] = proto_field(3, "string", repeated=True)
    message_type: list[DescriptorProto] = proto_field(4, "DescriptorProto", repeated=True)
    enum_type: list[EnumDescriptorProto] = proto_field(5, "EnumDescriptorProto", repeated=True)
    service: list[ServiceDescriptorProto] = proto_field(6, "ServiceDescriptorProto", repeated=True)
    extension: list[FieldDescriptorProto] = proto_field(7, "FieldDescriptorProto", repeated=True)
    public_dependency: list[int] = proto_field(10, "int32", repeated=True)
    syntax: str | None = proto_field(12, "string")


@cache
def _field_table(cls: type) -> dict[int, tuple[str, ProtoFieldInfo]]:
    table: dict[int, tuple[str, ProtoFieldInfo]] = {}
    for f in fields(cls):
        info = f.metadata["proto"]
        table[info.number] = (f.name, info)
    return table


def _expected_wire_type(type_name: str) -> WireType:
    if type_name in ("int32", "bool"):
        return WireType.VARINT
    return WireType.LENGTH_DELIMITED


def _read_scalar(type_name: str, reader: Reader) -> Any:
    if type_name == "int32":
        return to_signed32(reader.read_varint())
    if type_name == "bool":
        return reader.read_varint() != 0
    data = bytes(reader.read_length_delimited())
    if type_name == "bytes":
        return data
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedDescriptorBytesError(f"invalid UTF-8 in descriptor string: {e}") from e


def decode_record(cls: type[TRecord], data: bytes | memoryview, depth: int = _MAX_DEPTH) -> TRecord:
    """Decode one descriptor record. Unknown fields are skipped."""
    if depth <= 0:
        raise MalformedDescriptorBytesError("descriptor nesting is too deep")

    table = _field_table(cls)
    record = cls()
    reader = Reader(data)
    while not reader.at_end():
        number, wire_type = reader.read_tag()
        entry = table.get(number)
        if entry is None:
            reader.skip_field(number, wire_type, depth)
            continue

        name, info = entry
        if info.repeated and info.type in ("int32", "bool") and wire_type == WireType.LENGTH_DELIMITED:
            packed = reader.sub_reader()
            items = getattr(record, name)
            while not packed.at_end():
                items.append(_read_scalar(info.type, packed))
            continue

        expected = _expected_wire_type(info.type)
        if wire_type != expected:
            raise MalformedDescriptorBytesError(
                f"{cls.__name__}.{name} has wire type {wire_type.name}, expected {expected.name}"
            )

        if info.type in _SCALARS:
            value = _read_scalar(info.type, reader)
        else:
            value = decode_record(_RECORDS[info.type], reader.read_length_delimited(), depth - 1)

        if info.repeated:
            getattr(record, name).append(value)
        else:
            setattr(record, name, value)
    return record


def _write_scalar(writer: Writer, type_name: str, number: int, value: Any) -> None:
    if type_name == "int32":
        writer.write_tag(number, WireType.VARINT)
        writer.write_varint(value)
    elif type_name == "bool":
        writer.write_tag(number, WireType.VARINT)
        writer.write_varint(1 if value else 0)
    elif type_name == "string":
        writer.write_tag(number, WireType.LENGTH_DELIMITED)
        writer.write_length_delimited(value.encode("utf-8"))
    else:
        writer.write_tag(number, WireType.LENGTH_DELIMITED)
        writer.write_length_delimited(value)


def encode_record(record: Any) -> bytes:
    """Encode a descriptor record, emitting fields in number order."""
    writer = Writer()
    for number, (name, info) in sorted(_field_table(type(record)).items()):
        value = getattr(record, name)
        items = value if info.repeated else ([] if value is None else [value])
        for item in items:
            if info.type in _SCALARS:
                _write_scalar(writer, info.type, number, item)
            else:
                writer.write_tag(number, WireType.LENGTH_DELIMITED)
                writer.write_length_delimited(encode_record(item))
    return writer.getvalue()


def decode_file_descriptor_set(data: bytes | memoryview) -> list[tuple[FileDescriptorProto, bytes]]:
    """Split a FileDescriptorSet into (file record, serialized file) pairs."""
    result: list[tuple[FileDescriptorProto, bytes]] = []
    try:
        reader = Reader(data)
        while not reader.at_end():
            number, wire_type = reader.read_tag()
            if number != 1:
                reader.skip_field(number, wire_type, _MAX_DEPTH)
                continue
            if wire_type != WireType.LENGTH_DELIMITED:
                raise MalformedDescriptorBytesError("FileDescriptorSet.file must be length-delimited")
            raw = bytes(reader.read_length_delimited())
            result.append((decode_record(FileDescriptorProto, raw), raw))
    except WireDecodeError as e:
        raise MalformedDescriptorBytesError(f"invalid descriptor set: {e}") from e
    return result


def encode_file_descriptor_set(files: Iterable[FileDescriptorProto | bytes]) -> bytes:
    """Build FileDescriptorSet bytes from file records or serialized files."""
    writer = Writer()
    for f in files:
        raw = f if isinstance(f, bytes) else encode_record(f)
        writer.write_tag(1, WireType.LENGTH_DELIMITED)
        writer.write_length_delimited(raw)
    return writer.getvalue()
