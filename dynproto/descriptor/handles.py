"""Descriptor handles: lightweight views onto records in a DescriptorPool.

A handle is a (pool, index) pair. It holds no data of its own, so handles
are cheap to create, compare equal when they name the same definition in
the same pool, and stay valid for as long as the pool does.
"""

from collections.abc import Iterator
from typing import TYPE_CHECKING, Union

from ..wire import WireType
from .types import (
    PACKABLE_TYPES,
    WIRE_TYPES,
    Cardinality,
    EnumRecord,
    EnumValueRecord,
    FieldRecord,
    FieldType,
    FileRecord,
    MessageRecord,
    MethodRecord,
    OneofRecord,
    ServiceRecord,
    Syntax,
)

if TYPE_CHECKING:
    from .pool import DescriptorPool


class _Handle:
    __slots__ = ("_pool", "_index")

    def __init__(self, pool: "DescriptorPool", index: int) -> None:
        self._pool = pool
        self._index = index

    @property
    def pool(self) -> "DescriptorPool":
        return self._pool

    @property
    def index(self) -> int:
        return self._index

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._pool is other._pool and self._index == other._index  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, id(self._pool), self._index))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.full_name}>"

    @property
    def full_name(self) -> str:
        raise NotImplementedError


class FileDescriptor(_Handle):
    __slots__ = ()

    @property
    def _record(self) -> FileRecord:
        return self._pool._files[self._index]

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def full_name(self) -> str:
        return self._record.name

    @property
    def package(self) -> str:
        return self._record.package

    @property
    def syntax(self) -> Syntax:
        return self._record.syntax

    @property
    def dependencies(self) -> list["FileDescriptor"]:
        files = self._pool._file_names
        return [FileDescriptor(self._pool, files[name]) for name in self._record.dependencies]

    @property
    def messages(self) -> list["MessageDescriptor"]:
        return [MessageDescriptor(self._pool, i) for i in self._record.messages]

    @property
    def enums(self) -> list["EnumDescriptor"]:
        return [EnumDescriptor(self._pool, i) for i in self._record.enums]

    @property
    def services(self) -> list["ServiceDescriptor"]:
        return [ServiceDescriptor(self._pool, i) for i in self._record.services]

    @property
    def extensions(self) -> list["FieldDescriptor"]:
        return [FieldDescriptor(self._pool, i) for i in self._record.extensions]

    @property
    def serialized(self) -> bytes:
        """The FileDescriptorProto bytes this file was built from."""
        return self._pool._file_bytes[self._index]


class MessageDescriptor(_Handle):
    """A message type.

    Fields are looked up by number, declared name or JSON name; each lookup
    is a dictionary hit on the underlying record.
    """

    __slots__ = ()

    @property
    def _record(self) -> MessageRecord:
        return self._pool._messages[self._index]

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def full_name(self) -> str:
        return self._record.full_name

    @property
    def file(self) -> FileDescriptor:
        return FileDescriptor(self._pool, self._record.file)

    @property
    def syntax(self) -> Syntax:
        return self._pool._files[self._record.file].syntax

    @property
    def parent(self) -> "MessageDescriptor | None":
        parent = self._record.parent
        return None if parent is None else MessageDescriptor(self._pool, parent)

    @property
    def is_map_entry(self) -> bool:
        return self._record.is_map_entry

    @property
    def deprecated(self) -> bool:
        return self._record.deprecated

    def fields(self) -> list["FieldDescriptor"]:
        """Fields in declaration order."""
        return [FieldDescriptor(self._pool, i) for i in self._record.fields]

    def fields_by_number(self) -> list["FieldDescriptor"]:
        numbers = self._record.field_numbers
        return [FieldDescriptor(self._pool, numbers[n]) for n in sorted(numbers)]

    def get_field(self, number: int) -> "FieldDescriptor | None":
        index = self._record.field_numbers.get(number)
        return None if index is None else FieldDescriptor(self._pool, index)

    def get_field_by_name(self, name: str) -> "FieldDescriptor | None":
        index = self._record.field_names.get(name)
        return None if index is None else FieldDescriptor(self._pool, index)

    def get_field_by_json_name(self, name: str) -> "FieldDescriptor | None":
        index = self._record.field_json_names.get(name)
        return None if index is None else FieldDescriptor(self._pool, index)

    def oneofs(self) -> list["OneofDescriptor"]:
        return [OneofDescriptor(self._pool, i) for i in self._record.oneofs]

    def get_oneof_by_name(self, name: str) -> "OneofDescriptor | None":
        for index in self._record.oneofs:
            if self._pool._oneofs[index].name == name:
                return OneofDescriptor(self._pool, index)
        return None

    def messages(self) -> list["MessageDescriptor"]:
        """Nested message types, including synthesized map entries."""
        return [MessageDescriptor(self._pool, i) for i in self._record.messages]

    def enums(self) -> list["EnumDescriptor"]:
        return [EnumDescriptor(self._pool, i) for i in self._record.enums]

    def declared_extensions(self) -> list["FieldDescriptor"]:
        """Extensions declared inside this message's scope."""
        return [FieldDescriptor(self._pool, i) for i in self._record.extensions]

    def extensions(self) -> list["FieldDescriptor"]:
        """Extensions in the pool that extend this message, by number."""
        numbers = self._record.extension_numbers
        return [FieldDescriptor(self._pool, numbers[n]) for n in sorted(numbers)]

    def get_extension(self, number: int) -> "FieldDescriptor | None":
        index = self._record.extension_numbers.get(number)
        return None if index is None else FieldDescriptor(self._pool, index)

    @property
    def extension_ranges(self) -> list[tuple[int, int]]:
        return list(self._record.extension_ranges)

    @property
    def reserved_ranges(self) -> list[tuple[int, int]]:
        return list(self._record.reserved_ranges)

    @property
    def reserved_names(self) -> list[str]:
        return list(self._record.reserved_names)

    def map_entry_key(self) -> "FieldDescriptor":
        return FieldDescriptor(self._pool, self._record.field_numbers[1])

    def map_entry_value(self) -> "FieldDescriptor":
        return FieldDescriptor(self._pool, self._record.field_numbers[2])


class FieldDescriptor(_Handle):
    """A message field or an extension."""

    __slots__ = ()

    @property
    def _record(self) -> FieldRecord:
        return self._pool._fields[self._index]

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def full_name(self) -> str:
        return self._record.full_name

    @property
    def json_name(self) -> str:
        return self._record.json_name

    @property
    def json_key(self) -> str:
        """The property name used in JSON output."""
        if self.is_extension:
            return f"[{self._record.full_name}]"
        return self._record.json_name

    @property
    def number(self) -> int:
        return self._record.number

    @property
    def type(self) -> FieldType:
        return self._record.type

    @property
    def kind(self) -> Union[FieldType, "MessageDescriptor", "EnumDescriptor"]:
        """The scalar type, or the message or enum the field refers to."""
        record = self._record
        if record.type in (FieldType.MESSAGE, FieldType.GROUP):
            return MessageDescriptor(self._pool, record.type_index)  # type: ignore[arg-type]
        if record.type == FieldType.ENUM:
            return EnumDescriptor(self._pool, record.type_index)  # type: ignore[arg-type]
        return record.type

    @property
    def message_type(self) -> "MessageDescriptor | None":
        record = self._record
        if record.type in (FieldType.MESSAGE, FieldType.GROUP):
            return MessageDescriptor(self._pool, record.type_index)  # type: ignore[arg-type]
        return None

    @property
    def enum_type(self) -> "EnumDescriptor | None":
        record = self._record
        if record.type == FieldType.ENUM:
            return EnumDescriptor(self._pool, record.type_index)  # type: ignore[arg-type]
        return None

    @property
    def type_name(self) -> str:
        return self._record.type_name

    @property
    def cardinality(self) -> Cardinality:
        return self._record.cardinality

    @property
    def is_list(self) -> bool:
        """Repeated and not a map."""
        return self._record.cardinality == Cardinality.REPEATED and not self.is_map

    @property
    def is_map(self) -> bool:
        record = self._record
        return (
            record.cardinality == Cardinality.REPEATED
            and record.type == FieldType.MESSAGE
            and self._pool._messages[record.type_index].is_map_entry  # type: ignore[index]
        )

    @property
    def is_packable(self) -> bool:
        return self._record.cardinality == Cardinality.REPEATED and self._record.type in PACKABLE_TYPES

    @property
    def is_packed(self) -> bool:
        """Whether repeated values are written as one packed blob.

        An explicit ``packed`` option wins; otherwise proto3 packs by default
        and proto2 does not.
        """
        if not self.is_packable:
            return False
        if self._record.packed is not None:
            return self._record.packed
        return self.syntax == Syntax.PROTO3

    @property
    def packed_option(self) -> bool | None:
        """The ``packed`` option as written, or None when absent."""
        return self._record.packed

    @property
    def syntax(self) -> Syntax:
        return self._pool._files[self._record.file].syntax

    @property
    def supports_presence(self) -> bool:
        """Whether the field distinguishes "unset" from its default value."""
        record = self._record
        if record.cardinality == Cardinality.REPEATED:
            return False
        if record.type in (FieldType.MESSAGE, FieldType.GROUP):
            return True
        if record.oneof is not None or record.extendee is not None:
            return True
        return self.syntax == Syntax.PROTO2

    @property
    def wire_type(self) -> WireType:
        return WIRE_TYPES[self._record.type]

    @property
    def containing_oneof(self) -> "OneofDescriptor | None":
        oneof = self._record.oneof
        return None if oneof is None else OneofDescriptor(self._pool, oneof)

    @property
    def real_containing_oneof(self) -> "OneofDescriptor | None":
        """The containing oneof, unless it was synthesized for proto3 optional."""
        oneof = self._record.oneof
        if oneof is None or self._pool._oneofs[oneof].synthetic:
            return None
        return OneofDescriptor(self._pool, oneof)

    @property
    def containing_message(self) -> MessageDescriptor:
        """The message this field belongs to; for extensions, the extendee."""
        record = self._record
        index = record.extendee if record.extendee is not None else record.parent
        return MessageDescriptor(self._pool, index)  # type: ignore[arg-type]

    @property
    def is_extension(self) -> bool:
        return self._record.extendee is not None

    @property
    def extension_scope(self) -> MessageDescriptor | None:
        """For extensions, the message they were declared in, if any."""
        record = self._record
        if record.extendee is None or record.parent is None:
            return None
        return MessageDescriptor(self._pool, record.parent)

    @property
    def file(self) -> FileDescriptor:
        return FileDescriptor(self._pool, self._record.file)

    @property
    def default_value(self) -> str | None:
        """The proto2 default, as written in the schema."""
        return self._record.default_value

    @property
    def has_explicit_json_name(self) -> bool:
        return self._record.has_json_name

    @property
    def proto3_optional(self) -> bool:
        return self._record.proto3_optional

    @property
    def deprecated(self) -> bool:
        return self._record.deprecated


class OneofDescriptor(_Handle):
    __slots__ = ()

    @property
    def _record(self) -> OneofRecord:
        return self._pool._oneofs[self._index]

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def full_name(self) -> str:
        return self._record.full_name

    @property
    def is_synthetic(self) -> bool:
        return self._record.synthetic

    @property
    def containing_message(self) -> MessageDescriptor:
        return MessageDescriptor(self._pool, self._record.parent)

    def fields(self) -> list[FieldDescriptor]:
        return [FieldDescriptor(self._pool, i) for i in self._record.fields]


class EnumDescriptor(_Handle):
    __slots__ = ()

    @property
    def _record(self) -> EnumRecord:
        return self._pool._enums[self._index]

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def full_name(self) -> str:
        return self._record.full_name

    @property
    def file(self) -> FileDescriptor:
        return FileDescriptor(self._pool, self._record.file)

    @property
    def parent(self) -> MessageDescriptor | None:
        parent = self._record.parent
        return None if parent is None else MessageDescriptor(self._pool, parent)

    @property
    def allow_alias(self) -> bool:
        return self._record.allow_alias

    @property
    def deprecated(self) -> bool:
        return self._record.deprecated

    def values(self) -> list["EnumValueDescriptor"]:
        return [EnumValueDescriptor(self._pool, i) for i in self._record.values]

    def get_value(self, number: int) -> "EnumValueDescriptor | None":
        """The first declared value with this number."""
        index = self._record.value_numbers.get(number)
        return None if index is None else EnumValueDescriptor(self._pool, index)

    def get_value_by_name(self, name: str) -> "EnumValueDescriptor | None":
        index = self._record.value_names.get(name)
        return None if index is None else EnumValueDescriptor(self._pool, index)

    @property
    def default_value(self) -> "EnumValueDescriptor":
        return EnumValueDescriptor(self._pool, self._record.values[0])


class EnumValueDescriptor(_Handle):
    __slots__ = ()

    @property
    def _record(self) -> EnumValueRecord:
        return self._pool._enum_values[self._index]

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def full_name(self) -> str:
        return self._record.full_name

    @property
    def number(self) -> int:
        return self._record.number

    @property
    def enum(self) -> EnumDescriptor:
        return EnumDescriptor(self._pool, self._record.parent)


class ServiceDescriptor(_Handle):
    __slots__ = ()

    @property
    def _record(self) -> ServiceRecord:
        return self._pool._services[self._index]

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def full_name(self) -> str:
        return self._record.full_name

    @property
    def file(self) -> FileDescriptor:
        return FileDescriptor(self._pool, self._record.file)

    def methods(self) -> list["MethodDescriptor"]:
        return [MethodDescriptor(self._pool, i) for i in self._record.methods]

    def get_method_by_name(self, name: str) -> "MethodDescriptor | None":
        for method in self.methods():
            if method.name == name:
                return method
        return None

    def __iter__(self) -> Iterator["MethodDescriptor"]:
        return iter(self.methods())


class MethodDescriptor(_Handle):
    __slots__ = ()

    @property
    def _record(self) -> MethodRecord:
        return self._pool._methods[self._index]

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def full_name(self) -> str:
        return self._record.full_name

    @property
    def service(self) -> ServiceDescriptor:
        return ServiceDescriptor(self._pool, self._record.parent)

    @property
    def input(self) -> MessageDescriptor:
        return MessageDescriptor(self._pool, self._record.input)

    @property
    def output(self) -> MessageDescriptor:
        return MessageDescriptor(self._pool, self._record.output)

    @property
    def client_streaming(self) -> bool:
        return self._record.client_streaming

    @property
    def server_streaming(self) -> bool:
        return self._record.server_streaming
