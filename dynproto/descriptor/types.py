"""Arena records backing a DescriptorPool.

Every definition in a pool is stored once, in a flat list per definition
kind. Records refer to one another by list index, never by object, so
recursive and mutually recursive schemas need no special handling.
"""

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum

from dataclasses_json import DataClassJsonMixin

from ..wire import WireType


class FieldType(IntEnum):
    """Field types, numbered as in FieldDescriptorProto.Type."""

    DOUBLE = 1
    FLOAT = 2
    INT64 = 3
    UINT64 = 4
    INT32 = 5
    FIXED64 = 6
    FIXED32 = 7
    BOOL = 8
    STRING = 9
    GROUP = 10
    MESSAGE = 11
    BYTES = 12
    UINT32 = 13
    ENUM = 14
    SFIXED32 = 15
    SFIXED64 = 16
    SINT32 = 17
    SINT64 = 18


class Cardinality(IntEnum):
    """Field labels, numbered as in FieldDescriptorProto.Label."""

    OPTIONAL = 1
    REQUIRED = 2
    REPEATED = 3


class Syntax(StrEnum):
    PROTO2 = "proto2"
    PROTO3 = "proto3"


class DefinitionKind(StrEnum):
    """What a fully-qualified name refers to."""

    PACKAGE = "package"
    MESSAGE = "message"
    FIELD = "field"
    ONEOF = "oneof"
    ENUM = "enum"
    ENUM_VALUE = "enum_value"
    SERVICE = "service"
    METHOD = "method"
    EXTENSION = "extension"


WIRE_TYPES: dict[FieldType, WireType] = {
    FieldType.DOUBLE: WireType.FIXED64,
    FieldType.FLOAT: WireType.FIXED32,
    FieldType.INT64: WireType.VARINT,
    FieldType.UINT64: WireType.VARINT,
    FieldType.INT32: WireType.VARINT,
    FieldType.FIXED64: WireType.FIXED64,
    FieldType.FIXED32: WireType.FIXED32,
    FieldType.BOOL: WireType.VARINT,
    FieldType.STRING: WireType.LENGTH_DELIMITED,
    FieldType.GROUP: WireType.START_GROUP,
    FieldType.MESSAGE: WireType.LENGTH_DELIMITED,
    FieldType.BYTES: WireType.LENGTH_DELIMITED,
    FieldType.UINT32: WireType.VARINT,
    FieldType.ENUM: WireType.VARINT,
    FieldType.SFIXED32: WireType.FIXED32,
    FieldType.SFIXED64: WireType.FIXED64,
    FieldType.SINT32: WireType.VARINT,
    FieldType.SINT64: WireType.VARINT,
}

PACKABLE_TYPES = frozenset(
    t
    for t, wire_type in WIRE_TYPES.items()
    if wire_type in (WireType.VARINT, WireType.FIXED32, WireType.FIXED64)
)

SCALAR_TYPE_NAMES: dict[str, FieldType] = {
    "double": FieldType.DOUBLE,
    "float": FieldType.FLOAT,
    "int64": FieldType.INT64,
    "uint64": FieldType.UINT64,
    "int32": FieldType.INT32,
    "fixed64": FieldType.FIXED64,
    "fixed32": FieldType.FIXED32,
    "bool": FieldType.BOOL,
    "string": FieldType.STRING,
    "bytes": FieldType.BYTES,
    "uint32": FieldType.UINT32,
    "sfixed32": FieldType.SFIXED32,
    "sfixed64": FieldType.SFIXED64,
    "sint32": FieldType.SINT32,
    "sint64": FieldType.SINT64,
}

# Key types permitted in map<K, V> fields.
MAP_KEY_TYPES = frozenset(
    SCALAR_TYPE_NAMES[name]
    for name in SCALAR_TYPE_NAMES
    if name not in ("double", "float", "bytes")
)


@dataclass
class FileRecord(DataClassJsonMixin):
    name: str
    package: str
    syntax: Syntax
    dependencies: list[str]
    public_dependencies: list[int] = field(default_factory=list)
    messages: list[int] = field(default_factory=list)
    enums: list[int] = field(default_factory=list)
    services: list[int] = field(default_factory=list)
    extensions: list[int] = field(default_factory=list)


@dataclass
class MessageRecord(DataClassJsonMixin):
    name: str
    full_name: str
    file: int
    parent: int | None
    is_map_entry: bool = False
    deprecated: bool = False
    fields: list[int] = field(default_factory=list)
    oneofs: list[int] = field(default_factory=list)
    messages: list[int] = field(default_factory=list)
    enums: list[int] = field(default_factory=list)
    extensions: list[int] = field(default_factory=list)
    extension_ranges: list[tuple[int, int]] = field(default_factory=list)
    reserved_ranges: list[tuple[int, int]] = field(default_factory=list)
    reserved_names: list[str] = field(default_factory=list)
    # Lookup tables: number / name / json name -> field index.
    field_numbers: dict[int, int] = field(default_factory=dict)
    field_names: dict[str, int] = field(default_factory=dict)
    field_json_names: dict[str, int] = field(default_factory=dict)
    # Extensions anywhere in the pool that extend this message, by number.
    extension_numbers: dict[int, int] = field(default_factory=dict)


@dataclass
class FieldRecord(DataClassJsonMixin):
    """A message field or an extension.

    For fields, ``parent`` is the containing message. For extensions it is
    the message the extension was declared in (or None at file scope) and
    ``extendee`` is the message being extended.
    """

    name: str
    full_name: str
    json_name: str
    number: int
    cardinality: Cardinality
    type: FieldType
    file: int
    parent: int | None
    type_name: str = ""
    type_index: int | None = None
    oneof: int | None = None
    extendee: int | None = None
    packed: bool | None = None
    proto3_optional: bool = False
    default_value: str | None = None
    deprecated: bool = False
    has_json_name: bool = False


@dataclass
class OneofRecord(DataClassJsonMixin):
    name: str
    full_name: str
    parent: int
    fields: list[int] = field(default_factory=list)
    synthetic: bool = False


@dataclass
class EnumRecord(DataClassJsonMixin):
    name: str
    full_name: str
    file: int
    parent: int | None
    values: list[int] = field(default_factory=list)
    allow_alias: bool = False
    deprecated: bool = False
    # First declared value wins for aliased numbers.
    value_numbers: dict[int, int] = field(default_factory=dict)
    value_names: dict[str, int] = field(default_factory=dict)


@dataclass
class EnumValueRecord(DataClassJsonMixin):
    name: str
    full_name: str
    number: int
    parent: int


@dataclass
class ServiceRecord(DataClassJsonMixin):
    name: str
    full_name: str
    file: int
    methods: list[int] = field(default_factory=list)


@dataclass
class MethodRecord(DataClassJsonMixin):
    name: str
    full_name: str
    parent: int
    input: int
    output: int
    client_streaming: bool = False
    server_streaming: bool = False
