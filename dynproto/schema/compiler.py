"""Compile .proto source into FileDescriptorSet bytes, using Lark."""

import logging
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from importlib import resources
from typing import Any, TypeVar

from lark import Lark, Token
from lark.exceptions import LarkError, UnexpectedInput
from lark.visitors import Transformer

from ..descriptor.proto import (
    DescriptorProto,
    EnumDescriptorProto,
    EnumOptions,
    EnumValueDescriptorProto,
    ExtensionRange,
    FieldDescriptorProto,
    FieldOptions,
    FileDescriptorProto,
    MessageOptions,
    MethodDescriptorProto,
    OneofDescriptorProto,
    ReservedRange,
    ServiceDescriptorProto,
    encode_file_descriptor_set,
)
from ..descriptor.types import MAP_KEY_TYPES, SCALAR_TYPE_NAMES, Cardinality, FieldType
from ..errors import DynprotoError
from ..wire import MAX_FIELD_NUMBER

logger = logging.getLogger(__name__)

_g_parser: Lark | None = None

_LABELS = {
    "optional": Cardinality.OPTIONAL,
    "required": Cardinality.REQUIRED,
    "repeated": Cardinality.REPEATED,
}

_ESCAPE_RE = re.compile(
    r"\\(?:([0-7]{1,3})|[xX]([0-9A-Fa-f]{1,2})|u([0-9A-Fa-f]{4})|U([0-9A-Fa-f]{8})|(.))", re.DOTALL
)
_SIMPLE_ESCAPES = {
    "a": b"\a",
    "b": b"\b",
    "f": b"\f",
    "n": b"\n",
    "r": b"\r",
    "t": b"\t",
    "v": b"\v",
    "\\": b"\\",
    "'": b"'",
    '"': b'"',
    "?": b"?",
}


class ProtoSyntaxError(DynprotoError):
    """Raised when .proto source cannot be compiled."""


@dataclass
class _Name:
    value: str


@dataclass
class _Number:
    value: int


@dataclass
class _StrLit:
    data: bytes


@dataclass
class _Constant:
    kind: str  # "int", "float", "string", "ident" or "aggregate"
    value: Any
    data: bytes = b""


@dataclass
class _Option:
    name: str
    value: _Constant


@dataclass
class _FieldOptions:
    options: list[_Option]


@dataclass
class _Syntax:
    value: str


@dataclass
class _Import:
    path: str
    kind: str | None


@dataclass
class _Package:
    value: str


@dataclass
class _Field:
    label: str | None
    type_name: str
    name: str
    number: int
    options: list[_Option]


@dataclass
class _MapField:
    key_type: str
    value_type: str
    name: str
    number: int
    options: list[_Option]


@dataclass
class _Oneof:
    name: str
    fields: list[_Field]


@dataclass
class _Range:
    start: int
    end: int | None  # inclusive; None means max


@dataclass
class _Extensions:
    ranges: list[_Range]


@dataclass
class _Reserved:
    ranges: list[_Range]
    names: list[str]


@dataclass
class _Message:
    name: str
    items: list[Any]


@dataclass
class _EnumValue:
    name: str
    number: int


@dataclass
class _Enum:
    name: str
    items: list[Any]


@dataclass
class _Endpoint:
    type_name: str
    streaming: bool


@dataclass
class _Rpc:
    name: str
    request: _Endpoint
    response: _Endpoint


@dataclass
class _Service:
    name: str
    rpcs: list[_Rpc]


@dataclass
class _Extend:
    extendee: str
    fields: list[_Field] = field(default_factory=list)


TFilter = TypeVar("TFilter")


def _find_many(args: list[Any], class_type: type[TFilter]) -> list[TFilter]:
    return [v for v in args if isinstance(v, class_type)]


def _find_one(args: list[Any], class_type: type[TFilter]) -> TFilter | None:
    found = _find_many(args, class_type)
    return found[0] if found else None


def _token(args: list[Any], token_type: str) -> str | None:
    for arg in args:
        if isinstance(arg, Token) and arg.type == token_type:
            return str(arg)
    return None


def _parse_int(text: str) -> int:
    sign = -1 if text.startswith("-") else 1
    body = text.lstrip("+-")
    if body[:2] in ("0x", "0X"):
        return sign * int(body[2:], 16)
    if len(body) > 1 and body.startswith("0"):
        return sign * int(body[1:], 8)
    return sign * int(body)


def unescape(literal: str) -> bytes:
    """Decode the body of a quoted .proto string literal to bytes."""
    out = bytearray()
    pos = 0
    for match in _ESCAPE_RE.finditer(literal):
        out += literal[pos : match.start()].encode("utf-8")
        octal, hex_byte, short_unicode, long_unicode, simple = match.groups()
        if octal is not None:
            out.append(int(octal, 8) & 0xFF)
        elif hex_byte is not None:
            out.append(int(hex_byte, 16))
        elif short_unicode is not None or long_unicode is not None:
            out += chr(int(short_unicode or long_unicode, 16)).encode("utf-8", "surrogatepass")
        else:
            out += _SIMPLE_ESCAPES.get(simple, simple.encode("utf-8"))
        pos = match.end()
    out += literal[pos:].encode("utf-8")
    return bytes(out)


def c_escape(data: bytes) -> str:
    """Escape bytes the way protoc writes bytes defaults."""
    out: list[str] = []
    for byte in data:
        c = chr(byte)
        if c == "\n":
            out.append("\\n")
        elif c == "\r":
            out.append("\\r")
        elif c == "\t":
            out.append("\\t")
        elif c in "\"'\\":
            out.append("\\" + c)
        elif 0x20 <= byte < 0x7F:
            out.append(c)
        else:
            out.append(f"\\{byte:03o}")
    return "".join(out)


class TreeTransformer(Transformer):
    """Transform a parse tree into schema nodes."""

    def start(self, args: list[Any]) -> list[Any]:
        return list(args)

    def name(self, args: list[Any]) -> _Name:
        return _Name(value=str(args[0]))

    def full_ident(self, args: list[Any]) -> str:
        return ".".join(str(a) for a in args if isinstance(a, Token) and a.type == "IDENT")

    def number(self, args: list[Any]) -> _Number:
        return _Number(value=_parse_int(str(args[0])))

    def signed_number(self, args: list[Any]) -> _Constant:
        return _Constant(kind="int", value=_parse_int(str(args[0])))

    def float_const(self, args: list[Any]) -> _Constant:
        return _Constant(kind="float", value=str(args[0]))

    def str_lit(self, args: list[Any]) -> _StrLit:
        return _StrLit(data=unescape(str(args[0])[1:-1]))

    def neg_ident(self, args: list[Any]) -> _Constant:
        return _Constant(kind="ident", value=f"-{args[0]}")

    def aggregate(self, args: list[Any]) -> _Constant:
        return _Constant(kind="aggregate", value=None)

    def constant(self, args: list[Any]) -> _Constant:
        strings = _find_many(args, _StrLit)
        if strings:
            data = b"".join(s.data for s in strings)
            return _Constant(kind="string", value=data.decode("utf-8", "replace"), data=data)
        if isinstance(args[0], _Constant):
            return args[0]
        return _Constant(kind="ident", value=str(args[0]))

    def custom_option(self, args: list[Any]) -> str:
        return f"({args[0]})"

    def option_name(self, args: list[Any]) -> str:
        return ".".join(a.value if isinstance(a, _Name) else str(a) for a in args)

    def option(self, args: list[Any]) -> _Option:
        return _Option(name=args[0], value=args[1])

    field_option = option

    def field_options(self, args: list[Any]) -> _FieldOptions:
        return _FieldOptions(options=_find_many(args, _Option))

    def syntax(self, args: list[Any]) -> _Syntax:
        return _Syntax(value=args[0].data.decode("utf-8"))

    def import_stmt(self, args: list[Any]) -> _Import:
        return _Import(path=_find_one(args, _StrLit).data.decode("utf-8"), kind=_token(args, "IMPORT_KIND"))  # type: ignore[union-attr]

    def package(self, args: list[Any]) -> _Package:
        return _Package(value=args[0])

    def _field_options(self, args: list[Any]) -> list[_Option]:
        options = _find_one(args, _FieldOptions)
        return options.options if options else []

    def field(self, args: list[Any]) -> _Field:
        return _Field(
            label=_token(args, "LABEL"),
            type_name=_token(args, "TYPE_NAME"),  # type: ignore[arg-type]
            name=_find_one(args, _Name).value,  # type: ignore[union-attr]
            number=_find_one(args, _Number).value,  # type: ignore[union-attr]
            options=self._field_options(args),
        )

    oneof_field = field

    def map_field(self, args: list[Any]) -> _MapField:
        key_type, value_type = (str(a) for a in args if isinstance(a, Token) and a.type == "TYPE_NAME")
        return _MapField(
            key_type=key_type,
            value_type=value_type,
            name=_find_one(args, _Name).value,  # type: ignore[union-attr]
            number=_find_one(args, _Number).value,  # type: ignore[union-attr]
            options=self._field_options(args),
        )

    def oneof(self, args: list[Any]) -> _Oneof:
        return _Oneof(name=args[0].value, fields=_find_many(args, _Field))

    def range(self, args: list[Any]) -> _Range:
        numbers = _find_many(args, _Number)
        if _token(args, "MAX") is not None:
            return _Range(start=numbers[0].value, end=None)
        return _Range(start=numbers[0].value, end=numbers[-1].value)

    def extensions(self, args: list[Any]) -> _Extensions:
        return _Extensions(ranges=_find_many(args, _Range))

    def reserved(self, args: list[Any]) -> _Reserved:
        return _Reserved(
            ranges=_find_many(args, _Range),
            names=[s.data.decode("utf-8") for s in _find_many(args, _StrLit)],
        )

    def message(self, args: list[Any]) -> _Message:
        return _Message(name=args[0].value, items=list(args[1:]))

    def enum_value(self, args: list[Any]) -> _EnumValue:
        return _EnumValue(name=args[0].value, number=args[1].value)

    def enum(self, args: list[Any]) -> _Enum:
        return _Enum(name=args[0].value, items=list(args[1:]))

    def request(self, args: list[Any]) -> _Endpoint:
        return _Endpoint(type_name=_token(args, "TYPE_NAME"), streaming=_token(args, "STREAM") is not None)  # type: ignore[arg-type]

    response = request

    def rpc(self, args: list[Any]) -> _Rpc:
        request, response = _find_many(args, _Endpoint)
        return _Rpc(name=args[0].value, request=request, response=response)

    def service(self, args: list[Any]) -> _Service:
        return _Service(name=args[0].value, rpcs=_find_many(args, _Rpc))

    def extend(self, args: list[Any]) -> _Extend:
        return _Extend(extendee=_token(args, "TYPE_NAME"), fields=_find_many(args, _Field))  # type: ignore[arg-type]


class _FileBuilder:
    """Turns schema nodes into a FileDescriptorProto."""

    def __init__(self, name: str, nodes: list[Any]) -> None:
        self.name = name
        self.nodes = nodes
        syntax = _find_one(nodes, _Syntax)
        self.syntax = syntax.value if syntax else "proto2"
        if self.syntax not in ("proto2", "proto3"):
            raise self.error(f"unsupported syntax {self.syntax!r}")

    @property
    def proto3(self) -> bool:
        return self.syntax == "proto3"

    def error(self, message: str) -> ProtoSyntaxError:
        return ProtoSyntaxError(f"{self.name}: {message}")

    def build(self) -> FileDescriptorProto:
        package = _find_one(self.nodes, _Package)
        result = FileDescriptorProto(
            name=self.name,
            package=package.value if package else None,
            syntax="proto3" if self.proto3 else None,
        )
        for node in self.nodes:
            if isinstance(node, _Import):
                if node.kind == "public":
                    result.public_dependency.append(len(result.dependency))
                result.dependency.append(node.path)
            elif isinstance(node, _Message):
                result.message_type.append(self.message(node))
            elif isinstance(node, _Enum):
                result.enum_type.append(self.enum(node))
            elif isinstance(node, _Service):
                result.service.append(self.service(node))
            elif isinstance(node, _Extend):
                result.extension.extend(self.extend(node))
        return result

    def message(self, node: _Message) -> DescriptorProto:
        result = DescriptorProto(name=node.name)
        for item in node.items:
            if isinstance(item, _Field):
                result.field.append(self.field(item))
            elif isinstance(item, _MapField):
                entry, map_field = self.map_field(item)
                result.nested_type.append(entry)
                result.field.append(map_field)
            elif isinstance(item, _Oneof):
                index = len(result.oneof_decl)
                result.oneof_decl.append(OneofDescriptorProto(name=item.name))
                for member in item.fields:
                    proto = self.field(member, in_oneof=True)
                    proto.oneof_index = index
                    result.field.append(proto)
            elif isinstance(item, _Message):
                result.nested_type.append(self.message(item))
            elif isinstance(item, _Enum):
                result.enum_type.append(self.enum(item))
            elif isinstance(item, _Extend):
                result.extension.extend(self.extend(item))
            elif isinstance(item, _Extensions):
                for r in item.ranges:
                    result.extension_range.append(ExtensionRange(start=r.start, end=self.range_end(r)))
            elif isinstance(item, _Reserved):
                for r in item.ranges:
                    result.reserved_range.append(ReservedRange(start=r.start, end=self.range_end(r)))
                result.reserved_name.extend(item.names)
            elif isinstance(item, _Option):
                if item.name == "deprecated":
                    result.options = result.options or MessageOptions()
                    result.options.deprecated = self.bool_option(item)

        # proto3 optional fields each get a synthetic oneof, after the real ones.
        for proto in result.field:
            if proto.proto3_optional:
                proto.oneof_index = len(result.oneof_decl)
                result.oneof_decl.append(OneofDescriptorProto(name=f"_{proto.name}"))
        return result

    def range_end(self, r: _Range) -> int:
        end = MAX_FIELD_NUMBER if r.end is None else r.end
        if end < r.start:
            raise self.error(f"range {r.start} to {end} is empty")
        return end + 1

    def field(self, node: _Field, in_oneof: bool = False) -> FieldDescriptorProto:
        if not 1 <= node.number <= MAX_FIELD_NUMBER:
            raise self.error(f"field {node.name} has invalid number {node.number}")
        result = FieldDescriptorProto(name=node.name, number=node.number)

        label = node.label
        if label == "required" and self.proto3:
            raise self.error(f"required fields are not allowed in proto3 ({node.name})")
        result.label = _LABELS[label] if label else Cardinality.OPTIONAL
        if label == "optional" and self.proto3 and not in_oneof:
            result.proto3_optional = True

        scalar = SCALAR_TYPE_NAMES.get(node.type_name)
        if scalar is not None:
            result.type = scalar
        elif node.type_name == "group":
            raise self.error(f"groups are not supported ({node.name})")
        else:
            result.type_name = node.type_name

        for option in node.options:
            self.field_option(result, option)
        return result

    def field_option(self, result: FieldDescriptorProto, option: _Option) -> None:
        if option.name == "default":
            if result.label == Cardinality.REPEATED or self.proto3:
                raise self.error(f"{result.name} cannot have a default value")
            result.default_value = self.default_text(result, option.value)
        elif option.name == "json_name":
            if option.value.kind != "string":
                raise self.error(f"json_name of {result.name} must be a string")
            result.json_name = option.value.value
        elif option.name in ("packed", "deprecated"):
            result.options = result.options or FieldOptions()
            setattr(result.options, option.name, self.bool_option(option))
        else:
            logger.debug("Ignoring option %s on field %s", option.name, result.name)

    def default_text(self, result: FieldDescriptorProto, value: _Constant) -> str:
        field_type = result.type
        if field_type is None:
            if value.kind != "ident":
                raise self.error(f"default of {result.name} must be an enum value name")
            return value.value
        if field_type == FieldType.STRING:
            if value.kind != "string":
                raise self.error(f"default of {result.name} must be a string")
            return value.value
        if field_type == FieldType.BYTES:
            if value.kind != "string":
                raise self.error(f"default of {result.name} must be a string")
            return c_escape(value.data)
        if field_type == FieldType.BOOL:
            if value.kind != "ident" or value.value not in ("true", "false"):
                raise self.error(f"default of {result.name} must be true or false")
            return value.value
        if field_type in (FieldType.FLOAT, FieldType.DOUBLE):
            if value.kind == "ident" and value.value in ("inf", "-inf", "nan"):
                return value.value
            if value.kind not in ("int", "float"):
                raise self.error(f"default of {result.name} must be a number")
            return repr(float(value.value))
        if value.kind != "int":
            raise self.error(f"default of {result.name} must be an integer")
        return str(value.value)

    def bool_option(self, option: _Option) -> bool:
        if option.value.kind != "ident" or option.value.value not in ("true", "false"):
            raise self.error(f"option {option.name} must be true or false")
        return option.value.value == "true"

    def map_field(self, node: _MapField) -> tuple[DescriptorProto, FieldDescriptorProto]:
        key_type = SCALAR_TYPE_NAMES.get(node.key_type)
        if key_type is None or key_type not in MAP_KEY_TYPES:
            raise self.error(f"{node.key_type} is not a valid map key type ({node.name})")
        if not 1 <= node.number <= MAX_FIELD_NUMBER:
            raise self.error(f"field {node.name} has invalid number {node.number}")

        entry_name = "".join(part[:1].upper() + part[1:] for part in node.name.split("_")) + "Entry"
        key = FieldDescriptorProto(name="key", number=1, label=Cardinality.OPTIONAL, type=key_type)
        value = self.field(_Field(label=None, type_name=node.value_type, name="value", number=2, options=[]))
        value.proto3_optional = None
        entry = DescriptorProto(
            name=entry_name, field=[key, value], options=MessageOptions(map_entry=True)
        )

        result = FieldDescriptorProto(
            name=node.name,
            number=node.number,
            label=Cardinality.REPEATED,
            type=FieldType.MESSAGE,
            type_name=entry_name,
        )
        for option in node.options:
            if option.name == "default":
                raise self.error(f"map field {node.name} cannot have a default value")
            self.field_option(result, option)
        return entry, result

    def enum(self, node: _Enum) -> EnumDescriptorProto:
        result = EnumDescriptorProto(name=node.name)
        for item in node.items:
            if isinstance(item, _EnumValue):
                result.value.append(EnumValueDescriptorProto(name=item.name, number=item.number))
            elif isinstance(item, _Reserved):
                result.reserved_name.extend(item.names)
            elif isinstance(item, _Option) and item.name in ("allow_alias", "deprecated"):
                result.options = result.options or EnumOptions()
                setattr(result.options, item.name, self.bool_option(item))
        if not result.value:
            raise self.error(f"enum {node.name} has no values")
        if self.proto3 and result.value[0].number != 0:
            raise self.error(f"the first value of proto3 enum {node.name} must be zero")
        return result

    def service(self, node: _Service) -> ServiceDescriptorProto:
        return ServiceDescriptorProto(
            name=node.name,
            method=[
                MethodDescriptorProto(
                    name=rpc.name,
                    input_type=rpc.request.type_name,
                    output_type=rpc.response.type_name,
                    client_streaming=True if rpc.request.streaming else None,
                    server_streaming=True if rpc.response.streaming else None,
                )
                for rpc in node.rpcs
            ],
        )

    def extend(self, node: _Extend) -> list[FieldDescriptorProto]:
        fields = []
        for member in node.fields:
            proto = self.field(member)
            proto.extendee = node.extendee
            proto.proto3_optional = None
            fields.append(proto)
        return fields


def _parser() -> Lark:
    global _g_parser

    if not _g_parser:
        with open(f"{os.path.dirname(__file__)}/proto.lark", encoding="utf-8") as f:
            grammar = f.read()
        _g_parser = Lark(grammar)
    return _g_parser


def parse_file(text: str, name: str = "input.proto") -> FileDescriptorProto:
    """Parse one .proto file into a FileDescriptorProto.

    Type references are left as written; they are resolved when the file
    is added to a DescriptorPool.
    """
    try:
        tree = _parser().parse(text)
    except UnexpectedInput as e:
        raise ProtoSyntaxError(f"{name}:{e.line}:{e.column}: syntax error\n{e.get_context(text)}") from e
    except LarkError as e:
        raise ProtoSyntaxError(f"{name}: {e}") from e
    nodes = TreeTransformer().transform(tree)
    return _FileBuilder(name, nodes).build()


def bundled_source(name: str) -> str | None:
    """The text of a .proto file shipped with dynproto, such as the well-known types."""
    resource = resources.files(__package__).joinpath("include", *name.split("/"))
    if not resource.is_file():
        return None
    return resource.read_text(encoding="utf-8")


def compile_files(
    sources: Mapping[str, str], resolver: Callable[[str], str | None] | None = None
) -> list[FileDescriptorProto]:
    """Compile sources and everything they import, dependencies first.

    Imports are looked up in ``sources``, then through ``resolver``, then
    among the bundled well-known type files.
    """
    compiled: dict[str, FileDescriptorProto] = {}
    ordered: list[FileDescriptorProto] = []
    visiting: set[str] = set()

    def load(name: str) -> str:
        text = sources.get(name)
        if text is None and resolver is not None:
            text = resolver(name)
        if text is None:
            text = bundled_source(name)
        if text is None:
            raise ProtoSyntaxError(f"cannot find {name}")
        return text

    def visit(name: str) -> None:
        if name in compiled:
            return
        if name in visiting:
            raise ProtoSyntaxError(f"import cycle involving {name}")
        visiting.add(name)
        proto = parse_file(load(name), name)
        for dependency in proto.dependency:
            visit(dependency)
        visiting.discard(name)
        compiled[name] = proto
        ordered.append(proto)
        logger.debug("Compiled %s", name)

    for name in sources:
        visit(name)
    return ordered


def compile_sources(
    sources: Mapping[str, str], resolver: Callable[[str], str | None] | None = None
) -> bytes:
    """Compile sources to FileDescriptorSet bytes.

    Example:
        data = compile_sources({"geo.proto": 'syntax = "proto3"; ...'})
        pool = DescriptorPool.build(data)
    """
    return encode_file_descriptor_set(compile_files(sources, resolver))
