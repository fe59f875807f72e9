"""Render descriptors back to .proto source."""

from dataclasses import dataclass, field

from jinja2 import Environment, PackageLoader

from ..descriptor.handles import FieldDescriptor, FileDescriptor, MessageDescriptor, OneofDescriptor
from ..descriptor.types import SCALAR_TYPE_NAMES, Cardinality, FieldType, Syntax
from .compiler import c_escape

env = Environment(
    loader=PackageLoader("dynproto.schema", "templates"),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    line_comment_prefix="%%",
    line_statement_prefix="%",
)

template = env.get_template("proto.j2")

_SCALAR_NAMES = {field_type: name for name, field_type in SCALAR_TYPE_NAMES.items()}


@dataclass
class _Item:
    """A field, or a oneof with its members, in declaration order."""

    member: FieldDescriptor | None = None
    oneof: OneofDescriptor | None = None
    fields: list[FieldDescriptor] = field(default_factory=list)


def _type_ref(f: FieldDescriptor) -> str:
    if f.type in (FieldType.MESSAGE, FieldType.GROUP, FieldType.ENUM):
        return f".{f.type_name}"
    return _SCALAR_NAMES[f.type]


def _quote(text: bytes) -> str:
    return f'"{c_escape(text)}"'


def _default_literal(f: FieldDescriptor) -> str:
    value = f.default_value or ""
    if f.type == FieldType.STRING:
        return _quote(value.encode("utf-8"))
    if f.type == FieldType.BYTES:
        # Stored already escaped.
        return f'"{value}"'
    return value


def _field_options(f: FieldDescriptor) -> list[str]:
    options = []
    if f.packed_option is not None:
        options.append(f"packed = {str(f.packed_option).lower()}")
    if f.has_explicit_json_name:
        options.append(f"json_name = {_quote(f.json_name.encode('utf-8'))}")
    if f.default_value is not None:
        options.append(f"default = {_default_literal(f)}")
    if f.deprecated:
        options.append("deprecated = true")
    return options


def _field_decl(f: FieldDescriptor) -> str:
    """One field declaration, without indentation."""
    if f.is_map:
        entry = f.message_type
        assert entry is not None
        type_text = f"map<{_type_ref(entry.map_entry_key())}, {_type_ref(entry.map_entry_value())}>"
        label = ""
    else:
        type_text = _type_ref(f)
        if f.real_containing_oneof is not None:
            label = ""
        elif f.cardinality == Cardinality.REPEATED:
            label = "repeated "
        elif f.cardinality == Cardinality.REQUIRED:
            label = "required "
        elif f.syntax == Syntax.PROTO2 or f.proto3_optional:
            label = "optional "
        else:
            label = ""

    options = _field_options(f)
    suffix = f" [{', '.join(options)}]" if options else ""
    return f"{label}{type_text} {f.name} = {f.number}{suffix};"


def _message_items(message: MessageDescriptor) -> list[_Item]:
    items: list[_Item] = []
    oneofs: dict[OneofDescriptor, _Item] = {}
    for f in message.fields():
        oneof = f.real_containing_oneof
        if oneof is None:
            items.append(_Item(member=f))
            continue
        item = oneofs.get(oneof)
        if item is None:
            item = oneofs[oneof] = _Item(oneof=oneof)
            items.append(item)
        item.fields.append(f)
    return items


def _nested_messages(message: MessageDescriptor) -> list[MessageDescriptor]:
    return [m for m in message.messages() if not m.is_map_entry]


def _extend_groups(extensions: list[FieldDescriptor]) -> list[tuple[str, list[FieldDescriptor]]]:
    groups: dict[str, list[FieldDescriptor]] = {}
    for f in extensions:
        groups.setdefault(f.containing_message.full_name, []).append(f)
    return list(groups.items())


def _ranges(ranges: list[tuple[int, int]]) -> str:
    """Format half-open ranges the way .proto writes them."""
    parts = []
    for start, end in ranges:
        last = end - 1
        parts.append(str(start) if last == start else f"{start} to {last}")
    return ", ".join(parts)


def render(file: FileDescriptor) -> str:
    """Render a file in the pool as .proto source.

    Type references are written fully qualified, so the output compiles
    regardless of the file's package.
    """
    return template.render(
        file=file,
        field_decl=_field_decl,
        message_items=_message_items,
        nested_messages=_nested_messages,
        extend_groups=_extend_groups,
        ranges=_ranges,
        quote_names=lambda names: ", ".join(_quote(n.encode("utf-8")) for n in names),
    )
