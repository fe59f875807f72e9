"""Descriptor pool: a cross-referenced arena of protobuf definitions."""

import dataclasses
import logging
from collections.abc import Iterable, Iterator
from typing import Any

from ..errors import (
    DuplicateNameError,
    MalformedDescriptorBytesError,
    UnresolvedImportError,
    UnresolvedTypeReferenceError,
)
from ..wire import MAX_FIELD_NUMBER
from .handles import (
    EnumDescriptor,
    FieldDescriptor,
    FileDescriptor,
    MessageDescriptor,
    ServiceDescriptor,
)
from .proto import (
    DescriptorProto,
    EnumDescriptorProto,
    FieldDescriptorProto,
    FileDescriptorProto,
    ServiceDescriptorProto,
    decode_file_descriptor_set,
    encode_file_descriptor_set,
    encode_record,
)
from .types import (
    Cardinality,
    DefinitionKind,
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

logger = logging.getLogger(__name__)

_TYPE_KINDS = (DefinitionKind.MESSAGE, DefinitionKind.ENUM)
_AGGREGATE_KINDS = (
    DefinitionKind.PACKAGE,
    DefinitionKind.MESSAGE,
    DefinitionKind.ENUM,
    DefinitionKind.SERVICE,
)


def to_json_name(name: str) -> str:
    """Derive the lowerCamelCase JSON name of a field, as protoc does."""
    result: list[str] = []
    capitalize_next = False
    for c in name:
        if c == "_":
            capitalize_next = True
        elif capitalize_next:
            result.append(c.upper())
            capitalize_next = False
        else:
            result.append(c)
    return "".join(result)


def _join(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name


class DescriptorPool:
    """A set of protobuf files with all type references resolved.

    A pool is built once from FileDescriptorSet bytes and may be extended
    with merge() before it is shared. Lookups by fully-qualified name are
    dictionary hits; descriptor handles returned by the pool are cheap
    (pool, index) views.

    Example:
        pool = DescriptorPool.build(descriptor_set_bytes)
        point = pool.get_message_by_name("geo.Point")
        message = DynamicMessage.decode(point, b"\\x08\\x96\\x01")
    """

    def __init__(self) -> None:
        self._files: list[FileRecord] = []
        self._file_bytes: list[bytes] = []
        self._file_names: dict[str, int] = {}
        self._messages: list[MessageRecord] = []
        self._fields: list[FieldRecord] = []
        self._oneofs: list[OneofRecord] = []
        self._enums: list[EnumRecord] = []
        self._enum_values: list[EnumValueRecord] = []
        self._services: list[ServiceRecord] = []
        self._methods: list[MethodRecord] = []
        self._names: dict[str, tuple[DefinitionKind, int]] = {}

    @classmethod
    def build(cls, data: bytes | memoryview) -> "DescriptorPool":
        """Build a pool from serialized FileDescriptorSet bytes."""
        pool = cls()
        pool.merge(data)
        return pool

    @classmethod
    def with_well_known_types(cls) -> "DescriptorPool":
        """Return a new pool holding the google.protobuf well-known types."""
        from ..schema.well_known import well_known_descriptor_set

        return cls.build(well_known_descriptor_set())

    def merge(self, data: bytes | memoryview) -> None:
        """Add the files of a FileDescriptorSet to this pool.

        Files already registered with identical contents are skipped. The
        pool is left unchanged if any file fails to validate.
        """
        self._add_files(decode_file_descriptor_set(data))

    def add_file_descriptor_protos(self, files: Iterable[FileDescriptorProto]) -> None:
        """Add file records built in memory."""
        self._add_files([(f, encode_record(f)) for f in files])

    def _add_files(self, files: list[tuple[FileDescriptorProto, bytes]]) -> None:
        builder = _PoolBuilder(self)
        builder.add_files(files)
        builder.commit()

    def encode_file_descriptor_set(self) -> bytes:
        """Serialize every file in the pool as a FileDescriptorSet."""
        return encode_file_descriptor_set(self._file_bytes)

    # Lookups

    def _lookup(self, name: str, kind: DefinitionKind) -> int | None:
        hit = self._names.get(name.lstrip("."))
        if hit is None or hit[0] != kind:
            return None
        return hit[1]

    def get_message_by_name(self, name: str) -> MessageDescriptor | None:
        index = self._lookup(name, DefinitionKind.MESSAGE)
        return None if index is None else MessageDescriptor(self, index)

    def get_enum_by_name(self, name: str) -> EnumDescriptor | None:
        index = self._lookup(name, DefinitionKind.ENUM)
        return None if index is None else EnumDescriptor(self, index)

    def get_service_by_name(self, name: str) -> ServiceDescriptor | None:
        index = self._lookup(name, DefinitionKind.SERVICE)
        return None if index is None else ServiceDescriptor(self, index)

    def get_extension_by_name(self, name: str) -> FieldDescriptor | None:
        index = self._lookup(name, DefinitionKind.EXTENSION)
        return None if index is None else FieldDescriptor(self, index)

    def get_file_by_name(self, name: str) -> FileDescriptor | None:
        index = self._file_names.get(name)
        return None if index is None else FileDescriptor(self, index)

    @property
    def files(self) -> list[FileDescriptor]:
        return [FileDescriptor(self, i) for i in range(len(self._files))]

    def all_messages(self) -> Iterator[MessageDescriptor]:
        for i in range(len(self._messages)):
            yield MessageDescriptor(self, i)

    def all_enums(self) -> Iterator[EnumDescriptor]:
        for i in range(len(self._enums)):
            yield EnumDescriptor(self, i)

    def all_services(self) -> Iterator[ServiceDescriptor]:
        for i in range(len(self._services)):
            yield ServiceDescriptor(self, i)

    def all_extensions(self) -> Iterator[FieldDescriptor]:
        for i, record in enumerate(self._fields):
            if record.extendee is not None:
                yield FieldDescriptor(self, i)

    def to_dict(self) -> dict[str, Any]:
        """Dump the arena as JSON-compatible data, for inspection."""
        return {
            "files": [r.to_dict(encode_json=True) for r in self._files],
            "messages": [r.to_dict(encode_json=True) for r in self._messages],
            "fields": [r.to_dict(encode_json=True) for r in self._fields],
            "oneofs": [r.to_dict(encode_json=True) for r in self._oneofs],
            "enums": [r.to_dict(encode_json=True) for r in self._enums],
            "enum_values": [r.to_dict(encode_json=True) for r in self._enum_values],
            "services": [r.to_dict(encode_json=True) for r in self._services],
            "methods": [r.to_dict(encode_json=True) for r in self._methods],
        }

    def __repr__(self) -> str:
        return f"<DescriptorPool files={len(self._files)} messages={len(self._messages)}>"


@dataclasses.dataclass
class _PendingField:
    index: int
    scope: str
    type_name: str
    declared: FieldType | None
    extendee: str


@dataclasses.dataclass
class _PendingMethod:
    index: int
    scope: str
    input: str
    output: str


class _PoolBuilder:
    """Stages new files against copies of a pool's tables.

    Nothing is visible in the pool until commit(), so a failed merge leaves
    it untouched.
    """

    def __init__(self, pool: DescriptorPool) -> None:
        self.pool = pool
        self.files = list(pool._files)
        self.file_bytes = list(pool._file_bytes)
        self.file_names = dict(pool._file_names)
        self.messages = list(pool._messages)
        self.fields = list(pool._fields)
        self.oneofs = list(pool._oneofs)
        self.enums = list(pool._enums)
        self.enum_values = list(pool._enum_values)
        self.services = list(pool._services)
        self.methods = list(pool._methods)
        self.names = dict(pool._names)
        self._copied_messages: set[int] = set()
        self._pending_fields: list[_PendingField] = []
        self._pending_methods: list[_PendingMethod] = []

    def commit(self) -> None:
        pool = self.pool
        pool._files = self.files
        pool._file_bytes = self.file_bytes
        pool._file_names = self.file_names
        pool._messages = self.messages
        pool._fields = self.fields
        pool._oneofs = self.oneofs
        pool._enums = self.enums
        pool._enum_values = self.enum_values
        pool._services = self.services
        pool._methods = self.methods
        pool._names = self.names

    def add_files(self, files: list[tuple[FileDescriptorProto, bytes]]) -> None:
        new: dict[str, tuple[FileDescriptorProto, bytes]] = {}
        for proto, raw in files:
            if not proto.name:
                raise MalformedDescriptorBytesError("file descriptor has no name")
            existing = self.file_names.get(proto.name)
            if existing is not None:
                if self.file_bytes[existing] != raw:
                    raise DuplicateNameError(
                        f"file {proto.name} is already registered with different contents"
                    )
                logger.debug("Skipping already registered file %s", proto.name)
                continue
            if proto.name in new:
                if new[proto.name][1] != raw:
                    raise DuplicateNameError(f"file {proto.name} appears twice in descriptor set")
                continue
            new[proto.name] = (proto, raw)

        for proto, raw in self._sort_by_dependencies(new):
            self._add_file(proto, raw)
            logger.debug("Registered file %s", proto.name)

        for pending in self._pending_fields:
            self._resolve_field(pending)
        for pending in self._pending_methods:
            self._resolve_method(pending)

    def _sort_by_dependencies(
        self, new: dict[str, tuple[FileDescriptorProto, bytes]]
    ) -> list[tuple[FileDescriptorProto, bytes]]:
        ordered: list[tuple[FileDescriptorProto, bytes]] = []
        done: set[str] = set()
        visiting: set[str] = set()

        def visit(name: str) -> None:
            if name in done:
                return
            if name in visiting:
                raise UnresolvedImportError(f"import cycle involving {name}")
            visiting.add(name)
            proto, raw = new[name]
            for dep in proto.dependency:
                if dep in new:
                    visit(dep)
                elif dep not in self.file_names:
                    raise UnresolvedImportError(f"{name} imports {dep}, which is not registered")
            visiting.discard(name)
            done.add(name)
            ordered.append((proto, raw))

        for name in new:
            visit(name)
        return ordered

    def _register(self, full_name: str, kind: DefinitionKind, index: int) -> None:
        existing = self.names.get(full_name)
        if existing is not None:
            if kind == DefinitionKind.PACKAGE and existing[0] == DefinitionKind.PACKAGE:
                return
            raise DuplicateNameError(f'"{full_name}" is already defined')
        self.names[full_name] = (kind, index)

    def _add_file(self, proto: FileDescriptorProto, raw: bytes) -> None:
        syntax = proto.syntax or "proto2"
        if syntax not in (Syntax.PROTO2, Syntax.PROTO3):
            raise MalformedDescriptorBytesError(f"{proto.name}: unsupported syntax {syntax!r}")

        file_index = len(self.files)
        package = proto.package or ""
        record = FileRecord(
            name=proto.name or "",
            package=package,
            syntax=Syntax(syntax),
            dependencies=list(proto.dependency),
            public_dependencies=list(proto.public_dependency),
        )
        self.files.append(record)
        self.file_bytes.append(raw)
        self.file_names[record.name] = file_index

        if package:
            parts = package.split(".")
            for i in range(1, len(parts) + 1):
                self._register(".".join(parts[:i]), DefinitionKind.PACKAGE, file_index)

        for message in proto.message_type:
            record.messages.append(self._add_message(message, file_index, package, None))
        for enum in proto.enum_type:
            record.enums.append(self._add_enum(enum, file_index, package, None))
        for extension in proto.extension:
            record.extensions.append(self._add_field(extension, file_index, package, None))
        for service in proto.service:
            record.services.append(self._add_service(service, file_index, package))

    def _add_message(
        self, proto: DescriptorProto, file_index: int, scope: str, parent: int | None
    ) -> int:
        name = _require_name(proto.name, "message", scope)
        full_name = _join(scope, name)
        index = len(self.messages)
        options = proto.options
        record = MessageRecord(
            name=name,
            full_name=full_name,
            file=file_index,
            parent=parent,
            is_map_entry=bool(options and options.map_entry),
            deprecated=bool(options and options.deprecated),
            extension_ranges=[(r.start or 0, r.end or 0) for r in proto.extension_range],
            reserved_ranges=[(r.start or 0, r.end or 0) for r in proto.reserved_range],
            reserved_names=list(proto.reserved_name),
        )
        self.messages.append(record)
        self._register(full_name, DefinitionKind.MESSAGE, index)

        for oneof in proto.oneof_decl:
            oneof_name = _require_name(oneof.name, "oneof", full_name)
            oneof_index = len(self.oneofs)
            self.oneofs.append(
                OneofRecord(name=oneof_name, full_name=_join(full_name, oneof_name), parent=index)
            )
            self._register(_join(full_name, oneof_name), DefinitionKind.ONEOF, oneof_index)
            record.oneofs.append(oneof_index)

        for field_proto in proto.field:
            field_index = self._add_field(field_proto, file_index, full_name, index)
            field = self.fields[field_index]
            if field.number in record.field_numbers:
                raise DuplicateNameError(
                    f"field number {field.number} is used more than once in {full_name}"
                )
            record.fields.append(field_index)
            record.field_numbers[field.number] = field_index
            record.field_names[field.name] = field_index
            record.field_json_names.setdefault(field.json_name, field_index)

            if field_proto.oneof_index is not None:
                if not 0 <= field_proto.oneof_index < len(record.oneofs):
                    raise MalformedDescriptorBytesError(
                        f"{field.full_name} has invalid oneof index {field_proto.oneof_index}"
                    )
                oneof_index = record.oneofs[field_proto.oneof_index]
                field.oneof = oneof_index
                self.oneofs[oneof_index].fields.append(field_index)

        for oneof_index in record.oneofs:
            oneof = self.oneofs[oneof_index]
            if not oneof.fields:
                raise MalformedDescriptorBytesError(f"oneof {oneof.full_name} has no fields")
            oneof.synthetic = all(self.fields[i].proto3_optional for i in oneof.fields)

        for nested in proto.nested_type:
            record.messages.append(self._add_message(nested, file_index, full_name, index))
        for enum in proto.enum_type:
            record.enums.append(self._add_enum(enum, file_index, full_name, index))
        for extension in proto.extension:
            record.extensions.append(self._add_field(extension, file_index, full_name, index))
        return index

    def _add_field(
        self, proto: FieldDescriptorProto, file_index: int, scope: str, parent: int | None
    ) -> int:
        name = _require_name(proto.name, "field", scope)
        full_name = _join(scope, name)
        number = proto.number
        if number is None or not 1 <= number <= MAX_FIELD_NUMBER:
            raise MalformedDescriptorBytesError(f"{full_name} has invalid number {number}")
        try:
            cardinality = Cardinality(proto.label or Cardinality.OPTIONAL)
            declared = FieldType(proto.type) if proto.type else None
        except ValueError as e:
            raise MalformedDescriptorBytesError(f"{full_name}: {e}") from e
        if declared is None and not proto.type_name:
            raise MalformedDescriptorBytesError(f"{full_name} has neither a type nor a type name")

        is_extension = bool(proto.extendee)
        options = proto.options
        index = len(self.fields)
        record = FieldRecord(
            name=name,
            full_name=full_name,
            json_name=proto.json_name or to_json_name(name),
            number=number,
            cardinality=cardinality,
            type=declared or FieldType.MESSAGE,
            file=file_index,
            parent=parent,
            packed=options.packed if options is not None else None,
            proto3_optional=bool(proto.proto3_optional),
            default_value=proto.default_value,
            deprecated=bool(options and options.deprecated),
            has_json_name=proto.json_name is not None,
        )
        self.fields.append(record)
        kind = DefinitionKind.EXTENSION if is_extension else DefinitionKind.FIELD
        self._register(full_name, kind, index)
        self._pending_fields.append(
            _PendingField(
                index=index,
                scope=scope,
                type_name=proto.type_name or "",
                declared=declared,
                extendee=proto.extendee or "",
            )
        )
        return index

    def _add_enum(
        self, proto: EnumDescriptorProto, file_index: int, scope: str, parent: int | None
    ) -> int:
        name = _require_name(proto.name, "enum", scope)
        full_name = _join(scope, name)
        index = len(self.enums)
        options = proto.options
        record = EnumRecord(
            name=name,
            full_name=full_name,
            file=file_index,
            parent=parent,
            allow_alias=bool(options and options.allow_alias),
            deprecated=bool(options and options.deprecated),
        )
        self.enums.append(record)
        self._register(full_name, DefinitionKind.ENUM, index)
        if not proto.value:
            raise MalformedDescriptorBytesError(f"enum {full_name} has no values")

        for value in proto.value:
            value_name = _require_name(value.name, "enum value", full_name)
            value_index = len(self.enum_values)
            number = value.number or 0
            # Enum values are scoped as siblings of their enum, as in C++.
            value_full_name = _join(scope, value_name)
            self.enum_values.append(
                EnumValueRecord(
                    name=value_name, full_name=value_full_name, number=number, parent=index
                )
            )
            self._register(value_full_name, DefinitionKind.ENUM_VALUE, value_index)
            if number in record.value_numbers and not record.allow_alias:
                raise DuplicateNameError(
                    f"{value_full_name} reuses number {number} in {full_name} without allow_alias"
                )
            record.values.append(value_index)
            record.value_numbers.setdefault(number, value_index)
            record.value_names[value_name] = value_index
        return index

    def _add_service(self, proto: ServiceDescriptorProto, file_index: int, scope: str) -> int:
        name = _require_name(proto.name, "service", scope)
        full_name = _join(scope, name)
        index = len(self.services)
        record = ServiceRecord(name=name, full_name=full_name, file=file_index)
        self.services.append(record)
        self._register(full_name, DefinitionKind.SERVICE, index)

        for method in proto.method:
            method_name = _require_name(method.name, "method", full_name)
            method_index = len(self.methods)
            self.methods.append(
                MethodRecord(
                    name=method_name,
                    full_name=_join(full_name, method_name),
                    parent=index,
                    input=-1,
                    output=-1,
                    client_streaming=bool(method.client_streaming),
                    server_streaming=bool(method.server_streaming),
                )
            )
            self._register(_join(full_name, method_name), DefinitionKind.METHOD, method_index)
            record.methods.append(method_index)
            self._pending_methods.append(
                _PendingMethod(
                    index=method_index,
                    scope=scope,
                    input=method.input_type or "",
                    output=method.output_type or "",
                )
            )
        return index

    def _resolve(self, name: str, scope: str, what: str) -> tuple[DefinitionKind, int]:
        """Resolve a type reference the way protoc does.

        A leading dot makes the name fully qualified. Otherwise the first
        component is searched for from the innermost scope outwards, and the
        remaining components are looked up beneath the first match.
        """
        if not name:
            raise UnresolvedTypeReferenceError(f"{what} has an empty type name")
        if name.startswith("."):
            hit = self.names.get(name[1:])
            if hit is not None and hit[0] in _TYPE_KINDS:
                return hit
            raise UnresolvedTypeReferenceError(f"{what} refers to undefined type {name}")

        first, _, rest = name.partition(".")
        scope_parts = scope.split(".") if scope else []
        while True:
            prefix = ".".join(scope_parts)
            hit = self.names.get(_join(prefix, first))
            if hit is not None:
                if not rest and hit[0] in _TYPE_KINDS:
                    return hit
                if rest and hit[0] in _AGGREGATE_KINDS:
                    full = self.names.get(_join(prefix, name))
                    if full is not None and full[0] in _TYPE_KINDS:
                        return full
                    raise UnresolvedTypeReferenceError(f"{what} refers to undefined type {name}")
            if not scope_parts:
                break
            scope_parts.pop()
        raise UnresolvedTypeReferenceError(f"{what} refers to undefined type {name}")

    def _resolve_field(self, pending: _PendingField) -> None:
        record = self.fields[pending.index]
        if pending.type_name:
            kind, target = self._resolve(pending.type_name, pending.scope, record.full_name)
            if kind == DefinitionKind.MESSAGE:
                if pending.declared not in (None, FieldType.MESSAGE, FieldType.GROUP):
                    raise UnresolvedTypeReferenceError(
                        f"{record.full_name}: {pending.type_name} is a message, "
                        f"but the field is declared {pending.declared.name}"
                    )
                record.type = pending.declared or FieldType.MESSAGE
                record.type_name = self.messages[target].full_name
            else:
                if pending.declared not in (None, FieldType.ENUM):
                    raise UnresolvedTypeReferenceError(
                        f"{record.full_name}: {pending.type_name} is an enum, "
                        f"but the field is declared {pending.declared.name}"
                    )
                record.type = FieldType.ENUM
                record.type_name = self.enums[target].full_name
            record.type_index = target
        elif pending.declared in (FieldType.MESSAGE, FieldType.GROUP, FieldType.ENUM):
            raise MalformedDescriptorBytesError(f"{record.full_name} has no type name")

        if record.type_index is not None and record.type == FieldType.MESSAGE:
            if self.messages[record.type_index].is_map_entry and (
                record.cardinality != Cardinality.REPEATED
            ):
                raise MalformedDescriptorBytesError(
                    f"{record.full_name} refers to map entry {record.type_name} but is not repeated"
                )

        if pending.extendee:
            kind, target = self._resolve(pending.extendee, pending.scope, record.full_name)
            if kind != DefinitionKind.MESSAGE:
                raise UnresolvedTypeReferenceError(
                    f"{record.full_name} extends {pending.extendee}, which is not a message"
                )
            extendee = self._message_for_update(target)
            if record.number in extendee.field_numbers or record.number in extendee.extension_numbers:
                raise DuplicateNameError(
                    f"{record.full_name}: number {record.number} is already used in "
                    f"{extendee.full_name}"
                )
            extendee.extension_numbers[record.number] = pending.index
            record.extendee = target

    def _resolve_method(self, pending: _PendingMethod) -> None:
        record = self.methods[pending.index]
        for attr, type_name in (("input", pending.input), ("output", pending.output)):
            kind, target = self._resolve(type_name, pending.scope, record.full_name)
            if kind != DefinitionKind.MESSAGE:
                raise UnresolvedTypeReferenceError(
                    f"{record.full_name}: {attr} type {type_name} is not a message"
                )
            setattr(record, attr, target)

    def _message_for_update(self, index: int) -> MessageRecord:
        # Records already committed to the pool are copied before mutation.
        if index < len(self.pool._messages) and index not in self._copied_messages:
            original = self.messages[index]
            self.messages[index] = dataclasses.replace(
                original, extension_numbers=dict(original.extension_numbers)
            )
            self._copied_messages.add(index)
        return self.messages[index]


def _require_name(name: str | None, what: str, scope: str) -> str:
    if not name:
        where = f" in {scope}" if scope else ""
        raise MalformedDescriptorBytesError(f"{what}{where} has no name")
    return name
