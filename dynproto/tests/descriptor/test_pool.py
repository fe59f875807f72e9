"""Tests for the descriptor pool"""

from pytest import raises

from dynproto.descriptor import DescriptorPool, to_json_name
from dynproto.descriptor.proto import (
    DescriptorProto,
    EnumDescriptorProto,
    EnumValueDescriptorProto,
    FieldDescriptorProto,
    FileDescriptorProto,
    decode_file_descriptor_set,
    encode_file_descriptor_set,
)
from dynproto.descriptor.types import Cardinality, FieldType
from dynproto.errors import (
    DuplicateNameError,
    MalformedDescriptorBytesError,
    UnresolvedImportError,
    UnresolvedTypeReferenceError,
)
from dynproto.schema import compile_sources


def _file(name, package="pkg", messages=(), enums=(), dependency=(), syntax="proto3"):
    return FileDescriptorProto(
        name=name,
        package=package,
        syntax=syntax,
        dependency=list(dependency),
        message_type=list(messages),
        enum_type=list(enums),
    )


def _field(name, number, type=None, type_name=None, label=Cardinality.OPTIONAL):
    return FieldDescriptorProto(name=name, number=number, type=type, type_name=type_name, label=label)


def describe_building():
    def builds_from_descriptor_set_bytes(descriptor_set, expect):
        pool = DescriptorPool.build(descriptor_set)
        expect(pool.get_message_by_name("test.Point").full_name) == "test.Point"
        expect(pool.get_file_by_name("test.proto").package) == "test"
        expect(pool.get_file_by_name("google/protobuf/any.proto") is not None) == True

    def accepts_leading_dots(pool, expect):
        expect(pool.get_message_by_name(".test.Point")) == pool.get_message_by_name("test.Point")

    def returns_none_for_missing_names(pool, expect):
        expect(pool.get_message_by_name("test.Missing")) == None
        expect(pool.get_message_by_name("test.Color")) == None
        expect(pool.get_enum_by_name("test.Color").full_name) == "test.Color"
        expect(pool.get_service_by_name("test.Geometry").full_name) == "test.Geometry"

    def loads_the_well_known_types(expect):
        pool = DescriptorPool.with_well_known_types()
        expect(pool.get_message_by_name("google.protobuf.Timestamp") is not None) == True
        expect(pool.get_enum_by_name("google.protobuf.NullValue") is not None) == True

    def round_trips_its_descriptor_set(pool, expect):
        rebuilt = DescriptorPool.build(pool.encode_file_descriptor_set())
        expect([f.name for f in rebuilt.files]) == [f.name for f in pool.files]

    def iterates_definitions(pool, expect):
        names = {m.full_name for m in pool.all_messages()}
        expect("test.Containers.CountsEntry" in names) == True
        expect({e.full_name for e in pool.all_extensions()}) == {
            "legacy.note",
            "legacy.tags",
            "legacy.Holder.holder",
        }

    def dumps_its_records(pool, expect):
        data = pool.to_dict()
        expect(sorted(data)) == [
            "enum_values",
            "enums",
            "fields",
            "files",
            "messages",
            "methods",
            "oneofs",
            "services",
        ]
        expect(data["files"][0]["name"]) == pool.files[0].name


def describe_merging():
    def skips_identical_files(pool, descriptor_set, expect):
        count = len(pool.files)
        pool.merge(descriptor_set)
        expect(len(pool.files)) == count

    def rejects_a_changed_file_with_the_same_name(expect):
        pool = DescriptorPool()
        pool.add_file_descriptor_protos([_file("a.proto", messages=[DescriptorProto(name="A")])])
        with raises(DuplicateNameError):
            pool.add_file_descriptor_protos([_file("a.proto", messages=[DescriptorProto(name="B")])])

    def rejects_duplicate_definitions(expect):
        pool = DescriptorPool()
        pool.add_file_descriptor_protos([_file("a.proto", messages=[DescriptorProto(name="A")])])
        with raises(DuplicateNameError):
            pool.add_file_descriptor_protos([_file("b.proto", messages=[DescriptorProto(name="A")])])

    def leaves_the_pool_unchanged_on_failure(expect):
        pool = DescriptorPool()
        good = _file("good.proto", package="ok", messages=[DescriptorProto(name="Fine")])
        bad = _file(
            "bad.proto",
            messages=[DescriptorProto(name="Broken", field=[_field("x", 1, type_name=".pkg.Nope")])],
        )
        with raises(UnresolvedTypeReferenceError):
            pool.add_file_descriptor_protos([good, bad])
        expect(pool.files) == []
        expect(pool.get_message_by_name("ok.Fine")) == None

    def requires_imports_to_be_registered(expect):
        pool = DescriptorPool()
        with raises(UnresolvedImportError):
            pool.add_file_descriptor_protos([_file("a.proto", dependency=["missing.proto"])])

    def rejects_import_cycles(expect):
        pool = DescriptorPool()
        with raises(UnresolvedImportError):
            pool.add_file_descriptor_protos(
                [
                    _file("a.proto", package="a", dependency=["b.proto"]),
                    _file("b.proto", package="b", dependency=["a.proto"]),
                ]
            )

    def accepts_files_in_any_order(expect):
        pool = DescriptorPool()
        user = _file(
            "user.proto",
            package="app",
            dependency=["base.proto"],
            messages=[DescriptorProto(name="User", field=[_field("id", 1, type_name="base.Id")])],
        )
        base = _file("base.proto", package="base", messages=[DescriptorProto(name="Id")])
        pool.add_file_descriptor_protos([user, base])
        field = pool.get_message_by_name("app.User").get_field(1)
        expect(field.message_type.full_name) == "base.Id"

    def rejects_duplicate_field_numbers(expect):
        pool = DescriptorPool()
        message = DescriptorProto(
            name="M",
            field=[_field("a", 1, type=FieldType.INT32), _field("b", 1, type=FieldType.INT32)],
        )
        with raises(DuplicateNameError):
            pool.add_file_descriptor_protos([_file("m.proto", messages=[message])])

    def rejects_malformed_bytes(expect):
        with raises(MalformedDescriptorBytesError):
            DescriptorPool.build(b"\x0a\x05\x0a")

    def rejects_files_without_names(expect):
        pool = DescriptorPool()
        with raises(MalformedDescriptorBytesError):
            pool.add_file_descriptor_protos([FileDescriptorProto(package="x")])


def describe_type_resolution():
    def resolves_relative_names_innermost_first(expect):
        data = compile_sources(
            {
                "scope.proto": """
                    syntax = "proto3";
                    package outer.inner;
                    message Target { int32 a = 1; }
                    message Holder {
                      message Target { int32 b = 1; }
                      Target near = 1;
                      inner.Target far = 2;
                      .outer.inner.Target absolute = 3;
                    }
                """
            }
        )
        holder = DescriptorPool.build(data).get_message_by_name("outer.inner.Holder")
        expect(holder.get_field_by_name("near").message_type.full_name) == "outer.inner.Holder.Target"
        expect(holder.get_field_by_name("far").message_type.full_name) == "outer.inner.Target"
        expect(holder.get_field_by_name("absolute").message_type.full_name) == "outer.inner.Target"

    def infers_enum_or_message_kinds(expect):
        color = EnumDescriptorProto(name="Color", value=[EnumValueDescriptorProto(name="NONE", number=0)])
        message = DescriptorProto(
            name="M",
            field=[_field("color", 1, type_name="Color"), _field("child", 2, type_name="M")],
        )
        pool = DescriptorPool()
        pool.add_file_descriptor_protos([_file("m.proto", messages=[message], enums=[color])])
        fields = pool.get_message_by_name("pkg.M").fields()
        expect(fields[0].type) == FieldType.ENUM
        expect(fields[1].type) == FieldType.MESSAGE

    def rejects_references_to_non_types(expect):
        message = DescriptorProto(
            name="M", field=[_field("a", 1, type=FieldType.INT32), _field("b", 2, type_name="M.a")]
        )
        pool = DescriptorPool()
        with raises(UnresolvedTypeReferenceError):
            pool.add_file_descriptor_protos([_file("m.proto", messages=[message])])


def describe_descriptor_set_codec():
    def round_trips_records(expect):
        proto = _file("a.proto", messages=[DescriptorProto(name="A", field=[_field("x", 1, type=FieldType.INT32)])])
        decoded = decode_file_descriptor_set(encode_file_descriptor_set([proto]))
        expect(decoded[0][0]) == proto


def describe_json_names():
    def camel_cases_underscores(expect):
        expect(to_json_name("foo_bar")) == "fooBar"
        expect(to_json_name("foo_bar_baz")) == "fooBarBaz"
        expect(to_json_name("_foo")) == "Foo"
        expect(to_json_name("foo__bar")) == "fooBar"
        expect(to_json_name("fooBar")) == "fooBar"
