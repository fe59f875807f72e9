"""Tests for descriptor handles"""

from dynproto.descriptor.types import Cardinality, FieldType, Syntax
from dynproto.wire import WireType


def describe_file_descriptor():
    def reports_its_contents(pool, expect):
        file = pool.get_file_by_name("test.proto")
        expect(file.syntax) == Syntax.PROTO3
        expect([m.name for m in file.messages]) == ["Point", "Scalars", "Containers", "Choice", "Tree", "Wkt"]
        expect([e.name for e in file.enums]) == ["Color"]
        expect([s.name for s in file.services]) == ["Geometry"]
        expect("google/protobuf/any.proto" in [d.name for d in file.dependencies]) == True

    def keeps_its_serialized_form(pool, expect):
        file = pool.get_file_by_name("legacy.proto")
        expect(file.syntax) == Syntax.PROTO2
        expect(len(file.serialized) > 0) == True


def describe_message_descriptor():
    def lists_fields_in_declaration_and_number_order(pool, expect):
        message = pool.get_message_by_name("test.Scalars")
        expect(message.fields()[0].name) == "f_double"
        numbers = [f.number for f in message.fields_by_number()]
        expect(numbers) == sorted(numbers)

    def finds_fields(pool, expect):
        message = pool.get_message_by_name("test.Scalars")
        expect(message.get_field(14).name) == "f_enum"
        expect(message.get_field(99)) == None
        expect(message.get_field_by_name("f_int32").number) == 5
        expect(message.get_field_by_json_name("fInt32").number) == 5

    def synthesizes_map_entries(pool, expect):
        containers = pool.get_message_by_name("test.Containers")
        counts = containers.get_field_by_name("counts")
        expect(counts.is_map) == True
        expect(counts.is_list) == False
        entry = counts.message_type
        expect(entry.full_name) == "test.Containers.CountsEntry"
        expect(entry.is_map_entry) == True
        expect(entry.map_entry_key().type) == FieldType.STRING
        expect(entry.map_entry_value().type) == FieldType.INT32
        expect(entry.parent) == containers

    def reports_ranges_and_reserved_names(pool, expect):
        settings = pool.get_message_by_name("legacy.Settings")
        expect(settings.extension_ranges) == [(100, 200)]
        expect(settings.reserved_ranges) == [(20, 26), (30, 31)]
        expect(settings.reserved_names) == ["old_name"]

    def lists_extensions(pool, expect):
        settings = pool.get_message_by_name("legacy.Settings")
        expect([f.full_name for f in settings.extensions()]) == [
            "legacy.note",
            "legacy.tags",
            "legacy.Holder.holder",
        ]
        expect(settings.get_extension(110).extension_scope) == pool.get_message_by_name("legacy.Holder")
        holder = pool.get_message_by_name("legacy.Holder")
        expect([f.name for f in holder.declared_extensions()]) == ["holder"]

    def compares_by_pool_and_index(pool, expect):
        first = pool.get_message_by_name("test.Point")
        second = pool.get_message_by_name("test.Point")
        expect(first) == second
        expect(hash(first)) == hash(second)
        expect(repr(first)) == "<MessageDescriptor test.Point>"


def describe_field_descriptor():
    def reports_names(pool, expect):
        field = pool.get_message_by_name("test.Scalars").get_field_by_name("f_sint64")
        expect(field.full_name) == "test.Scalars.f_sint64"
        expect(field.json_name) == "fSint64"
        expect(field.wire_type) == WireType.VARINT
        expect(field.containing_message.full_name) == "test.Scalars"

    def honors_explicit_json_names(pool, expect):
        field = pool.get_message_by_name("legacy.Settings").get_field_by_name("renamed")
        expect(field.json_name) == "customName"
        expect(field.has_explicit_json_name) == True

    def names_extensions_in_brackets(pool, expect):
        note = pool.get_extension_by_name("legacy.note")
        expect(note.is_extension) == True
        expect(note.json_key) == "[legacy.note]"
        expect(note.containing_message.full_name) == "legacy.Settings"
        expect(note.extension_scope) == None

    def resolves_kinds(pool, expect):
        message = pool.get_message_by_name("test.Scalars")
        expect(message.get_field_by_name("f_enum").kind) == pool.get_enum_by_name("test.Color")
        expect(message.get_field_by_name("f_bool").kind) == FieldType.BOOL
        nested = pool.get_message_by_name("test.Choice").get_field_by_name("nested")
        expect(nested.kind) == pool.get_message_by_name("test.Point")

    def packs_by_syntax_unless_told_otherwise(pool, expect):
        containers = pool.get_message_by_name("test.Containers")
        expect(containers.get_field_by_name("numbers").is_packed) == True
        expect(containers.get_field_by_name("unpacked").is_packed) == False
        expect(containers.get_field_by_name("names").is_packable) == False
        settings = pool.get_message_by_name("legacy.Settings")
        expect(settings.get_field_by_name("values").is_packed) == False
        expect(settings.get_field_by_name("packed_values").is_packed) == True

    def tracks_presence(pool, expect):
        choice = pool.get_message_by_name("test.Choice")
        expect(choice.get_field_by_name("text").supports_presence) == True
        expect(choice.get_field_by_name("maybe").supports_presence) == True
        expect(choice.get_field_by_name("nested").supports_presence) == True
        expect(pool.get_message_by_name("test.Point").get_field(1).supports_presence) == False
        expect(pool.get_message_by_name("legacy.Settings").get_field(1).supports_presence) == True

    def separates_synthetic_oneofs(pool, expect):
        choice = pool.get_message_by_name("test.Choice")
        maybe = choice.get_field_by_name("maybe")
        expect(maybe.proto3_optional) == True
        expect(maybe.containing_oneof.name) == "_maybe"
        expect(maybe.containing_oneof.is_synthetic) == True
        expect(maybe.real_containing_oneof) == None
        text = choice.get_field_by_name("text")
        expect(text.real_containing_oneof.name) == "value"
        expect([f.name for f in text.real_containing_oneof.fields()]) == ["text", "number", "point"]

    def reports_cardinality(pool, expect):
        containers = pool.get_message_by_name("test.Containers")
        expect(containers.get_field_by_name("names").cardinality) == Cardinality.REPEATED
        expect(containers.get_field_by_name("names").is_list) == True

    def reports_declared_defaults(pool, expect):
        settings = pool.get_message_by_name("legacy.Settings")
        expect(settings.get_field_by_name("count").default_value) == "42"
        expect(settings.get_field_by_name("blob").default_value) == "\\001ab"
        expect(settings.get_field_by_name("id").default_value) == None


def describe_enum_descriptor():
    def lists_values(pool, expect):
        color = pool.get_enum_by_name("test.Color")
        expect([v.name for v in color.values()]) == ["COLOR_UNSPECIFIED", "RED", "GREEN"]
        expect(color.get_value(2).name) == "GREEN"
        expect(color.get_value_by_name("RED").number) == 1
        expect(color.get_value(7)) == None
        expect(color.default_value.name) == "COLOR_UNSPECIFIED"
        expect(color.get_value(1).full_name) == "test.RED"

    def uses_the_first_value_as_the_proto2_default(pool, expect):
        expect(pool.get_enum_by_name("legacy.Level").default_value.name) == "LOW"


def describe_service_descriptor():
    def lists_methods(pool, expect):
        service = pool.get_service_by_name("test.Geometry")
        expect([m.name for m in service]) == ["Mirror", "Trace"]
        trace = service.get_method_by_name("Trace")
        expect(trace.full_name) == "test.Geometry.Trace"
        expect(trace.input.full_name) == "test.Point"
        expect(trace.client_streaming) == True
        expect(trace.server_streaming) == True
        expect(service.get_method_by_name("Mirror").client_streaming) == False
