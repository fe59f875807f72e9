"""Tests for rendering descriptors as .proto source"""

from dynproto.descriptor import DescriptorPool
from dynproto.schema import compile_sources, render


def _recompile(pool, name):
    """Render every file and compile the output again."""
    sources = {file.name: render(file) for file in pool.files}
    recompiled = DescriptorPool.build(compile_sources(sources))
    return render(recompiled.get_file_by_name(name))


def describe_render():
    def writes_proto3_fields(pool, expect):
        text = render(pool.get_file_by_name("test.proto"))
        expect(text.startswith('syntax = "proto3";\n\npackage test;\n')) == True
        expect('import "google/protobuf/any.proto";' in text) == True
        expect("  map<string, int32> counts = 4;" in text) == True
        expect("  map<int32, .test.Point> points_by_id = 5;" in text) == True
        expect("  repeated int32 unpacked = 6 [packed = false];" in text) == True
        expect("  optional int32 maybe = 4;" in text) == True
        expect("  oneof value {\n    string text = 1;\n    int32 number = 2;\n    .test.Point point = 3;\n  }" in text) == True
        expect("Entry" in text) == False

    def writes_services(pool, expect):
        text = render(pool.get_file_by_name("test.proto"))
        expect("  rpc Mirror(.test.Point) returns (.test.Point);" in text) == True
        expect("  rpc Trace(stream .test.Point) returns (stream .test.Point);" in text) == True

    def writes_proto2_defaults_and_ranges(pool, expect):
        text = render(pool.get_file_by_name("legacy.proto"))
        expect(text.startswith('syntax = "proto2";')) == True
        expect("  optional int32 count = 1 [default = 42];" in text) == True
        expect('  optional string label = 2 [default = "none"];' in text) == True
        expect("  optional .legacy.Level level = 4 [default = HIGH];" in text) == True
        expect('  optional bytes blob = 6 [default = "\\001ab"];' in text) == True
        expect('  optional string renamed = 10 [json_name = "customName"];' in text) == True
        expect("  extensions 100 to 199;" in text) == True
        expect("  reserved 20 to 25, 30;" in text) == True
        expect('  reserved "old_name";' in text) == True

    def writes_extensions(pool, expect):
        text = render(pool.get_file_by_name("legacy.proto"))
        expect("extend .legacy.Settings {\n  optional string note = 100;\n  repeated int32 tags = 101;\n}" in text) == True
        expect("  extend .legacy.Settings {\n    optional .legacy.Holder holder = 110;\n  }" in text) == True

    def writes_nested_definitions(expect):
        pool = DescriptorPool.build(
            compile_sources(
                {
                    "nested.proto": 'syntax = "proto3"; package n; message Outer { message Inner { '
                    "enum Kind { KIND_UNSPECIFIED = 0; } Kind kind = 1; } Inner inner = 1; }"
                }
            )
        )
        text = render(pool.get_file_by_name("nested.proto"))
        expect(
            "message Outer {\n"
            "  .n.Outer.Inner inner = 1;\n"
            "  message Inner {\n"
            "    .n.Outer.Inner.Kind kind = 1;\n"
            "    enum Kind {\n"
            "      KIND_UNSPECIFIED = 0;\n"
            "    }\n"
            "  }\n"
            "}\n"
        ) == text.split("\n\n", 2)[2]

    def recompiles_to_the_same_source(pool, expect):
        for name in ("test.proto", "legacy.proto"):
            expect(_recompile(pool, name)) == render(pool.get_file_by_name(name))
