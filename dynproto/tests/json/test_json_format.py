"""Tests for the canonical JSON mapping"""

import json

from pytest import raises

from dynproto.errors import (
    InvalidBase64Error,
    InvalidEnumNameError,
    JsonTypeMismatchError,
    RecursionLimitError,
    UnknownFieldError,
)
from dynproto.json_format import (
    DeserializeOptions,
    SerializeOptions,
    from_dict,
    from_json,
    to_dict,
    to_json,
)
from dynproto.message import DynamicMessage


def describe_to_json():
    def writes_json_names(pool, expect):
        point = DynamicMessage.decode(pool.get_message_by_name("test.Point"), bytes.fromhex("089601"))
        expect(to_json(point)) == '{"x": 150}'

    def skips_fields_without_values(pool, expect):
        expect(to_dict(DynamicMessage(pool.get_message_by_name("test.Point")))) == {}

    def writes_every_scalar_kind(pool, expect):
        scalars = DynamicMessage(pool.get_message_by_name("test.Scalars"))
        scalars.set_field("f_double", 1.5)
        scalars.set_field("f_float", 0.1)
        scalars.set_field("f_int64", -5)
        scalars.set_field("f_uint64", 2**64 - 1)
        scalars.set_field("f_int32", 7)
        scalars.set_field("f_bool", True)
        scalars.set_field("f_string", "hé")
        scalars.set_field("f_bytes", b"\xfb\xff")
        scalars.set_field("f_enum", "RED")
        expect(to_dict(scalars)) == {
            "fDouble": 1.5,
            "fFloat": 0.1,
            "fInt64": "-5",
            "fUint64": "18446744073709551615",
            "fInt32": 7,
            "fBool": True,
            "fString": "hé",
            "fBytes": "+/8=",
            "fEnum": "RED",
        }

    def writes_special_floats_as_strings(pool, expect):
        scalars = DynamicMessage(pool.get_message_by_name("test.Scalars"))
        scalars.set_field("f_double", float("nan"))
        scalars.set_field("f_float", float("-inf"))
        expect(to_dict(scalars)) == {"fDouble": "NaN", "fFloat": "-Infinity"}

    def applies_options(pool, expect):
        scalars = DynamicMessage(pool.get_message_by_name("test.Scalars"))
        scalars.set_field("f_int64", 3)
        scalars.set_field("f_enum", "GREEN")
        options = SerializeOptions(
            stringify_64_bit_integers=False, use_enum_numbers=True, use_proto_field_name=True
        )
        expect(to_dict(scalars, options)) == {"f_int64": 3, "f_enum": 2}

    def writes_defaults_on_request(pool, expect):
        point = DynamicMessage(pool.get_message_by_name("test.Point"))
        expect(to_dict(point, SerializeOptions(skip_default_fields=False))) == {"x": 0, "y": 0}
        choice = DynamicMessage(pool.get_message_by_name("test.Choice"))
        expect(to_dict(choice, SerializeOptions(skip_default_fields=False))) == {}

    def writes_containers(pool, expect):
        containers = DynamicMessage(pool.get_message_by_name("test.Containers"))
        containers.set_field("numbers", [1, 2])
        containers.set_field("points_by_id", {3: {"x": 1}})
        containers.set_field("flags", {True: "yes"})
        containers.set_field("colors", ["RED", 9])
        expect(to_dict(containers)) == {
            "numbers": [1, 2],
            "pointsById": {"3": {"x": 1}},
            "colors": ["RED", 9],
            "flags": {"true": "yes"},
        }

    def writes_extensions_in_brackets(pool, expect):
        settings = DynamicMessage(pool.get_message_by_name("legacy.Settings"))
        settings.set_field("renamed", "x")
        settings.set_extension(pool.get_extension_by_name("legacy.tags"), [1, 2])
        expect(to_dict(settings)) == {"customName": "x", "[legacy.tags]": [1, 2]}

    def indents_on_request(pool, expect):
        point = DynamicMessage(pool.get_message_by_name("test.Point"))
        point.set_field("x", 1)
        expect(to_json(point, SerializeOptions(indent=2))) == '{\n  "x": 1\n}'


def describe_from_json():
    def reads_a_message(pool, expect):
        point = from_json(pool.get_message_by_name("test.Point"), '{"x":150}')
        expect(point.encode()) == bytes.fromhex("089601")

    def accepts_field_names_and_json_names(pool, expect):
        descriptor = pool.get_message_by_name("test.Scalars")
        expect(from_dict(descriptor, {"f_int32": 1})) == from_dict(descriptor, {"fInt32": 1})

    def reads_numbers_from_strings(pool, expect):
        scalars = from_dict(
            pool.get_message_by_name("test.Scalars"),
            {"fInt64": "-12", "fUint32": 4.0, "fInt32": "1e2", "fDouble": "Infinity", "fFloat": "1.5"},
        )
        expect(scalars.get_field("f_int64").as_i64()) == -12
        expect(scalars.get_field("f_uint32").as_u32()) == 4
        expect(scalars.get_field("f_int32").as_i32()) == 100
        expect(scalars.get_field("f_double").as_float()) == float("inf")
        expect(scalars.get_field("f_float").as_float()) == 1.5

    def reads_both_base64_alphabets(pool, expect):
        descriptor = pool.get_message_by_name("test.Scalars")
        expect(from_dict(descriptor, {"fBytes": "-_8"}).get_field("f_bytes").as_bytes()) == b"\xfb\xff"
        expect(from_dict(descriptor, {"fBytes": "+/8="}).get_field("f_bytes").as_bytes()) == b"\xfb\xff"

    def reads_enums_by_name_or_number(pool, expect):
        descriptor = pool.get_message_by_name("test.Scalars")
        expect(from_dict(descriptor, {"fEnum": "GREEN"}).get_field("f_enum").as_enum()) == 2
        expect(from_dict(descriptor, {"fEnum": 1}).get_field("f_enum").as_enum()) == 1

    def treats_null_as_unset(pool, expect):
        choice = from_dict(pool.get_message_by_name("test.Choice"), {"nested": None, "text": None})
        expect(to_dict(choice)) == {}

    def reads_maps_and_lists(pool, expect):
        containers = from_dict(
            pool.get_message_by_name("test.Containers"),
            {"counts": {"a": 1}, "pointsById": {"-4": {"y": 2}}, "flags": {"false": "no"}, "names": ["p"]},
        )
        expect(containers.get_field("counts").to_python()) == {"a": 1}
        expect(list(containers.get_field("points_by_id").to_python())) == [-4]
        expect(containers.get_field("flags").to_python()) == {False: "no"}
        expect(containers.get_field("names").to_python()) == ["p"]

    def reads_extensions(pool, expect):
        settings = from_dict(pool.get_message_by_name("legacy.Settings"), {"[legacy.note]": "n"})
        expect(settings.get_extension(pool.get_extension_by_name("legacy.note")).as_str()) == "n"

    def can_ignore_unknown_fields(pool, expect):
        options = DeserializeOptions(deny_unknown_fields=False)
        point = from_dict(pool.get_message_by_name("test.Point"), {"z": 1, "x": 2}, options)
        expect(to_dict(point)) == {"x": 2}
        scalars = from_dict(pool.get_message_by_name("test.Scalars"), {"fEnum": "PURPLE"}, options)
        expect(to_dict(scalars)) == {}


def describe_from_json_errors():
    def rejects_unknown_fields_with_a_path(pool, expect):
        with raises(UnknownFieldError) as e:
            from_dict(pool.get_message_by_name("test.Containers"), {"points": [{"x": 1}, {"z": 1}]})
        expect(e.value.path) == "points[1].z"

    def reports_the_path_of_bad_values(pool, expect):
        with raises(JsonTypeMismatchError) as e:
            from_dict(pool.get_message_by_name("test.Containers"), {"pointsById": {"7": {"x": "seven"}}})
        expect(e.value.path) == "pointsById[7].x"
        expect(str(e.value).startswith("pointsById[7].x: ")) == True

    def rejects_out_of_range_integers(pool, expect):
        with raises(JsonTypeMismatchError):
            from_dict(pool.get_message_by_name("test.Point"), {"x": 2**31})
        with raises(JsonTypeMismatchError):
            from_dict(pool.get_message_by_name("test.Point"), {"x": 1.5})

    def rejects_unknown_enum_names(pool, expect):
        with raises(InvalidEnumNameError):
            from_dict(pool.get_message_by_name("test.Scalars"), {"fEnum": "PURPLE"})

    def rejects_bad_base64(pool, expect):
        with raises(InvalidBase64Error):
            from_dict(pool.get_message_by_name("test.Scalars"), {"fBytes": "a"})

    def rejects_two_members_of_a_oneof(pool, expect):
        with raises(JsonTypeMismatchError):
            from_dict(pool.get_message_by_name("test.Choice"), {"text": "a", "number": 1})

    def rejects_wrong_json_types(pool, expect):
        descriptor = pool.get_message_by_name("test.Containers")
        with raises(JsonTypeMismatchError):
            from_dict(descriptor, {"numbers": 1})
        with raises(JsonTypeMismatchError):
            from_dict(descriptor, {"numbers": [None]})
        with raises(JsonTypeMismatchError):
            from_dict(descriptor, [])

    def rejects_invalid_documents(pool, expect):
        with raises(JsonTypeMismatchError):
            from_json(pool.get_message_by_name("test.Point"), "{")
        with raises(JsonTypeMismatchError):
            from_json(pool.get_message_by_name("test.Scalars"), '{"fDouble": NaN}')

    def enforces_the_recursion_limit(pool, expect):
        descriptor = pool.get_message_by_name("test.Tree")
        nested = {"children": [{"children": [{}]}]}
        expect(to_dict(from_dict(descriptor, nested))) == nested
        with raises(RecursionLimitError):
            from_dict(descriptor, nested, DeserializeOptions(recursion_limit=2))


def describe_round_trip():
    def survives_binary_and_json(pool, expect):
        descriptor = pool.get_message_by_name("test.Containers")
        document = {
            "numbers": [1, -2],
            "points": [{"x": 1}, {}],
            "counts": {"b": 2},
            "unpacked": [5],
            "colors": ["GREEN"],
        }
        message = from_dict(descriptor, document)
        decoded = DynamicMessage.decode(descriptor, message.encode())
        expect(json.loads(to_json(decoded))) == document
