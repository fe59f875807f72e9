"""Tests for the JSON forms of the well-known types"""

from pytest import raises

from dynproto.errors import EncodeError, JsonTypeMismatchError, MissingAnyTypeError, RecursionLimitError
from dynproto.json_format import SerializeOptions, from_dict, from_json, to_dict, to_json
from dynproto.message import DynamicMessage


def _wkt(pool, document):
    return from_dict(pool.get_message_by_name("test.Wkt"), document)


def _round_trip(pool, document):
    message = _wkt(pool, document)
    decoded = DynamicMessage.decode(message.descriptor(), message.encode())
    return to_dict(decoded)


def describe_duration():
    def uses_seconds_with_a_suffix(pool, expect):
        for text in ("1s", "-1.500s", "0.000001s", "3.000000001s"):
            expect(_round_trip(pool, {"duration": text})) == {"duration": text}

    def pads_fractions_to_three_six_or_nine_digits(pool, expect):
        expect(_round_trip(pool, {"duration": "1.5s"})) == {"duration": "1.500s"}
        expect(_round_trip(pool, {"duration": "0.0000015s"})) == {"duration": "0.000001500s"}

    def stores_seconds_and_nanos(pool, expect):
        duration = _wkt(pool, {"duration": "-1.5s"}).get_field("duration").as_message()
        expect(duration.get_field("seconds").as_i64()) == -1
        expect(duration.get_field("nanos").as_i32()) == -500_000_000

    def rejects_malformed_text(pool, expect):
        with raises(JsonTypeMismatchError):
            _wkt(pool, {"duration": "1"})
        with raises(JsonTypeMismatchError):
            _wkt(pool, {"duration": "315576000001s"})

    def rejects_mixed_signs(pool, expect):
        wkt = DynamicMessage(pool.get_message_by_name("test.Wkt"))
        wkt.set_field("duration", {"seconds": 1, "nanos": -1})
        with raises(EncodeError):
            to_dict(wkt)


def describe_timestamp():
    def uses_rfc_3339_in_utc(pool, expect):
        expect(_round_trip(pool, {"timestamp": "1970-01-01T00:00:00Z"})) == {"timestamp": "1970-01-01T00:00:00Z"}
        expect(_round_trip(pool, {"timestamp": "2017-01-15T01:30:15.010Z"})) == {
            "timestamp": "2017-01-15T01:30:15.010Z"
        }

    def normalizes_offsets_to_utc(pool, expect):
        expect(_round_trip(pool, {"timestamp": "2017-01-15T01:30:15+01:00"})) == {
            "timestamp": "2017-01-15T00:30:15Z"
        }

    def stores_seconds_since_the_epoch(pool, expect):
        timestamp = _wkt(pool, {"timestamp": "1970-01-02T00:00:00.5Z"}).get_field("timestamp").as_message()
        expect(timestamp.get_field("seconds").as_i64()) == 86400
        expect(timestamp.get_field("nanos").as_i32()) == 500_000_000

    def rejects_invalid_dates(pool, expect):
        with raises(JsonTypeMismatchError):
            _wkt(pool, {"timestamp": "2017-02-30T00:00:00Z"})
        with raises(JsonTypeMismatchError):
            _wkt(pool, {"timestamp": "2017-01-15 01:30:15Z"})


def describe_wrappers():
    def use_the_wrapped_value(pool, expect):
        document = {"int32Value": 0, "stringValue": "s", "int64Value": "5"}
        expect(_round_trip(pool, document)) == document

    def treat_null_as_unset(pool, expect):
        expect(to_dict(_wkt(pool, {"int32Value": None}))) == {}


def describe_struct():
    def maps_to_plain_json(pool, expect):
        document = {
            "struct": {"a": 1.0, "b": [True, None, "x"], "c": {"d": {}}},
            "value": None,
            "list": [1.0, {}],
        }
        expect(_round_trip(pool, document)) == document

    def reads_null_into_value_fields(pool, expect):
        value = _wkt(pool, {"value": None}).get_field("value").as_message()
        expect(value.which_oneof("kind").name) == "null_value"

    def refuses_to_write_an_empty_value(pool, expect):
        wkt = DynamicMessage(pool.get_message_by_name("test.Wkt"))
        wkt.set_field("value", {})
        with raises(EncodeError):
            to_dict(wkt)

    def refuses_to_write_non_finite_numbers(pool, expect):
        wkt = DynamicMessage(pool.get_message_by_name("test.Wkt"))
        wkt.set_field("value", {"number_value": float("nan")})
        with raises(EncodeError):
            to_dict(wkt)

    def reports_nested_paths(pool, expect):
        with raises(JsonTypeMismatchError) as e:
            _wkt(pool, {"struct": {"a": {"b": 1}}, "duration": 5})
        expect(e.value.path) == "duration"

    def rejects_numbers_beyond_double_range(pool, expect):
        descriptor = pool.get_message_by_name("test.Wkt")
        with raises(JsonTypeMismatchError) as e:
            from_json(descriptor, '{"value": 1' + "0" * 400 + "}")
        expect(e.value.path) == "value"
        with raises(JsonTypeMismatchError):
            from_json(descriptor, '{"list": [1e400]}')


def describe_field_mask():
    def joins_camel_case_paths(pool, expect):
        expect(_round_trip(pool, {"mask": "fooBar,baz.quxQuux"})) == {"mask": "fooBar,baz.quxQuux"}
        mask = _wkt(pool, {"mask": "fooBar"}).get_field("mask").as_message()
        expect(mask.get_field("paths").to_python()) == ["foo_bar"]

    def rejects_snake_case_input(pool, expect):
        with raises(JsonTypeMismatchError):
            _wkt(pool, {"mask": "foo_bar"})

    def rejects_paths_without_a_camel_case_form(pool, expect):
        wkt = DynamicMessage(pool.get_message_by_name("test.Wkt"))
        wkt.set_field("mask", {"paths": ["foo_1"]})
        with raises(EncodeError):
            to_dict(wkt)


def describe_empty():
    def is_an_empty_object(pool, expect):
        expect(_round_trip(pool, {"empty": {}})) == {"empty": {}}


def describe_any():
    def inlines_ordinary_messages(pool, expect):
        document = {"any": {"@type": "type.googleapis.com/test.Point", "x": 1}}
        expect(_round_trip(pool, document)) == document

    def nests_well_known_types_under_value(pool, expect):
        document = {"any": {"@type": "type.googleapis.com/google.protobuf.Duration", "value": "2s"}}
        expect(_round_trip(pool, document)) == document

    def packs_the_payload(pool, expect):
        any_message = _wkt(pool, {"any": {"@type": "type.googleapis.com/test.Point", "x": 150}})
        packed = any_message.get_field("any").as_message()
        expect(packed.get_field("type_url").as_str()) == "type.googleapis.com/test.Point"
        expect(packed.get_field("value").as_bytes()) == bytes.fromhex("089601")

    def requires_a_type(pool, expect):
        with raises(MissingAnyTypeError):
            _wkt(pool, {"any": {"x": 1}})

    def requires_the_type_to_be_in_the_pool(pool, expect):
        with raises(MissingAnyTypeError):
            _wkt(pool, {"any": {"@type": "type.googleapis.com/test.Nope"}})

    def refuses_to_write_unknown_payload_types(pool, expect):
        wkt = DynamicMessage(pool.get_message_by_name("test.Wkt"))
        wkt.set_field("any", {"type_url": "type.googleapis.com/test.Nope", "value": b""})
        with raises(MissingAnyTypeError):
            to_dict(wkt)

    def limits_nested_payloads(pool, expect):
        any_type = pool.get_message_by_name("google.protobuf.Any")
        payload = b""
        for _ in range(300):
            wrapper = DynamicMessage(any_type)
            wrapper.set_field("type_url", "type.googleapis.com/google.protobuf.Any")
            wrapper.set_field("value", payload)
            payload = wrapper.encode()
        message = DynamicMessage.decode(any_type, payload)
        with raises(RecursionLimitError):
            to_json(message)

    def counts_payloads_against_the_limit(pool, expect):
        point = DynamicMessage(pool.get_message_by_name("test.Point"))
        point.set_field("x", 1)
        wrapper = DynamicMessage(pool.get_message_by_name("google.protobuf.Any"))
        wrapper.set_field("type_url", "type.googleapis.com/test.Point")
        wrapper.set_field("value", point.encode())
        expect(to_dict(wrapper, SerializeOptions(recursion_limit=2))) == {
            "@type": "type.googleapis.com/test.Point",
            "x": 1,
        }
        with raises(RecursionLimitError):
            to_dict(wrapper, SerializeOptions(recursion_limit=1))
