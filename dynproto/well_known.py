"""JSON representations of the google.protobuf well-known types.

Each writer takes the printer and a message and returns a JSON value; each
reader takes the parser, an empty message and a JSON value and fills the
message in. Both are looked up by the message's full name.
"""

import math
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from .errors import EncodeError, JsonTypeMismatchError, MissingAnyTypeError
from .value import Value, ValueKind

if TYPE_CHECKING:
    from .json_format import _Parser, _Printer
    from .message import DynamicMessage

ANY = "google.protobuf.Any"
DURATION = "google.protobuf.Duration"
TIMESTAMP = "google.protobuf.Timestamp"
FIELD_MASK = "google.protobuf.FieldMask"
STRUCT = "google.protobuf.Struct"
VALUE = "google.protobuf.Value"
LIST_VALUE = "google.protobuf.ListValue"
NULL_VALUE = "google.protobuf.NullValue"

WRAPPERS = frozenset(
    f"google.protobuf.{name}"
    for name in (
        "DoubleValue",
        "FloatValue",
        "Int64Value",
        "UInt64Value",
        "Int32Value",
        "UInt32Value",
        "BoolValue",
        "StringValue",
        "BytesValue",
    )
)

MAX_DURATION_SECONDS = 315_576_000_000
MIN_TIMESTAMP_SECONDS = -62_135_596_800  # 0001-01-01T00:00:00Z
MAX_TIMESTAMP_SECONDS = 253_402_300_799  # 9999-12-31T23:59:59Z
NANOS_PER_SECOND = 1_000_000_000

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_DURATION_RE = re.compile(r"^(-)?(\d+)(?:\.(\d{1,9}))?s$")
_TIMESTAMP_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?([Zz]|[+-]\d{2}:\d{2})$"
)


def _format_nanos(nanos: int) -> str:
    """Fractional seconds with 0, 3, 6 or 9 digits."""
    if nanos == 0:
        return ""
    if nanos % 1_000_000 == 0:
        return f".{nanos // 1_000_000:03d}"
    if nanos % 1_000 == 0:
        return f".{nanos // 1_000:06d}"
    return f".{nanos:09d}"


def _seconds_and_nanos(message: "DynamicMessage") -> tuple[int, int]:
    return (
        message.get_field_or_default("seconds").as_int(),
        message.get_field_or_default("nanos").as_int(),
    )


def write_duration(printer: "_Printer", message: "DynamicMessage") -> str:
    seconds, nanos = _seconds_and_nanos(message)
    if abs(seconds) > MAX_DURATION_SECONDS or abs(nanos) >= NANOS_PER_SECOND:
        raise EncodeError(f"Duration {seconds}s {nanos}ns is out of range")
    if (seconds < 0 < nanos) or (nanos < 0 < seconds):
        raise EncodeError("Duration seconds and nanos have different signs")
    sign = "-" if seconds < 0 or nanos < 0 else ""
    return f"{sign}{abs(seconds)}{_format_nanos(abs(nanos))}s"


def read_duration(parser: "_Parser", message: "DynamicMessage", data: Any) -> None:
    match = _DURATION_RE.match(data) if isinstance(data, str) else None
    if match is None:
        raise parser.error(JsonTypeMismatchError, f"invalid Duration {data!r}")
    negative, whole, fraction = match.groups()
    seconds = int(whole)
    nanos = int((fraction or "").ljust(9, "0"))
    if seconds > MAX_DURATION_SECONDS:
        raise parser.error(JsonTypeMismatchError, f"Duration {data!r} is out of range")
    if negative:
        seconds, nanos = -seconds, -nanos
    message.set_field("seconds", seconds)
    message.set_field("nanos", nanos)


def write_timestamp(printer: "_Printer", message: "DynamicMessage") -> str:
    seconds, nanos = _seconds_and_nanos(message)
    if not MIN_TIMESTAMP_SECONDS <= seconds <= MAX_TIMESTAMP_SECONDS:
        raise EncodeError(f"Timestamp seconds {seconds} is out of range")
    if not 0 <= nanos < NANOS_PER_SECOND:
        raise EncodeError(f"Timestamp nanos {nanos} is out of range")
    dt = _EPOCH + timedelta(seconds=seconds)
    return (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"
        f"T{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}{_format_nanos(nanos)}Z"
    )


def read_timestamp(parser: "_Parser", message: "DynamicMessage", data: Any) -> None:
    match = _TIMESTAMP_RE.match(data) if isinstance(data, str) else None
    if match is None:
        raise parser.error(JsonTypeMismatchError, f"invalid Timestamp {data!r}")
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    try:
        dt = datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), tzinfo=timezone.utc
        )
    except ValueError as e:
        raise parser.error(JsonTypeMismatchError, f"invalid Timestamp {data!r}: {e}") from e

    seconds = (dt - _EPOCH) // timedelta(seconds=1)
    if offset not in ("Z", "z"):
        sign = -1 if offset[0] == "-" else 1
        offset_hours, offset_minutes = int(offset[1:3]), int(offset[4:6])
        seconds -= sign * (offset_hours * 3600 + offset_minutes * 60)
    if not MIN_TIMESTAMP_SECONDS <= seconds <= MAX_TIMESTAMP_SECONDS:
        raise parser.error(JsonTypeMismatchError, f"Timestamp {data!r} is out of range")
    message.set_field("seconds", seconds)
    message.set_field("nanos", int((fraction or "").ljust(9, "0")))


def write_wrapper(printer: "_Printer", message: "DynamicMessage") -> Any:
    field = message.descriptor().get_field(1)
    return printer.single(field, message.get_field_or_default(field))


def read_wrapper(parser: "_Parser", message: "DynamicMessage", data: Any) -> None:
    field = message.descriptor().get_field(1)
    if data is None:
        raise parser.error(JsonTypeMismatchError, f"null is not a valid {message.descriptor().name}")
    message.set_field(field, parser.single(field, data))


def write_struct(printer: "_Printer", message: "DynamicMessage") -> dict[str, Any]:
    entries = message.get_field_or_default("fields").as_map()
    return {key.value: printer.message(item.value) for key, item in entries.items()}


def read_struct(parser: "_Parser", message: "DynamicMessage", data: Any) -> None:
    if not isinstance(data, dict):
        raise parser.error(JsonTypeMismatchError, f"expected object for Struct, got {_json_type(data)}")
    field = message.descriptor().get_field_by_name("fields")
    value_type = field.message_type.map_entry_value().message_type  # type: ignore[union-attr]
    entries: dict[Value, Value] = {}
    for key, item in data.items():
        with parser.at(key):
            entries[Value(ValueKind.STRING, key)] = Value(
                ValueKind.MESSAGE, parser.message(value_type, item)
            )
    message.set_field(field, Value(ValueKind.MAP, entries))


def write_value(printer: "_Printer", message: "DynamicMessage") -> Any:
    case = message.which_oneof("kind")
    if case is None:
        raise EncodeError("google.protobuf.Value has no kind set")
    value = message.get_field_or_default(case)
    if case.name == "null_value":
        return None
    if case.name == "number_value":
        number = value.as_float()
        if math.isnan(number) or math.isinf(number):
            raise EncodeError(f"google.protobuf.Value cannot hold {number} in JSON")
        return number
    if case.name in ("struct_value", "list_value"):
        return printer.message(value.as_message())
    return value.value


def read_value(parser: "_Parser", message: "DynamicMessage", data: Any) -> None:
    descriptor = message.descriptor()
    if data is None:
        message.set_field("null_value", Value(ValueKind.ENUM, 0))
    elif isinstance(data, bool):
        message.set_field("bool_value", data)
    elif isinstance(data, (int, float)):
        try:
            number = float(data)
        except OverflowError as e:
            raise parser.error(JsonTypeMismatchError, f"{data} is out of range for a Value") from e
        if math.isinf(number):
            raise parser.error(JsonTypeMismatchError, f"{data} is out of range for a Value")
        message.set_field("number_value", number)
    elif isinstance(data, str):
        message.set_field("string_value", data)
    elif isinstance(data, dict):
        struct = descriptor.get_field_by_name("struct_value").message_type  # type: ignore[union-attr]
        message.set_field("struct_value", parser.message(struct, data))
    elif isinstance(data, list):
        list_value = descriptor.get_field_by_name("list_value").message_type  # type: ignore[union-attr]
        message.set_field("list_value", parser.message(list_value, data))
    else:
        raise parser.error(JsonTypeMismatchError, f"unsupported JSON value {data!r}")


def write_list_value(printer: "_Printer", message: "DynamicMessage") -> list[Any]:
    return [printer.message(item.value) for item in message.get_field_or_default("values").as_list()]


def read_list_value(parser: "_Parser", message: "DynamicMessage", data: Any) -> None:
    if not isinstance(data, list):
        raise parser.error(JsonTypeMismatchError, f"expected array for ListValue, got {_json_type(data)}")
    field = message.descriptor().get_field_by_name("values")
    items = []
    for i, item in enumerate(data):
        with parser.at(f"[{i}]"):
            items.append(Value(ValueKind.MESSAGE, parser.message(field.message_type, item)))  # type: ignore[union-attr, arg-type]
    message.set_field(field, Value(ValueKind.LIST, items))


def _snake_to_camel(path: str) -> str:
    result: list[str] = []
    after_underscore = False
    for c in path:
        if c.isupper():
            raise EncodeError(f"FieldMask path {path!r} is not lower snake case")
        if after_underscore:
            if not c.islower():
                raise EncodeError(f"FieldMask path {path!r} cannot be written in camelCase")
            result.append(c.upper())
            after_underscore = False
        elif c == "_":
            after_underscore = True
        else:
            result.append(c)
    if after_underscore:
        raise EncodeError(f"FieldMask path {path!r} ends with an underscore")
    return "".join(result)


def _camel_to_snake(path: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in path)


def write_field_mask(printer: "_Printer", message: "DynamicMessage") -> str:
    paths = message.get_field_or_default("paths").as_list()
    return ",".join(_snake_to_camel(p.as_str()) for p in paths)


def read_field_mask(parser: "_Parser", message: "DynamicMessage", data: Any) -> None:
    if not isinstance(data, str):
        raise parser.error(JsonTypeMismatchError, f"expected string for FieldMask, got {_json_type(data)}")
    if "_" in data:
        raise parser.error(JsonTypeMismatchError, f"FieldMask {data!r} must be camelCase")
    paths = [_camel_to_snake(p) for p in data.split(",")] if data else []
    message.set_field("paths", paths)


def _type_name(type_url: str) -> str:
    if "/" not in type_url:
        raise EncodeError(f"invalid type URL {type_url!r}")
    return type_url.rsplit("/", 1)[1]


def write_any(printer: "_Printer", message: "DynamicMessage") -> dict[str, Any]:
    type_url = message.get_field_or_default("type_url").as_str()
    payload = message.get_field_or_default("value").as_bytes()
    if not type_url and not payload:
        return {}

    pool = message.descriptor().pool
    descriptor = pool.get_message_by_name(_type_name(type_url))
    if descriptor is None:
        raise MissingAnyTypeError(f"type {type_url!r} is not in the descriptor pool")
    remaining = printer.options.recursion_limit - printer.depth
    inner = type(message).decode(descriptor, payload, recursion_limit=remaining)
    printed = printer.message(inner)
    if descriptor.full_name in WRITERS:
        return {"@type": type_url, "value": printed}
    return {"@type": type_url, **printed}


def read_any(parser: "_Parser", message: "DynamicMessage", data: Any) -> None:
    if not isinstance(data, dict):
        raise parser.error(JsonTypeMismatchError, f"expected object for Any, got {_json_type(data)}")
    if not data:
        return
    type_url = data.get("@type")
    if not isinstance(type_url, str) or not type_url:
        raise parser.error(MissingAnyTypeError, "Any is missing @type")
    name = type_url.rsplit("/", 1)[-1]
    descriptor = message.descriptor().pool.get_message_by_name(name)
    if descriptor is None:
        raise parser.error(MissingAnyTypeError, f"type {type_url!r} is not in the descriptor pool")

    if descriptor.full_name in READERS:
        if "value" not in data:
            raise parser.error(JsonTypeMismatchError, f"Any of {name} is missing value")
        with parser.at("value"):
            inner = parser.message(descriptor, data["value"])
    else:
        inner = parser.message(descriptor, {k: v for k, v in data.items() if k != "@type"})
    message.set_field("type_url", type_url)
    message.set_field("value", inner.encode())


def _json_type(data: Any) -> str:
    if data is None:
        return "null"
    if isinstance(data, bool):
        return "boolean"
    if isinstance(data, (int, float)):
        return "number"
    if isinstance(data, str):
        return "string"
    if isinstance(data, list):
        return "array"
    return "object"


Writer = Callable[["_Printer", "DynamicMessage"], Any]
Reader = Callable[["_Parser", "DynamicMessage", Any], None]

WRITERS: dict[str, Writer] = {
    ANY: write_any,
    DURATION: write_duration,
    TIMESTAMP: write_timestamp,
    FIELD_MASK: write_field_mask,
    STRUCT: write_struct,
    VALUE: write_value,
    LIST_VALUE: write_list_value,
    **{name: write_wrapper for name in WRAPPERS},
}

READERS: dict[str, Reader] = {
    ANY: read_any,
    DURATION: read_duration,
    TIMESTAMP: read_timestamp,
    FIELD_MASK: read_field_mask,
    STRUCT: read_struct,
    VALUE: read_value,
    LIST_VALUE: read_list_value,
    **{name: read_wrapper for name in WRAPPERS},
}
