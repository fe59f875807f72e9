"""Exceptions raised by dynproto.

Each concern has one base class with a narrower subclass per failure kind,
so callers can catch either the whole family or a single condition.
"""


class DynprotoError(RuntimeError):
    """Base class for every error raised by dynproto."""


class PoolBuildError(DynprotoError):
    """Raised when a descriptor set cannot be added to a pool."""


class DuplicateNameError(PoolBuildError):
    """Two definitions share a fully-qualified name or field number."""


class UnresolvedTypeReferenceError(PoolBuildError):
    """A type name, extendee or method type does not resolve."""


class UnresolvedImportError(PoolBuildError):
    """A file depends on a file that is not registered."""


class MalformedDescriptorBytesError(PoolBuildError):
    """The descriptor set bytes are not a valid FileDescriptorSet."""


class WireDecodeError(DynprotoError):
    """Raised when protobuf binary data cannot be decoded."""


class TruncatedError(WireDecodeError):
    """The buffer ended in the middle of a value."""


class InvalidVarintError(WireDecodeError):
    """A varint is longer than ten bytes."""


class InvalidTextError(WireDecodeError):
    """A string field does not hold valid UTF-8."""


class UnexpectedWireTypeError(WireDecodeError):
    """A tag carries a wire type the field cannot be read from."""


class RecursionLimitError(WireDecodeError):
    """Message nesting exceeded the recursion limit."""


class FieldAccessError(DynprotoError):
    """Raised when a field is accessed incorrectly."""


class TypeMismatchError(FieldAccessError):
    """A value does not match the declared kind of a field."""


class UnknownFieldNameError(FieldAccessError):
    """The message has no field with the given name."""


class UnknownFieldNumberError(FieldAccessError):
    """The message has no field with the given number."""


class EncodeError(DynprotoError):
    """Raised when a message holds data that cannot be serialized."""


class JsonError(DynprotoError):
    """Raised when JSON input does not map onto a message.

    ``path`` names the offending field, e.g. ``points[2].x``; it is empty
    when the error concerns the document as a whole.
    """

    def __init__(self, message: str, path: str = "") -> None:
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class UnknownFieldError(JsonError):
    """A JSON property does not name a field of the message."""


class InvalidEnumNameError(JsonError):
    """A JSON string does not name a value of the enum."""


class InvalidBase64Error(JsonError):
    """A bytes field holds malformed base64."""


class JsonTypeMismatchError(JsonError):
    """A JSON value has the wrong type or range for its field."""


class MissingAnyTypeError(JsonError):
    """An Any names a type that is not in the descriptor pool."""
