"""The ReflectMessage capability, shared by dynamic and static message types."""

from collections.abc import Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

from .descriptor.handles import MessageDescriptor
from .descriptor.pool import DescriptorPool
from .errors import TypeMismatchError, UnresolvedTypeReferenceError
from .message import DynamicMessage

TType = TypeVar("TType", bound=type)


@runtime_checkable
class ReflectMessage(Protocol):
    """Anything that can report the descriptor of its message type."""

    def descriptor(self) -> MessageDescriptor: ...


def transcode_to_dynamic(message: Any) -> DynamicMessage:
    """Convert any ReflectMessage with an ``encode()`` method to a DynamicMessage.

    A DynamicMessage is cloned rather than re-encoded.
    """
    if isinstance(message, DynamicMessage):
        return message.clone()
    if not isinstance(message, ReflectMessage) or not hasattr(message, "encode"):
        raise TypeMismatchError(f"{type(message).__name__} cannot be transcoded to a DynamicMessage")
    return DynamicMessage.decode(message.descriptor(), message.encode())


def reflect_descriptor(pool: DescriptorPool, full_name: str) -> Callable[[TType], TType]:
    """Class decorator giving a static message type a ``descriptor()`` method.

    The message is looked up in ``pool`` on first use and cached on the
    class.

    Example:
        @reflect_descriptor(pool, "geo.Point")
        @dataclass
        class Point:
            x: int = 0
    """

    def decorate(cls: TType) -> TType:
        cache: dict[str, MessageDescriptor] = {}

        def descriptor(self: Any) -> MessageDescriptor:
            found = cache.get(full_name)
            if found is None:
                found = pool.get_message_by_name(full_name)
                if found is None:
                    raise UnresolvedTypeReferenceError(f"message {full_name} is not in the pool")
                cache[full_name] = found
            return found

        cls.descriptor = descriptor  # type: ignore[attr-defined]
        return cls

    return decorate
