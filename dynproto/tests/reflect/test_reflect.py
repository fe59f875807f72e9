"""Tests for ReflectMessage and static message interop"""

from dataclasses import dataclass

from pytest import raises

from dynproto.errors import TypeMismatchError, UnresolvedTypeReferenceError
from dynproto.message import DynamicMessage
from dynproto.reflect import ReflectMessage, reflect_descriptor, transcode_to_dynamic
from dynproto.wire import Reader, WireType, Writer


def _point_class(pool, full_name="test.Point"):
    @reflect_descriptor(pool, full_name)
    @dataclass
    class Point:
        x: int = 0
        y: int = 0

        def encode(self):
            writer = Writer()
            if self.x:
                writer.write_tag(1, WireType.VARINT)
                writer.write_varint(self.x)
            if self.y:
                writer.write_tag(2, WireType.VARINT)
                writer.write_varint(self.y)
            return writer.getvalue()

        @classmethod
        def decode(cls, data):
            point = cls()
            reader = Reader(data)
            while not reader.at_end():
                number, _ = reader.read_tag()
                setattr(point, "x" if number == 1 else "y", reader.read_varint())
            return point

    return Point


def describe_reflect_descriptor():
    def attaches_the_descriptor(pool, expect):
        point = _point_class(pool)(x=1)
        expect(point.descriptor()) == pool.get_message_by_name("test.Point")
        expect(isinstance(point, ReflectMessage)) == True

    def fails_on_first_use_for_missing_types(pool, expect):
        point = _point_class(pool, "test.Missing")()
        with raises(UnresolvedTypeReferenceError):
            point.descriptor()

    def treats_dynamic_messages_as_reflect_messages(pool, expect):
        message = DynamicMessage(pool.get_message_by_name("test.Point"))
        expect(isinstance(message, ReflectMessage)) == True
        expect(isinstance(object(), ReflectMessage)) == False


def describe_transcode_to_dynamic():
    def reencodes_static_messages(pool, expect):
        message = transcode_to_dynamic(_point_class(pool)(x=150, y=2))
        expect(message.descriptor().full_name) == "test.Point"
        expect(message.get_field("x").to_python()) == 150
        expect(message.get_field("y").to_python()) == 2

    def clones_dynamic_messages(pool, expect):
        original = DynamicMessage(pool.get_message_by_name("test.Point"))
        original.set_field("x", 3)
        copy = transcode_to_dynamic(original)
        expect(copy) == original
        copy.set_field("x", 4)
        expect(original.get_field("x").to_python()) == 3

    def rejects_other_objects(expect):
        with raises(TypeMismatchError):
            transcode_to_dynamic(object())

    def converts_back_to_static_types(pool, expect):
        cls = _point_class(pool)
        message = DynamicMessage(pool.get_message_by_name("test.Point"))
        message.set_field("x", 7)
        expect(message.transcode_to(cls)) == cls(x=7)
