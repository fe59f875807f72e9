"""Descriptors for the google.protobuf well-known types."""

from functools import cache

from .compiler import ProtoSyntaxError, bundled_source, compile_sources

WELL_KNOWN_FILES = [
    "google/protobuf/any.proto",
    "google/protobuf/duration.proto",
    "google/protobuf/empty.proto",
    "google/protobuf/field_mask.proto",
    "google/protobuf/struct.proto",
    "google/protobuf/timestamp.proto",
    "google/protobuf/wrappers.proto",
]


@cache
def well_known_descriptor_set() -> bytes:
    """FileDescriptorSet bytes covering every well-known type file."""
    sources: dict[str, str] = {}
    for name in WELL_KNOWN_FILES:
        text = bundled_source(name)
        if text is None:
            raise ProtoSyntaxError(f"{name} is missing from the package")
        sources[name] = text
    return compile_sources(sources)
