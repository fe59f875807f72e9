"""The .proto compiler and renderer."""

from .compiler import ProtoSyntaxError as ProtoSyntaxError
from .compiler import bundled_source as bundled_source
from .compiler import compile_files as compile_files
from .compiler import compile_sources as compile_sources
from .compiler import parse_file as parse_file
from .render import render as render
from .well_known import well_known_descriptor_set as well_known_descriptor_set
