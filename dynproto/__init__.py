"""Runtime reflection for protocol buffers: descriptor pools, dynamic messages and canonical JSON."""

from importlib.metadata import PackageNotFoundError, version

from .descriptor import *
from .errors import *
from .json_format import DeserializeOptions as DeserializeOptions
from .json_format import SerializeOptions as SerializeOptions
from .json_format import from_dict as from_dict
from .json_format import from_json as from_json
from .json_format import to_dict as to_dict
from .json_format import to_json as to_json
from .message import DynamicMessage as DynamicMessage
from .reflect import ReflectMessage as ReflectMessage
from .reflect import reflect_descriptor as reflect_descriptor
from .reflect import transcode_to_dynamic as transcode_to_dynamic
from .value import Value as Value
from .value import ValueKind as ValueKind

try:
    __version__ = version("dynproto")
except PackageNotFoundError:
    __version__ = "(local)"
