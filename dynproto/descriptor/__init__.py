"""Descriptor pool and descriptor handles."""

from .handles import EnumDescriptor as EnumDescriptor
from .handles import EnumValueDescriptor as EnumValueDescriptor
from .handles import FieldDescriptor as FieldDescriptor
from .handles import FileDescriptor as FileDescriptor
from .handles import MessageDescriptor as MessageDescriptor
from .handles import MethodDescriptor as MethodDescriptor
from .handles import OneofDescriptor as OneofDescriptor
from .handles import ServiceDescriptor as ServiceDescriptor
from .pool import DescriptorPool as DescriptorPool
from .pool import to_json_name as to_json_name
from .types import Cardinality as Cardinality
from .types import FieldType as FieldType
from .types import Syntax as Syntax
