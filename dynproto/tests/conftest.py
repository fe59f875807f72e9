"""Unit tests configuration file."""

import os

import pytest

from dynproto.descriptor import DescriptorPool
from dynproto.schema import compile_sources

PROTO_DIR = os.path.join(os.path.dirname(os.path.realpath(__file__)), "protos")
PROTO_FILES = ["test.proto", "legacy.proto"]


def pytest_configure(config):
    """Disable verbose output when running tests."""
    terminal = config.pluginmanager.getplugin("terminal")
    if terminal:
        terminal.TerminalReporter.showfspath = False


def read_proto(name):
    with open(os.path.join(PROTO_DIR, name), encoding="utf-8") as f:
        return f.read()


@pytest.fixture(scope="session")
def descriptor_set():
    """FileDescriptorSet bytes for the test schemas and what they import."""
    return compile_sources({name: read_proto(name) for name in PROTO_FILES})


@pytest.fixture
def pool(descriptor_set):
    return DescriptorPool.build(descriptor_set)
