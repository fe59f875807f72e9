"""Command-line interface for dynproto."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dynproto import __version__
from dynproto.descriptor import DescriptorPool
from dynproto.errors import DynprotoError
from dynproto.json_format import DeserializeOptions, SerializeOptions, from_json, to_json
from dynproto.message import DynamicMessage
from dynproto.schema import compile_sources, render

if TYPE_CHECKING:
    from dynproto.descriptor import MessageDescriptor

logger = logging.getLogger(__name__)


def _load_pool(descriptor_set: str) -> DescriptorPool:
    return DescriptorPool.build(Path(descriptor_set).read_bytes())


def _message_type(pool: DescriptorPool, name: str) -> MessageDescriptor:
    descriptor = pool.get_message_by_name(name)
    if descriptor is None:
        raise click.BadParameter(f"no message named {name}", param_hint="--type")
    return descriptor


def _read_input(input_file: str | None) -> bytes:
    if input_file is None or input_file == "-":
        return sys.stdin.buffer.read()
    return Path(input_file).read_bytes()


def _write_output(output_file: str | None, data: bytes) -> None:
    if output_file is None or output_file == "-":
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
    else:
        Path(output_file).write_bytes(data)


@click.group()
@click.version_option(__version__, prog_name="dynproto")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log debug output")
def cli(verbose: bool) -> None:
    """Inspect and convert protocol buffer messages at runtime."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@cli.command(name="compile")
@click.argument("inputs", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", "output_file", required=True, help="Output FileDescriptorSet")
@click.option(
    "--include", "-I", "include_dirs", multiple=True, help="Directory to search for imports"
)
def compile_cmd(inputs: tuple[str, ...], output_file: str, include_dirs: tuple[str, ...]) -> None:
    """Compile .proto files to a binary FileDescriptorSet."""
    roots = [Path(d) for d in include_dirs] or [Path(".")]

    def import_name(path: str) -> str:
        resolved = Path(path).resolve()
        for root in roots:
            if resolved.is_relative_to(root.resolve()):
                return resolved.relative_to(root.resolve()).as_posix()
        return Path(path).name

    def resolver(name: str) -> str | None:
        for root in roots:
            candidate = root / name
            if candidate.is_file():
                logger.debug("Resolved import %s to %s", name, candidate)
                return candidate.read_text(encoding="utf-8")
        return None

    sources = {import_name(path): Path(path).read_text(encoding="utf-8") for path in inputs}
    data = compile_sources(sources, resolver)
    Path(output_file).write_bytes(data)


@cli.command()
@click.option("--descriptor-set", "-d", required=True, help="Binary FileDescriptorSet")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def info(descriptor_set: str, output_json: bool) -> None:
    """List the files and definitions in a descriptor set."""
    pool = _load_pool(descriptor_set)

    if output_json:
        print(json.dumps(pool.to_dict(), indent=2))
        return

    console = Console()
    console.print("[bold cyan]Files[/bold cyan]")
    file_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    file_table.add_column("Name", style="white")
    file_table.add_column("Package", style="dim")
    file_table.add_column("Syntax", style="yellow")
    for file in pool.files:
        file_table.add_row(file.name, file.package, str(file.syntax))
    console.print(file_table)
    console.print()

    console.print("[bold cyan]Messages[/bold cyan]")
    message_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    message_table.add_column("Name", style="white")
    message_table.add_column("Fields", style="yellow", justify="right")
    message_table.add_column("Oneofs", style="dim", justify="right")
    for message in pool.all_messages():
        if message.is_map_entry:
            continue
        message_table.add_row(message.full_name, str(len(message.fields())), str(len(message.oneofs())))
    console.print(message_table)

    enums = list(pool.all_enums())
    if enums:
        console.print()
        console.print("[bold cyan]Enums[/bold cyan]")
        enum_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
        enum_table.add_column("Name", style="white")
        enum_table.add_column("Values", style="yellow", justify="right")
        for enum in enums:
            enum_table.add_row(enum.full_name, str(len(enum.values())))
        console.print(enum_table)

    services = list(pool.all_services())
    if services:
        console.print()
        console.print("[bold cyan]Services[/bold cyan]")
        service_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
        service_table.add_column("Method", style="white")
        service_table.add_column("Input", style="dim")
        service_table.add_column("Output", style="dim")
        for service in services:
            for method in service.methods():
                service_table.add_row(method.full_name, method.input.full_name, method.output.full_name)
        console.print(service_table)


@cli.command()
@click.option("--descriptor-set", "-d", required=True, help="Binary FileDescriptorSet")
@click.argument("name")
def describe(descriptor_set: str, name: str) -> None:
    """Print a file, or the file defining a message, as .proto source."""
    pool = _load_pool(descriptor_set)
    file = pool.get_file_by_name(name)
    if file is None:
        message = pool.get_message_by_name(name)
        if message is None:
            raise click.BadParameter(f"no file or message named {name}", param_hint="NAME")
        file = message.file
    print(render(file), end="")


@cli.command()
@click.option("--descriptor-set", "-d", required=True, help="Binary FileDescriptorSet")
@click.option("--type", "-t", "type_name", required=True, help="Full name of the message type")
@click.option("--input", "-i", "input_file", default=None, help="Binary message (default stdin)")
@click.option("--hex", "is_hex", is_flag=True, help="Input is hex text")
@click.option("--proto-names", is_flag=True, help="Use field names instead of JSON names")
@click.option("--enum-numbers", is_flag=True, help="Write enum values as numbers")
@click.option("--defaults", is_flag=True, help="Include fields set to their default value")
def decode(
    descriptor_set: str,
    type_name: str,
    input_file: str | None,
    is_hex: bool,
    proto_names: bool,
    enum_numbers: bool,
    defaults: bool,
) -> None:
    """Decode a binary message and print it as JSON."""
    pool = _load_pool(descriptor_set)
    descriptor = _message_type(pool, type_name)
    data = _read_input(input_file)
    if is_hex:
        data = bytes.fromhex(data.decode("ascii"))
    message = DynamicMessage.decode(descriptor, data)
    options = SerializeOptions(
        use_proto_field_name=proto_names,
        use_enum_numbers=enum_numbers,
        skip_default_fields=not defaults,
        indent=2,
    )
    print(to_json(message, options))


@cli.command()
@click.option("--descriptor-set", "-d", required=True, help="Binary FileDescriptorSet")
@click.option("--type", "-t", "type_name", required=True, help="Full name of the message type")
@click.option("--input", "-i", "input_file", default=None, help="JSON message (default stdin)")
@click.option("--output", "-o", "output_file", default=None, help="Output file (default stdout)")
@click.option("--hex", "is_hex", is_flag=True, help="Write hex text instead of binary")
@click.option("--ignore-unknown", is_flag=True, help="Skip JSON properties that name no field")
def encode(
    descriptor_set: str,
    type_name: str,
    input_file: str | None,
    output_file: str | None,
    is_hex: bool,
    ignore_unknown: bool,
) -> None:
    """Read a JSON message and write it in binary form."""
    pool = _load_pool(descriptor_set)
    descriptor = _message_type(pool, type_name)
    options = DeserializeOptions(deny_unknown_fields=not ignore_unknown)
    message = from_json(descriptor, _read_input(input_file), options)
    data = message.encode()
    if is_hex:
        data = (data.hex() + "\n").encode("ascii")
    _write_output(output_file, data)


def main() -> None:
    """Main entry point."""
    try:
        cli(standalone_mode=False)
    except click.exceptions.Abort:
        sys.exit(1)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except (DynprotoError, OSError, ValueError) as e:
        Console(stderr=True).print(f"[red]error:[/red] {escape(str(e))}")
        sys.exit(1)


if __name__ == "__main__":
    main()
