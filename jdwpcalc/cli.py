"""Command-line interface for jdwpcalc."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import NoReturn

import click
from dataclasses_json import DataClassJsonMixin
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from jdwpcalc.calc import Evaluator, ParseError
from jdwpcalc.proto import (
    CommandError,
    ConnectError,
    Connection,
    ConnectionConfig,
    ProtocolError,
    ReflectiveInvoker,
    RemoteInvocationError,
    ResolutionError,
    SessionConfig,
    connect,
)
from jdwpcalc.proto.types import IDSizes, VersionInfo

PROMPT = "jdwpcalc> "

# Errors that end one expression but leave the session usable
EXPRESSION_ERRORS = (ParseError, ResolutionError, RemoteInvocationError, CommandError)


@dataclass
class VMReport(DataClassJsonMixin):
    """What `info` reports about the remote VM."""

    host: str
    port: int
    version: VersionInfo
    id_sizes: IDSizes


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(message: str) -> NoReturn:
    Console(stderr=True).print(f"error: {message}", style="red", markup=False, highlight=False, soft_wrap=True)
    sys.exit(1)


def _connect(config: ConnectionConfig) -> Connection:
    try:
        return connect(config)
    except ConnectError as exc:
        _fail(str(exc))


@click.group(context_settings={"auto_envvar_prefix": "JDWPCALC"})
@click.option("--host", "-H", default="127.0.0.1", show_default=True, help="Target JVM host")
@click.option("--port", "-p", default=5005, show_default=True, type=int, help="Target JVM debug port")
@click.option(
    "--timeout",
    default=10.0,
    show_default=True,
    type=float,
    help="Seconds to wait for each reply from the VM",
)
@click.option("--verbose", "-v", is_flag=True, help="Trace every remote operation")
@click.pass_context
def cli(ctx: click.Context, host: str, port: int, timeout: float, verbose: bool) -> None:
    """Evaluate arithmetic inside a suspended JVM over JDWP."""
    _configure_logging(verbose)
    ctx.obj = ConnectionConfig(host=host, port=port, request_timeout=timeout)


@cli.command()
@click.option(
    "--source-file",
    "-s",
    default="Main.java",
    show_default=True,
    help="Source file of the class whose preparation marks the program start",
)
@click.option("--no-wait", is_flag=True, help="Use the already suspended thread, do not resume the VM")
@click.option("--expression", "-e", default=None, help="Evaluate this expression and exit")
@click.option("--repl", "force_repl", is_flag=True, help="Read expressions line by line even if stdin is not a terminal")
@click.pass_obj
def calc(
    config: ConnectionConfig,
    source_file: str,
    no_wait: bool,
    expression: str | None,
    force_repl: bool,
) -> None:
    """Evaluate expressions with java.math.BigInteger in the remote VM."""
    session = SessionConfig(source_file=None if no_wait else source_file)
    connection = _connect(config)
    with connection:
        invoker = ReflectiveInvoker(connection, session)
        try:
            invoker.attach()
        except (ProtocolError, CommandError) as exc:
            _fail(f"cannot attach: {exc}")

        evaluator = Evaluator(invoker)
        stdin = click.get_text_stream("stdin")
        try:
            if expression is not None:
                _one_shot(evaluator, expression)
            elif force_repl or stdin.isatty():
                _repl(evaluator, stdin)
            else:
                _one_shot(evaluator, stdin.readline())
        except ProtocolError as exc:
            _fail(str(exc))


def _one_shot(evaluator: Evaluator, text: str) -> None:
    try:
        click.echo(evaluator.calculate(text))
    except EXPRESSION_ERRORS as exc:
        _fail(str(exc))


def _repl(evaluator: Evaluator, stdin) -> None:
    err_console = Console(stderr=True)
    while True:
        click.echo(PROMPT, nl=False)
        line = stdin.readline()
        if not line:
            click.echo()
            break
        text = line.strip()
        if text == "exit":
            break
        if not text:
            continue
        try:
            click.echo(f"= {evaluator.calculate(text)}")
        except EXPRESSION_ERRORS as exc:
            err_console.print(f"error: {exc}", style="red", markup=False, highlight=False, soft_wrap=True)


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def info(config: ConnectionConfig, output_json: bool) -> None:
    """Display the remote VM's version and negotiated identifier sizes."""
    with _connect(config) as connection:
        try:
            version = connection.commands.version()
        except (ProtocolError, CommandError) as exc:
            _fail(str(exc))
        if connection.id_sizes is None:
            _fail("identifier sizes were not negotiated")
        report = VMReport(config.host, config.port, version, connection.id_sizes)

    if output_json:
        click.echo(report.to_json(indent=2))
    else:
        _output_plain(report)


def _output_plain(report: VMReport) -> None:
    """Output VM info using rich text formatting."""
    console = Console()

    console.print("[bold cyan]Virtual machine[/bold cyan]")
    vm_table = Table(show_header=False, box=None, padding=(0, 2, 0, 2))
    vm_table.add_column("Label", style="dim")
    vm_table.add_column("Value", style="white")
    vm_table.add_row("Endpoint", f"{report.host}:{report.port}")
    vm_table.add_row("Name", report.version.vm_name)
    vm_table.add_row("Version", report.version.vm_version)
    vm_table.add_row("JDWP", f"{report.version.jdwp_major}.{report.version.jdwp_minor}")
    console.print(vm_table)
    console.print()

    console.print("[bold cyan]Identifier sizes[/bold cyan]")
    size_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    size_table.add_column("Identifier", style="white")
    size_table.add_column("Bytes", style="yellow", justify="right")
    size_table.add_row("field", str(report.id_sizes.field_id_size))
    size_table.add_row("method", str(report.id_sizes.method_id_size))
    size_table.add_row("object", str(report.id_sizes.object_id_size))
    size_table.add_row("reference type", str(report.id_sizes.reference_type_id_size))
    size_table.add_row("frame", str(report.id_sizes.frame_id_size))
    console.print(size_table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
