"""Remote commands - run a command and inspect a connection."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lparlink.cli.auth import prompt_credentials
from lparlink.cli.logging import configure_cli_logging
from lparlink.cli.rich_output import should_use_rich
from lparlink.connection import Connection, ConnectionURI, LiveInventory
from lparlink.errors import ConnectError, InvalidURIError, LinkError

logger = logging.getLogger(__name__)

console = Console()


def parse_uri_or_exit(uri: str) -> ConnectionURI:
    try:
        return ConnectionURI.parse(uri)
    except InvalidURIError as e:
        raise click.BadParameter(str(e), param_hint="URI") from e


@contextmanager
def open_connection(
    uri: str, inventory: LiveInventory | None = None
) -> Iterator[Connection]:
    """Open a connection for a CLI command.

    Any lparlink error, while opening or inside the block, is printed and
    turned into exit status 1.
    """
    try:
        conn = Connection.open(
            uri, auth_callback=prompt_credentials, inventory=inventory
        )
    except ConnectError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        if e.suggestion:
            console.print(f"[yellow]Hint: {escape(e.suggestion)}[/yellow]")
        raise SystemExit(1) from e
    except LinkError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise SystemExit(1) from e

    with conn:
        try:
            yield conn
        except LinkError as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            raise SystemExit(1) from e


@click.command("exec")
@click.argument("uri")
@click.argument("command")
@click.option("--trim", is_flag=True, help="Print only the first output line.")
@click.option(
    "--int", "as_int", is_flag=True, help="Parse the first line as an integer."
)
@click.option("-v", "--verbose", is_flag=True, help="Log progress to the console.")
def exec_command(uri: str, command: str, trim: bool, as_int: bool, verbose: bool) -> None:
    """Run COMMAND on the host named by URI.

    Exits with the remote exit status (255 when the channel failed to close).

    \b
    Examples:
      lparlink exec lpar://hscroot@hmc01 "lssyscfg -r sys -F name"
      lparlink exec lpar://hmc01 "lssyscfg -r lpar -m sys1 -F lpar_id | wc -l" --int
    """
    if trim and as_int:
        raise click.UsageError("--trim and --int are mutually exclusive")

    parsed = parse_uri_or_exit(uri)
    configure_cli_logging("exec", host=parsed.host, verbose=verbose)

    with open_connection(uri) as conn:
        if as_int:
            click.echo(conn.execute_int(command))
            return

        if trim:
            output, exit_status = conn.execute_trimmed(command)
            click.echo(output)
        else:
            output, exit_status = conn.execute(command)
            click.echo(output, nl=False)

    if exit_status != 0:
        raise SystemExit(exit_status if exit_status > 0 else 255)


@click.command("status")
@click.argument("uri")
@click.option("-v", "--verbose", is_flag=True, help="Log progress to the console.")
def status(uri: str, verbose: bool) -> None:
    """Connect to URI and report the session state."""
    parsed = parse_uri_or_exit(uri)
    configure_cli_logging("status", host=parsed.host, verbose=verbose)

    with open_connection(uri) as conn:
        rows = [
            ("Host", f"{conn.host}:{parsed.port}"),
            ("User", conn.username or ""),
            ("Managed system", conn.managed_system or "-"),
            ("Alive", "yes" if conn.is_alive() else "no"),
            ("Encrypted", "yes" if conn.is_encrypted() else "no"),
        ]

    if not should_use_rich():
        for name, value in rows:
            click.echo(f"{name}\t{value}")
        return

    table = Table(title=f"Connection {parsed.host}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    for name, value in rows:
        table.add_row(name, value)
    console.print(table)
