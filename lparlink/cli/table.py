"""Table commands - inspect the partition id ↔ UUID correspondence table."""

from __future__ import annotations

import click
from rich.table import Table

from lparlink.cli.logging import configure_cli_logging
from lparlink.cli.remote import console, open_connection, parse_uri_or_exit
from lparlink.cli.rich_output import should_use_rich
from lparlink.connection import CommandInventory

inventory_options = [
    click.option(
        "--count-cmd",
        required=True,
        help="Remote command printing the number of partitions.",
    ),
    click.option(
        "--list-cmd",
        required=True,
        help="Remote command printing one partition id per line.",
    ),
    click.option("-v", "--verbose", is_flag=True, help="Log progress to the console."),
]


def with_inventory_options(func):
    for option in reversed(inventory_options):
        func = option(func)
    return func


@click.group("table")
def table() -> None:
    """Inspect the correspondence table of a host.

    The table is loaded (or created and uploaded) from the partitions the
    two inventory commands report.

    \b
      lparlink table show URI --count-cmd ... --list-cmd ...
      lparlink table lookup URI ID --count-cmd ... --list-cmd ...
    """
    pass


@table.command("show")
@click.argument("uri")
@click.option("--all", "show_all", is_flag=True, help="Include removed entries.")
@with_inventory_options
def table_show(
    uri: str, show_all: bool, count_cmd: str, list_cmd: str, verbose: bool
) -> None:
    """Print every partition id and its UUID."""
    parsed = parse_uri_or_exit(uri)
    configure_cli_logging("table", host=parsed.host, verbose=verbose)

    inventory = CommandInventory(count_cmd, list_cmd)
    with open_connection(uri, inventory=inventory) as conn:
        entries = conn.table.entries if show_all else conn.table.live_entries()
        remote_path = conn.table.remote_path

    if not should_use_rich():
        for entry in entries:
            click.echo(f"{entry.id}\t{entry.uuid}")
        return

    if not entries:
        console.print(f"[yellow]No partitions recorded in {remote_path}[/yellow]")
        return

    output = Table(title=f"{parsed.host}:{remote_path}")
    output.add_column("ID", style="cyan", justify="right")
    output.add_column("UUID", style="white")
    for entry in entries:
        style = "dim" if entry.is_tombstone else None
        output.add_row(str(entry.id), str(entry.uuid), style=style)
    console.print(output)


@table.command("lookup")
@click.argument("uri")
@click.argument("partition_id", metavar="ID", type=int)
@with_inventory_options
def table_lookup(
    uri: str, partition_id: int, count_cmd: str, list_cmd: str, verbose: bool
) -> None:
    """Print the UUID recorded for partition ID."""
    parsed = parse_uri_or_exit(uri)
    configure_cli_logging("table", host=parsed.host, verbose=verbose)

    inventory = CommandInventory(count_cmd, list_cmd)
    with open_connection(uri, inventory=inventory) as conn:
        value = conn.table.lookup(partition_id)

    click.echo(str(value))
