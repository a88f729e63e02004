"""CLI interface for lparlink.

Command groups live in their own modules and are registered at import time.
"""

import logging

import click
from dotenv import load_dotenv

from lparlink import __version__

# Load environment variables from .env file
load_dotenv(override=True)

logger = logging.getLogger(__name__)


@click.group(invoke_without_command=True)
@click.option(
    "--version",
    is_flag=True,
    help="Show the lparlink version and exit.",
)
@click.pass_context
def main(ctx: click.Context, version: bool) -> None:
    """lparlink - partition manager access over SSH.

    \b
      lparlink exec URI COMMAND      Run one command on the host
      lparlink status URI            Show connection details
      lparlink table show URI ...    Print the id/UUID table
      lparlink table lookup URI ID   Print the UUID of one partition
    """
    if version:
        click.echo(__version__)
        ctx.exit()

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def register_commands() -> None:
    """Register all command groups with the main CLI."""
    from lparlink.cli.remote import exec_command, status
    from lparlink.cli.table import table

    main.add_command(exec_command)
    main.add_command(status)
    main.add_command(table)


register_commands()

__all__ = ["main"]
