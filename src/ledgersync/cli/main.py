"""Main CLI application for ledgersync.

This module provides the entry point for the command-line interface and wires
the individual commands together.
"""

import logging
from typing import Annotated

import typer

from ..logging import setup_logging
from .commands import send, sync, version

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="ledgersync",
    help="ledgersync: sync with and send transactions to hledger-web servers",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose debug logging",
        ),
    ] = False,
) -> None:
    """Global options for the ledgersync CLI."""
    setup_logging(cli_mode=True, verbose=verbose)


app.command("version")(version.version_command)
app.command("sync")(sync.sync_command)
app.command("send")(send.send_command)


def main() -> None:
    """Entry point for the ledgersync CLI application."""
    app()


if __name__ == "__main__":
    main()
