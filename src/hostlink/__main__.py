"""CLI entry point for hostlink."""

from __future__ import annotations

import logging
import sys

import click

from hostlink import __version__
from hostlink.cli.commands import connect, locate, pipe_name

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(verbose: int) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stderr)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option("-v", "--verbose", count=True, help="Log INFO (-v) or DEBUG (-vv) to stderr")
@click.pass_context
def cli(ctx: click.Context, version: bool, verbose: int) -> None:
    """Pipe and subprocess transport diagnostics for remoting hosts."""
    if version:
        click.echo(f"hostlink {__version__}")
        ctx.exit(0)

    _configure_logging(verbose)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


cli.add_command(pipe_name)
cli.add_command(locate)
cli.add_command(connect)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
