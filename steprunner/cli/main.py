"""Typer CLI for steprunner: wiring hub for command modules."""

from __future__ import annotations

from typing import Annotated

import typer

from steprunner.cli._helpers import console
from steprunner.cli.history_cmd import app as history_app

app = typer.Typer(
    name="steprunner",
    help="Run declarative pipelines of skills and agents.",
    no_args_is_help=True,
)

app.add_typer(history_app, name="history")


def version_callback(value: bool) -> None:
    if value:
        from steprunner import __version__

        console.print(f"steprunner {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging"),
    ] = False,
) -> None:
    """Run declarative pipelines of skills and agents."""
    from steprunner._log import setup_logging

    setup_logging(verbose=verbose)


from steprunner.cli.run_cmd import run, validate  # noqa: E402

app.command()(run)
app.command()(validate)


def app_entry() -> None:
    """Entry point for the CLI."""
    app()
