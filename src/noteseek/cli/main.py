"""noteseek CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from noteseek.cli.search import search_cmd
from noteseek.cli.status import status_cmd
from noteseek.cli.warmup import warmup_cmd


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"noteseek {_version()}")
        raise typer.Exit()


def _version() -> str:
    try:
        return importlib.metadata.version("noteseek")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


app = typer.Typer(
    name="noteseek",
    help=(
        "noteseek — retrieve grounding notes for an answer.\n\n"
        "  noteseek warmup   Embed the whole corpus ahead of time.\n"
        "  noteseek search   Fused retrieval for one or more queries."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log retrieval internals to stderr."),
    ] = False,
) -> None:
    """noteseek — retrieve grounding notes for an answer."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        )


app.command("search")(search_cmd)
app.command("warmup")(warmup_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed noteseek version."""
    typer.echo(f"noteseek {_version()}")


if __name__ == "__main__":
    app()
