"""Compass CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from compass.cli.ask import ask_cmd
from compass.cli.ingest import ingest_cmd
from compass.cli.remove import remove_cmd
from compass.cli.search import search_cmd
from compass.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("compass")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"compass {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # LiteLLM and httpx are chatty at DEBUG; keep them at WARNING
    for name in ("LiteLLM", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


app = typer.Typer(
    name="compass",
    help=(
        "Compass — answers from your knowledge base.\n\n"
        "  compass ingest  Chunk, embed and store text files.\n"
        "  compass ask     Stream an answer grounded in the stored content."
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
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Compass — answers from your knowledge base."""
    _configure_logging(verbose)


app.command("ingest")(ingest_cmd)
app.command("remove")(remove_cmd)
app.command("search")(search_cmd)
app.command("ask")(ask_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Compass version."""
    typer.echo(f"compass {_installed_version()}")


if __name__ == "__main__":
    app()
