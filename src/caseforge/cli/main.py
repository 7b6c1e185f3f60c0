"""caseforge CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from caseforge.cli.facets import facets_cmd
from caseforge.cli.ingest import ingest_cmd
from caseforge.cli.init import init_cmd
from caseforge.cli.search import search_cmd
from caseforge.cli.status import status_cmd


def _version_callback(value: bool) -> None:
    if value:
        try:
            ver = importlib.metadata.version("caseforge")
        except importlib.metadata.PackageNotFoundError:
            ver = "dev"
        typer.echo(f"caseforge {ver}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # LiteLLM logs every request at INFO; keep it quiet unless debugging.
    logging.getLogger("LiteLLM").setLevel(logging.DEBUG if verbose else logging.WARNING)


app = typer.Typer(
    name="caseforge",
    help=(
        "caseforge — hybrid search over test cases and user stories.\n\n"
        "  caseforge ingest  Embed records from JSON files and store them.\n"
        "  caseforge search  Lexical + vector search, fused and deduplicated."
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
        typer.Option("--verbose", "-v", help="Log debug output to stderr."),
    ] = False,
) -> None:
    """caseforge — hybrid search over test cases and user stories."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("facets")(facets_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed caseforge version."""
    try:
        ver = importlib.metadata.version("caseforge")
    except importlib.metadata.PackageNotFoundError:
        ver = "dev"
    typer.echo(f"caseforge {ver}")


if __name__ == "__main__":
    app()
