"""caseforge facets — distinct values of the filterable fields."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from caseforge.cli.common import config_or_exit
from caseforge.cli.errors import err_precondition
from caseforge.db.store import DocumentStore
from caseforge.errors import PreconditionError
from caseforge.rag.retriever import FACET_FIELDS, facets

console = Console()


def facets_cmd(
    fields: Annotated[
        list[str] | None,
        typer.Option("--field", help="Field to list (repeatable; default: common filters)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database file (default from config)."),
    ] = None,
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Collection (default from config)."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the values as JSON."),
    ] = False,
) -> None:
    """List the distinct values usable with ``caseforge search --filter``."""
    cfg = config_or_exit(db, collection)
    store = DocumentStore(cfg.store.path, timeout=cfg.store.timeout_seconds)
    try:
        values = asyncio.run(
            facets(store, cfg.store.collection, tuple(fields) if fields else FACET_FIELDS)
        )
    except PreconditionError as exc:
        console.print(err_precondition(exc))
        raise typer.Exit(1) from exc

    if as_json:
        typer.echo(json.dumps(values, indent=2))
        return

    table = Table(title=f"Filter values in '{cfg.store.collection}'")
    table.add_column("Field", style="bold")
    table.add_column("Values")
    for name, vals in values.items():
        table.add_row(name, ", ".join(vals) if vals else "[dim](none)[/]")
    console.print(table)
