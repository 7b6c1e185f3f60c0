"""caseforge status — collections, record counts and search indexes."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from caseforge.cli.common import config_or_exit
from caseforge.db.connection import Database
from caseforge.db.repository import Repository
from caseforge.db.schema import schema_version

console = Console()


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database file (default from config)."),
    ] = None,
) -> None:
    """Show what the document store contains and which indexes are provisioned."""
    cfg = config_or_exit(db)
    db_path = Path(cfg.store.path)

    if not db_path.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  caseforge init",
                title="[bold]Document store[/]",
                expand=False,
            )
        )
        raise typer.Exit(1)

    size_mb = db_path.stat().st_size / (1024 * 1024)
    with Database(db_path) as conn:
        repo = Repository(conn)
        version = schema_version(conn)
        table = Table(title=f"{db_path} ({size_mb:.1f} MB, schema v{version})")
        table.add_column("Collection", style="bold")
        table.add_column("Records", justify="right")
        table.add_column("Embedded", justify="right")
        table.add_column("Indexes")
        for name in repo.list_collections():
            indexes = repo.list_search_indexes(name)
            index_text = ", ".join(f"{i.name} ({i.kind})" for i in indexes)
            table.add_row(
                name,
                f"{repo.count_records(name):,}",
                f"{repo.count_embedded(name):,}",
                index_text or "[yellow]none[/]",
            )
    console.print(table)
