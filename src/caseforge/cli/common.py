"""Config loading shared by the CLI commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from caseforge.cli.errors import err_config
from caseforge.config import CaseforgeConfig, ConfigError, load_config

console = Console()


def config_or_exit(
    db: Path | None = None,
    collection: str | None = None,
    project_dir: Path | None = None,
) -> CaseforgeConfig:
    """Load the merged config and apply --db/--collection; exit 1 on ConfigError."""
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if db is not None:
        cfg.store.path = str(db)
    if collection is not None:
        cfg.store.collection = collection
    return cfg
