"""caseforge init — create the store, collection and both search indexes.

Creates:
  .caseforge.db            — document store with schema, collection, a BM25
                             index over the lexical fields and a vector index
                             sized for the configured embedding model
  caseforge.yaml           — project config (only if missing)
  ~/.caseforge/config.yaml — global model config (created once, mode 0o600)

Re-running init is safe: existing collections and indexes are kept.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from caseforge.cli.common import config_or_exit
from caseforge.config import CaseforgeConfig, ensure_global_config
from caseforge.db.store import DocumentStore

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Collection name (default from config)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database file (default from config)."),
    ] = None,
) -> None:
    """Initialize a caseforge project: database, collection and search indexes."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    cfg = config_or_exit(db, collection, project_dir)

    db_path = Path(cfg.store.path)
    if not db_path.is_absolute():
        db_path = project_dir / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    console.print(f"\n[bold]Initializing caseforge in {project_dir} …[/]\n")
    store = DocumentStore(db_path, timeout=cfg.store.timeout_seconds)
    indexes = store.provision(
        cfg.store.collection,
        lexical_index=(cfg.store.lexical_index, cfg.store.lexical_fields),
        vector_index=(cfg.store.vector_index, cfg.embedding.model, cfg.embedding.dimensions),
    )
    console.print(f"  [green]✓[/] {db_path.name}  (collection '{cfg.store.collection}')")
    for index in indexes:
        detail = (
            ", ".join(index.fields)
            if index.kind == "lexical"
            else f"{index.model}, {index.dimensions} dims"
        )
        console.print(f"  [green]✓[/] {index.kind} index '{index.name}'  [dim]({detail})[/]")

    _create_caseforge_yaml(project_dir, cfg)

    cfg_path = ensure_global_config()
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print("\n[bold green]✓ Project initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. caseforge ingest testcases.json     (embed and store records)")
    console.print('  2. caseforge search "login timeout"    (hybrid search)')


def _create_caseforge_yaml(project_dir: Path, cfg: CaseforgeConfig) -> None:
    path = project_dir / "caseforge.yaml"
    if path.exists():
        console.print("  [dim]↷ caseforge.yaml already exists[/]")
        return
    content = (
        "store:\n"
        f'  collection: "{cfg.store.collection}"\n'
        "\n"
        "retrieval:\n"
        f"  fusion: {cfg.retrieval.fusion}          # weighted | reciprocal | rrf\n"
        f"  limit: {cfg.retrieval.limit}\n"
        f"  dedup_threshold: {cfg.retrieval.dedup_threshold}\n"
        "  # abbreviations:\n"
        "  #   2fa: two factor authentication\n"
        "  # synonyms:\n"
        "  #   login: [signin, authentication]\n"
        "\n"
        "ingestion:\n"
        f"  concurrency: {cfg.ingestion.concurrency}        # 1-100 depending on provider tier\n"
    )
    path.write_text(content, encoding="utf-8")
    console.print("  [green]✓[/] caseforge.yaml")
