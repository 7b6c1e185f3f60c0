"""caseforge ingest — embed records from JSON files and store them.

Flow per invocation:
  1. Load every file into Records (one JSON array of objects per file).
  2. Show a token/cost estimate and ask for confirmation (skip with --yes).
  3. Submit one ingestion job; the pipeline runs on a background thread.
  4. Poll the job tracker and render progress until the job completes.
  5. Print the job summary and any per-record failures.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from caseforge.cli.common import config_or_exit
from caseforge.cli.errors import (
    err_input_file,
    err_job_limit,
    err_no_api_key,
    err_precondition,
)
from caseforge.db.models import Record
from caseforge.embedding.client import render_embedding_text
from caseforge.errors import JobLimitExceeded, PreconditionError
from caseforge.ingest.loader import load_records
from caseforge.ingest.pipeline import IngestionService
from caseforge.jobs import ItemStatus, JobSnapshot, JobTracker
from caseforge.rag.llm_client import validate_api_key

console = Console()

_POLL_SECONDS = 0.1
_MAX_FAILURES_SHOWN = 10


def ingest_cmd(
    files: Annotated[
        list[Path],
        typer.Argument(help="JSON files of test cases or user stories."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database file (default from config)."),
    ] = None,
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Target collection (default from config)."),
    ] = None,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", min=1, max=100, help="Parallel embedding calls."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be ingested without embedding."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompts."),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the finished job as JSON."),
    ] = False,
) -> None:
    """Embed records from one or more JSON files into the document store."""
    cfg = config_or_exit(db, collection)
    if concurrency is not None:
        cfg.ingestion.concurrency = concurrency

    records: list[Record] = []
    for path in files:
        try:
            loaded = load_records(path)
        except (OSError, ValueError) as exc:
            console.print(err_input_file(str(path), str(exc)))
            raise typer.Exit(1) from exc
        console.print(f"  [green]✓[/] {path.name}: {len(loaded)} records")
        records.extend(loaded)

    if not records:
        console.print("[yellow]No records found to ingest.[/]")
        raise typer.Exit(0)

    total_tokens = sum(
        max(1, len(render_embedding_text(r, cfg.embedding.text_fields)) // 4) for r in records
    )
    _show_cost_estimate(len(records), total_tokens, cfg.embedding.price_per_1k_tokens)

    if dry_run:
        console.print("  [dim]Dry run — nothing embedded or written[/]")
        return

    try:
        validate_api_key(cfg.embedding.model)
    except EnvironmentError as exc:
        console.print(err_no_api_key(cfg.embedding.model.split("/")[0]))
        raise typer.Exit(1) from exc

    if not yes and not typer.confirm("  Proceed with embedding?", default=True):
        console.print("  [dim]Skipped.[/]")
        raise typer.Exit(0)

    tracker = JobTracker(
        retention_seconds=cfg.jobs.retention_seconds, max_active=cfg.jobs.max_active
    )
    with IngestionService(cfg, tracker) as service:
        try:
            job_id = service.submit(records, [str(p) for p in files])
        except PreconditionError as exc:
            console.print(err_precondition(exc))
            raise typer.Exit(1) from exc
        except JobLimitExceeded as exc:
            console.print(err_job_limit(str(exc)))
            raise typer.Exit(1) from exc

        _follow_job(tracker, job_id, len(records))
        snapshot = service.wait(job_id)
    if as_json:
        typer.echo(snapshot_to_json(snapshot))
    else:
        _show_summary(snapshot)
    if snapshot.processed == 0:
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Progress + reporting
# ------------------------------------------------------------------


def _follow_job(tracker: JobTracker, job_id: str, total: int) -> JobSnapshot:
    """Poll *job_id* until it completes, rendering a progress bar."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("[dim]{task.fields[current]}[/dim]"),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Embedding…", total=total, current="")
        while True:
            snapshot = tracker.get_job(job_id)
            prog.update(task, completed=snapshot.progress, current=snapshot.current_item or "")
            if not snapshot.is_active:
                return snapshot
            time.sleep(_POLL_SECONDS)


def _show_cost_estimate(record_count: int, total_tokens: int, price_per_1k: float) -> None:
    """Print a rough USD cost estimate to the console."""
    cost = total_tokens / 1000 * price_per_1k
    console.print(
        f"  [dim]Estimate: {record_count} records · ~{total_tokens:,} tokens · ~${cost:.4f}[/]"
    )


def _show_summary(snapshot: JobSnapshot) -> None:
    summary = snapshot.summary
    table = Table(title=f"Job {snapshot.id}", show_header=False, expand=False)
    table.add_column("", style="bold")
    table.add_column("")
    table.add_row("Status", snapshot.status + (" (cancelled)" if snapshot.cancelled else ""))
    table.add_row("Processed", f"[green]{snapshot.processed}[/]")
    table.add_row("Failed", f"[red]{snapshot.failed}[/]" if snapshot.failed else "0")
    table.add_row("Tokens", f"{snapshot.total_tokens:,}")
    table.add_row("Cost", f"${snapshot.total_cost:.6f}")
    if summary is not None:
        table.add_row("Success rate", f"{summary.success_rate:.1%}")
        table.add_row("Elapsed", f"{summary.elapsed_seconds:.1f}s")
        table.add_row("Throughput", f"{summary.items_per_second:.1f} records/s")
    console.print(table)

    failures = [i for i in snapshot.items if i.status == ItemStatus.FAILED]
    for item in failures[:_MAX_FAILURES_SHOWN]:
        console.print(f"  [red]✗[/] {item.record_id}: {item.error}")
    if len(failures) > _MAX_FAILURES_SHOWN:
        console.print(f"  [dim]… and {len(failures) - _MAX_FAILURES_SHOWN} more failures[/]")


def snapshot_to_json(snapshot: JobSnapshot) -> str:
    """JSON view of a finished job."""
    return json.dumps(
        {
            "id": snapshot.id,
            "status": snapshot.status,
            "progress": snapshot.progress,
            "total": snapshot.total,
            "files": list(snapshot.targets),
            "currentFile": snapshot.current_item,
            "processed": snapshot.processed,
            "failed": snapshot.failed,
            "totalCost": snapshot.total_cost,
            "totalTokens": snapshot.total_tokens,
        },
        indent=2,
    )
