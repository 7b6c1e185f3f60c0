"""caseforge search — hybrid lexical + vector search with fusion and dedup."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from caseforge.cli.common import config_or_exit
from caseforge.cli.errors import err_no_api_key, err_precondition, err_provider, warn_degraded
from caseforge.errors import PreconditionError, ProviderError
from caseforge.rag.adapters import LEXICAL, VECTOR
from caseforge.rag.fusion import FUSION_METHODS, FusionConfig
from caseforge.rag.llm_client import validate_api_key
from caseforge.rag.retriever import HybridSearcher, SearchResponse
from caseforge.rag.summarizer import Summary, summarize

console = Console()


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database file (default from config)."),
    ] = None,
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Collection to search (default from config)."),
    ] = None,
    fusion: Annotated[
        str | None,
        typer.Option("--fusion", help="weighted | reciprocal | rrf (default from config)."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Results to return after dedup."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", min=1, help="Fused results kept before dedup."),
    ] = None,
    filters: Annotated[
        list[str] | None,
        typer.Option("--filter", "-f", help="Exact-match filter FIELD=VALUE (repeatable)."),
    ] = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", min=0.0, max=1.0, help="Title dedup threshold."),
    ] = None,
    summary: Annotated[
        bool,
        typer.Option("--summarize", help="Ask the LLM for an overview of the results."),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the response as JSON."),
    ] = False,
) -> None:
    """Search test cases with BM25 + vector retrieval, fused and deduplicated."""
    cfg = config_or_exit(db, collection)
    ret = cfg.retrieval

    method = fusion or ret.fusion
    if method not in FUSION_METHODS:
        console.print(
            f"[red]Error:[/] Unknown fusion method '{method}'.\n"
            f"  Use one of: {', '.join(FUSION_METHODS)}"
        )
        raise typer.Exit(1)
    fusion_config = FusionConfig(
        method=method,
        weights={LEXICAL: ret.lexical_weight, VECTOR: ret.vector_weight},
        top_k=top_k or ret.top_k,
        limit=limit or ret.limit,
        rrf_k=ret.rrf_k,
    )
    filter_map = _parse_filters(filters or [])

    try:
        validate_api_key(cfg.embedding.model)
    except EnvironmentError as exc:
        console.print(err_no_api_key(cfg.embedding.model.split("/")[0]))
        raise typer.Exit(1) from exc

    searcher = HybridSearcher.from_config(cfg)
    try:
        response = asyncio.run(
            searcher.search(query, filter_map, fusion_config, dedup_threshold=threshold)
        )
    except PreconditionError as exc:
        console.print(err_precondition(exc))
        raise typer.Exit(1) from exc
    except ProviderError as exc:
        console.print(err_provider(exc))
        raise typer.Exit(1) from exc

    llm_summary: Summary | None = None
    if summary:
        llm_summary = asyncio.run(
            summarize(query, response.results, cfg.summary.model, cfg.summary.max_tokens)
        )

    if as_json:
        out = response.to_dict()
        if llm_summary is not None:
            out["summary"] = {
                "text": llm_summary.text,
                "tokens": llm_summary.tokens,
                "cost": llm_summary.cost,
                "error": llm_summary.error,
            }
        typer.echo(json.dumps(out, indent=2))
        return

    _show_response(response)
    if llm_summary is not None:
        _show_summary(llm_summary)


def _parse_filters(raw: list[str]) -> dict[str, str]:
    filters: dict[str, str] = {}
    for item in raw:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            console.print(
                f"[red]Error:[/] Invalid filter '{item}'.\n"
                "  Use:  --filter FIELD=VALUE  (e.g. --filter module=Login)"
            )
            raise typer.Exit(1)
        filters[name.strip()] = value.strip()
    return filters


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------


def _show_response(response: SearchResponse) -> None:
    if response.degradation is not None:
        console.print(
            warn_degraded({m: str(e) for m, e in response.degradation.unavailable.items()})
        )
    if response.processed_query.changed:
        console.print(f"[dim]Lexical query: {response.processed_query.text}[/]")

    if not response.results:
        console.print("[yellow]No matching test cases.[/]")
        return

    table = Table(title=f"Results for '{response.query}' ({response.fusion_method})")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Module")
    table.add_column("Score", justify="right")
    table.add_column("Found by")
    for i, res in enumerate(response.results, start=1):
        table.add_row(
            str(i),
            res.record.record_id,
            res.record.title,
            res.record.get("module"),
            f"{res.score:.4f}",
            " + ".join(res.found_by),
        )
    console.print(table)

    for dup in response.duplicates:
        console.print(
            f"  [dim]↷ {dup.item.record.record_id} '{dup.item.record.title}' "
            f"duplicates {dup.duplicate_of.record.record_id} ({dup.similarity:.2f})[/]"
        )
    console.print(
        f"[dim]Query embedding: {response.query_tokens} tokens · ${response.query_cost:.6f}[/]"
    )


def _show_summary(summary: Summary) -> None:
    if not summary.ok:
        console.print(f"[yellow]⚠[/] Summary unavailable: {summary.error}")
        return
    console.print(
        Panel(
            summary.text,
            title="[bold]Summary[/]",
            subtitle=f"{summary.tokens} tokens · ${summary.cost:.6f}",
            expand=False,
        )
    )
