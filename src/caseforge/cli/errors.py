"""caseforge rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from caseforge.cli.errors import err_no_db
    console.print(err_no_db(".caseforge.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from caseforge.errors import PreconditionError, ProviderError, TransientProviderError


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
        "voyage": "VOYAGE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".caseforge.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  caseforge init"
    )


def err_precondition(exc: PreconditionError) -> str:
    """The store is not provisioned for the requested operation."""
    if exc.check == PreconditionError.DATABASE:
        return err_no_db(exc.target)
    if exc.check == PreconditionError.COLLECTION:
        return (
            f"[red]Error:[/] {exc}.\n"
            f"  Run:  caseforge init --collection {exc.target}"
        )
    if exc.check == PreconditionError.DOCUMENTS:
        return (
            f"[red]Error:[/] {exc}\n"
            "  Run:  caseforge ingest <file.json>"
        )
    return (
        f"[red]Error:[/] {exc}.\n"
        "  Run:  caseforge init  (creates missing search indexes)"
    )


def err_provider(exc: ProviderError) -> str:
    """An embedding/LLM provider call failed."""
    status = f" (HTTP {exc.status})" if exc.status else ""
    if isinstance(exc, TransientProviderError):
        return (
            f"[red]Error:[/] Embedding provider unavailable{status}: {exc}\n"
            "  This is usually temporary. Retry in a moment."
        )
    return (
        f"[red]Error:[/] Embedding request rejected{status}: {exc}\n"
        "  Check the embedding model name and your API key."
    )


def err_config(message: str, config_path: str = "caseforge.yaml") -> str:
    """Invalid configuration value."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        f"  Fix the value in {config_path} or ~/.caseforge/config.yaml."
    )


def err_input_file(path: str, message: str) -> str:
    """An input file could not be read or parsed."""
    return (
        f"[red]Error:[/] Cannot load '{path}': {message}\n"
        "  Input files must hold JSON objects with an 'id' (or tracker 'key') field."
    )


def err_job_limit(message: str) -> str:
    """Too many ingestion jobs are already running."""
    return (
        f"[red]Error:[/] {message}.\n"
        "  Wait for a running job to finish, or raise jobs.max_active in caseforge.yaml."
    )


def warn_degraded(unavailable: dict[str, str]) -> str:
    """Search answered with fewer methods than configured."""
    lines = "\n".join(f"    {m}: {reason}" for m, reason in sorted(unavailable.items()))
    return (
        "[yellow]⚠[/] Results are degraded; some retrieval methods were unavailable:\n"
        f"{lines}\n"
        "  Run:  caseforge init  to provision missing indexes."
    )
