"""Compass rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from compass.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai", "OPENAI_API_KEY"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str, env_var: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".compass.db") -> str:
    """No knowledge database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  compass ingest PATH  to create it."
    )


def err_config(message: str) -> str:
    """compass.yaml or the global config is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix compass.yaml (or ~/.compass/config.yaml) and try again."
    )


def err_unknown_source_type(value: str, valid: list[str]) -> str:
    """--type is not a known source type."""
    return (
        f"[red]Error:[/] Unknown source type '{value}'.\n"
        f"  Use one of:  {', '.join(valid)}"
    )


def err_source_not_found(source_id: str) -> str:
    """Source id not present in the knowledge base."""
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not in the knowledge base.\n"
        "  Run:  compass status  to see all ingested sources."
    )


def err_no_inputs() -> str:
    """compass ingest was given no readable files."""
    return (
        "[yellow]No files found to ingest.[/]\n"
        "  Supported:  .md .markdown .txt .text .rst .csv .log (directories are expanded)"
    )


def err_upstream(action: str, exc: BaseException) -> str:
    """A provider call failed after retries."""
    return (
        f"[red]Error:[/] {action} failed: {exc}\n"
        "  Check your network connection and provider status, then retry."
    )


def err_dimension_mismatch(table: str, stored: int, requested: int) -> str:
    """The configured embedding dimension differs from the stored vectors."""
    return (
        f"[red]Error:[/] {table} holds {stored}-dimensional embeddings, "
        f"but embedding.dimensions is {requested}.\n"
        f"  Set:  embedding.dimensions: {stored}  in compass.yaml, "
        "or re-ingest into a new database with --db."
    )
