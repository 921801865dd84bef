"""compass search — similarity search over the knowledge base."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import litellm
import typer
from rich.console import Console
from rich.table import Table

from compass.cli.errors import err_no_db, err_unknown_source_type, err_upstream
from compass.cli.runtime import (
    DEFAULT_DB,
    exit_missing_credential,
    load_config_or_exit,
    open_db,
    open_store,
)
from compass.db.models import SourceType
from compass.ingest.embeddings import EmbeddingClient, EmbeddingError
from compass.rag.llm_client import MissingCredentialError
from compass.rag.search import KnowledgeSearch

console = Console()

_PREVIEW_CHARS = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="Text to search for.")],
    tenant: Annotated[
        str | None,
        typer.Option("--tenant", "-t", help="Tenant scope (global content is always included)."),
    ] = None,
    source_type: Annotated[
        list[str] | None,
        typer.Option("--type", help="Only return these source types (repeatable)."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum number of matches."),
    ] = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", min=-1.0, max=1.0, help="Minimum cosine similarity."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .compass.db."),
    ] = DEFAULT_DB,
) -> None:
    """Show the stored chunks most similar to QUERY."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    types = source_type or None
    for t in types or []:
        try:
            SourceType.parse(t)
        except ValueError:
            console.print(err_unknown_source_type(t, [s.value for s in SourceType]))
            raise typer.Exit(1)

    cfg = load_config_or_exit(console)
    try:
        embedder = EmbeddingClient(cfg.embedding)
    except MissingCredentialError as exc:
        exit_missing_credential(console, exc)

    conn = open_db(db)
    try:
        search = KnowledgeSearch(open_store(conn, cfg, console), embedder, cfg.retrieval)
        try:
            results = asyncio.run(
                search.search(
                    query,
                    tenant,
                    match_count=limit,
                    match_threshold=threshold,
                    source_types=types,
                )
            )
        except (litellm.exceptions.APIError, litellm.RateLimitError, EmbeddingError) as exc:
            console.print(err_upstream("Query embedding", exc))
            raise typer.Exit(1)
    finally:
        conn.close()

    if not results:
        console.print("[dim]No matches above the similarity threshold.[/]")
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Score", style="bold", justify="right")
    table.add_column("Type", style="dim")
    table.add_column("Title")
    table.add_column("Excerpt", style="dim")
    for r in results:
        preview = " ".join(r.content.split())[:_PREVIEW_CHARS]
        table.add_row(f"{r.similarity:.3f}", r.source_type, r.title, preview)
    console.print(table)
