"""compass ask — answer a question from the knowledge base, streamed.

The answer is printed as it is generated; the sources used are listed first.
Exit code is 1 when the stream ends in an error.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import aclosing
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from compass.cli.errors import err_no_db
from compass.cli.runtime import (
    DEFAULT_DB,
    exit_missing_credential,
    load_config_or_exit,
    open_db,
    open_store,
)
from compass.config import CompassConfig
from compass.db.store import KnowledgeStore
from compass.ingest.embeddings import EmbeddingClient
from compass.rag.chat import ChatService
from compass.rag.classifier import IntentClassifier
from compass.rag.fetchers import FetcherRegistry
from compass.rag.llm_client import MissingCredentialError
from compass.rag.search import KnowledgeSearch
from compass.rag.streaming import ContextEvent, DeltaEvent, DoneEvent, ErrorEvent, StreamEmitter

console = Console()


def ask_cmd(
    question: Annotated[str, typer.Argument(help="Question to answer.")],
    tenant: Annotated[
        str | None,
        typer.Option("--tenant", "-t", help="Tenant scope (global content is always included)."),
    ] = None,
    source_type: Annotated[
        list[str] | None,
        typer.Option("--type", help="Restrict retrieval to these source types (repeatable)."),
    ] = None,
    history: Annotated[
        Path | None,
        typer.Option(
            "--history",
            help="JSON file with prior turns: [{\"role\": \"user\", \"content\": \"...\"}, ...].",
        ),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .compass.db."),
    ] = DEFAULT_DB,
) -> None:
    """Answer QUESTION using the knowledge base."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    turns = _load_history(history) if history else None
    cfg = load_config_or_exit(console)

    conn = open_db(db)
    try:
        try:
            service = _build_service(open_store(conn, cfg, console), cfg)
        except MissingCredentialError as exc:
            exit_missing_credential(console, exc)

        try:
            events = service.stream_answer(question, tenant, history=turns, source_types=source_type)
        except ValueError as exc:
            console.print(f"[red]Error:[/] {exc}")
            raise typer.Exit(1)

        ok = asyncio.run(_render(events))
    finally:
        conn.close()

    if not ok:
        raise typer.Exit(1)


def _build_service(store: KnowledgeStore, cfg: CompassConfig) -> ChatService:
    return ChatService(
        classifier=IntentClassifier(cfg.classifier),
        fetchers=FetcherRegistry(store),
        search=KnowledgeSearch(store, EmbeddingClient(cfg.embedding), cfg.retrieval),
        emitter=StreamEmitter(cfg.generation),
        config=cfg.retrieval,
    )


async def _render(events) -> bool:
    """Print events as they arrive; return False if the stream ended in an error."""
    async with aclosing(events):
        async for event in events:
            if isinstance(event, ContextEvent):
                if event.sources:
                    console.print("[dim]Sources:[/]")
                    for s in event.sources:
                        console.print(f"  [dim]{s.similarity:.2f}  {s.source_type}  {s.title}[/]")
                    console.print()
            elif isinstance(event, DeltaEvent):
                typer.echo(event.text, nl=False)
            elif isinstance(event, DoneEvent):
                typer.echo("")
                console.print(
                    f"[dim]{event.usage.get('input_tokens', 0):,} input · "
                    f"{event.usage.get('output_tokens', 0):,} output tokens[/]"
                )
            elif isinstance(event, ErrorEvent):
                typer.echo("")
                console.print(f"[red]Error:[/] {event.message}")
                return False
    return True


def _load_history(path: Path) -> list[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Error:[/] Could not read history file '{path}': {exc}")
        raise typer.Exit(1)
    if not isinstance(data, list):
        console.print(f"[red]Error:[/] History file '{path}' must contain a JSON list.")
        raise typer.Exit(1)
    return data
