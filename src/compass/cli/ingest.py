"""compass ingest — ingest text files into the knowledge base.

Each file becomes one source document whose ``source_id`` is its path, so
re-running the command on an edited file replaces its chunks instead of
duplicating them. Directories are expanded to the supported files they
contain (--recursive for subdirectories).
"""

from __future__ import annotations

import asyncio
import fnmatch
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from compass.cli.errors import err_no_inputs, err_unknown_source_type
from compass.cli.runtime import (
    DEFAULT_DB,
    exit_missing_credential,
    load_config_or_exit,
    open_db,
    open_store,
)
from compass.config import CompassConfig
from compass.db.models import SourceType
from compass.db.store import KnowledgeStore
from compass.ingest.chunker import TextChunker, estimate_tokens
from compass.ingest.embeddings import EmbeddingClient
from compass.ingest.pipeline import IngestionPipeline
from compass.ingest.queue import IngestReport, SourceDocument, backfill
from compass.rag.llm_client import MissingCredentialError

console = Console()

_TEXT_EXTS = {".md", ".markdown", ".txt", ".text", ".rst", ".csv", ".log"}


def ingest_cmd(
    paths: Annotated[
        list[Path],
        typer.Argument(help="Files or directories to ingest."),
    ],
    tenant: Annotated[
        str | None,
        typer.Option("--tenant", "-t", help="Owning tenant (omit for global content)."),
    ] = None,
    source_type: Annotated[
        str,
        typer.Option("--type", help="Source type: note, meeting, deliverable, content, ..."),
    ] = SourceType.NOTE.value,
    title: Annotated[
        str | None,
        typer.Option("--title", help="Title for a single file (default: file name)."),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", "-w", min=1, help="Concurrent ingestion workers."),
    ] = None,
    skip_existing: Annotated[
        bool,
        typer.Option("--skip-existing", help="Skip files that already have chunks stored."),
    ] = False,
    recursive: Annotated[
        bool,
        typer.Option("--recursive", help="Recurse into subdirectories (max 10 levels)."),
    ] = False,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .compass.db (created if missing)."),
    ] = DEFAULT_DB,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show chunk counts without embedding or writing."),
    ] = False,
) -> None:
    """Ingest one or more text files into the Compass knowledge base."""
    try:
        kind = SourceType.parse(source_type)
    except ValueError:
        console.print(err_unknown_source_type(source_type, [t.value for t in SourceType]))
        raise typer.Exit(1)

    files = _expand_paths(paths, recursive=recursive, exclude=exclude or [])
    if not files:
        console.print(err_no_inputs())
        raise typer.Exit(1)

    cfg = load_config_or_exit(console)
    documents = [_to_document(f, tenant, kind, title if len(files) == 1 else None) for f in files]

    if dry_run:
        _show_dry_run(documents, cfg)
        return

    try:
        embedder = EmbeddingClient(cfg.embedding)
    except MissingCredentialError as exc:
        exit_missing_credential(console, exc)

    conn = open_db(db)
    try:
        store = open_store(conn, cfg, console)
        pipeline = IngestionPipeline(store, embedder, TextChunker(cfg.chunking))
        existing = store.list_source_ids() if skip_existing else None
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task(f"Ingesting {len(documents)} file(s)…", total=None)
            report = asyncio.run(
                backfill(
                    pipeline,
                    documents,
                    workers=workers or cfg.ingestion.workers,
                    existing_source_ids=existing,
                )
            )
        _show_report(report, store, embedder)
    finally:
        conn.close()

    if report.failed:
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _to_document(
    path: Path, tenant: str | None, kind: SourceType, title: str | None
) -> SourceDocument:
    content = path.read_text(encoding="utf-8", errors="replace")
    return SourceDocument(
        tenant_id=tenant,
        source_type=kind,
        source_id=str(path),
        title=title or path.stem,
        content=content,
        metadata={"path": str(path)},
    )


def _show_dry_run(documents: list[SourceDocument], cfg: CompassConfig) -> None:
    chunker = TextChunker(cfg.chunking)
    for doc in documents:
        chunks = chunker.chunk(doc.content)
        tokens = sum(estimate_tokens(c.content) for c in chunks)
        console.print(
            f"  [bold]{doc.source_id}[/]  {len(chunks)} chunks · ~{tokens:,} tokens"
        )
    console.print("[dim]Dry run — nothing embedded or written to DB[/]")


def _show_report(report: IngestReport, store: KnowledgeStore, embedder: EmbeddingClient) -> None:
    console.print(
        f"[green]✓[/] {report.processed} ingested · {report.chunks_created} chunks · "
        f"{embedder.tokens_used:,} embedding tokens"
    )
    if report.skipped_existing:
        console.print(f"  [dim]↷ {report.skipped_existing} already embedded, skipped[/]")
    if report.skipped_no_content:
        console.print(f"  [yellow]✗ {report.skipped_no_content} empty file(s) skipped[/]")
    if report.failed:
        console.print(f"  [red]✗ {report.failed} failed[/]")
        for line in report.errors:
            console.print(f"    {line}")
    console.print(f"  [dim]Knowledge base now holds {store.count_chunks():,} chunks[/]")


def _expand_paths(paths: list[Path], recursive: bool, exclude: list[str]) -> list[Path]:
    """Expand directories to supported files; keep explicit files as given."""
    result: list[Path] = []
    for p in paths:
        if p.is_dir():
            result.extend(_scan_dir(p, recursive=recursive, exclude=exclude, depth=0))
        elif p.is_file():
            result.append(p)
        else:
            console.print(f"[yellow]Not found, skipping:[/] {p}")
    return result


def _scan_dir(
    directory: Path,
    recursive: bool,
    exclude: list[str],
    depth: int,
    max_depth: int = 10,
) -> list[Path]:
    """Return supported files in *directory* (optionally recursive)."""
    if depth > max_depth:
        return []
    files: list[Path] = []
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        return []
    for entry in entries:
        if any(fnmatch.fnmatch(entry.name, pat) for pat in exclude):
            continue
        if entry.is_file() and entry.suffix.lower() in _TEXT_EXTS:
            files.append(entry)
        elif entry.is_dir() and recursive and depth < max_depth:
            files.extend(
                _scan_dir(entry, recursive=recursive, exclude=exclude, depth=depth + 1)
            )
    return files
