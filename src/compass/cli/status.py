"""compass status command.

Shows the configured models, database stats and the ingested sources per
type and tenant.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections import Counter
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from compass.cli.runtime import DEFAULT_DB, open_db, open_store
from compass.config import CompassConfig, ConfigError, load_config
from compass.db.store import KnowledgeStore
from compass.db.vectors import list_vec_tables

console = Console()


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .compass.db."),
    ] = DEFAULT_DB,
) -> None:
    """Show configuration and knowledge base status."""
    # Status works even with a broken compass.yaml
    try:
        cfg = load_config()
        cfg_error = None
    except ConfigError as exc:
        cfg = CompassConfig()
        cfg_error = str(exc)

    _show_config_panel(cfg, cfg_error)

    if not db.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  compass ingest PATH",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    conn = open_db(db)
    try:
        store = open_store(conn, cfg, console)
        _show_knowledge_panel(db, conn, store)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_config_panel(cfg: CompassConfig, cfg_error: str | None) -> None:
    lines = [
        f"Embedding:   [bold]{cfg.embedding.model}[/] ({cfg.embedding.dimensions} dims)",
        f"Generation:  [bold]{cfg.generation.model}[/]",
        f"Classifier:  [bold]{cfg.classifier.model}[/]",
        f"Chunking:    {cfg.chunking.max_tokens} tokens, "
        f"{cfg.chunking.overlap_sentences} overlap sentences",
        f"Retrieval:   top {cfg.retrieval.match_count} ≥ {cfg.retrieval.match_threshold}",
    ]
    if cfg_error:
        lines.append(f"[yellow]✗ Config error, showing defaults:[/] {cfg_error}")
    console.print(Panel("\n".join(lines), title="[bold]Configuration[/]", expand=False))


def _show_knowledge_panel(db: Path, conn: sqlite3.Connection, store: KnowledgeStore) -> None:
    sources = asyncio.run(store.list_sources())
    size_mb = db.stat().st_size / (1024 * 1024)

    lines = [
        f"Database: {db} ({size_mb:.1f} MB)",
        f"Sources: [bold]{len(sources)}[/]  |  Chunks: [bold]{store.count_chunks():,}[/]",
    ]
    for table in list_vec_tables(conn):
        count = conn.execute(f"SELECT COUNT(*) FROM [{table.name}]").fetchone()[0]  # noqa: S608
        lines.append(f"  [dim]{table.name}[/] ({table.dimensions} dims, {count:,} vectors)")

    if not sources:
        lines.append("[dim]No sources ingested yet.[/]")
        console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))
        return

    latest = max((s.created_at for s in sources if s.created_at), default=None)
    if latest:
        lines.append(f"Last ingest: [dim]{latest[:16]}[/]")
    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Type", style="bold")
    table.add_column("Tenant")
    table.add_column("Sources", justify="right")
    counts = Counter((s.source_type, s.tenant_id or "(global)") for s in sources)
    for (kind, tenant), n in sorted(counts.items()):
        table.add_row(kind, tenant, str(n))
    console.print(Panel(table, title="[bold]Sources[/]", expand=False))
