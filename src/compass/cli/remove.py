"""compass remove — delete a source document from the knowledge base.

Removes every chunk stored for the source id together with its embeddings.

Usage:
  compass remove notes/kickoff.md
  compass remove notes/kickoff.md --yes
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from compass.cli.errors import err_no_db, err_source_not_found
from compass.cli.runtime import DEFAULT_DB, load_config_or_exit, open_db, open_store

console = Console()


def remove_cmd(
    source_id: Annotated[
        str,
        typer.Argument(help="Source id to remove (the path used at ingest time)."),
    ],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .compass.db."),
    ] = DEFAULT_DB,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a source document and all its chunks from the knowledge base."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = load_config_or_exit(console)
    conn = open_db(db)
    try:
        store = open_store(conn, cfg, console)
        chunk_count = store.count_chunks(source_id)
        if chunk_count == 0:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(0)

        console.print(f"\nRemove source: [bold]{source_id}[/]  ({chunk_count} chunks)")
        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        removed = asyncio.run(store.delete_by_source_id(source_id))
        console.print(f"[green]✓[/] Removed: {source_id} ({removed} chunks deleted)")
    finally:
        conn.close()
