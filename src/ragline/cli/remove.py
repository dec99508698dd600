"""ragline remove — delete a knowledge source and everything derived from it.

Removes, in one transaction:
  - chunks (+ FTS5 index entries)
  - embeddings (all vec tables)
  - the source record

Usage:
  ragline remove --source <id>
  ragline remove --source faq.pdf --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from ragline.cli.common import DEFAULT_DB, find_source, open_db
from ragline.cli.errors import err_no_db
from ragline.db.models import SourceStatus
from ragline.db.repository import Repository

console = Console()


def remove_cmd(
    source: Annotated[
        str,
        typer.Option("--source", "-s", help="Source id or name to remove."),
    ],
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Project used for name lookups."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .ragline.db."),
    ] = DEFAULT_DB,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a source and all its chunks and embeddings."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    conn = open_db(db)
    try:
        repo = Repository(conn)
        existing = find_source(console, repo, source, project)

        if existing.status is SourceStatus.PROCESSING:
            console.print(
                f"[red]Error:[/] '{existing.name}' is being processed.\n"
                "  Wait for ingestion to finish, then re-run remove."
            )
            raise typer.Exit(1)

        chunk_count = repo.count_chunks_by_source(existing.id)
        console.print(f"\nRemove source: [bold]{existing.name}[/] [dim]({existing.id})[/]")
        console.print(f"  Project: {existing.project_id}  |  Chunks: {chunk_count}")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        removed = repo.delete_source(existing.id)
        console.print(f"\n[green]✓[/] Removed: {existing.name}")
        console.print(f"  {removed} chunks deleted")
    finally:
        conn.close()
