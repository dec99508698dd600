"""ragline status — knowledge base overview and per-source lifecycle."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ragline.cli.common import DEFAULT_DB, open_db
from ragline.cli.errors import err_no_db
from ragline.db.models import KnowledgeSource, SourceStatus
from ragline.db.repository import Repository
from ragline.db.vectors import list_vec_tables

console = Console()

_STATUS_STYLE = {
    SourceStatus.PENDING: "[dim]pending[/]",
    SourceStatus.PROCESSING: "[yellow]processing[/]",
    SourceStatus.READY: "[green]ready[/]",
    SourceStatus.FAILED: "[red]failed[/]",
}


def status_cmd(
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Only show this project's sources."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .ragline.db."),
    ] = DEFAULT_DB,
) -> None:
    """Show knowledge sources and their ingestion status."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    conn = open_db(db)
    try:
        repo = Repository(conn)
        sources = repo.list_sources(project)
        _show_overview(db, conn, sources)
        if sources:
            _show_sources(sources)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _show_overview(db: Path, conn: sqlite3.Connection, sources: list[KnowledgeSource]) -> None:
    size_mb = db.stat().st_size / (1024 * 1024)
    by_status = {s: 0 for s in SourceStatus}
    for src in sources:
        by_status[src.status] += 1
    total_chunks = sum(src.chunk_count or 0 for src in sources)

    lines = [
        f"Database:  {db} ({size_mb:.1f} MB)",
        f"Sources:   [bold]{len(sources)}[/]  |  Chunks: [bold]{total_chunks:,}[/]",
        "           " + "  ".join(f"{_STATUS_STYLE[s]} {n}" for s, n in by_status.items()),
    ]
    for table in list_vec_tables(conn):
        count = conn.execute(f"SELECT COUNT(*) FROM [{table}]").fetchone()[0]  # noqa: S608
        lines.append(f"  [dim]{table}[/] ({count:,} vectors)")
    if not sources:
        lines.append("[dim]No sources ingested yet.[/]")

    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))


def _show_sources(sources: list[KnowledgeSource]) -> None:
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Project")
    table.add_column("Name")
    table.add_column("Type", style="dim")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Error")

    for src in sources:
        error = ""
        if src.error:
            error = f"{src.error} [dim]({src.error_kind})[/]"
        table.add_row(
            src.id[:8],
            src.project_id,
            src.name,
            src.origin.value,
            _STATUS_STYLE[src.status],
            "" if src.chunk_count is None else str(src.chunk_count),
            error,
        )

    console.print(table)
