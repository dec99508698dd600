"""ragline questions — most frequent visitor questions for a project."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ragline.analytics.clustering import QuestionClusterer
from ragline.analytics.top_questions import top_questions
from ragline.cli.common import DEFAULT_DB, DEFAULT_PROJECT, load_cfg, open_db
from ragline.cli.errors import err_no_db
from ragline.db.repository import Repository
from ragline.ingest.embedding import EmbeddingClient

console = Console()


def questions_cmd(
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project (tenant) to analyse."),
    ] = DEFAULT_PROJECT,
    days: Annotated[
        int,
        typer.Option("--days", "-d", min=1, help="Look-back window in days."),
    ] = 30,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", min=1, help="Maximum clusters to show."),
    ] = 10,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .ragline.db."),
    ] = DEFAULT_DB,
) -> None:
    """Show the most asked visitor questions, grouped by similarity."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = load_cfg(console)
    cl = cfg.clustering
    clusterer = QuestionClusterer(
        EmbeddingClient(
            model=cfg.embedding.model,
            dimensions=cfg.embedding.dimensions,
            batch_size=cfg.embedding.batch_size,
        ),
        similarity_threshold=cl.similarity_threshold,
        sample_cap=cl.sample_cap,
        small_sample_size=cl.small_sample_size,
        timeout=cl.timeout,
        stable_order=cl.stable_order,
    )

    conn = open_db(db)
    try:
        clusters = top_questions(Repository(conn), clusterer, project, days=days, limit=limit)
    finally:
        conn.close()

    if not clusters:
        console.print(f"[dim]No visitor questions in the last {days} days.[/]")
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("Count", justify="right")
    table.add_column("Question")
    table.add_column("Variants", style="dim")
    for cluster in clusters:
        variants = [e for e in cluster.examples if e != cluster.representative]
        table.add_row(str(cluster.count), cluster.representative, " | ".join(variants))
    console.print(table)
