"""ragline search — hybrid retrieval over one project's knowledge."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ragline.cli.common import DEFAULT_DB, DEFAULT_PROJECT, load_cfg, open_db, require_api_keys
from ragline.cli.errors import err_no_db, err_no_embeddings
from ragline.db.repository import Repository
from ragline.errors import EmbeddingFailure
from ragline.ingest.embedding import EmbeddingClient
from ragline.rag.retriever import format_as_context, retrieve

console = Console()

_PREVIEW_CHARS = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to search for.")],
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project (tenant) to search."),
    ] = DEFAULT_PROJECT,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .ragline.db."),
    ] = DEFAULT_DB,
    mode: Annotated[
        str | None,
        typer.Option("--mode", "-m", help="hybrid | dense | fts (default from config)."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Maximum chunks to return."),
    ] = None,
    as_context: Annotated[
        bool,
        typer.Option("--context", help="Print results formatted as chat-prompt context."),
    ] = False,
) -> None:
    """Search a project's knowledge base."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = load_cfg(console)
    retrieval = cfg.retrieval
    if mode is not None:
        if mode not in ("hybrid", "dense", "fts"):
            console.print(f"[red]Error:[/] Unknown mode '{mode}'. Use hybrid, dense or fts.")
            raise typer.Exit(1)
        retrieval = replace(retrieval, mode=mode)
    if top_k is not None:
        retrieval = replace(retrieval, top_k=top_k)

    if retrieval.mode != "fts":
        require_api_keys(console, cfg.embedding.model)

    embedder = EmbeddingClient(
        model=cfg.embedding.model,
        dimensions=cfg.embedding.dimensions,
        batch_size=cfg.embedding.batch_size,
    )

    conn = open_db(db)
    try:
        try:
            result = retrieve(query, Repository(conn), embedder, project, retrieval)
        except RuntimeError:
            console.print(err_no_embeddings(cfg.embedding.model))
            raise typer.Exit(1) from None
        except EmbeddingFailure as exc:
            console.print(f"[red]Error:[/] {exc}\n  This is usually transient; try again.")
            raise typer.Exit(1) from None
    finally:
        conn.close()

    if as_context:
        typer.echo(format_as_context(result.chunks))
        return

    if not result.chunks:
        console.print("[yellow]No matching chunks.[/]")
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("#", justify="right", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Source")
    table.add_column("Chunk", justify="right", style="dim")
    table.add_column("Content")
    for i, scored in enumerate(result.chunks, start=1):
        preview = " ".join(scored.chunk.content.split())
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[: _PREVIEW_CHARS - 1] + "…"
        table.add_row(
            str(i),
            f"{scored.score:.2f}",
            scored.source_name,
            str(scored.chunk.chunk_index),
            preview,
        )
    console.print(table)

    m = result.metrics
    console.print(
        f"[dim]{result.mode}: {m.candidate_count} candidates · {m.fused_count} fused · "
        f"{m.returned_count} returned · avg {m.avg_score:.2f} · {m.elapsed_ms:.0f} ms[/]"
    )
