"""ragline ingest / reprocess — run knowledge sources through the pipeline.

Source dispatch:
  --text "..."         → origin text (pasted content stored on the source)
  --file path.pdf      → origin pdf  (text extracted with pypdf at run time)
  --file path.txt|.md  → origin file (decoded as UTF-8 at run time)

Every source is registered as ``pending`` first, then handed to the
ingestion worker pool; the command waits for all runs and reports each
source's final status.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from ragline.cli.common import (
    DEFAULT_DB,
    DEFAULT_PROJECT,
    find_source,
    load_cfg,
    open_db,
    require_api_keys,
)
from ragline.cli.errors import err_no_db, err_unsupported_file, hint_fix_input, hint_retry
from ragline.config import RaglineConfig
from ragline.db.models import (
    FileSourceMeta,
    KnowledgeSource,
    PdfSourceMeta,
    SourceOrigin,
    SourceStatus,
)
from ragline.db.repository import Repository
from ragline.ingest.extract import pdf_page_count
from ragline.ingest.pipeline import ProcessingPipeline
from ragline.ingest.state import IngestionStateMachine
from ragline.ingest.worker import IngestionWorker

console = Console()

_PDF_EXTS = {".pdf"}
_TEXT_EXTS = {".txt", ".md", ".markdown", ".text", ".rst", ".csv", ".log"}


def ingest_cmd(
    file: Annotated[
        list[Path] | None,
        typer.Option("--file", "-f", help="Text or PDF file to ingest (repeatable)."),
    ] = None,
    text: Annotated[
        str | None,
        typer.Option("--text", "-t", help="Paste text content directly."),
    ] = None,
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Display name for --text sources."),
    ] = None,
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project (tenant) the sources belong to."),
    ] = DEFAULT_PROJECT,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .ragline.db (created if missing)."),
    ] = DEFAULT_DB,
    skip_context: Annotated[
        bool,
        typer.Option("--skip-context", help="Skip LLM context generation (metadata-only context)."),
    ] = False,
    workers: Annotated[
        int | None,
        typer.Option("--workers", min=1, help="Sources processed in parallel."),
    ] = None,
) -> None:
    """Ingest files or pasted text into a project's knowledge base."""
    files = file or []
    if not files and text is None:
        console.print("[red]Error:[/] Nothing to ingest. Use --file PATH or --text TEXT.")
        raise typer.Exit(1)

    cfg = load_cfg(console)
    skip = skip_context or cfg.pipeline.skip_context
    _check_keys(cfg, skip)

    conn = open_db(db)
    try:
        machine = IngestionStateMachine(Repository(conn))
        source_ids: list[str] = []
        if text is not None:
            src = machine.create(project, name or "Pasted text", SourceOrigin.TEXT, content=text)
            source_ids.append(src.id)
        for path in files:
            src = _register_file(machine, project, path)
            if src is not None:
                source_ids.append(src.id)
    finally:
        conn.close()

    if not source_ids:
        console.print("[yellow]No sources to ingest.[/]")
        raise typer.Exit(1)

    results = _run_sources(db, cfg, source_ids, skip, workers)
    _report(results)


def reprocess_cmd(
    source: Annotated[
        list[str] | None,
        typer.Option("--source", "-s", help="Source id or name to re-run (repeatable)."),
    ] = None,
    failed: Annotated[
        bool,
        typer.Option("--failed", help="Re-run every source whose failure is retryable."),
    ] = False,
    project: Annotated[
        str,
        typer.Option("--project", "-p", help="Project for --failed and name lookups."),
    ] = DEFAULT_PROJECT,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .ragline.db."),
    ] = DEFAULT_DB,
    skip_context: Annotated[
        bool,
        typer.Option("--skip-context", help="Skip LLM context generation (metadata-only context)."),
    ] = False,
    workers: Annotated[
        int | None,
        typer.Option("--workers", min=1, help="Sources processed in parallel."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            help="Also re-run sources stuck in processing after an interrupted run.",
        ),
    ] = False,
) -> None:
    """Re-run the pipeline for existing sources, replacing their chunks.

    A source left in ``processing`` by a killed run is skipped unless
    --force is given; with --force it is marked failed and re-run.
    """
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    if not source and not failed:
        console.print("[red]Error:[/] Nothing to reprocess. Use --source ID or --failed.")
        raise typer.Exit(1)

    cfg = load_cfg(console)
    skip = skip_context or cfg.pipeline.skip_context

    conn = open_db(db)
    try:
        repo = Repository(conn)
        targets: dict[str, KnowledgeSource] = {}
        for ref in source or []:
            src = find_source(console, repo, ref, project)
            targets[src.id] = src
        if failed:
            for src in repo.list_sources(project):
                stale = force and src.status is SourceStatus.PROCESSING
                if stale or IngestionStateMachine.is_retryable(src):
                    targets[src.id] = src
    finally:
        conn.close()

    busy = [s for s in targets.values() if s.status is SourceStatus.PROCESSING]
    for src in busy:
        if force:
            console.print(f"[yellow]↻ Recovering '{src.name}' from an interrupted run.[/]")
            continue
        console.print(
            f"[yellow]↷ Skipping '{src.name}' — already processing.[/] "
            "[dim]Use --force if its run was interrupted.[/]"
        )
        del targets[src.id]

    if not targets:
        console.print("[dim]No sources to reprocess.[/]")
        raise typer.Exit(0)

    _check_keys(cfg, skip)
    results = _run_sources(db, cfg, list(targets), skip, workers, recover_stale=force)
    _report(results)


# ------------------------------------------------------------------
# Registration
# ------------------------------------------------------------------


def _register_file(
    machine: IngestionStateMachine, project: str, path: Path
) -> KnowledgeSource | None:
    if not path.is_file():
        console.print(f"[red]✗ File not found:[/] {path}")
        return None
    ext = path.suffix.lower()
    size = path.stat().st_size
    if ext in _PDF_EXTS:
        meta = PdfSourceMeta(filename=path.name, size_bytes=size, page_count=pdf_page_count(path))
        return machine.create(
            project, path.name, SourceOrigin.PDF, file_path=str(path.resolve()), metadata=meta
        )
    if ext in _TEXT_EXTS:
        mime = "text/markdown" if ext in (".md", ".markdown") else "text/plain"
        meta = FileSourceMeta(filename=path.name, mime_type=mime, size_bytes=size)
        return machine.create(
            project, path.name, SourceOrigin.FILE, file_path=str(path.resolve()), metadata=meta
        )
    console.print(err_unsupported_file(str(path)))
    return None


def _check_keys(cfg: RaglineConfig, skip_context: bool) -> None:
    models = [cfg.embedding.model]
    if not skip_context:
        models.append(cfg.context.model)
    require_api_keys(console, *models)


# ------------------------------------------------------------------
# Execution
# ------------------------------------------------------------------


def _run_sources(
    db: Path,
    cfg: RaglineConfig,
    source_ids: list[str],
    skip_context: bool,
    workers: int | None,
    recover_stale: bool = False,
) -> list[KnowledgeSource]:
    pipeline = ProcessingPipeline.from_config(cfg, skip_context=skip_context)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("[dim]{task.fields[stage]}[/dim]"),
        transient=True,
        console=console,
    ) as prog:
        tasks = {
            sid: prog.add_task(f"{sid[:8]}…", total=None, stage="queued")
            for sid in source_ids
        }

        def _on_progress(source_id: str, stage: str, completed: int, total: int) -> None:
            prog.update(tasks[source_id], completed=completed, total=total, stage=stage)

        with IngestionWorker(
            db,
            pipeline,
            workers=workers or cfg.pipeline.workers,
            on_progress=_on_progress,
            recover_stale=recover_stale,
        ) as worker:
            futures = [(sid, worker.submit(sid)) for sid in source_ids]
            for sid, future in futures:
                try:
                    future.result()
                except Exception as exc:
                    # The source is already marked failed; its row is reported below.
                    console.print(f"[red]✗ {sid}:[/] unexpected error: {exc}")

    # Source rows are the record of truth, whatever the futures returned.
    conn = open_db(db)
    try:
        repo = Repository(conn)
        return [s for s in (repo.get_source(sid) for sid in source_ids) if s is not None]
    finally:
        conn.close()


def _report(results: list[KnowledgeSource]) -> None:
    any_failed = False
    for src in results:
        if src.status is SourceStatus.READY:
            console.print(f"[green]✓[/] {src.name}  [dim]{src.id}[/]  {src.chunk_count} chunks")
            continue
        any_failed = True
        console.print(f"[red]✗[/] {src.name}  [dim]{src.id}[/]  {src.error or src.status.value}")
        if IngestionStateMachine.is_retryable(src):
            console.print(hint_retry(src.id))
        elif src.status is SourceStatus.FAILED:
            console.print(hint_fix_input())
    if any_failed:
        raise typer.Exit(1)
