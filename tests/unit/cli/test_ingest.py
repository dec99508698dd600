"""Tests for the ragline ingest / reprocess commands."""

from __future__ import annotations

from unittest.mock import patch

from typer.testing import CliRunner

from ragline.cli.main import app
from ragline.db.connection import Database
from ragline.db.models import (
    FileSourceMeta,
    KnowledgeSource,
    SourceOrigin,
    SourceStatus,
)
from ragline.db.repository import Repository

runner = CliRunner()


def _sources(db_path) -> list[KnowledgeSource]:
    conn = Database(db_path).connect()
    try:
        return Repository(conn).list_sources()
    finally:
        conn.close()


def _chunks(db_path, source_id):
    conn = Database(db_path).connect()
    try:
        return Repository(conn).list_chunks_by_source(source_id)
    finally:
        conn.close()


# ------------------------------------------------------------------
# Input validation
# ------------------------------------------------------------------


def test_ingest_exits_without_input(db_path):
    result = runner.invoke(app, ["ingest", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Nothing to ingest" in result.output


def test_ingest_requires_api_key(db_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = runner.invoke(app, ["ingest", "--text", "hello", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output
    assert not db_path.exists()


def test_ingest_missing_file(db_path, provider):
    result = runner.invoke(
        app, ["ingest", "--file", "nope.txt", "--db", str(db_path), "--skip-context"]
    )
    assert result.exit_code == 1
    assert "File not found" in result.output
    assert "No sources to ingest" in result.output


def test_ingest_unsupported_file(db_path, provider, workdir):
    doc = workdir / "report.docx"
    doc.write_bytes(b"PK\x03\x04")
    result = runner.invoke(
        app, ["ingest", "--file", str(doc), "--db", str(db_path), "--skip-context"]
    )
    assert result.exit_code == 1
    assert "Unsupported file type" in result.output


# ------------------------------------------------------------------
# Successful runs
# ------------------------------------------------------------------


def test_ingest_text_skip_context(db_path, provider):
    _, completion = provider
    result = runner.invoke(
        app,
        [
            "ingest",
            "--text", "Refunds are issued within 14 days. Contact support for help.",
            "--name", "refund-policy",
            "--project", "acme",
            "--db", str(db_path),
            "--skip-context",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "✓" in result.output
    [src] = _sources(db_path)
    assert src.status == SourceStatus.READY
    assert src.project_id == "acme"
    assert src.name == "refund-policy"
    assert src.chunk_count == 1
    [chunk] = _chunks(db_path, src.id)
    assert chunk.context == "From refund-policy (text)."
    completion.assert_not_called()


def test_ingest_text_generates_context(db_path, provider):
    _, completion = provider
    result = runner.invoke(
        app, ["ingest", "--text", "We ship worldwide.", "--db", str(db_path)]
    )

    assert result.exit_code == 0, result.output
    [src] = _sources(db_path)
    assert src.name == "Pasted text"
    assert _chunks(db_path, src.id)[0].context == "Generated context."
    assert completion.called


def test_ingest_markdown_file(db_path, provider, workdir):
    doc = workdir / "faq.md"
    doc.write_text("# FAQ\n\nDo you ship abroad? Yes, to 30 countries.", encoding="utf-8")

    result = runner.invoke(
        app, ["ingest", "--file", str(doc), "--db", str(db_path), "--skip-context"]
    )

    assert result.exit_code == 0, result.output
    [src] = _sources(db_path)
    assert src.origin == SourceOrigin.FILE
    assert src.metadata == FileSourceMeta(
        filename="faq.md", mime_type="text/markdown", size_bytes=doc.stat().st_size
    )
    assert src.status == SourceStatus.READY


def test_ingest_multiple_files(db_path, provider, workdir):
    paths = []
    for i in range(3):
        p = workdir / f"doc{i}.txt"
        p.write_text(f"Document number {i}. It has two sentences.", encoding="utf-8")
        paths += ["--file", str(p)]

    result = runner.invoke(
        app, ["ingest", *paths, "--db", str(db_path), "--skip-context", "--workers", "2"]
    )

    assert result.exit_code == 0, result.output
    sources = _sources(db_path)
    assert len(sources) == 3
    assert all(s.status == SourceStatus.READY for s in sources)


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


def test_ingest_blank_text_fails(db_path, provider):
    result = runner.invoke(
        app, ["ingest", "--text", "   ", "--db", str(db_path), "--skip-context"]
    )

    assert result.exit_code == 1
    assert "Content is empty" in result.output
    assert "Retrying will not help" in result.output
    [src] = _sources(db_path)
    assert src.status == SourceStatus.FAILED
    assert src.error_kind == "empty_content"


def test_ingest_provider_failure_suggests_retry(db_path, provider):
    with patch(
        "ragline.rag.llm_client.litellm.embedding", side_effect=RuntimeError("503")
    ):
        result = runner.invoke(
            app, ["ingest", "--text", "Some text.", "--db", str(db_path), "--skip-context"]
        )

    assert result.exit_code == 1
    [src] = _sources(db_path)
    assert src.status == SourceStatus.FAILED
    assert src.error_kind == "provider"
    assert "ragline reprocess --source" in result.output


# ------------------------------------------------------------------
# reprocess
# ------------------------------------------------------------------


def test_reprocess_without_db(db_path):
    result = runner.invoke(app, ["reprocess", "--failed", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "No database found" in result.output


def test_reprocess_requires_target(db_path, init_db):
    result = runner.invoke(app, ["reprocess", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Nothing to reprocess" in result.output


def test_reprocess_failed_sources(db_path, provider):
    with patch(
        "ragline.rag.llm_client.litellm.embedding", side_effect=RuntimeError("503")
    ):
        runner.invoke(
            app, ["ingest", "--text", "Some text.", "--db", str(db_path), "--skip-context"]
        )
    runner.invoke(app, ["ingest", "--text", " ", "--db", str(db_path), "--skip-context"])

    result = runner.invoke(
        app, ["reprocess", "--failed", "--db", str(db_path), "--skip-context"]
    )

    assert result.exit_code == 0, result.output
    by_status = {s.status for s in _sources(db_path)}
    # The provider failure is retried; the empty one is not retryable.
    assert by_status == {SourceStatus.READY, SourceStatus.FAILED}


def test_reprocess_by_source_id_replaces_chunks(db_path, provider):
    runner.invoke(
        app, ["ingest", "--text", "First. Second.", "--db", str(db_path), "--skip-context"]
    )
    [src] = _sources(db_path)
    before = _chunks(db_path, src.id)

    result = runner.invoke(
        app, ["reprocess", "--source", src.id, "--db", str(db_path), "--skip-context"]
    )

    assert result.exit_code == 0, result.output
    after = _chunks(db_path, src.id)
    assert [c.content for c in after] == [c.content for c in before]
    assert _sources(db_path)[0].status == SourceStatus.READY


def test_reprocess_skips_processing_source(db_path, init_db):
    repo = init_db
    repo.add_source(
        KnowledgeSource(id="busy", project_id="default", name="busy", origin=SourceOrigin.TEXT, content="x")
    )
    repo.update_status("busy", SourceStatus.PROCESSING)

    result = runner.invoke(app, ["reprocess", "--source", "busy", "--db", str(db_path)])

    assert result.exit_code == 0
    assert "already processing" in result.output
    assert "--force" in result.output
    assert "No sources to reprocess" in result.output


def test_reprocess_force_recovers_interrupted_source(db_path, init_db, provider):
    repo = init_db
    repo.add_source(
        KnowledgeSource(
            id="stuck", project_id="default", name="stuck", origin=SourceOrigin.TEXT,
            content="Refunds take 14 days.",
        )
    )
    repo.update_status("stuck", SourceStatus.PROCESSING)

    result = runner.invoke(
        app,
        ["reprocess", "--source", "stuck", "--force", "--db", str(db_path), "--skip-context"],
    )

    assert result.exit_code == 0, result.output
    assert "Recovering" in result.output
    [src] = _sources(db_path)
    assert src.status == SourceStatus.READY
    assert len(_chunks(db_path, "stuck")) == 1


def test_reprocess_failed_force_includes_stuck_sources(db_path, init_db, provider):
    repo = init_db
    repo.add_source(
        KnowledgeSource(
            id="stuck", project_id="default", name="stuck", origin=SourceOrigin.TEXT,
            content="Shipping is free.",
        )
    )
    repo.update_status("stuck", SourceStatus.PROCESSING)

    result = runner.invoke(
        app, ["reprocess", "--failed", "--force", "--db", str(db_path), "--skip-context"]
    )

    assert result.exit_code == 0, result.output
    assert _sources(db_path)[0].status == SourceStatus.READY


def test_reprocess_unknown_source(db_path, init_db):
    result = runner.invoke(app, ["reprocess", "--source", "ghost", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Source not found" in result.output
