"""Tests for the background IngestionWorker and SourceLockRegistry."""

from __future__ import annotations

import threading
import time

import pytest

from ragline.db.models import SourceOrigin, SourceStatus
from ragline.errors import EmbeddingFailure, IllegalTransition
from ragline.ingest.pipeline import ProcessingPipeline
from ragline.ingest.state import IngestionStateMachine
from ragline.ingest.worker import IngestionWorker, SourceLockRegistry


class FakeEmbedder:
    model = "fake/embed"
    dimensions = 3
    batch_size = 8

    def __init__(self, delay=0.0, error=None):
        self.delay = delay
        self.error = error
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def embed_batch(self, texts):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return [[1.0, 0.0, float(len(t))] for t in texts]
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def db_path(tmp_db, tmp_path):
    return tmp_path / ".ragline.db"


@pytest.fixture
def machine(repo):
    return IngestionStateMachine(repo)


def _worker(db_path, embedder, **kwargs):
    pipeline = ProcessingPipeline(embedder=embedder, skip_context=True)
    return IngestionWorker(db_path, pipeline, **kwargs)


# ------------------------------------------------------------------
# Runs
# ------------------------------------------------------------------

def test_text_source_becomes_ready(db_path, machine, repo):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="Refunds take 14 days. Call us.")
    with _worker(db_path, FakeEmbedder()) as worker:
        result = worker.submit(src.id).result(timeout=10)

    assert result.status == SourceStatus.READY
    assert result.chunk_count == 1
    stored = repo.list_chunks_by_source(src.id)
    assert stored[0].context == "From notes (text)."
    n_vec = repo.conn.execute("SELECT COUNT(*) FROM vec_chunks_fake_embed").fetchone()[0]
    assert n_vec == 1
    assert worker.dead_letters == []


def test_file_source_read_from_disk(db_path, machine, tmp_path):
    path = tmp_path / "faq.md"
    path.write_text("Q: Do you ship abroad?\n\nA: Yes, to 30 countries.", encoding="utf-8")
    src = machine.create("acme", "faq.md", SourceOrigin.FILE, file_path=str(path))
    with _worker(db_path, FakeEmbedder()) as worker:
        result = worker.submit(src.id).result(timeout=10)
    assert result.status == SourceStatus.READY


def test_empty_content_fails_without_raising(db_path, machine, repo):
    src = machine.create("acme", "blank", SourceOrigin.TEXT, content="   \n  ")
    with _worker(db_path, FakeEmbedder()) as worker:
        result = worker.submit(src.id).result(timeout=10)

    assert result.status == SourceStatus.FAILED
    assert result.error_kind == "empty_content"
    assert repo.count_chunks_by_source(src.id) == 0
    [letter] = worker.dead_letters
    assert letter.source_id == src.id
    assert letter.error_kind == "empty_content"
    assert letter.retryable is False


def test_missing_file_is_extraction_failure(db_path, machine, tmp_path):
    src = machine.create(
        "acme", "gone.pdf", SourceOrigin.PDF, file_path=str(tmp_path / "gone.pdf")
    )
    with _worker(db_path, FakeEmbedder()) as worker:
        result = worker.submit(src.id).result(timeout=10)
    assert result.status == SourceStatus.FAILED
    assert result.error_kind == "extraction"
    assert "Could not read" in result.error


def test_provider_failure_is_retryable(db_path, machine):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="Some text.")
    embedder = FakeEmbedder(error=EmbeddingFailure("Embedding provider error: 429"))
    with _worker(db_path, embedder) as worker:
        result = worker.submit(src.id).result(timeout=10)

    assert result.status == SourceStatus.FAILED
    assert result.error == "Embedding provider error: 429"
    assert worker.dead_letters[0].retryable is True


def test_unexpected_error_marks_failed_and_reraises(db_path, machine, repo):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="Some text.")
    with _worker(db_path, FakeEmbedder(error=ZeroDivisionError("bug"))) as worker:
        future = worker.submit(src.id)
        with pytest.raises(ZeroDivisionError):
            future.result(timeout=10)

    failed = repo.get_source(src.id)
    assert failed.status == SourceStatus.FAILED
    assert failed.error == "Processing failed: ZeroDivisionError"
    assert failed.error_kind == "internal"
    assert worker.dead_letters[0].error_kind == "internal"


def test_stuck_processing_source_rejected_by_default(db_path, machine, repo):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="Some text.")
    machine.begin(src.id)  # previous run was killed after begin

    with _worker(db_path, FakeEmbedder()) as worker:
        future = worker.submit(src.id)
        with pytest.raises(IllegalTransition):
            future.result(timeout=10)

    assert repo.get_source(src.id).status == SourceStatus.PROCESSING


def test_recover_stale_reruns_interrupted_source(db_path, machine, repo):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="Refunds take 14 days.")
    machine.begin(src.id)

    with _worker(db_path, FakeEmbedder(), recover_stale=True) as worker:
        result = worker.submit(src.id).result(timeout=10)

    assert result.status == SourceStatus.READY
    assert result.chunk_count == 1
    [letter] = worker.dead_letters
    assert letter.source_id == src.id
    assert letter.error_kind == "internal"
    assert letter.message == "Processing interrupted"


def test_recover_stale_leaves_healthy_sources_alone(db_path, machine):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="Refunds take 14 days.")
    with _worker(db_path, FakeEmbedder(), recover_stale=True) as worker:
        result = worker.submit(src.id).result(timeout=10)
    assert result.status == SourceStatus.READY
    assert worker.dead_letters == []


def test_retry_after_failure_succeeds(db_path, machine, repo):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="Some text.")
    with _worker(db_path, FakeEmbedder(error=EmbeddingFailure("down"))) as worker:
        worker.submit(src.id).result(timeout=10)
    with _worker(db_path, FakeEmbedder()) as worker:
        result = worker.submit(src.id).result(timeout=10)

    assert result.status == SourceStatus.READY
    assert result.error is None
    assert repo.get_source(src.id).error_kind is None


def test_same_source_runs_never_overlap(db_path, machine, repo):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="Some text. More text.")
    embedder = FakeEmbedder(delay=0.1)
    with _worker(db_path, embedder, workers=4) as worker:
        futures = [worker.submit(src.id) for _ in range(3)]
        results = [f.result(timeout=30) for f in futures]

    assert embedder.max_active == 1
    assert all(r.status == SourceStatus.READY for r in results)
    assert repo.count_chunks_by_source(src.id) == results[-1].chunk_count
    assert worker.locks.active() == []


def test_progress_hook_receives_source_id(db_path, machine):
    src = machine.create("acme", "notes", SourceOrigin.TEXT, content="One. Two. Three.")
    seen = []
    with _worker(db_path, FakeEmbedder(), on_progress=lambda *a: seen.append(a)) as worker:
        worker.submit(src.id).result(timeout=10)

    assert {a[0] for a in seen} == {src.id}
    assert "embed" in {a[1] for a in seen}


def test_workers_must_be_positive(db_path):
    with pytest.raises(ValueError):
        _worker(db_path, FakeEmbedder(), workers=0)


# ------------------------------------------------------------------
# SourceLockRegistry
# ------------------------------------------------------------------

def test_lock_registry_entry_removed_after_release():
    registry = SourceLockRegistry()
    with registry.hold("a"):
        assert registry.active() == ["a"]
    assert registry.active() == []


def test_lock_registry_serializes_same_key():
    registry = SourceLockRegistry()
    order: list[str] = []

    def second():
        with registry.hold("a"):
            order.append("second")

    with registry.hold("a"):
        t = threading.Thread(target=second)
        t.start()
        time.sleep(0.1)
        order.append("first")
    t.join(timeout=5)

    assert order == ["first", "second"]
    assert registry.active() == []


def test_lock_registry_independent_keys():
    registry = SourceLockRegistry()
    with registry.hold("a"):
        with registry.hold("b"):
            assert sorted(registry.active()) == ["a", "b"]
