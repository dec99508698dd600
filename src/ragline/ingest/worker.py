"""Background ingestion: a bounded worker pool with per-source serialization.

``IngestionWorker.submit`` returns immediately with a Future; the run itself
(begin → extract → process → succeed/fail) executes on a pool thread with
its own database connection. The source row is the observable status.

Two runs for the same source never overlap: each run holds that source's
lock from the registry for its whole duration. Runs for different sources
proceed in parallel up to the pool size.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ragline.db.connection import Database
from ragline.db.models import KnowledgeSource, SourceStatus
from ragline.db.repository import Repository
from ragline.db.vectors import vec_table_for_model
from ragline.errors import EmptyContent, IngestionError, ProcessingInterrupted
from ragline.ingest.base import DocumentMetadata
from ragline.ingest.extract import extract_text
from ragline.ingest.pipeline import ProcessingPipeline
from ragline.ingest.state import IngestionStateMachine, describe_failure

logger = logging.getLogger(__name__)

SourceProgressCallback = Callable[[str, str, int, int], None]


@dataclass(frozen=True)
class DeadLetter:
    """A failed ingestion run, kept for inspection and retry."""

    source_id: str
    error_kind: str
    message: str
    retryable: bool


class SourceLockRegistry:
    """Keyed registry of per-source locks.

    An entry is inserted when the first holder claims a source id and removed
    when the last holder releases it, so the registry only ever contains
    sources with a run in flight or waiting.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, source_id: str) -> Iterator[None]:
        with self._guard:
            lock, refs = self._entries.get(source_id, (threading.Lock(), 0))
            self._entries[source_id] = (lock, refs + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                lock, refs = self._entries[source_id]
                if refs <= 1:
                    del self._entries[source_id]
                else:
                    self._entries[source_id] = (lock, refs - 1)

    def active(self) -> list[str]:
        """Source ids currently claimed (running or queued behind a run)."""
        with self._guard:
            return list(self._entries)


class IngestionWorker:
    """Run ingestion for knowledge sources on a bounded thread pool.

    Args:
        db_path:     SQLite database; each run opens its own connection.
        pipeline:    Processing pipeline shared by all runs (stateless).
        workers:     Maximum runs executing at once.
        on_progress: Optional ``(source_id, stage, completed, total)`` hook,
                     called from worker threads.
        recover_stale: Fail and re-run a source found stuck in ``processing``
                     instead of rejecting it. Only safe when no other process
                     is ingesting into the same database.
    """

    def __init__(
        self,
        db_path: Path | str,
        pipeline: ProcessingPipeline,
        workers: int = 4,
        on_progress: SourceProgressCallback | None = None,
        recover_stale: bool = False,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._db = Database(db_path)
        self._pipeline = pipeline
        self._on_progress = on_progress
        self._recover_stale = recover_stale
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ragline-ingest")
        self._locks = SourceLockRegistry()
        self._dead_letters: list[DeadLetter] = []
        self._dl_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, source_id: str) -> Future[KnowledgeSource]:
        """Queue an ingestion run for *source_id* and return its Future.

        The Future resolves to the final source row (``ready`` or
        ``failed``). Pipeline errors resolve normally with a ``failed``
        source; unexpected errors are re-raised from ``Future.result()``
        after the source has been marked ``failed``.
        """
        return self._executor.submit(self._run, source_id)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        with self._dl_guard:
            return list(self._dead_letters)

    @property
    def locks(self) -> SourceLockRegistry:
        return self._locks

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> IngestionWorker:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _run(self, source_id: str) -> KnowledgeSource:
        with self._locks.hold(source_id), self._db.session() as conn:
            return self._run_locked(conn, source_id)

    def _run_locked(self, conn, source_id: str) -> KnowledgeSource:
        repo = Repository(conn)
        machine = IngestionStateMachine(repo)
        if self._recover_stale:
            self._recover_if_stale(repo, machine, source_id)
        source = machine.begin(source_id)
        logger.info("Ingesting '%s' (%s)", source.name, source_id)

        try:
            text = self._load_text(source)
            chunks = self._pipeline.process(
                text,
                DocumentMetadata(name=source.name, type=source.origin.value),
                on_progress=self._progress_for(source_id),
            )
            embedder = self._pipeline.embedder
            dims = embedder.dimensions or len(chunks[0].embedding)
            vec_table = vec_table_for_model(conn, embedder.model, dims)
            return machine.succeed(source_id, chunks, vec_table)
        except IngestionError as exc:
            failed = machine.fail(source_id, exc)
            self._record_dead_letter(failed, exc)
            return failed
        except Exception as exc:
            failed = machine.fail(source_id, exc)
            self._record_dead_letter(failed, exc)
            raise

    def _recover_if_stale(
        self, repo: Repository, machine: IngestionStateMachine, source_id: str
    ) -> None:
        # Caller holds the source lock, so no run in this process owns it.
        source = repo.get_source(source_id)
        if source is None or source.status is not SourceStatus.PROCESSING:
            return
        failed = machine.recover_interrupted(source_id)
        self._record_dead_letter(failed, ProcessingInterrupted())

    @staticmethod
    def _load_text(source: KnowledgeSource) -> str:
        if source.content is not None:
            return source.content
        if source.file_path:
            return extract_text(source.file_path, source.origin)
        raise EmptyContent()

    def _progress_for(self, source_id: str):
        if self._on_progress is None:
            return None
        hook = self._on_progress

        def report(stage: str, completed: int, total: int) -> None:
            hook(source_id, stage, completed, total)

        return report

    def _record_dead_letter(self, source: KnowledgeSource, exc: BaseException) -> None:
        message, kind = describe_failure(exc)
        letter = DeadLetter(
            source_id=source.id,
            error_kind=kind,
            message=message,
            retryable=IngestionStateMachine.is_retryable(source),
        )
        with self._dl_guard:
            self._dead_letters.append(letter)
        logger.error(
            "Ingestion of '%s' (%s) failed [%s%s]: %s",
            source.name,
            source.id,
            kind,
            ", retryable" if letter.retryable else "",
            message,
            exc_info=not isinstance(exc, IngestionError),
        )
