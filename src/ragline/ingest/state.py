"""Knowledge source lifecycle: pending → processing → ready | failed.

Every transition is a single repository transaction, so readers only ever
see a source with the chunk set that matches its status:

- ``begin`` wipes the previous run's chunks in the same commit that flips the
  source to ``processing``; stale and fresh chunks never coexist.
- ``succeed`` inserts every chunk, FTS row and embedding in the same commit
  that sets ``ready`` and ``chunk_count``.
- ``fail`` drops whatever chunks exist in the same commit that records the
  error, so a ``failed`` source never carries chunks.
- ``recover_interrupted`` is ``fail`` for a run that died without reporting
  back, leaving its source stuck in ``processing``.
"""

from __future__ import annotations

import logging
import uuid

from ragline.db.models import (
    ChunkMeta,
    KnowledgeSource,
    SourceMeta,
    SourceOrigin,
    SourceStatus,
    StoredChunk,
    default_meta_for,
)
from ragline.db.repository import Repository
from ragline.errors import (
    KIND_INTERNAL,
    IllegalTransition,
    IngestionError,
    ProcessingInterrupted,
    is_retryable_kind,
)
from ragline.ingest.pipeline import ProcessedChunk

logger = logging.getLogger(__name__)

_ALLOWED: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.PENDING: frozenset([SourceStatus.PROCESSING]),
    SourceStatus.PROCESSING: frozenset([SourceStatus.READY, SourceStatus.FAILED]),
    SourceStatus.READY: frozenset([SourceStatus.PROCESSING]),
    SourceStatus.FAILED: frozenset([SourceStatus.PROCESSING]),
}


def can_transition(current: SourceStatus, target: SourceStatus) -> bool:
    return target in _ALLOWED[current]


def describe_failure(exc: BaseException) -> tuple[str, str]:
    """Return ``(error_message, error_kind)`` to record for *exc*.

    Pipeline errors keep their own message; anything else is an internal
    error and only its type name is recorded.
    """
    if isinstance(exc, IngestionError):
        return str(exc) or type(exc).__name__, exc.error_kind
    return f"Processing failed: {type(exc).__name__}", KIND_INTERNAL


class IngestionStateMachine:
    """Drive knowledge sources through their lifecycle on a Repository."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def create(
        self,
        project_id: str,
        name: str,
        origin: SourceOrigin,
        content: str | None = None,
        file_path: str | None = None,
        metadata: SourceMeta | None = None,
    ) -> KnowledgeSource:
        """Register a new source in ``pending`` and return it."""
        source = KnowledgeSource(
            id=str(uuid.uuid4()),
            project_id=project_id,
            name=name,
            origin=origin,
            content=content,
            file_path=file_path,
            metadata=metadata or default_meta_for(origin),
        )
        self._repo.add_source(source)
        logger.debug("Created source %s (%s) in project %s", source.id, origin.value, project_id)
        return self._get(source.id)

    def begin(self, source_id: str) -> KnowledgeSource:
        """Move to ``processing`` and clear the previous run's chunks atomically."""
        source = self._get(source_id)
        self._check(source, SourceStatus.PROCESSING)
        with self._repo.transaction():
            removed = self._repo.delete_chunks_by_source(source_id)
            self._repo.update_status(source_id, SourceStatus.PROCESSING)
        if removed:
            logger.info("Source %s: cleared %d chunk(s) from the previous run", source_id, removed)
        return self._get(source_id)

    def succeed(
        self, source_id: str, chunks: list[ProcessedChunk], vec_table: str
    ) -> KnowledgeSource:
        """Persist *chunks* and move to ``ready`` in one transaction."""
        source = self._get(source_id)
        self._check(source, SourceStatus.READY)
        with self._repo.transaction():
            for chunk in chunks:
                meta = ChunkMeta(
                    ordinal=chunk.ordinal,
                    token_estimate=chunk.token_estimate,
                    start_char=chunk.start_char,
                    end_char=chunk.end_char,
                )
                rowid = self._repo.add_chunk(
                    StoredChunk(
                        source_id=source_id,
                        chunk_index=chunk.ordinal,
                        content=chunk.content,
                        context=chunk.context,
                        token_estimate=chunk.token_estimate,
                        metadata=meta.dumps(),
                    )
                )
                self._repo.add_embedding(vec_table, rowid, chunk.embedding)
            self._repo.update_status(source_id, SourceStatus.READY, chunk_count=len(chunks))
        logger.info("Source %s ready with %d chunk(s)", source_id, len(chunks))
        return self._get(source_id)

    def fail(self, source_id: str, exc: BaseException) -> KnowledgeSource:
        """Record *exc* on the source, drop any chunks and move to ``failed``."""
        source = self._get(source_id)
        self._check(source, SourceStatus.FAILED)
        message, kind = describe_failure(exc)
        with self._repo.transaction():
            self._repo.delete_chunks_by_source(source_id)
            self._repo.update_status(
                source_id, SourceStatus.FAILED, error=message, error_kind=kind
            )
        logger.warning("Source %s failed (%s): %s", source_id, kind, message)
        return self._get(source_id)

    def recover_interrupted(self, source_id: str) -> KnowledgeSource:
        """Fail a source whose run died while it was ``processing``.

        A crashed or killed run never reaches ``succeed`` or ``fail``, and
        ``begin`` refuses a source that is already ``processing``. This moves
        it to ``failed`` (kind ``internal``) so it can be re-run. Callers must
        make sure no live run still owns the source.

        Raises:
            IllegalTransition: If the source is not ``processing``.
        """
        source = self._get(source_id)
        if source.status is not SourceStatus.PROCESSING:
            raise IllegalTransition(source_id, source.status.value, SourceStatus.FAILED.value)
        return self.fail(source_id, ProcessingInterrupted())

    @staticmethod
    def is_retryable(source: KnowledgeSource) -> bool:
        """True if *source* failed for a transient (provider) reason."""
        return source.status is SourceStatus.FAILED and is_retryable_kind(source.error_kind)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, source_id: str) -> KnowledgeSource:
        source = self._repo.get_source(source_id)
        if source is None:
            raise KeyError(f"Source '{source_id}' not found")
        return source

    @staticmethod
    def _check(source: KnowledgeSource, target: SourceStatus) -> None:
        if not can_transition(source.status, target):
            raise IllegalTransition(source.id, source.status.value, target.value)
