"""Error taxonomy for the ingestion pipeline and clustering engine.

Ingestion errors carry an ``error_kind`` (stored on the failed source) and a
``retryable`` flag so callers can decide whether re-submitting the same input
is worthwhile:

    ===================== =============== =========
    Error                 error_kind      retryable
    ===================== =============== =========
    EmptyContent          empty_content   no
    ExtractionFailure     extraction      no
    NoChunksProduced      internal        no
    ProcessingInterrupted internal        no
    EmbeddingFailure      provider        yes
    ===================== =============== =========

``AnnotationFailure`` never reaches a source record; the annotator logs it and
degrades to an empty context. ``DimensionMismatch`` is a programmer / provider
version error; the ingestion pipeline lets it propagate, while question
clustering falls back to frequency counts like on any other provider error.
"""

from __future__ import annotations

KIND_EMPTY_CONTENT = "empty_content"
KIND_EXTRACTION = "extraction"
KIND_PROVIDER = "provider"
KIND_INTERNAL = "internal"

ERROR_KINDS: frozenset[str] = frozenset(
    [KIND_EMPTY_CONTENT, KIND_EXTRACTION, KIND_PROVIDER, KIND_INTERNAL]
)


class RaglineError(Exception):
    """Base class for all ragline errors."""


class IngestionError(RaglineError):
    """A pipeline failure that ends a run and is recorded on the source."""

    error_kind: str = KIND_INTERNAL
    retryable: bool = False


class EmptyContent(IngestionError):
    """Nothing usable remains after normalization."""

    error_kind = KIND_EMPTY_CONTENT

    def __init__(self, message: str = "Content is empty") -> None:
        super().__init__(message)


class ExtractionFailure(IngestionError):
    """Text could not be extracted from the uploaded document."""

    error_kind = KIND_EXTRACTION


class NoChunksProduced(IngestionError):
    """Chunker returned zero segments for non-empty text (a bug, not user error)."""

    def __init__(self, message: str = "No valid chunks generated from content") -> None:
        super().__init__(message)


class ProcessingInterrupted(IngestionError):
    """A run left its source in ``processing`` and never finished."""

    def __init__(self, message: str = "Processing interrupted") -> None:
        super().__init__(message)


class EmbeddingFailure(IngestionError):
    """The embedding provider failed; transient, safe to retry."""

    error_kind = KIND_PROVIDER
    retryable = True


class AnnotationFailure(RaglineError):
    """The completion provider failed for a single segment's context."""


class DimensionMismatch(RaglineError, ValueError):
    """Two vectors (or a vector and the configured size) differ in length."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Vector dimensions differ: {left} != {right}")
        self.left = left
        self.right = right


class IllegalTransition(RaglineError):
    """A knowledge source was asked to move between incompatible states."""

    def __init__(self, source_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Source '{source_id}' cannot move from '{current}' to '{target}'"
        )
        self.source_id = source_id
        self.current = current
        self.target = target


def is_retryable_kind(error_kind: str | None) -> bool:
    """Return True if a failure of *error_kind* may succeed on a plain retry."""
    return error_kind == KIND_PROVIDER
