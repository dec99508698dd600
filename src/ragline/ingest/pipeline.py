"""Processing pipeline: normalize → chunk → annotate → embed.

The pipeline is a pure transformation from raw text to an ordered list of
:class:`ProcessedChunk` records. It never touches the database; persisting the
result and moving the source through its lifecycle is the caller's job (see
:mod:`ragline.ingest.state` and :mod:`ragline.ingest.worker`).

Stages run strictly in order and are reported through ``on_progress(stage,
completed, total)``. Annotation fans out over a bounded thread pool, and
embedding starts only once every chunk of the run has its context, so no
chunk is ever embedded before it is annotated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from ragline.config import RaglineConfig
from ragline.errors import NoChunksProduced
from ragline.ingest.annotator import ContextAnnotator
from ragline.ingest.base import BaseChunker, DocumentMetadata, Segment
from ragline.ingest.chunker import SemanticChunker
from ragline.ingest.embedding import EmbeddingClient
from ragline.ingest.normalizer import TextNormalizer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]

STAGE_NORMALIZE = "normalize"
STAGE_CHUNK = "chunk"
STAGE_ANNOTATE = "annotate"
STAGE_EMBED = "embed"
STAGES = (STAGE_NORMALIZE, STAGE_CHUNK, STAGE_ANNOTATE, STAGE_EMBED)


@dataclass
class ProcessedChunk:
    """One pipeline output unit, not yet persisted.

    Attributes:
        ordinal:        0-based position; contiguous within a run.
        content:        Verbatim slice of the normalized text.
        context:        Situating sentence(s); ``""`` if annotation failed.
        embedding:      Vector of :attr:`embedding_text`.
        token_estimate: Approximate token count of ``content``.
        start_char:     Offset of ``content`` in the normalized text.
        end_char:       Offset one past the end of ``content``.
    """

    ordinal: int
    content: str
    context: str = ""
    embedding: list[float] = field(default_factory=list)
    token_estimate: int = 0
    start_char: int = 0
    end_char: int = 0

    @property
    def embedding_text(self) -> str:
        if self.context.strip():
            return f"{self.context}\n{self.content}"
        return self.content


class ProcessingPipeline:
    """Turn raw text into annotated, embedded chunks.

    Args:
        embedder:     Embedding client (shared with question clustering).
        annotator:    Context annotator; required unless ``skip_context``.
        chunker:      Segmenter; defaults to a 256-token SemanticChunker.
        normalizer:   Text normalizer; defaults to TextNormalizer().
        concurrency:  Provider calls in flight at once, per stage.
        skip_context: Use a fixed ``From {name} ({type}).`` context instead
                      of calling the completion model.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        annotator: ContextAnnotator | None = None,
        chunker: BaseChunker | None = None,
        normalizer: TextNormalizer | None = None,
        concurrency: int = 5,
        skip_context: bool = False,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if annotator is None and not skip_context:
            raise ValueError("an annotator is required unless skip_context=True")
        self.embedder = embedder
        self.annotator = annotator
        self.chunker = chunker or SemanticChunker()
        self.normalizer = normalizer or TextNormalizer()
        self.concurrency = concurrency
        self.skip_context = skip_context

    @classmethod
    def from_config(cls, cfg: RaglineConfig, *, skip_context: bool | None = None) -> ProcessingPipeline:
        """Build a pipeline wired to the models and sizes in *cfg*."""
        skip = cfg.pipeline.skip_context if skip_context is None else skip_context
        embedder = EmbeddingClient(
            model=cfg.embedding.model,
            dimensions=cfg.embedding.dimensions,
            batch_size=cfg.embedding.batch_size,
            max_workers=cfg.pipeline.concurrency,
        )
        annotator = ContextAnnotator(
            model=cfg.context.model,
            window=cfg.context.window,
            max_tokens=cfg.context.max_tokens,
            temperature=cfg.context.temperature,
            timeout=cfg.context.timeout,
        )
        return cls(
            embedder=embedder,
            annotator=annotator,
            chunker=SemanticChunker(chunk_size=cfg.chunking.chunk_size),
            concurrency=cfg.pipeline.concurrency,
            skip_context=skip,
        )

    def process(
        self,
        raw_text: str,
        metadata: DocumentMetadata,
        on_progress: ProgressCallback | None = None,
    ) -> list[ProcessedChunk]:
        """Run every stage on *raw_text* and return chunks in ordinal order.

        Raises:
            EmptyContent: Nothing usable remains after normalization.
            NoChunksProduced: The chunker returned no segments.
            EmbeddingFailure: The embedding provider failed.
        """
        report = on_progress or _no_progress

        report(STAGE_NORMALIZE, 0, 1)
        text = self.normalizer.normalize(raw_text)
        report(STAGE_NORMALIZE, 1, 1)

        report(STAGE_CHUNK, 0, 1)
        segments = self.chunker.chunk(text)
        if not segments:
            raise NoChunksProduced()
        report(STAGE_CHUNK, 1, 1)
        logger.debug("'%s': %d segment(s) from %d chars", metadata.name, len(segments), len(text))

        contexts = self._annotate_all(metadata, segments, report)
        chunks = [
            ProcessedChunk(
                ordinal=i,
                content=seg.text,
                context=contexts[i],
                token_estimate=seg.token_estimate,
                start_char=seg.start,
                end_char=seg.end,
            )
            for i, seg in enumerate(segments)
        ]
        self._embed_all(chunks, report)

        logger.info("Processed '%s' into %d chunk(s)", metadata.name, len(chunks))
        return chunks

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _annotate_all(
        self,
        metadata: DocumentMetadata,
        segments: list[Segment],
        report: ProgressCallback,
    ) -> list[str]:
        total = len(segments)
        report(STAGE_ANNOTATE, 0, total)

        if self.skip_context:
            fixed = f"From {metadata.name} ({metadata.type})."
            report(STAGE_ANNOTATE, total, total)
            return [fixed] * total

        annotator = self.annotator
        if annotator is None:
            raise ValueError("an annotator is required unless skip_context=True")
        contexts = [""] * total
        with ThreadPoolExecutor(max_workers=min(self.concurrency, total)) as pool:
            futures = {
                pool.submit(annotator.annotate, metadata, segments, i): i
                for i in range(total)
            }
            for done, future in enumerate(as_completed(futures), start=1):
                contexts[futures[future]] = future.result()
                report(STAGE_ANNOTATE, done, total)
        return contexts

    def _embed_all(self, chunks: list[ProcessedChunk], report: ProgressCallback) -> None:
        total = len(chunks)
        report(STAGE_EMBED, 0, total)

        size = self.embedder.batch_size
        batches = [chunks[i:i + size] for i in range(0, total, size)]
        completed = 0
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(batches))) as pool:
            futures = {
                pool.submit(self.embedder.embed_batch, [c.embedding_text for c in batch]): batch
                for batch in batches
            }
            try:
                for future in as_completed(futures):
                    batch = futures[future]
                    for chunk, vector in zip(batch, future.result()):
                        chunk.embedding = vector
                    completed += len(batch)
                    report(STAGE_EMBED, completed, total)
            except BaseException:
                for f in futures:
                    f.cancel()
                raise


def _no_progress(stage: str, completed: int, total: int) -> None:
    pass
