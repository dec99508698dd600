"""ragline ingest pipeline: normalizer, chunker, annotator, embeddings, lifecycle."""

from ragline.ingest.annotator import ContextAnnotator
from ragline.ingest.base import BaseChunker, DocumentMetadata, Segment
from ragline.ingest.chunker import SemanticChunker
from ragline.ingest.embedding import EmbeddingClient, cosine_similarity
from ragline.ingest.extract import extract_text
from ragline.ingest.normalizer import TextNormalizer
from ragline.ingest.pipeline import ProcessedChunk, ProcessingPipeline
from ragline.ingest.state import IngestionStateMachine
from ragline.ingest.worker import DeadLetter, IngestionWorker, SourceLockRegistry

__all__ = [
    "BaseChunker",
    "ContextAnnotator",
    "DeadLetter",
    "DocumentMetadata",
    "EmbeddingClient",
    "IngestionStateMachine",
    "IngestionWorker",
    "ProcessedChunk",
    "ProcessingPipeline",
    "Segment",
    "SemanticChunker",
    "SourceLockRegistry",
    "TextNormalizer",
    "cosine_similarity",
    "extract_text",
]
