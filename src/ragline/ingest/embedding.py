"""Embedding client shared by the ingestion pipeline and question clustering."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from ragline.errors import DimensionMismatch, EmbeddingFailure
from ragline.rag import llm_client

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = "openai/text-embedding-3-small"


class EmbeddingClient:
    """Map text to fixed-length vectors through the configured provider.

    Args:
        model:       LiteLLM embedding model string.
        dimensions:  Expected vector length; a provider answer of any other
                     length raises :class:`DimensionMismatch`. ``None`` skips
                     the check.
        batch_size:  Inputs per provider request.
        max_workers: Batches in flight at the same time.
    """

    def __init__(
        self,
        model: str = _DEFAULT_MODEL,
        dimensions: int | None = 1536,
        batch_size: int = 20,
        max_workers: int = 5,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.max_workers = max_workers

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per input in input order.

        Raises:
            EmbeddingFailure: If any provider request fails.
            DimensionMismatch: If the provider answers with the wrong length.
        """
        texts = list(texts)
        if not texts:
            return []

        batches = [texts[i:i + self.batch_size] for i in range(0, len(texts), self.batch_size)]
        if len(batches) == 1 or self.max_workers == 1:
            results = [self._embed_one_batch(b) for b in batches]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batches))) as pool:
                results = list(pool.map(self._embed_one_batch, batches))

        vectors = [vec for batch in results for vec in batch]
        logger.debug("Embedded %d text(s) in %d batch(es) with %s", len(vectors), len(batches), self.model)
        return vectors

    def _embed_one_batch(self, batch: list[str]) -> list[list[float]]:
        try:
            vectors = llm_client.embed_batch(self.model, batch)
        except Exception as exc:
            raise EmbeddingFailure(f"Embedding provider error: {exc}") from exc

        if len(vectors) != len(batch):
            raise EmbeddingFailure(
                f"Embedding provider returned {len(vectors)} vectors for {len(batch)} inputs"
            )
        if self.dimensions is not None:
            for vec in vectors:
                if len(vec) != self.dimensions:
                    raise DimensionMismatch(len(vec), self.dimensions)
        return vectors

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product of *a* and *b* over the product of their L2 norms.

    Returns 0.0 when either vector is all zeros.

    Raises:
        DimensionMismatch: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    sim = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Floating point can land a hair outside [-1, 1] for parallel vectors.
    return max(-1.0, min(1.0, sim))
