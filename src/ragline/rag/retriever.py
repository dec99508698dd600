"""Hybrid retriever: FTS5 (BM25) + dense (sqlite-vec), fused via weighted RRF.

Both channels are scoped to one project and only see ``ready`` sources.

Weighted Reciprocal Rank Fusion:
  score(d) = w / (k + rank_dense) + (1 - w) / (k + rank_fts)   k = 60

Fused scores are divided by the best score so they land in [0, 1]; chunks
below ``threshold`` are dropped and the top ``top_k`` returned, trimmed to a
total of ``max_content_length`` characters.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace

from ragline.config import RetrievalCfg
from ragline.db.models import StoredChunk
from ragline.db.repository import Repository
from ragline.db.vectors import model_to_slug, vec_table_exists, vec_table_name
from ragline.ingest.embedding import EmbeddingClient

logger = logging.getLogger(__name__)

# A partial last chunk is only worth returning if this much room is left.
_MIN_PARTIAL_CHARS = 200


@dataclass
class ScoredChunk:
    """A retrieved chunk with its fused score and per-channel ranks.

    Attributes:
        chunk: The stored chunk (content may be truncated, see retrieve()).
        score: Normalized fusion score in [0, 1] (higher = more relevant).
        source_name: Name of the owning knowledge source.
        dense_rank: 1-based rank in the dense channel (None if not retrieved).
        fts_rank: 1-based rank in the FTS channel (None if not retrieved).
    """

    chunk: StoredChunk
    score: float
    source_name: str = ""
    dense_rank: int | None = None
    fts_rank: int | None = None


@dataclass
class RetrievalMetrics:
    candidate_count: int = 0
    fused_count: int = 0
    returned_count: int = 0
    avg_score: float = 0.0
    elapsed_ms: float = 0.0


@dataclass
class RetrievalResult:
    chunks: list[ScoredChunk] = field(default_factory=list)
    mode: str = "hybrid"
    metrics: RetrievalMetrics = field(default_factory=RetrievalMetrics)


def retrieve(
    query: str,
    repo: Repository,
    embedder: EmbeddingClient,
    project_id: str,
    config: RetrievalCfg | None = None,
) -> RetrievalResult:
    """Search *project_id*'s knowledge for *query*.

    Raises:
        RuntimeError: If a dense-capable mode is requested but no embeddings
            exist yet for the embedder's model.
        EmbeddingFailure: If embedding the query fails.
    """
    cfg = config or RetrievalCfg()
    if cfg.mode not in ("hybrid", "dense", "fts"):
        raise ValueError(f"Unknown retrieval mode '{cfg.mode}'")

    started = time.perf_counter()
    metrics = RetrievalMetrics()
    candidates = cfg.top_k * cfg.candidate_multiplier

    dense_results: list[tuple[StoredChunk, float]] = []
    fts_results: list[tuple[StoredChunk, float]] = []

    if cfg.mode in ("hybrid", "dense"):
        vec_table = vec_table_name(model_to_slug(embedder.model))
        if not vec_table_exists(repo.conn, vec_table):
            raise RuntimeError(
                f"No embeddings found for model '{embedder.model}'. "
                f"Run 'ragline ingest' first to populate the vector index."
            )
        query_embedding = embedder.embed(query)
        dense_results = repo.search_vec(vec_table, query_embedding, project_id, limit=candidates)
    if cfg.mode in ("hybrid", "fts"):
        fts_results = repo.search_fts(query, project_id, limit=candidates)

    metrics.candidate_count = len(dense_results) + len(fts_results)

    if cfg.mode == "dense":
        fused = _rank_dense_only(dense_results)
    elif cfg.mode == "fts":
        fused = _rank_fts_only(fts_results, cfg.rrf_k)
    else:
        fused = _rrf_fuse(dense_results, fts_results, cfg.vector_weight, cfg.rrf_k)
    metrics.fused_count = len(fused)

    kept = [s for s in fused if s.score >= cfg.threshold][: cfg.top_k]
    kept = _truncate_to_length(kept, cfg.max_content_length)
    _attach_source_names(kept, repo)

    metrics.returned_count = len(kept)
    if kept:
        metrics.avg_score = sum(s.score for s in kept) / len(kept)
    metrics.elapsed_ms = (time.perf_counter() - started) * 1000.0

    logger.debug(
        "Retrieval [%s] project=%s candidates=%d fused=%d returned=%d avg=%.3f in %.1fms",
        cfg.mode,
        project_id,
        metrics.candidate_count,
        metrics.fused_count,
        metrics.returned_count,
        metrics.avg_score,
        metrics.elapsed_ms,
    )
    return RetrievalResult(chunks=kept, mode=cfg.mode, metrics=metrics)


def format_as_context(chunks: list[ScoredChunk]) -> str:
    """Render retrieved chunks as a knowledge block for a chat prompt."""
    if not chunks:
        return "No relevant information found in the knowledge base."
    return "\n\n---\n\n".join(
        f"[Source {i}: {s.source_name or 'Unknown'} ({round(s.score * 100)}% match)]\n"
        f"{s.chunk.content}"
        for i, s in enumerate(chunks, start=1)
    )


# ------------------------------------------------------------------
# Fusion
# ------------------------------------------------------------------


def _rrf_fuse(
    dense_results: list[tuple[StoredChunk, float]],
    fts_results: list[tuple[StoredChunk, float]],
    vector_weight: float,
    rrf_k: int = 60,
) -> list[ScoredChunk]:
    """Combine both ranked lists via weighted RRF; scores normalized to [0, 1]."""
    fts_weight = 1.0 - vector_weight
    fused: dict[int, ScoredChunk] = {}
    raw: dict[int, float] = {}

    for rank, (chunk, _) in enumerate(dense_results, start=1):
        key = chunk.rowid
        raw[key] = raw.get(key, 0.0) + vector_weight / (rrf_k + rank)
        fused.setdefault(key, ScoredChunk(chunk=chunk, score=0.0)).dense_rank = rank

    for rank, (chunk, _) in enumerate(fts_results, start=1):
        key = chunk.rowid
        raw[key] = raw.get(key, 0.0) + fts_weight / (rrf_k + rank)
        fused.setdefault(key, ScoredChunk(chunk=chunk, score=0.0)).fts_rank = rank

    if not fused:
        return []
    top = max(max(raw.values()), 1e-9)
    for key, scored in fused.items():
        scored.score = raw[key] / top

    return sorted(fused.values(), key=_sort_key)


def _rank_dense_only(dense_results: list[tuple[StoredChunk, float]]) -> list[ScoredChunk]:
    # Cosine distance in [0, 2] → similarity in [-1, 1], clipped at 0.
    return [
        ScoredChunk(chunk=chunk, score=max(0.0, 1.0 - distance), dense_rank=i)
        for i, (chunk, distance) in enumerate(dense_results, start=1)
    ]


def _rank_fts_only(
    fts_results: list[tuple[StoredChunk, float]], rrf_k: int = 60
) -> list[ScoredChunk]:
    return [
        ScoredChunk(chunk=chunk, score=(rrf_k + 1) / (rrf_k + i), fts_rank=i)
        for i, (chunk, _) in enumerate(fts_results, start=1)
    ]


def _sort_key(scored: ScoredChunk) -> tuple[float, str, int]:
    # Highest score first; ties fall back to document order.
    return (-scored.score, scored.chunk.source_id, scored.chunk.chunk_index)


# ------------------------------------------------------------------
# Post-processing
# ------------------------------------------------------------------


def _truncate_to_length(chunks: list[ScoredChunk], max_length: int) -> list[ScoredChunk]:
    """Keep chunks until *max_length* characters; maybe add one partial chunk."""
    result: list[ScoredChunk] = []
    total = 0
    for scored in chunks:
        content = scored.chunk.content
        if total + len(content) > max_length:
            remaining = max_length - total
            if remaining > _MIN_PARTIAL_CHARS:
                clipped = replace(scored.chunk, content=content[: remaining - 3] + "...")
                result.append(replace(scored, chunk=clipped))
            break
        result.append(scored)
        total += len(content)
    return result


def _attach_source_names(chunks: list[ScoredChunk], repo: Repository) -> None:
    names: dict[str, str] = {}
    for scored in chunks:
        sid = scored.chunk.source_id
        if sid not in names:
            source = repo.get_source(sid)
            names[sid] = source.name if source else "Unknown"
        scored.source_name = names[sid]
