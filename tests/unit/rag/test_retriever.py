"""Tests for the hybrid retriever (weighted RRF over sqlite-vec + FTS5)."""

from __future__ import annotations

import pytest

from ragline.config import RetrievalCfg
from ragline.db.models import KnowledgeSource, SourceOrigin, SourceStatus, StoredChunk
from ragline.db.vectors import vec_table_for_model
from ragline.rag.retriever import (
    ScoredChunk,
    _rank_dense_only,
    _rank_fts_only,
    _rrf_fuse,
    _truncate_to_length,
    format_as_context,
    retrieve,
)

_MODEL = "fake/embed"


class FakeEmbedder:
    """Maps a few known queries to fixed 3-d vectors."""

    model = _MODEL
    dimensions = 3

    def __init__(self, vectors=None):
        self.vectors = vectors or {}
        self.calls: list[str] = []

    def embed(self, text):
        self.calls.append(text)
        return self.vectors.get(text, [1.0, 0.0, 0.0])


def _chunk(rowid, source_id="src-1", index=0, content="x"):
    return StoredChunk(source_id=source_id, chunk_index=index, content=content, rowid=rowid)


def _add_source(repo, id, project="acme", name=None, status=SourceStatus.READY):
    repo.add_source(
        KnowledgeSource(id=id, project_id=project, name=name or f"{id}.txt", origin=SourceOrigin.TEXT)
    )
    if status is not SourceStatus.PENDING:
        repo.update_status(id, SourceStatus.PROCESSING)
    if status is SourceStatus.READY:
        repo.update_status(id, SourceStatus.READY, chunk_count=1)


def _add_chunk(repo, table, source_id, index, content, vector):
    rowid = repo.add_chunk(StoredChunk(source_id=source_id, chunk_index=index, content=content))
    repo.add_embedding(table, rowid, vector)
    return rowid


@pytest.fixture
def kb(repo, tmp_db):
    """Project 'acme' with three ready chunks and one 'globex' chunk."""
    table = vec_table_for_model(tmp_db, _MODEL, 3)
    _add_source(repo, "faq", name="faq.md", status=SourceStatus.PROCESSING)
    _add_chunk(repo, table, "faq", 0, "Refunds are processed within 14 days.", [1.0, 0.0, 0.0])
    _add_chunk(repo, table, "faq", 1, "Shipping is free above 50 euros.", [0.0, 1.0, 0.0])
    _add_chunk(repo, table, "faq", 2, "Our office is closed on Sundays.", [0.0, 0.0, 1.0])
    repo.update_status("faq", SourceStatus.READY, chunk_count=3)

    _add_source(repo, "other", project="globex", name="other.md", status=SourceStatus.PROCESSING)
    _add_chunk(repo, table, "other", 0, "Refunds at globex take 90 days.", [1.0, 0.0, 0.0])
    repo.update_status("other", SourceStatus.READY, chunk_count=1)
    return repo


# ------------------------------------------------------------------
# Fusion
# ------------------------------------------------------------------

def test_rrf_fuse_weighted_and_normalized():
    a, b, c = _chunk(1, index=0), _chunk(2, index=1), _chunk(3, index=2)
    fused = _rrf_fuse([(a, 0.1), (b, 0.2)], [(b, -3.0), (c, -1.0)], vector_weight=0.7, rrf_k=60)

    assert [s.chunk.rowid for s in fused] == [2, 1, 3]
    by_id = {s.chunk.rowid: s for s in fused}
    top = 0.7 / 62 + 0.3 / 61
    assert by_id[2].score == pytest.approx(1.0)
    assert by_id[1].score == pytest.approx((0.7 / 61) / top)
    assert by_id[3].score == pytest.approx((0.3 / 62) / top)
    assert (by_id[2].dense_rank, by_id[2].fts_rank) == (2, 1)
    assert by_id[1].fts_rank is None
    assert by_id[3].dense_rank is None


def test_rrf_fuse_empty():
    assert _rrf_fuse([], [], vector_weight=0.7) == []


def test_rrf_fuse_scores_in_unit_range():
    chunks = [_chunk(i, index=i) for i in range(1, 11)]
    fused = _rrf_fuse([(c, 0.0) for c in chunks], [(c, 0.0) for c in reversed(chunks)], 0.5)
    assert all(0.0 <= s.score <= 1.0 for s in fused)
    assert max(s.score for s in fused) == pytest.approx(1.0)


def test_rrf_fuse_ties_keep_document_order():
    a, b = _chunk(1, index=0), _chunk(2, index=1)
    fused = _rrf_fuse([(b, 0.0)], [(a, 0.0)], vector_weight=0.5)
    assert [s.chunk.rowid for s in fused] == [1, 2]


def test_rank_dense_only_converts_distance():
    scored = _rank_dense_only([(_chunk(1), 0.2), (_chunk(2), 1.5)])
    assert scored[0].score == pytest.approx(0.8)
    assert scored[1].score == 0.0
    assert [s.dense_rank for s in scored] == [1, 2]


def test_rank_fts_only_decays_by_rank():
    scored = _rank_fts_only([(_chunk(1), -5.0), (_chunk(2), -2.0)], rrf_k=60)
    assert scored[0].score == pytest.approx(1.0)
    assert scored[1].score == pytest.approx(61 / 62)


# ------------------------------------------------------------------
# Truncation
# ------------------------------------------------------------------

def _scored(content, rowid=1):
    return ScoredChunk(chunk=_chunk(rowid, content=content), score=1.0)


def test_truncate_keeps_partial_when_room():
    result = _truncate_to_length([_scored("a" * 5000, 1), _scored("b" * 5000, 2)], 8000)
    assert len(result) == 2
    assert result[1].chunk.content == "b" * 2997 + "..."
    assert sum(len(s.chunk.content) for s in result) == 8000


def test_truncate_drops_small_remainder():
    result = _truncate_to_length([_scored("a" * 7900, 1), _scored("b" * 500, 2)], 8000)
    assert [s.chunk.rowid for s in result] == [1]


def test_truncate_does_not_mutate_input():
    original = _scored("b" * 5000, 2)
    _truncate_to_length([_scored("a" * 5000, 1), original], 8000)
    assert len(original.chunk.content) == 5000


# ------------------------------------------------------------------
# retrieve()
# ------------------------------------------------------------------

def test_hybrid_ranks_dual_match_first(kb):
    result = retrieve("refunds", kb, FakeEmbedder(), "acme")

    assert result.mode == "hybrid"
    top = result.chunks[0]
    assert top.chunk.content.startswith("Refunds are processed")
    assert top.score == pytest.approx(1.0)
    assert top.source_name == "faq.md"
    assert top.dense_rank == 1 and top.fts_rank == 1


def test_results_are_project_scoped(kb):
    result = retrieve("refunds", kb, FakeEmbedder(), "globex")
    assert [s.chunk.source_id for s in result.chunks] == ["other"]


def test_threshold_filters_weak_matches(kb):
    strict = retrieve("refunds", kb, FakeEmbedder(), "acme", RetrievalCfg(threshold=0.9))
    assert len(strict.chunks) == 1
    loose = retrieve("refunds", kb, FakeEmbedder(), "acme", RetrievalCfg(threshold=0.0))
    assert len(loose.chunks) == 3


def test_top_k_limits(kb):
    result = retrieve("refunds", kb, FakeEmbedder(), "acme", RetrievalCfg(top_k=1, threshold=0.0))
    assert len(result.chunks) == 1


def test_dense_mode(kb):
    embedder = FakeEmbedder({"when are you closed": [0.0, 0.1, 1.0]})
    result = retrieve("when are you closed", kb, embedder, "acme", RetrievalCfg(mode="dense"))
    assert result.chunks[0].chunk.content.startswith("Our office")
    assert result.chunks[0].fts_rank is None


def test_fts_mode_skips_embedding(kb):
    embedder = FakeEmbedder()
    result = retrieve("shipping", kb, embedder, "acme", RetrievalCfg(mode="fts"))
    assert embedder.calls == []
    assert [s.chunk.chunk_index for s in result.chunks] == [1]


def test_not_ready_sources_invisible(repo, tmp_db):
    table = vec_table_for_model(tmp_db, _MODEL, 3)
    _add_source(repo, "wip", status=SourceStatus.PROCESSING)
    _add_chunk(repo, table, "wip", 0, "Refunds draft text.", [1.0, 0.0, 0.0])
    assert retrieve("refunds", repo, FakeEmbedder(), "acme").chunks == []


def test_missing_vec_table_raises(repo):
    with pytest.raises(RuntimeError, match="No embeddings found"):
        retrieve("anything", repo, FakeEmbedder(), "acme")


def test_fts_mode_without_vec_table(repo):
    assert retrieve("anything", repo, FakeEmbedder(), "acme", RetrievalCfg(mode="fts")).chunks == []


def test_unknown_mode_rejected(repo):
    with pytest.raises(ValueError, match="Unknown retrieval mode"):
        retrieve("q", repo, FakeEmbedder(), "acme", RetrievalCfg(mode="magic"))


def test_metrics_populated(kb):
    result = retrieve("refunds", kb, FakeEmbedder(), "acme", RetrievalCfg(threshold=0.0))
    m = result.metrics
    assert m.candidate_count == 4  # 3 dense + 1 fts
    assert m.fused_count == 3
    assert m.returned_count == 3
    assert 0.0 < m.avg_score <= 1.0
    assert m.elapsed_ms >= 0.0


# ------------------------------------------------------------------
# format_as_context
# ------------------------------------------------------------------

def test_format_as_context_empty():
    assert format_as_context([]) == "No relevant information found in the knowledge base."


def test_format_as_context_blocks():
    chunks = [
        ScoredChunk(chunk=_chunk(1, content="First body"), score=0.923, source_name="faq.md"),
        ScoredChunk(chunk=_chunk(2, content="Second body"), score=0.5),
    ]
    assert format_as_context(chunks) == (
        "[Source 1: faq.md (92% match)]\nFirst body"
        "\n\n---\n\n"
        "[Source 2: Unknown (50% match)]\nSecond body"
    )
