"""Group visitor questions into clusters of near-duplicates.

Primary path (more than ``small_sample_size`` utterances): embed a capped
sample and run greedy single-link clustering. Each still-unassigned
utterance, taken in input order, seeds a new cluster and absorbs every later
unassigned utterance whose cosine similarity to the seed is at least
``similarity_threshold``. The result depends on seed order and is not a
global optimum, but it is deterministic for a fixed input order; pass
``stable_order=True`` to sort utterances lexicographically first.

Fallback path (small inputs, provider errors, timeouts): case-insensitive
exact-match frequency counting. Clustering therefore never fails the caller;
a provider outage only costs grouping quality.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Protocol

from ragline.ingest.embedding import cosine_similarity

logger = logging.getLogger(__name__)

_MAX_EXAMPLES = 3


class Embedder(Protocol):
    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]: ...


@dataclass
class QuestionCluster:
    representative: str
    count: int
    examples: list[str] = field(default_factory=list)


class QuestionClusterer:
    """Cluster utterances by embedding similarity with a frequency fallback.

    Args:
        embedder:             Anything with ``embed_batch(texts)``.
        similarity_threshold: Minimum cosine similarity to the seed.
        sample_cap:           Maximum utterances embedded per request; a
                              larger population is truncated (a known
                              sampling bias).
        small_sample_size:    Inputs of this size or smaller never reach the
                              embedding provider.
        timeout:              Seconds allowed for the embed-and-cluster step.
        stable_order:         Sort utterances before clustering.
    """

    def __init__(
        self,
        embedder: Embedder,
        similarity_threshold: float = 0.85,
        sample_cap: int = 500,
        small_sample_size: int = 5,
        timeout: float | None = 20.0,
        stable_order: bool = False,
    ) -> None:
        if sample_cap < 1:
            raise ValueError("sample_cap must be >= 1")
        self.embedder = embedder
        self.similarity_threshold = similarity_threshold
        self.sample_cap = sample_cap
        self.small_sample_size = small_sample_size
        self.timeout = timeout
        self.stable_order = stable_order

    def cluster(self, utterances: Sequence[str], max_clusters: int = 10) -> list[QuestionCluster]:
        """Return at most *max_clusters* clusters, largest first."""
        items = list(utterances)
        if not items or max_clusters < 1:
            return []
        if self.stable_order:
            items.sort()

        if len(items) <= self.small_sample_size:
            return frequency_clusters(items, max_clusters)

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ragline-cluster")
        future = pool.submit(self._cluster_by_similarity, items, max_clusters)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            logger.warning(
                "Question clustering timed out after %ss, falling back to frequency counts",
                self.timeout,
            )
        except Exception as exc:
            logger.error("Embedding clustering failed, falling back to frequency: %s", exc)
        finally:
            # Never block on a slow provider call; its result is discarded.
            pool.shutdown(wait=False, cancel_futures=True)
        return frequency_clusters(items, max_clusters)

    def _cluster_by_similarity(
        self, items: list[str], max_clusters: int
    ) -> list[QuestionCluster]:
        sampled = items[: self.sample_cap]
        if len(items) > len(sampled):
            logger.info("Clustering the first %d of %d utterances", len(sampled), len(items))

        vectors = self.embedder.embed_batch(sampled)
        if len(vectors) != len(sampled):
            raise ValueError(f"expected {len(sampled)} embeddings, got {len(vectors)}")

        groups = greedy_single_link(vectors, self.similarity_threshold)
        # sorted() is stable: equal-sized clusters keep first-seen order.
        groups = sorted(groups, key=len, reverse=True)[:max_clusters]
        return [
            QuestionCluster(
                representative=sampled[members[0]],
                count=len(members),
                examples=[sampled[i] for i in members[:_MAX_EXAMPLES]],
            )
            for members in groups
        ]


def greedy_single_link(vectors: Sequence[Sequence[float]], threshold: float) -> list[list[int]]:
    """Group vector indices by similarity to each cluster's seed.

    Returns member index lists in seed order; each list starts with its seed.
    """
    assigned = [False] * len(vectors)
    groups: list[list[int]] = []
    for i, seed in enumerate(vectors):
        if assigned[i]:
            continue
        assigned[i] = True
        members = [i]
        for j in range(i + 1, len(vectors)):
            if not assigned[j] and cosine_similarity(seed, vectors[j]) >= threshold:
                assigned[j] = True
                members.append(j)
        groups.append(members)
    return groups


def frequency_clusters(utterances: Sequence[str], max_clusters: int = 10) -> list[QuestionCluster]:
    """Count case-insensitive exact duplicates; most frequent first.

    The representative is the first spelling seen for each group.
    """
    counts: dict[str, list] = {}
    for text in utterances:
        key = text.lower()
        if key in counts:
            counts[key][1] += 1
        else:
            counts[key] = [text, 1]

    ranked = sorted(counts.values(), key=lambda entry: entry[1], reverse=True)[:max_clusters]
    return [
        QuestionCluster(representative=original, count=count, examples=[original])
        for original, count in ranked
    ]
