"""Cosine similarity scoring, threshold filtering and deterministic ordering."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np

from knowledge_rag.errors import DimensionMismatchError
from knowledge_rag.retrieval.models import ChunkRecord, ScoredChunk


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """``dot(a, b) / (|a| * |b|)``; 0.0 when either vector has zero norm.

    Raises
    ------
    DimensionMismatchError
        If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if norm == 0.0 or not np.isfinite(norm):
        return 0.0
    score = float(np.dot(va, vb)) / norm
    if not np.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))


def _sort_key(item: ScoredChunk) -> tuple[float, int, str]:
    return (-item.score, item.chunk.ordinal, item.chunk.chunk_id)


class SimilarityRanker:
    """Score, filter, order and truncate candidate chunks.

    Ordering is score descending, then ordinal ascending, then chunk id,
    so repeated queries over unchanged data return identical lists.
    """

    def rank(
        self,
        query_vector: Sequence[float],
        candidates: Iterable[ChunkRecord],
        threshold: float,
        limit: int,
    ) -> list[ScoredChunk]:
        scored: list[ScoredChunk] = []
        for candidate in candidates:
            if candidate.vector is None:
                continue
            if len(candidate.vector) != len(query_vector):
                raise DimensionMismatchError(
                    len(candidate.vector),
                    len(query_vector),
                    {"chunk_id": candidate.chunk_id},
                )
            scored.append(ScoredChunk(chunk=candidate, score=cosine_similarity(query_vector, candidate.vector)))
        return self.select(scored, threshold, limit)

    def select(self, scored: Iterable[ScoredChunk], threshold: float, limit: int) -> list[ScoredChunk]:
        """Apply threshold, ordering and limit to already-scored candidates."""
        kept = [s for s in scored if s.score >= threshold]
        kept.sort(key=_sort_key)
        return kept[: max(0, limit)]
