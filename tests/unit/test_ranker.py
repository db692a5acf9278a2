"""Unit tests for cosine scoring and result ordering."""

from __future__ import annotations

import pytest

from knowledge_rag.errors import DimensionMismatchError
from knowledge_rag.retrieval.models import ChunkRecord, ScoredChunk
from knowledge_rag.retrieval.ranker import SimilarityRanker, cosine_similarity


def _record(chunk_id: str, vector: list[float] | None, ordinal: int = 0, document_id: str = "doc") -> ChunkRecord:
    return ChunkRecord(chunk_id=chunk_id, document_id=document_id, ordinal=ordinal, text=chunk_id, vector=vector)


class TestCosineSimilarity:
    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_scale_invariant(self) -> None:
        assert cosine_similarity([1.0, 2.0], [10.0, 20.0]) == pytest.approx(1.0)

    def test_zero_norm_scores_zero(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    def test_result_is_clamped(self) -> None:
        score = cosine_similarity([0.1] * 1000, [0.1] * 1000)
        assert -1.0 <= score <= 1.0


class TestSimilarityRanker:
    @pytest.fixture()
    def ranker(self) -> SimilarityRanker:
        return SimilarityRanker()

    def test_orders_by_score(self, ranker: SimilarityRanker) -> None:
        candidates = [
            _record("far", [0.0, 1.0]),
            _record("near", [1.0, 0.1]),
            _record("mid", [1.0, 1.0]),
        ]
        ranked = ranker.rank([1.0, 0.0], candidates, threshold=-1.0, limit=10)
        assert [r.chunk.chunk_id for r in ranked] == ["near", "mid", "far"]

    def test_threshold_is_inclusive(self, ranker: SimilarityRanker) -> None:
        candidates = [_record("exact", [1.0, 0.0]), _record("orth", [0.0, 1.0])]
        ranked = ranker.rank([1.0, 0.0], candidates, threshold=1.0, limit=10)
        assert [r.chunk.chunk_id for r in ranked] == ["exact"]

    def test_limit_applies_after_threshold(self, ranker: SimilarityRanker) -> None:
        candidates = [_record(f"c{i}", [1.0, i / 10], ordinal=i) for i in range(10)]
        ranked = ranker.rank([1.0, 0.0], candidates, threshold=0.0, limit=3)
        assert [r.chunk.chunk_id for r in ranked] == ["c0", "c1", "c2"]

    def test_ties_break_on_ordinal_then_id(self, ranker: SimilarityRanker) -> None:
        candidates = [
            _record("b", [1.0, 0.0], ordinal=1),
            _record("z", [1.0, 0.0], ordinal=0),
            _record("a", [1.0, 0.0], ordinal=1),
        ]
        ranked = ranker.rank([1.0, 0.0], candidates, threshold=0.0, limit=10)
        assert [r.chunk.chunk_id for r in ranked] == ["z", "a", "b"]

    def test_chunks_without_vectors_are_skipped(self, ranker: SimilarityRanker) -> None:
        ranked = ranker.rank([1.0, 0.0], [_record("none", None), _record("ok", [1.0, 0.0])], 0.0, 10)
        assert [r.chunk.chunk_id for r in ranked] == ["ok"]

    def test_mismatched_candidate_raises(self, ranker: SimilarityRanker) -> None:
        with pytest.raises(DimensionMismatchError):
            ranker.rank([1.0, 0.0], [_record("bad", [1.0, 0.0, 0.0])], 0.0, 10)

    def test_empty_candidates(self, ranker: SimilarityRanker) -> None:
        assert ranker.rank([1.0, 0.0], [], 0.0, 10) == []

    def test_select_on_prescored(self, ranker: SimilarityRanker) -> None:
        scored = [
            ScoredChunk(chunk=_record("low", [1.0]), score=0.2),
            ScoredChunk(chunk=_record("high", [1.0]), score=0.9),
        ]
        assert [s.chunk.chunk_id for s in ranker.select(scored, 0.5, 5)] == ["high"]

    def test_repeatable(self, ranker: SimilarityRanker) -> None:
        candidates = [_record(f"c{i}", [1.0, float(i % 3)], ordinal=i) for i in range(12)]
        first = ranker.rank([1.0, 1.0], candidates, 0.0, 5)
        second = ranker.rank([1.0, 1.0], list(reversed(candidates)), 0.0, 5)
        assert [r.chunk.chunk_id for r in first] == [r.chunk.chunk_id for r in second]
