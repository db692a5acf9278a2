"""Unit tests for the chunker module."""

from __future__ import annotations

import pytest

from knowledge_rag.errors import ValidationError
from knowledge_rag.ingestion.chunker import chunk_text, chunk_with_options, iter_spans
from knowledge_rag.ingestion.models import ChunkOptions


def _sentence_text() -> str:
    """2400 characters with ". " breaks ending near characters 1000 and 2000."""
    filler = "lorem ipsum dolor sit amet "
    first = (filler * 40)[:996] + ". "  # ". " at 996-997
    second = (filler * 40)[:996] + ". "  # ". " at 1994-1995
    tail = (filler * 20)[: 2400 - len(first) - len(second)]
    text = first + second + tail
    assert len(text) == 2400
    return text


class TestShortInput:
    def test_short_text_returns_single_trimmed_chunk(self) -> None:
        assert chunk_text("  hello world \n", chunk_size=100) == ["hello world"]

    def test_exact_chunk_size_is_single_chunk(self) -> None:
        text = "a" * 100
        assert chunk_text(text, chunk_size=100, overlap=10) == [text]

    def test_whitespace_only_yields_nothing(self) -> None:
        assert chunk_text("   \n\n  ", chunk_size=100) == []

    def test_empty_string_yields_nothing(self) -> None:
        assert chunk_text("", chunk_size=100) == []


class TestSplitting:
    def test_sentence_scenario_produces_three_chunks(self) -> None:
        text = _sentence_text()
        chunks = chunk_text(text, chunk_size=1000, overlap=200, separators=[". "])
        assert len(chunks) == 3
        assert chunks[0].endswith(".")
        assert all(len(c) <= 1000 + len(". ") for c in chunks)

    def test_sentence_scenario_boundaries(self) -> None:
        text = _sentence_text()
        spans = list(iter_spans(text, chunk_size=1000, overlap=200, separators=[". "]))

        # First window cuts after ". ", the second finds none past its midpoint.
        assert [(s.start, s.end) for s in spans] == [(0, 998), (798, 1798), (1598, 2400)]
        for left, right in zip(spans, spans[1:]):
            assert left.end - right.start == 200
            shared = text[right.start : left.end].strip()
            assert shared in left.text
            assert right.text.startswith(shared)

    def test_adjacent_chunks_overlap(self) -> None:
        text = _sentence_text()
        chunks = chunk_text(text, chunk_size=1000, overlap=200, separators=[". "])
        for left, right in zip(chunks, chunks[1:]):
            assert right[:50] in left

    def test_separator_priority_prefers_paragraph(self) -> None:
        text = ("a" * 70) + "\n\n" + ("b" * 10) + ". " + ("c" * 60)
        chunks = chunk_text(text, chunk_size=100, overlap=0, separators=["\n\n", ". "])
        assert chunks[0] == "a" * 70

    def test_separator_before_midpoint_is_ignored(self) -> None:
        text = ("a" * 20) + ". " + ("b" * 200)
        spans = list(iter_spans(text, chunk_size=100, overlap=0, separators=[". "]))
        assert spans[0].end == 100

    def test_no_separator_falls_back_to_window(self) -> None:
        text = "x" * 250
        chunks = chunk_text(text, chunk_size=100, overlap=0, separators=[" "])
        assert chunks == ["x" * 100, "x" * 100, "x" * 50]

    def test_final_window_is_not_repeated(self) -> None:
        text = "x" * 250
        spans = list(iter_spans(text, chunk_size=100, overlap=30, separators=[" "]))
        assert spans[-1].end == 250
        assert sum(1 for s in spans if s.end == 250) == 1

    def test_default_options(self) -> None:
        text = "Sentence number one is here. " * 100
        chunks = chunk_with_options(text)
        assert len(chunks) > 1
        assert all(len(c) <= 1000 + 2 for c in chunks)


class TestProgressInvariants:
    @pytest.mark.parametrize(
        "text,size,overlap",
        [
            ("x" * 5000, 100, 99),
            ("x" * 5000, 100, 500),
            ("ab " * 2000, 50, 49),
            ("a. " * 3000, 10, 9),
            ("\n\n" * 1000, 7, 6),
        ],
    )
    def test_starts_strictly_increase_and_chunks_non_empty(self, text: str, size: int, overlap: int) -> None:
        spans = list(iter_spans(text, chunk_size=size, overlap=overlap, separators=["\n\n", ". ", " "], max_chunks=100_000))
        starts = [s.start for s in spans]
        assert all(b > a for a, b in zip(starts, starts[1:]))
        assert all(s.text for s in spans)

    def test_overlap_larger_than_chunk_terminates(self) -> None:
        chunks = chunk_text("y" * 10_000, chunk_size=10, overlap=1_000, separators=[" "], max_chunks=100_000)
        assert chunks
        assert all(len(c) <= 10 for c in chunks)

    def test_cap_stops_early_without_error(self) -> None:
        chunks = chunk_text("z" * 100_000, chunk_size=10, overlap=0, separators=[" "], max_chunks=1000)
        assert len(chunks) == 1000

    def test_deterministic(self) -> None:
        text = "The quick brown fox. Jumps over the lazy dog!\n\n" * 80
        assert chunk_text(text, 300, 50) == chunk_text(text, 300, 50)


class TestValidation:
    def test_zero_chunk_size_rejected(self) -> None:
        with pytest.raises(ValidationError):
            chunk_text("abc", chunk_size=0)

    def test_negative_overlap_rejected(self) -> None:
        with pytest.raises(ValidationError):
            chunk_text("abc" * 100, chunk_size=10, overlap=-1)

    def test_empty_separator_rejected(self) -> None:
        with pytest.raises(ValidationError):
            chunk_text("abc" * 100, chunk_size=10, separators=[""])

    def test_chunk_options_reject_empty_separator(self) -> None:
        with pytest.raises(ValueError):
            ChunkOptions(separators=["\n", ""])
