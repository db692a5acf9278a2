"""Text chunking with natural-boundary cuts and overlap."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import NamedTuple

from knowledge_rag.errors import ValidationError
from knowledge_rag.ingestion.models import DEFAULT_SEPARATORS, ChunkOptions

logger = logging.getLogger(__name__)

# Cuts are only taken in the second half of a window.
_MIN_CUT_RATIO = 0.5


class TextSpan(NamedTuple):
    start: int
    end: int
    text: str


def _find_cut(text: str, start: int, end: int, chunk_size: int, separators: Sequence[str]) -> int:
    """Return the cut point for the window ``[start, end)``.

    Separators are tried in priority order; the first one with an
    occurrence beginning at or before ``end`` and after the window's
    midpoint wins, and the cut lands just past that occurrence.
    """
    floor = start + chunk_size * _MIN_CUT_RATIO
    for sep in separators:
        idx = text.rfind(sep, start, end + len(sep))
        if idx > floor:
            return idx + len(sep)
    return end


def iter_spans(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
    max_chunks: int = 1000,
) -> Iterator[TextSpan]:
    """Yield the non-empty spans :func:`chunk_text` emits, with raw offsets.

    ``start`` is strictly increasing across yielded spans and ``text`` is
    the trimmed slice ``text[start:end]``.
    """
    if chunk_size <= 0:
        raise ValidationError("chunk_size must be positive", field="chunk_size")
    if overlap < 0:
        raise ValidationError("overlap must not be negative", field="overlap")
    if any(sep == "" for sep in separators):
        raise ValidationError("separators must not contain the empty string", field="separators")

    length = len(text)
    if length <= chunk_size:
        stripped = text.strip()
        if stripped:
            yield TextSpan(0, length, stripped)
        return

    emitted = 0
    start = 0
    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            end = _find_cut(text, start, end, chunk_size, separators)

        piece = text[start:end].strip()
        if piece:
            yield TextSpan(start, end, piece)
            emitted += 1
            if emitted >= max_chunks:
                if end < length:
                    logger.warning(
                        "Chunking stopped after %d chunks (%d of %d characters consumed)",
                        emitted,
                        end,
                        length,
                    )
                return

        if end >= length:
            return

        next_start = max(start + 1, end - overlap)
        if next_start <= start:
            next_start = end
        start = next_start


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
    max_chunks: int = 1000,
) -> list[str]:
    """Split *text* into bounded, overlapping chunks.

    Parameters
    ----------
    text:
        Normalised document text.
    chunk_size:
        Window size in characters.  A chunk cut on a separator may exceed
        it by at most that separator's length.
    overlap:
        Characters shared between the end of one window and the start of
        the next.
    separators:
        Cut candidates, highest priority first (paragraph before sentence
        before word).
    max_chunks:
        Hard cap on the number of chunks; the truncated result is still
        returned.

    Returns
    -------
    list[str]
        Non-empty, trimmed chunks in document order.
    """
    return [span.text for span in iter_spans(text, chunk_size, overlap, separators, max_chunks)]


def chunk_with_options(text: str, options: ChunkOptions | None = None) -> list[str]:
    """Convenience wrapper taking a :class:`ChunkOptions`."""
    options = options or ChunkOptions()
    return chunk_text(
        text,
        chunk_size=options.chunk_size,
        overlap=options.overlap,
        separators=options.separators,
        max_chunks=options.max_chunks,
    )
