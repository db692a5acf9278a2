"""Batched embedding generation with per-batch degraded fallback."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

import numpy as np

from knowledge_rag.config import Settings, get_settings
from knowledge_rag.errors import EmbeddingProviderFailure
from knowledge_rag.ingestion.models import EmbeddedChunk

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


def get_embedding_function(settings: Settings | None = None) -> Embeddings | None:
    """Return the configured embedding provider, or ``None`` when unavailable.

    The OpenAI provider needs ``openai_api_key``; without it ingestion
    still works but every vector is a degraded fallback.
    """
    settings = settings or get_settings()
    provider = settings.embedding_provider.lower()

    if provider == "openai":
        if not settings.openai_api_key:
            logger.warning("OpenAI API key not set - embeddings will use degraded fallback vectors")
            return None
        from langchain_openai import OpenAIEmbeddings

        logger.info("OpenAI embeddings enabled (model=%s)", settings.embedding_model)
        return OpenAIEmbeddings(
            model=settings.embedding_model,
            api_key=settings.openai_api_key,
            dimensions=settings.embedding_dimensions,
        )

    if provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        logger.info("HuggingFace embeddings enabled (model=%s)", settings.embedding_model)
        return HuggingFaceEmbeddings(model_name=settings.embedding_model)

    raise ValueError(f"Unsupported embedding_provider: {settings.embedding_provider!r}")


def fallback_vector(text: str, dims: int) -> list[float]:
    """Deterministic unit-norm placeholder vector for *text*.

    Seeded from the SHA-256 of the text, so the same chunk always maps to
    the same vector.  Carries no semantic meaning.
    """
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = np.random.default_rng(seed)
    vec = rng.uniform(-1.0, 1.0, size=dims)
    norm = float(np.linalg.norm(vec))
    if norm > 0:
        vec = vec / norm
    return vec.tolist()


def _word_count(text: str) -> int:
    return len(text.split())


class EmbeddingBatcher:
    """Turn chunk lists into vectors, one provider call per batch.

    Parameters
    ----------
    embeddings:
        A LangChain ``Embeddings`` provider, or ``None`` when no provider is
        configured (every chunk then gets a degraded fallback vector).
    dims:
        Declared dimensionality of the embedding model.
    batch_size:
        Number of chunks per provider call.
    pause_seconds:
        Pause between consecutive batches, to stay under provider rate limits.
    model_name:
        Recorded in chunk metadata for non-degraded vectors.
    sleep:
        Injected for tests; defaults to :func:`time.sleep`.
    """

    def __init__(
        self,
        embeddings: Embeddings | None,
        *,
        dims: int = 1536,
        batch_size: int = 100,
        pause_seconds: float = 0.2,
        model_name: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._embeddings = embeddings
        self.dims = dims
        self.batch_size = batch_size
        self.pause_seconds = pause_seconds
        self.model_name = model_name
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> EmbeddingBatcher:
        settings = settings or get_settings()
        return cls(
            get_embedding_function(settings),
            dims=settings.embedding_dimensions,
            batch_size=settings.embedding_batch_size,
            pause_seconds=settings.embedding_batch_pause_seconds,
            model_name=settings.embedding_model,
        )

    @property
    def available(self) -> bool:
        return self._embeddings is not None

    # -- public API -----------------------------------------------------------

    def embed_many(self, chunks: Sequence[str], batch_size: int | None = None) -> list[EmbeddedChunk]:
        """Embed *chunks*; ``result[i]`` always corresponds to ``chunks[i]``.

        A failing batch is replaced by fallback vectors flagged
        ``degraded`` and processing continues with the next batch.
        """
        size = self.batch_size if batch_size is None else batch_size
        if size <= 0:
            raise ValueError("batch_size must be positive")
        results: list[EmbeddedChunk] = []
        total = len(chunks)

        for start in range(0, total, size):
            batch = list(chunks[start : start + size])
            try:
                vectors = self._call_provider(batch)
            except EmbeddingProviderFailure as exc:
                if self.available:
                    logger.warning(
                        "Embedding batch at offset %d failed, using fallback vectors: %s",
                        start,
                        exc,
                    )
                results.extend(self._fallback(start, batch))
            else:
                results.extend(
                    EmbeddedChunk(
                        index=start + i,
                        text=text,
                        vector=vector,
                        dims=len(vector),
                        degraded=False,
                        model=self.model_name,
                        char_count=len(text),
                        word_count=_word_count(text),
                    )
                    for i, (text, vector) in enumerate(zip(batch, vectors))
                )

            if self.available and start + size < total and self.pause_seconds > 0:
                self._sleep(self.pause_seconds)

        degraded = sum(1 for r in results if r.degraded)
        if degraded:
            logger.info("Embedded %d chunks (%d degraded)", total, degraded)
        else:
            logger.debug("Embedded %d chunks", total)
        return results

    def embed_query(self, query: str) -> EmbeddedChunk:
        """Embed a single query string through the same batch path."""
        return self.embed_many([query], batch_size=1)[0]

    # -- internals ------------------------------------------------------------

    def _call_provider(self, batch: list[str]) -> list[list[float]]:
        if self._embeddings is None:
            raise EmbeddingProviderFailure("No embedding provider configured")
        try:
            vectors = self._embeddings.embed_documents(batch)
        except Exception as exc:
            raise EmbeddingProviderFailure(
                f"Embedding provider call failed: {exc}",
                {"batch_size": len(batch)},
            ) from exc

        if len(vectors) != len(batch):
            raise EmbeddingProviderFailure(
                "Embedding provider returned the wrong number of vectors",
                {"expected": len(batch), "actual": len(vectors)},
            )
        for vector in vectors:
            if len(vector) != self.dims:
                raise EmbeddingProviderFailure(
                    "Embedding provider returned vectors of unexpected dimensionality",
                    {"expected": self.dims, "actual": len(vector)},
                )
        return [list(map(float, v)) for v in vectors]

    def _fallback(self, offset: int, batch: list[str]) -> list[EmbeddedChunk]:
        return [
            EmbeddedChunk(
                index=offset + i,
                text=text,
                vector=fallback_vector(text, self.dims),
                dims=self.dims,
                degraded=True,
                model=None,
                char_count=len(text),
                word_count=_word_count(text),
            )
            for i, text in enumerate(batch)
        ]
