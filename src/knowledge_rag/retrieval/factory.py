"""
Vector store factory: picks the native Chroma index or the scan fallback.

The choice is made once, at process start, from ``settings.vector_backend``:

* ``chroma``: always use Chroma (fails if it cannot be reached)
* ``scan``: always brute-force over the relational store
* ``auto``: Chroma when its heartbeat answers, otherwise scan
"""

from __future__ import annotations

import logging

from knowledge_rag.config import Settings, get_settings
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.scan_store import ScanVectorStore

logger = logging.getLogger(__name__)

_BACKENDS = ("auto", "chroma", "scan")


def build_vector_store(settings: Settings | None = None) -> VectorStoreBase:
    """Return the configured vector store.

    Raises:
        ValueError: If ``vector_backend`` is not one of auto/chroma/scan
    """
    settings = settings or get_settings()
    backend = settings.vector_backend.lower()
    if backend not in _BACKENDS:
        raise ValueError(f"Invalid vector_backend: {settings.vector_backend!r}. Must be one of {_BACKENDS}.")

    if backend == "scan":
        logger.info("Using scan vector store (in-process cosine)")
        return ScanVectorStore(settings.embedding_dimensions)

    try:
        from knowledge_rag.retrieval.chroma_store import ChromaVectorStore

        store = ChromaVectorStore.from_settings(settings)
    except Exception:
        if backend == "chroma":
            raise
        logger.warning(
            "Chroma at %s:%d unavailable, falling back to scan vector store",
            settings.chroma_host,
            settings.chroma_port,
            exc_info=True,
        )
        return ScanVectorStore(settings.embedding_dimensions)

    if backend == "auto" and not store.health_check():
        logger.warning("Chroma health-check failed, falling back to scan vector store")
        return ScanVectorStore(settings.embedding_dimensions)

    logger.info("Using Chroma vector store (collection=%s)", settings.chroma_collection)
    return store
