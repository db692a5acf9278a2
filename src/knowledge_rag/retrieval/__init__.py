"""
Retrieval: vector storage, similarity ranking, and backend selection.

Public surface
--------------
- :class:`VectorStoreBase`: abstract backend.
- :class:`ScanVectorStore`: brute-force fallback over the relational store.
- :class:`ChromaVectorStore`: native Chroma index.
- :class:`SimilarityRanker`, :func:`cosine_similarity`: ranking policy.
- :class:`SearchResult`, :class:`SearchResponse`: data models.
- :func:`build_vector_store`: one-time backend selection.
"""

from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.factory import build_vector_store
from knowledge_rag.retrieval.models import ChunkRecord, MetadataFilter, ScoredChunk, SearchResponse, SearchResult
from knowledge_rag.retrieval.ranker import SimilarityRanker, cosine_similarity
from knowledge_rag.retrieval.scan_store import ScanVectorStore

__all__ = [
    "ChromaVectorStore",
    "ChunkRecord",
    "MetadataFilter",
    "ScanVectorStore",
    "ScoredChunk",
    "SearchResponse",
    "SearchResult",
    "SimilarityRanker",
    "VectorStoreBase",
    "build_vector_store",
    "cosine_similarity",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from knowledge_rag.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
