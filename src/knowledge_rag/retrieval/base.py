"""Abstract base class for vector-store backends.

Two backends ship with the package:

* :class:`~knowledge_rag.retrieval.chroma_store.ChromaVectorStore`: native
  index; distance computation and top-K selection happen in Chroma.
* :class:`~knowledge_rag.retrieval.scan_store.ScanVectorStore`: vectors
  stored on the chunk rows and scored in process.

Both keep chunk rows in the relational store (so a document and its
chunks commit or roll back together) and both rank through
:class:`~knowledge_rag.retrieval.ranker.SimilarityRanker`, so the backend
choice never changes which results come back or in which order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from knowledge_rag.errors import DimensionMismatchError
from knowledge_rag.ingestion.models import EmbeddedChunk, SourceType
from knowledge_rag.retrieval.models import ChunkRecord, ScoredChunk
from knowledge_rag.retrieval.ranker import SimilarityRanker
from knowledge_rag.storage.db import ChunkModel, DocumentModel


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Every operation is scoped to an owner and runs inside the caller's
    SQLAlchemy session, i.e. inside the caller's transaction.

    Parameters
    ----------
    dims:
        Dimensionality every stored and query vector must have.
    ranker:
        Shared ranking policy; a default instance is created when omitted.
    """

    name: str = "base"

    def __init__(self, dims: int, ranker: SimilarityRanker | None = None) -> None:
        self.dims = dims
        self.ranker = ranker or SimilarityRanker()

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def upsert(
        self,
        session: Session,
        owner_id: int,
        document_id: str,
        ordinal: int,
        text: str,
        vector: Sequence[float],
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Persist one chunk and its vector; return the chunk id."""
        ...

    @abstractmethod
    def scan(
        self,
        session: Session,
        owner_id: int,
        source_types: Sequence[SourceType] | None = None,
    ) -> Iterator[ChunkRecord]:
        """Yield every chunk (with vector) of *owner_id*'s processed documents."""
        ...

    @abstractmethod
    def similarity_search(
        self,
        session: Session,
        owner_id: int,
        query_vector: Sequence[float],
        *,
        threshold: float,
        limit: int,
        source_types: Sequence[SourceType] | None = None,
    ) -> list[ScoredChunk]:
        """Return the owner's chunks scoring ``>= threshold``, best first.

        Raises
        ------
        DimensionMismatchError
            If ``len(query_vector)`` differs from the stored dimensionality.
        """
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    def upsert_many(
        self,
        session: Session,
        owner_id: int,
        document_id: str,
        chunks: Iterable[EmbeddedChunk],
        metadata: dict[str, Any] | None = None,
    ) -> list[str]:
        """Persist a document's chunks; backends may override to batch."""
        return [
            self.upsert(
                session,
                owner_id,
                document_id,
                chunk.index,
                chunk.text,
                chunk.vector,
                {**(metadata or {}), **chunk.chunk_metadata()},
            )
            for chunk in chunks
        ]

    def delete_by_document(self, session: Session, owner_id: int, document_id: str) -> int:
        """Delete the document's chunk rows; return how many were removed."""
        result = session.execute(
            delete(ChunkModel).where(
                ChunkModel.document_id == document_id,
                ChunkModel.owner_id == owner_id,
            )
        )
        return result.rowcount or 0

    def discard_document(self, owner_id: int, document_id: str) -> None:
        """Drop vectors held outside the relational transaction.

        Called after a deletion commits and when an ingestion rolls back.
        No-op for backends whose vectors live on the chunk rows.
        """

    def count(self, session: Session, owner_id: int) -> int:
        return session.scalar(select(func.count(ChunkModel.id)).where(ChunkModel.owner_id == owner_id)) or 0

    # -- shared helpers -------------------------------------------------------

    def _check_dims(self, vector: Sequence[float], **details: Any) -> None:
        if len(vector) != self.dims:
            raise DimensionMismatchError(self.dims, len(vector), details or None)

    def _add_chunk_row(
        self,
        session: Session,
        owner_id: int,
        document_id: str,
        ordinal: int,
        text: str,
        vector: Sequence[float] | None,
        metadata: dict[str, Any] | None,
    ) -> ChunkModel:
        meta = metadata or {}
        row = ChunkModel(
            document_id=document_id,
            owner_id=owner_id,
            ordinal=ordinal,
            text=text,
            embedding=list(vector) if vector is not None else None,
            dims=self.dims,
            char_count=meta.get("length", len(text)),
            word_count=meta.get("word_count", len(text.split())),
            degraded=bool(meta.get("degraded", False)),
            model=meta.get("model"),
        )
        session.add(row)
        return row

    @staticmethod
    def _visible_chunks_stmt(owner_id: int, source_types: Sequence[SourceType] | None = None):  # noqa: ANN205
        """Chunks of *owner_id* whose document is processed, in stable order."""
        stmt = (
            select(ChunkModel, DocumentModel.source_type)
            .join(DocumentModel, DocumentModel.id == ChunkModel.document_id)
            .where(
                ChunkModel.owner_id == owner_id,
                DocumentModel.owner_id == owner_id,
                DocumentModel.processed.is_(True),
            )
        )
        if source_types:
            stmt = stmt.where(DocumentModel.source_type.in_([SourceType(t) for t in source_types]))
        return stmt.order_by(ChunkModel.document_id, ChunkModel.ordinal)

    @staticmethod
    def _record(row: ChunkModel, source_type: SourceType, vector: Sequence[float] | None) -> ChunkRecord:
        return ChunkRecord(
            chunk_id=row.id,
            document_id=row.document_id,
            ordinal=row.ordinal,
            text=row.text,
            vector=list(vector) if vector is not None else None,
            metadata={
                "length": row.char_count,
                "word_count": row.word_count,
                "degraded": row.degraded,
                "model": row.model,
                "source_type": SourceType(source_type).value,
            },
        )
