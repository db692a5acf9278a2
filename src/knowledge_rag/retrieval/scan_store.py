"""Fallback backend: brute-force cosine scan over the relational store."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any

from sqlalchemy.orm import Session

from knowledge_rag.ingestion.models import SourceType
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.models import ChunkRecord, ScoredChunk

logger = logging.getLogger(__name__)


class ScanVectorStore(VectorStoreBase):
    """Stores vectors as JSON arrays on the chunk rows.

    Search reads every chunk of the requesting owner (optionally narrowed
    to some source types) and scores it in process.  Cost is linear in the
    owner's chunk count; used when no native index is reachable.
    """

    name = "scan"

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
        self._check_dims(vector, document_id=document_id, ordinal=ordinal)
        row = self._add_chunk_row(session, owner_id, document_id, ordinal, text, vector, metadata)
        session.flush()
        return row.id

    def scan(
        self,
        session: Session,
        owner_id: int,
        source_types: Sequence[SourceType] | None = None,
    ) -> Iterator[ChunkRecord]:
        stmt = self._visible_chunks_stmt(owner_id, source_types).execution_options(yield_per=500)
        for row, source_type in session.execute(stmt):
            yield self._record(row, source_type, row.embedding)

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
        self._check_dims(query_vector, owner_id=owner_id)
        results = self.ranker.rank(query_vector, self.scan(session, owner_id, source_types), threshold, limit)
        logger.debug("Scan search for owner %s returned %d hits", owner_id, len(results))
        return results

    def health_check(self) -> bool:
        return True
