"""Chroma implementation of the vector-store abstraction (native backend)."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

import chromadb
from sqlalchemy.orm import Session

from knowledge_rag.config import Settings, get_settings
from knowledge_rag.errors import PersistenceFailure
from knowledge_rag.ingestion.models import EmbeddedChunk, SourceType
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.models import ChunkRecord, MetadataFilter, ScoredChunk
from knowledge_rag.retrieval.ranker import SimilarityRanker
from knowledge_rag.storage.db import ChunkModel

logger = logging.getLogger(__name__)


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    _OP_MAP = {
        "eq": "$eq",
        "ne": "$ne",
        "gt": "$gt",
        "gte": "$gte",
        "lt": "$lt",
        "lte": "$lte",
        "in": "$in",
        "nin": "$nin",
    }

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _owner_filters(owner_id: int, source_types: Sequence[SourceType] | None) -> list[MetadataFilter]:
    filters = [MetadataFilter.equals("owner_id", owner_id)]
    if source_types:
        filters.append(MetadataFilter.one_of("source_type", [SourceType(t).value for t in source_types]))
    return filters


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    Chunk rows stay in the relational store; vectors go to a Chroma
    collection using cosine space, keyed by chunk id and tagged with
    ``owner_id``, ``document_id``, ``ordinal`` and ``source_type``.
    Similarity is ``1 - cosine_distance``.  Hits are re-joined to the
    owner's committed chunk rows, so vectors written by an uncommitted (or
    rolled back) ingestion are never returned.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host / port:
        Chroma server address (ignored when *client* is given).
    dims:
        Expected vector dimensionality.
    overfetch:
        ``n_results`` sent to Chroma is ``limit * overfetch``, leaving room
        for hits dropped by the re-join.
    client:
        Pre-built Chroma client (tests, embedded mode).
    """

    name = "chroma"

    def __init__(
        self,
        collection_name: str = "knowledge_chunks",
        *,
        host: str = "localhost",
        port: int = 8000,
        dims: int = 1536,
        overfetch: int = 4,
        ranker: SimilarityRanker | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(dims, ranker)
        self.collection_name = collection_name
        self.overfetch = max(1, overfetch)
        self._client = client or chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, client: Any = None) -> ChromaVectorStore:
        settings = settings or get_settings()
        return cls(
            settings.chroma_collection,
            host=settings.chroma_host,
            port=settings.chroma_port,
            dims=settings.embedding_dimensions,
            overfetch=settings.chroma_overfetch,
            client=client,
        )

    # -- writes ---------------------------------------------------------------

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
        row = self._add_chunk_row(session, owner_id, document_id, ordinal, text, None, metadata)
        session.flush()
        self._write_vectors([row], [vector], metadata or {})
        return row.id

    def upsert_many(
        self,
        session: Session,
        owner_id: int,
        document_id: str,
        chunks: Iterable[EmbeddedChunk],
        metadata: dict[str, Any] | None = None,
    ) -> list[str]:
        base_meta = metadata or {}
        rows: list[ChunkModel] = []
        vectors: list[list[float]] = []
        for chunk in chunks:
            self._check_dims(chunk.vector, document_id=document_id, ordinal=chunk.index)
            rows.append(
                self._add_chunk_row(
                    session,
                    owner_id,
                    document_id,
                    chunk.index,
                    chunk.text,
                    None,
                    {**base_meta, **chunk.chunk_metadata()},
                )
            )
            vectors.append(chunk.vector)
        session.flush()
        if rows:
            self._write_vectors(rows, vectors, base_meta)
        return [row.id for row in rows]

    def discard_document(self, owner_id: int, document_id: str) -> None:
        where = _build_chroma_where(
            [MetadataFilter.equals("owner_id", owner_id), MetadataFilter.equals("document_id", document_id)]
        )
        self._collection.delete(where=where)
        logger.debug("Discarded Chroma vectors for document %s", document_id)

    # -- reads ----------------------------------------------------------------

    def scan(
        self,
        session: Session,
        owner_id: int,
        source_types: Sequence[SourceType] | None = None,
    ) -> Iterator[ChunkRecord]:
        rows = session.execute(self._visible_chunks_stmt(owner_id, source_types)).all()
        if not rows:
            return
        stored = self._collection.get(ids=[row.id for row, _ in rows], include=["embeddings"])
        vectors = {cid: emb for cid, emb in zip(stored.get("ids", []), stored.get("embeddings", []))}
        for row, source_type in rows:
            vector = vectors.get(row.id)
            yield self._record(row, source_type, [float(v) for v in vector] if vector is not None else None)

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
        if limit <= 0:
            return []

        results = self._collection.query(
            query_embeddings=[list(query_vector)],
            n_results=limit * self.overfetch,
            where=_build_chroma_where(_owner_filters(owner_id, source_types)),
            include=["distances"],
        )
        ids = results.get("ids", [[]])[0]
        distances = results.get("distances", [[]])[0]
        if not ids:
            return []

        # Chroma distances are float32; scores match the scan backend to about 1e-7.
        scores = {cid: max(-1.0, min(1.0, 1.0 - float(dist))) for cid, dist in zip(ids, distances)}
        rows = session.execute(
            self._visible_chunks_stmt(owner_id, source_types).where(ChunkModel.id.in_(list(scores)))
        ).all()
        if len(rows) < len(scores):
            logger.debug("Dropped %d Chroma hits without a visible chunk row", len(scores) - len(rows))

        scored = [
            ScoredChunk(chunk=self._record(row, source_type, None), score=scores[row.id])
            for row, source_type in rows
        ]
        return self.ranker.select(scored, threshold, limit)

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    # -- internals ------------------------------------------------------------

    def _write_vectors(self, rows: list[ChunkModel], vectors: list[Sequence[float]], meta: dict[str, Any]) -> None:
        source_type = meta.get("source_type")
        try:
            self._collection.upsert(
                ids=[row.id for row in rows],
                embeddings=[list(v) for v in vectors],
                documents=[row.text for row in rows],
                metadatas=[
                    {
                        "owner_id": row.owner_id,
                        "document_id": row.document_id,
                        "ordinal": row.ordinal,
                        "source_type": SourceType(source_type).value if source_type else "",
                        "degraded": row.degraded,
                    }
                    for row in rows
                ],
            )
        except Exception as exc:
            raise PersistenceFailure(
                f"Chroma upsert failed: {exc}",
                {"collection": self.collection_name, "chunks": len(rows)},
            ) from exc
