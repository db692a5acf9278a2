"""Knowledge base: the ingestion and retrieval orchestrator.

This module is the **primary public interface** of the package.  It is
assembled from explicitly injected collaborators so tests can swap any of
them for a double.

Usage::

    from knowledge_rag.knowledge_base import KnowledgeBase

    kb = KnowledgeBase.from_settings()
    result = kb.ingest(pdf_bytes, "user-42", "handbook.pdf", "application/pdf")
    response = kb.search("user-42", "refund policy", limit=5)
    for hit in response.results:
        print(hit.score, hit.document.name, hit.text[:80])
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from typing import Any

import pydantic

from knowledge_rag.config import Settings, get_settings
from knowledge_rag.errors import (
    ExtractionFailure,
    KnowledgeBaseError,
    NotFoundError,
    PersistenceFailure,
    ValidationError,
)
from knowledge_rag.ingestion.chunker import chunk_with_options
from knowledge_rag.ingestion.embedder import EmbeddingBatcher
from knowledge_rag.ingestion.extractor import DocumentExtractor, is_url
from knowledge_rag.ingestion.models import (
    ChunkOptions,
    EmbeddedChunk,
    Extraction,
    IngestOutcome,
    IngestResult,
    IngestStage,
    SourceType,
)
from knowledge_rag.retrieval.base import VectorStoreBase
from knowledge_rag.retrieval.models import SearchResponse, SearchResult
from knowledge_rag.storage.blob_store import BlobStore, build_blob_key
from knowledge_rag.storage.metadata_store import DocumentPage, KnowledgeBaseStats, MetadataStore

logger = logging.getLogger(__name__)


def _coerce_chunk_options(options: ChunkOptions | dict[str, Any] | None) -> ChunkOptions:
    if options is None:
        return ChunkOptions()
    if isinstance(options, ChunkOptions):
        return options
    try:
        return ChunkOptions.model_validate(options)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid chunk options: {exc}", field="chunk_options") from exc


def _coerce_source_types(values: Sequence[str | SourceType] | None) -> list[SourceType] | None:
    if not values:
        return None
    try:
        return [SourceType(v) for v in values]
    except ValueError as exc:
        raise ValidationError(str(exc), field="source_types") from exc


def _require_owner(owner: str) -> str:
    if not owner or not owner.strip():
        raise ValidationError("An owner identifier is required", field="owner")
    return owner.strip()


class KnowledgeBase:
    """Ingest documents and answer owner-scoped semantic queries.

    Parameters
    ----------
    extractor:
        Validates uploads and turns bytes / URLs into text.
    batcher:
        Produces one vector per chunk, degrading per batch on provider errors.
    blob_store:
        Holds the raw upload bytes.
    metadata_store:
        Relational store for owners and documents; owns transactions.
    vector_store:
        Native or scan backend holding chunks and their vectors.
    settings:
        Defaults for search limit / threshold and URL pacing.
    sleep:
        Pause between URL ingestions; injected for tests.
    """

    def __init__(
        self,
        *,
        extractor: DocumentExtractor,
        batcher: EmbeddingBatcher,
        blob_store: BlobStore,
        metadata_store: MetadataStore,
        vector_store: VectorStoreBase,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.extractor = extractor
        self.batcher = batcher
        self.blob_store = blob_store
        self.metadata_store = metadata_store
        self.vector_store = vector_store
        self.settings = settings or get_settings()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> KnowledgeBase:
        """Wire production collaborators from *settings*."""
        from knowledge_rag.retrieval.factory import build_vector_store
        from knowledge_rag.storage.blob_store import S3BlobStore

        settings = settings or get_settings()
        return cls(
            extractor=DocumentExtractor.from_settings(settings),
            batcher=EmbeddingBatcher.from_settings(settings),
            blob_store=S3BlobStore.from_settings(settings),
            metadata_store=MetadataStore.from_settings(settings),
            vector_store=build_vector_store(settings),
            settings=settings,
        )

    # -- ingestion ------------------------------------------------------------

    def ingest(
        self,
        data: bytes | None,
        owner: str,
        filename: str,
        mimetype: str | None = None,
        chunk_options: ChunkOptions | dict[str, Any] | None = None,
    ) -> IngestResult:
        """Extract, chunk, embed and persist one document atomically.

        Raises
        ------
        ValidationError, UnsupportedFileType
            Rejected before any external call.
        ExtractionFailure
            Text could not be extracted; nothing was written.
        PersistenceFailure
            A storage write failed; everything was rolled back.
        """
        owner = _require_owner(owner)
        logger.debug("[%s] %s", filename, IngestStage.VALIDATING.value)
        options = _coerce_chunk_options(chunk_options)
        self.extractor.validate(data, mimetype, filename)
        logger.info("Processing document for owner %s: %s", owner, filename)

        logger.debug("[%s] %s", filename, IngestStage.EXTRACTING.value)
        extraction = self.extractor.extract(data, mimetype, filename)

        if is_url(filename):
            payload = extraction.text.encode("utf-8")
            mimetype = mimetype or "text/html"
        else:
            payload = data or b""

        return self._ingest_extraction(owner, filename, mimetype, payload, extraction, options)

    def ingest_url(
        self,
        url: str,
        owner: str,
        chunk_options: ChunkOptions | dict[str, Any] | None = None,
    ) -> IngestResult:
        """Fetch a web page and ingest its readable text."""
        if not is_url(url):
            raise ValidationError(f"Not a valid http(s) URL: {url!r}", field="url")
        return self.ingest(None, owner, url, "text/html", chunk_options)

    def ingest_urls(
        self,
        urls: Sequence[str],
        owner: str,
        chunk_options: ChunkOptions | dict[str, Any] | None = None,
    ) -> list[IngestOutcome]:
        """Ingest several URLs in order; one failing URL does not stop the rest."""
        if not urls:
            raise ValidationError("At least one URL is required", field="urls")
        outcomes: list[IngestOutcome] = []
        for i, url in enumerate(urls):
            try:
                outcomes.append(IngestOutcome(source=url, result=self.ingest_url(url, owner, chunk_options)))
            except KnowledgeBaseError as exc:
                logger.error("Failed to ingest URL %s: %s", url, exc)
                outcomes.append(IngestOutcome(source=url, error=exc.to_dict()))
            if i < len(urls) - 1 and self.settings.url_batch_pause_seconds > 0:
                self._sleep(self.settings.url_batch_pause_seconds)
        return outcomes

    def _ingest_extraction(
        self,
        owner: str,
        name: str,
        mimetype: str | None,
        payload: bytes,
        extraction: Extraction,
        options: ChunkOptions,
    ) -> IngestResult:
        logger.debug("[%s] %s", name, IngestStage.CHUNKING.value)
        chunks = chunk_with_options(extraction.text, options)
        if not chunks:
            raise ExtractionFailure(
                f"No text content could be extracted from {name}",
                {"filename": name, "stage": IngestStage.CHUNKING.value},
            )

        logger.debug("[%s] %s %d chunks", name, IngestStage.EMBEDDING.value, len(chunks))
        embedded = self.batcher.embed_many(chunks)
        if len(embedded) != len(chunks):
            raise PersistenceFailure(
                "Embedding count does not match chunk count",
                {"chunks": len(chunks), "embeddings": len(embedded), "stage": IngestStage.EMBEDDING.value},
            )

        return self._persist(owner, name, mimetype, payload, extraction, embedded)

    def _persist(
        self,
        owner: str,
        name: str,
        mimetype: str | None,
        payload: bytes,
        extraction: Extraction,
        embedded: list[EmbeddedChunk],
    ) -> IngestResult:
        document_id = str(uuid.uuid4())
        blob_key = build_blob_key(owner, mimetype, name, document_id)
        blob_written = False
        owner_id: int | None = None
        logger.debug("[%s] %s", name, IngestStage.PERSISTING.value)

        try:
            with self.metadata_store.unit_of_work() as session:
                owner_id = self.metadata_store.get_or_create_owner_id(session, owner)
                location = self.blob_store.put(blob_key, payload, mimetype)
                blob_written = True

                doc = self.metadata_store.add_document(
                    session,
                    id=document_id,
                    owner_id=owner_id,
                    name=name,
                    mimetype=mimetype,
                    source_type=extraction.source_type,
                    format=extraction.format,
                    blob_key=location.key,
                    blob_url=location.url,
                    byte_size=len(payload),
                    content_length=len(extraction.text),
                    extra=extraction.metadata,
                )
                self.vector_store.upsert_many(
                    session,
                    owner_id,
                    document_id,
                    embedded,
                    {"source_type": extraction.source_type},
                )
                doc.chunk_count = len(embedded)
                doc.processed = True
                session.flush()
                created_at = doc.created_at
        except Exception as exc:
            self._compensate(blob_key if blob_written else None, owner_id, document_id)
            logger.error(
                "Ingestion of %s for owner %s rolled back: %s", name, owner, exc, exc_info=True
            )
            context = {"document_id": document_id, "stage": IngestStage.ROLLED_BACK.value, "created": False}
            if isinstance(exc, KnowledgeBaseError) and not isinstance(exc, PersistenceFailure):
                exc.details.update(context)
                raise
            if isinstance(exc, PersistenceFailure):
                raise PersistenceFailure(exc.message, {**exc.details, **context}) from exc
            raise PersistenceFailure(f"Failed to persist document {name}: {exc}", context) from exc

        logger.debug("[%s] %s", name, IngestStage.COMMITTED.value)
        degraded = sum(1 for e in embedded if e.degraded)
        logger.info(
            "Successfully processed document %s with %d chunks (%d degraded)",
            document_id,
            len(embedded),
            degraded,
        )
        return IngestResult(
            document_id=document_id,
            owner=owner,
            name=name,
            source_type=extraction.source_type,
            format=extraction.format,
            blob_key=location.key,
            blob_url=location.url,
            byte_size=len(payload),
            content_length=len(extraction.text),
            chunk_count=len(embedded),
            degraded_chunks=degraded,
            created_at=created_at,
        )

    def _compensate(self, blob_key: str | None, owner_id: int | None, document_id: str) -> None:
        """Undo writes that the relational rollback cannot reach."""
        if blob_key is not None:
            try:
                self.blob_store.delete(blob_key)
            except Exception:
                logger.error("Failed to delete orphaned blob %s", blob_key, exc_info=True)
        if owner_id is not None:
            try:
                self.vector_store.discard_document(owner_id, document_id)
            except Exception:
                logger.error("Failed to discard vectors for document %s", document_id, exc_info=True)

    # -- retrieval ------------------------------------------------------------

    def search(
        self,
        owner: str,
        query: str,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        source_types: Sequence[str | SourceType] | None = None,
    ) -> SearchResponse:
        """Rank the owner's chunks by cosine similarity to *query*.

        Only the owner's committed documents are considered.  An unknown
        owner gets an empty response.
        """
        owner = _require_owner(owner)
        if not query or not query.strip():
            raise ValidationError("Query must not be empty", field="query")
        limit = self.settings.default_search_limit if limit is None else limit
        threshold = self.settings.default_search_threshold if threshold is None else threshold
        if limit <= 0:
            raise ValidationError("limit must be positive", field="limit")
        if not -1.0 <= threshold <= 1.0:
            raise ValidationError("threshold must be within [-1, 1]", field="threshold")
        types = _coerce_source_types(source_types)

        response = SearchResponse(query=query, threshold=threshold, limit=limit)
        with self.metadata_store.read_session() as session:
            owner_id = self.metadata_store.find_owner_id(session, owner)
        if owner_id is None:
            return response

        query_embedding = self.batcher.embed_query(query)
        response.query_degraded = query_embedding.degraded
        if query_embedding.degraded:
            logger.warning("Search for owner %s answered with a degraded query vector", owner)

        with self.metadata_store.read_session() as session:
            hits = self.vector_store.similarity_search(
                session,
                owner_id,
                query_embedding.vector,
                threshold=threshold,
                limit=limit,
                source_types=types,
            )
            summaries = self.metadata_store.document_summaries(session, {h.chunk.document_id for h in hits})

        response.results = [
            SearchResult(
                chunk_id=hit.chunk.chunk_id,
                document_id=hit.chunk.document_id,
                ordinal=hit.chunk.ordinal,
                text=hit.chunk.text,
                score=hit.score,
                metadata=hit.chunk.metadata,
                document=summaries.get(hit.chunk.document_id),
            )
            for hit in hits
        ]
        logger.info("Found %d relevant chunks for owner %s", len(response.results), owner)
        return response

    def list_documents(
        self,
        owner: str,
        *,
        source_type: str | SourceType | None = None,
        format: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> DocumentPage:
        owner = _require_owner(owner)
        if source_type is not None:
            source_type = _coerce_source_types([source_type])[0]
        return self.metadata_store.list_documents(
            owner,
            source_type=source_type,
            format=format,
            search=search,
            offset=offset,
            limit=limit,
        )

    def get_stats(self, owner: str) -> KnowledgeBaseStats:
        return self.metadata_store.get_stats(_require_owner(owner))

    # -- deletion -------------------------------------------------------------

    def delete_document(self, owner: str, document_id: str) -> None:
        """Delete a document with its chunks and vectors in one transaction.

        The blob is removed once the transaction has committed; a blob that
        cannot be removed is logged and left behind.

        Raises
        ------
        NotFoundError
            The document does not exist or belongs to another owner.
        PersistenceFailure
            A storage operation failed; the document is left intact.
        """
        owner = _require_owner(owner)
        owner_id: int | None = None
        try:
            with self.metadata_store.unit_of_work() as session:
                owner_id = self.metadata_store.find_owner_id(session, owner)
                doc = (
                    self.metadata_store.get_document(session, owner_id, document_id)
                    if owner_id is not None
                    else None
                )
                if doc is None:
                    raise NotFoundError("Document", document_id)

                removed = self.vector_store.delete_by_document(session, owner_id, document_id)
                blob_key = doc.blob_key
                self.metadata_store.delete_document(session, doc)
        except KnowledgeBaseError:
            raise
        except Exception as exc:
            raise PersistenceFailure(
                f"Failed to delete document {document_id}: {exc}",
                {"document_id": document_id},
            ) from exc

        # Rows are gone for good; what is left outside the database is cleanup.
        try:
            self.blob_store.delete(blob_key)
        except Exception:
            logger.warning("Left orphaned blob %s of deleted document %s", blob_key, document_id, exc_info=True)
        try:
            self.vector_store.discard_document(owner_id, document_id)
        except Exception:
            logger.warning("Vectors for deleted document %s not discarded", document_id, exc_info=True)
        logger.info("Deleted document %s (%d chunks) for owner %s", document_id, removed, owner)
