"""FastAPI application exposing the knowledge base as a REST API."""

from __future__ import annotations

import json
import logging
from typing import Annotated

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from knowledge_rag.errors import ErrorKind, KnowledgeBaseError, ValidationError
from knowledge_rag.ingestion.models import ChunkOptions, IngestOutcome, IngestResult, SourceType
from knowledge_rag.knowledge_base import KnowledgeBase
from knowledge_rag.retrieval.models import SearchResponse
from knowledge_rag.storage.metadata_store import DocumentPage, KnowledgeBaseStats

logger = logging.getLogger(__name__)

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNSUPPORTED_FILE_TYPE: 415,
    ErrorKind.EXTRACTION: 422,
    ErrorKind.EMBEDDING_PROVIDER: 502,
    ErrorKind.PERSISTENCE: 500,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DIMENSION_MISMATCH: 500,
}


# ── Request / Response schemas ────────────────────────────────────────
class SearchRequest(BaseModel):
    """Semantic query over the caller's documents."""

    query: str
    limit: int | None = Field(default=None, gt=0)
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    source_types: list[SourceType] | None = None


class UrlIngestRequest(BaseModel):
    """One or more web pages to ingest."""

    urls: list[str] = Field(min_length=1)
    chunk_options: ChunkOptions | None = None


class UrlIngestResponse(BaseModel):
    outcomes: list[IngestOutcome]
    succeeded: int
    failed: int


# ── Dependencies ──────────────────────────────────────────────────────
def get_knowledge_base(request: Request) -> KnowledgeBase:
    return request.app.state.knowledge_base


def get_owner(x_owner_id: Annotated[str | None, Header()] = None) -> str:
    """Owner identity; authentication happens upstream of this service."""
    if not x_owner_id or not x_owner_id.strip():
        raise ValidationError("Missing X-Owner-Id header", field="X-Owner-Id")
    return x_owner_id.strip()


KB = Annotated[KnowledgeBase, Depends(get_knowledge_base)]
Owner = Annotated[str, Depends(get_owner)]


def create_app(knowledge_base: KnowledgeBase | None = None) -> FastAPI:
    """Build the application.

    When *knowledge_base* is omitted it is wired from settings on first use
    of :func:`create_app`, i.e. at process start.
    """
    app = FastAPI(
        title="Knowledge RAG API",
        version="0.1.0",
        description="Document ingestion and owner-scoped semantic search.",
    )
    app.state.knowledge_base = knowledge_base or KnowledgeBase.from_settings()

    @app.exception_handler(KnowledgeBaseError)
    async def _handle_kb_error(request: Request, exc: KnowledgeBaseError) -> JSONResponse:
        status = _STATUS_BY_KIND.get(exc.kind, 500)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    def health(kb: KB) -> dict[str, str]:
        """Liveness check."""
        return {"status": "ok", "vector_backend": kb.vector_store.name}

    @app.post("/documents", response_model=IngestResult, status_code=201)
    def upload_document(
        kb: KB,
        owner: Owner,
        file: Annotated[UploadFile, File()],
        chunk_options: Annotated[str | None, Form()] = None,
    ) -> IngestResult:
        """Upload one file and ingest it."""
        options = None
        if chunk_options:
            try:
                options = json.loads(chunk_options)
            except json.JSONDecodeError as exc:
                raise ValidationError("chunk_options must be a JSON object", field="chunk_options") from exc
            if not isinstance(options, dict):
                raise ValidationError("chunk_options must be a JSON object", field="chunk_options")
        data = file.file.read()
        return kb.ingest(data, owner, file.filename or "", file.content_type, options)

    @app.post("/documents/urls", response_model=UrlIngestResponse)
    def ingest_urls(kb: KB, owner: Owner, request: UrlIngestRequest) -> UrlIngestResponse:
        """Ingest web pages by URL."""
        outcomes = kb.ingest_urls(request.urls, owner, request.chunk_options)
        succeeded = sum(1 for o in outcomes if o.ok)
        return UrlIngestResponse(outcomes=outcomes, succeeded=succeeded, failed=len(outcomes) - succeeded)

    @app.get("/documents", response_model=DocumentPage)
    def list_documents(
        kb: KB,
        owner: Owner,
        source_type: SourceType | None = None,
        format: str | None = None,
        search: str | None = None,
        offset: Annotated[int, Query(ge=0)] = 0,
        limit: Annotated[int, Query(gt=0, le=100)] = 20,
    ) -> DocumentPage:
        return kb.list_documents(
            owner, source_type=source_type, format=format, search=search, offset=offset, limit=limit
        )

    @app.get("/documents/stats", response_model=KnowledgeBaseStats)
    def get_stats(kb: KB, owner: Owner) -> KnowledgeBaseStats:
        return kb.get_stats(owner)

    @app.delete("/documents/{document_id}", status_code=204)
    def delete_document(kb: KB, owner: Owner, document_id: str) -> None:
        kb.delete_document(owner, document_id)

    @app.post("/search", response_model=SearchResponse)
    def search(kb: KB, owner: Owner, request: SearchRequest) -> SearchResponse:
        """Rank the caller's chunks against the query."""
        return kb.search(
            owner,
            request.query,
            limit=request.limit,
            threshold=request.threshold,
            source_types=request.source_types,
        )

    return app
