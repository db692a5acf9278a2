"""Relational metadata store: owners, documents, listings and statistics."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from knowledge_rag.config import Settings, get_settings
from knowledge_rag.ingestion.models import SourceType
from knowledge_rag.storage.db import (
    DocumentModel,
    OwnerModel,
    create_tables,
    get_engine,
    get_session_factory,
)

logger = logging.getLogger(__name__)

# Dialects with INSERT .. ON CONFLICT DO NOTHING; others use a savepoint.
_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


class DocumentSummary(BaseModel):
    id: str
    name: str
    source_type: SourceType
    format: str
    blob_url: str | None = None
    chunk_count: int
    content_length: int
    byte_size: int
    created_at: datetime

    @classmethod
    def from_model(cls, doc: DocumentModel) -> DocumentSummary:
        return cls(
            id=doc.id,
            name=doc.name,
            source_type=doc.source_type,
            format=doc.format,
            blob_url=doc.blob_url,
            chunk_count=doc.chunk_count,
            content_length=doc.content_length,
            byte_size=doc.byte_size,
            created_at=doc.created_at,
        )


class Pagination(BaseModel):
    total: int
    offset: int
    limit: int
    has_more: bool


class DocumentPage(BaseModel):
    documents: list[DocumentSummary] = Field(default_factory=list)
    pagination: Pagination


class KnowledgeBaseStats(BaseModel):
    document_count: int = 0
    chunk_count: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    total_bytes: int = 0


class MetadataStore:
    """Owner and document persistence on top of a SQLAlchemy session factory.

    Write methods take the :class:`~sqlalchemy.orm.Session` of the current
    unit of work and never commit on their own; read methods open a short
    read-only session and therefore only ever see committed rows.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_engine(cls, engine: Engine, *, create: bool = True) -> MetadataStore:
        if create:
            create_tables(engine)
        return cls(get_session_factory(engine))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> MetadataStore:
        settings = settings or get_settings()
        return cls.from_engine(get_engine(settings.database_url, echo=settings.database_echo))

    # -- transactions ---------------------------------------------------------

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """Open a session, commit on success, roll back on any exception."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.rollback()
            session.close()

    # -- owners ---------------------------------------------------------------

    def find_owner_id(self, session: Session, external_id: str) -> int | None:
        return session.scalar(select(OwnerModel.id).where(OwnerModel.external_id == external_id))

    def get_or_create_owner_id(self, session: Session, external_id: str) -> int:
        """Resolve *external_id*, registering the owner on first use.

        Two units of work may both miss the owner and race to insert it;
        the loser skips its insert and reads back the winner's row.
        """
        owner_id = self.find_owner_id(session, external_id)
        if owner_id is not None:
            return owner_id

        if self._register_owner(session, external_id):
            logger.info("Registered new owner %s", external_id)
        else:
            logger.debug("Owner %s was registered concurrently", external_id)

        owner_id = self.find_owner_id(session, external_id)
        if owner_id is None:
            raise RuntimeError(f"Owner {external_id} vanished after registration")
        return owner_id

    def _register_owner(self, session: Session, external_id: str) -> bool:
        """Insert the owner row unless it already exists; True if inserted."""
        upsert = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
        if upsert is not None:
            stmt = (
                upsert(OwnerModel)
                .values(external_id=external_id)
                .on_conflict_do_nothing(index_elements=[OwnerModel.external_id])
            )
            return session.execute(stmt).rowcount == 1

        try:
            with session.begin_nested():
                session.add(OwnerModel(external_id=external_id))
        except IntegrityError:
            return False
        return True

    # -- documents ------------------------------------------------------------

    def add_document(self, session: Session, **fields: Any) -> DocumentModel:
        doc = DocumentModel(**fields)
        session.add(doc)
        session.flush()
        return doc

    def get_document(self, session: Session, owner_id: int, document_id: str) -> DocumentModel | None:
        """Fetch a document only if it belongs to *owner_id*."""
        return session.scalar(
            select(DocumentModel).where(
                DocumentModel.id == document_id,
                DocumentModel.owner_id == owner_id,
            )
        )

    def delete_document(self, session: Session, doc: DocumentModel) -> None:
        session.delete(doc)
        session.flush()

    def list_documents(
        self,
        external_owner: str,
        *,
        source_type: SourceType | str | None = None,
        format: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> DocumentPage:
        """Newest-first page of the owner's committed documents."""
        offset = max(0, offset)
        limit = max(1, limit)
        with self.read_session() as session:
            owner_id = self.find_owner_id(session, external_owner)
            if owner_id is None:
                return DocumentPage(pagination=Pagination(total=0, offset=offset, limit=limit, has_more=False))

            stmt = select(DocumentModel).where(DocumentModel.owner_id == owner_id)
            if source_type:
                stmt = stmt.where(DocumentModel.source_type == SourceType(source_type))
            if format:
                stmt = stmt.where(DocumentModel.format == format.lower())
            if search:
                stmt = stmt.where(func.lower(DocumentModel.name).contains(search.lower(), autoescape=True))

            total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
            rows = session.scalars(
                stmt.order_by(DocumentModel.created_at.desc(), DocumentModel.id).offset(offset).limit(limit)
            ).all()

            return DocumentPage(
                documents=[DocumentSummary.from_model(d) for d in rows],
                pagination=Pagination(
                    total=total,
                    offset=offset,
                    limit=limit,
                    has_more=offset + limit < total,
                ),
            )

    def get_stats(self, external_owner: str) -> KnowledgeBaseStats:
        with self.read_session() as session:
            owner_id = self.find_owner_id(session, external_owner)
            if owner_id is None:
                return KnowledgeBaseStats()

            rows = session.execute(
                select(
                    DocumentModel.source_type,
                    func.count(DocumentModel.id),
                    func.coalesce(func.sum(DocumentModel.chunk_count), 0),
                    func.coalesce(func.sum(DocumentModel.byte_size), 0),
                )
                .where(DocumentModel.owner_id == owner_id)
                .group_by(DocumentModel.source_type)
            ).all()

            stats = KnowledgeBaseStats()
            for source_type, docs, chunks, size in rows:
                stats.by_type[SourceType(source_type).value] = int(docs)
                stats.document_count += int(docs)
                stats.chunk_count += int(chunks)
                stats.total_bytes += int(size)
            return stats

    def document_summaries(self, session: Session, document_ids: set[str]) -> dict[str, DocumentSummary]:
        if not document_ids:
            return {}
        rows = session.scalars(select(DocumentModel).where(DocumentModel.id.in_(document_ids))).all()
        return {d.id: DocumentSummary.from_model(d) for d in rows}
