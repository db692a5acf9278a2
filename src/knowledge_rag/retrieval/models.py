"""Domain models for retrieval results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from knowledge_rag.storage.metadata_store import DocumentSummary


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"owner_id"``, ``"source_type"``).
    operator:
        Comparison operator, one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)


class ChunkRecord(BaseModel):
    """A stored chunk as seen by the ranker."""

    chunk_id: str
    document_id: str
    ordinal: int
    text: str
    vector: list[float] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ScoredChunk(BaseModel):
    chunk: ChunkRecord
    score: float


class SearchResult(BaseModel):
    """One ranked chunk returned to the caller."""

    chunk_id: str
    document_id: str
    ordinal: int
    text: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)
    document: DocumentSummary | None = None

    def __str__(self) -> str:  # noqa: D105
        name = self.document.name if self.document else self.document_id
        return f"[{name}§{self.ordinal}] ({self.score:.3f}) {self.text[:120]}…"


class SearchResponse(BaseModel):
    """Ranked results plus a flag telling whether the query vector was degraded."""

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    query_degraded: bool = False
    threshold: float
    limit: int
