"""Domain models for the ingestion side of the knowledge base."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_SEPARATORS: list[str] = ["\n\n", "\n", ". ", "! ", "? ", "; ", " "]


class SourceType(str, enum.Enum):
    """Kind of source a document was extracted from."""

    PDF = "pdf"
    DOCX = "docx"
    TEXT = "text"
    AUDIO = "audio"
    VIDEO = "video"
    WEBPAGE = "webpage"


class IngestStage(str, enum.Enum):
    """Lifecycle of a single ingestion request."""

    VALIDATING = "validating"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class ChunkOptions(BaseModel):
    """Chunking configuration.

    Attributes
    ----------
    chunk_size:
        Target maximum number of characters per chunk.  A chunk may exceed
        it by the length of the separator it was cut on.
    overlap:
        Number of characters re-read at the start of the next window.
    separators:
        Natural boundaries to cut on, highest priority first.
    max_chunks:
        Safety valve; chunking stops once this many chunks were emitted.
    """

    chunk_size: int = Field(default=1000, gt=0)
    overlap: int = Field(default=200, ge=0)
    separators: list[str] = Field(default_factory=lambda: list(DEFAULT_SEPARATORS))
    max_chunks: int = Field(default=1000, gt=0)

    @field_validator("separators")
    @classmethod
    def _no_empty_separator(cls, value: list[str]) -> list[str]:
        if any(sep == "" for sep in value):
            raise ValueError("separators must not contain the empty string")
        return value


class Extraction(BaseModel):
    """Output of the extractor: plain text plus what is known about the source."""

    text: str
    source_type: SourceType
    format: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class EmbeddedChunk(BaseModel):
    """One chunk with its vector; ``index`` matches the chunk's ordinal."""

    index: int
    text: str
    vector: list[float]
    dims: int
    degraded: bool = False
    model: str | None = None
    char_count: int = 0
    word_count: int = 0

    def chunk_metadata(self) -> dict[str, Any]:
        return {
            "length": self.char_count,
            "word_count": self.word_count,
            "degraded": self.degraded,
            "model": self.model,
        }


class IngestResult(BaseModel):
    """Summary returned to the caller after a committed ingestion."""

    document_id: str
    owner: str
    name: str
    source_type: SourceType
    format: str
    blob_key: str
    blob_url: str | None = None
    byte_size: int
    content_length: int
    chunk_count: int
    degraded_chunks: int = 0
    created_at: datetime

    @property
    def degraded(self) -> bool:
        return self.degraded_chunks > 0


class IngestOutcome(BaseModel):
    """Per-source result of a multi-URL ingestion."""

    source: str
    result: IngestResult | None = None
    error: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None
