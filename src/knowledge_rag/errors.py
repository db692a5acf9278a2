"""Error taxonomy for the knowledge base.

Every error carries an :class:`ErrorKind` tag so callers (HTTP layer,
batch jobs, tests) branch on ``exc.kind`` instead of inspecting message
text.  ``details`` holds structured context for logging and responses.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    UNSUPPORTED_FILE_TYPE = "unsupported_file_type"
    EXTRACTION = "extraction"
    EMBEDDING_PROVIDER = "embedding_provider"
    PERSISTENCE = "persistence"
    NOT_FOUND = "not_found"
    DIMENSION_MISMATCH = "dimension_mismatch"


class KnowledgeBaseError(Exception):
    """Base class for all knowledge-base errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class ValidationError(KnowledgeBaseError):
    """Input rejected before any external call was made."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)


class UnsupportedFileType(KnowledgeBaseError):
    kind = ErrorKind.UNSUPPORTED_FILE_TYPE

    def __init__(self, filename: str, mimetype: str | None = None) -> None:
        super().__init__(
            f"Unsupported file type: {filename}",
            {"filename": filename, "mimetype": mimetype},
        )


class ExtractionFailure(KnowledgeBaseError):
    """Text could not be extracted; fatal for that document."""

    kind = ErrorKind.EXTRACTION


class EmbeddingProviderFailure(KnowledgeBaseError):
    """The embedding provider failed for one batch (recoverable)."""

    kind = ErrorKind.EMBEDDING_PROVIDER


class PersistenceFailure(KnowledgeBaseError):
    """A storage write failed and the whole ingestion was rolled back.

    ``details["created"]`` is always ``False``: nothing from the attempt
    is visible and the request is safe to retry.
    """

    kind = ErrorKind.PERSISTENCE

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details.setdefault("created", False)
        super().__init__(message, details)


class NotFoundError(KnowledgeBaseError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            f"{resource} not found: {identifier}",
            {"resource": resource, "id": identifier},
        )


class DimensionMismatchError(KnowledgeBaseError):
    """Query and stored vectors disagree on length; never truncated."""

    kind = ErrorKind.DIMENSION_MISMATCH

    def __init__(self, expected: int, actual: int, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details.update({"expected": expected, "actual": actual})
        super().__init__(
            f"Vector dimensionality mismatch: expected {expected}, got {actual}",
            details,
        )
