"""Document ingestion and owner-scoped semantic retrieval."""

__version__ = "0.1.0"
