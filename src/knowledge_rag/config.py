"""Shared configuration loaded from environment / ``.env``."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Relational store
    database_url: str = Field(
        default="sqlite:///./knowledge_rag.db",
        description="SQLAlchemy URL for owner / document / chunk metadata",
    )
    database_echo: bool = False

    # Vector store
    vector_backend: str = Field(
        default="auto",
        description=(
            "Vector backend: 'chroma' (native index), 'scan' (brute-force over "
            "the relational store) or 'auto' (chroma when reachable)."
        ),
    )
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "knowledge_chunks"
    chroma_overfetch: int = Field(
        default=4,
        description="Multiplier applied to the result limit when querying Chroma",
    )

    # Embedding
    embedding_provider: str = Field(default="openai", description="'openai' or 'huggingface'")
    openai_api_key: str = Field(default="", description="OpenAI API key; empty means degraded embeddings")
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100
    embedding_batch_pause_seconds: float = 0.2

    # Blob store
    s3_bucket_name: str = "knowledge-base"
    s3_region: str = "us-east-1"
    s3_endpoint_url: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_public_base_url: str = ""

    # Ingestion
    max_file_size_bytes: int = 50 * 1024 * 1024
    url_fetch_timeout: int = 30
    url_fetch_retries: int = 3
    url_batch_pause_seconds: float = 1.0

    # Search
    default_search_limit: int = 10
    default_search_threshold: float = 0.5

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""
    return Settings()
