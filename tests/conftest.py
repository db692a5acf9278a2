"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from langchain_core.embeddings import Embeddings

from knowledge_rag.config import Settings
from knowledge_rag.ingestion.embedder import EmbeddingBatcher
from knowledge_rag.ingestion.extractor import DocumentExtractor
from knowledge_rag.knowledge_base import KnowledgeBase
from knowledge_rag.retrieval.scan_store import ScanVectorStore
from knowledge_rag.storage.db import get_engine
from knowledge_rag.storage.metadata_store import MetadataStore
from tests.fakes import DIMS, FakeEmbeddings, InMemoryBlobStore


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        vector_backend="scan",
        embedding_dimensions=DIMS,
        embedding_batch_pause_seconds=0.0,
        url_batch_pause_seconds=0.0,
        default_search_threshold=0.5,
    )


@pytest.fixture()
def metadata_store(settings: Settings) -> MetadataStore:
    return MetadataStore.from_engine(get_engine(settings.database_url))


@pytest.fixture()
def fake_embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture()
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def make_kb(
    settings: Settings,
    metadata_store: MetadataStore,
    blob_store: InMemoryBlobStore,
) -> Callable[..., KnowledgeBase]:
    """Factory so tests can swap the provider or vector store."""

    def _make(
        embeddings: Embeddings | None = None,
        vector_store=None,  # noqa: ANN001
        batch_size: int = 100,
        no_provider: bool = False,
    ) -> KnowledgeBase:
        if not no_provider and embeddings is None:
            embeddings = FakeEmbeddings()
        return KnowledgeBase(
            extractor=DocumentExtractor(max_file_size=settings.max_file_size_bytes, sleep=lambda _: None),
            batcher=EmbeddingBatcher(
                embeddings,
                dims=DIMS,
                batch_size=batch_size,
                pause_seconds=0.0,
                model_name="fake-embeddings",
            ),
            blob_store=blob_store,
            metadata_store=metadata_store,
            vector_store=vector_store or ScanVectorStore(DIMS),
            settings=settings,
            sleep=lambda _: None,
        )

    return _make


@pytest.fixture()
def kb(make_kb: Callable[..., KnowledgeBase]) -> KnowledgeBase:
    return make_kb()
