"""Unit tests for the serving layer."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from knowledge_rag.knowledge_base import KnowledgeBase
from knowledge_rag.serving.app import create_app

ALICE = {"X-Owner-Id": "alice"}
BOB = {"X-Owner-Id": "bob"}


@pytest.fixture()
def client(kb: KnowledgeBase) -> TestClient:
    return TestClient(create_app(kb))


def _upload(client: TestClient, content: bytes, name: str = "refunds.txt", headers=ALICE, **data):  # noqa: ANN001, ANN003, ANN201
    return client.post("/documents", headers=headers, files={"file": (name, content, "text/plain")}, data=data)


def test_health_endpoint(client: TestClient) -> None:
    """GET /health should return 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "vector_backend": "scan"}


def test_missing_owner_header(client: TestClient) -> None:
    response = client.get("/documents")
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "validation"


def test_upload_and_search(client: TestClient) -> None:
    upload = _upload(client, b"Our refund policy allows returns.")
    assert upload.status_code == 201
    body = upload.json()
    assert body["chunk_count"] == 1
    assert body["source_type"] == "text"

    response = client.post("/search", headers=ALICE, json={"query": "refund"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["query_degraded"] is False
    assert [r["document_id"] for r in payload["results"]] == [body["document_id"]]
    assert payload["results"][0]["document"]["name"] == "refunds.txt"


def test_search_is_owner_scoped(client: TestClient) -> None:
    _upload(client, b"Our refund policy allows returns.")
    response = client.post("/search", headers=BOB, json={"query": "refund"})
    assert response.json()["results"] == []


def test_upload_with_chunk_options(client: TestClient) -> None:
    text = b"Refund requests are reviewed daily. " * 20
    response = _upload(client, text, chunk_options=json.dumps({"chunk_size": 100, "overlap": 10}))
    assert response.status_code == 201
    assert response.json()["chunk_count"] > 1


def test_upload_with_malformed_chunk_options(client: TestClient) -> None:
    response = _upload(client, b"refund", chunk_options="{not json")
    assert response.status_code == 400


@pytest.mark.parametrize("raw", ["[1, 2]", "5", '"big"'])
def test_upload_with_non_object_chunk_options(client: TestClient, raw: str) -> None:
    response = _upload(client, b"refund", chunk_options=raw)
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "validation"


def test_unsupported_type(client: TestClient) -> None:
    response = client.post(
        "/documents",
        headers=ALICE,
        files={"file": ("setup.exe", b"MZ", "application/octet-stream")},
    )
    assert response.status_code == 415
    assert response.json()["error"]["kind"] == "unsupported_file_type"


def test_empty_text_is_unprocessable(client: TestClient) -> None:
    response = _upload(client, b"   ")
    assert response.status_code == 422


def test_list_stats_and_delete(client: TestClient) -> None:
    document_id = _upload(client, b"Our refund policy allows returns.").json()["document_id"]

    listing = client.get("/documents", headers=ALICE, params={"source_type": "text"})
    assert listing.status_code == 200
    assert listing.json()["pagination"]["total"] == 1

    stats = client.get("/documents/stats", headers=ALICE).json()
    assert stats["document_count"] == 1
    assert stats["by_type"] == {"text": 1}

    assert client.delete(f"/documents/{document_id}", headers=BOB).status_code == 404
    assert client.delete(f"/documents/{document_id}", headers=ALICE).status_code == 204
    assert client.delete(f"/documents/{document_id}", headers=ALICE).status_code == 404


def test_persistence_failure_is_500(client: TestClient, blob_store) -> None:  # noqa: ANN001
    blob_store.fail_on_put = True
    response = _upload(client, b"Our refund policy allows returns.")
    assert response.status_code == 500
    assert response.json()["error"]["details"]["created"] is False


def test_url_ingestion(client: TestClient) -> None:
    page = MagicMock()
    page.text = "<html><body><p>shipping details</p></body></html>"
    page.headers = {}
    page.status_code = 200
    page.raise_for_status.return_value = None

    with patch("knowledge_rag.ingestion.extractor.requests.get", return_value=page):
        response = client.post("/documents/urls", headers=ALICE, json={"urls": ["https://example.com/ship"]})

    assert response.status_code == 200
    body = response.json()
    assert body["succeeded"] == 1
    assert body["failed"] == 0
    assert body["outcomes"][0]["result"]["source_type"] == "webpage"


def test_search_request_validation(client: TestClient) -> None:
    response = client.post("/search", headers=ALICE, json={"query": "refund", "limit": 0})
    assert response.status_code == 422
