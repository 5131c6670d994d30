"""Unit tests for the serving layer."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from docrag.config import Settings
from docrag.exceptions import ExternalServiceError, ExternalServiceUnavailable, PersistenceError, ValidationError
from docrag.serving.app import create_app, status_for
from docrag.services import build_services

LONG_TEXT = "The sky is blue today. Water is wet and cold. Cats are small mammals. Dogs bark at night loudly."


@pytest.fixture()
def services(engine, provider_cls, fake_generator, tmp_path):
    config = Settings(
        database_url="sqlite://",
        upload_dir=str(tmp_path / "uploads"),
        embedding_dimension=8,
        chunk_target_words=8,
        chunk_overlap_words=2,
        chunk_min_words=2,
        min_index_chars=20,
        ingestion_workers=1,
        vector_backend="sql",
    )
    svc = build_services(config, engine=engine, embedding_provider=provider_cls(), generator=fake_generator)
    yield svc
    svc.pipeline.shutdown(wait=True)


@pytest.fixture()
def client(services) -> TestClient:
    return TestClient(create_app(services))


@pytest.fixture()
def indexed_doc(services) -> int:
    doc_id = services.lifecycle.create(original_name="sky.txt", mime_type="text/plain", file_size=len(LONG_TEXT))
    services.lifecycle.begin_processing(doc_id)
    services.lifecycle.complete_extraction(doc_id, LONG_TEXT, "direct", 100.0)
    services.pipeline.index_document(doc_id)
    return doc_id


def test_health_endpoint(client) -> None:
    """GET /health should return 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "vector_index": True, "generation": True}


class TestUpload:
    def test_upload_is_accepted_then_processed(self, client, services) -> None:
        response = client.post("/api/upload", files={"document": ("notes.txt", LONG_TEXT.encode(), "text/plain")})

        assert response.status_code == 202
        data = response.json()["data"]
        assert data["filename"] == "notes.txt"
        assert data["status"] == "processing"

        services.pipeline.shutdown(wait=True)
        doc = client.get(f"/api/documents/{data['document_id']}").json()["document"]
        assert doc["status"] == "completed"
        assert doc["extraction_method"] == "direct"

        info = client.get(f"/api/index/{data['document_id']}").json()
        assert info["indexed"] is True
        assert info["chunks_count"] == len(info["chunks"]) > 0
        assert [c["index"] for c in info["chunks"]] == list(range(info["chunks_count"]))

    def test_missing_file(self, client) -> None:
        response = client.post("/api/upload")
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_unsupported_type(self, client) -> None:
        response = client.post("/api/upload", files={"document": ("archive.zip", b"PK\x03\x04", "application/zip")})
        assert response.status_code == 400
        assert "not allowed" in response.json()["error"]

    def test_webhook(self, client, services) -> None:
        download = MagicMock(headers={"content-type": "text/plain"})
        download.iter_content.return_value = [LONG_TEXT.encode()]
        download.raise_for_status.return_value = None

        with patch("docrag.ingestion.pipeline.requests.get", return_value=download):
            response = client.post(
                "/api/webhook/ingest",
                json={"document_url": "https://example.com/sky.txt", "filename": "sky.txt"},
            )
            assert response.status_code == 202
            services.pipeline.shutdown(wait=True)

        doc_id = response.json()["data"]["document_id"]
        doc = client.get(f"/api/documents/{doc_id}").json()["document"]
        assert doc["status"] == "completed"
        assert doc["source_url"] == "https://example.com/sky.txt"

    def test_batch_upload(self, client, services) -> None:
        files = [
            ("documents", ("sky.txt", LONG_TEXT.encode(), "text/plain")),
            ("documents", ("water.txt", LONG_TEXT.encode(), "text/plain")),
        ]
        response = client.post("/api/upload/batch", files=files)

        assert response.status_code == 202
        data = response.json()["data"]
        assert [d["filename"] for d in data] == ["sky.txt", "water.txt"]
        assert len({d["document_id"] for d in data}) == 2

        services.pipeline.shutdown(wait=True)
        for item in data:
            doc = client.get(f"/api/documents/{item['document_id']}").json()["document"]
            assert doc["status"] == "completed"

    def test_batch_requires_files(self, client) -> None:
        response = client.post("/api/upload/batch")
        assert response.status_code == 400
        assert "No files uploaded" in response.json()["error"]

    def test_batch_file_limit(self, client, services) -> None:
        files = [("documents", (f"doc{i}.txt", LONG_TEXT.encode(), "text/plain")) for i in range(11)]
        response = client.post("/api/upload/batch", files=files)
        assert response.status_code == 400
        assert response.json()["error"] == "At most 10 files per batch"
        assert services.lifecycle.list_documents() == []

    def test_batch_rejected_as_a_whole(self, client, services) -> None:
        files = [
            ("documents", ("sky.txt", LONG_TEXT.encode(), "text/plain")),
            ("documents", ("archive.zip", b"PK\x03\x04", "application/zip")),
        ]
        response = client.post("/api/upload/batch", files=files)
        assert response.status_code == 400
        assert "not allowed" in response.json()["error"]
        assert services.lifecycle.list_documents() == []

    def test_webhook_requires_url(self, client) -> None:
        response = client.post("/api/webhook/ingest", json={"filename": "x.pdf"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "document_url is required"}


class TestDocuments:
    def test_list_and_stats(self, client, indexed_doc, services) -> None:
        services.lifecycle.create(original_name="pending.txt")

        listing = client.get("/api/documents", params={"status": "completed"}).json()
        assert listing["count"] == 1
        assert listing["documents"][0]["id"] == indexed_doc

        stats = client.get("/api/documents/stats/summary").json()["stats"]
        assert stats["total"] == 2
        assert stats["completed"] == 1
        assert stats["pending"] == 1

    def test_invalid_status_filter(self, client) -> None:
        assert client.get("/api/documents", params={"status": "archived"}).status_code == 400

    def test_unknown_document(self, client) -> None:
        response = client.get("/api/documents/999")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Document not found: 999"}

    def test_text(self, client, indexed_doc, services) -> None:
        body = client.get(f"/api/documents/{indexed_doc}/text").json()
        assert body["text"] == LONG_TEXT
        assert body["method"] == "direct"

        pending = services.lifecycle.create(original_name="pending.txt")
        assert client.get(f"/api/documents/{pending}/text").status_code == 409

    def test_delete(self, client, indexed_doc, services) -> None:
        response = client.delete(f"/api/documents/{indexed_doc}")
        assert response.status_code == 200
        assert client.get(f"/api/documents/{indexed_doc}").status_code == 404
        assert services.chunks.count_for_document(indexed_doc) == 0
        assert services.index.count_vectors() == 0


class TestIndex:
    def test_trigger_gate(self, client, services) -> None:
        pending = services.lifecycle.create(original_name="pending.txt")
        assert client.post(f"/api/index/{pending}").status_code == 409
        assert client.post("/api/index/999").status_code == 404

        short = services.lifecycle.create(original_name="short.txt")
        services.lifecycle.complete_extraction(short, "tiny", "direct")
        assert client.post(f"/api/index/{short}").status_code == 422

    def test_trigger_reindex(self, client, indexed_doc, services) -> None:
        before = services.chunks.count_for_document(indexed_doc)
        response = client.post(f"/api/index/{indexed_doc}")
        assert response.status_code == 202
        assert response.json()["data"]["status"] == "indexing"
        services.pipeline.shutdown(wait=True)
        assert services.chunks.count_for_document(indexed_doc) == before

    def test_trigger_while_indexing(self, client, indexed_doc, services) -> None:
        services.pipeline._claim(indexed_doc)
        try:
            response = client.post(f"/api/index/{indexed_doc}")
        finally:
            services.pipeline._release(indexed_doc)
        assert response.status_code == 409
        assert response.json()["error"] == "Document is already being indexed"
        assert client.post(f"/api/index/{indexed_doc}").status_code == 202

    def test_stats_and_delete(self, client, indexed_doc) -> None:
        stats = client.get("/api/index/stats/summary").json()["stats"]
        assert stats["indexed_documents"] == 1
        assert stats["total_chunks"] == stats["total_embeddings"] > 0

        assert client.delete(f"/api/index/{indexed_doc}").status_code == 200
        info = client.get(f"/api/index/{indexed_doc}").json()
        assert info["indexed"] is False
        assert info["chunks"] == []


class TestSearchAndQuery:
    def test_search(self, client, indexed_doc) -> None:
        body = client.get("/api/search", params={"q": "The sky is blue today.", "limit": 3}).json()
        assert body["results_count"] == len(body["data"]) >= 1
        assert body["data"][0]["document_id"] == indexed_doc
        assert body["data"][0]["filename"] == "sky.txt"

    def test_search_requires_query(self, client) -> None:
        assert client.get("/api/search").status_code == 400

    def test_query_answer(self, client, indexed_doc) -> None:
        response = client.post("/api/query", json={"query": "The sky is blue today.", "limit": 2})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["no_results"] is False
        assert body["answer"] == "The sky is blue [1]."
        assert body["sources"][0]["filename"] == "sky.txt"
        assert body["metadata"]["chunks_retrieved"] == len(body["sources"])
        assert body["metadata"]["tokens_generated"] == 7

    def test_query_without_index_is_no_results(self, client) -> None:
        response = client.post("/api/query", json={"query": "anything?"})
        assert response.status_code == 200
        body = response.json()
        assert body["no_results"] is True
        assert body["sources"] == []

    def test_query_requires_text(self, client) -> None:
        response = client.post("/api/query", json={"query": "  "})
        assert response.status_code == 400
        assert response.json()["error"] == "Query is required"

    def test_query_generator_unavailable(self, client, services, monkeypatch) -> None:
        monkeypatch.setattr(services.generator, "_available", False)
        assert client.post("/api/query", json={"query": "hello?"}).status_code == 503

    def test_models(self, client) -> None:
        assert client.get("/api/query/models").json()["models"] == ["fake-model", "fake-model-large"]


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (ValidationError("bad"), 400),
        (ExternalServiceUnavailable("generation", "down"), 503),
        (ExternalServiceError("embedding", "broken"), 502),
        (PersistenceError("disk full"), 500),
    ],
)
def test_status_mapping(error, status) -> None:
    assert status_for(error) == status
