"""Unit tests for the Chroma vector index (Chroma client mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from docrag.exceptions import ExternalServiceError, ValidationError
from docrag.retrieval.chroma_store import ChromaVectorIndex, _build_chroma_where
from docrag.retrieval.models import MetadataFilter

TEXT = "The sky is blue. Water is wet. Cats are mammals."


@pytest.fixture()
def collection() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def client(collection) -> MagicMock:
    client = MagicMock()
    client.get_or_create_collection.return_value = collection
    return client


@pytest.fixture()
def index(chunk_store, documents, client) -> ChromaVectorIndex:
    return ChromaVectorIndex(chunk_store, documents, "docrag-test", dimension=2, client=client)


class TestWhereClause:
    def test_one_of(self) -> None:
        assert _build_chroma_where(MetadataFilter.one_of("doc_id", [1, 2])) == {"doc_id": {"$in": [1, 2]}}

    def test_equals(self) -> None:
        assert _build_chroma_where(MetadataFilter.equals("doc_id", 1)) == {"doc_id": {"$eq": 1}}

    def test_unsupported_operator(self) -> None:
        with pytest.raises(ValidationError):
            _build_chroma_where(MetadataFilter(field="x", operator="like", value="y"))


class TestChromaVectorIndex:
    def test_collection_uses_cosine_space(self, index, client) -> None:
        client.get_or_create_collection.assert_called_once_with("docrag-test", metadata={"hnsw:space": "cosine"})

    def test_store_vectors_upserts_present_vectors(self, index, collection, make_document, chunk_store) -> None:
        doc_id = make_document(text=TEXT)
        chunk_ids = chunk_store.add_chunks(doc_id, ["first chunk", "second chunk here"])

        assert index.store_vectors(chunk_ids, [[1.0, 0.0], None]) == 1

        collection.upsert.assert_called_once()
        kwargs = collection.upsert.call_args.kwargs
        assert kwargs["ids"] == [str(chunk_ids[0])]
        assert kwargs["embeddings"] == [[1.0, 0.0]]
        assert kwargs["documents"] == ["first chunk"]
        assert kwargs["metadatas"] == [{"doc_id": doc_id, "chunk_index": 0, "word_count": 2}]

    def test_store_unknown_chunk(self, index) -> None:
        with pytest.raises(ValidationError):
            index.store_vectors([999], [[1.0, 0.0]])

    def test_upsert_failure_is_external_error(self, index, collection, make_document, chunk_store) -> None:
        chunk_ids = chunk_store.add_chunks(make_document(text=TEXT), ["chunk"])
        collection.upsert.side_effect = RuntimeError("server down")
        with pytest.raises(ExternalServiceError):
            index.store_vectors(chunk_ids, [[1.0, 0.0]])

    def test_search_restricts_to_completed_and_ranks(self, index, collection, make_document) -> None:
        done = make_document("done.txt", text=TEXT)
        make_document("pending.txt")
        collection.count.return_value = 3
        collection.query.return_value = {
            "ids": [["12", "11", "13"]],
            "documents": [["second", "first", "ghost"]],
            "metadatas": [
                [
                    {"doc_id": done, "chunk_index": 1, "word_count": 1},
                    {"doc_id": done, "chunk_index": 0, "word_count": 1},
                    {"doc_id": 999, "chunk_index": 0, "word_count": 1},
                ]
            ],
            "distances": [[0.2, 0.0, 0.0]],
        }

        hits = index.search_top_k([1.0, 0.0], k=5, min_similarity=0.5)

        kwargs = collection.query.call_args.kwargs
        assert kwargs["where"] == {"doc_id": {"$in": [done]}}
        assert kwargs["n_results"] == 3
        assert [h.chunk_id for h in hits] == [11, 12]
        assert hits[0].similarity == pytest.approx(1.0)
        assert hits[1].similarity == pytest.approx(0.9)
        assert hits[0].filename == "done.txt"

    def test_search_without_completed_documents(self, index, collection, make_document) -> None:
        make_document("pending.txt")
        assert index.search_top_k([1.0, 0.0], k=5) == []
        collection.query.assert_not_called()

    def test_delete_for_document(self, index, collection, make_document, chunk_store) -> None:
        doc_id = make_document(text=TEXT)
        chunk_store.add_chunks(doc_id, ["a", "b"])

        assert index.delete_for_document(doc_id) == 2

        collection.delete.assert_called_once_with(where={"doc_id": {"$eq": doc_id}})
        assert chunk_store.count_for_document(doc_id) == 0

    def test_replace_document(self, index, collection, make_document, chunk_store) -> None:
        doc_id = make_document(text=TEXT)
        old_ids = chunk_store.add_chunks(doc_id, ["old a", "old b"])

        new_ids, stored = index.replace_document(doc_id, ["new chunk"], [[0.0, 1.0]])

        assert stored == 1
        collection.delete.assert_called_once_with(where={"doc_id": {"$eq": doc_id}})
        assert collection.upsert.call_args.kwargs["ids"] == [str(new_ids[0])]
        assert new_ids[0] not in old_ids
        assert [c.chunk_text for c in chunk_store.list_for_document(doc_id)] == ["new chunk"]

    def test_replace_with_bad_vectors_touches_nothing(self, index, collection, make_document, chunk_store) -> None:
        doc_id = make_document(text=TEXT)
        chunk_store.add_chunks(doc_id, ["old a"])
        with pytest.raises(ValidationError):
            index.replace_document(doc_id, ["new"], [[1.0, 0.0, 0.0]])
        collection.delete.assert_not_called()
        assert chunk_store.count_for_document(doc_id) == 1

    def test_delete_without_chunks_skips_chroma(self, index, collection, make_document) -> None:
        assert index.delete_for_document(make_document(text=TEXT)) == 0
        collection.delete.assert_not_called()

    def test_health_check(self, index, client) -> None:
        assert index.health_check() is True
        client.heartbeat.side_effect = ConnectionError("refused")
        assert index.health_check() is False
