"""Chroma implementation of the vector-index abstraction."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import chromadb

from docrag.config import settings
from docrag.exceptions import ExternalServiceError, ValidationError
from docrag.retrieval.base import VectorIndexBase, rank_hits, similarity_from_distance
from docrag.retrieval.models import MetadataFilter, SearchHit
from docrag.storage.chunks import ChunkStore
from docrag.storage.documents import DocumentRepository
from docrag.storage.models import DocumentStatus

logger = logging.getLogger(__name__)


_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(f: MetadataFilter) -> dict[str, Any]:
    """Convert a :class:`MetadataFilter` to Chroma ``where`` syntax."""
    chroma_op = _OP_MAP.get(f.operator)
    if chroma_op is None:
        raise ValidationError(f"Unsupported filter operator: {f.operator!r}", field="operator")
    return {f.field: {chroma_op: f.value}}


class ChromaVectorIndex(VectorIndexBase):
    """Chroma-backed vector index.

    Chunk rows stay in the record store; Chroma holds one entry per
    chunk keyed by the chunk id, with ``doc_id``, ``chunk_index`` and
    ``word_count`` as metadata.  The collection uses the cosine space so
    returned distances fit :func:`similarity_from_distance`.

    Parameters
    ----------
    chunk_store:
        Record-store access for chunk rows.
    documents:
        Used to restrict search to ``completed`` documents and to
        resolve file names.
    collection_name:
        Name of the Chroma collection.
    host, port:
        Chroma server address (ignored when *client* is given).
    dimension:
        Expected vector width.
    client:
        Pre-built Chroma client, e.g. an ``EphemeralClient`` or a test double.
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        documents: DocumentRepository,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        dimension: int | None = None,
        client: Any | None = None,
    ) -> None:
        super().__init__(chunk_store, dimension=dimension)
        self._documents = documents
        self.collection_name = collection_name
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            collection_name, metadata={"hnsw:space": "cosine"}
        )

    # -- VectorIndexBase overrides --------------------------------------------

    def store_vectors(self, chunk_ids: Sequence[int], vectors: Sequence[Sequence[float] | None]) -> int:
        pairs = self._validate_store_args(chunk_ids, vectors)
        if not pairs:
            logger.warning("No embeddings to store for %d chunks", len(chunk_ids))
            return 0

        chunks = {c.id: c for c in self._chunks.get_many([cid for cid, _ in pairs])}
        missing = [cid for cid, _ in pairs if cid not in chunks]
        if missing:
            raise ValidationError(f"Unknown chunk ids: {missing}", field="chunk_ids")

        # One upsert call so the batch lands as a unit.
        try:
            self._collection.upsert(
                ids=[str(cid) for cid, _ in pairs],
                embeddings=[values for _, values in pairs],
                documents=[chunks[cid].chunk_text for cid, _ in pairs],
                metadatas=[
                    {
                        "doc_id": chunks[cid].doc_id,
                        "chunk_index": chunks[cid].chunk_index,
                        "word_count": chunks[cid].word_count,
                    }
                    for cid, _ in pairs
                ],
            )
        except Exception as exc:
            raise ExternalServiceError("vector-index", f"Chroma upsert failed: {exc}") from exc

        logger.info("Stored %d embeddings in Chroma (%d skipped)", len(pairs), len(chunk_ids) - len(pairs))
        return len(pairs)

    def search_top_k(
        self,
        query_vector: Sequence[float],
        *,
        k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[SearchHit]:
        query = self._validate_query(query_vector, k)

        completed = {d.id: d for d in self._documents.list_all(status=DocumentStatus.COMPLETED)}
        if not completed:
            return []
        where = _build_chroma_where(MetadataFilter.one_of("doc_id", sorted(completed)))

        # Over-fetch so ties at the cut-off can be ordered by chunk id.
        n_results = max(1, min(k * 2, self.count_vectors()))
        try:
            results = self._collection.query(
                query_embeddings=[query.tolist()],
                n_results=n_results,
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise ExternalServiceError("vector-index", f"Chroma query failed: {exc}") from exc

        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        hits: list[SearchHit] = []
        for chunk_id, content, meta, dist in zip(ids, docs, metas, distances):
            meta = meta or {}
            document = completed.get(int(meta.get("doc_id", -1)))
            if document is None:
                continue
            hits.append(
                SearchHit(
                    chunk_id=int(chunk_id),
                    doc_id=document.id,
                    filename=document.original_name,
                    text=content or "",
                    chunk_index=int(meta.get("chunk_index", 0)),
                    word_count=int(meta.get("word_count", 0)),
                    similarity=similarity_from_distance(float(dist)),
                    file_type=document.mime_type,
                )
            )

        results_ranked = rank_hits(hits, k=k, min_similarity=min_similarity)
        logger.info("Found %d similar chunks in Chroma", len(results_ranked))
        return results_ranked

    def delete_for_document(self, doc_id: int) -> int:
        if self._chunks.count_for_document(doc_id) == 0:
            return 0
        # Chroma entries first; the chunk rows are what find them again.
        try:
            self._collection.delete(where=_build_chroma_where(MetadataFilter.equals("doc_id", doc_id)))
        except Exception as exc:
            raise ExternalServiceError("vector-index", f"Chroma delete failed: {exc}") from exc
        deleted = self._chunks.delete_for_document(doc_id)
        logger.info("Deleted %d chunks for document %d", deleted, doc_id)
        return deleted

    def count_vectors(self) -> int:
        return int(self._collection.count())

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
