"""Vector index stored in the relational record store.

Vectors are kept as JSON arrays in the ``embeddings`` table and scored
in-process with numpy, so search, chunk rows and document status are
always read from one consistent snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
from sqlalchemy import delete, func, select, text
from sqlalchemy.orm import Session

from docrag.exceptions import ValidationError
from docrag.retrieval.base import VectorIndexBase, cosine_distances, rank_hits, similarity_from_distance
from docrag.retrieval.models import SearchHit
from docrag.storage.chunks import ChunkStore
from docrag.storage.db import session_scope
from docrag.storage.models import ChunkRecord, DocumentRecord, DocumentStatus, EmbeddingRecord

logger = logging.getLogger(__name__)


def _delete_vector_rows(session: Session, doc_id: int) -> None:
    chunk_ids = select(ChunkRecord.id).where(ChunkRecord.doc_id == doc_id)
    session.execute(
        delete(EmbeddingRecord)
        .where(EmbeddingRecord.chunk_id.in_(chunk_ids))
        .execution_options(synchronize_session=False)
    )


class SqlVectorIndex(VectorIndexBase):
    """Default backend: exact cosine search over the ``embeddings`` table."""

    def __init__(self, chunk_store: ChunkStore, *, dimension: int | None = None) -> None:
        super().__init__(chunk_store, dimension=dimension)
        self._session_factory = chunk_store.session_factory

    def store_vectors(self, chunk_ids: Sequence[int], vectors: Sequence[Sequence[float] | None]) -> int:
        pairs = self._validate_store_args(chunk_ids, vectors)
        if not pairs:
            logger.warning("No embeddings to store for %d chunks", len(chunk_ids))
            return 0
        with session_scope(self._session_factory) as session:
            session.add_all(
                EmbeddingRecord(chunk_id=chunk_id, vector=values, dimension=len(values))
                for chunk_id, values in pairs
            )
        logger.info("Stored %d embeddings (%d skipped)", len(pairs), len(chunk_ids) - len(pairs))
        return len(pairs)

    def search_top_k(
        self,
        query_vector: Sequence[float],
        *,
        k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[SearchHit]:
        query = self._validate_query(query_vector, k)

        stmt = (
            select(
                EmbeddingRecord.chunk_id,
                EmbeddingRecord.vector,
                ChunkRecord.doc_id,
                ChunkRecord.chunk_text,
                ChunkRecord.chunk_index,
                ChunkRecord.word_count,
                DocumentRecord.original_name,
                DocumentRecord.mime_type,
            )
            .join(ChunkRecord, EmbeddingRecord.chunk_id == ChunkRecord.id)
            .join(DocumentRecord, ChunkRecord.doc_id == DocumentRecord.id)
            .where(DocumentRecord.status == DocumentStatus.COMPLETED)
            .order_by(EmbeddingRecord.chunk_id)
        )
        with session_scope(self._session_factory) as session:
            rows = session.execute(stmt).all()

        candidates = [r for r in rows if len(r.vector) == query.size]
        if len(candidates) < len(rows):
            logger.warning(
                "Skipped %d stored vectors whose dimension differs from the query (%d)",
                len(rows) - len(candidates),
                query.size,
            )
        if not candidates:
            return []

        matrix = np.asarray([r.vector for r in candidates], dtype=np.float64)
        distances = cosine_distances(query, matrix)

        hits: list[SearchHit] = []
        for row, distance in zip(candidates, distances):
            if np.isnan(distance):
                continue
            hits.append(
                SearchHit(
                    chunk_id=row.chunk_id,
                    doc_id=row.doc_id,
                    filename=row.original_name,
                    text=row.chunk_text,
                    chunk_index=row.chunk_index,
                    word_count=row.word_count,
                    similarity=similarity_from_distance(float(distance)),
                    file_type=row.mime_type,
                )
            )

        results = rank_hits(hits, k=k, min_similarity=min_similarity)
        logger.info("Found %d similar chunks (of %d candidates)", len(results), len(candidates))
        return results

    def delete_for_document(self, doc_id: int) -> int:
        # Vectors and chunks go in one transaction here.
        with session_scope(self._session_factory) as session:
            _delete_vector_rows(session, doc_id)
            deleted = self._chunks.delete_for_document(doc_id, session=session)
        if deleted:
            logger.info("Deleted %d chunks for document %d", deleted, doc_id)
        return deleted

    def replace_document(
        self,
        doc_id: int,
        texts: Sequence[str],
        vectors: Sequence[Sequence[float] | None],
    ) -> tuple[list[int], int]:
        """Swap chunks and vectors in a single transaction.

        Readers see either the old set or the new one.
        """
        if len(texts) != len(vectors):
            raise ValidationError(f"texts ({len(texts)}) and vectors ({len(vectors)}) must have the same length")
        self._validate_store_args(range(len(vectors)), vectors)
        with session_scope(self._session_factory) as session:
            _delete_vector_rows(session, doc_id)
            removed = self._chunks.delete_for_document(doc_id, session=session)
            chunk_ids = self._chunks.add_chunks(doc_id, texts, session=session)
            pairs = self._validate_store_args(chunk_ids, vectors)
            session.add_all(
                EmbeddingRecord(chunk_id=chunk_id, vector=values, dimension=len(values))
                for chunk_id, values in pairs
            )
        logger.info(
            "Document %d: replaced %d chunks with %d (%d embeddings)", doc_id, removed, len(chunk_ids), len(pairs)
        )
        return chunk_ids, len(pairs)

    def count_vectors(self) -> int:
        with session_scope(self._session_factory) as session:
            return int(session.scalar(select(func.count(EmbeddingRecord.chunk_id))) or 0)

    def health_check(self) -> bool:
        try:
            with session_scope(self._session_factory) as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.warning("Record store health-check failed", exc_info=True)
            return False
