"""Chunk row access.

Chunks for a document are inserted as one atomic group so a partially
written set is never visible.  Vectors live in the configured vector
index (see :mod:`docrag.retrieval`), which also owns removal of a
document's chunks through :meth:`ChunkStore.delete_for_document`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from docrag.storage.db import session_scope
from docrag.storage.models import ChunkRecord

logger = logging.getLogger(__name__)


class ChunkStore:
    """Per-operation transactional access to ``chunks`` rows."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory

    def add_chunks(self, doc_id: int, texts: Sequence[str], *, session: Session | None = None) -> list[int]:
        """Insert *texts* as chunks ``0..n-1`` of *doc_id* in one transaction.

        Returns the new chunk ids in the same order as *texts*.  When
        *session* is given the insert joins that transaction.
        """
        records = [
            ChunkRecord(doc_id=doc_id, chunk_index=i, chunk_text=text, word_count=len(text.split()))
            for i, text in enumerate(texts)
        ]
        if session is not None:
            session.add_all(records)
            session.flush()
            return [r.id for r in records]
        with session_scope(self._session_factory) as own:
            own.add_all(records)
            own.flush()
            chunk_ids = [r.id for r in records]
        logger.info("Stored %d chunks for document %d", len(chunk_ids), doc_id)
        return chunk_ids

    def list_for_document(self, doc_id: int) -> list[ChunkRecord]:
        stmt = select(ChunkRecord).where(ChunkRecord.doc_id == doc_id).order_by(ChunkRecord.chunk_index)
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))

    def get_many(self, chunk_ids: Sequence[int]) -> list[ChunkRecord]:
        """Return chunks for *chunk_ids*, in the order requested.

        Unknown ids are skipped.
        """
        if not chunk_ids:
            return []
        stmt = select(ChunkRecord).where(ChunkRecord.id.in_(list(chunk_ids)))
        with session_scope(self._session_factory) as session:
            by_id = {c.id: c for c in session.scalars(stmt)}
        return [by_id[cid] for cid in chunk_ids if cid in by_id]

    def count_for_document(self, doc_id: int) -> int:
        stmt = select(func.count(ChunkRecord.id)).where(ChunkRecord.doc_id == doc_id)
        with session_scope(self._session_factory) as session:
            return int(session.scalar(stmt) or 0)

    def delete_for_document(self, doc_id: int, *, session: Session | None = None) -> int:
        """Delete every chunk of *doc_id*; returns how many were removed.

        When *session* is given the delete joins that transaction instead
        of opening its own.
        """
        stmt = (
            delete(ChunkRecord)
            .where(ChunkRecord.doc_id == doc_id)
            .execution_options(synchronize_session=False)
        )
        if session is not None:
            return session.execute(stmt).rowcount or 0
        with session_scope(self._session_factory) as own:
            return own.execute(stmt).rowcount or 0

    def stats(self) -> dict[str, Any]:
        stmt = select(
            func.count(func.distinct(ChunkRecord.doc_id)),
            func.count(ChunkRecord.id),
            func.avg(ChunkRecord.word_count),
        )
        with session_scope(self._session_factory) as session:
            indexed_documents, total_chunks, avg_words = session.execute(stmt).one()
        return {
            "indexed_documents": int(indexed_documents or 0),
            "total_chunks": int(total_chunks or 0),
            "avg_chunk_words": round(float(avg_words), 1) if avg_words is not None else 0.0,
        }
