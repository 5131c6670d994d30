"""Document row access: create, read, update, delete, statistics."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.orm import sessionmaker

from docrag.storage.db import session_scope
from docrag.storage.models import DocumentRecord, DocumentStatus

logger = logging.getLogger(__name__)


class DocumentRepository:
    """Per-operation transactional access to ``documents`` rows.

    Parameters
    ----------
    session_factory:
        Factory from :func:`~docrag.storage.db.create_session_factory`.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def create(
        self,
        *,
        filename: str,
        original_name: str,
        file_path: str | None = None,
        mime_type: str | None = None,
        file_size: int | None = None,
        source_url: str | None = None,
    ) -> DocumentRecord:
        record = DocumentRecord(
            filename=filename,
            original_name=original_name,
            file_path=file_path,
            mime_type=mime_type,
            file_size=file_size,
            source_url=source_url,
            status=DocumentStatus.PENDING,
        )
        with session_scope(self._session_factory) as session:
            session.add(record)
            session.flush()
        logger.info("Document created with ID: %d", record.id)
        return record

    def get(self, doc_id: int) -> DocumentRecord | None:
        with session_scope(self._session_factory) as session:
            return session.get(DocumentRecord, doc_id)

    def list_all(self, *, status: DocumentStatus | None = None, limit: int | None = None) -> list[DocumentRecord]:
        """Return documents newest first, optionally filtered by *status*."""
        stmt = select(DocumentRecord).order_by(DocumentRecord.created_at.desc(), DocumentRecord.id.desc())
        if status is not None:
            stmt = stmt.where(DocumentRecord.status == status)
        if limit is not None:
            stmt = stmt.limit(limit)
        with session_scope(self._session_factory) as session:
            return list(session.scalars(stmt))

    def update(self, doc_id: int, **fields: Any) -> DocumentRecord | None:
        """Set *fields* on the document; ``None`` when it does not exist."""
        with session_scope(self._session_factory) as session:
            record = session.get(DocumentRecord, doc_id)
            if record is None:
                return None
            for name, value in fields.items():
                setattr(record, name, value)
            session.flush()
            return record

    def delete(self, doc_id: int) -> bool:
        """Delete the row (cascading to chunks and embeddings)."""
        with session_scope(self._session_factory) as session:
            record = session.get(DocumentRecord, doc_id)
            if record is None:
                return False
            session.delete(record)
        return True

    def stats(self) -> dict[str, int]:
        """Total and per-status document counts plus stored bytes."""
        columns = [func.count(DocumentRecord.id).label("total")]
        for status in DocumentStatus:
            columns.append(
                func.coalesce(func.sum(case((DocumentRecord.status == status, 1), else_=0)), 0).label(status.value)
            )
        columns.append(func.coalesce(func.sum(DocumentRecord.file_size), 0).label("total_size"))
        with session_scope(self._session_factory) as session:
            row = session.execute(select(*columns)).one()
        return {key: int(value or 0) for key, value in row._mapping.items()}
