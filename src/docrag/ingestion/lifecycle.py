"""Document lifecycle state machine.

    pending ──► processing ──► completed
                    │
                    └────────► failed

``completed`` and ``failed`` end a pipeline run.  A document may be
moved back to ``processing`` by a new run; re-indexing a completed
document replaces its chunks without touching its status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from docrag.config import settings
from docrag.exceptions import InsufficientContent, NotFound, PersistenceError, StateConflict, ValidationError
from docrag.storage.documents import DocumentRepository
from docrag.storage.models import DocumentRecord, DocumentStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_status(value: str | DocumentStatus | None) -> DocumentStatus | None:
    if value is None or isinstance(value, DocumentStatus):
        return value
    try:
        return DocumentStatus(value.strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in DocumentStatus)
        raise ValidationError(f"Invalid status {value!r}; expected one of: {allowed}", field="status") from None


class DocumentLifecycle:
    """Owns every status transition of a document.

    Parameters
    ----------
    repository:
        Row access for documents.
    min_index_chars:
        Minimum stripped length of extracted text before indexing may
        proceed (see :meth:`require_indexable`).
    """

    def __init__(self, repository: DocumentRepository, *, min_index_chars: int = settings.min_index_chars) -> None:
        self._repo = repository
        self.min_index_chars = min_index_chars

    # -- creation & lookup ----------------------------------------------------

    def create(
        self,
        *,
        original_name: str,
        filename: str | None = None,
        file_path: str | None = None,
        mime_type: str | None = None,
        file_size: int | None = None,
        source_url: str | None = None,
    ) -> int:
        """Insert a ``pending`` document and return its id."""
        if not original_name or not original_name.strip():
            raise ValidationError("original_name is required", field="original_name")
        record = self._repo.create(
            filename=filename or original_name,
            original_name=original_name,
            file_path=file_path,
            mime_type=mime_type,
            file_size=file_size,
            source_url=source_url,
        )
        return record.id

    def get(self, doc_id: int) -> DocumentRecord:
        record = self._repo.get(doc_id)
        if record is None:
            raise NotFound("document", doc_id)
        return record

    def list_documents(self, *, status: str | DocumentStatus | None = None, limit: int | None = None) -> list[DocumentRecord]:
        if limit is not None and limit < 1:
            raise ValidationError("limit must be >= 1", field="limit")
        return self._repo.list_all(status=parse_status(status), limit=limit)

    def get_text(self, doc_id: int) -> DocumentRecord:
        """Return the document, which must have finished extraction."""
        record = self.get(doc_id)
        if record.status is not DocumentStatus.COMPLETED:
            raise StateConflict(
                f"Document is not processed yet. Current status: {record.status.value}",
                {"document_id": doc_id, "status": record.status.value},
            )
        return record

    def stats(self) -> dict[str, int]:
        return self._repo.stats()

    # -- transitions ----------------------------------------------------------

    def attach_file(self, doc_id: int, *, file_path: str, mime_type: str | None, file_size: int | None) -> None:
        """Record where a (downloaded) source file was stored."""
        if self._repo.update(doc_id, file_path=file_path, mime_type=mime_type, file_size=file_size) is None:
            raise NotFound("document", doc_id)

    def begin_processing(self, doc_id: int) -> None:
        """Move any document to ``processing``, clearing prior results."""
        updated = self._repo.update(
            doc_id,
            status=DocumentStatus.PROCESSING,
            extracted_text=None,
            error_message=None,
        )
        if updated is None:
            raise StateConflict(f"Cannot process unknown document {doc_id}", {"document_id": doc_id})
        logger.info("Document %d status updated to: %s", doc_id, DocumentStatus.PROCESSING.value)

    def complete_extraction(
        self,
        doc_id: int,
        text: str,
        method: str,
        confidence: float | None = None,
    ) -> None:
        """Store extracted text and mark the document ``completed``."""
        if text is None:
            raise ValidationError("Extracted text cannot be None", field="text")
        updated = self._repo.update(
            doc_id,
            status=DocumentStatus.COMPLETED,
            extracted_text=text,
            extraction_method=method,
            extraction_confidence=confidence,
            error_message=None,
            processed_at=_utcnow(),
        )
        if updated is None:
            raise NotFound("document", doc_id)
        logger.info("Document %d updated with extracted text (%d chars via %s)", doc_id, len(text), method)

    def mark_failed(self, doc_id: int, message: str) -> None:
        """Mark the document ``failed`` with *message*.

        Best-effort: this runs inside failure handlers, so its own errors
        are logged and never raised.
        """
        try:
            updated = self._repo.update(
                doc_id,
                status=DocumentStatus.FAILED,
                extracted_text=None,
                error_message=message or "Unknown error",
                processed_at=_utcnow(),
            )
            if updated is None:
                logger.error("Cannot mark unknown document %d as failed: %s", doc_id, message)
                return
            logger.error("Document %d marked as failed: %s", doc_id, message)
        except Exception:
            logger.exception("Failed to mark document %d as failed", doc_id)

    def delete(self, doc_id: int) -> None:
        """Remove the backing file, then the record (cascading to chunks/embeddings)."""
        record = self.get(doc_id)
        if record.file_path:
            path = Path(record.file_path)
            try:
                if path.exists():
                    path.unlink()
                    logger.info("Deleted file: %s", path)
            except OSError as exc:
                raise PersistenceError(f"Could not delete file {path}: {exc}", {"document_id": doc_id}) from exc
        if not self._repo.delete(doc_id):
            raise NotFound("document", doc_id)
        logger.info("Document %d deleted successfully", doc_id)

    # -- indexing gate --------------------------------------------------------

    def require_indexable(self, doc_id: int) -> DocumentRecord:
        """Return the document if it may be chunked and indexed.

        Raises
        ------
        NotFound
            Unknown id.
        StateConflict
            Status is not ``completed``.
        InsufficientContent
            Extracted text is shorter than ``min_index_chars``.
        """
        record = self.get(doc_id)
        if record.status is not DocumentStatus.COMPLETED:
            raise StateConflict(
                f"Document is not ready for indexing. Current status: {record.status.value}",
                {"document_id": doc_id, "status": record.status.value},
            )
        if not record.extracted_text or len(record.extracted_text.strip()) < self.min_index_chars:
            raise InsufficientContent(
                "Document has insufficient text for indexing",
                {"document_id": doc_id, "min_chars": self.min_index_chars},
            )
        return record
