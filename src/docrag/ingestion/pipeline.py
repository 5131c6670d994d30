"""Background ingestion and indexing.

Every entry point here that starts work returns as soon as the work is
queued on the worker pool.  The outcome is observable only through the
document's persisted status: a failure inside a queued upload run is
logged and recorded with :meth:`DocumentLifecycle.mark_failed`, never
raised to whoever queued it.

Within one run the steps are strictly sequential::

    extract ─► complete_extraction ─► [gate] ─► chunk ─► embed ─► replace chunks + vectors

At most one indexing run per document is queued or active at a time.
Re-indexing a ``completed`` document never changes its status: a failed
re-index is logged and the previous chunks stay searchable.
"""

from __future__ import annotations

import logging
import mimetypes
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import requests

from docrag.config import settings
from docrag.exceptions import (
    ExtractionError,
    ExternalServiceError,
    InsufficientContent,
    StateConflict,
    ValidationError,
)
from docrag.ingestion.chunker import ChunkerConfig, chunk_text
from docrag.ingestion.embedder import EmbeddingOrchestrator
from docrag.ingestion.lifecycle import DocumentLifecycle
from docrag.ingestion.loader import Extractor
from docrag.retrieval.base import VectorIndexBase

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class IndexReport:
    """Outcome of one indexing run."""

    document_id: int
    chunks_created: int
    embeddings_stored: int
    elapsed_ms: int


def _error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or exc.__class__.__name__


class IngestionPipeline:
    """Runs extraction and indexing for documents on a worker pool.

    Parameters
    ----------
    lifecycle:
        Owns every status transition.
    extractor:
        Extraction provider.
    embedder:
        Embedding orchestrator used for chunk batches.
    index:
        Vector-index backend; also writes the chunk rows.
    chunker_config:
        Word budget for :func:`chunk_text`.
    upload_dir:
        Where downloaded webhook documents are written.
    download_timeout:
        Per-request timeout in seconds for webhook downloads.
    max_download_bytes:
        Largest webhook document accepted.
    max_retries:
        Attempts per webhook download before giving up.
    max_workers:
        Size of the worker pool; each queued run occupies one worker.
    """

    def __init__(
        self,
        lifecycle: DocumentLifecycle,
        extractor: Extractor,
        embedder: EmbeddingOrchestrator,
        index: VectorIndexBase,
        *,
        chunker_config: ChunkerConfig | None = None,
        upload_dir: str | Path = settings.upload_dir,
        download_timeout: float = settings.download_timeout_seconds,
        max_download_bytes: int = settings.max_upload_bytes,
        max_retries: int = 3,
        max_workers: int = settings.ingestion_workers,
    ) -> None:
        self._lifecycle = lifecycle
        self._extractor = extractor
        self._embedder = embedder
        self._index = index
        self.chunker_config = chunker_config or ChunkerConfig()
        self.upload_dir = Path(upload_dir)
        self.download_timeout = download_timeout
        self.max_download_bytes = max_download_bytes
        self.max_retries = max(1, max_retries)
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="ingest")
        self._indexing: set[int] = set()
        self._indexing_lock = threading.Lock()

    # -- queueing -------------------------------------------------------------

    def submit_upload(self, doc_id: int) -> Future:
        """Queue extraction + auto-indexing for a stored upload."""
        logger.info("Queued processing for document %d", doc_id)
        return self._executor.submit(self.process_upload, doc_id)

    def submit_url(self, doc_id: int, url: str) -> Future:
        """Queue download, extraction and auto-indexing for a webhook document."""
        logger.info("Queued download for document %d from %s", doc_id, url)
        return self._executor.submit(self.ingest_url, doc_id, url)

    def request_index(self, doc_id: int) -> Future:
        """Validate synchronously, then queue a (re-)index run.

        Raises
        ------
        NotFound, StateConflict, InsufficientContent
            From :meth:`DocumentLifecycle.require_indexable`, or
            ``StateConflict`` when a run for the document is already
            queued or active; nothing is queued in that case.
        """
        self._lifecycle.require_indexable(doc_id)
        self._claim(doc_id)
        try:
            future = self._executor.submit(self._run_index, doc_id)
        except BaseException:
            self._release(doc_id)
            raise
        logger.info("Queued indexing for document %d", doc_id)
        return future

    def is_indexing(self, doc_id: int) -> bool:
        with self._indexing_lock:
            return doc_id in self._indexing

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # -- queued work ----------------------------------------------------------

    def process_upload(self, doc_id: int) -> None:
        """Extract text, then index when the document passes the gate.

        Never raises; failures end up on the document.
        """
        logger.info("Starting extraction + indexing for document %d", doc_id)
        try:
            self._lifecycle.begin_processing(doc_id)
            record = self._lifecycle.get(doc_id)
            if not record.file_path:
                raise ExtractionError("Document has no stored file")
            result = self._extractor.extract(record.file_path, record.mime_type or "")
            self._lifecycle.complete_extraction(doc_id, result.text, result.method, result.confidence)
        except Exception as exc:
            logger.error("Failed to process document %d", doc_id, exc_info=True)
            self._lifecycle.mark_failed(doc_id, _error_message(exc))
            return

        try:
            self.index_document(doc_id)
        except InsufficientContent as exc:
            # Stays completed; the text is readable but not searchable.
            logger.info("Document %d not indexed: %s", doc_id, exc.message)
        except StateConflict as exc:
            logger.info("Document %d not auto-indexed: %s", doc_id, exc.message)
        except Exception as exc:
            logger.error("Failed to index document %d", doc_id, exc_info=True)
            self._lifecycle.mark_failed(doc_id, _error_message(exc))

    def ingest_url(self, doc_id: int, url: str) -> None:
        """Download *url* into the upload directory, then :meth:`process_upload`.

        Never raises.  A failed download removes any partial file and
        marks the document failed.
        """
        path: Path | None = None
        try:
            record = self._lifecycle.get(doc_id)
            response = self._download(url)
            try:
                mime_type = self._resolve_mime(response.headers.get("content-type"), record.original_name)
                path = self.upload_dir / f"webhook-{uuid.uuid4().hex}{Path(record.original_name).suffix}"
                self.upload_dir.mkdir(parents=True, exist_ok=True)
                size = self._write_limited(response, path)
            finally:
                response.close()
            logger.info("Document downloaded: %s (%d bytes)", path, size)
            self._lifecycle.attach_file(doc_id, file_path=str(path), mime_type=mime_type, file_size=size)
        except Exception as exc:
            logger.error("Webhook download failed for document %d", doc_id, exc_info=True)
            if path is not None and path.exists():
                try:
                    path.unlink()
                except OSError:
                    logger.warning("Could not remove partial download %s", path, exc_info=True)
            self._lifecycle.mark_failed(doc_id, _error_message(exc))
            return

        self.process_upload(doc_id)

    def _run_index(self, doc_id: int) -> None:
        try:
            self._index_claimed(doc_id)
        except Exception:
            logger.error("Re-index of document %d failed; previous index kept", doc_id, exc_info=True)
        finally:
            self._release(doc_id)

    # -- indexing -------------------------------------------------------------

    def index_document(self, doc_id: int) -> IndexReport:
        """Chunk, embed and store *doc_id*, replacing any previous chunks.

        Runs in the caller's thread and raises on failure.

        Raises
        ------
        NotFound, StateConflict, InsufficientContent
            The document fails the indexing gate, another run for it is
            in progress, or chunking produced nothing.
        ExternalServiceError
            Every chunk failed to embed.
        """
        self._claim(doc_id)
        try:
            return self._index_claimed(doc_id)
        finally:
            self._release(doc_id)

    def _index_claimed(self, doc_id: int) -> IndexReport:
        started = time.perf_counter()
        record = self._lifecycle.require_indexable(doc_id)

        chunks = chunk_text(record.extracted_text or "", self.chunker_config)
        if not chunks:
            raise InsufficientContent("No valid chunks generated", {"document_id": doc_id})
        logger.info("Generated %d chunks for document %d", len(chunks), doc_id)

        vectors = self._embedder.embed_batch(chunks)
        if not any(v is not None for v in vectors):
            raise ExternalServiceError("embedding", f"No embeddings generated for {len(chunks)} chunks")

        chunk_ids, stored = self._index.replace_document(doc_id, chunks, vectors)

        report = IndexReport(
            document_id=doc_id,
            chunks_created=len(chunk_ids),
            embeddings_stored=stored,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )
        logger.info(
            "Document %d indexed: %d chunks, %d embeddings in %d ms",
            doc_id,
            report.chunks_created,
            report.embeddings_stored,
            report.elapsed_ms,
        )
        return report

    def _claim(self, doc_id: int) -> None:
        with self._indexing_lock:
            if doc_id in self._indexing:
                raise StateConflict("Document is already being indexed", {"document_id": doc_id})
            self._indexing.add(doc_id)

    def _release(self, doc_id: int) -> None:
        with self._indexing_lock:
            self._indexing.discard(doc_id)

    # -- helpers --------------------------------------------------------------

    def _download(self, url: str) -> requests.Response:
        if not url or not url.lower().startswith(("http://", "https://")):
            raise ValidationError(f"Unsupported document URL: {url!r}", field="document_url")

        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = requests.get(url, timeout=self.download_timeout, stream=True)
                resp.raise_for_status()
                return resp
            except requests.RequestException as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    wait = 2 ** attempt
                    logger.warning("Retry %d/%d for %s (wait %ds): %s", attempt, self.max_retries, url, wait, exc)
                    time.sleep(wait)
        raise ExternalServiceError(
            "download", f"Failed to download {url} after {self.max_retries} attempts: {last_exc}"
        ) from last_exc

    def _write_limited(self, response: requests.Response, path: Path) -> int:
        """Stream *response* into *path*, refusing bodies over the size limit."""
        too_large = ValidationError(
            f"Downloaded document exceeds the {self.max_download_bytes} byte limit", field="document_url"
        )
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_download_bytes:
            raise too_large

        size = 0
        with path.open("wb") as fh:
            for block in response.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                if not block:
                    continue
                size += len(block)
                if size > self.max_download_bytes:
                    raise too_large
                fh.write(block)
        if size == 0:
            raise ValidationError("Downloaded document is empty", field="document_url")
        return size

    @staticmethod
    def _resolve_mime(content_type: str | None, filename: str) -> str:
        mime = (content_type or "").split(";")[0].strip().lower()
        if mime and mime != "application/octet-stream":
            return mime
        guessed, _ = mimetypes.guess_type(filename)
        return guessed or "application/pdf"
