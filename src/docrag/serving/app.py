"""FastAPI application exposing ingestion, search and question answering.

Collaborators are built once in the lifespan (or passed to
:func:`create_app`, e.g. by tests) and reached through
:func:`get_services`.  Application errors are rendered as
``{"success": false, "error": <message>}`` with a status code chosen
by error class.
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from docrag import __version__
from docrag.config import settings
from docrag.exceptions import (
    DocRagError,
    ExternalServiceError,
    ExternalServiceUnavailable,
    InsufficientContent,
    NotFound,
    PersistenceError,
    StateConflict,
    ValidationError,
)
from docrag.ingestion.loader import SUPPORTED_MIME_TYPES
from docrag.logging_setup import configure_logging
from docrag.serving.schemas import (
    AcceptedData,
    AcceptedResponse,
    BatchAcceptedResponse,
    ChunkPreview,
    DocumentListResponse,
    DocumentOut,
    DocumentResponse,
    DocumentTextResponse,
    HealthResponse,
    IndexInfoResponse,
    MessageResponse,
    ModelsResponse,
    QueryMetadata,
    QueryRequest,
    QueryResponse,
    SearchResponse,
    SearchResultOut,
    StatsResponse,
    WebhookRequest,
)
from docrag.services import Services, build_services

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 100
MAX_BATCH_FILES = 10

# Most specific class first.
_STATUS_BY_ERROR: list[tuple[type[DocRagError], int]] = [
    (ValidationError, 400),
    (NotFound, 404),
    (StateConflict, 409),
    (InsufficientContent, 422),
    (ExternalServiceUnavailable, 503),
    (ExternalServiceError, 502),
    (PersistenceError, 500),
]


def status_for(exc: DocRagError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status
    return 500


async def _handle_app_error(request: Request, exc: DocRagError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status, exc)
    return JSONResponse(status_code=status, content={"success": False, "error": exc.message})


def get_services(request: Request) -> Services:
    return request.app.state.services


def _read_upload(document: UploadFile, max_bytes: int) -> tuple[str, str, bytes]:
    """Validate one uploaded file; returns ``(original_name, mime_type, contents)``."""
    original_name = document.filename or ""
    mime_type = (document.content_type or "").split(";")[0].strip().lower()
    if not mime_type or mime_type == "application/octet-stream":
        mime_type = mimetypes.guess_type(original_name)[0] or ""
    if mime_type not in SUPPORTED_MIME_TYPES:
        allowed = ", ".join(sorted(SUPPORTED_MIME_TYPES))
        raise ValidationError(f"File type {mime_type or 'unknown'} not allowed. Allowed types: {allowed}", field="document")

    contents = document.file.read(max_bytes + 1)
    if not contents:
        raise ValidationError(f"Uploaded file {original_name} is empty", field="document")
    if len(contents) > max_bytes:
        raise ValidationError(f"File {original_name} exceeds the {max_bytes} byte upload limit", field="document")
    return original_name, mime_type, contents


def _store_upload(svc: Services, original_name: str, mime_type: str, contents: bytes) -> AcceptedData:
    """Write the file, create its pending document and queue processing."""
    upload_dir = Path(svc.settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    stored_name = f"document-{uuid.uuid4().hex}{Path(original_name).suffix.lower()}"
    file_path = upload_dir / stored_name
    file_path.write_bytes(contents)
    logger.info("File uploaded: %s (%d bytes)", original_name, len(contents))

    try:
        doc_id = svc.lifecycle.create(
            original_name=original_name,
            filename=stored_name,
            file_path=str(file_path),
            mime_type=mime_type,
            file_size=len(contents),
        )
    except DocRagError:
        file_path.unlink(missing_ok=True)
        raise
    svc.pipeline.submit_upload(doc_id)
    return AcceptedData(document_id=doc_id, filename=original_name, size=len(contents), status="processing")


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application.

    Parameters
    ----------
    services:
        Pre-built collaborators.  When *None* they are built from
        settings at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.services is None
        if owned:
            configure_logging(settings.log_level)
            app.state.services = build_services(settings)
        try:
            yield
        finally:
            if owned:
                app.state.services.close()
                app.state.services = None

    app = FastAPI(
        title="docrag API",
        version=__version__,
        description="Document ingestion, semantic search and retrieval-augmented question answering.",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(DocRagError, _handle_app_error)

    # ── Health ────────────────────────────────────────────────────────
    @app.get("/health", response_model=HealthResponse)
    def health(svc: Services = Depends(get_services)) -> HealthResponse:
        """Liveness check."""
        return HealthResponse(
            status="ok",
            vector_index=svc.index.health_check(),
            generation=svc.generator.available(),
        )

    # ── Ingestion ─────────────────────────────────────────────────────
    @app.post("/api/upload", response_model=AcceptedResponse, status_code=202)
    def upload(
        document: UploadFile | None = File(default=None),
        svc: Services = Depends(get_services),
    ) -> AcceptedResponse:
        """Store an uploaded file and queue extraction + indexing."""
        if document is None or not document.filename:
            raise ValidationError('No file uploaded. Please provide a file in the "document" field.', field="document")
        accepted = _store_upload(svc, *_read_upload(document, svc.settings.max_upload_bytes))
        return AcceptedResponse(message="Document uploaded and processing started", data=accepted)

    @app.post("/api/upload/batch", response_model=BatchAcceptedResponse, status_code=202)
    def upload_batch(
        documents: list[UploadFile] | None = File(default=None),
        svc: Services = Depends(get_services),
    ) -> BatchAcceptedResponse:
        """Store up to :data:`MAX_BATCH_FILES` files, each processed on its own."""
        files = [d for d in documents or [] if d.filename]
        if not files:
            raise ValidationError('No files uploaded. Please provide files in the "documents" field.', field="documents")
        if len(files) > MAX_BATCH_FILES:
            raise ValidationError(f"At most {MAX_BATCH_FILES} files per batch", field="documents")

        # Reject the whole batch before anything is stored.
        uploads = [_read_upload(d, svc.settings.max_upload_bytes) for d in files]
        accepted = [_store_upload(svc, *u) for u in uploads]
        logger.info("Batch upload: %d files", len(accepted))
        return BatchAcceptedResponse(message=f"{len(accepted)} documents uploaded and processing", data=accepted)

    @app.post("/api/webhook/ingest", response_model=AcceptedResponse, status_code=202)
    def webhook_ingest(body: WebhookRequest, svc: Services = Depends(get_services)) -> AcceptedResponse:
        """Accept a document URL and queue its download."""
        url = body.document_url.strip()
        if not url:
            raise ValidationError("document_url is required", field="document_url")
        if not url.lower().startswith(("http://", "https://")):
            raise ValidationError("document_url must be an http(s) URL", field="document_url")

        filename = (body.filename or "").strip() or "webhook_document"
        logger.info("Webhook received: %s", url)
        doc_id = svc.lifecycle.create(original_name=filename, source_url=url)
        svc.pipeline.submit_url(doc_id, url)

        return AcceptedResponse(
            message="Document accepted and queued for processing",
            data=AcceptedData(document_id=doc_id, filename=filename, url=url, status="queued"),
        )

    # ── Documents ─────────────────────────────────────────────────────
    @app.get("/api/documents", response_model=DocumentListResponse)
    def list_documents(
        status: str | None = None,
        limit: int | None = Query(default=None, ge=1),
        svc: Services = Depends(get_services),
    ) -> DocumentListResponse:
        records = svc.lifecycle.list_documents(status=status, limit=limit)
        return DocumentListResponse(
            count=len(records),
            documents=[DocumentOut.model_validate(r) for r in records],
        )

    @app.get("/api/documents/stats/summary", response_model=StatsResponse)
    def document_stats(svc: Services = Depends(get_services)) -> StatsResponse:
        return StatsResponse(stats=svc.lifecycle.stats())

    @app.get("/api/documents/{doc_id}", response_model=DocumentResponse)
    def get_document(doc_id: int, svc: Services = Depends(get_services)) -> DocumentResponse:
        return DocumentResponse(document=DocumentOut.model_validate(svc.lifecycle.get(doc_id)))

    @app.get("/api/documents/{doc_id}/text", response_model=DocumentTextResponse)
    def get_document_text(doc_id: int, svc: Services = Depends(get_services)) -> DocumentTextResponse:
        record = svc.lifecycle.get_text(doc_id)
        return DocumentTextResponse(
            document_id=record.id,
            filename=record.original_name,
            text=record.extracted_text or "",
            method=record.extraction_method,
            confidence=record.extraction_confidence,
        )

    @app.delete("/api/documents/{doc_id}", response_model=MessageResponse)
    def delete_document(doc_id: int, svc: Services = Depends(get_services)) -> MessageResponse:
        # Vectors outside the record store must go before the cascade drops the chunk rows.
        svc.lifecycle.get(doc_id)
        svc.index.delete_for_document(doc_id)
        svc.lifecycle.delete(doc_id)
        return MessageResponse(message="Document deleted successfully")

    # ── Index ─────────────────────────────────────────────────────────
    @app.post("/api/index/{doc_id}", response_model=AcceptedResponse, status_code=202)
    def index_document(doc_id: int, svc: Services = Depends(get_services)) -> AcceptedResponse:
        """Validate and queue a (re-)index of a completed document."""
        record = svc.lifecycle.get(doc_id)
        svc.pipeline.request_index(doc_id)
        return AcceptedResponse(
            message="Document indexing started",
            data=AcceptedData(document_id=doc_id, filename=record.original_name, status="indexing"),
        )

    @app.get("/api/index/stats/summary", response_model=StatsResponse)
    def index_stats(svc: Services = Depends(get_services)) -> StatsResponse:
        return StatsResponse(stats=svc.index.stats())

    @app.get("/api/index/{doc_id}", response_model=IndexInfoResponse)
    def index_info(doc_id: int, svc: Services = Depends(get_services)) -> IndexInfoResponse:
        svc.lifecycle.get(doc_id)
        chunks = svc.chunks.list_for_document(doc_id)
        return IndexInfoResponse(
            document_id=doc_id,
            chunks_count=len(chunks),
            indexed=bool(chunks),
            chunks=[
                ChunkPreview(
                    index=c.chunk_index,
                    word_count=c.word_count,
                    preview=c.chunk_text[:PREVIEW_CHARS] + ("..." if len(c.chunk_text) > PREVIEW_CHARS else ""),
                )
                for c in chunks
            ],
        )

    @app.delete("/api/index/{doc_id}", response_model=MessageResponse)
    def delete_index(doc_id: int, svc: Services = Depends(get_services)) -> MessageResponse:
        svc.lifecycle.get(doc_id)
        deleted = svc.index.delete_for_document(doc_id)
        return MessageResponse(message=f"Document index deleted successfully ({deleted} chunks removed)")

    # ── Search & query ────────────────────────────────────────────────
    @app.get("/api/search", response_model=SearchResponse)
    def search(
        q: str = "",
        limit: int = 10,
        min_similarity: float | None = None,
        svc: Services = Depends(get_services),
    ) -> SearchResponse:
        if not q.strip():
            raise ValidationError('Query parameter "q" is required', field="q")
        hits = svc.retriever.search(q, k=limit, min_similarity=min_similarity)
        precision = svc.settings.similarity_precision
        return SearchResponse(
            query=q,
            results_count=len(hits),
            data=[
                SearchResultOut(
                    chunk_id=h.chunk_id,
                    document_id=h.doc_id,
                    filename=h.filename,
                    text=h.text,
                    similarity=round(h.similarity, precision),
                    chunk_index=h.chunk_index,
                    word_count=h.word_count,
                )
                for h in hits
            ],
        )

    @app.post("/api/query", response_model=QueryResponse)
    def query(request: QueryRequest, svc: Services = Depends(get_services)) -> QueryResponse:
        """Answer a question from the indexed documents."""
        answer = svc.orchestrator.answer(request.query, k=request.limit, model=request.model)
        return QueryResponse(
            query=answer.query,
            answer=answer.answer,
            model=answer.model,
            sources=answer.sources,
            no_results=answer.no_results,
            metadata=QueryMetadata(
                chunks_retrieved=answer.chunks_retrieved,
                tokens_generated=answer.tokens_generated,
                response_time_ms=answer.response_time_ms,
            ),
        )

    @app.get("/api/query/models", response_model=ModelsResponse)
    def list_models(svc: Services = Depends(get_services)) -> ModelsResponse:
        return ModelsResponse(models=svc.generator.list_models())

    return app


app = create_app()
