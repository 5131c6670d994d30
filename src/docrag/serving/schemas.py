"""Request / response schemas for the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from docrag.qa.models import SourceReference
from docrag.storage.models import DocumentStatus


# ── Documents ─────────────────────────────────────────────────────────
class DocumentOut(BaseModel):
    """Document metadata without its extracted text."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    original_name: str
    mime_type: str | None = None
    file_size: int | None = None
    source_url: str | None = None
    status: DocumentStatus
    extraction_method: str | None = None
    extraction_confidence: float | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    processed_at: datetime | None = None


class DocumentResponse(BaseModel):
    success: bool = True
    document: DocumentOut


class DocumentListResponse(BaseModel):
    success: bool = True
    count: int
    documents: list[DocumentOut]


class DocumentTextResponse(BaseModel):
    success: bool = True
    document_id: int
    filename: str
    text: str
    method: str | None = None
    confidence: float | None = None


class StatsResponse(BaseModel):
    success: bool = True
    stats: dict[str, Any]


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# ── Ingestion ─────────────────────────────────────────────────────────
class WebhookRequest(BaseModel):
    """A document to fetch from a URL."""

    document_url: str = ""
    filename: str | None = None
    metadata: dict[str, Any] | None = None


class AcceptedData(BaseModel):
    document_id: int
    filename: str
    status: str
    size: int | None = None
    url: str | None = None


class AcceptedResponse(BaseModel):
    """Work was queued; poll the document for its outcome."""

    success: bool = True
    message: str
    data: AcceptedData


class BatchAcceptedResponse(BaseModel):
    success: bool = True
    message: str
    data: list[AcceptedData]


# ── Index ─────────────────────────────────────────────────────────────
class ChunkPreview(BaseModel):
    index: int
    word_count: int
    preview: str


class IndexInfoResponse(BaseModel):
    success: bool = True
    document_id: int
    chunks_count: int
    indexed: bool
    chunks: list[ChunkPreview]


# ── Search & query ────────────────────────────────────────────────────
class SearchResultOut(BaseModel):
    chunk_id: int
    document_id: int
    filename: str
    text: str
    similarity: float
    chunk_index: int
    word_count: int


class SearchResponse(BaseModel):
    success: bool = True
    query: str
    results_count: int
    data: list[SearchResultOut]


class QueryRequest(BaseModel):
    """Incoming question from the user."""

    query: str = ""
    limit: int | None = Field(default=None, description="Number of chunks to retrieve")
    model: str | None = None


class QueryMetadata(BaseModel):
    chunks_retrieved: int
    tokens_generated: int | None = None
    response_time_ms: int | None = None


class QueryResponse(BaseModel):
    """Answer returned by the query orchestrator."""

    success: bool = True
    query: str
    answer: str
    model: str | None = None
    sources: list[SourceReference] = []
    no_results: bool = False
    metadata: QueryMetadata


class ModelsResponse(BaseModel):
    success: bool = True
    models: list[str]


class HealthResponse(BaseModel):
    """Liveness check payload."""

    status: str
    vector_index: bool
    generation: bool
