"""Vector-index backend selection.

``settings.vector_backend`` picks the implementation: ``sql`` keeps
vectors in the record store next to their chunks, ``chroma`` uses a
Chroma server collection.
"""

from __future__ import annotations

import logging

from docrag.config import settings
from docrag.exceptions import ValidationError
from docrag.retrieval.base import VectorIndexBase
from docrag.storage.chunks import ChunkStore
from docrag.storage.documents import DocumentRepository

logger = logging.getLogger(__name__)


def build_vector_index(
    chunk_store: ChunkStore,
    documents: DocumentRepository,
    *,
    backend: str | None = None,
    dimension: int | None = settings.embedding_dimension,
) -> VectorIndexBase:
    """Return the configured :class:`VectorIndexBase` implementation.

    Raises
    ------
    ValidationError
        *backend* is not ``sql`` or ``chroma``.
    """
    backend = (backend or settings.vector_backend).strip().lower()

    if backend == "sql":
        from docrag.retrieval.sql_index import SqlVectorIndex

        logger.info("Using record-store vector index")
        return SqlVectorIndex(chunk_store, dimension=dimension)

    if backend == "chroma":
        from docrag.retrieval.chroma_store import ChromaVectorIndex

        logger.info("Using Chroma vector index at %s:%d", settings.chroma_host, settings.chroma_port)
        return ChromaVectorIndex(chunk_store, documents, dimension=dimension)

    raise ValidationError(
        f"Invalid vector backend: {backend!r}. Must be 'sql' or 'chroma'.",
        field="vector_backend",
    )
