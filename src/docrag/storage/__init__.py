"""
Storage — relational persistence for documents, chunks and embeddings.

The record store is the only shared mutable resource in the process.
Every repository call runs in its own transaction through
:func:`~docrag.storage.db.session_scope`; multi-row chunk inserts are a
single transaction.
"""

from docrag.storage.chunks import ChunkStore
from docrag.storage.db import Base, create_db_engine, create_session_factory, init_db, session_scope
from docrag.storage.documents import DocumentRepository
from docrag.storage.models import ChunkRecord, DocumentRecord, DocumentStatus, EmbeddingRecord

__all__ = [
    "Base",
    "ChunkRecord",
    "ChunkStore",
    "DocumentRecord",
    "DocumentRepository",
    "DocumentStatus",
    "EmbeddingRecord",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
]
