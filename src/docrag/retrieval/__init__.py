"""
Retrieval — vector storage and similarity search over document chunks.

Public surface
--------------
- :class:`SemanticRetriever` — free-text search returning ranked hits.
- :class:`VectorIndexBase` — abstract backend.
- :class:`SqlVectorIndex` — default backend in the record store.
- :class:`ChromaVectorIndex` — Chroma backend.
- :func:`build_vector_index` — pick a backend from settings.
- :class:`SearchHit`, :class:`MetadataFilter` — data models.
"""

from docrag.retrieval.base import VectorIndexBase, similarity_from_distance
from docrag.retrieval.factory import build_vector_index
from docrag.retrieval.models import MetadataFilter, SearchHit
from docrag.retrieval.retriever import SemanticRetriever
from docrag.retrieval.sql_index import SqlVectorIndex

__all__ = [
    "ChromaVectorIndex",
    "MetadataFilter",
    "SearchHit",
    "SemanticRetriever",
    "SqlVectorIndex",
    "VectorIndexBase",
    "build_vector_index",
    "similarity_from_distance",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorIndex to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorIndex":
        from docrag.retrieval.chroma_store import ChromaVectorIndex

        return ChromaVectorIndex
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
