"""Abstract base class for vector-index backends.

A backend persists one vector per chunk and answers top-k similarity
queries restricted to chunks of ``completed`` documents.  Chunk rows
themselves always live in the record store (:class:`ChunkStore`); the
backend removes them together with their vectors in
:meth:`VectorIndexBase.delete_for_document`.

Similarity scale
----------------
Scores are derived from cosine distance ``d ∈ [0, 2]`` as
``s = 1 - d / 2 ∈ [0, 1]`` (algebraically ``(1 + cos) / 2``), so
thresholds and displayed scores are comparable across backends.  The
mapping assumes true cosine distance; a backend using another metric
must not reuse it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

import numpy as np

from docrag.exceptions import ValidationError
from docrag.retrieval.models import SearchHit
from docrag.storage.chunks import ChunkStore

logger = logging.getLogger(__name__)


def similarity_from_distance(distance: float) -> float:
    """Map cosine distance ``[0, 2]`` onto the ``[0, 1]`` similarity scale."""
    return 1.0 - distance / 2.0


def cosine_distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine distance between *query* and every row of *matrix*.

    Rows with zero norm yield ``nan``.
    """
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    with np.errstate(divide="ignore", invalid="ignore"):
        cosine = (matrix @ query) / norms
    cosine = np.where(norms > 0, np.clip(cosine, -1.0, 1.0), np.nan)
    return 1.0 - cosine


def rank_hits(hits: Iterable[SearchHit], *, k: int, min_similarity: float) -> list[SearchHit]:
    """Keep hits at or above *min_similarity*, best first, at most *k*.

    Ties are broken by ascending chunk id.
    """
    kept = [h for h in hits if h.similarity >= min_similarity]
    kept.sort(key=lambda h: (-h.similarity, h.chunk_id))
    return kept[:k]


class VectorIndexBase(ABC):
    """Backend-agnostic vector-index interface.

    Parameters
    ----------
    chunk_store:
        Record-store access for chunk rows.
    dimension:
        Expected vector width; ``None`` accepts any width.
    """

    def __init__(self, chunk_store: ChunkStore, *, dimension: int | None = None) -> None:
        self._chunks = chunk_store
        self.dimension = dimension

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def store_vectors(self, chunk_ids: Sequence[int], vectors: Sequence[Sequence[float] | None]) -> int:
        """Persist ``(chunk_id, vector)`` for every present vector.

        ``None`` slots are skipped; those chunks stay unsearchable.  The
        whole batch is written atomically.  Returns the number stored.
        """
        ...

    @abstractmethod
    def search_top_k(
        self,
        query_vector: Sequence[float],
        *,
        k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[SearchHit]:
        """Return up to *k* hits with ``similarity >= min_similarity``.

        Only chunks of ``completed`` documents are candidates.  Results
        are ordered by similarity descending, ties by ascending chunk id.
        """
        ...

    @abstractmethod
    def delete_for_document(self, doc_id: int) -> int:
        """Remove a document's vectors, then its chunks.

        A document without chunks is a no-op.  Returns the number of
        chunks deleted.
        """
        ...

    @abstractmethod
    def count_vectors(self) -> int: ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- shared behaviour -----------------------------------------------------

    def replace_document(
        self,
        doc_id: int,
        texts: Sequence[str],
        vectors: Sequence[Sequence[float] | None],
    ) -> tuple[list[int], int]:
        """Swap a document's chunks and vectors for *texts* / *vectors*.

        Called only once every vector is in hand, so the old set stays
        searchable until the new one is ready.  Returns the new chunk
        ids and the number of vectors stored.
        """
        if len(texts) != len(vectors):
            raise ValidationError(f"texts ({len(texts)}) and vectors ({len(vectors)}) must have the same length")
        self._validate_store_args(range(len(vectors)), vectors)
        removed = self.delete_for_document(doc_id)
        if removed:
            logger.info("Replacing %d existing chunks of document %d", removed, doc_id)
        chunk_ids = self._chunks.add_chunks(doc_id, texts)
        return chunk_ids, self.store_vectors(chunk_ids, vectors)

    def stats(self) -> dict[str, Any]:
        data = self._chunks.stats()
        data["total_embeddings"] = self.count_vectors()
        return data

    # -- validation helpers ---------------------------------------------------

    def _validate_store_args(
        self, chunk_ids: Sequence[int], vectors: Sequence[Sequence[float] | None]
    ) -> list[tuple[int, list[float]]]:
        if len(chunk_ids) != len(vectors):
            raise ValidationError(
                f"chunk_ids ({len(chunk_ids)}) and vectors ({len(vectors)}) must have the same length"
            )
        pairs: list[tuple[int, list[float]]] = []
        for chunk_id, vector in zip(chunk_ids, vectors):
            if vector is None:
                continue
            values = [float(x) for x in vector]
            if self.dimension is not None and len(values) != self.dimension:
                raise ValidationError(
                    f"Vector for chunk {chunk_id} has {len(values)} dimensions, expected {self.dimension}"
                )
            pairs.append((int(chunk_id), values))
        return pairs

    def _validate_query(self, query_vector: Sequence[float], k: int) -> np.ndarray:
        if k < 1:
            raise ValidationError("k must be >= 1", field="k")
        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1 or query.size == 0:
            raise ValidationError("Query vector must be a non-empty 1-D sequence", field="query_vector")
        if self.dimension is not None and query.size != self.dimension:
            raise ValidationError(
                f"Query vector has {query.size} dimensions, expected {self.dimension}", field="query_vector"
            )
        if not np.any(query):
            raise ValidationError("Query vector has zero norm", field="query_vector")
        return query
