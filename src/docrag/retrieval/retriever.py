"""Semantic retriever — free-text similarity search over indexed chunks.

This is the public search entry point used by the HTTP layer and the
query orchestrator.  It embeds the query once and delegates ranking to
whichever :class:`VectorIndexBase` backend it was given.

Usage::

    retriever = SemanticRetriever(embedder, index)
    for hit in retriever.search("What colour is the sky?", k=3):
        print(hit.filename, round(hit.similarity, 4), hit.text[:80])
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from docrag.config import settings
from docrag.exceptions import ValidationError
from docrag.ingestion.embedder import EmbeddingOrchestrator
from docrag.retrieval.base import VectorIndexBase
from docrag.retrieval.models import SearchHit

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever over an embedder and a vector index.

    Parameters
    ----------
    embedder:
        Turns the query text into a vector.
    index:
        A concrete vector-index backend.
    default_k:
        Number of results when the caller does not pass ``k``.
    score_threshold:
        Default minimum similarity on the ``[0, 1]`` scale.
    max_k:
        Upper bound accepted for ``k``.
    """

    def __init__(
        self,
        embedder: EmbeddingOrchestrator,
        index: VectorIndexBase,
        *,
        default_k: int = settings.default_top_k,
        score_threshold: float = settings.search_min_similarity,
        max_k: int = settings.max_top_k,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self.default_k = default_k
        self.score_threshold = score_threshold
        self.max_k = max_k

    # -- public API -----------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchHit]:
        """Embed *query* and return the best matching chunks.

        Parameters
        ----------
        query:
            Natural-language query string.
        k:
            Number of results (defaults to ``self.default_k``).
        min_similarity:
            Threshold override (defaults to ``self.score_threshold``).

        Raises
        ------
        ValidationError
            Empty query, or ``k`` outside ``1..max_k``.
        """
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query is required", field="query")
        k = self._resolve_k(k)
        logger.info("Searching for: %s", query[:100])
        vector = self._embedder.embed_one(query.strip())
        return self.search_by_embedding(vector, k=k, min_similarity=min_similarity)

    def search_by_embedding(
        self,
        embedding: Sequence[float],
        *,
        k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchHit]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = self._resolve_k(k)
        threshold = self.score_threshold if min_similarity is None else min_similarity
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("min_similarity must be between 0 and 1", field="min_similarity")
        return self._index.search_top_k(embedding, k=k, min_similarity=threshold)

    # -- internals ------------------------------------------------------------

    def _resolve_k(self, k: int | None) -> int:
        k = self.default_k if k is None else k
        if isinstance(k, bool) or not isinstance(k, int) or not 1 <= k <= self.max_k:
            raise ValidationError(f"k must be an integer between 1 and {self.max_k}", field="k")
        return k
