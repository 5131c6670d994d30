"""Embedding provider and the batch orchestrator built on it.

The provider turns one text into one fixed-width vector.  The
orchestrator validates input, enforces the configured dimension and,
for batches, isolates per-item failures so one bad chunk never aborts
the rest.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Protocol

from docrag.config import settings
from docrag.exceptions import DocRagError, ExternalServiceError, ValidationError

if TYPE_CHECKING:
    from langchain_huggingface import HuggingFaceEmbeddings

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Anything that maps a text to a fixed-dimension vector."""

    def embed(self, text: str) -> list[float]: ...


class HuggingFaceEmbeddingProvider:
    """Sentence-transformer embeddings via ``langchain_huggingface``.

    The model is loaded on the first :meth:`embed` call, at most once,
    and reused for the lifetime of the instance.

    Parameters
    ----------
    model_name:
        HuggingFace model id.
    normalize:
        L2-normalise vectors (recommended for cosine similarity).
    """

    def __init__(
        self,
        model_name: str = settings.embedding_model,
        *,
        normalize: bool = settings.normalize_embeddings,
    ) -> None:
        self.model_name = model_name
        self.normalize = normalize
        self._model: HuggingFaceEmbeddings | None = None
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._model is not None

    def _get_model(self) -> HuggingFaceEmbeddings:
        if self._model is None:
            with self._lock:
                if self._model is None:
                    from langchain_huggingface import HuggingFaceEmbeddings

                    logger.info("Loading embedding model: %s", self.model_name)
                    self._model = HuggingFaceEmbeddings(
                        model_name=self.model_name,
                        encode_kwargs={"normalize_embeddings": self.normalize},
                    )
                    logger.info("Embedding model loaded")
        return self._model

    def embed(self, text: str) -> list[float]:
        return self._get_model().embed_query(text)


class EmbeddingOrchestrator:
    """Validated single and batch embedding over an :class:`EmbeddingProvider`.

    Parameters
    ----------
    provider:
        The embedding backend, constructed once per process.
    dimension:
        Expected vector width; a provider returning anything else is
        treated as a failure.  ``None`` disables the check.
    max_workers:
        Parallel per-item calls in :meth:`embed_batch`.  Output order
        always matches input order.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        dimension: int | None = settings.embedding_dimension,
        max_workers: int = settings.embed_workers,
    ) -> None:
        self._provider = provider
        self.dimension = dimension
        self.max_workers = max(1, max_workers)

    def embed_one(self, text: str) -> list[float]:
        """Embed a single text.

        Raises
        ------
        ValidationError
            *text* is not a string or is empty / whitespace-only.
        ExternalServiceError
            The provider failed or returned a vector of the wrong width.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Text cannot be empty", field="text")

        try:
            raw = self._provider.embed(text)
        except DocRagError:
            raise
        except Exception as exc:
            raise ExternalServiceError("embedding", f"Embedding provider failed: {exc}") from exc

        vector = [float(x) for x in raw]
        if self.dimension is not None and len(vector) != self.dimension:
            raise ExternalServiceError(
                "embedding",
                f"Embedding has {len(vector)} dimensions, expected {self.dimension}",
            )
        return vector

    def embed_batch(self, texts: Sequence[str]) -> list[list[float] | None]:
        """Embed every text independently.

        Returns a list the same length and order as *texts*; a slot is
        ``None`` when that item failed.  Partial failure is logged, never
        raised.

        Raises
        ------
        ValidationError
            *texts* is not a non-empty list or tuple.
        """
        if not isinstance(texts, (list, tuple)) or not texts:
            raise ValidationError("Texts must be a non-empty list", field="texts")

        logger.info("Generating embeddings for %d chunks...", len(texts))

        if self.max_workers > 1 and len(texts) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                vectors = list(pool.map(self._try_embed, range(len(texts)), texts))
        else:
            vectors = []
            for i, text in enumerate(texts):
                vectors.append(self._try_embed(i, text))
                if (i + 1) % 10 == 0:
                    logger.debug("Progress: %d/%d embeddings generated", i + 1, len(texts))

        success_count = sum(1 for v in vectors if v is not None)
        logger.info("Generated %d/%d embeddings successfully", success_count, len(texts))
        return vectors

    def _try_embed(self, index: int, text: str) -> list[float] | None:
        try:
            return self.embed_one(text)
        except Exception:
            logger.error("Failed to generate embedding for chunk %d", index, exc_info=True)
            return None
