"""Domain models for similarity-search results and metadata filters."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"doc_id"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)


class SearchHit(BaseModel):
    """One chunk returned by a top-k similarity search.

    ``similarity`` is on the normalised ``[0, 1]`` scale produced by
    :func:`docrag.retrieval.base.similarity_from_distance`.
    """

    chunk_id: int
    doc_id: int
    filename: str
    text: str
    chunk_index: int
    word_count: int
    similarity: float
    file_type: str | None = None

    def snippet(self, max_chars: int) -> str:
        """Return at most *max_chars* of the text, with ``...`` when cut."""
        if len(self.text) <= max_chars:
            return self.text
        return self.text[:max_chars] + "..."
