"""Domain models for generated answers and their cited sources."""

from __future__ import annotations

from pydantic import BaseModel, Field


class GenerationResult(BaseModel):
    """Raw output of one generation call."""

    text: str
    model: str
    tokens_generated: int | None = None
    time_ms: int | None = None


class SourceReference(BaseModel):
    """A retrieved chunk cited by an answer.

    ``index`` is the 1-based label used for the chunk in the prompt
    context, so ``[2]`` in the answer text refers to ``index == 2``.
    """

    index: int
    document_id: int
    filename: str
    chunk_index: int
    similarity: float
    snippet: str


class Answer(BaseModel):
    """Answer to a question, with the sources it was generated from."""

    query: str
    answer: str
    sources: list[SourceReference] = Field(default_factory=list)
    no_results: bool = False
    model: str | None = None
    chunks_retrieved: int = 0
    tokens_generated: int | None = None
    response_time_ms: int | None = None
