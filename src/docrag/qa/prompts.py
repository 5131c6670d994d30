"""Prompt templates for retrieval-augmented answering.

Prompts are plain strings; :mod:`docrag.qa.llm` wraps them into chat
messages.  Keeping them in one place makes them easy to audit and
version.
"""

from __future__ import annotations

from collections.abc import Sequence

from docrag.retrieval.models import SearchHit

CONTEXT_SEPARATOR = "\n\n---\n\n"

RAG_SYSTEM_PROMPT = """\
You are a precise, helpful assistant that answers questions using
**only** the provided context from documents.

Rules:
1. Use only facts stated in the context. Do not draw on outside knowledge.
2. Cite every factual claim with the bracketed source number it came
   from, like [1] or [2].
3. If the context does not contain the answer, say clearly that the
   information is not in the indexed documents.
4. Be concise and accurate.
"""


def build_context(hits: Sequence[SearchHit]) -> str:
    """Number *hits* in the given order, labelled with their file name."""
    return CONTEXT_SEPARATOR.join(
        f"[Source {i}: {hit.filename}]\n{hit.text}" for i, hit in enumerate(hits, 1)
    )


def build_rag_prompt(query: str, hits: Sequence[SearchHit]) -> tuple[str, str]:
    """Return ``(system, user)`` prompt strings for a RAG generation call.

    Parameters
    ----------
    query:
        The user question.
    hits:
        Retrieved chunks, best first.
    """
    user_msg = (
        f"Context from documents:\n{build_context(hits)}\n\n"
        f"User question: {query}\n\n"
        "Please provide a clear and accurate answer based on the context above, "
        "citing sources by number:"
    )
    return RAG_SYSTEM_PROMPT, user_msg
