"""
QA — retrieval-augmented question answering.

Public API
----------
- :class:`QueryOrchestrator` — answer a question with cited sources.
- :class:`ChatGenerationProvider` — OpenAI-compatible generation backend.
- :class:`Answer`, :class:`SourceReference`, :class:`GenerationResult` — data models.
"""

from docrag.qa.llm import ChatGenerationProvider, GenerationProvider
from docrag.qa.models import Answer, GenerationResult, SourceReference
from docrag.qa.orchestrator import NO_RESULTS_ANSWER, QueryOrchestrator

__all__ = [
    "NO_RESULTS_ANSWER",
    "Answer",
    "ChatGenerationProvider",
    "GenerationProvider",
    "GenerationResult",
    "QueryOrchestrator",
    "SourceReference",
]
