"""Query orchestrator: retrieve, assemble context, generate a cited answer."""

from __future__ import annotations

import logging
import time

from docrag.config import settings
from docrag.exceptions import ExternalServiceUnavailable, ValidationError
from docrag.qa.llm import GenerationProvider
from docrag.qa.models import Answer, SourceReference
from docrag.qa.prompts import build_rag_prompt
from docrag.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = "I couldn't find any relevant information in the indexed documents to answer this question."


class QueryOrchestrator:
    """Answer questions from the indexed documents.

    Parameters
    ----------
    retriever:
        Embeds the question and searches the vector index.
    generator:
        Generation provider.
    min_similarity:
        Retrieval threshold; kept low so recall wins over precision.
    similarity_precision:
        Decimal places of the similarity reported per source.
    snippet_chars:
        Length bound of the text snippet reported per source.
    temperature, max_tokens:
        Generation settings for answers.
    """

    def __init__(
        self,
        retriever: SemanticRetriever,
        generator: GenerationProvider,
        *,
        min_similarity: float = settings.query_min_similarity,
        similarity_precision: int = settings.similarity_precision,
        snippet_chars: int = settings.snippet_chars,
        temperature: float = settings.llm_temperature,
        max_tokens: int = settings.llm_max_tokens,
    ) -> None:
        self._retriever = retriever
        self._generator = generator
        self.min_similarity = min_similarity
        self.similarity_precision = similarity_precision
        self.snippet_chars = snippet_chars
        self.temperature = temperature
        self.max_tokens = max_tokens

    def answer(self, query: str, *, k: int | None = None, model: str | None = None) -> Answer:
        """Answer *query* from the top *k* chunks.

        No matching chunk is a successful outcome: the returned answer
        has ``no_results=True``, a fixed message and no sources.

        Raises
        ------
        ValidationError
            Empty query or invalid *k*.
        ExternalServiceUnavailable
            The generation provider is not reachable; checked before any
            retrieval work.
        ExternalServiceError
            Embedding or generation failed.
        """
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query is required", field="query")
        query = query.strip()
        started = time.perf_counter()
        logger.info("RAG query: %r", query[:200])

        if not self._generator.available():
            raise ExternalServiceUnavailable("generation", "Generation service is not available")

        hits = self._retriever.search(query, k=k, min_similarity=self.min_similarity)
        if not hits:
            logger.info("No chunks above %.2f similarity for query", self.min_similarity)
            return Answer(query=query, answer=NO_RESULTS_ANSWER, no_results=True)

        system, prompt = build_rag_prompt(query, hits)
        result = self._generator.generate(
            prompt,
            system=system,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            model=model,
        )

        sources = [
            SourceReference(
                index=i,
                document_id=hit.doc_id,
                filename=hit.filename,
                chunk_index=hit.chunk_index,
                similarity=round(hit.similarity, self.similarity_precision),
                snippet=hit.snippet(self.snippet_chars),
            )
            for i, hit in enumerate(hits, 1)
        ]
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("Answered from %d chunks in %d ms", len(hits), elapsed_ms)
        return Answer(
            query=query,
            answer=result.text,
            sources=sources,
            model=result.model,
            chunks_retrieved=len(hits),
            tokens_generated=result.tokens_generated,
            response_time_ms=elapsed_ms,
        )
