"""Unit tests for the query orchestrator, prompts and generation provider."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from docrag.exceptions import (
    ExternalServiceError,
    ExternalServiceUnavailable,
    GenerationRateLimited,
    GenerationUnauthorized,
    ValidationError,
)
from docrag.qa.llm import ChatGenerationProvider
from docrag.qa.orchestrator import NO_RESULTS_ANSWER, QueryOrchestrator
from docrag.qa.prompts import build_context, build_rag_prompt
from docrag.retrieval.models import SearchHit
from docrag.retrieval.retriever import SemanticRetriever
from docrag.retrieval.sql_index import SqlVectorIndex

DIM = 8


def _hit(chunk_id: int, filename: str, text: str, similarity: float) -> SearchHit:
    return SearchHit(
        chunk_id=chunk_id, doc_id=chunk_id, filename=filename, text=text, chunk_index=0, word_count=3, similarity=similarity
    )


@pytest.fixture()
def index(chunk_store) -> SqlVectorIndex:
    return SqlVectorIndex(chunk_store, dimension=DIM)


@pytest.fixture()
def orchestrator(embedder, index, fake_generator) -> QueryOrchestrator:
    retriever = SemanticRetriever(embedder, index, default_k=5, score_threshold=0.2, max_k=50)
    return QueryOrchestrator(retriever, fake_generator, min_similarity=0.3, similarity_precision=4, snippet_chars=10)


@pytest.fixture()
def indexed(make_document, chunk_store, index, embedder):
    doc_id = make_document("sky.txt", text="The sky is blue. Water is wet. Cats are mammals.")
    texts = ["the sky is blue", "cats are mammals and purr loudly"]
    chunk_ids = chunk_store.add_chunks(doc_id, texts)
    index.store_vectors(chunk_ids, embedder.embed_batch(texts))
    return doc_id


class TestPrompts:
    def test_context_is_numbered_in_rank_order(self) -> None:
        context = build_context([_hit(1, "a.txt", "first", 0.9), _hit(2, "b.txt", "second", 0.8)])
        assert context == "[Source 1: a.txt]\nfirst\n\n---\n\n[Source 2: b.txt]\nsecond"

    def test_rag_prompt_contains_question_and_rules(self) -> None:
        system, user = build_rag_prompt("Why?", [_hit(1, "a.txt", "Because.", 0.9)])
        assert "only" in system
        assert "[1]" in system
        assert "not in the indexed documents" in system
        assert "User question: Why?" in user
        assert "[Source 1: a.txt]" in user


class TestQueryOrchestrator:
    def test_answer_with_sources(self, orchestrator, indexed, fake_generator) -> None:
        answer = orchestrator.answer("the sky is blue", k=5, model="fake-model-large")

        assert answer.no_results is False
        assert answer.answer == "The sky is blue [1]."
        assert answer.model == "fake-model-large"
        assert answer.tokens_generated == 7
        assert answer.response_time_ms is not None
        assert answer.chunks_retrieved == len(answer.sources) >= 1

        top = answer.sources[0]
        assert top.index == 1
        assert top.document_id == indexed
        assert top.filename == "sky.txt"
        assert top.similarity == pytest.approx(1.0)
        assert top.snippet == "the sky is..."
        assert all(round(s.similarity, 4) == s.similarity for s in answer.sources)

        call = fake_generator.calls[0]
        assert "[Source 1: sky.txt]\nthe sky is blue" in call["prompt"]
        assert call["temperature"] == orchestrator.temperature
        assert call["max_tokens"] == orchestrator.max_tokens
        assert call["model"] == "fake-model-large"

    def test_no_results_is_success(self, orchestrator, fake_generator, make_document) -> None:
        make_document("empty.txt", text="Nothing indexed here at all.")
        answer = orchestrator.answer("anything at all?")

        assert answer.no_results is True
        assert answer.sources == []
        assert answer.answer == NO_RESULTS_ANSWER
        assert fake_generator.calls == []

    def test_below_threshold_is_no_results(self, orchestrator, make_document, chunk_store, index, embedder) -> None:
        doc_id = make_document(text="The sky is blue. Water is wet. Cats are mammals.")
        chunk_ids = chunk_store.add_chunks(doc_id, ["opposite"])
        index.store_vectors(chunk_ids, [[-x for x in embedder.embed_one("positive")]])

        answer = orchestrator.answer("positive")

        assert answer.no_results is True
        assert answer.sources == []

    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_query(self, orchestrator, query) -> None:
        with pytest.raises(ValidationError):
            orchestrator.answer(query)

    def test_unavailable_generator_checked_first(self, embedder, index, generator_cls, fake_provider) -> None:
        retriever = SemanticRetriever(embedder, index)
        orchestrator = QueryOrchestrator(retriever, generator_cls(available=False))
        with pytest.raises(ExternalServiceUnavailable):
            orchestrator.answer("is anyone there?")
        assert fake_provider.calls == []


# ── Generation provider ────────────────────────────────────────────────


def _openai_error(cls, status: int):
    request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("error", response=response, body=None)


class TestChatGenerationProvider:
    def test_available_requires_key_or_base_url(self) -> None:
        assert ChatGenerationProvider(api_key="", base_url="").available() is False
        assert ChatGenerationProvider(api_key="sk-test", base_url="").available() is True
        assert ChatGenerationProvider(api_key="", base_url="http://localhost:8000/v1").available() is True

    def test_list_models_includes_default(self) -> None:
        provider = ChatGenerationProvider("custom-model", api_key="k", available_models=["a", "b"])
        assert provider.list_models() == ["custom-model", "a", "b"]

    def test_generate_builds_messages_and_reads_usage(self) -> None:
        client = MagicMock()
        client.invoke.return_value = AIMessage(
            content="Answer [1].",
            usage_metadata={"input_tokens": 20, "output_tokens": 5, "total_tokens": 25},
        )
        provider = ChatGenerationProvider("m1", api_key="k", temperature=0.3, max_tokens=500)

        with patch("docrag.qa.llm.ChatOpenAI", return_value=client) as chat_cls:
            result = provider.generate("Question?", system="Be brief.", temperature=0.1, model="m2")
            provider.generate("Again?")

        chat_cls.assert_called_once()
        messages = client.invoke.call_args_list[0].args[0]
        assert messages == [SystemMessage(content="Be brief."), HumanMessage(content="Question?")]
        assert client.invoke.call_args_list[0].kwargs == {"model": "m2", "temperature": 0.1, "max_tokens": 500}
        assert result.text == "Answer [1]."
        assert result.model == "m2"
        assert result.tokens_generated == 5
        assert result.time_ms is not None

    def test_base_url_without_key_uses_placeholder(self) -> None:
        provider = ChatGenerationProvider("m", api_key="", base_url="http://vllm:8000/v1")
        with patch("docrag.qa.llm.ChatOpenAI") as chat_cls:
            chat_cls.return_value.invoke.return_value = AIMessage(content="ok")
            provider.generate("hi")
        kwargs = chat_cls.call_args.kwargs
        assert kwargs["base_url"] == "http://vllm:8000/v1"
        assert kwargs["api_key"] == "EMPTY"

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (lambda: _openai_error(openai.AuthenticationError, 401), GenerationUnauthorized),
            (lambda: _openai_error(openai.RateLimitError, 429), GenerationRateLimited),
            (lambda: _openai_error(openai.InternalServerError, 500), ExternalServiceError),
            (
                lambda: openai.APIConnectionError(request=httpx.Request("POST", "https://api.example.com")),
                ExternalServiceUnavailable,
            ),
        ],
    )
    def test_provider_errors_are_mapped(self, error, expected) -> None:
        provider = ChatGenerationProvider("m", api_key="k")
        with patch("docrag.qa.llm.ChatOpenAI") as chat_cls:
            chat_cls.return_value.invoke.side_effect = error()
            with pytest.raises(expected):
                provider.generate("hi")

    def test_empty_prompt(self) -> None:
        with pytest.raises(ValidationError):
            ChatGenerationProvider("m", api_key="k").generate("  ")
