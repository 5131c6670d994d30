"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import re
import zlib
from collections.abc import Iterator

import pytest

from docrag.ingestion.embedder import EmbeddingOrchestrator
from docrag.ingestion.lifecycle import DocumentLifecycle
from docrag.qa.models import GenerationResult
from docrag.storage.chunks import ChunkStore
from docrag.storage.db import create_db_engine, create_session_factory, init_db
from docrag.storage.documents import DocumentRepository

DIM = 8


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Test doubles ────────────────────────────────────────────────────────


class FakeEmbeddingProvider:
    """Deterministic bag-of-words vectors of width :data:`DIM`.

    Texts containing any string in *fail_on* raise, to exercise
    per-item failure handling.
    """

    def __init__(self, fail_on: tuple[str, ...] = ()) -> None:
        self.fail_on = fail_on
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise RuntimeError(f"cannot embed {text[:20]!r}")
        vector = [0.0] * DIM
        for word in re.findall(r"\w+", text.lower()):
            vector[zlib.crc32(word.encode()) % DIM] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector


class FakeGenerator:
    """Generation provider double that records its calls."""

    def __init__(self, *, available: bool = True, text: str = "The sky is blue [1].") -> None:
        self._available = available
        self.text = text
        self.calls: list[dict] = []

    def available(self) -> bool:
        return self._available

    def generate(self, prompt, *, system="", temperature=None, max_tokens=None, model=None) -> GenerationResult:
        self.calls.append(
            {"prompt": prompt, "system": system, "temperature": temperature, "max_tokens": max_tokens, "model": model}
        )
        return GenerationResult(text=self.text, model=model or "fake-model", tokens_generated=7, time_ms=3)

    def list_models(self) -> list[str]:
        return ["fake-model", "fake-model-large"]


# ── Storage fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def engine() -> Iterator:
    engine = create_db_engine("sqlite://", echo=False)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture()
def documents(session_factory) -> DocumentRepository:
    return DocumentRepository(session_factory)


@pytest.fixture()
def chunk_store(session_factory) -> ChunkStore:
    return ChunkStore(session_factory)


@pytest.fixture()
def lifecycle(documents) -> DocumentLifecycle:
    return DocumentLifecycle(documents, min_index_chars=20)


@pytest.fixture()
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def embedder(fake_provider) -> EmbeddingOrchestrator:
    return EmbeddingOrchestrator(fake_provider, dimension=DIM, max_workers=1)


@pytest.fixture()
def make_document(lifecycle):
    """Create a document, optionally completed with *text*."""

    def _make(name: str = "notes.txt", text: str | None = None, **kwargs) -> int:
        doc_id = lifecycle.create(original_name=name, mime_type="text/plain", **kwargs)
        if text is not None:
            lifecycle.begin_processing(doc_id)
            lifecycle.complete_extraction(doc_id, text, "direct", 100.0)
        return doc_id

    return _make


@pytest.fixture()
def provider_cls() -> type[FakeEmbeddingProvider]:
    return FakeEmbeddingProvider


@pytest.fixture()
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def generator_cls() -> type[FakeGenerator]:
    return FakeGenerator
