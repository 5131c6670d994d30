"""Process-wide wiring.

:func:`build_services` constructs every collaborator exactly once and
passes them to each other explicitly.  Entry points (the FastAPI
lifespan, scripts, tests) hold the returned :class:`Services` and never
reach for module-level clients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from docrag.config import Settings, settings
from docrag.ingestion.chunker import ChunkerConfig
from docrag.ingestion.embedder import EmbeddingOrchestrator, EmbeddingProvider, HuggingFaceEmbeddingProvider
from docrag.ingestion.lifecycle import DocumentLifecycle
from docrag.ingestion.loader import DocumentExtractor, Extractor
from docrag.ingestion.pipeline import IngestionPipeline
from docrag.qa.llm import ChatGenerationProvider, GenerationProvider
from docrag.qa.orchestrator import QueryOrchestrator
from docrag.retrieval.base import VectorIndexBase
from docrag.retrieval.factory import build_vector_index
from docrag.retrieval.retriever import SemanticRetriever
from docrag.storage.chunks import ChunkStore
from docrag.storage.db import create_db_engine, create_session_factory, init_db
from docrag.storage.documents import DocumentRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every long-lived collaborator of the application."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    documents: DocumentRepository
    chunks: ChunkStore
    lifecycle: DocumentLifecycle
    embedder: EmbeddingOrchestrator
    index: VectorIndexBase
    retriever: SemanticRetriever
    generator: GenerationProvider
    orchestrator: QueryOrchestrator
    pipeline: IngestionPipeline

    def close(self) -> None:
        self.pipeline.shutdown(wait=True)
        self.engine.dispose()


def build_services(
    config: Settings = settings,
    *,
    engine: Engine | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    generator: GenerationProvider | None = None,
    extractor: Extractor | None = None,
    index: VectorIndexBase | None = None,
) -> Services:
    """Construct and connect all collaborators from *config*.

    Keyword arguments replace the corresponding default implementation,
    which is how tests substitute deterministic doubles.
    """
    engine = engine or create_db_engine(config.database_url, echo=config.database_echo)
    init_db(engine)
    session_factory = create_session_factory(engine)

    documents = DocumentRepository(session_factory)
    chunks = ChunkStore(session_factory)
    lifecycle = DocumentLifecycle(documents, min_index_chars=config.min_index_chars)

    embedder = EmbeddingOrchestrator(
        embedding_provider
        or HuggingFaceEmbeddingProvider(config.embedding_model, normalize=config.normalize_embeddings),
        dimension=config.embedding_dimension,
        max_workers=config.embed_workers,
    )
    index = index or build_vector_index(
        chunks, documents, backend=config.vector_backend, dimension=config.embedding_dimension
    )
    retriever = SemanticRetriever(
        embedder,
        index,
        default_k=config.default_top_k,
        score_threshold=config.search_min_similarity,
        max_k=config.max_top_k,
    )
    generator = generator or ChatGenerationProvider(
        config.llm_model_name,
        api_key=config.openai_api_key,
        base_url=config.llm_base_url,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens,
        timeout=config.llm_timeout_seconds,
        available_models=config.llm_available_models,
    )
    orchestrator = QueryOrchestrator(
        retriever,
        generator,
        min_similarity=config.query_min_similarity,
        similarity_precision=config.similarity_precision,
        snippet_chars=config.snippet_chars,
        temperature=config.llm_temperature,
        max_tokens=config.llm_max_tokens,
    )
    pipeline = IngestionPipeline(
        lifecycle,
        extractor or DocumentExtractor(),
        embedder,
        index,
        chunker_config=ChunkerConfig(
            target_words=config.chunk_target_words,
            overlap_words=config.chunk_overlap_words,
            min_words=config.chunk_min_words,
        ),
        upload_dir=config.upload_dir,
        download_timeout=config.download_timeout_seconds,
        max_download_bytes=config.max_upload_bytes,
        max_workers=config.ingestion_workers,
    )
    logger.info("Services initialised (vector backend: %s)", config.vector_backend)
    return Services(
        settings=config,
        engine=engine,
        session_factory=session_factory,
        documents=documents,
        chunks=chunks,
        lifecycle=lifecycle,
        embedder=embedder,
        index=index,
        retriever=retriever,
        generator=generator,
        orchestrator=orchestrator,
        pipeline=pipeline,
    )
