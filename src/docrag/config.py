"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Storage
    database_url: str = Field(
        default="sqlite:///./data/docrag.db",
        description="SQLAlchemy URL of the record store holding documents, chunks and embeddings",
    )
    database_echo: bool = False
    upload_dir: str = "./uploads"
    max_upload_bytes: int = 52_428_800

    # Chunking
    chunk_target_words: int = 500
    chunk_overlap_words: int = 100
    chunk_min_words: int = 50
    min_index_chars: int = Field(
        default=50,
        description="Minimum length of extracted text before a document may be chunked",
    )

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int = 384
    normalize_embeddings: bool = True
    embed_workers: int = 1

    # Vector index
    vector_backend: str = Field(default="sql", description="'sql' (record store) or 'chroma'")
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "docrag"

    # LLM
    openai_api_key: str = Field(default="", description="API key for the OpenAI-compatible endpoint")
    llm_model_name: str = Field(default="gpt-4o-mini", description="Default chat model identifier")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for the LLM API. Leave empty to use OpenAI cloud. "
            "Any OpenAI-compatible endpoint works, e.g. "
            "'https://api.groq.com/openai/v1' or a local vLLM server."
        ),
    )
    llm_available_models: list[str] = Field(default_factory=lambda: ["gpt-4o-mini", "gpt-4o"])
    llm_temperature: float = 0.3
    llm_max_tokens: int = 500
    llm_timeout_seconds: float = 30.0

    # Query
    default_top_k: int = 5
    max_top_k: int = 50
    query_min_similarity: float = 0.3
    search_min_similarity: float = 0.2
    similarity_precision: int = 4
    snippet_chars: int = 200

    # Background work
    ingestion_workers: int = 4
    download_timeout_seconds: float = 30.0

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import `settings` wherever needed.
settings = Settings()
