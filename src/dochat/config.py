"""Runtime configuration for the dochat answer pipeline."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="dochat_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Vector index
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False
    namespace_prefix: str = "dochat"
    memory_namespace_prefix: str = "dochat-mem"

    # Embeddings
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dim: int = 384
    use_model_embeddings: bool = False

    # Generation
    generator_model: str = "Qwen/Qwen2.5-1.8B-Instruct"
    use_model_generator: bool = False
    generation_max_tokens: int = 1000
    generation_temperature: float = 0.7
    hyde_max_tokens: int = 500
    hyde_temperature: float = 0.7
    hyde_enabled: bool = True

    # Reranking
    reranker: Literal["lexical", "cross_encoder", "text_classifier"] = "lexical"
    cross_encoder_model: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"
    classifier_model: str = "distilbert-base-uncased-finetuned-sst-2-english"
    reranker_device: str | None = None
    rerank_prefix_chars: int = 500

    # Retrieval
    top_k: int = 5
    max_top_k: int = 20
    min_similarity: float = 0.60
    oversample_factor: int = 4
    min_oversample: int = 10
    rerank_pool_factor: int = 2
    min_rerank_pool: int = 10

    # Context budgets (characters)
    memory_context_budget: int = 4000
    retrieval_context_budget: int = 6000

    # Memory
    memory_backend: Literal["memory", "chroma"] = "memory"
    memory_enabled: bool = True
    conversation_limit: int = 5
    recent_documents_hours: int = 24
    relevant_memories_limit: int = 3

    persona: str = "mentor"

    # Per-call timeouts (seconds)
    embedding_timeout_seconds: float = 15.0
    generation_timeout_seconds: float = 60.0
    hyde_timeout_seconds: float = 30.0
    classifier_timeout_seconds: float = 10.0
    vector_timeout_seconds: float = 10.0
    memory_timeout_seconds: float = 5.0

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
