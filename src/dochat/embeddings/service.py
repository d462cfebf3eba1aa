"""Embedding gateways for dochat."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

LOGGER = logging.getLogger(__name__)

Vector = Tuple[float, ...]


class EmbeddingUnavailable(RuntimeError):
    """Raised when the embedding model cannot produce a vector."""


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding gateways."""

    model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 384
    use_model: bool = False
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None


class EmbeddingGateway(Protocol):
    """Converts text into fixed-dimension vectors."""

    async def embed(self, text: str) -> Vector:
        """Return the embedding of a single text."""

    async def embed_batch(self, texts: Sequence[str]) -> Sequence[Vector]:
        """Return embeddings for several texts, in order."""


def _normalize(vector: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


class HashEmbeddingGateway:
    """Deterministic lightweight embeddings used for testing and offline runs."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def dim(self) -> int:
        return self._config.dim

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    async def embed(self, text: str) -> Vector:
        return self._hash_to_vector(text)

    async def embed_batch(self, texts: Sequence[str]) -> Sequence[Vector]:
        return [self._hash_to_vector(text) for text in texts]


class LangChainEmbeddingGateway:
    """Embedding gateway backed by a sentence-embedding model via LangChain."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self._delegate = HashEmbeddingGateway(self._config)
        self._client: LangChainEmbeddings | None = None
        if not self._config.use_model:
            LOGGER.info("LangChainEmbeddingGateway running in hash-only mode.")
            return
        try:
            model_kwargs = {"device": self._config.device} if self._config.device else {}
            if self._config.cache_folder:
                model_kwargs["cache_dir"] = self._config.cache_folder
            self._client = HuggingFaceEmbeddings(
                model_name=self._config.model,
                model_kwargs=model_kwargs,
                encode_kwargs={"normalize_embeddings": self._config.normalize},
            )
            LOGGER.info("Loaded embedding model %s", self._config.model)
        except Exception as exc:  # pragma: no cover - import/runtime guard
            LOGGER.warning("Falling back to hash embeddings: %s", exc)
            self._client = None

    @property
    def dim(self) -> int:
        return self._config.dim

    async def embed(self, text: str) -> Vector:
        if self._client is None:
            return await self._delegate.embed(text)
        try:
            vector = await asyncio.to_thread(self._client.embed_query, text)
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding model failed: {exc}") from exc
        return self._finish(vector)

    async def embed_batch(self, texts: Sequence[str]) -> Sequence[Vector]:
        if not texts:
            return []
        if self._client is None:
            return await self._delegate.embed_batch(texts)
        try:
            vectors = await asyncio.to_thread(self._client.embed_documents, list(texts))
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding model failed: {exc}") from exc
        if len(vectors) != len(texts):
            LOGGER.error("Embedding backend returned %d vectors for %d texts", len(vectors), len(texts))
            raise EmbeddingUnavailable("Mismatch between number of texts and embedding vectors")
        return [self._finish(vector) for vector in vectors]

    def _finish(self, vector: Sequence[float]) -> Vector:
        if len(vector) != self._config.dim:
            LOGGER.warning(
                "Embedding dim mismatch: configured=%d, actual=%d",
                self._config.dim,
                len(vector),
            )
        if not self._config.normalize:
            return tuple(vector)
        return _normalize(vector)
