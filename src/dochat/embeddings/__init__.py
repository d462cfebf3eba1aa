"""Embedding gateways and the namespaced vector index."""

from .service import (
    EmbeddingConfig,
    EmbeddingGateway,
    EmbeddingUnavailable,
    HashEmbeddingGateway,
    LangChainEmbeddingGateway,
)
from .store import (
    ChromaVectorIndex,
    NamespaceRegistry,
    VectorHit,
    VectorIndex,
    VectorIndexUnavailable,
    VectorRecord,
)

__all__ = [
    "ChromaVectorIndex",
    "EmbeddingConfig",
    "EmbeddingGateway",
    "EmbeddingUnavailable",
    "HashEmbeddingGateway",
    "LangChainEmbeddingGateway",
    "NamespaceRegistry",
    "VectorHit",
    "VectorIndex",
    "VectorIndexUnavailable",
    "VectorRecord",
]
