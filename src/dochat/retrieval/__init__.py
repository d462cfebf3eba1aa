"""Retrieval components."""

from .rerank import (
    ClassifierUnavailable,
    CrossEncoderRelevanceScorer,
    FusionReranker,
    LexicalRelevanceScorer,
    RelevanceScorer,
    RerankResult,
    TextClassificationRelevanceScorer,
    build_scorer,
    fuse,
)
from .service import DualChannelRetriever, RetrievalConfig

__all__ = [
    "ClassifierUnavailable",
    "CrossEncoderRelevanceScorer",
    "DualChannelRetriever",
    "FusionReranker",
    "LexicalRelevanceScorer",
    "RelevanceScorer",
    "RerankResult",
    "RetrievalConfig",
    "TextClassificationRelevanceScorer",
    "build_scorer",
    "fuse",
]
