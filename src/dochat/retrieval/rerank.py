"""Fusion of search channels and query-aware reranking."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Protocol, Sequence

from dochat.metrics.observability import PipelineMetrics, get_logger
from dochat.models import ScoredChunk

LOGGER = logging.getLogger(__name__)

DEFAULT_RELEVANCE = 0.5


def _sigmoid(logit: float) -> float:
    if logit >= 0:
        return 1.0 / (1.0 + math.exp(-logit))
    z = math.exp(logit)
    return z / (1.0 + z)


class ClassifierUnavailable(RuntimeError):
    """Raised when the relevance scorer cannot score a batch."""


class RelevanceScorer(Protocol):
    """Scores (query, passage) pairs with a relevance probability in [0, 1]."""

    async def score_batch(self, pairs: Sequence[tuple[str, str]]) -> Sequence[float | None]:
        """Return one score per pair; ``None`` marks a pair that could not be scored."""


class LexicalRelevanceScorer:
    """Token-overlap scorer that needs no model; the offline default."""

    async def score_batch(self, pairs: Sequence[tuple[str, str]]) -> Sequence[float | None]:
        return [_token_overlap_score(set(query.lower().split()), text) for query, text in pairs]


class CrossEncoderRelevanceScorer:
    """Scores pairs with a sentence-transformers cross-encoder."""

    def __init__(self, model: str = "cross-encoder/ms-marco-MiniLM-L-6-v2", device: str | None = None) -> None:
        self._model_name = model
        self._device = device
        self._ce = None

    def _ensure_model(self):
        if self._ce is None:
            try:
                from sentence_transformers import CrossEncoder

                self._ce = CrossEncoder(self._model_name, device=self._device)
            except Exception as exc:
                raise ClassifierUnavailable(f"Cross-encoder {self._model_name} unavailable: {exc}") from exc
        return self._ce

    async def score_batch(self, pairs: Sequence[tuple[str, str]]) -> Sequence[float | None]:
        if not pairs:
            return []

        def _predict() -> list[float]:
            model = self._ensure_model()
            return [float(value) for value in model.predict(list(pairs))]

        try:
            logits = await asyncio.to_thread(_predict)
        except ClassifierUnavailable:
            raise
        except Exception as exc:
            raise ClassifierUnavailable(f"Cross-encoder scoring failed: {exc}") from exc
        # ms-marco cross-encoders emit logits
        return [_sigmoid(logit) for logit in logits]


class TextClassificationRelevanceScorer:
    """Uses the positive-class probability of a text-classification model.

    A sentiment model is not a relevance model; this exists for parity with
    deployments that already ship one and should be replaced by a
    cross-encoder where ranking quality matters.
    """

    def __init__(
        self,
        model: str = "distilbert-base-uncased-finetuned-sst-2-english",
        device: str | None = None,
        positive_label: str = "POSITIVE",
    ) -> None:
        self._model_name = model
        self._device = device
        self._positive_label = positive_label
        self._pipeline = None

    def _ensure_pipeline(self):
        if self._pipeline is None:
            try:
                from transformers import pipeline

                self._pipeline = pipeline(
                    "text-classification",
                    model=self._model_name,
                    device=self._device,
                    top_k=None,
                )
                LOGGER.info("Loaded text classifier %s", self._model_name)
            except Exception as exc:
                raise ClassifierUnavailable(f"Classifier {self._model_name} unavailable: {exc}") from exc
        return self._pipeline

    async def score_batch(self, pairs: Sequence[tuple[str, str]]) -> Sequence[float | None]:
        if not pairs:
            return []
        inputs = [f"{query} [SEP] {text}" for query, text in pairs]

        def _classify():
            return self._ensure_pipeline()(inputs, truncation=True)

        try:
            outputs = await asyncio.to_thread(_classify)
        except ClassifierUnavailable:
            raise
        except Exception as exc:
            raise ClassifierUnavailable(f"Text classification failed: {exc}") from exc
        return [self._positive_score(output) for output in outputs]

    def _positive_score(self, output) -> float | None:
        labels = output if isinstance(output, list) else [output]
        for item in labels:
            if isinstance(item, dict) and item.get("label") == self._positive_label:
                return float(item.get("score", DEFAULT_RELEVANCE))
        return None


@dataclass(frozen=True)
class RerankResult:
    chunks: list[ScoredChunk]
    degraded: bool = False


def fuse(raw: Sequence[ScoredChunk], hyde: Sequence[ScoredChunk]) -> list[ScoredChunk]:
    """Concatenate both channels and drop repeated texts, keeping the first seen."""

    seen: set[str] = set()
    fused: list[ScoredChunk] = []
    for item in [*raw, *hyde]:
        if item.text in seen:
            continue
        seen.add(item.text)
        fused.append(item)
    return fused


def _coerce_score(value: object) -> float:
    if value is None:
        return DEFAULT_RELEVANCE
    try:
        score = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_RELEVANCE
    if math.isnan(score):
        return DEFAULT_RELEVANCE
    return score


def _ranking_key(item: ScoredChunk) -> tuple[float, float]:
    relevance = item.relevance if item.relevance is not None else DEFAULT_RELEVANCE
    return (relevance, item.similarity)


class FusionReranker:
    """Deduplicates channel results and orders them with a relevance scorer."""

    def __init__(
        self,
        scorer: RelevanceScorer,
        *,
        prefix_chars: int = 500,
        timeout_seconds: float | None = None,
    ) -> None:
        self._scorer = scorer
        self._prefix_chars = prefix_chars
        self._timeout = timeout_seconds
        self._logger = get_logger("rerank")

    fuse = staticmethod(fuse)

    async def rerank(self, query: str, chunks: Sequence[ScoredChunk], top_k: int = 5) -> RerankResult:
        if not chunks:
            return RerankResult(chunks=[])
        pairs = [(query, item.text[: self._prefix_chars]) for item in chunks]
        try:
            call = self._scorer.score_batch(pairs)
            scores = await (asyncio.wait_for(call, timeout=self._timeout) if self._timeout else call)
        except Exception as exc:
            PipelineMetrics.rerank_degraded.inc()
            self._logger.warning("rerank.degraded", reason=str(exc) or type(exc).__name__, candidates=len(chunks))
            ordered = sorted(chunks, key=lambda item: item.similarity, reverse=True)
            return RerankResult(chunks=ordered[:top_k], degraded=True)

        scores = list(scores)
        scored = [
            item.with_relevance(_coerce_score(scores[index] if index < len(scores) else None))
            for index, item in enumerate(chunks)
        ]
        scored.sort(key=_ranking_key, reverse=True)
        self._logger.info(
            "rerank.complete",
            candidates=len(chunks),
            top_scores=[round(item.relevance or 0.0, 3) for item in scored[:3]],
        )
        return RerankResult(chunks=scored[:top_k])


def _token_overlap_score(query_tokens: set[str], text: str) -> float:
    tokens = set(text.lower().split())
    if not tokens:
        return 0.0
    overlap = len(query_tokens.intersection(tokens))
    return overlap / max(len(query_tokens), 1)


def build_scorer(kind: str, *, cross_encoder_model: str, classifier_model: str, device: str | None = None) -> RelevanceScorer:
    if kind == "cross_encoder":
        return CrossEncoderRelevanceScorer(cross_encoder_model, device=device)
    if kind == "text_classifier":
        return TextClassificationRelevanceScorer(classifier_model, device=device)
    return LexicalRelevanceScorer()
