"""Observability helpers for dochat."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Iterable

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "dochat") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    retrieval_latency = Histogram(
        "dochat_retrieval_duration_seconds",
        "Time spent in dual-channel retrieval.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "dochat_retrieved_chunk_count",
        "Number of chunks surviving fusion and reranking.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    similarity_score = Histogram(
        "dochat_similarity_score",
        "Vector similarity of chunks surfaced to generation.",
        buckets=(0.0, 0.25, 0.5, 0.6, 0.75, 1.0),
    )
    retrieval_fallbacks = Counter(
        "dochat_retrieval_fallback_total",
        "Searches where no candidate met the similarity threshold.",
        ["channel"],
    )
    rerank_degraded = Counter(
        "dochat_rerank_degraded_total",
        "Rerank calls that fell back to similarity ordering.",
    )
    hyde_failures = Counter(
        "dochat_hyde_failures_total",
        "Hypothetical document expansions that returned nothing.",
    )
    generation_latency = Histogram(
        "dochat_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
    )
    memory_failures = Counter(
        "dochat_memory_failures_total",
        "Memory operations that degraded to an empty result.",
        ["operation"],
    )
    answers = Counter(
        "dochat_answers_total",
        "Answers produced, by terminal outcome.",
        ["outcome"],
    )

    @classmethod
    def observe_retrieval(cls, duration_seconds: float, chunk_count: int, scores: Iterable[float]) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)
        for score in scores:
            cls.similarity_score.observe(_clamp_score(score))

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def count_fallback(cls, channel: str) -> None:
        cls.retrieval_fallbacks.labels(channel=channel).inc()

    @classmethod
    def count_memory_failure(cls, operation: str) -> None:
        cls.memory_failures.labels(operation=operation).inc()

    @classmethod
    def count_answer(cls, outcome: str) -> None:
        cls.answers.labels(outcome=outcome).inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        duration = time.perf_counter() - self._start
        self._callback(duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
