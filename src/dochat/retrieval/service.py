"""Similarity search with threshold filtering and a best-effort fallback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from dochat.embeddings.store import VectorIndex
from dochat.metrics.observability import PipelineMetrics, get_logger
from dochat.models import ScoredChunk


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for a single search channel."""

    top_k: int = 5
    min_similarity: float = 0.60
    oversample_factor: int = 4
    min_oversample: int = 10


class DualChannelRetriever:
    """Runs one namespaced search per channel (raw query or HyDE)."""

    def __init__(self, index: VectorIndex, config: RetrievalConfig | None = None) -> None:
        self._index = index
        self._config = config or RetrievalConfig()
        self._logger = get_logger("retrieval")

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    def oversample_size(self, top_k: int, oversample_factor: int | None = None) -> int:
        factor = oversample_factor or self._config.oversample_factor
        return max(self._config.min_oversample, top_k * factor)

    async def search(
        self,
        user_id: str,
        query_vector: Sequence[float],
        top_k: int | None = None,
        min_similarity: float | None = None,
        oversample_factor: int | None = None,
        *,
        channel: str = "raw",
    ) -> list[ScoredChunk]:
        limit = max(1, top_k or self._config.top_k)
        threshold = self._config.min_similarity if min_similarity is None else min_similarity
        namespace = await self._index.ensure_namespace(user_id)
        hits = await self._index.search(namespace, query_vector, self.oversample_size(limit, oversample_factor))

        candidates = [
            ScoredChunk(chunk=hit.chunk, similarity=hit.similarity)
            for hit in hits
            if not hit.chunk.metadata.user_id or hit.chunk.metadata.user_id == user_id
        ]
        if len(candidates) != len(hits):
            self._logger.warning(
                "retrieval.foreign_hits_dropped",
                channel=channel,
                namespace=namespace,
                dropped=len(hits) - len(candidates),
            )
        candidates.sort(key=lambda item: item.similarity, reverse=True)

        picked: list[ScoredChunk] = []
        for candidate in candidates:
            if candidate.similarity >= threshold:
                picked.append(candidate)
            if len(picked) >= limit:
                break

        if not picked and candidates:
            PipelineMetrics.count_fallback(channel)
            self._logger.info(
                "retrieval.fallback",
                channel=channel,
                threshold=threshold,
                candidate_count=len(candidates),
                best_similarity=candidates[0].similarity,
            )
            return candidates[:limit]

        self._logger.info(
            "retrieval.channel.complete",
            channel=channel,
            candidate_count=len(candidates),
            picked=len(picked),
        )
        return picked
