"""Hypothetical document expansion (HyDE) for a second search vector."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from dochat.embeddings.service import EmbeddingGateway, Vector
from dochat.metrics.observability import PipelineMetrics, get_logger
from dochat.services.generation import GenerationGateway

HYDE_PROMPT = (
    "Given the following question, generate a hypothetical document that would contain the answer. "
    "Write it as if you are the document itself, using first person or neutral tone. "
    "Include specific details, dates, numbers, and facts that would be relevant to answering this question.\n\n"
    "Question: {question}\n\n"
    "Hypothetical Document:"
)


@dataclass(frozen=True)
class HypotheticalDocument:
    passage: str
    embedding: Vector


class HypotheticalDocumentExpander:
    """Writes a plausible answer passage and embeds it.

    Every failure mode yields ``None``; callers then search with the raw
    query vector on both channels.
    """

    def __init__(
        self,
        generator: GenerationGateway,
        embedder: EmbeddingGateway,
        *,
        max_tokens: int = 500,
        temperature: float = 0.7,
        timeout_seconds: float | None = None,
    ) -> None:
        self._generator = generator
        self._embedder = embedder
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout_seconds
        self._logger = get_logger("hyde")

    async def expand(self, question: str) -> HypotheticalDocument | None:
        try:
            call = self._expand(question)
            return await (asyncio.wait_for(call, timeout=self._timeout) if self._timeout else call)
        except Exception as exc:
            PipelineMetrics.hyde_failures.inc()
            self._logger.warning("hyde.failed", reason=str(exc) or type(exc).__name__)
            return None

    async def _expand(self, question: str) -> HypotheticalDocument | None:
        passage = await self._generator.generate(
            HYDE_PROMPT.format(question=question),
            self._max_tokens,
            self._temperature,
        )
        passage = (passage or "").strip()
        if not passage:
            self._logger.warning("hyde.empty_passage")
            PipelineMetrics.hyde_failures.inc()
            return None
        embedding = await self._embedder.embed(passage)
        self._logger.info("hyde.complete", passage_preview=passage[:200], dim=len(embedding))
        return HypotheticalDocument(passage=passage, embedding=embedding)
