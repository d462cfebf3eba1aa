"""Query orchestration: greeting check, memory, HyDE, dual search, rerank, generation."""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import Awaitable, Sequence, TypeVar

from dochat.embeddings.service import EmbeddingGateway, EmbeddingUnavailable, Vector
from dochat.embeddings.store import VectorIndexUnavailable
from dochat.memory.store import MemoryStore
from dochat.metrics.observability import PipelineMetrics, TimedSection, get_logger
from dochat.models import AnswerResult, MemorySnapshot, QueryContext, ScoredChunk
from dochat.personas import Persona, get_persona, is_greeting
from dochat.retrieval.rerank import FusionReranker, fuse
from dochat.retrieval.service import DualChannelRetriever
from dochat.services.context import AssembledContext, ContextAssembler
from dochat.services.generation import GenerationGateway
from dochat.services.hyde import HypotheticalDocument, HypotheticalDocumentExpander

T = TypeVar("T")

INVALID_QUERY_REPLY = "Please ask a question so I can look it up in your documents."

INSTRUCTIONS = (
    'Answer using ONLY the "Context" below.\n'
    "If the answer is not in the context, say plainly that it was not found in the context. Do not guess.\n\n"
    "IMPORTANT:\n"
    "1. Put any code example or snippet in fenced markdown code blocks with a language tag.\n"
    "2. Use markdown headings to structure the answer.\n"
    "3. Be VERY precise with dates, numbers, and specific facts: reproduce them exactly as written in the context.\n"
    "4. Use the memory context to make the answer more personal and relevant, never to contradict the context."
)


@dataclass(frozen=True)
class QueryConfig:
    """Knobs for a single answer() transaction."""

    top_k: int = 5
    max_top_k: int = 20
    rerank_pool_factor: int = 2
    min_rerank_pool: int = 10
    generation_max_tokens: int = 1000
    generation_temperature: float = 0.7
    embedding_timeout_seconds: float | None = 15.0
    generation_timeout_seconds: float | None = 60.0
    vector_timeout_seconds: float | None = 10.0
    use_hyde: bool = True
    use_memory: bool = True
    conversation_limit: int = 5
    recent_documents_hours: float = 24
    relevant_memories_limit: int = 3

    def candidate_pool(self, top_k: int) -> int:
        """Candidates each channel returns for the reranker to narrow to ``top_k``."""
        return max(self.min_rerank_pool, top_k * self.rerank_pool_factor)


class PromptBuilder:
    """Builds the persona-styled generation prompt."""

    def build(self, persona: Persona, question: str, context: AssembledContext) -> str:
        parts = [persona.style]
        if persona.language_note:
            parts.append(persona.language_note)
        parts.append(INSTRUCTIONS)
        parts.append(f"Question:\n{question}")
        prompt = "\n\n".join(parts) + f"\n\nContext:\n{context.retrieved_text}"
        if context.memory_text:
            prompt += f"\n\n--- Memory Context ---\n{context.memory_text}"
        return prompt


async def _with_timeout(call: Awaitable[T], timeout: float | None) -> T:
    if timeout and timeout > 0:
        return await asyncio.wait_for(call, timeout=timeout)
    return await call


def _dedupe_sources(chunks: Sequence[ScoredChunk]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for item in chunks:
        source = item.source_id
        if not source or source in seen:
            continue
        seen.add(source)
        ordered.append(source)
    return ordered


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class QueryService:
    """Answers one user question per call as a single asyncio task."""

    def __init__(
        self,
        *,
        embedder: EmbeddingGateway,
        retriever: DualChannelRetriever,
        reranker: FusionReranker,
        generator: GenerationGateway,
        hyde: HypotheticalDocumentExpander | None = None,
        memory: MemoryStore | None = None,
        assembler: ContextAssembler | None = None,
        prompt_builder: PromptBuilder | None = None,
        persona: Persona | None = None,
        config: QueryConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._retriever = retriever
        self._reranker = reranker
        self._generator = generator
        self._hyde = hyde
        self._memory = memory
        self._assembler = assembler or ContextAssembler()
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._persona = persona or get_persona()
        self._config = config or QueryConfig()
        self._logger = get_logger("query")

    @property
    def persona(self) -> Persona:
        return self._persona

    def _resolve_top_k(self, top_k: int | None) -> int:
        limit = top_k or self._config.top_k
        if self._config.max_top_k:
            limit = min(limit, self._config.max_top_k)
        return max(1, limit)

    async def answer(self, user_id: str, query: str, top_k: int | None = None) -> AnswerResult:
        start = time.perf_counter()
        ctx = QueryContext(
            user_id=(user_id or "").strip(),
            query=(query or "").strip(),
            top_k=self._resolve_top_k(top_k),
        )
        ctx.diagnostics.update({"query_id": ctx.query_id, "timings_ms": {}})

        if not ctx.user_id or not ctx.query:
            return self._finish(ctx, INVALID_QUERY_REPLY, "invalid_query", start)
        if is_greeting(ctx.query):
            return self._finish(ctx, self._persona.greeting_reply, "greeting", start)

        try:
            return await self._answer(ctx, start)
        except Exception as exc:
            self._logger.exception("answer.failed", query_id=ctx.query_id, error=str(exc))
            ctx.retrieved = []
            return self._finish(ctx, self._persona.technical_issue_reply, "error", start)

    async def _answer(self, ctx: QueryContext, start: float) -> AnswerResult:
        timings = ctx.diagnostics["timings_ms"]

        stage = time.perf_counter()
        ctx.memory = await self._fetch_memory(ctx)
        timings["memory"] = _elapsed_ms(stage)
        ctx.diagnostics["memory_items"] = ctx.memory.total_items

        stage = time.perf_counter()
        hyde_task = asyncio.create_task(self._expand(ctx.query))
        try:
            query_vector = await _with_timeout(self._embedder.embed(ctx.query), self._config.embedding_timeout_seconds)
        except (EmbeddingUnavailable, asyncio.TimeoutError) as exc:
            hyde_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await hyde_task
            self._logger.error("answer.embedding_failed", query_id=ctx.query_id, error=str(exc) or type(exc).__name__)
            return self._finish(ctx, self._persona.technical_issue_reply, "embedding_failed", start)
        hyde = await hyde_task
        ctx.diagnostics["hyde_used"] = hyde is not None
        timings["hyde"] = _elapsed_ms(stage)

        stage = time.perf_counter()
        hyde_vector = hyde.embedding if hyde is not None else query_vector
        raw_hits, hyde_hits = await asyncio.gather(
            self._search(ctx, query_vector, "raw"),
            self._search(ctx, hyde_vector, "hyde" if hyde is not None else "raw_repeat"),
            return_exceptions=True,
        )
        if isinstance(raw_hits, BaseException):
            self._logger.error("answer.retrieval_failed", query_id=ctx.query_id, error=str(raw_hits) or type(raw_hits).__name__)
            return self._finish(ctx, self._persona.technical_issue_reply, "retrieval_failed", start)
        if isinstance(hyde_hits, BaseException):
            self._logger.warning("answer.second_channel_failed", query_id=ctx.query_id, error=str(hyde_hits) or type(hyde_hits).__name__)
            hyde_hits = []
        retrieval_seconds = time.perf_counter() - stage
        timings["retrieval"] = round(retrieval_seconds * 1000, 2)
        ctx.diagnostics["raw_candidates"] = len(raw_hits)
        ctx.diagnostics["hyde_candidates"] = len(hyde_hits)

        stage = time.perf_counter()
        fused = fuse(raw_hits, hyde_hits)
        ctx.diagnostics["fused_candidates"] = len(fused)
        if fused:
            reranked = await self._reranker.rerank(ctx.query, fused, ctx.top_k)
            ctx.retrieved = reranked.chunks
            ctx.diagnostics["rerank_degraded"] = reranked.degraded
        timings["rerank"] = _elapsed_ms(stage)
        PipelineMetrics.observe_retrieval(
            retrieval_seconds,
            len(ctx.retrieved),
            (item.similarity for item in ctx.retrieved),
        )

        assembled = None
        if ctx.retrieved:
            assembled = self._assembler.assemble(ctx.retrieved, ctx.memory)
            # only chunks the model actually sees count as sources
            ctx.retrieved = list(assembled.chunks)
            ctx.diagnostics["rendered_chunks"] = assembled.rendered_chunks
            ctx.diagnostics["memory_items_rendered"] = assembled.memory_items

        if assembled is None or not ctx.retrieved:
            answer = self._persona.no_context_reply
            await self._write_back(ctx, answer, "no_context")
            return self._finish(ctx, answer, "no_context", start)

        ctx.prompt = self._prompt_builder.build(self._persona, ctx.query, assembled)

        stage = time.perf_counter()
        answer, outcome = await self._generate(ctx)
        timings["generation"] = _elapsed_ms(stage)

        await self._write_back(ctx, answer, outcome)
        return self._finish(ctx, answer, outcome, start)

    async def _fetch_memory(self, ctx: QueryContext) -> MemorySnapshot:
        if self._memory is None or not self._config.use_memory:
            return MemorySnapshot()
        return await self._memory.snapshot(
            ctx.user_id,
            ctx.query,
            conversation_limit=self._config.conversation_limit,
            recent_hours=self._config.recent_documents_hours,
            relevant_limit=self._config.relevant_memories_limit,
        )

    async def _expand(self, query: str) -> HypotheticalDocument | None:
        if self._hyde is None or not self._config.use_hyde:
            return None
        return await self._hyde.expand(query)

    async def _search(self, ctx: QueryContext, vector: Vector, channel: str) -> list[ScoredChunk]:
        try:
            return await _with_timeout(
                self._retriever.search(ctx.user_id, vector, self._config.candidate_pool(ctx.top_k), channel=channel),
                self._config.vector_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise VectorIndexUnavailable(f"{channel} search timed out") from exc

    async def _generate(self, ctx: QueryContext) -> tuple[str, str]:
        try:
            with TimedSection(PipelineMetrics.observe_generation):
                text = await _with_timeout(
                    self._generator.generate(
                        ctx.prompt,
                        self._config.generation_max_tokens,
                        self._config.generation_temperature,
                    ),
                    self._config.generation_timeout_seconds,
                )
        except Exception as exc:
            self._logger.error("answer.generation_failed", query_id=ctx.query_id, error=str(exc) or type(exc).__name__)
            return self._persona.apology_reply, "generation_failed"
        text = (text or "").strip()
        if not text:
            self._logger.error("answer.generation_empty", query_id=ctx.query_id)
            return self._persona.apology_reply, "generation_failed"
        return text, "answered"

    async def _write_back(self, ctx: QueryContext, answer: str, outcome: str) -> None:
        if self._memory is None or not self._config.use_memory:
            return
        await self._memory.append_interaction(
            ctx.user_id,
            ctx.query,
            answer,
            {
                "sources": _dedupe_sources(ctx.retrieved),
                "chunks_used": len(ctx.retrieved),
                "hyde_used": bool(ctx.diagnostics.get("hyde_used")),
                "memory_items": ctx.memory.total_items,
                "outcome": outcome,
            },
        )

    def _finish(self, ctx: QueryContext, answer: str, outcome: str, start: float) -> AnswerResult:
        ctx.diagnostics["outcome"] = outcome
        ctx.diagnostics["timings_ms"]["total"] = _elapsed_ms(start)
        PipelineMetrics.count_answer(outcome)
        sources = _dedupe_sources(ctx.retrieved)
        self._logger.info(
            "answer.complete",
            query_id=ctx.query_id,
            user_id=ctx.user_id,
            outcome=outcome,
            chunk_count=len(ctx.retrieved),
            sources=sources,
            duration_ms=ctx.diagnostics["timings_ms"]["total"],
        )
        return AnswerResult(
            answer=answer,
            context=list(ctx.retrieved),
            sources=sources,
            persona=self._persona.name,
            diagnostics=dict(ctx.diagnostics),
        )
