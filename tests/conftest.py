"""Shared fakes for pipeline tests."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Sequence

import pytest

from dochat.embeddings.service import EmbeddingUnavailable, Vector
from dochat.embeddings.store import NamespaceRegistry, VectorHit, VectorIndexUnavailable, VectorRecord
from dochat.models import Chunk, ChunkMetadata, ScoredChunk
from dochat.services.hyde import HYDE_PROMPT

QUERY_VECTOR: Vector = (1.0, 0.0, 0.0)
HYDE_VECTOR: Vector = (0.0, 1.0, 0.0)


def make_chunk(text: str, *, user_id: str = "alice", source_id: str = "notes.txt", page_number: int | None = None) -> Chunk:
    return Chunk(text=text, metadata=ChunkMetadata(source_id=source_id, user_id=user_id, page_number=page_number))


def scored(text: str, similarity: float, relevance: float | None = None, **kwargs) -> ScoredChunk:
    return ScoredChunk(chunk=make_chunk(text, **kwargs), similarity=similarity, relevance=relevance)


class StaticEmbedder:
    """Returns QUERY_VECTOR for questions and HYDE_VECTOR for anything else."""

    def __init__(self, questions: Sequence[str] = (), *, fail: bool = False, delay: float = 0.0) -> None:
        self.questions = set(questions)
        self.fail = fail
        self.delay = delay
        self.calls: List[str] = []

    async def embed(self, text: str) -> Vector:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise EmbeddingUnavailable("embedding endpoint down")
        return QUERY_VECTOR if text in self.questions else HYDE_VECTOR

    async def embed_batch(self, texts: Sequence[str]) -> Sequence[Vector]:
        return [await self.embed(text) for text in texts]


class FakeVectorIndex:
    """In-memory VectorIndex returning canned hits per (user, vector)."""

    def __init__(self) -> None:
        self._registry = NamespaceRegistry("test")
        self.hits: Dict[tuple[str, Vector], List[VectorHit]] = {}
        self.failing: set[Vector] = set()
        self.searches: List[tuple[str, Vector, int]] = []
        self.upserts: Dict[str, Dict[str, VectorRecord]] = {}

    def add_hits(self, user_id: str, vector: Vector, hits: Sequence[tuple[str, float]], /, **chunk_kwargs) -> None:
        chunk_kwargs.setdefault("user_id", user_id)
        self.hits.setdefault((self.namespace_for(user_id), vector), []).extend(
            VectorHit(chunk=make_chunk(text, **chunk_kwargs), similarity=similarity) for text, similarity in hits
        )

    def namespace_for(self, user_id: str) -> str:
        return self._registry.namespace_for(user_id)

    async def ensure_namespace(self, user_id: str) -> str:
        return self.namespace_for(user_id)

    async def search(self, namespace: str, vector: Sequence[float], limit: int) -> Sequence[VectorHit]:
        key = tuple(vector)
        self.searches.append((namespace, key, limit))
        if key in self.failing:
            raise VectorIndexUnavailable("index offline")
        hits = sorted(self.hits.get((namespace, key), []), key=lambda hit: hit.similarity, reverse=True)
        return hits[:limit]

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> Sequence[str]:
        bucket = self.upserts.setdefault(namespace, {})
        for record in records:
            bucket[record.record_id] = record
        return [record.record_id for record in records]


class RecordingGenerator:
    """Answers generation prompts with ``answer`` and HyDE prompts with ``passage``."""

    def __init__(
        self,
        answer: str = "The deadline is 15 September 2025.",
        passage: str = "Project timeline: the deadline is in September.",
        *,
        fail_answer: bool = False,
        fail_hyde: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.answer = answer
        self.passage = passage
        self.fail_answer = fail_answer
        self.fail_hyde = fail_hyde
        self.delay = delay
        self.prompts: List[str] = []

    @staticmethod
    def is_hyde_prompt(prompt: str) -> bool:
        return prompt.startswith(HYDE_PROMPT.split("{question}")[0])

    @property
    def answer_prompts(self) -> List[str]:
        return [prompt for prompt in self.prompts if not self.is_hyde_prompt(prompt)]

    async def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        self.prompts.append(prompt)
        if self.is_hyde_prompt(prompt):
            if self.fail_hyde:
                raise RuntimeError("hyde model unavailable")
            return self.passage
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_answer:
            raise RuntimeError("chat model unavailable")
        return self.answer


class FixedScorer:
    def __init__(self, scores: Sequence[float | None] = (), *, error: Exception | None = None, delay: float = 0.0) -> None:
        self.scores = list(scores)
        self.error = error
        self.delay = delay
        self.pairs: List[tuple[str, str]] = []

    async def score_batch(self, pairs: Sequence[tuple[str, str]]) -> Sequence[float | None]:
        self.pairs.extend(pairs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.scores[: len(pairs)]


class ExplodingMemoryBackend:
    async def add(self, records):
        raise RuntimeError("memory store offline")

    async def list_records(self, user_id, *, kind=None, since=None):
        raise RuntimeError("memory store offline")

    async def search(self, user_id, query, limit):
        raise RuntimeError("memory store offline")

    async def delete_before(self, user_id, cutoff):
        raise RuntimeError("memory store offline")


@pytest.fixture
def vector_index() -> FakeVectorIndex:
    return FakeVectorIndex()
