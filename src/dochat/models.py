"""Shared domain models used across the dochat pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Sequence
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clamp_unit(value: float) -> float:
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value


@dataclass(frozen=True)
class ChunkMetadata:
    """Provenance recorded for an indexed chunk."""

    source_id: str
    user_id: str
    page_number: int | None = None
    url: str | None = None
    crawl_depth: int | None = None
    inserted_at: datetime = field(default_factory=utcnow)

    def citation_label(self) -> str:
        if self.page_number is not None:
            return f"{self.source_id}, p.{self.page_number}"
        return self.source_id


@dataclass(frozen=True)
class Chunk:
    """Immutable fragment of an ingested document."""

    text: str
    metadata: ChunkMetadata

    @property
    def identity(self) -> tuple[str, str]:
        return (self.metadata.user_id, self.text)


@dataclass(frozen=True)
class ScoredChunk:
    """Chunk annotated with vector similarity and, after reranking, relevance."""

    chunk: Chunk
    similarity: float
    relevance: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "similarity", _clamp_unit(float(self.similarity)))
        if self.relevance is not None:
            object.__setattr__(self, "relevance", _clamp_unit(float(self.relevance)))

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def source_id(self) -> str:
        return self.chunk.metadata.source_id

    def with_relevance(self, relevance: float) -> "ScoredChunk":
        return replace(self, relevance=relevance)

    def to_dict(self) -> dict[str, Any]:
        meta = self.chunk.metadata
        return {
            "text": self.chunk.text,
            "metadata": {
                "source_id": meta.source_id,
                "user_id": meta.user_id,
                "page_number": meta.page_number,
                "url": meta.url,
                "crawl_depth": meta.crawl_depth,
                "inserted_at": meta.inserted_at.isoformat(),
            },
            "similarity": self.similarity,
            "relevance": self.relevance,
        }


class MemoryKind(str, Enum):
    DOCUMENT_CHUNK = "document_chunk"
    USER_INTERACTION = "user_interaction"


@dataclass(frozen=True)
class MemoryRecord:
    """Append-only entry in a user's memory log."""

    user_id: str
    content: str
    kind: MemoryKind
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    record_id: str = field(default_factory=lambda: uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "user_id": self.user_id,
            "content": self.content,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class MemorySnapshot:
    """Memory reads gathered for one query."""

    conversation: Sequence[MemoryRecord] = ()
    recent_documents: Sequence[MemoryRecord] = ()
    relevant_memories: Sequence[MemoryRecord] = ()

    @property
    def total_items(self) -> int:
        return len(self.conversation) + len(self.recent_documents) + len(self.relevant_memories)


@dataclass
class QueryContext:
    """Working state for a single answer() call; discarded afterwards."""

    user_id: str
    query: str
    top_k: int
    query_id: str = field(default_factory=lambda: uuid4().hex)
    retrieved: list[ScoredChunk] = field(default_factory=list)
    memory: MemorySnapshot = field(default_factory=MemorySnapshot)
    prompt: str = ""
    diagnostics: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AnswerResult:
    """Structured answer returned to callers."""

    answer: str
    context: Sequence[ScoredChunk]
    sources: Sequence[str]
    persona: str
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "context": [item.to_dict() for item in self.context],
            "sources": list(self.sources),
            "persona": self.persona,
            "diagnostics": dict(self.diagnostics),
        }
