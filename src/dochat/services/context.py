"""Budgeted rendering of retrieved chunks and memory into prompt context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from dochat.models import MemoryRecord, MemorySnapshot, ScoredChunk

CHUNK_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class ContextBudget:
    """Character budget for memory context and its proportional split."""

    total: int = 4000
    conversation_share: float = 0.3
    recent_documents_share: float = 0.4
    relevant_memories_share: float = 0.3

    def split(self) -> tuple[int, int, int]:
        return (
            int(self.total * self.conversation_share),
            int(self.total * self.recent_documents_share),
            int(self.total * self.relevant_memories_share),
        )


@dataclass(frozen=True)
class AssembledContext:
    retrieved_text: str
    memory_text: str
    rendered_chunks: int
    memory_items: int
    chunks: Sequence[ScoredChunk] = ()


def citation_label(item: ScoredChunk) -> str:
    return item.chunk.metadata.citation_label()


class ContextAssembler:
    """Turns reranked chunks and a memory snapshot into prompt text.

    Every category is filled greedily in the order given and the emitted text
    never exceeds the configured limits. A retrieved chunk that does not fit is
    skipped and later chunks are still tried; in a memory section the first
    entry that does not fit closes the section.
    """

    def __init__(self, memory_budget: ContextBudget | None = None, retrieval_budget: int = 6000) -> None:
        self._memory_budget = memory_budget or ContextBudget()
        self._retrieval_budget = retrieval_budget

    def select_chunks(self, chunks: Sequence[ScoredChunk], budget: int | None = None) -> tuple[str, list[ScoredChunk]]:
        limit = self._retrieval_budget if budget is None else budget
        blocks: list[str] = []
        selected: list[ScoredChunk] = []
        used = 0
        for item in chunks:
            block = f"# Source {len(blocks) + 1} ({citation_label(item)})\n{item.text}"
            cost = len(block) + (len(CHUNK_SEPARATOR) if blocks else 0)
            if used + cost > limit:
                continue
            blocks.append(block)
            selected.append(item)
            used += cost
        return CHUNK_SEPARATOR.join(blocks), selected

    def render_chunks(self, chunks: Sequence[ScoredChunk], budget: int | None = None) -> tuple[str, int]:
        text, selected = self.select_chunks(chunks, budget)
        return text, len(selected)

    def render_memory(self, snapshot: MemorySnapshot, budget: ContextBudget | None = None) -> tuple[str, int]:
        conversation_budget, documents_budget, memories_budget = (budget or self._memory_budget).split()
        sections = [
            _render_section("Recent Conversation", "Context", snapshot.conversation, conversation_budget),
            _render_section("Recent Documents", "Recent Doc", snapshot.recent_documents, documents_budget),
            _render_section("Relevant Memories", "Memory", snapshot.relevant_memories, memories_budget),
        ]
        return "".join(text for text, _ in sections), sum(count for _, count in sections)

    def assemble(self, chunks: Sequence[ScoredChunk], snapshot: MemorySnapshot) -> AssembledContext:
        retrieved_text, rendered = self.select_chunks(chunks)
        memory_text, memory_items = self.render_memory(snapshot)
        return AssembledContext(
            retrieved_text=retrieved_text,
            memory_text=memory_text,
            rendered_chunks=len(rendered),
            memory_items=memory_items,
            chunks=tuple(rendered),
        )


def _render_section(title: str, label: str, records: Sequence[MemoryRecord], budget: int) -> tuple[str, int]:
    if not records:
        return "", 0
    heading = f"## {title}:\n"
    parts = [heading]
    used = len(heading)
    included = 0
    for index, record in enumerate(records, start=1):
        entry = f"### {label} {index}\n{record.content}\n\n"
        if used + len(entry) > budget:
            break
        parts.append(entry)
        used += len(entry)
        included += 1
    if not included:
        return "", 0
    return "".join(parts), included
