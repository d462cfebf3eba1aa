"""Per-user memory log with best-effort reads and writes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Mapping, Protocol, Sequence, TypeVar

from dochat.metrics.observability import PipelineMetrics, get_logger
from dochat.models import Chunk, MemoryKind, MemoryRecord, MemorySnapshot, utcnow

T = TypeVar("T")


class MemoryUnavailable(RuntimeError):
    """Raised by memory backends when the underlying storage fails."""


class MemoryBackend(Protocol):
    """Storage strategy behind :class:`MemoryStore`."""

    async def add(self, records: Sequence[MemoryRecord]) -> None:
        """Append records."""

    async def list_records(
        self,
        user_id: str,
        *,
        kind: MemoryKind | None = None,
        since: datetime | None = None,
    ) -> Sequence[MemoryRecord]:
        """Return the user's records, optionally filtered by kind and minimum timestamp."""

    async def search(self, user_id: str, query: str, limit: int) -> Sequence[MemoryRecord]:
        """Return up to ``limit`` records ranked by relevance to ``query``."""

    async def delete_before(self, user_id: str, cutoff: datetime) -> int:
        """Remove records older than ``cutoff`` and return how many were removed."""


def _newest_first(records: Sequence[MemoryRecord]) -> list[MemoryRecord]:
    return sorted(records, key=lambda record: record.timestamp, reverse=True)


class MemoryStore:
    """Best-effort wrapper over a memory backend.

    Every operation logs and swallows backend errors and timeouts, returning
    an empty result.
    """

    def __init__(self, backend: MemoryBackend, *, timeout_seconds: float | None = None) -> None:
        self._backend = backend
        self._timeout = timeout_seconds
        self._logger = get_logger("memory")

    async def _guard(self, operation: str, user_id: str, call: Awaitable[T], default: T) -> T:
        try:
            if self._timeout:
                return await asyncio.wait_for(call, timeout=self._timeout)
            return await call
        except Exception as exc:
            PipelineMetrics.count_memory_failure(operation)
            self._logger.warning(
                "memory.unavailable",
                operation=operation,
                user_id=user_id,
                error=str(exc) or type(exc).__name__,
            )
            return default

    async def append_interaction(
        self,
        user_id: str,
        query: str,
        answer: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> MemoryRecord | None:
        meta = dict(metadata or {})
        meta.setdefault("session_id", "default")
        meta["query_length"] = len(query)
        meta["response_length"] = len(answer)
        record = MemoryRecord(
            user_id=user_id,
            content=f'User: "{query}"\nAssistant: "{answer}"',
            kind=MemoryKind.USER_INTERACTION,
            metadata=meta,
        )
        stored = await self._guard("append_interaction", user_id, self._add([record]), False)
        return record if stored else None

    async def append_chunks(
        self,
        user_id: str,
        chunks: Sequence[Chunk],
        metadata: Mapping[str, Any] | None = None,
    ) -> int:
        records = []
        for chunk in chunks:
            meta: dict[str, Any] = {
                "source_id": chunk.metadata.source_id,
                "page_number": chunk.metadata.page_number,
                "url": chunk.metadata.url,
            }
            meta.update(metadata or {})
            records.append(
                MemoryRecord(user_id=user_id, content=chunk.text, kind=MemoryKind.DOCUMENT_CHUNK, metadata=meta),
            )
        if not records:
            return 0
        stored = await self._guard("append_chunks", user_id, self._add(records), False)
        return len(records) if stored else 0

    async def _add(self, records: Sequence[MemoryRecord]) -> bool:
        await self._backend.add(records)
        return True

    async def recent_documents(self, user_id: str, hours_window: float = 24) -> list[MemoryRecord]:
        cutoff = utcnow() - timedelta(hours=hours_window)

        async def _read() -> list[MemoryRecord]:
            records = await self._backend.list_records(user_id, kind=MemoryKind.DOCUMENT_CHUNK, since=cutoff)
            return _newest_first(
                [r for r in records if r.user_id == user_id and r.kind is MemoryKind.DOCUMENT_CHUNK and r.timestamp >= cutoff],
            )

        return await self._guard("recent_documents", user_id, _read(), [])

    async def conversation_context(self, user_id: str, limit: int = 5) -> list[MemoryRecord]:
        if limit <= 0:
            return []

        async def _read() -> list[MemoryRecord]:
            records = await self._backend.list_records(user_id, kind=MemoryKind.USER_INTERACTION)
            owned = [r for r in records if r.user_id == user_id and r.kind is MemoryKind.USER_INTERACTION]
            return _newest_first(owned)[:limit]

        return await self._guard("conversation_context", user_id, _read(), [])

    async def relevant_memories(self, user_id: str, query: str, limit: int = 3) -> list[MemoryRecord]:
        if limit <= 0:
            return []

        async def _read() -> list[MemoryRecord]:
            records = await self._backend.search(user_id, query, limit)
            return [r for r in records if r.user_id == user_id][:limit]

        return await self._guard("relevant_memories", user_id, _read(), [])

    async def snapshot(
        self,
        user_id: str,
        query: str,
        *,
        conversation_limit: int = 5,
        recent_hours: float = 24,
        relevant_limit: int = 3,
    ) -> MemorySnapshot:
        conversation, recent, relevant = await asyncio.gather(
            self.conversation_context(user_id, conversation_limit),
            self.recent_documents(user_id, recent_hours),
            self.relevant_memories(user_id, query, relevant_limit),
        )
        snapshot = MemorySnapshot(conversation=conversation, recent_documents=recent, relevant_memories=relevant)
        self._logger.info("memory.snapshot", user_id=user_id, total_items=snapshot.total_items)
        return snapshot

    async def evict_older_than(self, user_id: str, days: float = 30) -> int:
        cutoff = utcnow() - timedelta(days=days)
        removed = await self._guard("evict_older_than", user_id, self._backend.delete_before(user_id, cutoff), 0)
        self._logger.info("memory.evicted", user_id=user_id, removed=removed, cutoff=cutoff.isoformat())
        return removed

    async def stats(self, user_id: str) -> dict[str, int]:
        async def _read() -> dict[str, int]:
            records = await self._backend.list_records(user_id)
            counts = {kind.value: 0 for kind in MemoryKind}
            for record in records:
                if record.user_id == user_id:
                    counts[record.kind.value] += 1
            return counts

        return await self._guard("stats", user_id, _read(), {kind.value: 0 for kind in MemoryKind})
