"""Memory storage strategies: in-process and Chroma-backed."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

import chromadb
from chromadb.api import ClientAPI

from dochat.embeddings.service import EmbeddingGateway
from dochat.embeddings.store import NamespaceRegistry, dumps_metadata, loads_metadata
from dochat.memory.store import MemoryBackend, MemoryUnavailable
from dochat.models import MemoryKind, MemoryRecord


def _tokens(text: str) -> set[str]:
    return {token.strip(".,:;!?\"'()[]") for token in text.lower().split()} - {""}


class InMemoryMemoryBackend:
    """Process-local memory log keyed by user id."""

    def __init__(self) -> None:
        self._records: Dict[str, List[MemoryRecord]] = defaultdict(list)

    async def add(self, records: Sequence[MemoryRecord]) -> None:
        for record in records:
            self._records[record.user_id].append(record)

    async def list_records(
        self,
        user_id: str,
        *,
        kind: MemoryKind | None = None,
        since: datetime | None = None,
    ) -> Sequence[MemoryRecord]:
        return [
            record
            for record in self._records.get(user_id, [])
            if (kind is None or record.kind is kind) and (since is None or record.timestamp >= since)
        ]

    async def search(self, user_id: str, query: str, limit: int) -> Sequence[MemoryRecord]:
        query_tokens = _tokens(query)
        if not query_tokens:
            return []
        scored: list[tuple[float, MemoryRecord]] = []
        for record in self._records.get(user_id, []):
            overlap = len(query_tokens & _tokens(record.content))
            if overlap:
                scored.append((overlap / len(query_tokens), record))
        scored.sort(key=lambda pair: (pair[0], pair[1].timestamp), reverse=True)
        return [record for _, record in scored[:limit]]

    async def delete_before(self, user_id: str, cutoff: datetime) -> int:
        records = self._records.get(user_id, [])
        kept = [record for record in records if record.timestamp >= cutoff]
        self._records[user_id] = kept
        return len(records) - len(kept)


class ChromaMemoryBackend:
    """Vector-backed memory: one cosine collection per user namespace."""

    def __init__(
        self,
        embedder: EmbeddingGateway,
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
        namespace_prefix: str = "dochat-mem",
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._embedder = embedder
        self._registry = NamespaceRegistry(namespace_prefix)

    def _collection(self, user_id: str):
        return self._client.get_or_create_collection(
            name=self._registry.namespace_for(user_id),
            metadata={"hnsw:space": "cosine"},
        )

    async def add(self, records: Sequence[MemoryRecord]) -> None:
        if not records:
            return
        vectors = await self._embedder.embed_batch([record.content for record in records])
        by_user: Dict[str, List[tuple[MemoryRecord, Sequence[float]]]] = defaultdict(list)
        for record, vector in zip(records, vectors, strict=True):
            by_user[record.user_id].append((record, vector))

        def _write() -> None:
            for user_id, items in by_user.items():
                self._collection(user_id).upsert(
                    ids=[record.record_id for record, _ in items],
                    documents=[record.content for record, _ in items],
                    embeddings=[list(vector) for _, vector in items],
                    metadatas=[_serialize_record(record) for record, _ in items],
                )

        await self._run(_write)

    async def list_records(
        self,
        user_id: str,
        *,
        kind: MemoryKind | None = None,
        since: datetime | None = None,
    ) -> Sequence[MemoryRecord]:
        clauses: list[dict[str, Any]] = [{"user_id": user_id}]
        if kind is not None:
            clauses.append({"kind": kind.value})
        if since is not None:
            clauses.append({"ts": {"$gte": since.timestamp()}})
        where = clauses[0] if len(clauses) == 1 else {"$and": clauses}

        def _read() -> Sequence[MemoryRecord]:
            batch = self._collection(user_id).get(where=where, include=["documents", "metadatas"])
            return _deserialize_batch(batch.get("ids") or [], batch.get("documents") or [], batch.get("metadatas") or [])

        return await self._run(_read)

    async def search(self, user_id: str, query: str, limit: int) -> Sequence[MemoryRecord]:
        vector = await self._embedder.embed(query)

        def _query() -> Sequence[MemoryRecord]:
            collection = self._collection(user_id)
            available = collection.count()
            if available == 0:
                return []
            results = collection.query(
                query_embeddings=[list(vector)],
                n_results=min(limit, available),
                where={"user_id": user_id},
                include=["documents", "metadatas"],
            )
            return _deserialize_batch(
                (results.get("ids") or [[]])[0],
                (results.get("documents") or [[]])[0],
                (results.get("metadatas") or [[]])[0],
            )

        return await self._run(_query)

    async def delete_before(self, user_id: str, cutoff: datetime) -> int:
        def _delete() -> int:
            collection = self._collection(user_id)
            stale = collection.get(where={"ts": {"$lt": cutoff.timestamp()}}).get("ids") or []
            if stale:
                collection.delete(ids=list(stale))
            return len(stale)

        return await self._run(_delete)

    @staticmethod
    async def _run(func):
        try:
            return await asyncio.to_thread(func)
        except Exception as exc:
            raise MemoryUnavailable(f"Chroma memory backend failed: {exc}") from exc


def _serialize_record(record: MemoryRecord) -> Mapping[str, object]:
    return {
        "user_id": record.user_id,
        "kind": record.kind.value,
        "ts": record.timestamp.timestamp(),
        "meta": dumps_metadata(dict(record.metadata)),
    }


def _deserialize_batch(ids: Sequence[str], documents: Sequence[str], metadatas: Sequence[Mapping[str, object]]) -> list[MemoryRecord]:
    records: list[MemoryRecord] = []
    for record_id, document, metadata in zip(ids, documents, metadatas, strict=False):
        metadata = metadata or {}
        records.append(
            MemoryRecord(
                user_id=str(metadata.get("user_id", "")),
                content=document or "",
                kind=MemoryKind(str(metadata.get("kind", MemoryKind.USER_INTERACTION.value))),
                timestamp=datetime.fromtimestamp(float(metadata.get("ts", 0.0)), tz=timezone.utc),
                metadata=loads_metadata(metadata.get("meta")),
                record_id=record_id,
            ),
        )
    return records


def build_memory_backend(
    kind: str,
    *,
    embedder: EmbeddingGateway | None = None,
    client: ClientAPI | None = None,
    persist_directory: str | Path | None = None,
    namespace_prefix: str = "dochat-mem",
) -> MemoryBackend:
    if kind == "chroma":
        if embedder is None:
            raise ValueError("The chroma memory backend needs an embedding gateway")
        return ChromaMemoryBackend(
            embedder,
            client=client,
            persist_directory=persist_directory,
            namespace_prefix=namespace_prefix,
        )
    return InMemoryMemoryBackend()
