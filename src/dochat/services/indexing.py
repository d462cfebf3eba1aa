"""Indexing of pre-chunked documents into a user's namespace."""

from __future__ import annotations

import re
import time
import unicodedata
from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence

from langchain_core.documents import Document as LCDocument

from dochat.embeddings.service import EmbeddingGateway
from dochat.embeddings.store import VectorIndex, VectorRecord
from dochat.memory.store import MemoryStore
from dochat.metrics.observability import get_logger
from dochat.models import Chunk, ChunkMetadata


@dataclass(frozen=True)
class IndexingReport:
    user_id: str
    namespace: str
    received: int
    indexed: int
    memory_records: int
    record_ids: Sequence[str]
    latency_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "namespace": self.namespace,
            "received": self.received,
            "indexed": self.indexed,
            "memory_records": self.memory_records,
            "record_ids": list(self.record_ids),
            "latency_ms": self.latency_ms,
        }


def _normalize_text(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"[ \t]+", " ", normalized)
    return normalized.strip()


def chunks_from_documents(user_id: str, documents: Sequence[LCDocument]) -> list[Chunk]:
    """Convert LangChain documents produced by an upstream splitter into chunks."""

    chunks: list[Chunk] = []
    for document in documents:
        meta = document.metadata or {}
        page = meta.get("page_number", meta.get("page"))
        chunks.append(
            Chunk(
                text=document.page_content,
                metadata=ChunkMetadata(
                    source_id=str(meta.get("source_id") or meta.get("source") or "unknown"),
                    user_id=user_id,
                    page_number=int(page) if page is not None else None,
                    url=meta.get("url"),
                    crawl_depth=meta.get("crawl_depth"),
                ),
            ),
        )
    return chunks


class ChunkIndexer:
    """Embeds chunks, upserts them into the owner's namespace and logs them to memory."""

    def __init__(
        self,
        embedder: EmbeddingGateway,
        index: VectorIndex,
        *,
        memory: MemoryStore | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._memory = memory
        self._logger = get_logger("indexing")

    async def index_chunks(
        self,
        user_id: str,
        chunks: Sequence[Chunk],
        metadata: Mapping[str, Any] | None = None,
    ) -> IndexingReport:
        if not user_id:
            raise ValueError("user_id is required to index chunks")
        start = time.perf_counter()
        namespace = await self._index.ensure_namespace(user_id)

        owned: list[Chunk] = []
        for chunk in chunks:
            text = _normalize_text(chunk.text)
            if not text:
                continue
            # Chunks are always stamped with the namespace owner.
            owned.append(Chunk(text=text, metadata=_with_owner(chunk.metadata, user_id)))

        record_ids: Sequence[str] = []
        memory_records = 0
        if owned:
            vectors = await self._embedder.embed_batch([chunk.text for chunk in owned])
            records = [VectorRecord(chunk=chunk, vector=vector) for chunk, vector in zip(owned, vectors, strict=True)]
            record_ids = await self._index.upsert(namespace, records)
            if self._memory is not None:
                memory_records = await self._memory.append_chunks(user_id, owned, metadata)

        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        self._logger.info(
            "indexing.complete",
            user_id=user_id,
            namespace=namespace,
            received=len(chunks),
            indexed=len(record_ids),
            memory_records=memory_records,
            duration_ms=latency_ms,
        )
        return IndexingReport(
            user_id=user_id,
            namespace=namespace,
            received=len(chunks),
            indexed=len(record_ids),
            memory_records=memory_records,
            record_ids=list(record_ids),
            latency_ms=latency_ms,
        )

    async def index_documents(
        self,
        user_id: str,
        documents: Sequence[LCDocument],
        metadata: Mapping[str, Any] | None = None,
    ) -> IndexingReport:
        return await self.index_chunks(user_id, chunks_from_documents(user_id, documents), metadata)


def _with_owner(metadata: ChunkMetadata, user_id: str) -> ChunkMetadata:
    if metadata.user_id == user_id:
        return metadata
    return replace(metadata, user_id=user_id)
