"""Vector index client with per-user namespaces."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Protocol, Sequence
from uuid import NAMESPACE_URL, uuid5

import chromadb
from chromadb.api import ClientAPI

from dochat.models import Chunk, ChunkMetadata, utcnow


class VectorIndexUnavailable(RuntimeError):
    """Raised when the vector database cannot serve a request."""


@dataclass(frozen=True)
class VectorRecord:
    """Chunk plus its embedding, ready for upsert."""

    chunk: Chunk
    vector: Sequence[float]

    @property
    def record_id(self) -> str:
        user_id, text = self.chunk.identity
        return uuid5(NAMESPACE_URL, f"{user_id}\x00{text}").hex


@dataclass(frozen=True)
class VectorHit:
    """Nearest-neighbour result with cosine similarity in [0, 1]."""

    chunk: Chunk
    similarity: float
    extra: Mapping[str, Any] = field(default_factory=dict)


class NamespaceRegistry:
    """Deterministic mapping from user id to index namespace name."""

    def __init__(self, prefix: str = "dochat") -> None:
        self._prefix = prefix

    def namespace_for(self, user_id: str) -> str:
        if not user_id:
            raise ValueError("user_id is required to resolve a namespace")
        return f"{self._prefix}-{uuid5(NAMESPACE_URL, user_id).hex}"


class VectorIndex(Protocol):
    """Protocol for namespaced nearest-neighbour search."""

    def namespace_for(self, user_id: str) -> str:
        """Return the namespace name owned by ``user_id``."""

    async def ensure_namespace(self, user_id: str) -> str:
        """Create the user's namespace if needed and return its name."""

    async def search(self, namespace: str, vector: Sequence[float], limit: int) -> Sequence[VectorHit]:
        """Return up to ``limit`` hits ordered by similarity descending."""

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> Sequence[str]:
        """Insert or replace records and return their ids."""


class ChromaVectorIndex:
    """Chroma-backed vector index using one cosine collection per user."""

    def __init__(
        self,
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
        namespace_prefix: str = "dochat",
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._registry = NamespaceRegistry(namespace_prefix)
        self._collections: Dict[str, Any] = {}

    def namespace_for(self, user_id: str) -> str:
        return self._registry.namespace_for(user_id)

    async def ensure_namespace(self, user_id: str) -> str:
        namespace = self.namespace_for(user_id)
        await asyncio.to_thread(self._collection, namespace)
        return namespace

    async def search(self, namespace: str, vector: Sequence[float], limit: int) -> Sequence[VectorHit]:
        if limit <= 0:
            return []
        try:
            return await asyncio.to_thread(self._search_sync, namespace, list(vector), limit)
        except Exception as exc:
            raise VectorIndexUnavailable(f"Vector search failed for {namespace}: {exc}") from exc

    async def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> Sequence[str]:
        if not records:
            return []
        try:
            return await asyncio.to_thread(self._upsert_sync, namespace, list(records))
        except Exception as exc:
            raise VectorIndexUnavailable(f"Vector upsert failed for {namespace}: {exc}") from exc

    def count(self, namespace: str) -> int:
        try:
            return int(self._collection(namespace).count())
        except Exception:
            return 0

    async def heartbeat(self) -> int:
        try:
            return int(await asyncio.to_thread(self._client.heartbeat))
        except Exception as exc:
            raise VectorIndexUnavailable(f"Vector index heartbeat failed: {exc}") from exc

    def _collection(self, namespace: str):
        collection = self._collections.get(namespace)
        if collection is None:
            collection = self._client.get_or_create_collection(
                name=namespace,
                metadata={"hnsw:space": "cosine"},
            )
            self._collections[namespace] = collection
        return collection

    def _search_sync(self, namespace: str, vector: list[float], limit: int) -> Sequence[VectorHit]:
        collection = self._collection(namespace)
        available = collection.count()
        if available == 0:
            return []
        results = collection.query(
            query_embeddings=[vector],
            n_results=min(limit, available),
            include=["documents", "metadatas", "distances"],
        )
        return self._deserialize_results(results)

    def _upsert_sync(self, namespace: str, records: list[VectorRecord]) -> Sequence[str]:
        unique: dict[str, VectorRecord] = {}
        for record in records:
            unique[record.record_id] = record
        ids = list(unique)
        self._collection(namespace).upsert(
            ids=ids,
            documents=[record.chunk.text for record in unique.values()],
            embeddings=[list(record.vector) for record in unique.values()],
            metadatas=[serialize_chunk_metadata(record.chunk.metadata) for record in unique.values()],
        )
        return ids

    def _deserialize_results(self, results: Mapping[str, object]) -> Sequence[VectorHit]:
        documents = _first(results.get("documents", []))
        metadatas = _first(results.get("metadatas", []))
        distances = _first(results.get("distances", []))
        hits: list[VectorHit] = []
        for document, metadata, distance in zip(documents, metadatas, distances, strict=False):
            chunk = Chunk(text=document, metadata=deserialize_chunk_metadata(metadata or {}))
            hits.append(VectorHit(chunk=chunk, similarity=distance_to_similarity(distance)))
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits


def distance_to_similarity(distance: float | None) -> float:
    """Convert a Chroma cosine distance to a similarity clamped to [0, 1]."""

    if distance is None:
        return 0.0
    return 1.0 - min(max(float(distance), 0.0), 1.0)


def serialize_chunk_metadata(metadata: ChunkMetadata) -> MutableMapping[str, object]:
    serialized: MutableMapping[str, object] = {
        "source_id": metadata.source_id,
        "user_id": metadata.user_id,
        "inserted_at": metadata.inserted_at.isoformat(),
    }
    # Chroma rejects None metadata values.
    if metadata.page_number is not None:
        serialized["page_number"] = metadata.page_number
    if metadata.url is not None:
        serialized["url"] = metadata.url
    if metadata.crawl_depth is not None:
        serialized["crawl_depth"] = metadata.crawl_depth
    return serialized


def deserialize_chunk_metadata(metadata: Mapping[str, object]) -> ChunkMetadata:
    inserted_raw = metadata.get("inserted_at")
    try:
        inserted_at = datetime.fromisoformat(str(inserted_raw)) if inserted_raw else utcnow()
    except ValueError:
        inserted_at = utcnow()
    return ChunkMetadata(
        source_id=str(metadata.get("source_id", "unknown")),
        user_id=str(metadata.get("user_id", "")),
        page_number=_optional_int(metadata.get("page_number")),
        url=str(metadata["url"]) if metadata.get("url") else None,
        crawl_depth=_optional_int(metadata.get("crawl_depth")),
        inserted_at=inserted_at,
    )


def dumps_metadata(value: object) -> str:
    try:
        return json.dumps(value, default=str)
    except TypeError:
        return json.dumps({}, default=str)


def loads_metadata(value: object) -> Dict[str, object]:
    if isinstance(value, str) and value:
        try:
            loaded = json.loads(value)
            if isinstance(loaded, dict):
                return loaded
        except json.JSONDecodeError:
            return {}
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _first(value: object) -> Iterable:
    if isinstance(value, list):
        return value[0] if value else []
    return []
