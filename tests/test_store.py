from __future__ import annotations

from uuid import uuid4

import chromadb
import pytest

from dochat.embeddings.service import EmbeddingConfig, HashEmbeddingGateway
from dochat.embeddings.store import (
    ChromaVectorIndex,
    NamespaceRegistry,
    VectorRecord,
    deserialize_chunk_metadata,
    distance_to_similarity,
    serialize_chunk_metadata,
)
from dochat.models import Chunk, ChunkMetadata


def _chunk(user_id: str, text: str, page: int | None = None) -> Chunk:
    return Chunk(text=text, metadata=ChunkMetadata(source_id="doc.pdf", user_id=user_id, page_number=page))


def _index() -> ChromaVectorIndex:
    return ChromaVectorIndex(client=chromadb.EphemeralClient(), namespace_prefix=f"t{uuid4().hex[:8]}")


def test_namespace_is_deterministic_and_per_user():
    registry = NamespaceRegistry("dochat")
    assert registry.namespace_for("alice") == registry.namespace_for("alice")
    assert registry.namespace_for("alice") != registry.namespace_for("bob")
    assert registry.namespace_for("alice").startswith("dochat-")
    with pytest.raises(ValueError):
        registry.namespace_for("")


def test_distance_to_similarity_is_clamped():
    assert distance_to_similarity(0.0) == 1.0
    assert distance_to_similarity(0.25) == 0.75
    assert distance_to_similarity(1.7) == 0.0
    assert distance_to_similarity(-0.2) == 1.0
    assert distance_to_similarity(None) == 0.0


def test_metadata_round_trip_drops_missing_fields():
    meta = ChunkMetadata(source_id="doc.pdf", user_id="alice", page_number=3)
    serialized = serialize_chunk_metadata(meta)
    assert "url" not in serialized
    restored = deserialize_chunk_metadata(serialized)
    assert restored.page_number == 3
    assert restored.url is None
    assert restored.citation_label() == "doc.pdf, p.3"


@pytest.mark.asyncio
async def test_upsert_and_search_in_user_namespace():
    index = _index()
    embedder = HashEmbeddingGateway(EmbeddingConfig(dim=16))
    namespace = await index.ensure_namespace("alice")
    chunks = [_chunk("alice", "alpha beta gamma", 1), _chunk("alice", "lorem ipsum")]
    vectors = await embedder.embed_batch([c.text for c in chunks])
    ids = await index.upsert(namespace, [VectorRecord(chunk=c, vector=v) for c, v in zip(chunks, vectors)])
    assert len(ids) == 2

    hits = await index.search(namespace, await embedder.embed("alpha beta gamma"), limit=5)
    assert len(hits) == 2
    assert hits[0].chunk.text == "alpha beta gamma"
    assert hits[0].similarity == pytest.approx(1.0, abs=1e-4)
    assert hits[0].chunk.metadata.page_number == 1
    assert hits[0].similarity >= hits[1].similarity


@pytest.mark.asyncio
async def test_reindexing_same_text_keeps_one_record():
    index = _index()
    embedder = HashEmbeddingGateway(EmbeddingConfig(dim=8))
    namespace = await index.ensure_namespace("alice")
    vector = await embedder.embed("same text")
    record = VectorRecord(chunk=_chunk("alice", "same text"), vector=vector)
    await index.upsert(namespace, [record])
    await index.upsert(namespace, [record, record])
    assert index.count(namespace) == 1


@pytest.mark.asyncio
async def test_namespaces_do_not_leak_between_users():
    index = _index()
    embedder = HashEmbeddingGateway(EmbeddingConfig(dim=8))
    alice = await index.ensure_namespace("alice")
    bob = await index.ensure_namespace("bob")
    vector = await embedder.embed("alice secret")
    await index.upsert(alice, [VectorRecord(chunk=_chunk("alice", "alice secret"), vector=vector)])
    assert await index.search(bob, vector, limit=3) == []
    assert len(await index.search(alice, vector, limit=3)) == 1


@pytest.mark.asyncio
async def test_heartbeat_reports_alive():
    assert await _index().heartbeat() > 0
