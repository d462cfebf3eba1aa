from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import chromadb
import pytest

from conftest import ExplodingMemoryBackend, make_chunk
from dochat.embeddings.service import EmbeddingConfig, HashEmbeddingGateway
from dochat.memory import ChromaMemoryBackend, InMemoryMemoryBackend, MemoryStore, build_memory_backend
from dochat.models import MemoryKind, MemoryRecord, utcnow


@pytest.mark.asyncio
async def test_interaction_is_logged_with_lengths():
    store = MemoryStore(InMemoryMemoryBackend())

    record = await store.append_interaction("alice", "When?", "Friday.", {"sources": ["plan.pdf"]})

    assert record is not None
    assert record.kind is MemoryKind.USER_INTERACTION
    assert record.content == 'User: "When?"\nAssistant: "Friday."'
    assert record.metadata["query_length"] == 5
    assert record.metadata["response_length"] == 7
    assert record.metadata["sources"] == ["plan.pdf"]


@pytest.mark.asyncio
async def test_conversation_context_is_newest_first_and_limited():
    backend = InMemoryMemoryBackend()
    now = utcnow()
    await backend.add(
        [
            MemoryRecord(user_id="alice", content=f"turn {i}", kind=MemoryKind.USER_INTERACTION, timestamp=now - timedelta(minutes=10 - i))
            for i in range(4)
        ],
    )
    store = MemoryStore(backend)

    records = await store.conversation_context("alice", limit=2)

    assert [r.content for r in records] == ["turn 3", "turn 2"]


@pytest.mark.asyncio
async def test_recent_documents_respects_window():
    backend = InMemoryMemoryBackend()
    now = utcnow()
    await backend.add(
        [
            MemoryRecord(user_id="alice", content="fresh", kind=MemoryKind.DOCUMENT_CHUNK, timestamp=now - timedelta(hours=1)),
            MemoryRecord(user_id="alice", content="stale", kind=MemoryKind.DOCUMENT_CHUNK, timestamp=now - timedelta(hours=30)),
            MemoryRecord(user_id="alice", content="chat", kind=MemoryKind.USER_INTERACTION, timestamp=now),
        ],
    )
    store = MemoryStore(backend)

    records = await store.recent_documents("alice", hours_window=24)

    assert [r.content for r in records] == ["fresh"]


@pytest.mark.asyncio
async def test_memory_is_isolated_per_user():
    store = MemoryStore(InMemoryMemoryBackend())
    await store.append_interaction("alice", "alice question about budget", "alice answer")
    await store.append_chunks("alice", [make_chunk("alice budget document")])

    snapshot = await store.snapshot("bob", "budget")

    assert snapshot.total_items == 0
    assert await store.stats("bob") == {"document_chunk": 0, "user_interaction": 0}


@pytest.mark.asyncio
async def test_relevant_memories_rank_by_overlap():
    store = MemoryStore(InMemoryMemoryBackend())
    await store.append_chunks("alice", [make_chunk("quarterly budget review"), make_chunk("team offsite agenda")])

    records = await store.relevant_memories("alice", "what was the budget review", limit=3)

    assert [r.content for r in records] == ["quarterly budget review"]


@pytest.mark.asyncio
async def test_backend_failures_yield_empty_results():
    store = MemoryStore(ExplodingMemoryBackend())

    assert await store.append_interaction("alice", "q", "a") is None
    assert await store.append_chunks("alice", [make_chunk("text")]) == 0
    assert await store.recent_documents("alice") == []
    assert await store.conversation_context("alice") == []
    assert await store.relevant_memories("alice", "q") == []
    assert await store.evict_older_than("alice") == 0
    snapshot = await store.snapshot("alice", "q")
    assert snapshot.total_items == 0


@pytest.mark.asyncio
async def test_eviction_removes_only_old_records():
    backend = InMemoryMemoryBackend()
    now = utcnow()
    await backend.add(
        [
            MemoryRecord(user_id="alice", content="old", kind=MemoryKind.USER_INTERACTION, timestamp=now - timedelta(days=45)),
            MemoryRecord(user_id="alice", content="new", kind=MemoryKind.USER_INTERACTION, timestamp=now - timedelta(days=2)),
            MemoryRecord(user_id="bob", content="bob old", kind=MemoryKind.USER_INTERACTION, timestamp=now - timedelta(days=45)),
        ],
    )
    store = MemoryStore(backend)

    removed = await store.evict_older_than("alice", days=30)

    assert removed == 1
    assert [r.content for r in await store.conversation_context("alice")] == ["new"]
    assert [r.content for r in await store.conversation_context("bob")] == ["bob old"]


def test_build_memory_backend_requires_embedder_for_chroma():
    assert isinstance(build_memory_backend("memory"), InMemoryMemoryBackend)
    with pytest.raises(ValueError):
        build_memory_backend("chroma")


@pytest.mark.asyncio
async def test_chroma_backend_round_trip_and_eviction():
    backend = ChromaMemoryBackend(
        HashEmbeddingGateway(EmbeddingConfig(dim=16)),
        client=chromadb.EphemeralClient(),
        namespace_prefix=f"m{uuid4().hex[:8]}",
    )
    store = MemoryStore(backend)
    user_id = f"user-{uuid4().hex}"
    now = utcnow()
    await backend.add(
        [
            MemoryRecord(user_id=user_id, content="old chat", kind=MemoryKind.USER_INTERACTION, timestamp=now - timedelta(days=40)),
        ],
    )
    await store.append_interaction(user_id, "When?", "Friday.")
    await store.append_chunks(user_id, [make_chunk("plan document", user_id=user_id)])

    conversation = await store.conversation_context(user_id)
    assert [r.content for r in conversation] == ['User: "When?"\nAssistant: "Friday."', "old chat"]
    assert conversation[0].metadata["query_length"] == 5
    assert [r.content for r in await store.recent_documents(user_id)] == ["plan document"]
    assert len(await store.relevant_memories(user_id, "plan document", limit=2)) == 2

    assert await store.evict_older_than(user_id, days=30) == 1
    assert await store.stats(user_id) == {"document_chunk": 1, "user_interaction": 1}
