from __future__ import annotations

import pytest
from langchain_core.documents import Document as LCDocument

from conftest import StaticEmbedder, make_chunk
from dochat.memory import InMemoryMemoryBackend, MemoryStore
from dochat.services.indexing import ChunkIndexer, chunks_from_documents


@pytest.mark.asyncio
async def test_index_chunks_upserts_into_owner_namespace(vector_index):
    memory = MemoryStore(InMemoryMemoryBackend())
    indexer = ChunkIndexer(StaticEmbedder(), vector_index, memory=memory)

    report = await indexer.index_chunks("alice", [make_chunk("alpha  beta "), make_chunk("   ")], {"upload_id": "u1"})

    assert report.received == 2
    assert report.indexed == 1
    assert report.memory_records == 1
    assert report.namespace == vector_index.namespace_for("alice")
    stored = list(vector_index.upserts[report.namespace].values())
    assert stored[0].chunk.text == "alpha beta"
    recent = await memory.recent_documents("alice")
    assert recent[0].metadata["upload_id"] == "u1"


@pytest.mark.asyncio
async def test_same_text_indexed_twice_is_one_record(vector_index):
    indexer = ChunkIndexer(StaticEmbedder(), vector_index)

    first = await indexer.index_chunks("alice", [make_chunk("same text")])
    second = await indexer.index_chunks("alice", [make_chunk("same text")])

    assert first.record_ids == second.record_ids
    assert len(vector_index.upserts[first.namespace]) == 1


@pytest.mark.asyncio
async def test_chunks_are_stamped_with_the_owner(vector_index):
    indexer = ChunkIndexer(StaticEmbedder(), vector_index)

    report = await indexer.index_chunks("alice", [make_chunk("foreign", user_id="mallory")])

    stored = list(vector_index.upserts[report.namespace].values())
    assert stored[0].chunk.metadata.user_id == "alice"


@pytest.mark.asyncio
async def test_index_requires_user(vector_index):
    with pytest.raises(ValueError):
        await ChunkIndexer(StaticEmbedder(), vector_index).index_chunks("", [make_chunk("x")])


def test_langchain_documents_convert_to_chunks():
    documents = [
        LCDocument(page_content="page text", metadata={"source": "/tmp/report.pdf", "page": 4}),
        LCDocument(page_content="crawled", metadata={"source_id": "site", "url": "https://example.com", "crawl_depth": 1}),
    ]

    chunks = chunks_from_documents("alice", documents)

    assert chunks[0].metadata.citation_label() == "/tmp/report.pdf, p.4"
    assert chunks[1].metadata.url == "https://example.com"
    assert chunks[1].metadata.crawl_depth == 1
    assert {chunk.metadata.user_id for chunk in chunks} == {"alice"}
