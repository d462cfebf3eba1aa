from __future__ import annotations

import pytest

from conftest import QUERY_VECTOR, FakeVectorIndex
from dochat.retrieval.service import DualChannelRetriever, RetrievalConfig


def test_oversample_size_has_floor():
    retriever = DualChannelRetriever(FakeVectorIndex(), RetrievalConfig(oversample_factor=4, min_oversample=10))
    assert retriever.oversample_size(1) == 10
    assert retriever.oversample_size(5) == 20


@pytest.mark.asyncio
async def test_threshold_is_inclusive_and_sorted(vector_index):
    vector_index.add_hits("alice", QUERY_VECTOR, [("low", 0.59), ("edge", 0.60), ("high", 0.91)])
    retriever = DualChannelRetriever(vector_index)

    results = await retriever.search("alice", QUERY_VECTOR, top_k=5)

    assert [r.text for r in results] == ["high", "edge"]
    assert all(r.relevance is None for r in results)


@pytest.mark.asyncio
async def test_fallback_returns_best_candidates_when_nothing_passes(vector_index):
    vector_index.add_hits("alice", QUERY_VECTOR, [("a", 0.41), ("b", 0.55), ("c", 0.12)])
    retriever = DualChannelRetriever(vector_index)

    results = await retriever.search("alice", QUERY_VECTOR, top_k=2, min_similarity=0.75)

    assert [r.text for r in results] == ["b", "a"]


@pytest.mark.asyncio
async def test_empty_namespace_yields_nothing(vector_index):
    retriever = DualChannelRetriever(vector_index)
    assert await retriever.search("nobody", QUERY_VECTOR) == []


@pytest.mark.asyncio
async def test_search_uses_oversampled_limit_and_caps_at_top_k(vector_index):
    vector_index.add_hits("alice", QUERY_VECTOR, [(f"chunk {i}", 0.9 - i * 0.01) for i in range(30)])
    retriever = DualChannelRetriever(vector_index, RetrievalConfig(top_k=3))

    results = await retriever.search("alice", QUERY_VECTOR)

    assert len(results) == 3
    assert vector_index.searches[-1][2] == 12


@pytest.mark.asyncio
async def test_hits_owned_by_other_users_are_dropped(vector_index):
    vector_index.add_hits("alice", QUERY_VECTOR, [("mine", 0.7)])
    vector_index.add_hits("alice", QUERY_VECTOR, [("theirs", 0.95)], user_id="mallory")
    retriever = DualChannelRetriever(vector_index)

    results = await retriever.search("alice", QUERY_VECTOR)

    assert [r.text for r in results] == ["mine"]
