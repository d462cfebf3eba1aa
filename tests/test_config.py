from __future__ import annotations

from dochat.config import get_settings


def test_defaults_embedding_model_and_dim():
    settings = get_settings({"environment": "test"})
    assert settings.embedding_model == "BAAI/bge-small-en-v1.5"
    assert settings.embedding_dim == 384


def test_retrieval_and_budget_defaults():
    settings = get_settings({"environment": "test"})
    assert settings.min_similarity == 0.60
    assert settings.top_k == 5
    assert settings.oversample_factor * settings.top_k >= settings.min_oversample
    assert settings.memory_context_budget == 4000
    assert settings.retrieval_context_budget == 6000


def test_env_prefix_overrides(monkeypatch):
    monkeypatch.setenv("DOCHAT_MIN_SIMILARITY", "0.75")
    monkeypatch.setenv("DOCHAT_RERANKER", "cross_encoder")
    settings = get_settings({"environment": "test"})
    assert settings.min_similarity == 0.75
    assert settings.reranker == "cross_encoder"
    assert settings.is_test
