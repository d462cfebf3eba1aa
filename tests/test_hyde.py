from __future__ import annotations

import pytest

from conftest import HYDE_VECTOR, RecordingGenerator, StaticEmbedder
from dochat.services.generation import TemplateGenerator
from dochat.services.hyde import HypotheticalDocumentExpander


@pytest.mark.asyncio
async def test_expand_embeds_generated_passage():
    generator = RecordingGenerator(passage="  The launch happened on 3 March.  ")
    embedder = StaticEmbedder()
    expander = HypotheticalDocumentExpander(generator, embedder)

    document = await expander.expand("When was the launch?")

    assert document is not None
    assert document.passage == "The launch happened on 3 March."
    assert document.embedding == HYDE_VECTOR
    assert "Question: When was the launch?" in generator.prompts[0]
    assert embedder.calls == ["The launch happened on 3 March."]


@pytest.mark.asyncio
async def test_generation_failure_yields_none():
    expander = HypotheticalDocumentExpander(RecordingGenerator(fail_hyde=True), StaticEmbedder())
    assert await expander.expand("anything") is None


@pytest.mark.asyncio
async def test_empty_passage_yields_none():
    embedder = StaticEmbedder()
    expander = HypotheticalDocumentExpander(RecordingGenerator(passage="   "), embedder)
    assert await expander.expand("anything") is None
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_embedding_failure_yields_none():
    expander = HypotheticalDocumentExpander(RecordingGenerator(), StaticEmbedder(fail=True))
    assert await expander.expand("anything") is None


@pytest.mark.asyncio
async def test_timeout_yields_none():
    expander = HypotheticalDocumentExpander(RecordingGenerator(), StaticEmbedder(delay=0.5), timeout_seconds=0.01)
    assert await expander.expand("anything") is None


@pytest.mark.asyncio
async def test_template_generator_writes_question_shaped_passage():
    expander = HypotheticalDocumentExpander(TemplateGenerator(), StaticEmbedder())
    document = await expander.expand("What is the budget?")
    assert document is not None
    assert "What is the budget?" in document.passage
