from __future__ import annotations

from conftest import make_chunk, scored
from dochat.models import AnswerResult, MemoryKind, MemoryRecord, MemorySnapshot


def test_scores_are_clamped_to_unit_interval():
    item = scored("A", 1.4, relevance=-0.2)
    assert item.similarity == 1.0
    assert item.relevance == 0.0
    assert item.with_relevance(0.7).relevance == 0.7
    assert item.with_relevance(0.7).similarity == 1.0


def test_chunk_identity_is_owner_and_text():
    assert make_chunk("same", source_id="a.pdf").identity == make_chunk("same", source_id="b.pdf").identity
    assert make_chunk("same").identity != make_chunk("same", user_id="bob").identity


def test_citation_label_includes_page_when_known():
    assert make_chunk("x", source_id="plan.pdf", page_number=3).metadata.citation_label() == "plan.pdf, p.3"
    assert make_chunk("x", source_id="notes.txt").metadata.citation_label() == "notes.txt"


def test_answer_result_serialises_context_and_diagnostics():
    result = AnswerResult(
        answer="Friday.",
        context=[scored("Ship Friday.", 0.9, relevance=0.8, source_id="plan.pdf")],
        sources=["plan.pdf"],
        persona="Friendly Mentor",
        diagnostics={"outcome": "answered"},
    )

    payload = result.to_dict()

    assert payload["sources"] == ["plan.pdf"]
    assert payload["context"][0]["text"] == "Ship Friday."
    assert payload["context"][0]["metadata"]["source_id"] == "plan.pdf"
    assert payload["context"][0]["relevance"] == 0.8
    assert payload["diagnostics"] == {"outcome": "answered"}


def test_memory_snapshot_counts_every_section():
    record = MemoryRecord(user_id="alice", content="hello", kind=MemoryKind.USER_INTERACTION)
    assert MemorySnapshot().total_items == 0
    assert MemorySnapshot(conversation=[record], relevant_memories=[record]).total_items == 2
    assert record.to_dict()["kind"] == "user_interaction"
