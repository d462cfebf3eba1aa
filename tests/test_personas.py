from __future__ import annotations

import pytest

from dochat.personas import PERSONAS, get_persona, is_greeting


@pytest.mark.parametrize("query", ["hi", "Hello!", "hey there", "Good morning team", "namaste ji", "well, hola"])
def test_greetings_are_detected(query):
    assert is_greeting(query)


@pytest.mark.parametrize("query", ["", "   ", "history of the project", "which deadline?", "they said", "yoga schedule"])
def test_non_greetings_are_not_detected(query):
    assert not is_greeting(query)


def test_unknown_persona_defaults_to_mentor():
    assert get_persona("pirate") is PERSONAS["mentor"]
    assert get_persona("hinglish").name == "Hinglish Coding Teacher"


def test_every_persona_has_all_replies():
    for persona in PERSONAS.values():
        assert persona.greeting_reply
        assert persona.no_context_reply
        assert persona.apology_reply
        assert persona.technical_issue_reply
        assert persona.no_context_reply != persona.technical_issue_reply
