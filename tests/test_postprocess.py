from __future__ import annotations

import pytest

from oracle_engine.postprocess import (
    enforce_sentence_count,
    enforce_short_response,
    ensure_handoff,
    next_agent_for_handoff,
    normalize_agent,
    post_process,
    remove_formal_introductions,
    scrub_jargon,
)
from oracle_engine.states import Agent

from conftest import FixedRng


def test_scrub_jargon_replaces_whole_words_only():
    text = "VWAP and targets beat the LP timestamp; probabilities aside, helpful"
    assert scrub_jargon(text) == (
        "trading signals and trading signals beat the trading signals trading signals; "
        "trading signals aside, helpful"
    )


@pytest.mark.parametrize(
    "raw",
    [
        "As the Analyzer, holders look spread out.",
        "I'm Analyzer holders look spread out.",
        "The Quantum Eraser here, holders look spread out.",
        "Hey Predictor, holders look spread out.",
        "hello retrocausal holders look spread out.",
    ],
)
def test_remove_formal_introductions(raw):
    assert remove_formal_introductions(raw) == "holders look spread out."


def test_enforce_sentence_count_keeps_two():
    assert enforce_sentence_count("One. Two! Three? Four.") == "One. Two!"


def test_enforce_sentence_count_keeps_unterminated_text():
    assert enforce_sentence_count("no punctuation here") == "no punctuation here"


def test_enforce_short_response_keeps_one():
    assert enforce_short_response("First point. Second point.") == "First point."


def test_existing_handoff_is_kept():
    text = "Liquidity is thin. Retrocausal, where does that lead?"
    assert ensure_handoff(text, Agent.ANALYZER, FixedRng(0.0)) == text


def test_handoff_question_goes_to_next_agent():
    out = ensure_handoff("Liquidity is thin.", Agent.ANALYZER, FixedRng(0.0))
    assert out == "Liquidity is thin. Predictor, what do you think?"


def test_handoff_statement_when_draw_misses():
    out = ensure_handoff("Liquidity is thin.", Agent.RETROCAUSAL, FixedRng(0.9))
    assert out == "Liquidity is thin. Your turn, Analyzer."


@pytest.mark.parametrize(
    "agent,expected",
    [
        (Agent.ANALYZER, Agent.PREDICTOR),
        (Agent.PREDICTOR, Agent.QUANTUM_ERASER),
        (Agent.QUANTUM_ERASER, Agent.RETROCAUSAL),
        (Agent.RETROCAUSAL, Agent.ANALYZER),
    ],
)
def test_handoff_cycle(agent, expected):
    assert next_agent_for_handoff(agent) == expected


@pytest.mark.parametrize(
    "name,expected",
    [
        ("The Analyser", Agent.ANALYZER),
        ("seer", Agent.PREDICTOR),
        ("Quantum", Agent.QUANTUM_ERASER),
        ("time traveller", Agent.RETROCAUSAL),
        ("", Agent.ANALYZER),
        (None, Agent.ANALYZER),
    ],
)
def test_normalize_agent(name, expected):
    assert normalize_agent(name) == expected


def test_post_process_pipeline():
    raw = "As the Predictor, the VWAP is flat. Volume rose. Holders grew."
    out = post_process(raw, Agent.PREDICTOR, FixedRng(0.0))
    assert out == "the trading signals is flat. Volume rose. Quantum Eraser, where's this heading?"
