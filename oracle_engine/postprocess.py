"""Text clean-up applied to every generated reply.

Pipeline order (``post_process``):
  1. scrub_jargon: whole-word, case-insensitive replacement of
     vwap, cvd, lp, target(s), probability/probabilities, timestamp(s)
     with "trading signals".
  2. remove_formal_introductions: drop a leading "As the X,", "I'm X",
     "The X here/speaking/says", "Hey/Hi/Hello X".
  3. enforce_sentence_count: keep at most MAX_SENTENCES sentences.
  4. ensure_handoff: append a hand-off to the next agent when the reply
     does not already address one as "<Agent>, ...".
"""

from __future__ import annotations

import random
import re
from typing import Optional

from .states import Agent


MAX_SENTENCES = 2
QUESTION_HANDOFF_PROBABILITY = 0.6

FORBIDDEN_WORDS = re.compile(
    r"(\bvwap\b|\bcvd\b|\blp\b|\btargets?\b|\bprobabilit(y|ies)\b|\btimestamps?\b)",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_AGENT_NAMES = r"(Analyzer|Predictor|Quantum\s+Eraser|Retrocausal)"
_INTRODUCTIONS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rf"^As\s+(the\s+)?{_AGENT_NAMES},?\s*",
        rf"^I'm\s+(the\s+)?{_AGENT_NAMES},?\s*",
        rf"^The\s+{_AGENT_NAMES}\s+(here|speaking|says),?\s*",
        rf"^Hey\s+{_AGENT_NAMES},?\s*",
        rf"^Hi\s+{_AGENT_NAMES},?\s*",
        rf"^Hello\s+{_AGENT_NAMES},?\s*",
    )
)
_HANDOFF = re.compile(r"(Analyzer|Predictor|Quantum Eraser|Retrocausal),[\s\S]")

_HANDOFF_CYCLE = {
    Agent.ANALYZER: Agent.PREDICTOR,
    Agent.PREDICTOR: Agent.QUANTUM_ERASER,
    Agent.QUANTUM_ERASER: Agent.RETROCAUSAL,
    Agent.RETROCAUSAL: Agent.ANALYZER,
}

HANDOFF_PROMPTS = {
    Agent.ANALYZER: (
        "{to}, what do you think?",
        "What's your take, {to}?",
        "Thoughts, {to}?",
        "What's your read on this, {to}?",
        "Over to you, {to}.",
        "{to}, your turn.",
        "What do you see, {to}?",
        "{to}, am I seeing this right?",
    ),
    Agent.PREDICTOR: (
        "{to}, where's this heading?",
        "What's your call, {to}?",
        "Where do you think this goes, {to}?",
        "What's next, {to}?",
        "Your turn, {to}.",
        "{to}, what's your take?",
        "Over to you, {to}.",
        "What's your prediction, {to}?",
    ),
    Agent.QUANTUM_ERASER: (
        "{to}, what's really going on?",
        "Am I missing something, {to}?",
        "What's the truth here, {to}?",
        "{to}, your view?",
        "Reality check, {to}?",
        "Your turn, {to}.",
        "Over to you, {to}.",
        "What am I not seeing, {to}?",
    ),
    Agent.RETROCAUSAL: (
        "{to}, how do you see this playing out?",
        "What's your angle, {to}?",
        "How would you handle this, {to}?",
        "{to}, what's your strategy?",
        "Your turn, {to}.",
        "Over to you, {to}.",
        "What's your approach, {to}?",
        "How do you navigate this, {to}?",
    ),
}


def normalize_agent(name: Optional[str]) -> Agent:
    """Tolerant mapping of a free-form companion name onto the roster."""
    n = (name or "").strip().lower()
    if re.search(r"(analy[zs]er|reader|watcher)", n):
        return Agent.ANALYZER
    if re.search(r"(predict(or|a)|seer|scout|oracle ahead)", n):
        return Agent.PREDICTOR
    if re.search(r"(eraser|clean(er)?|wipe|quantum)", n):
        return Agent.QUANTUM_ERASER
    if re.search(r"(retro|causal|back|time)", n):
        return Agent.RETROCAUSAL
    return Agent.ANALYZER


def next_agent_for_handoff(agent: Agent) -> Agent:
    return _HANDOFF_CYCLE[agent]


def scrub_jargon(text: str) -> str:
    return FORBIDDEN_WORDS.sub("trading signals", text)


def remove_formal_introductions(text: str) -> str:
    for pattern in _INTRODUCTIONS:
        text = pattern.sub("", text)
    return text.strip()


def _split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_SPLIT.split(text) if s]


def enforce_sentence_count(text: str, limit: int = MAX_SENTENCES) -> str:
    sentences = _split_sentences(text)[:limit]
    if not sentences and text:
        return text
    return " ".join(sentences)


def enforce_short_response(text: str) -> str:
    return " ".join(_split_sentences(text)[:1])


def ensure_handoff(text: str, agent: Agent, rng: Optional[random.Random] = None) -> str:
    if _HANDOFF.search(text):
        return text
    rng = rng or random.Random()
    to = next_agent_for_handoff(agent).display
    prompts = [p.format(to=to) for p in HANDOFF_PROMPTS[agent]]
    questions = [p for p in prompts if "?" in p]
    statements = [p for p in prompts if "?" not in p]
    if rng.random() < QUESTION_HANDOFF_PROBABILITY and questions:
        chosen = rng.choice(questions)
    elif statements:
        chosen = rng.choice(statements)
    else:
        chosen = rng.choice(prompts)
    return f"{text.strip()} {chosen}".strip()


def post_process(text: str, agent: Agent, rng: Optional[random.Random] = None) -> str:
    t = text or ""
    t = scrub_jargon(t)
    t = remove_formal_introductions(t)
    t = enforce_sentence_count(t)
    t = ensure_handoff(t, agent, rng)
    return t
