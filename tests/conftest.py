from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

import pytest

from oracle_engine.context import ContextBuilder
from oracle_engine.feed import TokenFeed
from oracle_engine.orchestrator import ConversationOrchestrator
from oracle_engine.repository import ConversationRepository
from oracle_engine.selector import AgentSelector
from oracle_engine.states import Agent, Message
from oracle_engine.store import MemoryStore


START_MS = 1_700_000_000_000
SESSION_ID = "oracle-session-test"


class Clock:
    def __init__(self, start: int = START_MS) -> None:
        self.t = start

    def __call__(self) -> int:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += int(seconds * 1000)


class FixedRng:
    """``random()`` returns ``value``; ``choice`` picks the first element."""

    def __init__(self, value: float = 0.99) -> None:
        self.value = value

    def random(self) -> float:
        return self.value

    def choice(self, seq):
        return seq[0]


class FakeGenerator:
    def __init__(self, reply: Optional[Callable[[int, Agent], str]] = None, delay: float = 0.0) -> None:
        self.reply = reply or (lambda n, agent: f"{agent.display} notes price move {n}.")
        self.delay = delay
        self.calls: List[dict] = []

    async def generate(self, token, context, agent, session_id):
        self.calls.append({"token": token, "context": context, "agent": agent, "session_id": session_id})
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.reply(len(self.calls), agent)


def make_message(agent: Agent, text: str, timestamp: int, idx: int = 0, session_id: str = SESSION_ID) -> Message:
    return Message(id=f"oracle-{timestamp}-{idx:09d}", agent=agent, text=text, timestamp=timestamp, session_id=session_id)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_orchestrator(store, clock):
    def _make(
        generator=None,
        rng_value: float = 0.99,
        interval: float = 8.0,
        store_override=None,
    ) -> ConversationOrchestrator:
        rng = FixedRng(rng_value)
        return ConversationOrchestrator(
            session_id=SESSION_ID,
            repository=ConversationRepository(store_override if store_override is not None else store),
            feed=TokenFeed(contract_address=""),
            generator=generator or FakeGenerator(),
            selector=AgentSelector(rng=rng),
            builder=ContextBuilder(rng=rng),
            interval=interval,
            clock=clock,
        )

    return _make
