from __future__ import annotations

import random
from typing import Optional, Sequence

from loguru import logger

from .states import ROSTER, Agent, Message


SELF_RESPONSE_WINDOW_S = 60
SELF_RESPONSE_PROBABILITY = 0.15
LOOP_GUARD_RUN = 3


class AgentSelector:
    """Picks the next speaker.

    ``rotation_index`` is the only mutable state. It moves on the loop guard
    and default rotation paths and is left alone when an agent answers itself.
    """

    def __init__(
        self,
        roster: Sequence[Agent] = ROSTER,
        rng: Optional[random.Random] = None,
        rotation_index: int = 0,
    ) -> None:
        self.roster = tuple(roster)
        self.rng = rng or random.Random()
        self.rotation_index = 0
        self.restore(rotation_index)

    def restore(self, index: int) -> None:
        if 0 <= index < len(self.roster):
            self.rotation_index = index
        else:
            logger.warning(f"rotation_restore_ignored | index={index} out of range")
            self.rotation_index = 0

    def _rotate(self) -> Agent:
        self.rotation_index = (self.rotation_index + 1) % len(self.roster)
        return self.roster[self.rotation_index]

    def is_looping(self, history: Sequence[Message]) -> bool:
        if len(history) < LOOP_GUARD_RUN:
            return False
        tail = history[-LOOP_GUARD_RUN:]
        return all(m.agent == tail[-1].agent for m in tail)

    def select_next(self, history: Sequence[Message], now_ms: int) -> Agent:
        if not history:
            self.rotation_index = 0
            return self.roster[0]

        last = history[-1]
        if self.is_looping(history):
            agent = self._rotate()
            logger.debug(f"loop_guard | from={last.agent.value} to={agent.value}")
            return agent

        elapsed = (now_ms - last.timestamp) / 1000
        if elapsed < SELF_RESPONSE_WINDOW_S and self.rng.random() < SELF_RESPONSE_PROBABILITY:
            logger.debug(f"self_response | agent={last.agent.value} elapsed={elapsed:.0f}s")
            return last.agent

        return self._rotate()
