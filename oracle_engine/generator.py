from __future__ import annotations

import random
import time
from typing import Any, Optional

from loguru import logger
from langchain_core.messages import HumanMessage, SystemMessage

from .errors import GenerationFailure
from .feed import TokenSnapshot
from .postprocess import post_process
from .prompts import build_system_prompt, build_user_prompt
from .states import Agent


_NUDGE = (
    "Your previous response was empty. Reply in 1-2 short sentences about the token, "
    "then hand off to another agent. REPLY: Provide the response now. Do not leave this blank."
)


class TextGenerator:
    """Generates one persona reply through a LangChain chat model.

    ``chat`` is anything with an async ``ainvoke(messages)`` returning an
    object with ``content``.
    """

    def __init__(self, chat: Optional[Any], rng: Optional[random.Random] = None) -> None:
        self.chat = chat
        self.rng = rng or random.Random()

    async def _invoke(self, messages: list) -> str:
        try:
            result = await self.chat.ainvoke(messages)
        except Exception as e:
            raise GenerationFailure(f"chat model call failed: {e}") from e
        content = getattr(result, "content", "") or ""
        return content.strip() if isinstance(content, str) else str(content).strip()

    async def generate(
        self,
        token: TokenSnapshot,
        context: str,
        agent: Agent,
        session_id: str,
    ) -> str:
        if self.chat is None:
            raise GenerationFailure("no chat model configured")

        system = SystemMessage(content=build_system_prompt(agent, token))
        messages = [system, HumanMessage(content=build_user_prompt(token, context))]
        t0 = time.perf_counter()
        text = await self._invoke(messages)
        logger.info(f"llm_call | agent={agent.value} session={session_id} dt={time.perf_counter() - t0:.2f}s")
        if not text:
            # Retry once with a concise nudge
            retry = [system, HumanMessage(content=f"{build_user_prompt(token, context)}\n\n{_NUDGE}")]
            r0 = time.perf_counter()
            text = await self._invoke(retry)
            logger.info(f"llm_retry | agent={agent.value} session={session_id} dt={time.perf_counter() - r0:.2f}s")
        if not text:
            return ""
        return post_process(text, agent, self.rng)
