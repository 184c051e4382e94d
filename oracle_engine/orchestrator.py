from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .config import OracleSettings
from .context import ContextBuilder
from .errors import CollaboratorUnavailable, DataIntegrityWarning
from .feed import TokenFeed
from .generator import TextGenerator
from .llm import get_chat_model
from .repository import ConversationRepository
from .selector import AgentSelector
from .states import (
    DEFAULT_THEME,
    DEFAULT_TOPIC,
    Agent,
    Message,
    Session,
    new_message_id,
    now_ms,
)
from .store import MessageStore, open_store
from .topics import extract_topics


TOPIC_CHANGE_EVERY = 10
TOPIC_MAX_AGE_MS = 300_000
CONTEXT_MESSAGES = 5


def fallback_text(agent: Agent) -> str:
    return f"The {agent.display} contemplates the cosmic market patterns from the oracle realm."


def topic_change_due(session: Session, now: int) -> bool:
    """Either trigger is enough; they never compete.

    The age trigger only applies once a topic has been set, so a fresh or
    just-cleared session changes topic on the count trigger alone.
    """
    if session.message_count % TOPIC_CHANGE_EVERY == 0:
        return True
    if session.last_topic_change is None:
        return False
    return now - session.last_topic_change >= TOPIC_MAX_AGE_MS


class ConversationOrchestrator:
    """Drives the debate one tick at a time.

    Lifecycle is ``stopped -> running`` via ``start``/``stop``. Ticks run on a
    single asyncio task and never overlap; a tick that fails is logged and
    the loop carries on.
    """

    def __init__(
        self,
        session_id: str,
        repository: ConversationRepository,
        feed: TokenFeed,
        generator: TextGenerator,
        selector: Optional[AgentSelector] = None,
        builder: Optional[ContextBuilder] = None,
        interval: float = 8.0,
        history_window: int = 8,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.session_id = session_id
        self.repository = repository
        self.feed = feed
        self.generator = generator
        self.selector = selector or AgentSelector()
        self.builder = builder or ContextBuilder()
        self.interval = interval
        self.history_window = history_window
        self.clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tick_lock = asyncio.Lock()

    @classmethod
    def create(
        cls,
        settings: Optional[OracleSettings] = None,
        store: Optional[MessageStore] = None,
    ) -> "ConversationOrchestrator":
        settings = settings or OracleSettings.from_env()
        if store is None:
            store = open_store(settings.db_path)
        feed = TokenFeed(
            settings.contract_address,
            api_url=settings.token_api_url,
            interval=settings.fetch_interval,
        )
        return cls(
            session_id=settings.session_id,
            repository=ConversationRepository(store),
            feed=feed,
            generator=TextGenerator(get_chat_model(settings)),
            interval=settings.message_interval,
            history_window=settings.history_window,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.info("oracle_start_skipped | already running")
            return
        logger.info(f"oracle_start | session={self.session_id} interval={self.interval}s")
        self._running = True
        await self.feed.start()
        self.initialize_session()
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())

    def initialize_session(self) -> Optional[Session]:
        session = self.repository.load_or_create_session(self.session_id, self.clock())
        if session is None:
            logger.warning("session_unavailable | ticks will be skipped until a session exists")
            return None
        self.selector.restore(session.last_agent_index)
        return session

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        if task is not None:
            # Let an in-flight tick finish and persist its message
            await task
        await self.feed.stop()
        if self._running:
            logger.info(f"oracle_stop | session={self.session_id}")
        self._running = False

    async def _run_loop(self) -> None:
        assert self._stop_event is not None
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass
            await self.tick()

    async def tick(self) -> Optional[Message]:
        """Run one cycle; returns the persisted message, or None when skipped."""
        if self._tick_lock.locked():
            logger.warning("tick_skipped | previous tick still in flight")
            return None
        async with self._tick_lock:
            try:
                return await self._tick()
            except DataIntegrityWarning as e:
                logger.warning(f"tick_skipped | {e}")
                return None
            except Exception as e:
                logger.exception(f"tick_failed | session={self.session_id} | {e}")
                return None

    async def _tick(self) -> Optional[Message]:
        now = self.clock()
        session = self.repository.load_session(self.session_id)
        if session is None:
            raise DataIntegrityWarning(f"no session {self.session_id}")

        history = self.repository.recent_messages(self.session_id, self.history_window)
        agent = self.selector.select_next(history, now)
        logger.debug(f"tick_agent | agent={agent.value} history={len(history)}")

        context = self.builder.build(history, agent, session.current_topic, now)
        if context.force_topic_change:
            topic = self.builder.pick_forced_topic(session.current_topic)
            session = self.repository.change_topic(session, topic, now)
            logger.info(f"topic_forced | topic={topic}")
            context = self.builder.build(history, agent, topic, now)

        text = await self._generate(agent, context.text)
        timestamp = self.clock()
        message = Message(
            id=new_message_id(timestamp),
            agent=agent,
            text=text,
            timestamp=timestamp,
            session_id=self.session_id,
        )
        self.repository.save_message(message)
        try:
            session = self.repository.record_message(message, self.selector.rotation_index, self.clock())
        except Exception:
            # Keep message_count equal to the number of stored messages
            self.repository.discard_message(message)
            raise
        self._maintain_topic(session, message)
        self._log_turn(message, session)
        return message

    async def _generate(self, agent: Agent, context: str) -> str:
        try:
            text = await self.generator.generate(
                self.feed.snapshot_or_fallback(), context, agent, self.session_id
            )
        except Exception as e:
            logger.error(f"generation_failed | agent={agent.value} | {e}")
            text = ""
        if not text or not text.strip():
            logger.warning(f"generation_fallback | agent={agent.value}")
            return fallback_text(agent)
        return text

    def _maintain_topic(self, session: Session, message: Message) -> None:
        now = self.clock()
        if not topic_change_due(session, now):
            return
        topic = extract_topics(message.text)[0]
        try:
            self.repository.change_topic(session, topic, now)
        except Exception as e:
            logger.error(f"topic_update_failed | session={self.session_id} | {e}")
            return
        logger.debug(f"topic_changed | topic={topic} count={session.message_count}")

    def _log_turn(self, message: Message, session: Session) -> None:
        raw = message.text or ""
        snippet = raw if len(raw) <= 200 else raw[:200] + "..."
        one_line = " ".join(snippet.split())
        logger.info(
            f"oracle_tick | agent={message.agent.value} count={session.message_count} "
            f"topic={session.current_topic or DEFAULT_TOPIC} | msg='{one_line}'"
        )

    def status(self) -> Dict[str, Any]:
        session = self.repository.load_session(self.session_id)
        feed_status = self.feed.status()
        token = self.feed.current_snapshot()
        return {
            "running": self._running,
            "session_id": self.session_id,
            "last_agent_index": self.selector.rotation_index,
            "message_count": session.message_count if session else 0,
            "current_topic": (session.current_topic if session else None) or DEFAULT_TOPIC,
            "conversation_theme": (session.conversation_theme if session else None) or DEFAULT_THEME,
            "topic_history": session.topic_history if session else [],
            "last_topic_change": session.last_topic_change if session else None,
            "feed": feed_status,
            "current_token": token.to_dict() if token else None,
        }

    def get_messages(self, limit: int = 20) -> List[Message]:
        """Newest first."""
        return list(reversed(self.repository.recent_messages(self.session_id, limit)))

    def set_topic(self, topic: str) -> Optional[Session]:
        session = self.repository.load_session(self.session_id)
        if session is None:
            logger.warning(f"set_topic_skipped | no session {self.session_id}")
            return None
        try:
            session = self.repository.change_topic(session, topic, self.clock())
        except Exception as e:
            logger.error(f"set_topic_failed | {e}")
            return None
        logger.info(f"topic_set | topic={topic}")
        return session

    def get_conversation_context(self) -> Dict[str, Any]:
        session = self.repository.load_session(self.session_id)
        return {
            "current_topic": (session.current_topic if session else None) or DEFAULT_TOPIC,
            "recent_messages": self.repository.recent_messages(self.session_id, CONTEXT_MESSAGES),
            "topic_history": session.topic_history if session else [],
            "message_count": session.message_count if session else 0,
        }

    def clear_messages(self) -> bool:
        try:
            self.repository.clear(self.session_id, self.clock())
        except CollaboratorUnavailable as e:
            logger.warning(f"clear_skipped | {e}")
            return False
        except Exception as e:
            logger.error(f"clear_failed | session={self.session_id} | {e}")
            return False
        self.selector.restore(0)
        logger.info(f"messages_cleared | session={self.session_id}")
        return True


@lru_cache(maxsize=1)
def default_orchestrator() -> ConversationOrchestrator:
    """Process-wide orchestrator built from the environment on first use."""
    return ConversationOrchestrator.create()
