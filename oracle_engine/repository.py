from __future__ import annotations

from typing import List, Optional

from loguru import logger

from .errors import CollaboratorUnavailable, DataIntegrityWarning
from .states import (
    DEFAULT_THEME,
    Message,
    Session,
    push_topic,
)
from .store import MessageStore, join_path


SESSION_ROOT = "oracle-session"
MESSAGES_ROOT = "oracle-messages"


class ConversationRepository:
    """Session and message persistence for one store.

    Reads degrade to empty results when the store is missing or failing.
    Writes raise so a tick never counts a message that was not saved.
    """

    def __init__(self, store: Optional[MessageStore]) -> None:
        self.store = store
        if store is None:
            logger.warning("store_unavailable | persistence disabled; reads return empty")

    def _require_store(self) -> MessageStore:
        if self.store is None:
            raise CollaboratorUnavailable("Message store not configured")
        return self.store

    @staticmethod
    def session_path(session_id: str) -> str:
        return join_path(SESSION_ROOT, session_id)

    @staticmethod
    def messages_path(session_id: str) -> str:
        return join_path(MESSAGES_ROOT, session_id)

    def load_session(self, session_id: str) -> Optional[Session]:
        if self.store is None:
            return None
        try:
            if not self.store.exists(self.session_path(session_id)):
                return None
            data = self.store.get(self.session_path(session_id)) or {}
            data.setdefault("id", session_id)
            return Session.from_dict(data)
        except Exception as e:
            logger.error(f"session_load_failed | session={session_id} | {e}")
            return None

    def create_session(self, session_id: str, now: int) -> Session:
        session = Session(
            id=session_id,
            last_message_time=now,
            created_at=now,
            updated_at=now,
            conversation_theme=DEFAULT_THEME,
        )
        self._require_store().set(self.session_path(session_id), session.to_dict())
        logger.info(f"session_created | session={session_id}")
        return session

    def load_or_create_session(self, session_id: str, now: int) -> Optional[Session]:
        session = self.load_session(session_id)
        if session is not None:
            logger.info(f"session_loaded | session={session_id} | messages={session.message_count}")
            return session
        if self.store is None:
            return None
        try:
            return self.create_session(session_id, now)
        except Exception as e:
            logger.error(f"session_create_failed | session={session_id} | {e}")
            return None

    def recent_messages(self, session_id: str, limit: int) -> List[Message]:
        """Last ``limit`` messages ordered oldest to newest."""
        if self.store is None:
            return []
        try:
            rows = self.store.query_last_n(self.messages_path(session_id), "timestamp", limit)
        except Exception as e:
            logger.error(f"messages_load_failed | session={session_id} | {e}")
            return []
        messages = []
        for row in rows:
            try:
                messages.append(Message.from_dict(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"message_skipped | session={session_id} | malformed record: {e}")
        return messages

    def save_message(self, message: Message) -> None:
        path = join_path(self.messages_path(message.session_id), message.id)
        self._require_store().set(path, message.to_dict())

    def discard_message(self, message: Message) -> None:
        path = join_path(self.messages_path(message.session_id), message.id)
        try:
            self._require_store().remove(path)
        except Exception as e:
            logger.error(f"message_discard_failed | id={message.id} | {e}")

    def record_message(self, message: Message, rotation_index: int, now: int) -> Session:
        """Bump the session counters against the latest stored count.

        Reads the store directly: a failed read raises instead of counting
        from zero.
        """
        store = self._require_store()
        path = self.session_path(message.session_id)
        latest = store.get(path)
        if not isinstance(latest, dict):
            raise DataIntegrityWarning(f"session {message.session_id} missing while recording {message.id}")
        fields = {
            "id": message.session_id,
            "last_agent_index": rotation_index,
            "message_count": int(latest.get("message_count") or 0) + 1,
            "last_message_time": message.timestamp,
            "updated_at": now,
        }
        store.update(path, fields)
        return Session.from_dict({**latest, **fields})

    def change_topic(self, session: Session, topic: str, now: int) -> Session:
        history = push_topic(session.topic_history, topic)
        self._require_store().update(
            self.session_path(session.id),
            {
                "current_topic": topic,
                "last_topic_change": now,
                "topic_history": history,
                "updated_at": now,
            },
        )
        session.current_topic = topic
        session.last_topic_change = now
        session.topic_history = history
        session.updated_at = now
        return session

    def clear(self, session_id: str, now: int) -> None:
        store = self._require_store()
        store.remove(self.messages_path(session_id))
        if not store.exists(self.session_path(session_id)):
            return
        store.update(
            self.session_path(session_id),
            {
                "message_count": 0,
                "last_agent_index": 0,
                "last_message_time": now,
                "updated_at": now,
                "current_topic": None,
                "conversation_theme": None,
                "last_topic_change": None,
                "topic_history": [],
            },
        )
