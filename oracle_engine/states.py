from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class Agent(Enum):
    ANALYZER = "analyzer"
    PREDICTOR = "predictor"
    QUANTUM_ERASER = "quantum-eraser"
    RETROCAUSAL = "retrocausal"

    @property
    def display(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def from_value(cls, value: str) -> "Agent":
        for agent in cls:
            if value in (agent.value, agent.display):
                return agent
        raise ValueError(f"Unknown agent: {value!r}")


_DISPLAY_NAMES = {
    Agent.ANALYZER: "Analyzer",
    Agent.PREDICTOR: "Predictor",
    Agent.QUANTUM_ERASER: "Quantum Eraser",
    Agent.RETROCAUSAL: "Retrocausal",
}

# Rotation order is fixed for the lifetime of the process.
ROSTER: tuple[Agent, ...] = (
    Agent.ANALYZER,
    Agent.PREDICTOR,
    Agent.QUANTUM_ERASER,
    Agent.RETROCAUSAL,
)


class DiscussionStage(Enum):
    OPENING = "Opening"
    DEVELOPING = "Developing"
    DEEP_DISCUSSION = "Deep discussion"

    @classmethod
    def for_count(cls, message_count: int) -> "DiscussionStage":
        if message_count < 3:
            return cls.OPENING
        if message_count < 8:
            return cls.DEVELOPING
        return cls.DEEP_DISCUSSION


class VarietyLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @classmethod
    def for_count(cls, message_count: int) -> "VarietyLevel":
        if message_count > 5:
            return cls.HIGH
        if message_count > 2:
            return cls.MEDIUM
        return cls.LOW


MESSAGE_KINDS = ("message", "analysis", "prediction")
DEFAULT_TOPIC = "general_market_discussion"
DEFAULT_THEME = "oracle_debate"
TOPIC_HISTORY_LIMIT = 5


def now_ms() -> int:
    return int(time.time() * 1000)


def new_message_id(timestamp: int) -> str:
    return f"oracle-{timestamp}-{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class Message:
    id: str
    agent: Agent
    text: str
    timestamp: int
    session_id: str
    kind: str = "message"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agent": self.agent.value,
            "text": self.text,
            "timestamp": self.timestamp,
            "kind": self.kind,
            "session_id": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        kind = data.get("kind") or "message"
        if kind not in MESSAGE_KINDS:
            raise ValueError(f"Unknown message kind: {kind!r}")
        return cls(
            id=data["id"],
            agent=Agent.from_value(data["agent"]),
            text=data.get("text") or "",
            timestamp=int(data.get("timestamp") or 0),
            session_id=data.get("session_id") or "",
            kind=kind,
        )


@dataclass
class Session:
    id: str
    last_agent_index: int = 0
    message_count: int = 0
    last_message_time: int = 0
    is_active: bool = True
    created_at: int = 0
    updated_at: int = 0
    current_topic: Optional[str] = None
    conversation_theme: Optional[str] = None
    last_topic_change: Optional[int] = None
    topic_history: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        index = int(data.get("last_agent_index") or 0)
        if not 0 <= index < len(ROSTER):
            index = 0
        return cls(
            id=data["id"],
            last_agent_index=index,
            message_count=int(data.get("message_count") or 0),
            last_message_time=int(data.get("last_message_time") or 0),
            is_active=bool(data.get("is_active", True)),
            created_at=int(data.get("created_at") or 0),
            updated_at=int(data.get("updated_at") or 0),
            current_topic=data.get("current_topic"),
            conversation_theme=data.get("conversation_theme"),
            last_topic_change=data.get("last_topic_change"),
            topic_history=list(data.get("topic_history") or []),
        )


def push_topic(history: List[str], topic: str) -> List[str]:
    """Append ``topic`` keeping only the most recent ``TOPIC_HISTORY_LIMIT`` entries."""
    return [*history[-(TOPIC_HISTORY_LIMIT - 1):], topic]
