from __future__ import annotations

from typing import Iterable, List

from .states import DEFAULT_TOPIC, Message


# Declaration order decides which topic counts as "first".
TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "market_analysis": ("market", "price", "volume", "liquidity", "trading"),
    "holder_behavior": ("holders", "distribution", "concentration", "whales"),
    "technical_analysis": ("levels", "support", "resistance", "patterns", "indicators"),
    "fundamentals": ("utility", "adoption", "innovation", "technology", "use case"),
    "market_sentiment": ("fear", "greed", "optimism", "pessimism", "sentiment"),
    "risk_assessment": ("risk", "danger", "warning", "caution", "safety"),
    "future_outlook": ("future", "prediction", "forecast", "scenario", "outcome"),
}


def extract_topics(text: str) -> List[str]:
    """Topic labels whose keywords appear in ``text``, in table order.

    Matching is a case-insensitive substring test. Text that matches no
    category yields ``[DEFAULT_TOPIC]``.
    """
    low = (text or "").lower()
    found = [
        topic
        for topic, keywords in TOPIC_KEYWORDS.items()
        if any(k in low for k in keywords)
    ]
    return found or [DEFAULT_TOPIC]


def primary_topic(text: str) -> str:
    return extract_topics(text)[0]


def topics_from_messages(messages: Iterable[Message]) -> List[str]:
    seen: List[str] = []
    for msg in messages:
        for topic in extract_topics(msg.text):
            if topic not in seen:
                seen.append(topic)
    return seen
