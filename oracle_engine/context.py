from __future__ import annotations

import random
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from .states import Agent, DiscussionStage, Message, VarietyLevel
from .topics import topics_from_messages


VISIBLE_MESSAGES = 5
REPETITION_WINDOW = 3
RECENT_SELF_WINDOW_S = 30

OPENING_TOPICS = (
    "Analyze the current state of decentralized finance and emerging token ecosystems",
    "Discuss the impact of market volatility on new token launches and investor behavior",
    "Examine the role of community sentiment in driving token adoption and price discovery",
    "Explore the challenges of identifying genuine utility versus speculative hype in new projects",
    "Debate the effectiveness of different tokenomics models in creating sustainable value",
    "Investigate the relationship between on-chain metrics and long-term project viability",
)

MARKET_FOCUS = (
    "Current DeFi landscape and emerging opportunities",
    "Token holder behavior patterns and market manipulation risks",
    "Technical analysis of key support and resistance levels",
    "Fundamental analysis of project utility and adoption potential",
    "Market sentiment indicators and fear/greed dynamics",
    "Risk assessment of new token launches and investment strategies",
    "Future outlook for blockchain innovation and token ecosystems",
)

# Picked from when the builder reports a repetition loop.
FORCED_TOPICS = (
    "Analyze the technical indicators and chart patterns",
    "Discuss market sentiment and investor psychology",
    "Examine liquidity dynamics and trading volume patterns",
    "Explore price action and support/resistance levels",
    "Consider macro market conditions and external factors",
    "Evaluate token fundamentals and project development",
    "Assess risk management and position sizing strategies",
    "Review recent news and market catalysts",
)

VARIETY_RULES = (
    "NEVER repeat the exact same message, analysis, or wording",
    "Always bring a COMPLETELY NEW perspective or angle to the discussion",
    "If you've said something similar before, build on it with fresh insights",
    "Use different technical indicators, timeframes, or analytical approaches",
    "Vary your language and sentence structure completely",
    "Ask different types of questions or make different types of statements",
    "Reference different aspects of the token data or market conditions",
    "Change your analytical focus - if you discussed price, talk about volume next",
    "Use different vocabulary and phrasing than previous messages",
    "Bring up new data points or market observations",
)

AGENT_VARIETY = {
    Agent.ANALYZER: "Focus on different technical indicators, chart patterns, or market metrics - NEVER repeat the same analysis",
    Agent.PREDICTOR: "Make different types of predictions - short-term, long-term, or scenario-based - vary your approach",
    Agent.QUANTUM_ERASER: "Explore different philosophical angles or unconventional perspectives - change your focus",
    Agent.RETROCAUSAL: "Examine different historical patterns or cause-effect relationships - find new angles",
}

VARIETY_GUIDANCE = {
    VarietyLevel.LOW: "Start fresh and unique",
    VarietyLevel.MEDIUM: "Focus on bringing new insights",
    VarietyLevel.HIGH: "Be extremely creative and avoid any repetition",
}

AGENT_TASKS = {
    Agent.ANALYZER: {
        "opening": "Start with technical analysis of current token metrics",
        "developing": "Build on previous analysis with deeper technical insights",
        "deep_discussion": "Provide sophisticated technical analysis and challenge assumptions",
        "extended_debate": "Synthesize previous discussions and provide comprehensive analysis",
    },
    Agent.PREDICTOR: {
        "opening": "Make initial predictions based on current market conditions",
        "developing": "Refine predictions based on new information and discussion",
        "deep_discussion": "Provide detailed scenario analysis and risk assessment",
        "extended_debate": "Synthesize multiple perspectives into actionable predictions",
    },
    Agent.QUANTUM_ERASER: {
        "opening": "Challenge initial assumptions and provide alternative perspectives",
        "developing": "Question established patterns and explore unconventional angles",
        "deep_discussion": "Provide critical analysis and reveal hidden truths",
        "extended_debate": "Synthesize contradictions and provide philosophical insights",
    },
    Agent.RETROCAUSAL: {
        "opening": "Examine historical patterns and their implications",
        "developing": "Connect past events to current market conditions",
        "deep_discussion": "Provide strategic insights based on historical analysis",
        "extended_debate": "Synthesize historical patterns into future strategies",
    },
}


@dataclass(frozen=True)
class PromptContext:
    text: str
    topic: str
    force_topic_change: bool
    unique_token: str


def _seconds_ago(now_ms: int, ts: int) -> int:
    return max(0, (now_ms - ts) // 1000)


def humanize_topic(topic: str) -> str:
    return topic.replace("_", " ")


class ContextBuilder:
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def is_repeating(self, messages: Sequence[Message]) -> bool:
        tail = [m.text for m in messages[-REPETITION_WINDOW:]]
        return len(tail) >= 2 and all(t == tail[0] for t in tail)

    def pick_forced_topic(self, current: Optional[str]) -> str:
        candidates = [t for t in FORCED_TOPICS if t != current]
        return self.rng.choice(candidates)

    def build(
        self,
        recent_messages: Sequence[Message],
        current_agent: Agent,
        session_topic: Optional[str],
        now_ms: int,
    ) -> PromptContext:
        messages = list(recent_messages)
        repeating = self.is_repeating(messages)
        if repeating:
            logger.debug("repetition_detected | requesting topic change")

        if session_topic:
            topic = session_topic
            topic_line = f"Current Focus: {humanize_topic(session_topic)}"
        elif not messages:
            topic = self.rng.choice(OPENING_TOPICS)
            topic_line = f"Begin a new oracle conversation about: {topic}"
        else:
            topic = self.rng.choice(MARKET_FOCUS)
            topic_line = f"Current Focus: {topic}"

        unique_token = f"{uuid.uuid4().hex[:9]}_{now_ms}"
        blocks = [f"CURRENT DISCUSSION TOPIC:\n{topic_line}"]
        if messages:
            blocks += [
                f"CONVERSATION ANALYSIS:\n{self.analyze_flow(messages, current_agent, now_ms)}",
                f"CONVERSATION STATE:\n{self.conversation_state(messages, current_agent)}",
                f"CONVERSATION CONTEXT (Last {VISIBLE_MESSAGES} messages):\n"
                f"{self.format_recent(messages, current_agent, now_ms)}",
            ]
        blocks += [
            f"SELF-TAGGING & RESPONSE RULES:\n{self.self_response_instructions(messages, current_agent, now_ms)}",
            f"CONTINUITY INSTRUCTIONS:\n{self.continuity_instructions(messages)}",
            f"VARIETY & UNIQUENESS:\n{self.variety_prompt(messages, current_agent)}",
            f"UNIQUE SESSION ID: {unique_token}",
            "Continue this oracle debate with contextual awareness, self-reflection, and natural flow.",
        ]
        return PromptContext(
            text="\n\n".join(blocks),
            topic=topic,
            force_topic_change=repeating,
            unique_token=unique_token,
        )

    def analyze_flow(self, messages: Sequence[Message], current_agent: Agent, now_ms: int) -> str:
        count = len(messages)
        counts = Counter(m.agent for m in messages)
        top_agent, top_count = counts.most_common(1)[0]
        span = _seconds_ago(now_ms, messages[0].timestamp)
        topics = topics_from_messages(messages)
        latest_topic = humanize_topic(topics[-1]) if topics else "general discussion"
        has_questions = any("?" in m.text for m in messages)
        has_statements = any("?" not in m.text for m in messages)
        if has_questions and has_statements:
            style = "Mixed questions/statements"
        elif has_questions:
            style = "Question-heavy"
        else:
            style = "Statement-heavy"
        spoke_before = current_agent in counts
        return (
            "CONVERSATION METRICS:\n"
            f"- Total messages: {count}\n"
            f"- Time span: {span} seconds\n"
            f"- Most active agent: {top_agent.display} ({top_count} messages)\n"
            f"- Current topic: {latest_topic}\n"
            f"- Conversation style: {style}\n"
            f"- Your participation: {'You have spoken before' if spoke_before else 'This is your first message'}\n"
            "\n"
            "CONVERSATION FLOW:\n"
            f"- Previous speaker: {messages[-1].agent.display}\n"
            f"- Your role: {current_agent.display}\n"
            f"- Context depth: {min(count, VISIBLE_MESSAGES)} messages visible\n"
            f"- Discussion stage: {DiscussionStage.for_count(count).value}"
        )

    def conversation_state(self, messages: Sequence[Message], current_agent: Agent) -> str:
        count = len(messages)
        state = "opening"
        if count > 2:
            state = "developing"
        if count > 6:
            state = "deep_discussion"
        if count > 12:
            state = "extended_debate"

        tail = messages[-3:]
        names = [a.display for a in Agent]
        focus = "introduce_new_insights"
        if any(m.agent == current_agent for m in tail):
            focus = "build_on_previous_points"
        if any("?" in m.text for m in tail):
            focus = "answer_questions_and_continue"
        if any(name in m.text for m in tail for name in names):
            focus = "respond_to_direct_handoff"

        task = AGENT_TASKS[current_agent][state]
        return (
            f"CONVERSATION STATE: {state.upper()}\n"
            f"FOCUS: {focus.upper()}\n"
            f"CONTEXT: {count} messages, {messages[-1].agent.display} just spoke\n"
            f"YOUR TASK: {task}"
        )

    def format_recent(self, messages: Sequence[Message], current_agent: Agent, now_ms: int) -> str:
        shown = list(messages[-VISIBLE_MESSAGES:])
        offset = len(messages) - len(shown)
        lines = []
        for i, msg in enumerate(shown, start=1):
            tag = " [YOUR PREVIOUS MESSAGE]" if msg.agent == current_agent else ""
            ago = _seconds_ago(now_ms, msg.timestamp)
            lines.append(f"#{offset + i} {msg.agent.display} ({ago}s ago){tag}: {msg.text}")
        return "\n".join(lines)

    def self_response_instructions(
        self, messages: Sequence[Message], current_agent: Agent, now_ms: int
    ) -> str:
        mine = [m for m in messages if m.agent == current_agent]
        if not mine:
            return (
                "- This is your first message - jump right in\n"
                "- Focus on the current discussion topic\n"
                "- Keep it short and conversational\n"
                "- No formal introductions needed"
            )
        since = _seconds_ago(now_ms, mine[-1].timestamp)
        if since < RECENT_SELF_WINDOW_S:
            return (
                f"- You spoke recently ({since}s ago) - build on it\n"
                "- Reference your previous point briefly\n"
                "- Add new value, don't repeat yourself\n"
                "- Keep it short and natural"
            )
        if len(mine) > 1:
            return (
                "- You have previous messages - reference them briefly when relevant\n"
                "- Build on or challenge your own insights\n"
                "- Keep it conversational and concise\n"
                "- Always add new perspective"
            )
        return (
            "- You have one previous message - connect to it if relevant\n"
            "- Keep it natural and conversational\n"
            "- Add new value, don't repeat yourself\n"
            "- Stay concise"
        )

    def continuity_instructions(self, messages: Sequence[Message]) -> str:
        previous = messages[-1].agent.display if messages else "the previous speaker"
        stage = DiscussionStage.for_count(len(messages))
        if stage is DiscussionStage.OPENING:
            return (
                "- This is early in the conversation - jump right in\n"
                f"- Build on what {previous} said or introduce a new angle\n"
                "- Keep it short and punchy - 1-2 sentences max\n"
                "- Sound natural and conversational\n"
                "- Mix questions and statements - don't always ask questions"
            )
        if stage is DiscussionStage.DEVELOPING:
            return (
                "- Continue the current discussion naturally\n"
                f"- Respond to {previous}'s points or questions\n"
                "- Reference previous insights briefly\n"
                "- Keep responses short and direct\n"
                "- Sometimes make statements, sometimes ask questions"
            )
        return (
            "- This is an ongoing conversation - maintain flow\n"
            "- Acknowledge the conversation and build on it\n"
            "- Reference key points from earlier briefly\n"
            "- Keep it conversational and concise\n"
            "- Vary your handoffs - questions, statements, or simple passes"
        )

    def variety_prompt(self, messages: Sequence[Message], current_agent: Agent) -> str:
        level = VarietyLevel.for_count(len(messages))
        return (
            "\n".join(VARIETY_RULES)
            + f"\n\nAGENT-SPECIFIC VARIETY: {AGENT_VARIETY[current_agent]}"
            + f"\n\nVARIETY LEVEL: {level.value} - {VARIETY_GUIDANCE[level]}"
        )
