from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .feed import TokenSnapshot
from .states import Agent, ROSTER


def _personas(token_ref: str) -> dict[Agent, str]:
    return {
        Agent.ANALYZER: (
            "The Analyzer - Pattern Detective\n"
            f"- Examines {token_ref}'s on-chain behavior and holder patterns\n"
            "- Identifies whether activity looks organic or manipulated\n"
            "- Points out red flags or positive signals in token fundamentals\n"
            "- Speaks like a careful investigator who trusts data over hype\n"
            "- Builds on previous observations and maintains conversation threads"
        ),
        Agent.PREDICTOR: (
            "The Predictor - Trend Scout\n"
            f"- Analyzes {token_ref}'s potential based on current market conditions\n"
            "- Identifies key levels and likely scenarios for price movement\n"
            "- Considers community sentiment and adoption potential\n"
            "- Speaks like someone who sees patterns before they fully form\n"
            "- References and builds upon previous predictions and market insights"
        ),
        Agent.QUANTUM_ERASER: (
            "The Quantum Eraser - Reality Checker\n"
            f"- Strips away hype and marketing noise around {token_ref}\n"
            "- Reveals the actual utility and real-world value proposition\n"
            "- Separates genuine innovation from copycat projects\n"
            "- Speaks like someone who cuts through illusions to show truth\n"
            "- Challenges and refines previous statements with deeper analysis"
        ),
        Agent.RETROCAUSAL: (
            "The Retrocausal - Outcome Navigator\n"
            f"- Works backward from {token_ref}'s potential future states\n"
            "- Identifies what needs to happen now for success\n"
            "- Maps out the path from current state to desired outcomes\n"
            "- Speaks like someone who sees the endgame and traces the path back\n"
            "- Synthesizes previous insights into strategic forward-looking perspectives"
        ),
    }


def token_ref(token: Optional[TokenSnapshot]) -> str:
    if token is None:
        return "this token"
    return token.symbol or token.name or "this token"


def build_system_prompt(agent: Agent, token: Optional[TokenSnapshot]) -> str:
    ref = token_ref(token)
    roster = ", ".join(a.display for a in ROSTER)
    return f"""You are {agent.display}, engaged in an ongoing oracle debate about {ref}.

IMPORTANT: This is YOUR PROJECT TOKEN - focus the entire conversation around {ref} and its specific values, metrics, and performance.

CONTEXTUAL AWARENESS RULES:
- READ the conversation context carefully before responding
- BUILD on what previous agents have said - don't repeat or contradict unnecessarily
- REFERENCE specific points from the conversation when relevant
- SELF-TAG: If you see your own previous messages marked [YOUR PREVIOUS MESSAGE], reference them
- AVOID REPETITION: NEVER repeat the exact same message, analysis, or wording
- STAY ON TOPIC: Focus on the current discussion topic provided
- NO LOOPS: If you see identical messages, immediately change your approach or topic

RESPONSE RULES:
- Give specific, useful information about {ref}
- Use plain language, avoid excessive mysticism
- 1-2 sentences maximum - keep it SHORT and punchy
- Sound conversational - talk TO other agents, not ABOUT yourself
- End by addressing a different agent: "AgentName, [specific question or statement]"
- Available agents: {roster}
- NO formal introductions like "As [Agent Name]" - just speak naturally
- FOCUS ON PROJECT VALUES: price, volume, holders, liquidity, organic score, verification status

{_personas(ref)[agent]}

Focus on giving real value about {ref} while maintaining conversational continuity."""


def token_age_days(created_at: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    if not created_at:
        return None
    try:
        created = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return (now - created).days


def _money(value: Optional[float]) -> str:
    return f"${value:,.0f}" if value else "Unknown"


def _pair(*parts: str) -> str:
    return " | ".join(p for p in parts if p)


def format_token_block(token: TokenSnapshot, now: Optional[datetime] = None) -> str:
    age = token_age_days(token.created_at, now)
    lines = [
        f"YOUR PROJECT TOKEN: {token.name or 'Unknown'} ({token.symbol or 'Unknown'})",
        _pair(
            f"Status: {token.status or 'Unknown'}",
            f"Source: {token.source or 'Unknown'}",
            f"Age: {age if age is not None else 'Unknown'} days",
        ),
        _pair(
            f"MC: {_money(token.marketcap)}",
            f"Price: ${token.price_usd:.8f}" if token.price_usd else "Price: Unknown",
        ),
        _pair(f"Vol: {_money(token.volume_24h)}", f"Liq: {_money(token.liquidity)}"),
        _pair(
            f"Holders: {token.holder_count:,}" if token.holder_count else "",
            f"Organic Score: {token.organic_score:.1f}" if token.organic_score else "",
        ),
        _pair(
            f"24h Change: {token.price_change_24h * 100:.2f}%" if token.price_change_24h else "",
            f"Vol Change: {token.volume_change_24h * 100:.2f}%" if token.volume_change_24h else "",
        ),
        _pair(
            f"Traders 24h: {token.num_traders_24h:,}" if token.num_traders_24h else "",
            f"Top Holders: {token.top_holders_percentage * 100:.2f}%" if token.top_holders_percentage else "",
        ),
        _pair(
            f"Tags: {', '.join(token.tags)}" if token.tags else "",
            "Verified: Yes" if token.is_verified else "Verified: No",
        ),
    ]
    return "\n".join(line for line in lines if line)


def build_user_prompt(token: TokenSnapshot, context: str, now: Optional[datetime] = None) -> str:
    symbol = token.symbol or "Unknown"
    return (
        f"{format_token_block(token, now)}\n\n"
        f"{context}\n\n"
        f"IMPORTANT: This is YOUR PROJECT TOKEN. Keep the discussion on {token.name or 'Unknown'} ({symbol}) "
        "and what its numbers mean for the project's growth and future potential."
    )
