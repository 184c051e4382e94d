from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger


# Load env from the project root, then CWD, before any settings are read
try:
    here = Path(__file__).resolve().parents[1]
    for env_path in (here / ".env", Path.cwd() / ".env"):
        if env_path.is_file():
            load_dotenv(dotenv_path=str(env_path), override=False)
            break
except OSError as e:
    logger.warning(f"Could not load .env file: {e}")


DEFAULT_CONTRACT = "GvbeE3xrQMHzCBoikm4816VQsrUZAC7owbJma5Ffpump"
DEFAULT_TOKEN_API_URL = "https://lite-api.jup.ag/tokens/v2/search"


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name}; using default {default}")
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name}; using default {default}")
        return default


def default_session_id() -> str:
    return f"oracle-session-{datetime.now().year}"


@dataclass(frozen=True)
class OracleSettings:
    session_id: str
    message_interval: float = 8.0
    fetch_interval: float = 8.0
    contract_address: str = DEFAULT_CONTRACT
    token_api_url: str = DEFAULT_TOKEN_API_URL
    history_window: int = 8
    db_path: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_temperature: float = 1.0
    openai_max_tokens: Optional[int] = 160
    openai_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "OracleSettings":
        """Build settings from environment variables.

        Env vars:
          - ORACLE_SESSION_ID (default: oracle-session-<year>)
          - ORACLE_MESSAGE_INTERVAL / ORACLE_FETCH_INTERVAL seconds (default: 8)
          - ORACLE_CONTRACT, ORACLE_TOKEN_API_URL
          - ORACLE_HISTORY_WINDOW (default: 8)
          - ORACLE_DB_PATH (SQLite file; unset or ':memory:' keeps state in memory)
          - OPENAI_API_KEY, OPENAI_MODEL, OPENAI_TEMPERATURE, OPENAI_MAX_TOKENS, OPENAI_TIMEOUT
        """
        max_tokens = _env_int("OPENAI_MAX_TOKENS", 160)
        return cls(
            session_id=os.getenv("ORACLE_SESSION_ID") or default_session_id(),
            message_interval=_env_float("ORACLE_MESSAGE_INTERVAL", 8.0),
            fetch_interval=_env_float("ORACLE_FETCH_INTERVAL", 8.0),
            contract_address=os.getenv("ORACLE_CONTRACT", DEFAULT_CONTRACT),
            token_api_url=os.getenv("ORACLE_TOKEN_API_URL", DEFAULT_TOKEN_API_URL),
            history_window=max(1, _env_int("ORACLE_HISTORY_WINDOW", 8)),
            db_path=os.getenv("ORACLE_DB_PATH") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_temperature=_env_float("OPENAI_TEMPERATURE", 1.0),
            openai_max_tokens=max_tokens if max_tokens > 0 else None,
            openai_timeout=_env_float("OPENAI_TIMEOUT", 30.0),
        )
