from __future__ import annotations

from functools import lru_cache
from typing import Optional

from loguru import logger
from langchain_openai import ChatOpenAI

from .config import OracleSettings


@lru_cache(maxsize=8)
def get_chat_model(settings: OracleSettings, model: Optional[str] = None) -> Optional[ChatOpenAI]:
    """Return a cached LangChain ChatOpenAI client for ``settings``.

    Returns None when OPENAI_API_KEY is missing so callers can fall back.
    """
    if not settings.openai_api_key:
        logger.error("OPENAI_API_KEY not set; cannot initialize OpenAI chat client")
        return None
    mdl = model or settings.openai_model
    logger.debug(f"Initializing OpenAI chat model={mdl} temperature={settings.openai_temperature}")
    kwargs = {
        "model": mdl,
        "temperature": settings.openai_temperature,
        "api_key": settings.openai_api_key,
        "timeout": settings.openai_timeout,
    }
    if settings.openai_max_tokens:
        kwargs["max_tokens"] = settings.openai_max_tokens
    return ChatOpenAI(**kwargs)
