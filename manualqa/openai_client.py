from typing import Optional

from openai import AsyncOpenAI

from .logging_config import logger


def create_openai_client(api_key: Optional[str], timeout: float = 120.0) -> Optional[AsyncOpenAI]:
    """Return an AsyncOpenAI client, or None when no API key is configured (server-side only)."""
    if not api_key:
        logger.warning("OPENAI_API_KEY is not set; OpenAI provider disabled")
        return None
    return AsyncOpenAI(api_key=api_key, timeout=timeout)
