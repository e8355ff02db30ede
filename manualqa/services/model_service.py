"""
Model service for LLM provider management.
Handles model resolution and provides one streaming/non-streaming chat
interface over the OpenAI and Ollama providers.
"""
from typing import AsyncIterator, Dict, List, Optional, Tuple

from openai import AsyncOpenAI

from ..errors import GenerationError
from ..logging_config import logger
from ..ollama_client import ollama_chat, stream_ollama_chat

# Model registry
AVAILABLE_MODELS = {
    "openai": ["gpt-4o-mini", "gpt-4o"],
    "ollama": ["qwen2.5:7b"],
}


def get_available_models() -> Dict[str, List[str]]:
    """
    Get all available models grouped by provider.

    Returns:
        Dictionary with provider names as keys and model lists as values
    """
    return AVAILABLE_MODELS


def resolve_model(model_string: Optional[str], default: Tuple[str, str]) -> Tuple[str, str]:
    """
    Resolve a model string to provider and model name.

    Args:
        model_string: Format "provider:model_name" (e.g., "openai:gpt-4o-mini")
                     or None for the default
        default: (provider, model_name) used when the string is empty or malformed

    Examples:
        >>> resolve_model("ollama:qwen2.5:7b", ("openai", "gpt-4o-mini"))
        ('ollama', 'qwen2.5:7b')

        >>> resolve_model(None, ("openai", "gpt-4o-mini"))
        ('openai', 'gpt-4o-mini')
    """
    if not model_string:
        return default

    for provider in AVAILABLE_MODELS:
        prefix = f"{provider}:"
        if model_string.startswith(prefix) and len(model_string) > len(prefix):
            return provider, model_string[len(prefix):]

    return default


class LLMClient:
    """Chat completions over whichever provider a model string names."""

    def __init__(
        self,
        openai_client: Optional[AsyncOpenAI],
        ollama_url: str,
        default_model: Optional[str] = None,
        openai_model: str = "gpt-4o-mini",
        timeout: float = 120.0,
    ):
        self.openai_client = openai_client
        self.ollama_url = ollama_url
        self.timeout = timeout
        if openai_client is not None:
            fallback = ("openai", openai_model)
        else:
            fallback = ("ollama", AVAILABLE_MODELS["ollama"][0])
        self.default = resolve_model(default_model, fallback)

    def resolve(self, model: Optional[str] = None) -> Tuple[str, str]:
        return resolve_model(model, self.default)

    async def stream_chat(
        self,
        messages: List[Dict],
        model: Optional[str] = None,
        temperature: float = 0.2,
    ) -> AsyncIterator[str]:
        """Yield text deltas from one streaming completion."""
        provider, model_name = self.resolve(model)
        logger.info("Streaming completion", provider=provider, model=model_name)

        if provider == "openai":
            if self.openai_client is None:
                raise GenerationError("OpenAI provider is not configured")
            stream = await self.openai_client.chat.completions.create(
                model=model_name,
                messages=messages,
                temperature=temperature,
                stream=True,
            )
            async with stream:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta.content or ""
                    if delta:
                        yield delta
        else:
            async for delta in stream_ollama_chat(
                self.ollama_url, model_name, messages, temperature, self.timeout
            ):
                yield delta

    async def complete(
        self,
        messages: List[Dict],
        model: Optional[str] = None,
        temperature: float = 0.2,
    ) -> str:
        """Single non-streaming completion; returns the full text."""
        provider, model_name = self.resolve(model)

        if provider == "openai":
            if self.openai_client is None:
                raise GenerationError("OpenAI provider is not configured")
            resp = await self.openai_client.chat.completions.create(
                model=model_name,
                messages=messages,
                temperature=temperature,
            )
            return (resp.choices[0].message.content or "") if resp.choices else ""

        return await ollama_chat(self.ollama_url, model_name, messages, temperature, self.timeout)
