import json
from typing import AsyncIterator, Dict, List

import aiohttp


async def stream_ollama_chat(
    base_url: str,
    model: str,
    messages: List[Dict],
    temperature: float = 0.2,
    timeout: float = 120.0,
) -> AsyncIterator[str]:
    """
    Stream chat completion tokens from Ollama.
    Yields text deltas as they arrive. The HTTP response is closed when the
    consumer stops iterating (including on cancellation).
    """
    async with aiohttp.ClientSession() as session:
        async with session.post(
            f"{base_url}/api/chat",
            json={
                "model": model,
                "messages": messages,
                "stream": True,
                "options": {"temperature": temperature},
            },
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            resp.raise_for_status()
            async for line in resp.content:
                line = line.decode("utf-8", errors="ignore").strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if data.get("error"):
                    raise RuntimeError(f"Ollama error: {data['error']}")
                content = (data.get("message") or {}).get("content")
                if content:
                    yield content
                if data.get("done"):
                    break


async def ollama_chat(
    base_url: str,
    model: str,
    messages: List[Dict],
    temperature: float = 0.2,
    timeout: float = 120.0,
) -> str:
    """Single non-streaming chat completion."""
    async with aiohttp.ClientSession() as session:
        async with session.post(
            f"{base_url}/api/chat",
            json={
                "model": model,
                "messages": messages,
                "stream": False,
                "options": {"temperature": temperature},
            },
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            resp.raise_for_status()
            data = await resp.json()
    return ((data or {}).get("message") or {}).get("content") or ""
