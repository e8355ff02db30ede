"""
Embedding backends.

All backends share one contract: embed() returns exactly one vector per input
text, in order, or raises EmbeddingServiceError. embed_one() is the query-time
shortcut.
"""
import asyncio
import warnings
from typing import List, Optional

import aiohttp
import numpy as np
from openai import AsyncOpenAI, OpenAIError

from .errors import EmbeddingServiceError
from .logging_config import logger


class Embedder:
    """Base class; subclasses implement _embed_batch()."""

    def __init__(self, batch_size: int = 64):
        self.batch_size = max(1, batch_size)

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        raise NotImplementedError

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            result = await self._embed_batch(batch)
            if len(result) != len(batch):
                raise EmbeddingServiceError(
                    f"Embeddings count mismatch: expected {len(batch)}, got {len(result)}"
                )
            vectors.extend(result)
        return vectors

    async def embed_one(self, text: str) -> List[float]:
        return (await self.embed([text]))[0]


class HttpEmbedder(Embedder):
    """Embedding service speaking POST {"texts": [...]} -> {"vectors": [[...], ...]}."""

    def __init__(self, url: str, timeout: float = 30.0, batch_size: int = 64):
        super().__init__(batch_size)
        self.url = url
        self.timeout = timeout

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    json={"texts": texts},
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as r:
                    if not r.ok:
                        body = await r.text()
                        raise EmbeddingServiceError(
                            f"Embedding service returned {r.status}: {body[:200]}"
                        )
                    data = await r.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise EmbeddingServiceError(f"Embedding request failed: {str(e) or e.__class__.__name__}") from e

        vectors = data.get("vectors") if isinstance(data, dict) else None
        if not isinstance(vectors, list) or not all(isinstance(v, list) for v in vectors):
            raise EmbeddingServiceError("Embedding service returned a malformed body")
        return vectors


class OpenAIEmbedder(Embedder):
    def __init__(self, client: AsyncOpenAI, model: str, batch_size: int = 64):
        super().__init__(batch_size)
        self.client = client
        self.model = model

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            resp = await self.client.embeddings.create(model=self.model, input=texts)
        except OpenAIError as e:
            raise EmbeddingServiceError(f"OpenAI embeddings failed: {e}") from e
        return [d.embedding for d in sorted(resp.data, key=lambda d: d.index)]


class LocalEmbedder(Embedder):
    """sentence-transformers model loaded once per process, encoded in a worker thread."""

    def __init__(self, model_name: str, batch_size: int = 64):
        super().__init__(batch_size)
        self.model_name = model_name
        self._model = None

    def preload_model(self):
        """Load the model up front to avoid first-request delay."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model", model=self.model_name)
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", FutureWarning)
                self._model = SentenceTransformer(
                    self.model_name,
                    tokenizer_kwargs={"clean_up_tokenization_spaces": False},
                )
            # Warm up with a test embedding
            self._model.encode(["test"], normalize_embeddings=True, show_progress_bar=False)
            logger.info("Embedding model loaded", model=self.model_name)
        return self._model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        model = self.preload_model()
        vecs = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        if isinstance(vecs, np.ndarray):
            return vecs.tolist()
        return [list(v) for v in vecs]

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            return await asyncio.to_thread(self._encode, texts)
        except Exception as e:
            raise EmbeddingServiceError(f"Local embedding failed: {e}") from e


def build_embedder(settings, openai_client: Optional[AsyncOpenAI] = None) -> Embedder:
    """Pick the embedding backend named by settings.embed_backend."""
    backend = settings.embed_backend
    if backend == "http":
        if not settings.embed_url:
            raise RuntimeError("EMBED_BACKEND=http requires EMBED_URL")
        return HttpEmbedder(settings.embed_url, settings.embed_timeout, settings.embed_batch_size)
    if backend == "openai":
        if openai_client is None:
            raise RuntimeError("EMBED_BACKEND=openai requires OPENAI_API_KEY")
        return OpenAIEmbedder(openai_client, settings.embed_model, settings.embed_batch_size)
    if backend == "local":
        return LocalEmbedder(settings.embed_model, settings.embed_batch_size)
    raise RuntimeError(f"Unknown EMBED_BACKEND: {backend}")
