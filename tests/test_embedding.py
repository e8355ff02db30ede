"""
Tests for the embedding contract.
"""
from types import SimpleNamespace

import pytest

from manualqa.embedding import Embedder, HttpEmbedder, build_embedder
from manualqa.errors import EmbeddingServiceError


class RecordingEmbedder(Embedder):
    def __init__(self, batch_size=2, drop_one=False):
        super().__init__(batch_size)
        self.batches = []
        self.drop_one = drop_one

    async def _embed_batch(self, texts):
        self.batches.append(list(texts))
        vectors = [[float(len(t)), 1.0] for t in texts]
        return vectors[:-1] if self.drop_one else vectors


@pytest.mark.asyncio
async def test_batches_preserve_order():
    embedder = RecordingEmbedder(batch_size=2)
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]
    vectors = await embedder.embed(texts)
    assert [len(b) for b in embedder.batches] == [2, 2, 1]
    assert [v[0] for v in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]


@pytest.mark.asyncio
async def test_count_mismatch_is_an_error():
    embedder = RecordingEmbedder(batch_size=10, drop_one=True)
    with pytest.raises(EmbeddingServiceError):
        await embedder.embed(["one", "two", "three"])


@pytest.mark.asyncio
async def test_empty_input_makes_no_calls():
    embedder = RecordingEmbedder()
    assert await embedder.embed([]) == []
    assert embedder.batches == []


@pytest.mark.asyncio
async def test_embed_one():
    embedder = RecordingEmbedder()
    assert await embedder.embed_one("abcd") == [4.0, 1.0]


@pytest.mark.asyncio
async def test_http_service_unreachable():
    embedder = HttpEmbedder("http://127.0.0.1:9/embed", timeout=2)
    with pytest.raises(EmbeddingServiceError):
        await embedder.embed(["text"])


def test_build_embedder_validates_settings():
    settings = SimpleNamespace(
        embed_backend="http", embed_url=None, embed_timeout=5, embed_batch_size=8, embed_model="m"
    )
    with pytest.raises(RuntimeError):
        build_embedder(settings)

    settings.embed_url = "http://embed:8000/embed"
    assert isinstance(build_embedder(settings), HttpEmbedder)

    settings.embed_backend = "openai"
    with pytest.raises(RuntimeError):
        build_embedder(settings, openai_client=None)
