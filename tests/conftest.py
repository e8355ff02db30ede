"""
Shared test fixtures and fakes.

Provides: deterministic embedder, scripted LLM and OCR fakes, in-memory corpus
store, temporary blob storage, and a fully wired ServiceContext.
"""
import asyncio
import dataclasses
import re
from typing import List, Optional

import pytest

from manualqa.config import Settings
from manualqa.context import assemble_services
from manualqa.embedding import Embedder
from manualqa.errors import EmbeddingServiceError
from manualqa.storage import LocalBlobStorage
from manualqa.store import MemoryCorpusStore

PLANNER_MARKER = "You plan document searches"
INTENT_MARKER = "Classify the following user question"
SUMMARY_MARKER = "Summarize the following document"

MANUAL_TEXT = (
    "Turn the main valve clockwise until the pressure gauge reads 2 bar. "
    "Check the display for error codes before restarting the pump. "
    "To reset a password, open Settings, choose Accounts and press Reset. "
    "Clean the intake filter every week and replace it every six months. "
) * 3


class HashEmbedder(Embedder):
    """Bag-of-words vectors hashed into 16 buckets; similar words give similar vectors."""

    dim = 16

    def __init__(self, batch_size: int = 64):
        super().__init__(batch_size)
        self.calls: List[List[str]] = []
        self.error: Optional[str] = None

    @classmethod
    def vector(cls, text: str) -> List[float]:
        v = [0.0] * cls.dim
        for word in re.findall(r"\w+", text.lower()):
            v[sum(map(ord, word)) % cls.dim] += 1.0
        if not any(v):
            v[0] = 1.0
        return v

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.error:
            raise EmbeddingServiceError(self.error)
        return [self.vector(t) for t in texts]


class FakeLLM:
    """
    Scripted generation provider.

    complete() answers by prompt type (intent, plan, summary, anything else);
    a value that is an Exception is raised instead. stream_chat() yields
    `tokens`, then raises `stream_error` if set.
    """

    def __init__(self):
        self.intent = "factual"
        self.plan = '{"search_queries": ["reset password"], "focus_points": []}'
        self.summary = "Maintenance manual for the pump unit."
        self.completion = "MEMO: Weekly maintenance\n\nClean the intake filter."
        self.tokens = ["The answer ", "is here."]
        self.stream_error: Optional[Exception] = None
        self.delay = 0.0
        self.complete_calls: List[list] = []
        self.stream_calls: List[list] = []
        self.stream_closed = False

    def resolve(self, model=None):
        return ("openai", "gpt-4o-mini")

    async def complete(self, messages, model=None, temperature=0.2):
        self.complete_calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        prompt = messages[-1]["content"]
        if INTENT_MARKER in prompt:
            value = self.intent
        elif PLANNER_MARKER in prompt:
            value = self.plan
        elif SUMMARY_MARKER in prompt:
            value = self.summary
        else:
            value = self.completion
        if isinstance(value, Exception):
            raise value
        return value

    async def stream_chat(self, messages, model=None, temperature=0.2):
        self.stream_calls.append(messages)
        try:
            for token in self.tokens:
                yield token
            if self.stream_error is not None:
                raise self.stream_error
        finally:
            self.stream_closed = True


class FakeOcr:
    def __init__(self, text: Optional[str] = "Reset procedure: hold the power button for ten seconds."):
        self.text = text
        self.calls = []

    async def ocr(self, data: bytes, mime_type: str) -> Optional[str]:
        self.calls.append((len(data), mime_type))
        return self.text


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Defaults with in-memory store, temp storage, a low match threshold and
    the intent gate off."""
    return dataclasses.replace(
        Settings(),
        store_backend="memory",
        storage_dir=str(tmp_path / "blobs"),
        intent_gate_enabled=False,
        match_threshold=0.05,
        ingest_concurrency=2,
    )


@pytest.fixture
def store() -> MemoryCorpusStore:
    return MemoryCorpusStore()


@pytest.fixture
def storage(settings) -> LocalBlobStorage:
    return LocalBlobStorage(settings.storage_dir)


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def ocr() -> FakeOcr:
    return FakeOcr()


@pytest.fixture
def ctx(settings, store, storage, embedder, llm, ocr):
    return assemble_services(settings, store, storage, embedder, llm, ocr=ocr)
