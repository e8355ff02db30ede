"""
Tests for context assembly, answer streaming, and the query flow.
"""
import dataclasses
import json

import pytest

from manualqa.retrieval import RetrievedChunk
from manualqa.services.rag_service import (
    CONTEXT_SEPARATOR,
    ERROR_FRAGMENT_PREFIX,
    NO_EVIDENCE_CONTEXT,
    SOURCES_SENTINEL,
    assemble_context,
    build_source_list,
    classify_intent,
    stream_answer,
    truncate_history,
)
from manualqa.store import ChunkRecord, DocumentRecord
from tests.conftest import MANUAL_TEXT, FakeLLM, HashEmbedder


def chunk(chunk_id="c1", text="Press Reset for five seconds.", similarity=0.8123, position=3):
    return RetrievedChunk(chunk_id, "d1", "pump.pdf", position, text, similarity, "reset")


async def collect(stream):
    return [piece async for piece in stream]


def test_empty_context_uses_fallback():
    assert assemble_context([]) == NO_EVIDENCE_CONTEXT


def test_context_lists_file_position_and_similarity():
    context = assemble_context([chunk(), chunk("c2", "Open the valve.", 0.7, 4)])
    parts = context.split(CONTEXT_SEPARATOR)
    assert parts[0] == "pump.pdf, chunk 3, similarity=0.812: Press Reset for five seconds."
    assert parts[1] == "pump.pdf, chunk 4, similarity=0.700: Open the valve."


def test_source_snippet_truncated():
    sources = build_source_list([chunk(text="x" * 250)])
    assert sources[0]["snippet"] == "x" * 200 + "..."
    assert sources[0]["fileName"] == "pump.pdf"
    assert sources[0]["similarity"] == 0.812


@pytest.mark.asyncio
async def test_stream_tokens_then_sentinel_then_sources():
    llm = FakeLLM()
    sources = build_source_list([chunk()])
    pieces = await collect(stream_answer(llm, [{"role": "user", "content": "q"}], sources))
    body = "".join(pieces)
    answer, trailer = body.split(SOURCES_SENTINEL)
    assert answer == "The answer is here."
    assert json.loads(trailer) == sources
    assert pieces[:2] == ["The answer ", "is here."]


@pytest.mark.asyncio
async def test_no_sources_means_no_sentinel():
    body = "".join(await collect(stream_answer(FakeLLM(), [], [])))
    assert body == "The answer is here."


@pytest.mark.asyncio
async def test_upstream_failure_appends_error_fragment():
    llm = FakeLLM()
    llm.stream_error = RuntimeError("connection reset")
    body = "".join(await collect(stream_answer(llm, [], build_source_list([chunk()]))))
    assert body.startswith("The answer is here.")
    assert body.endswith(f"\n\n{ERROR_FRAGMENT_PREFIX}: connection reset")
    assert SOURCES_SENTINEL not in body


@pytest.mark.asyncio
async def test_consumer_leaving_closes_upstream():
    llm = FakeLLM()
    stream = stream_answer(llm, [], [])
    assert await stream.__anext__() == "The answer "
    await stream.aclose()
    assert llm.stream_closed


@pytest.mark.asyncio
async def test_classify_intent():
    llm = FakeLLM()
    llm.intent = "Greeting."
    assert await classify_intent(llm, "hi") == "greeting"
    llm.intent = "something else"
    assert await classify_intent(llm, "hi") == "factual"
    llm.intent = RuntimeError("boom")
    assert await classify_intent(llm, "hi") == "factual"


def test_truncate_history_keeps_latest_pairs():
    history = [
        {"role": role, "content": f"{role} {i}"}
        for i in range(5)
        for role in ("user", "assistant")
    ]
    kept = truncate_history(history, 2)
    assert [t["content"] for t in kept] == ["user 3", "assistant 3", "user 4", "assistant 4"]
    assert truncate_history(history, 6) == history
    assert truncate_history(None, 6) == []


def seed(store, owner="alice", doc_id="doc-1", name="pump.pdf"):
    store.upsert_document(
        DocumentRecord(id=doc_id, owner_id=owner, storage_ref=f"{owner}/x.pdf",
                       storage_name="x.pdf", original_name=name, status="ready")
    )
    texts = [MANUAL_TEXT[:200], MANUAL_TEXT[200:400]]
    store.replace_chunks(
        doc_id, [ChunkRecord(order=i, text=t, embedding=HashEmbedder.vector(t)) for i, t in enumerate(texts, 1)]
    )


class SpyRetriever:
    def __init__(self, inner):
        self.inner = inner
        self.calls = []

    async def retrieve(self, queries, **kwargs):
        self.calls.append((list(queries), kwargs))
        return await self.inner.retrieve(queries, **kwargs)


@pytest.mark.asyncio
async def test_planner_error_uses_raw_question(ctx, store, llm):
    seed(store)
    llm.plan = RuntimeError("planner unavailable")
    spy = SpyRetriever(ctx.retriever)
    ctx.rag.retriever = spy

    stream = await ctx.rag.answer_stream("How do I reset a password?", "alice")
    body = "".join(await collect(stream))

    assert spy.calls[0][0] == ["How do I reset a password?"]
    answer, trailer = body.split(SOURCES_SENTINEL)
    assert answer == "The answer is here."
    assert {s["fileName"] for s in json.loads(trailer)} == {"pump.pdf"}


@pytest.mark.asyncio
async def test_other_owners_documents_invisible(ctx, store, llm):
    seed(store, owner="bob")
    body = "".join(await collect(await ctx.rag.answer_stream("reset password", "alice")))
    assert SOURCES_SENTINEL not in body
    assert NO_EVIDENCE_CONTEXT in llm.stream_calls[0][-1]["content"]


@pytest.mark.asyncio
async def test_unknown_scope_names_give_no_evidence(ctx, store, llm):
    seed(store)
    stream = await ctx.rag.answer_stream("reset password", "alice", scope=["missing.pdf"])
    body = "".join(await collect(stream))
    assert SOURCES_SENTINEL not in body
    assert NO_EVIDENCE_CONTEXT in llm.stream_calls[0][-1]["content"]


@pytest.mark.asyncio
async def test_scope_by_file_name(ctx, store, llm):
    seed(store, doc_id="doc-1", name="pump.pdf")
    seed(store, doc_id="doc-2", name="valve.pdf")
    stream = await ctx.rag.answer_stream("reset password", "alice", scope=["valve.pdf"])
    _, trailer = "".join(await collect(stream)).split(SOURCES_SENTINEL)
    assert {s["fileName"] for s in json.loads(trailer)} == {"valve.pdf"}


@pytest.mark.asyncio
async def test_greeting_is_answered_without_retrieval(ctx, store, llm):
    seed(store)
    ctx.rag.settings = dataclasses.replace(ctx.settings, intent_gate_enabled=True)
    llm.intent = "greeting"
    spy = SpyRetriever(ctx.retriever)
    ctx.rag.retriever = spy

    body = "".join(await collect(await ctx.rag.answer_stream("hello!", "alice")))

    assert body == "The answer is here."
    assert spy.calls == []


@pytest.mark.asyncio
async def test_closing_answer_stream_closes_upstream_at_once(ctx, store, llm):
    seed(store)
    stream = await ctx.rag.answer_stream("How do I reset a password?", "alice")
    assert await stream.__anext__() == "The answer "

    await stream.aclose()

    assert llm.stream_closed


@pytest.mark.asyncio
async def test_closing_direct_answer_closes_upstream_at_once(ctx, llm):
    ctx.rag.settings = dataclasses.replace(ctx.settings, intent_gate_enabled=True)
    llm.intent = "help"
    stream = await ctx.rag.answer_stream("what can you do?", "alice")
    assert await stream.__anext__() == "The answer "

    await stream.aclose()

    assert llm.stream_closed
