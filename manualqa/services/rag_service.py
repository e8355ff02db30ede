"""
RAG (Retrieval-Augmented Generation) service.
Handles intent gating, query planning, retrieval, context building, and
streaming responses.

Stream framing (text/plain):
    <answer tokens...>[SOURCES_SENTINEL<json list of sources>]
or, when generation fails part way:
    <answer tokens...>\\n\\n[ERROR] The answer could not be completed: <reason>
"""
import asyncio
import contextlib
import json
import time
from typing import AsyncGenerator, AsyncIterator, Dict, List, Optional, Sequence

from ..logging_config import logger
from ..retrieval import RetrievedChunk
from .query_planner import VERBOSITY_INSTRUCTIONS, QueryPlan

SOURCES_SENTINEL = "\n\nSOURCES_SEPARATOR_MAGIC_STRING\n\n"
ERROR_FRAGMENT_PREFIX = "[ERROR] The answer could not be completed"
CONTEXT_SEPARATOR = "\n\n---\n\n"
NO_EVIDENCE_CONTEXT = (
    "No relevant passages were found in the selected documents. Answer from general "
    "knowledge, say so explicitly, and do not cite any document."
)
SNIPPET_LENGTH = 200

INTENTS = ("greeting", "help", "factual")


def assemble_context(chunks: Sequence[RetrievedChunk]) -> str:
    """
    Build the context string handed to the generator.

    Args:
        chunks: retrieved chunks, already ranked and capped

    Returns:
        One block per chunk, "<file>, chunk <n>, similarity=<s>: <text>",
        separated by CONTEXT_SEPARATOR; NO_EVIDENCE_CONTEXT when empty
    """
    if not chunks:
        return NO_EVIDENCE_CONTEXT
    parts = [
        f"{c.file_name}, chunk {c.position}, similarity={c.similarity:.3f}: {c.text}"
        for c in chunks
    ]
    return CONTEXT_SEPARATOR.join(parts)


def _snippet(text: str) -> str:
    preview = text[:SNIPPET_LENGTH].strip()
    if len(text) > SNIPPET_LENGTH:
        preview += "..."
    return preview


def build_source_list(chunks: Sequence[RetrievedChunk]) -> List[Dict]:
    """
    Source entries sent to the client after the answer, in ranking order.

    Example:
        >>> build_source_list([RetrievedChunk("c1", "d1", "guide.pdf", 3, "Reset the unit.", 0.81234, "reset")])
        [{'id': 'c1', 'fileName': 'guide.pdf', 'position': 3, 'similarity': 0.812, 'snippet': 'Reset the unit.'}]
    """
    return [
        {
            "id": c.chunk_id,
            "fileName": c.file_name,
            "position": c.position,
            "similarity": round(c.similarity, 3),
            "snippet": _snippet(c.text),
        }
        for c in chunks
    ]


async def stream_answer(
    llm,
    messages: List[Dict],
    sources: Sequence[Dict],
    model: Optional[str] = None,
) -> AsyncGenerator[str, None]:
    """
    Stream one generation, then the sources trailer.

    Tokens are yielded as they arrive. If the upstream call fails part way the
    already-sent text stands, an error fragment is appended, and no sources
    follow. The upstream stream is closed when the consumer goes away.
    """
    t = time.time()
    tokens: AsyncIterator[str] = llm.stream_chat(messages, model=model)
    produced = 0
    try:
        async for delta in tokens:
            produced += len(delta)
            yield delta
    except Exception as e:
        reason = str(e) or e.__class__.__name__
        logger.error("Answer generation failed", error=reason, chars_sent=produced)
        yield f"\n\n{ERROR_FRAGMENT_PREFIX}: {reason}"
        return
    finally:
        aclose = getattr(tokens, "aclose", None)
        if aclose is not None:
            await aclose()

    logger.info(
        "Answer streamed",
        chars=produced,
        sources=len(sources),
        time_ms=round((time.time() - t) * 1000, 2),
    )
    if sources:
        yield SOURCES_SENTINEL
        yield json.dumps(list(sources), ensure_ascii=False)


async def classify_intent(llm, question: str, timeout: float = 20.0, model: Optional[str] = None) -> str:
    """
    Use the LLM to classify the question intent.
    Returns: 'greeting', 'help', or 'factual'

    Any failure or unexpected answer counts as 'factual' so the question goes
    through retrieval.
    """
    classification_prompt = f"""Classify the following user question into ONE category (the question may be in any language):

Categories:
- "greeting": ONLY simple greetings and casual conversation (hello, hi, thanks, etc.)
- "help": ONLY questions about THIS SYSTEM's capabilities (what can you do, how does this work, etc.)
- "factual": ALL questions seeking information, procedures, or facts about ANY topic

Examples:
- "hello" -> greeting
- "what can you do?" -> help
- "How do I reset the device?" -> factual
- "What does error E21 mean?" -> factual

Question: "{question}"

Respond with ONLY ONE WORD: greeting, help, or factual

Classification:"""

    try:
        response_text = await asyncio.wait_for(
            llm.complete([{"role": "user", "content": classification_prompt}], model=model, temperature=0.0),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("Intent classification timed out", defaulting_to="factual")
        return "factual"
    except Exception as e:
        logger.error("Intent classification failed", error=str(e))
        return "factual"

    intent = (response_text or "").strip().lower().strip(".\"'")
    if intent in INTENTS:
        logger.info("Question classified", question=question[:50], intent=intent)
        return intent
    logger.warning("Unexpected classification", response=intent[:50], defaulting_to="factual")
    return "factual"


DIRECT_SYSTEM_PROMPT = (
    "You are a helpful assistant for operational manuals. You help users find answers in "
    "the documents they uploaded.\n\n"
    "The user is sending a greeting or asking what you can do. Respond warmly and explain "
    "your capabilities:\n"
    "- You answer questions using the uploaded manuals (PDF, DOCX, PPTX, XLSX, TXT)\n"
    "- You cite the passages you used\n"
    "- You can draft memos from selected documents\n\n"
    "Be friendly and concise. Don't mention technical details. Reply in the user's language."
)

ANSWER_SYSTEM_PROMPT = """You are a document grounding assistant for operational manuals.

Answer the user's question using the CONTEXT below.

Rules:
1. Base the answer on the CONTEXT. Do not invent procedures, values, or names.
2. When you use a passage, mention the file name it came from.
3. If the CONTEXT only partially answers the question, say what is missing.
4. If the CONTEXT says no relevant passages were found, say that the documents do not cover
   the question before giving any general guidance.
5. Reply in the user's language.

{verbosity_instruction}
"""


def truncate_history(history: Optional[Sequence], max_turns: int) -> List[Dict]:
    """Messages of the most recent `max_turns` question/answer pairs as plain {role, content} dicts."""
    if not history or max_turns <= 0:
        return []
    turns = list(history)[-2 * max_turns:]
    return [
        {"role": t["role"], "content": t["content"]} if isinstance(t, dict)
        else {"role": t.role, "content": t.content}
        for t in turns
    ]


def build_answer_messages(
    question: str,
    context: str,
    plan: Optional[QueryPlan] = None,
    verbosity: str = "default",
    history: Sequence[Dict] = (),
) -> List[Dict]:
    instruction = VERBOSITY_INSTRUCTIONS.get(verbosity, VERBOSITY_INSTRUCTIONS["default"])
    messages = [{"role": "system", "content": ANSWER_SYSTEM_PROMPT.format(verbosity_instruction=instruction)}]
    messages.extend(history)

    guidance = ""
    if plan is not None and plan.focus_points:
        guidance = "\n\nFOCUS POINTS:\n" + "\n".join(f"- {p}" for p in plan.focus_points)

    messages.append({
        "role": "user",
        "content": f"QUESTION: {question}{guidance}\n\nCONTEXT:\n{context}",
    })
    return messages


class RagService:
    """Orchestrates one question from gate to streamed answer."""

    def __init__(self, llm, planner, retriever, store, settings):
        self.llm = llm
        self.planner = planner
        self.retriever = retriever
        self.store = store
        self.settings = settings

    async def answer_stream(
        self,
        question: str,
        owner_id: str,
        scope: Optional[Sequence[str]] = None,
        verbosity: str = "default",
        history: Optional[Sequence] = None,
        model: Optional[str] = None,
    ) -> AsyncGenerator[str, None]:
        """
        Prepare a query and return its token stream.

        Scope names are resolved here, before any byte is streamed, so store
        failures surface as regular HTTP errors.
        """
        question = question.strip()
        scope_ids = None
        scope_names = None
        if scope:
            scope_names = list(scope)
            scope_ids = await asyncio.to_thread(self.store.resolve_scope, scope_names, owner_id)
            logger.info("Scope resolved", requested=len(scope_names), matched=len(scope_ids))

        turns = truncate_history(history, self.settings.history_max_turns)
        return self._generate(question, owner_id, scope_ids, scope_names, verbosity, turns, model)

    async def _generate(
        self,
        question: str,
        owner_id: str,
        scope_ids: Optional[List[str]],
        scope_names: Optional[List[str]],
        verbosity: str,
        turns: List[Dict],
        model: Optional[str],
    ) -> AsyncGenerator[str, None]:
        start_time = time.time()
        logger.info("Processing query", question=question[:100], owner=owner_id)

        if self.settings.intent_gate_enabled:
            intent = await classify_intent(self.llm, question, self.settings.planner_timeout, model)
            if intent in ("greeting", "help"):
                messages = [{"role": "system", "content": DIRECT_SYSTEM_PROMPT}, *turns,
                            {"role": "user", "content": question}]
                async with contextlib.aclosing(stream_answer(self.llm, messages, [], model=model)) as pieces:
                    async for piece in pieces:
                        yield piece
                logger.info("Query completed (direct answer)", intent=intent,
                            time_ms=round((time.time() - start_time) * 1000, 2))
                return

        plan = await self.planner.analyze(question, scope_names, verbosity, turns)
        chunks = await self.retriever.retrieve(
            plan.queries,
            scope=scope_ids,
            threshold=self.settings.match_threshold,
            per_query_limit=self.settings.match_count,
            top_n=self.settings.top_n,
            owner_id=owner_id,
        )

        context = assemble_context(chunks)
        sources = build_source_list(chunks)
        messages = build_answer_messages(question, context, plan, verbosity, turns)

        logger.info(
            "Sending to LLM",
            queries=len(plan.queries),
            chunks=len(chunks),
            context_length=len(context),
            history_turns=len(turns),
        )
        async with contextlib.aclosing(stream_answer(self.llm, messages, sources, model=model)) as pieces:
            async for piece in pieces:
                yield piece

        logger.info("Query completed", time_ms=round((time.time() - start_time) * 1000, 2))
