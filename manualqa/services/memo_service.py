"""
Memo generation from selected documents.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..errors import GenerationError
from ..logging_config import logger
from .query_planner import VERBOSITY_INSTRUCTIONS
from .rag_service import assemble_context, build_source_list

MEMO_QUERY = "key information"
MEMO_THRESHOLD = 0.1
MEMO_LIMIT = 7

MEMO_SYSTEM_PROMPT = """You write internal business memos from company documents.

Write the memo the user asks for, using the REFERENCE MATERIAL below.
- Use a clear title, a short purpose statement, then the body.
- Only state facts found in the reference material.
- If the reference material says no relevant passages were found, write the memo from the
  instruction alone and add a note that no supporting document content was available.

{verbosity_instruction}
"""


@dataclass
class MemoResult:
    memo: str
    sources: List[Dict]


class MemoService:
    def __init__(self, llm, retriever, store, timeout: float = 120.0):
        self.llm = llm
        self.retriever = retriever
        self.store = store
        self.timeout = timeout

    async def generate(
        self,
        instruction: str,
        source_names: Optional[Sequence[str]],
        owner_id: str,
        verbosity: str = "default",
        model: Optional[str] = None,
    ) -> MemoResult:
        """
        Draft a memo grounded in the named documents.

        source_names may be ids, display names, or storage names; names that
        match nothing give an empty scope, so the memo is written without
        reference material.
        """
        scope = None
        if source_names:
            scope = await asyncio.to_thread(self.store.resolve_scope, list(source_names), owner_id)

        chunks = await self.retriever.retrieve(
            [MEMO_QUERY],
            scope=scope,
            threshold=MEMO_THRESHOLD,
            per_query_limit=MEMO_LIMIT,
            top_n=MEMO_LIMIT,
            owner_id=owner_id,
        )
        context = assemble_context(chunks)
        instruction_text = VERBOSITY_INSTRUCTIONS.get(verbosity, VERBOSITY_INSTRUCTIONS["default"])
        messages = [
            {"role": "system", "content": MEMO_SYSTEM_PROMPT.format(verbosity_instruction=instruction_text)},
            {"role": "user", "content": f"INSTRUCTION: {instruction}\n\nREFERENCE MATERIAL:\n{context}"},
        ]

        try:
            memo = await asyncio.wait_for(self.llm.complete(messages, model=model, temperature=0.4), self.timeout)
        except asyncio.TimeoutError as e:
            raise GenerationError("Memo generation timed out") from e
        except GenerationError:
            raise
        except Exception as e:
            logger.error("Memo generation failed", error=str(e))
            raise GenerationError(f"Memo generation failed: {e}") from e

        memo = (memo or "").strip()
        if not memo:
            raise GenerationError("Memo generation returned no content")

        logger.info("Memo generated", chars=len(memo), chunks=len(chunks))
        return MemoResult(memo=memo, sources=build_source_list(chunks))
