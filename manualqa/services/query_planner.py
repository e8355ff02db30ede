"""
Query planning: expands one user question into several retrieval queries.

The planner asks the LLM for a JSON plan. Whatever comes back (fenced or bare
JSON, or garbage) goes through parse_plan(), which never raises; any failure
along the way degrades to the single raw question.
"""
import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from ..logging_config import logger

MAX_QUERIES = 7

_FENCE = re.compile(r"```[a-zA-Z]*\s*\n?(.*?)```", re.DOTALL)

VERBOSITY_INSTRUCTIONS = {
    "concise": "Keep the answer short and focused on the key points.",
    "default": "Answer with a standard level of detail.",
    "detailed": "Answer in as much detail as possible, with background and concrete examples.",
}

PLANNER_PROMPT = """You plan document searches for a question-answering assistant.

Analyse the user's question and propose search queries that will find the passages
needed to answer it in the user's uploaded documents.

User question:
{question}

Documents the user selected: {scope_message}
Expected answer detail: {verbosity_instruction}
Conversation so far: {history_summary}

Rules:
- Propose between 3 and 7 search queries using concrete, varied keywords.
- Do not put file names in the queries.
- List 2-4 focus points the answer should cover.

Respond with JSON only, in this shape:
{{"core_question": "...", "search_queries": ["...", "..."], "focus_points": ["...", "..."]}}
"""


@dataclass(frozen=True)
class QueryPlan:
    queries: List[str]
    core_question: Optional[str] = None
    focus_points: List[str] = field(default_factory=list)
    fallback: bool = False


def strip_fences(raw: str) -> str:
    """Remove ``` / ```json fences around an LLM answer, if present."""
    text = raw.strip()
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        pass
    # Fall back to the outermost {...} or [...] span in the text.
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    end = max(text.rfind("}"), text.rfind("]"))
    if not starts or end == -1:
        return None
    start = min(starts)
    if end <= start:
        return None
    try:
        return json.loads(text[start:end + 1])
    except ValueError:
        return None


def _string_list(value: Any) -> Optional[List[str]]:
    """A non-empty list of non-empty strings, de-duplicated, or None."""
    if not isinstance(value, list) or not value:
        return None
    if not all(isinstance(v, str) and v.strip() for v in value):
        return None
    seen = set()
    out = []
    for v in value:
        key = v.strip().lower()
        if key not in seen:
            seen.add(key)
            out.append(v.strip())
    return out


def parse_plan(raw: Any) -> Optional[QueryPlan]:
    """
    Parse planner output into a QueryPlan.

    Accepts a JSON object with "search_queries" (or "queries") or a bare JSON
    array of strings, optionally wrapped in code fences.

    Returns:
        QueryPlan with at most MAX_QUERIES queries, or None if the output is
        structurally invalid
    """
    if not isinstance(raw, str) or not raw.strip():
        return None

    data = _load_json(strip_fences(raw))

    if isinstance(data, list):
        queries = _string_list(data)
        return QueryPlan(queries=queries[:MAX_QUERIES]) if queries else None

    if isinstance(data, dict):
        queries = _string_list(data.get("search_queries", data.get("queries")))
        if not queries:
            return None
        core = data.get("core_question")
        focus = _string_list(data.get("focus_points")) or []
        return QueryPlan(
            queries=queries[:MAX_QUERIES],
            core_question=core.strip() if isinstance(core, str) and core.strip() else None,
            focus_points=focus,
        )

    return None


def summarize_history(history: Sequence, limit: int = 500) -> str:
    if not history:
        return "No previous conversation."
    lines = [f"{_role(t)}: {_content(t)}" for t in history]
    text = "\n".join(lines)
    return text if len(text) <= limit else text[:limit] + "... (truncated)"


def _role(turn) -> str:
    return turn["role"] if isinstance(turn, dict) else turn.role


def _content(turn) -> str:
    return turn["content"] if isinstance(turn, dict) else turn.content


class QueryPlanner:
    def __init__(self, llm, enabled: bool = True, timeout: float = 20.0, model: Optional[str] = None):
        self.llm = llm
        self.enabled = enabled
        self.timeout = timeout
        self.model = model

    async def analyze(
        self,
        question: str,
        scope_hint: Optional[Sequence[str]] = None,
        verbosity: str = "default",
        history: Sequence = (),
    ) -> QueryPlan:
        """Full plan (queries plus answer guidance); falls back to [question]."""
        fallback = QueryPlan(queries=[question], fallback=True)
        if not self.enabled or self.llm is None:
            return fallback

        if scope_hint:
            scope_message = ", ".join(scope_hint) + " (prefer evidence from these files)"
        else:
            scope_message = "none; search all documents"

        prompt = PLANNER_PROMPT.format(
            question=question,
            scope_message=scope_message,
            verbosity_instruction=VERBOSITY_INSTRUCTIONS.get(verbosity, VERBOSITY_INSTRUCTIONS["default"]),
            history_summary=summarize_history(history),
        )

        try:
            raw = await asyncio.wait_for(
                self.llm.complete([{"role": "user", "content": prompt}], model=self.model, temperature=0.4),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Query planning timed out", timeout=self.timeout)
            return fallback
        except Exception as e:
            logger.warning("Query planning failed", error=str(e))
            return fallback

        plan = parse_plan(raw)
        if plan is None:
            logger.warning("Query plan output invalid, using raw question", raw=str(raw)[:200])
            return fallback

        logger.info("Query plan generated", queries=plan.queries)
        return plan

    async def plan(
        self,
        question: str,
        scope_hint: Optional[Sequence[str]] = None,
        verbosity: str = "default",
        history: Sequence = (),
    ) -> List[str]:
        """Retrieval queries for `question` (1 to MAX_QUERIES items)."""
        return (await self.analyze(question, scope_hint, verbosity, history)).queries
