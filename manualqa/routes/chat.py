"""
Question answering and memo API routes.
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ..context import ServiceContext, get_context, get_owner_id
from ..errors import ManualQAError
from ..logging_config import logger
from ..schemas import AskBody, MemoBody, MemoResponse

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/ask_stream")
async def ask_rag_stream(
    payload: AskBody,
    ctx: ServiceContext = Depends(get_context),
    owner_id: str = Depends(get_owner_id),
):
    """
    Streaming RAG endpoint (plain text).

    Body of the response:
        <answer text, streamed>[SOURCES_SEPARATOR_MAGIC_STRING<JSON source list>]

    Workflow:
    1. Resolve the document scope
    2. Classify intent (greetings/help are answered directly)
    3. Plan search queries, retrieve and rank chunks
    4. Build context and stream the LLM response, then the sources
    """
    question = payload.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Question must not be blank")

    try:
        stream = await ctx.rag.answer_stream(
            question,
            owner_id,
            scope=payload.scope,
            verbosity=payload.verbosity_hint,
            history=payload.history,
            model=payload.model,
        )
    except ManualQAError as e:
        logger.error("Error preparing answer", error=e.message, question=question[:100])
        raise HTTPException(status_code=e.http_status, detail=e.message)

    return StreamingResponse(stream, media_type="text/plain; charset=utf-8")


@router.post("/memos/generate", response_model=MemoResponse)
async def generate_memo(
    payload: MemoBody,
    ctx: ServiceContext = Depends(get_context),
    owner_id: str = Depends(get_owner_id),
):
    """Draft a memo from the selected documents."""
    try:
        result = await ctx.memos.generate(
            payload.instruction,
            payload.source_names,
            owner_id,
            verbosity=payload.verbosity_hint,
            model=payload.model,
        )
    except ManualQAError as e:
        logger.error("Memo generation failed", error=e.message)
        raise HTTPException(status_code=e.http_status, detail=e.message)

    return {"memo": result.memo, "sources": result.sources}
