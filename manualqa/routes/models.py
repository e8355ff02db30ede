"""
Model-related API routes.
Handles listing available LLM models.
"""
from fastapi import APIRouter, Depends

from ..context import ServiceContext, get_context
from ..services.model_service import get_available_models

router = APIRouter(prefix="/api", tags=["models"])


@router.get("/models")
async def list_available_models(ctx: ServiceContext = Depends(get_context)):
    """
    Return all supported LLM models grouped by provider, plus the default.

    Example response:
    {
        "providers": {"openai": ["gpt-4o-mini", "gpt-4o"], "ollama": ["qwen2.5:7b"]},
        "default": "openai:gpt-4o-mini"
    }
    """
    provider, model_name = ctx.llm.resolve()
    return {"providers": get_available_models(), "default": f"{provider}:{model_name}"}
