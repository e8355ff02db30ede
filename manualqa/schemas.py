"""
Pydantic schemas for request/response validation.
Wire names are camelCase; Python attributes are snake_case.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]
Verbosity = Literal["concise", "default", "detailed"]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatTurn(BaseModel):
    """Represents a single turn in a conversation."""
    role: Role
    content: str


class AskBody(CamelModel):
    """Request body for asking questions."""
    question: str = Field(..., min_length=1, description="The question to ask")
    scope: Optional[List[str]] = Field(None, description="Document ids or file names to search; all when omitted")
    verbosity_hint: Verbosity = Field("default", alias="verbosityHint")
    history: Optional[List[ChatTurn]] = Field(None, description="Previous conversation turns")
    model: Optional[str] = Field(None, description="Model identifier: 'openai:gpt-4o-mini' or 'ollama:qwen2.5:7b'")


class ProcessBody(CamelModel):
    """Request body for (re)processing an uploaded file."""
    storage_ref: str = Field(..., min_length=1, alias="storageRef")
    original_name: str = Field(..., min_length=1, alias="originalName")
    document_id: Optional[str] = Field(None, alias="documentId")
    mime_type: Optional[str] = Field(None, alias="mimeType")


class ProcessResponse(CamelModel):
    document_id: str = Field(..., alias="documentId")
    summary: Optional[str] = None
    chunks_count: int = Field(..., alias="chunksCount")


class Source(CamelModel):
    """A chunk used as evidence."""
    id: str
    file_name: str = Field(..., alias="fileName")
    position: int
    similarity: float
    snippet: str


class MemoBody(CamelModel):
    instruction: str = Field(..., min_length=1)
    source_names: Optional[List[str]] = Field(None, alias="sourceNames")
    verbosity_hint: Verbosity = Field("default", alias="verbosityHint")
    model: Optional[str] = None


class MemoResponse(BaseModel):
    memo: str
    sources: List[Source]


class DocumentOut(CamelModel):
    id: str
    original_name: str = Field(..., alias="originalName")
    storage_ref: str = Field(..., alias="storageRef")
    summary: Optional[str] = None
    status: str
    error: Optional[str] = None
    chunks_count: int = Field(0, alias="chunksCount")
    metadata: dict = Field(default_factory=dict)
    created_at: Optional[str] = Field(None, alias="createdAt")
