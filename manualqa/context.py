"""
Service wiring.
Everything the routes need is built once at startup into a ServiceContext,
kept on app.state, and handed to route functions through get_context().
"""
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Header, Request

from .config import Settings
from .db import create_db
from .embedding import Embedder, build_embedder
from .logging_config import logger
from .ocr_client import OcrClient
from .openai_client import create_openai_client
from .retrieval import Retriever
from .services.ingestion_service import IngestionService
from .services.memo_service import MemoService
from .services.model_service import LLMClient
from .services.query_planner import QueryPlanner
from .services.rag_service import RagService
from .storage import LocalBlobStorage
from .store import CorpusStore, MemoryCorpusStore, SqlCorpusStore

DEFAULT_OWNER = "anonymous"


@dataclass
class ServiceContext:
    settings: Settings
    store: CorpusStore
    storage: LocalBlobStorage
    embedder: Embedder
    llm: Any
    retriever: Retriever
    planner: QueryPlanner
    ingestion: IngestionService
    rag: RagService
    memos: MemoService
    ocr: Optional[OcrClient] = None
    engine: Any = None


def assemble_services(
    settings: Settings,
    store: CorpusStore,
    storage: LocalBlobStorage,
    embedder: Embedder,
    llm,
    ocr: Optional[OcrClient] = None,
    engine=None,
) -> ServiceContext:
    """Build the pipeline services on top of already-constructed backends."""
    retriever = Retriever(
        embedder,
        store,
        workers=settings.retrieval_workers,
        embed_timeout=settings.embed_timeout,
        search_timeout=settings.search_timeout,
    )
    planner = QueryPlanner(llm, enabled=settings.planner_enabled, timeout=settings.planner_timeout)
    return ServiceContext(
        settings=settings,
        store=store,
        storage=storage,
        embedder=embedder,
        llm=llm,
        retriever=retriever,
        planner=planner,
        ingestion=IngestionService(storage, store, embedder, settings, ocr=ocr, llm=llm),
        rag=RagService(llm, planner, retriever, store, settings),
        memos=MemoService(llm, retriever, store, timeout=settings.generation_timeout),
        ocr=ocr,
        engine=engine,
    )


def build_context(settings: Settings) -> ServiceContext:
    """Construct real backends from settings."""
    engine = None
    if settings.store_backend == "memory":
        store: CorpusStore = MemoryCorpusStore()
    else:
        engine, SessionLocal = create_db(settings.database_url)
        store = SqlCorpusStore(SessionLocal)

    openai_client = create_openai_client(settings.openai_api_key, settings.generation_timeout)
    embedder = build_embedder(settings, openai_client)
    llm = LLMClient(
        openai_client,
        settings.ollama_url,
        default_model=settings.default_model,
        openai_model=settings.openai_model,
        timeout=settings.generation_timeout,
    )
    ocr = OcrClient(settings.ocr_url, settings.ocr_timeout) if settings.ocr_url else None

    logger.info(
        "Services configured",
        store=settings.store_backend,
        embed_backend=settings.embed_backend,
        llm_default=":".join(llm.default),
        ocr=bool(ocr),
    )
    return assemble_services(
        settings, store, LocalBlobStorage(settings.storage_dir), embedder, llm, ocr=ocr, engine=engine
    )


def get_context(request: Request) -> ServiceContext:
    """FastAPI dependency returning the application's ServiceContext."""
    return request.app.state.ctx


def get_owner_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity from the X-User-Id header."""
    owner = (x_user_id or "").strip()
    return owner or DEFAULT_OWNER
