"""
Application settings.
Values come from the environment (a local .env is loaded in dev; in Docker the
variables are provided directly).
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    """All tunables of the ingestion and query pipelines."""

    # Persistence
    database_url: str = "postgresql+psycopg2://postgres:postgres@db:5432/manualqa"
    store_backend: str = "sql"  # sql | memory
    storage_dir: str = "./storage"

    # Embeddings
    embed_backend: str = "http"  # http | openai | local
    embed_url: Optional[str] = None
    embed_model: str = "text-embedding-3-small"
    embed_dim: int = 1536
    embed_batch_size: int = 64

    # OCR
    ocr_url: Optional[str] = None
    ocr_timeout: float = 120.0
    ocr_max_pages: int = 30
    ocr_replace_ratio: float = 0.8

    # Generation
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    ollama_url: str = "http://ollama:11434"
    default_model: Optional[str] = None  # "provider:model"

    # Chunking
    chunk_size: int = 1500
    chunk_overlap: int = 200

    # Retrieval
    match_threshold: float = 0.6
    match_count: int = 5
    top_n: int = 7
    retrieval_workers: int = 4
    embed_timeout: float = 30.0
    search_timeout: float = 15.0
    generation_timeout: float = 120.0

    # Query planning
    planner_enabled: bool = True
    planner_timeout: float = 20.0
    intent_gate_enabled: bool = True
    history_max_turns: int = 6

    # Upload / ingestion limits
    ingest_concurrency: int = 2
    max_files_per_upload: int = 5
    max_file_size_bytes: int = 20 * 1024 * 1024

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            store_backend=os.getenv("STORE_BACKEND", cls.store_backend).lower(),
            storage_dir=os.getenv("STORAGE_DIR", cls.storage_dir),
            embed_backend=os.getenv("EMBED_BACKEND", cls.embed_backend).lower(),
            embed_url=os.getenv("EMBED_URL") or None,
            embed_model=os.getenv("EMBED_MODEL", cls.embed_model),
            embed_dim=_env_int("EMBED_DIM", cls.embed_dim),
            embed_batch_size=_env_int("EMBED_BATCH_SIZE", cls.embed_batch_size),
            ocr_url=os.getenv("OCR_URL") or None,
            ocr_timeout=_env_float("OCR_TIMEOUT", cls.ocr_timeout),
            ocr_max_pages=_env_int("OCR_MAX_PAGES", cls.ocr_max_pages),
            ocr_replace_ratio=_env_float("OCR_REPLACE_RATIO", cls.ocr_replace_ratio),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            ollama_url=os.getenv("OLLAMA_URL", cls.ollama_url),
            default_model=os.getenv("DEFAULT_MODEL") or None,
            chunk_size=_env_int("CHUNK_SIZE", cls.chunk_size),
            chunk_overlap=_env_int("CHUNK_OVERLAP", cls.chunk_overlap),
            match_threshold=_env_float("MATCH_THRESHOLD", cls.match_threshold),
            match_count=_env_int("MATCH_COUNT", cls.match_count),
            top_n=_env_int("TOP_N", cls.top_n),
            retrieval_workers=_env_int("RETRIEVAL_WORKERS", cls.retrieval_workers),
            embed_timeout=_env_float("EMBED_TIMEOUT", cls.embed_timeout),
            search_timeout=_env_float("SEARCH_TIMEOUT", cls.search_timeout),
            generation_timeout=_env_float("GENERATION_TIMEOUT", cls.generation_timeout),
            planner_enabled=_env_bool("PLANNER_ENABLED", cls.planner_enabled),
            planner_timeout=_env_float("PLANNER_TIMEOUT", cls.planner_timeout),
            intent_gate_enabled=_env_bool("INTENT_GATE_ENABLED", cls.intent_gate_enabled),
            history_max_turns=_env_int("HISTORY_MAX_TURNS", cls.history_max_turns),
            ingest_concurrency=_env_int("INGEST_CONCURRENCY", cls.ingest_concurrency),
            max_files_per_upload=_env_int("MAX_FILES_PER_UPLOAD", cls.max_files_per_upload),
            max_file_size_bytes=_env_int("MAX_FILE_SIZE_BYTES", cls.max_file_size_bytes),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            json_logs=_env_bool("JSON_LOGS", cls.json_logs),
        )
