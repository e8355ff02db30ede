"""
Ingestion pipeline: stored file -> searchable chunks.

    Pending -> Extracting -> QualityCheck -> [OCR] -> Sanitizing -> Chunking
            -> Embedding -> Persisted
    any step -> Failed(reason)

The document row mirrors the run (processing -> ready | failed). Chunks are
written only after every embedding is in hand, and always as a full
replacement of the document's previous chunk set.
"""
import asyncio
import mimetypes
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence

from ..chunking import chunk_document
from ..errors import (
    DocumentNotFoundError,
    EmbeddingServiceError,
    ExtractionFailure,
    ManualQAError,
    UnsupportedFormatError,
)
from ..logging_config import logger
from ..ocr_client import merge_ocr_text
from ..quality import should_attempt_ocr
from ..sanitizer import sanitize
from ..store import (
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_READY,
    ChunkRecord,
    DocumentRecord,
)
from ..text_extraction import PDF_MIME, UnsupportedFormat, extract

SUMMARY_INPUT_CHARS = 8000


class IngestionState(str, Enum):
    PENDING = "pending"
    EXTRACTING = "extracting"
    QUALITY_CHECK = "quality_check"
    OCR = "ocr"
    SANITIZING = "sanitizing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PERSISTED = "persisted"
    FAILED = "failed"


class IngestionRun:
    """Transitions of one ingestion attempt. States are never re-entered."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        self.states: List[IngestionState] = [IngestionState.PENDING]
        self.failure_reason: Optional[str] = None

    @property
    def state(self) -> IngestionState:
        return self.states[-1]

    @property
    def finished(self) -> bool:
        return self.state in (IngestionState.PERSISTED, IngestionState.FAILED)

    def advance(self, state: IngestionState) -> None:
        if self.finished:
            raise RuntimeError(f"Ingestion run already finished in state {self.state.value}")
        if state in self.states:
            raise RuntimeError(f"Ingestion state {state.value} re-entered")
        self.states.append(state)
        logger.debug("Ingestion state", document_id=self.document_id, state=state.value)

    def fail(self, reason: str) -> None:
        if self.state == IngestionState.FAILED:
            return
        self.failure_reason = reason
        self.states.append(IngestionState.FAILED)


@dataclass
class IngestionResult:
    document_id: str
    summary: Optional[str]
    chunks_count: int
    has_ocr: bool = False
    segment_count: int = 0
    states: List[str] = field(default_factory=list)


@dataclass
class BatchItem:
    """One file of a batch upload, already saved to storage."""
    document_id: str
    storage_ref: str
    original_name: str
    mime_type: Optional[str] = None


@dataclass
class BatchOutcome:
    item: BatchItem
    result: Optional[IngestionResult] = None
    error: Optional[ManualQAError] = None

    @property
    def skipped(self) -> bool:
        return isinstance(self.error, UnsupportedFormatError)


async def summarize(llm, text: str, timeout: float = 60.0) -> Optional[str]:
    """
    About 200 characters describing the document, from its first 8000 chars.
    Returns None on any failure; summaries never block ingestion.
    """
    if llm is None or not text.strip():
        return None
    prompt = (
        "Summarize the following document in about 200 characters. Describe what the "
        "document covers and who it is for. Reply with the summary only.\n\n"
        f"{text[:SUMMARY_INPUT_CHARS]}"
    )
    try:
        summary = await asyncio.wait_for(
            llm.complete([{"role": "user", "content": prompt}], temperature=0.3),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("Summary generation timed out")
        return None
    except Exception as e:
        logger.warning("Summary generation failed", error=str(e))
        return None
    summary = (summary or "").strip()
    return summary or None


class IngestionService:
    def __init__(self, storage, store, embedder, settings, ocr=None, llm=None):
        self.storage = storage
        self.store = store
        self.embedder = embedder
        self.settings = settings
        self.ocr = ocr
        self.llm = llm

    async def _load_record(
        self, document_id: str, storage_ref: str, original_name: str, owner_id: str
    ) -> DocumentRecord:
        record = await asyncio.to_thread(self.store.get_document, document_id)
        if record is None:
            return DocumentRecord(
                id=document_id,
                owner_id=owner_id,
                storage_ref=storage_ref,
                storage_name=os.path.basename(storage_ref),
                original_name=original_name,
            )
        if record.owner_id != owner_id:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        record.storage_ref = storage_ref
        record.storage_name = os.path.basename(storage_ref)
        record.original_name = original_name
        return record

    async def ingest(
        self,
        document_id: Optional[str],
        storage_ref: str,
        original_name: str,
        owner_id: str,
        mime_type: Optional[str] = None,
    ) -> IngestionResult:
        """
        Run the full pipeline for one stored file.

        Args:
            document_id: existing document id, or None to create one
            storage_ref: "<owner>/<encoded name>" key in blob storage
            original_name: display file name (used for format detection)
            owner_id: caller identity
            mime_type: declared MIME type; guessed from the name when missing

        Raises:
            DocumentNotFoundError, UnsupportedFormatError, ExtractionFailure,
            EmbeddingServiceError, StorageError, StoreError
        """
        document_id = document_id or str(uuid.uuid4())
        run = IngestionRun(document_id)
        record = await self._load_record(document_id, storage_ref, original_name, owner_id)
        record.status = STATUS_PROCESSING
        record.error = None
        await asyncio.to_thread(self.store.upsert_document, record)
        logger.info("Ingestion started", document_id=document_id, file_name=original_name)

        try:
            result = await self._run(run, record, mime_type)
        except ManualQAError as e:
            await self._mark_failed(run, document_id, e.message)
            raise
        except Exception as e:
            await self._mark_failed(run, document_id, str(e) or e.__class__.__name__)
            raise
        return result

    async def _mark_failed(self, run: IngestionRun, document_id: str, reason: str) -> None:
        run.fail(reason)
        logger.error("Ingestion failed", document_id=document_id, reason=reason,
                     states=[s.value for s in run.states])
        try:
            await asyncio.to_thread(self.store.set_status, document_id, STATUS_FAILED, reason[:500])
        except ManualQAError as e:
            logger.error("Could not record ingestion failure", document_id=document_id, error=e.message)

    async def _run(self, run: IngestionRun, record: DocumentRecord, mime_type: Optional[str]) -> IngestionResult:
        settings = self.settings

        run.advance(IngestionState.EXTRACTING)
        data = await asyncio.to_thread(self.storage.read, record.storage_ref)
        mime = mime_type or mimetypes.guess_type(record.original_name)[0] or ""
        extracted = await asyncio.to_thread(extract, data, mime, record.original_name)
        if isinstance(extracted, UnsupportedFormat):
            raise UnsupportedFormatError(
                f"Unsupported file format: {extracted.mime_type or extracted.extension or 'unknown'}"
            )

        run.advance(IngestionState.QUALITY_CHECK)
        text = extracted.text
        has_ocr = False
        if extracted.source_type == "pdf" and should_attempt_ocr(
            text, extracted.segment_count, settings.ocr_max_pages
        ):
            if self.ocr is None:
                logger.warning("Text looks insufficient but no OCR service is configured",
                               document_id=record.id)
            else:
                run.advance(IngestionState.OCR)
                logger.info("Attempting OCR", document_id=record.id, pages=extracted.segment_count)
                ocr_text = await self.ocr.ocr(data, mime or PDF_MIME)
                if ocr_text:
                    text = merge_ocr_text(text, ocr_text, settings.ocr_replace_ratio)
                    has_ocr = True

        run.advance(IngestionState.SANITIZING)
        clean = sanitize(text)
        if not clean:
            raise ExtractionFailure("No usable text remained after extraction and OCR")

        run.advance(IngestionState.CHUNKING)
        drafts = await asyncio.to_thread(
            chunk_document, clean, settings.chunk_size, settings.chunk_overlap
        )
        logger.info("Created chunks", document_id=record.id, chunk_count=len(drafts))

        summary = await summarize(self.llm, clean, settings.generation_timeout)

        run.advance(IngestionState.EMBEDDING)
        vectors = await self.embedder.embed([d.text for d in drafts])
        if len(vectors) != len(drafts):
            raise EmbeddingServiceError(
                f"Embeddings count mismatch: expected {len(drafts)}, got {len(vectors)}"
            )

        chunks = [
            ChunkRecord(order=d.order, text=d.text, embedding=list(v))
            for d, v in zip(drafts, vectors)
        ]
        count = await asyncio.to_thread(self.store.replace_chunks, record.id, chunks)

        if summary is not None:
            record.summary = summary
        record.metadata = {
            **(record.metadata or {}),
            "total_pages": extracted.segment_count,
            "source_type": extracted.source_type,
            "last_processed": datetime.now(timezone.utc).isoformat(),
            "has_ocr": has_ocr,
        }
        record.status = STATUS_READY
        record.error = None
        await asyncio.to_thread(self.store.upsert_document, record)
        run.advance(IngestionState.PERSISTED)

        logger.info("Document ingested", document_id=record.id, chunks=count, has_ocr=has_ocr)
        return IngestionResult(
            document_id=record.id,
            summary=record.summary,
            chunks_count=count,
            has_ocr=has_ocr,
            segment_count=extracted.segment_count,
            states=[s.value for s in run.states],
        )

    async def ingest_many(self, items: Sequence[BatchItem], owner_id: str) -> List[BatchOutcome]:
        """Ingest several stored files concurrently; per-file errors are collected, not raised."""
        semaphore = asyncio.Semaphore(max(1, self.settings.ingest_concurrency))

        async def _one(item: BatchItem) -> BatchOutcome:
            async with semaphore:
                try:
                    result = await self.ingest(
                        item.document_id, item.storage_ref, item.original_name, owner_id, item.mime_type
                    )
                except UnsupportedFormatError as e:
                    logger.warning("Skipping unsupported file", file_name=item.original_name)
                    return BatchOutcome(item=item, error=e)
                except ManualQAError as e:
                    return BatchOutcome(item=item, error=e)
                return BatchOutcome(item=item, result=result)

        return list(await asyncio.gather(*(_one(i) for i in items)))
