"""
Document management API routes.
Handles document upload, (re)processing, listing, and deletion.
"""
import asyncio
import os
import uuid
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from ..context import ServiceContext, get_context, get_owner_id
from ..errors import ManualQAError
from ..logging_config import logger
from ..schemas import DocumentOut, ProcessBody, ProcessResponse
from ..services.ingestion_service import BatchItem
from ..storage import encode_storage_name, make_storage_ref
from ..text_extraction import detect_kind

router = APIRouter(prefix="/api", tags=["documents"])


# ==================== Document Upload ====================

async def _discard_stored(ctx: ServiceContext, storage_refs: List[str]) -> None:
    """Remove files stored earlier in a request that is being rejected."""
    for ref in storage_refs:
        try:
            await asyncio.to_thread(ctx.storage.delete, ref)
        except ManualQAError as e:
            logger.error("Could not discard stored upload", storage_ref=ref, error=e.message)


@router.post("/documents/upload")
async def upload_documents(
    files: List[UploadFile] = File(...),
    ctx: ServiceContext = Depends(get_context),
    owner_id: str = Depends(get_owner_id),
):
    """
    Upload one or more documents and ingest them.

    Supported formats: PDF, DOCX, PPTX, XLSX, TXT/MD/CSV

    Process:
    1. Check upload limits
    2. Save each supported file to blob storage under an encoded name
    3. Extract, check quality (OCR if needed), sanitize, chunk, embed, store

    Returns:
        Inserted documents with chunk counts, plus skipped and failed files
    """
    settings = ctx.settings
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > settings.max_files_per_upload:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Maximum {settings.max_files_per_upload} files per upload.",
        )

    # Every size check happens before the first write, so a rejected batch stores nothing
    for f in files:
        f.file.seek(0, os.SEEK_END)
        size_bytes = f.file.tell()
        f.file.seek(0)
        if size_bytes > settings.max_file_size_bytes:
            raise HTTPException(
                status_code=400,
                detail=(
                    f"File '{f.filename}' is too large. "
                    f"Max size is {settings.max_file_size_bytes // (1024 * 1024)} MB."
                ),
            )

    items = []
    skipped = []
    for f in files:
        original_name = os.path.basename(f.filename or "")
        if not original_name or not detect_kind(f.content_type or "", original_name):
            logger.warning("Skipping unsupported upload", filename=f.filename, content_type=f.content_type)
            skipped.append({"originalName": f.filename, "reason": "unsupported format"})
            continue

        data = await f.read()
        storage_ref = make_storage_ref(owner_id, encode_storage_name(original_name))
        try:
            await asyncio.to_thread(ctx.storage.save, storage_ref, data)
        except ManualQAError as e:
            await _discard_stored(ctx, [item.storage_ref for item in items])
            raise HTTPException(status_code=e.http_status, detail=e.message)

        items.append(
            BatchItem(
                document_id=str(uuid.uuid4()),
                storage_ref=storage_ref,
                original_name=original_name,
                mime_type=f.content_type or None,
            )
        )
        logger.info("Stored upload", filename=original_name, storage_ref=storage_ref, size_bytes=len(data))

    inserted = []
    failed = []
    for outcome in await ctx.ingestion.ingest_many(items, owner_id):
        item = outcome.item
        if outcome.result is not None:
            inserted.append({
                "documentId": outcome.result.document_id,
                "originalName": item.original_name,
                "storageRef": item.storage_ref,
                "chunksCount": outcome.result.chunks_count,
                "summary": outcome.result.summary,
            })
        elif outcome.skipped:
            skipped.append({"originalName": item.original_name, "reason": outcome.error.message})
        else:
            failed.append({
                "documentId": item.document_id,
                "originalName": item.original_name,
                "error": outcome.error.message,
                "status": outcome.error.http_status,
            })

    logger.info("Upload finished", inserted=len(inserted), skipped=len(skipped), failed=len(failed))
    return {"ok": True, "inserted": inserted, "skipped": skipped, "failed": failed}


# ==================== Document Processing ====================

@router.post("/documents/process", response_model=ProcessResponse)
async def process_document(
    body: ProcessBody,
    ctx: ServiceContext = Depends(get_context),
    owner_id: str = Depends(get_owner_id),
):
    """
    Ingest (or re-ingest) a file that is already in storage.

    The previous chunk set of the document, if any, is replaced as a whole.
    """
    if not body.storage_ref.startswith(f"{owner_id}/"):
        raise HTTPException(status_code=404, detail="Document not found")

    try:
        if not await asyncio.to_thread(ctx.storage.exists, body.storage_ref):
            raise HTTPException(status_code=404, detail="Stored file not found")
        result = await ctx.ingestion.ingest(
            body.document_id, body.storage_ref, body.original_name, owner_id, body.mime_type
        )
    except ManualQAError as e:
        raise HTTPException(status_code=e.http_status, detail=e.message)

    return ProcessResponse(
        document_id=result.document_id,
        summary=result.summary,
        chunks_count=result.chunks_count,
    )


# ==================== Document Listing ====================

@router.get("/documents", response_model=List[DocumentOut])
async def list_documents(
    ctx: ServiceContext = Depends(get_context),
    owner_id: str = Depends(get_owner_id),
):
    """
    Returns the caller's documents with chunk counts, newest first.
    """
    try:
        records = await asyncio.to_thread(ctx.store.list_documents, owner_id)
    except ManualQAError as e:
        raise HTTPException(status_code=e.http_status, detail=e.message)

    logger.info("Listed documents", count=len(records))
    return [
        DocumentOut(
            id=r.id,
            original_name=r.original_name,
            storage_ref=r.storage_ref,
            summary=r.summary,
            status=r.status,
            error=r.error,
            chunks_count=r.chunk_count,
            metadata=r.metadata or {},
            created_at=r.created_at.isoformat() if r.created_at else None,
        )
        for r in records
    ]


# ==================== Document Deletion ====================

@router.delete("/documents/{doc_id}")
async def delete_document(
    doc_id: str,
    ctx: ServiceContext = Depends(get_context),
    owner_id: str = Depends(get_owner_id),
):
    """
    Deletes a document and all its chunks (ON DELETE CASCADE).
    The stored file goes too, unless another document still refers to it.
    """
    try:
        storage_ref = await asyncio.to_thread(ctx.store.delete_document, doc_id, owner_id)
    except ManualQAError as e:
        logger.warning("Document deletion failed", doc_id=doc_id, error=e.message)
        raise HTTPException(status_code=e.http_status, detail=e.message)

    storage_removed = False
    if storage_ref is not None:
        try:
            storage_removed = await asyncio.to_thread(ctx.storage.delete, storage_ref)
        except ManualQAError as e:
            logger.error("Stored file could not be removed", doc_id=doc_id, storage_ref=storage_ref, error=e.message)

    logger.info("Document deleted", doc_id=doc_id, storage_removed=storage_removed)
    return {"ok": True, "deleted": doc_id, "storageRemoved": storage_removed}
