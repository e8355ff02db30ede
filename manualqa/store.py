"""
Corpus store: document metadata plus chunk/vector rows.

Two implementations share the CorpusStore contract:
- SqlCorpusStore: PostgreSQL + pgvector; similarity search runs in the database.
- MemoryCorpusStore: in-process numpy cosine search, for tests and local runs.

Both replace a document's chunk set as a single unit.
"""
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy import delete, func, select, text as sa_text
from sqlalchemy.exc import SQLAlchemyError

from .errors import DocumentNotFoundError, StoreError
from .logging_config import logger
from .models import Chunk, Document

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_READY = "ready"
STATUS_FAILED = "failed"


@dataclass
class DocumentRecord:
    id: str
    owner_id: str
    storage_ref: str
    storage_name: str
    original_name: str
    summary: Optional[str] = None
    metadata: Dict = field(default_factory=dict)
    status: str = STATUS_PENDING
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    chunk_count: int = 0


@dataclass(frozen=True)
class ChunkRecord:
    order: int
    text: str
    embedding: List[float]


@dataclass(frozen=True)
class SearchHit:
    chunk_id: str
    document_id: str
    file_name: str
    position: int
    text: str
    similarity: float


def validate_chunk_orders(chunks: Sequence[ChunkRecord]) -> None:
    """Chunk orders must be exactly 1..N and every chunk must carry text."""
    orders = [c.order for c in chunks]
    if orders != list(range(1, len(chunks) + 1)):
        raise StoreError(f"Chunk orders must be contiguous 1..{len(chunks)}, got {orders[:10]}")
    if any(not c.text for c in chunks):
        raise StoreError("Chunk text must not be empty")


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(x)) for x in vector) + "]"


class CorpusStore:
    """Interface shared by the store implementations."""

    def upsert_document(self, record: DocumentRecord) -> None:
        raise NotImplementedError

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        raise NotImplementedError

    def list_documents(self, owner_id: str) -> List[DocumentRecord]:
        raise NotImplementedError

    def set_status(self, document_id: str, status: str, error: Optional[str] = None) -> None:
        raise NotImplementedError

    def replace_chunks(self, document_id: str, chunks: Sequence[ChunkRecord]) -> int:
        raise NotImplementedError

    def search(
        self,
        query_vector: Sequence[float],
        threshold: float,
        limit: int,
        scope: Optional[Sequence[str]] = None,
        owner_id: Optional[str] = None,
    ) -> List[SearchHit]:
        raise NotImplementedError

    def resolve_scope(self, names: Sequence[str], owner_id: Optional[str] = None) -> List[str]:
        raise NotImplementedError

    def delete_document(self, document_id: str, owner_id: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError


class SqlCorpusStore(CorpusStore):
    def __init__(self, SessionLocal):
        self.SessionLocal = SessionLocal

    @contextmanager
    def _transaction(self, operation: str):
        try:
            with self.SessionLocal() as db, db.begin():
                yield db
        except SQLAlchemyError as e:
            logger.error("Corpus store error", operation=operation, error=str(e))
            raise StoreError(f"{operation} failed: {e}") from e

    @staticmethod
    def _to_record(doc: Document, chunk_count: int = 0) -> DocumentRecord:
        return DocumentRecord(
            id=doc.id,
            owner_id=doc.owner_id,
            storage_ref=doc.storage_ref,
            storage_name=doc.storage_name,
            original_name=doc.original_name,
            summary=doc.summary,
            metadata=dict(doc.meta or {}),
            status=doc.status,
            error=doc.error,
            created_at=doc.created_at,
            chunk_count=chunk_count,
        )

    def upsert_document(self, record: DocumentRecord) -> None:
        with self._transaction("upsert_document") as db:
            db.merge(
                Document(
                    id=record.id,
                    owner_id=record.owner_id,
                    storage_ref=record.storage_ref,
                    storage_name=record.storage_name,
                    original_name=record.original_name,
                    summary=record.summary,
                    meta=record.metadata,
                    status=record.status,
                    error=record.error,
                )
            )

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        with self._transaction("get_document") as db:
            doc = db.get(Document, document_id)
            if doc is None:
                return None
            count = db.execute(
                select(func.count(Chunk.id)).where(Chunk.document_id == document_id)
            ).scalar_one()
            return self._to_record(doc, count)

    def list_documents(self, owner_id: str) -> List[DocumentRecord]:
        with self._transaction("list_documents") as db:
            rows = db.execute(
                select(Document, func.count(Chunk.id))
                .outerjoin(Chunk, Chunk.document_id == Document.id)
                .where(Document.owner_id == owner_id)
                .group_by(Document.id)
                .order_by(Document.created_at.desc())
            ).all()
            return [self._to_record(doc, count) for doc, count in rows]

    def set_status(self, document_id: str, status: str, error: Optional[str] = None) -> None:
        with self._transaction("set_status") as db:
            doc = db.get(Document, document_id)
            if doc is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            doc.status = status
            doc.error = error

    def replace_chunks(self, document_id: str, chunks: Sequence[ChunkRecord]) -> int:
        """Delete the document's chunks and insert the new set in one transaction."""
        validate_chunk_orders(chunks)
        with self._transaction("replace_chunks") as db:
            db.execute(delete(Chunk).where(Chunk.document_id == document_id))
            db.add_all(
                Chunk(
                    id=str(uuid.uuid4()),
                    document_id=document_id,
                    chunk_order=c.order,
                    content=c.text,
                    embedding=list(c.embedding),
                )
                for c in chunks
            )
        logger.info("Replaced chunks", document_id=document_id, chunks=len(chunks))
        return len(chunks)

    def search(
        self,
        query_vector: Sequence[float],
        threshold: float,
        limit: int,
        scope: Optional[Sequence[str]] = None,
        owner_id: Optional[str] = None,
    ) -> List[SearchHit]:
        filters = ["1 - (c.embedding <=> CAST(:qv AS vector)) >= :threshold"]
        params = {"qv": _vector_literal(query_vector), "threshold": threshold, "k": limit}
        if scope is not None:
            filters.append("c.document_id = ANY(:scope)")
            params["scope"] = list(scope)
        if owner_id is not None:
            filters.append("d.owner_id = :owner")
            params["owner"] = owner_id

        sql = f"""
            SELECT
                c.id AS chunk_id,
                c.document_id,
                d.original_name AS file_name,
                c.chunk_order AS position,
                c.content AS text,
                1 - (c.embedding <=> CAST(:qv AS vector)) AS similarity
            FROM chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE {" AND ".join(filters)}
            ORDER BY c.embedding <=> CAST(:qv AS vector)
            LIMIT :k
        """
        with self._transaction("search") as db:
            rows = db.execute(sa_text(sql), params).mappings().all()
        return [
            SearchHit(
                chunk_id=r["chunk_id"],
                document_id=r["document_id"],
                file_name=r["file_name"],
                position=int(r["position"]),
                text=r["text"],
                similarity=float(r["similarity"]),
            )
            for r in rows
        ]

    def resolve_scope(self, names: Sequence[str], owner_id: Optional[str] = None) -> List[str]:
        names = list(names)
        if not names:
            return []
        stmt = select(Document.id).where(
            Document.id.in_(names)
            | Document.original_name.in_(names)
            | Document.storage_name.in_(names)
        )
        if owner_id is not None:
            stmt = stmt.where(Document.owner_id == owner_id)
        with self._transaction("resolve_scope") as db:
            return list(db.execute(stmt).scalars().all())

    def delete_document(self, document_id: str, owner_id: Optional[str] = None) -> Optional[str]:
        """
        Delete a document (chunks cascade).

        Returns:
            The storage reference if no other document still points at it, else None
        """
        with self._transaction("delete_document") as db:
            doc = db.get(Document, document_id)
            if doc is None or (owner_id is not None and doc.owner_id != owner_id):
                raise DocumentNotFoundError(f"Document {document_id} not found")
            storage_ref = doc.storage_ref
            db.delete(doc)
            db.flush()
            remaining = db.execute(
                select(func.count(Document.id)).where(Document.storage_ref == storage_ref)
            ).scalar_one()
        logger.info("Document deleted", document_id=document_id, storage_still_referenced=remaining > 0)
        return None if remaining else storage_ref


class MemoryCorpusStore(CorpusStore):
    """Thread-safe in-memory store with brute-force cosine similarity."""

    def __init__(self):
        self._lock = threading.Lock()
        self._documents: Dict[str, DocumentRecord] = {}
        # document_id -> list of (chunk_id, ChunkRecord)
        self._chunks: Dict[str, List[tuple]] = {}

    def upsert_document(self, record: DocumentRecord) -> None:
        with self._lock:
            existing = self._documents.get(record.id)
            created_at = existing.created_at if existing else datetime.now(timezone.utc)
            self._documents[record.id] = replace(record, created_at=created_at, chunk_count=0)

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None:
                return None
            return replace(doc, chunk_count=len(self._chunks.get(document_id, [])))

    def list_documents(self, owner_id: str) -> List[DocumentRecord]:
        with self._lock:
            docs = [
                replace(d, chunk_count=len(self._chunks.get(d.id, [])))
                for d in self._documents.values()
                if d.owner_id == owner_id
            ]
        return sorted(docs, key=lambda d: d.created_at, reverse=True)

    def set_status(self, document_id: str, status: str, error: Optional[str] = None) -> None:
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            self._documents[document_id] = replace(doc, status=status, error=error)

    def replace_chunks(self, document_id: str, chunks: Sequence[ChunkRecord]) -> int:
        validate_chunk_orders(chunks)
        new_rows = [(str(uuid.uuid4()), c) for c in chunks]
        with self._lock:
            if document_id not in self._documents:
                raise StoreError(f"Document {document_id} does not exist")
            self._chunks[document_id] = new_rows
        return len(new_rows)

    def chunks_for(self, document_id: str) -> List[ChunkRecord]:
        with self._lock:
            return [c for _, c in self._chunks.get(document_id, [])]

    def search(
        self,
        query_vector: Sequence[float],
        threshold: float,
        limit: int,
        scope: Optional[Sequence[str]] = None,
        owner_id: Optional[str] = None,
    ) -> List[SearchHit]:
        q = np.asarray(query_vector, dtype=float)
        q_norm = np.linalg.norm(q)
        scope_set = set(scope) if scope is not None else None

        hits = []
        with self._lock:
            for document_id, rows in self._chunks.items():
                doc = self._documents[document_id]
                if scope_set is not None and document_id not in scope_set:
                    continue
                if owner_id is not None and doc.owner_id != owner_id:
                    continue
                for chunk_id, chunk in rows:
                    v = np.asarray(chunk.embedding, dtype=float)
                    denom = q_norm * np.linalg.norm(v)
                    similarity = float(np.dot(q, v) / denom) if denom else 0.0
                    if similarity >= threshold:
                        hits.append(
                            SearchHit(
                                chunk_id=chunk_id,
                                document_id=document_id,
                                file_name=doc.original_name,
                                position=chunk.order,
                                text=chunk.text,
                                similarity=similarity,
                            )
                        )
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:limit]

    def resolve_scope(self, names: Sequence[str], owner_id: Optional[str] = None) -> List[str]:
        wanted = set(names)
        with self._lock:
            return [
                d.id
                for d in self._documents.values()
                if (owner_id is None or d.owner_id == owner_id)
                and (d.id in wanted or d.original_name in wanted or d.storage_name in wanted)
            ]

    def delete_document(self, document_id: str, owner_id: Optional[str] = None) -> Optional[str]:
        with self._lock:
            doc = self._documents.get(document_id)
            if doc is None or (owner_id is not None and doc.owner_id != owner_id):
                raise DocumentNotFoundError(f"Document {document_id} not found")
            del self._documents[document_id]
            self._chunks.pop(document_id, None)
            still_referenced = any(d.storage_ref == doc.storage_ref for d in self._documents.values())
        return None if still_referenced else doc.storage_ref
