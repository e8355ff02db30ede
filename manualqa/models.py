from sqlalchemy import TIMESTAMP, Column, ForeignKey, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from pgvector.sqlalchemy import Vector

Base = declarative_base()


class Document(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False)
    storage_ref = Column(Text, nullable=False)
    storage_name = Column(Text, nullable=False)
    original_name = Column(Text, nullable=False)
    summary = Column(Text)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    status = Column(String, nullable=False, server_default=text("'pending'"))
    error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=text("NOW()"))
    updated_at = Column(TIMESTAMP(timezone=True), server_default=text("NOW()"), onupdate=text("NOW()"))


class Chunk(Base):
    __tablename__ = "chunks"
    id = Column(String, primary_key=True)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    chunk_order = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(Vector(), nullable=False)
