"""Embedding model for storing vectorized chunks."""

import uuid
from datetime import datetime
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import Computed, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, TSVECTOR, UUID
from sqlalchemy.orm import Mapped, mapped_column

from retrieval_engine.models.base import BaseModel
from retrieval_engine.schemas.content import ContentKind

TEXT_SEARCH_CONFIG = "english"
# Shared by every content kind; the HNSW index needs a fixed dimension.
EMBEDDING_DIM = 384


class Embedding(BaseModel):
    __tablename__ = "embeddings"

    # Polymorphic owner: (owner_kind, owner_id) points into one of the content tables.
    owner_kind: Mapped[ContentKind] = mapped_column(
        Enum(ContentKind, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    document_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(Vector(EMBEDDING_DIM), nullable=False)
    char_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    char_end: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    embedding_model: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    usage_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    content_tsv = mapped_column(
        TSVECTOR,
        Computed(f"to_tsvector('{TEXT_SEARCH_CONFIG}', content)", persisted=True),
    )

    __table_args__ = (
        UniqueConstraint(
            "owner_kind", "owner_id", "chunk_index", name="uq_embeddings_owner_chunk"
        ),
        Index("idx_embeddings_owner", "owner_kind", "owner_id"),
        Index(
            "idx_embeddings_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
        Index("idx_embeddings_content_tsv", "content_tsv", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return f"<Embedding(id={self.id}, owner={self.owner_kind.value}:{self.owner_id}, chunk={self.chunk_index})>"
