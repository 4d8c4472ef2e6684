"""Search and SearchResult models for query tracking and click feedback."""

import uuid
from datetime import datetime
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, Enum, Float, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retrieval_engine.models.base import BaseModel
from retrieval_engine.schemas.search import SearchMode


class Search(BaseModel):
    __tablename__ = "searches"

    query: Mapped[str] = mapped_column(Text, nullable=False)
    query_embedding: Mapped[Optional[list[float]]] = mapped_column(Vector(), nullable=True)
    search_mode: Mapped[SearchMode] = mapped_column(
        Enum(SearchMode, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    result_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_similarity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_similarity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_similarity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    execution_time: Mapped[float] = mapped_column(Float, nullable=False)
    filters: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    options: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    results: Mapped[list["SearchResult"]] = relationship(
        back_populates="search",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SearchResult.rank",
    )

    def __repr__(self) -> str:
        return f"<Search(id={self.id}, mode='{self.search_mode.value}', results={self.result_count})>"


class SearchResult(BaseModel):
    __tablename__ = "search_results"

    search_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("searches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    embedding_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("embeddings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    similarity_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    clicked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    clicked_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    search: Mapped["Search"] = relationship(back_populates="results")

    def __repr__(self) -> str:
        return f"<SearchResult(id={self.id}, rank={self.rank}, clicked={self.clicked})>"
