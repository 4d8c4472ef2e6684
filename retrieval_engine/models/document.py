"""Document model for ingested sources."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum, Integer, String
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retrieval_engine.models.base import BaseModel
from retrieval_engine.schemas.document import DocumentStatus, DocumentType

if TYPE_CHECKING:
    from retrieval_engine.models.content import AudioContent, ImageContent, TextContent


class Document(BaseModel):
    __tablename__ = "documents"

    location: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    document_type: Mapped[DocumentType] = mapped_column(
        Enum(DocumentType, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DocumentStatus.PENDING,
    )
    file_modified_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    # `metadata` is reserved by the declarative API.
    doc_metadata: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict, comment="LLM-derived metadata."
    )
    file_metadata: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    file_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    content_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    text_contents: Mapped[list["TextContent"]] = relationship(
        back_populates="document", cascade="all, delete-orphan", passive_deletes=True
    )
    image_contents: Mapped[list["ImageContent"]] = relationship(
        back_populates="document", cascade="all, delete-orphan", passive_deletes=True
    )
    audio_contents: Mapped[list["AudioContent"]] = relationship(
        back_populates="document", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, location='{self.location}', status='{self.status.value}')>"
