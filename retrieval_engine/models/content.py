"""Content models: one table per content kind, all owned by a Document."""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retrieval_engine.models.base import BaseModel
from retrieval_engine.schemas.content import (
    AudioItem,
    ContentKind,
    ImageItem,
    TextItem,
)

if TYPE_CHECKING:
    from retrieval_engine.models.document import Document


class ContentMixin:
    """Columns shared by every content kind."""

    document_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    embedding_model: Mapped[str] = mapped_column(String, nullable=False)
    chunk_size: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_overlap: Mapped[int] = mapped_column(Integer, nullable=False)

    def _common(self) -> dict:
        return dict(
            id=self.id,
            document_id=self.document_id,
            embedding_model=self.embedding_model,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )


class TextContent(ContentMixin, BaseModel):
    __tablename__ = "text_contents"
    kind = ContentKind.TEXT

    body: Mapped[str] = mapped_column(Text, nullable=False)

    document: Mapped["Document"] = relationship(back_populates="text_contents")

    def to_item(self) -> TextItem:
        return TextItem(body=self.body, **self._common())

    def __repr__(self) -> str:
        return f"<TextContent(id={self.id}, document_id={self.document_id})>"


class ImageContent(ContentMixin, BaseModel):
    __tablename__ = "image_contents"
    kind = ContentKind.IMAGE

    description: Mapped[str] = mapped_column(Text, nullable=False)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    image_format: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    document: Mapped["Document"] = relationship(back_populates="image_contents")

    def to_item(self) -> ImageItem:
        return ImageItem(
            description=self.description,
            width=self.width,
            height=self.height,
            image_format=self.image_format,
            **self._common(),
        )

    def __repr__(self) -> str:
        return f"<ImageContent(id={self.id}, document_id={self.document_id})>"


class AudioContent(ContentMixin, BaseModel):
    __tablename__ = "audio_contents"
    kind = ContentKind.AUDIO

    transcript: Mapped[str] = mapped_column(Text, nullable=False)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sample_rate: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    document: Mapped["Document"] = relationship(back_populates="audio_contents")

    def to_item(self) -> AudioItem:
        return AudioItem(
            transcript=self.transcript,
            duration_seconds=self.duration_seconds,
            sample_rate=self.sample_rate,
            language=self.language,
            **self._common(),
        )

    def __repr__(self) -> str:
        return f"<AudioContent(id={self.id}, document_id={self.document_id})>"


CONTENT_MODELS = {
    ContentKind.TEXT: TextContent,
    ContentKind.IMAGE: ImageContent,
    ContentKind.AUDIO: AudioContent,
}
