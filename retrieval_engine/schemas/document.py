"""Pydantic schemas for documents and their metadata."""

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentType(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    PDF = "pdf"
    DOCX = "docx"
    HTML = "html"
    MARKDOWN = "markdown"
    MIXED = "mixed"


class DocumentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class DocumentMetadata(BaseModel):
    """LLM-derived metadata shared by every document type."""

    model_config = ConfigDict(extra="forbid")

    summary: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    classification: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    language: Optional[str] = None
    author: Optional[str] = None


class PagedMetadata(DocumentMetadata):
    page_count: Optional[int] = Field(default=None, ge=0)


class TextMetadata(DocumentMetadata):
    word_count: Optional[int] = Field(default=None, ge=0)


class MarkdownMetadata(TextMetadata):
    headings: list[str] = Field(default_factory=list)


class HtmlMetadata(DocumentMetadata):
    url: Optional[str] = None
    headings: list[str] = Field(default_factory=list)


class ImageMetadata(DocumentMetadata):
    width: Optional[int] = Field(default=None, ge=0)
    height: Optional[int] = Field(default=None, ge=0)
    image_format: Optional[str] = None


class AudioMetadata(DocumentMetadata):
    duration_seconds: Optional[float] = Field(default=None, ge=0)
    sample_rate: Optional[int] = Field(default=None, ge=0)
    speaker_count: Optional[int] = Field(default=None, ge=0)


class MixedMetadata(DocumentMetadata):
    page_count: Optional[int] = Field(default=None, ge=0)
    width: Optional[int] = Field(default=None, ge=0)
    height: Optional[int] = Field(default=None, ge=0)
    duration_seconds: Optional[float] = Field(default=None, ge=0)


METADATA_SCHEMAS: dict[DocumentType, type[DocumentMetadata]] = {
    DocumentType.TEXT: TextMetadata,
    DocumentType.MARKDOWN: MarkdownMetadata,
    DocumentType.HTML: HtmlMetadata,
    DocumentType.PDF: PagedMetadata,
    DocumentType.DOCX: PagedMetadata,
    DocumentType.IMAGE: ImageMetadata,
    DocumentType.AUDIO: AudioMetadata,
    DocumentType.MIXED: MixedMetadata,
}


class FileMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    size: Optional[int] = Field(default=None, ge=0)
    hash: Optional[str] = None
    mime: Optional[str] = None


class NewDocument(BaseModel):
    """Everything the storage backend needs to insert a document."""

    location: str
    title: Optional[str] = None
    document_type: DocumentType
    file_modified_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    file_metadata: dict[str, Any] = Field(default_factory=dict)
    content_hash: str
    file_hash: Optional[str] = None
    content_length: int


class DocumentRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    location: str
    title: Optional[str] = None
    document_type: DocumentType
    status: DocumentStatus
    file_modified_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    file_metadata: dict[str, Any] = Field(default_factory=dict)
    content_hash: str
    file_hash: Optional[str] = None
    content_length: int
    created_at: datetime
    updated_at: datetime


class SimilarityCandidate(BaseModel):
    """A stored document that shares basename, type and title with a new one."""

    document_id: uuid.UUID
    location: str
    content_length: int
