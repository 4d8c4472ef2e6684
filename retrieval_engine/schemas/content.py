"""Content items: the tagged union over text, image and audio payloads."""

import enum
import uuid
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ContentKind(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class _ContentBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    document_id: uuid.UUID
    embedding_model: str
    chunk_size: int
    chunk_overlap: int

    @property
    def owner(self) -> tuple[ContentKind, uuid.UUID]:
        return self.kind, self.id


class TextItem(_ContentBase):
    kind: Literal[ContentKind.TEXT] = ContentKind.TEXT
    body: str

    def payload_text(self) -> str:
        return self.body


class ImageItem(_ContentBase):
    kind: Literal[ContentKind.IMAGE] = ContentKind.IMAGE
    description: str
    width: Optional[int] = None
    height: Optional[int] = None
    image_format: Optional[str] = None

    def payload_text(self) -> str:
        return self.description


class AudioItem(_ContentBase):
    kind: Literal[ContentKind.AUDIO] = ContentKind.AUDIO
    transcript: str
    duration_seconds: Optional[float] = None
    sample_rate: Optional[int] = None
    language: Optional[str] = None

    def payload_text(self) -> str:
        return self.transcript


ContentItem = Annotated[
    Union[TextItem, ImageItem, AudioItem], Field(discriminator="kind")
]


class ExtractedContent(BaseModel):
    """Extracted payload for one content kind, as handed to add_document."""

    text: str
    width: Optional[int] = None
    height: Optional[int] = None
    image_format: Optional[str] = None
    duration_seconds: Optional[float] = None
    sample_rate: Optional[int] = None
    language: Optional[str] = None


class NewContent(BaseModel):
    kind: ContentKind
    extracted: ExtractedContent
    embedding_model: str
    chunk_size: int
    chunk_overlap: int
