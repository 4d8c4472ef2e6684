import hashlib
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from retrieval_engine.schemas.content import ContentKind


class Chunk(BaseModel):
    """A contiguous span of a content item's text that receives one embedding."""

    model_config = ConfigDict(frozen=True)

    content: str
    chunk_index: int
    char_start: int
    char_end: int

    def cache_key(self, model: str) -> str:
        digest = hashlib.sha256()
        digest.update(model.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(self.content.encode("utf-8"))
        return digest.hexdigest()


class ChunkVector(BaseModel):
    """A chunk paired with its embedding, as written by `upsert`."""

    content: str
    vector: list[float]
    char_start: Optional[int] = None
    char_end: Optional[int] = None


class NewEmbedding(BaseModel):
    """A validated row for the storage backend's replace-set."""

    chunk_index: int
    content: str
    vector: list[float]
    char_start: Optional[int] = None
    char_end: Optional[int] = None
    embedding_model: Optional[str] = None


class EmbeddingRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_kind: ContentKind
    owner_id: uuid.UUID
    document_id: uuid.UUID
    chunk_index: int
    content: str
    vector: list[float] = Field(repr=False)
    char_start: Optional[int] = None
    char_end: Optional[int] = None
    embedding_model: Optional[str] = None
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    created_at: datetime
