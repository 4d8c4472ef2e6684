"""Pydantic schemas for search requests, hits and tracked searches."""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from retrieval_engine.schemas.content import ContentKind
from retrieval_engine.schemas.document import DocumentType


class SearchMode(str, enum.Enum):
    SEMANTIC = "semantic"
    LEXICAL = "lexical"
    HYBRID = "hybrid"


class SearchFilters(BaseModel):
    """Filters applied before the result limit is enforced."""

    model_config = ConfigDict(frozen=True)

    content_kinds: Optional[list[ContentKind]] = None
    document_types: Optional[list[DocumentType]] = None
    document_ids: Optional[list[uuid.UUID]] = None
    classification: Optional[str] = None
    tags: Optional[list[str]] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

    @field_validator("created_after", "created_before")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are UTC-aware.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def check_date_range(self) -> "SearchFilters":
        if (
            self.created_after is not None
            and self.created_before is not None
            and self.created_after > self.created_before
        ):
            raise ValueError("created_after must not be later than created_before")
        return self


class SearchOptions(BaseModel):
    limit: Optional[int] = Field(default=None, gt=0)
    threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    # Ranking context: documents matching these receive metadata bonuses.
    boost_classification: Optional[str] = None
    boost_tags: list[str] = Field(default_factory=list)
    # Hybrid only
    semantic_weight: Optional[float] = None
    text_weight: Optional[float] = None
    track: bool = True


class SearchHit(BaseModel):
    """A chunk returned by the nearest-neighbour query."""

    model_config = ConfigDict(frozen=True)

    embedding_id: uuid.UUID
    similarity: float
    owner_kind: ContentKind
    owner_id: uuid.UUID
    chunk_index: int
    content: str
    document_id: uuid.UUID
    usage_count: int = 0
    last_used_at: Optional[datetime] = None
    document_created_at: Optional[datetime] = None
    classification: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class RankedHit(SearchHit):
    composite_score: float
    usage_score: float
    recency_score: float
    frequency_score: float
    metadata_score: float


class LexicalHit(BaseModel):
    """Best-matching chunk of a document for a full-text query."""

    model_config = ConfigDict(frozen=True)

    document_id: uuid.UUID
    rank_score: float = 0.0
    raw_score: Optional[float] = None
    embedding_id: uuid.UUID
    owner_kind: ContentKind
    owner_id: uuid.UUID
    chunk_index: int
    content: str


class HybridHit(BaseModel):
    document_id: uuid.UUID
    weighted_score: float
    modes: list[SearchMode]
    semantic_score: Optional[float] = None
    lexical_score: Optional[float] = None
    embedding_id: uuid.UUID
    chunk_index: int
    content: str
    similarity: Optional[float] = None


class SearchResponse(BaseModel):
    query: str
    mode: SearchMode
    results: list[Union[RankedHit, HybridHit]]
    search_id: Optional[uuid.UUID] = None
    execution_time: float

    @property
    def total(self) -> int:
        return len(self.results)


class TrackedResult(BaseModel):
    """One returned item handed to the search tracker, in rank order."""

    embedding_id: uuid.UUID
    similarity: Optional[float] = None


class SearchDraft(BaseModel):
    query: str
    query_embedding: Optional[list[float]] = None
    search_mode: SearchMode
    filters: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)
    execution_time: float
    result_count: int
    min_similarity: Optional[float] = None
    max_similarity: Optional[float] = None
    avg_similarity: Optional[float] = None


class SearchResultRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    search_id: uuid.UUID
    embedding_id: uuid.UUID
    rank: int
    similarity_score: Optional[float] = None
    clicked: bool = False
    clicked_at: Optional[datetime] = None


class SearchRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    query: str
    search_mode: SearchMode
    result_count: int
    min_similarity: Optional[float] = None
    max_similarity: Optional[float] = None
    avg_similarity: Optional[float] = None
    execution_time: float
    filters: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    results: list[SearchResultRecord] = Field(default_factory=list)


class PopularQuery(BaseModel):
    query: str
    count: int
