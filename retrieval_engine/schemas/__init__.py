"""Exports all schemas for easy access."""

from .chunk import Chunk, ChunkVector, EmbeddingRecord, NewEmbedding
from .content import (
    AudioItem,
    ContentItem,
    ContentKind,
    ExtractedContent,
    ImageItem,
    NewContent,
    TextItem,
)
from .document import (
    METADATA_SCHEMAS,
    DocumentMetadata,
    DocumentRecord,
    DocumentStatus,
    DocumentType,
    FileMetadata,
    NewDocument,
    SimilarityCandidate,
)
from .ingestion import (
    AddDocumentResult,
    DuplicateOutcome,
    DuplicateTier,
    Existing,
    Forced,
    New,
    ProcessResult,
    ProcessStep,
)
from .search import (
    HybridHit,
    LexicalHit,
    PopularQuery,
    RankedHit,
    SearchDraft,
    SearchFilters,
    SearchHit,
    SearchMode,
    SearchOptions,
    SearchRecord,
    SearchResponse,
    SearchResultRecord,
    TrackedResult,
)

__all__ = [
    "Chunk",
    "ChunkVector",
    "EmbeddingRecord",
    "NewEmbedding",
    "ContentKind",
    "ContentItem",
    "TextItem",
    "ImageItem",
    "AudioItem",
    "ExtractedContent",
    "NewContent",
    "DocumentType",
    "DocumentStatus",
    "DocumentMetadata",
    "DocumentRecord",
    "FileMetadata",
    "NewDocument",
    "SimilarityCandidate",
    "METADATA_SCHEMAS",
    "DuplicateTier",
    "DuplicateOutcome",
    "Existing",
    "New",
    "Forced",
    "ProcessStep",
    "ProcessResult",
    "AddDocumentResult",
    "SearchMode",
    "SearchFilters",
    "SearchOptions",
    "SearchHit",
    "RankedHit",
    "LexicalHit",
    "HybridHit",
    "SearchResponse",
    "TrackedResult",
    "SearchDraft",
    "SearchRecord",
    "SearchResultRecord",
    "PopularQuery",
]
