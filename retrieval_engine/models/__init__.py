"""Exports all models for easy access."""

from .base import Base, BaseModel
from .content import CONTENT_MODELS, AudioContent, ImageContent, TextContent
from .document import Document
from .embedding import EMBEDDING_DIM, TEXT_SEARCH_CONFIG, Embedding
from .search import Search, SearchResult

__all__ = [
    "Base",
    "BaseModel",
    "EMBEDDING_DIM",
    "Document",
    "TextContent",
    "ImageContent",
    "AudioContent",
    "CONTENT_MODELS",
    "Embedding",
    "TEXT_SEARCH_CONFIG",
    "Search",
    "SearchResult",
]
