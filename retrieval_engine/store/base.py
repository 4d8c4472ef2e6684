"""
Storage backend interface.
Defines the contract every persistence adapter must implement: CRUD over
documents, contents, embeddings and searches, plus a nearest-neighbour and a
full-text query primitive.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from retrieval_engine.schemas.chunk import EmbeddingRecord, NewEmbedding
from retrieval_engine.schemas.content import ContentItem, ContentKind, NewContent
from retrieval_engine.schemas.document import (
    DocumentRecord,
    DocumentStatus,
    DocumentType,
    NewDocument,
    SimilarityCandidate,
)
from retrieval_engine.schemas.search import (
    LexicalHit,
    PopularQuery,
    SearchDraft,
    SearchFilters,
    SearchHit,
    SearchRecord,
    SearchResultRecord,
    TrackedResult,
)
from retrieval_engine.utils.cancellation import CancellationToken


class StorageBackend(ABC):
    """Abstract interface for storage backends."""

    # Document operations
    @abstractmethod
    def create_document(
        self, document: NewDocument, contents: Sequence[NewContent]
    ) -> DocumentRecord:
        """
        Insert a document and its content items in one transaction.

        Raises:
            DuplicateLocationError: If the location is already taken.
        """

    @abstractmethod
    def get_document(self, document_id: uuid.UUID) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    def find_document_id_by_location(self, location: str) -> Optional[uuid.UUID]:
        pass

    @abstractmethod
    def find_document_id_by_file_hash(self, file_hash: str) -> Optional[uuid.UUID]:
        pass

    @abstractmethod
    def find_document_id_by_content_hash(self, content_hash: str) -> Optional[uuid.UUID]:
        pass

    @abstractmethod
    def find_similarity_candidates(
        self, basename: str, document_type: DocumentType, title: Optional[str]
    ) -> list[SimilarityCandidate]:
        """
        Documents with the same basename and type, and the same title when one
        is given, oldest first.
        """

    @abstractmethod
    def set_document_status(self, document_id: uuid.UUID, status: DocumentStatus) -> None:
        pass

    @abstractmethod
    def delete_document(self, document_id: uuid.UUID) -> bool:
        """Delete a document with its contents, embeddings and search results."""

    @abstractmethod
    def list_contents(self, document_id: uuid.UUID) -> list[ContentItem]:
        pass

    # Embedding operations
    @abstractmethod
    def replace_embeddings(
        self,
        owner_kind: ContentKind,
        owner_id: uuid.UUID,
        rows: Sequence[NewEmbedding],
    ) -> list[uuid.UUID]:
        """
        Atomically replace every embedding of an owner. Readers observe either
        the old set or the new one, never a mix.

        Raises:
            NotFoundError: If the owner does not exist.
            ConcurrentWriteError: If another replace for the owner is running.
        """

    @abstractmethod
    def delete_embeddings(self, owner_kind: ContentKind, owner_id: uuid.UUID) -> int:
        pass

    @abstractmethod
    def list_embeddings(
        self, owner_kind: ContentKind, owner_id: uuid.UUID
    ) -> list[EmbeddingRecord]:
        """Embeddings of an owner ordered by chunk_index."""

    @abstractmethod
    def nearest(
        self,
        query_vector: Sequence[float],
        threshold: float,
        limit: int,
        filters: SearchFilters,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[SearchHit]:
        """
        Chunks with similarity >= threshold, filtered before the limit, ordered
        by similarity desc, chunk_index asc, embedding id asc.
        """

    @abstractmethod
    def full_text(
        self,
        terms: Sequence[str],
        limit: int,
        filters: SearchFilters,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[LexicalHit]:
        """
        Best-matching chunk per document for any of `terms`, with its raw
        ranking score, ordered by score desc then document id. A backend with
        no native score leaves raw_score as None.
        """

    @abstractmethod
    def record_usage(self, embedding_ids: Sequence[uuid.UUID], used_at: datetime) -> None:
        """Increment usage_count and set last_used_at for each embedding."""

    # Search tracking operations
    @abstractmethod
    def create_search(
        self, draft: SearchDraft, results: Sequence[TrackedResult]
    ) -> SearchRecord:
        pass

    @abstractmethod
    def get_search(self, search_id: uuid.UUID) -> Optional[SearchRecord]:
        pass

    @abstractmethod
    def mark_result_clicked(
        self, result_id: uuid.UUID, clicked_at: datetime
    ) -> SearchResultRecord:
        """
        Set clicked on a search result. clicked_at keeps the first click.

        Raises:
            NotFoundError: If the search result does not exist.
        """

    @abstractmethod
    def click_through_rate(self, since: Optional[datetime] = None) -> Optional[float]:
        pass

    @abstractmethod
    def avg_execution_time(self, since: Optional[datetime] = None) -> Optional[float]:
        pass

    @abstractmethod
    def popular_queries(
        self, limit: int, since: Optional[datetime] = None
    ) -> list[PopularQuery]:
        pass

    @abstractmethod
    def delete_orphaned_searches(self) -> int:
        pass

    @abstractmethod
    def delete_stale_searches(self, before: datetime) -> int:
        """Delete searches created before `before` that have no clicked result."""

    def close(self) -> None:
        """Release connections. No-op by default."""
