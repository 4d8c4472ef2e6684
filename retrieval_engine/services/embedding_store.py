"""
Embedding store: validated writes and similarity search over the storage backend.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Mapping, Optional, Sequence

from retrieval_engine.errors import InvalidVectorDimension, ValidationError
from retrieval_engine.schemas.chunk import ChunkVector, EmbeddingRecord, NewEmbedding
from retrieval_engine.schemas.content import ContentKind
from retrieval_engine.schemas.search import SearchFilters, SearchHit
from retrieval_engine.settings import Settings
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.utils.cancellation import CancellationToken
from retrieval_engine.utils.locks import OwnerClaims
from retrieval_engine.utils.logging_config import logger
from retrieval_engine.utils.vectors import is_finite


class EmbeddingStore:
    def __init__(
        self,
        backend: StorageBackend,
        dimensions: Mapping[ContentKind, int],
        default_threshold: float = 0.3,
        default_limit: int = 10,
    ):
        self.backend = backend
        self.dimensions = dict(dimensions)
        self.default_threshold = default_threshold
        self.default_limit = default_limit
        self._claims = OwnerClaims()

    @classmethod
    def from_settings(cls, settings: Settings, backend: StorageBackend) -> "EmbeddingStore":
        return cls(
            backend,
            {kind: settings.embedding_dim(kind) for kind in ContentKind},
            default_threshold=settings.SIMILARITY_THRESHOLD,
            default_limit=settings.MAX_SEARCH_RESULTS,
        )

    @contextmanager
    def claim(self, owner_kind: ContentKind, owner_id: uuid.UUID) -> Iterator[None]:
        """
        Hold the write claim for an owner, e.g. across embedding generation and
        the following upsert. Raises ConcurrentWriteError if another thread
        holds it.
        """
        with self._claims.claim(owner_kind, owner_id):
            yield

    def _check_vector(self, vector: Sequence[float], kind: ContentKind) -> None:
        expected = self.dimensions[kind]
        if len(vector) != expected:
            raise InvalidVectorDimension(expected, len(vector), kind)
        if not is_finite(vector):
            raise ValidationError("Vectors must contain only finite values.")

    def upsert(
        self,
        owner_kind: ContentKind,
        owner_id: uuid.UUID,
        chunks: Sequence[ChunkVector],
        embedding_model: Optional[str] = None,
    ) -> list[uuid.UUID]:
        """
        Replace every embedding of an owner with `chunks`, in order.

        The whole batch is validated first; one bad vector fails the upsert and
        the previous set stays in place.

        Raises:
            InvalidVectorDimension: If a vector has the wrong length.
            ValidationError: If a vector has non-finite values or empty content.
            ConcurrentWriteError: If another write for the owner is in flight.
        """
        rows = []
        for chunk_index, chunk in enumerate(chunks):
            self._check_vector(chunk.vector, owner_kind)
            if not chunk.content:
                raise ValidationError(f"Chunk {chunk_index} has no content.")
            rows.append(
                NewEmbedding(
                    chunk_index=chunk_index,
                    content=chunk.content,
                    vector=chunk.vector,
                    char_start=chunk.char_start,
                    char_end=chunk.char_end,
                    embedding_model=embedding_model,
                )
            )
        with self.claim(owner_kind, owner_id):
            ids = self.backend.replace_embeddings(owner_kind, owner_id, rows)
        logger.info(f"Stored {len(ids)} embeddings for {owner_kind.value}:{owner_id}")
        return ids

    def search(
        self,
        query_vector: Sequence[float],
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        filters: Optional[SearchFilters] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[SearchHit]:
        """
        Chunks whose similarity to `query_vector` is at least `threshold`,
        most similar first.

        Raises:
            InvalidVectorDimension: If the query length differs from the
                dimension of any targeted content kind.
            Cancelled: If `cancel_token` fires before the scan completes.
        """
        filters = filters or SearchFilters()
        threshold = self.default_threshold if threshold is None else threshold
        limit = self.default_limit if limit is None else limit
        if not -1.0 <= threshold <= 1.0:
            raise ValidationError(f"threshold must be within [-1, 1], got {threshold}")
        if limit < 1:
            raise ValidationError(f"limit must be positive, got {limit}")
        for kind in filters.content_kinds or list(ContentKind):
            self._check_vector(query_vector, kind)
        return self.backend.nearest(query_vector, threshold, limit, filters, cancel_token)

    def record_usage(
        self, embedding_ids: Sequence[uuid.UUID], used_at: Optional[datetime] = None
    ) -> None:
        if embedding_ids:
            self.backend.record_usage(embedding_ids, used_at or datetime.now(timezone.utc))

    def delete_owner(self, owner_kind: ContentKind, owner_id: uuid.UUID) -> int:
        with self.claim(owner_kind, owner_id):
            return self.backend.delete_embeddings(owner_kind, owner_id)

    def list_owner(self, owner_kind: ContentKind, owner_id: uuid.UUID) -> list[EmbeddingRecord]:
        return self.backend.list_embeddings(owner_kind, owner_id)
