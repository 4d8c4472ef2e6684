"""
RetrievalEngine: the facade over ingestion, search and search tracking.
"""

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Union

from retrieval_engine.errors import DuplicateLocationError, ValidationError
from retrieval_engine.schemas.content import ContentKind, ExtractedContent, NewContent
from retrieval_engine.schemas.document import DocumentType, NewDocument
from retrieval_engine.schemas.ingestion import (
    AddDocumentResult,
    DuplicateTier,
    Existing,
    Forced,
    ProcessResult,
    ProcessStep,
)
from retrieval_engine.schemas.search import (
    PopularQuery,
    SearchFilters,
    SearchMode,
    SearchOptions,
    SearchResponse,
    SearchResultRecord,
    TrackedResult,
)
from retrieval_engine.services.cache import EmbeddingCache
from retrieval_engine.services.duplicates import DuplicateDetector
from retrieval_engine.services.embedding_store import EmbeddingStore
from retrieval_engine.services.embeddings import EmbeddingProvider, FastEmbedProvider
from retrieval_engine.services.hybrid import HybridCombiner
from retrieval_engine.services.ingestion import ContentProcessor
from retrieval_engine.services.lexical import LexicalIndex
from retrieval_engine.services.ranking import RankingContext, UsageRanker
from retrieval_engine.services.segmenter import ContentSegmenter, check_chunk_params
from retrieval_engine.services.tracker import SearchTracker
from retrieval_engine.settings import Settings, load_settings
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.store.factory import StorageFactory
from retrieval_engine.utils.cancellation import CancellationToken
from retrieval_engine.utils.hashing import ByteSource, content_hash, normalize_text
from retrieval_engine.utils.logging_config import configure_logging, logger
from retrieval_engine.utils.metadata_validator import (
    validate_file_metadata,
    validate_metadata,
)

ExtractedInput = Union[str, ExtractedContent, Mapping[str, Any]]

_KIND_ORDER = (ContentKind.TEXT, ContentKind.IMAGE, ContentKind.AUDIO)
_KIND_DOCUMENT_TYPES = {
    ContentKind.TEXT: DocumentType.TEXT,
    ContentKind.IMAGE: DocumentType.IMAGE,
    ContentKind.AUDIO: DocumentType.AUDIO,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_extracted(
    extracted_text_by_kind: Mapping[Any, ExtractedInput],
) -> dict[ContentKind, ExtractedContent]:
    if not extracted_text_by_kind:
        raise ValidationError("At least one content kind with extracted text is required.")
    result = {}
    for key, value in extracted_text_by_kind.items():
        try:
            kind = ContentKind(key)
        except ValueError as e:
            raise ValidationError(f"Unknown content kind: {key!r}") from e
        if isinstance(value, str):
            value = ExtractedContent(text=value)
        elif not isinstance(value, ExtractedContent):
            value = ExtractedContent.model_validate(value)
        result[kind] = value
    return {kind: result[kind] for kind in _KIND_ORDER if kind in result}


class RetrievalEngine:
    """
    Document ingestion, semantic and hybrid search with usage-aware ranking,
    and search tracking over one storage backend.

    All configuration comes from the Settings object passed in; components
    never read settings on their own.
    """

    def __init__(
        self,
        settings: Settings,
        backend: StorageBackend,
        provider: EmbeddingProvider,
        cache: Optional[EmbeddingCache] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        check_chunk_params(settings.CHUNK_SIZE, settings.CHUNK_OVERLAP)
        self.settings = settings
        self.backend = backend
        self.provider = provider
        self.cache = cache
        self.segmenter = ContentSegmenter(settings.SEGMENTER_STRATEGY)
        self.detector = DuplicateDetector(backend, settings.DUPLICATE_LENGTH_TOLERANCE)
        self.store = EmbeddingStore.from_settings(settings, backend)
        self.ranker = UsageRanker(
            similarity_weight=settings.RANK_WEIGHT_SIMILARITY,
            usage_weight=settings.RANK_WEIGHT_USAGE,
            metadata_weight=settings.RANK_WEIGHT_METADATA,
            recency_decay_days=settings.RECENCY_DECAY_DAYS,
            frequency_saturation=settings.FREQUENCY_SATURATION,
            clock=clock,
        )
        self.lexical = LexicalIndex(backend, settings.LEXICAL_RANKING)
        self.combiner = HybridCombiner(
            settings.HYBRID_SEMANTIC_WEIGHT, settings.HYBRID_TEXT_WEIGHT
        )
        self.tracker = SearchTracker(backend, track_usage=settings.TRACK_USAGE, clock=clock)
        self.processor = ContentProcessor(
            backend, self.store, provider, self.segmenter, cache=cache
        )

    # Ingestion
    def add_document(
        self,
        location: str,
        extracted_text_by_kind: Mapping[Any, ExtractedInput],
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        document_type: Optional[DocumentType] = None,
        title: Optional[str] = None,
        file_metadata: Optional[Mapping[str, Any]] = None,
        byte_source: Optional[ByteSource] = None,
        file_modified_at: Optional[datetime] = None,
        force: bool = False,
    ) -> AddDocumentResult:
        """
        Register a document unless it duplicates a stored one.

        Returns the document id, whether it was a duplicate (and which check
        matched), and the `process_content` steps the scheduler must run for a
        newly created document.

        Raises:
            ValidationError: For a missing location, unknown content kinds or
                metadata that does not fit the document type's schema.
        """
        extracted = _coerce_extracted(extracted_text_by_kind)
        if document_type is None:
            document_type = (
                _KIND_DOCUMENT_TYPES[next(iter(extracted))]
                if len(extracted) == 1
                else DocumentType.MIXED
            )
        try:
            document_type = DocumentType(document_type)
        except ValueError as e:
            raise ValidationError(f"Unknown document type: {document_type!r}") from e
        clean_metadata = validate_metadata(document_type, metadata)
        clean_file_metadata = validate_file_metadata(file_metadata)
        file_hash = byte_source.sha256() if byte_source is not None else clean_file_metadata.get("hash")
        text = "\n\n".join(content.text for content in extracted.values())

        outcome = self.detector.detect(
            location, text, document_type, title=title, file_hash=file_hash, force=force
        )
        if isinstance(outcome, Existing):
            return self._existing(outcome.document_id, outcome.matched_by, location)

        target = outcome.new_location if isinstance(outcome, Forced) else location
        contents = [
            NewContent(
                kind=kind,
                extracted=content,
                embedding_model=self.settings.embedding_model(kind),
                chunk_size=self.settings.CHUNK_SIZE,
                chunk_overlap=self.settings.CHUNK_OVERLAP,
            )
            for kind, content in extracted.items()
        ]
        document = NewDocument(
            location=target,
            title=title,
            document_type=document_type,
            file_modified_at=file_modified_at,
            metadata=clean_metadata,
            file_metadata=clean_file_metadata,
            content_hash=content_hash(text),
            file_hash=file_hash,
            content_length=len(normalize_text(text)),
        )
        try:
            record = self.backend.create_document(document, contents)
        except DuplicateLocationError:
            # Lost a race with a concurrent add of the same location.
            document_id = self.backend.find_document_id_by_location(target)
            if document_id is None:
                raise
            return self._existing(document_id, DuplicateTier.LOCATION, target)

        logger.info(f"Registered document {record.id} at {record.location}")
        return AddDocumentResult(
            document_id=record.id,
            duplicate=False,
            forced=isinstance(outcome, Forced),
            location=record.location,
            next_steps=[ProcessStep(document_id=record.id)],
        )

    def _existing(
        self, document_id: uuid.UUID, matched_by: DuplicateTier, location: str
    ) -> AddDocumentResult:
        stored = self.backend.get_document(document_id)
        return AddDocumentResult(
            document_id=document_id,
            duplicate=True,
            location=stored.location if stored else location,
            matched_by=matched_by,
        )

    def process_content(self, document_id: uuid.UUID) -> ProcessResult:
        return self.processor.process_content(document_id)

    def delete_document(self, document_id: uuid.UUID) -> bool:
        return self.backend.delete_document(document_id)

    # Search
    def _query_model(self, filters: SearchFilters) -> str:
        kinds = filters.content_kinds or list(ContentKind)
        models = {self.settings.embedding_model(kind) for kind in kinds}
        if len(models) > 1:
            raise ValidationError(
                "The targeted content kinds use different embedding models; "
                "filter the search by content kind."
            )
        return models.pop()

    def _embed_query(self, query: str, filters: SearchFilters) -> list[float]:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("A non-empty query is required.")
        return self.provider.embed(query, self._query_model(filters))

    def _track(
        self,
        query: str,
        query_vector: list[float],
        mode: SearchMode,
        results: list[TrackedResult],
        options: SearchOptions,
        execution_time: float,
    ) -> Optional[uuid.UUID]:
        if not (self.settings.TRACK_SEARCHES and options.track):
            return None
        record = self.tracker.record(
            query,
            query_vector,
            mode,
            results,
            filters=options.filters.model_dump(mode="json", exclude_none=True),
            options=options.model_dump(mode="json", exclude={"filters"}, exclude_none=True),
            execution_time=execution_time,
        )
        return record.id

    def search(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SearchResponse:
        """Semantic search: nearest chunks re-ranked by usage and metadata."""
        started = time.perf_counter()
        options = options or SearchOptions()
        query_vector = self._embed_query(query, options.filters)
        hits = self.store.search(
            query_vector,
            threshold=options.threshold,
            limit=options.limit,
            filters=options.filters,
            cancel_token=cancel_token,
        )
        ranked = self.ranker.rank(
            hits,
            RankingContext(classification=options.boost_classification, tags=options.boost_tags),
        )
        execution_time = time.perf_counter() - started
        search_id = self._track(
            query,
            query_vector,
            SearchMode.SEMANTIC,
            [TrackedResult(embedding_id=h.embedding_id, similarity=h.similarity) for h in ranked],
            options,
            execution_time,
        )
        return SearchResponse(
            query=query,
            mode=SearchMode.SEMANTIC,
            results=ranked,
            search_id=search_id,
            execution_time=execution_time,
        )

    def hybrid_search(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SearchResponse:
        """Semantic and lexical search combined per document by weighted score."""
        started = time.perf_counter()
        options = options or SearchOptions()
        limit = options.limit or self.settings.MAX_SEARCH_RESULTS
        candidates = limit * max(1, self.settings.HYBRID_CANDIDATE_MULTIPLIER)
        query_vector = self._embed_query(query, options.filters)
        hits = self.store.search(
            query_vector,
            threshold=options.threshold,
            limit=candidates,
            filters=options.filters,
            cancel_token=cancel_token,
        )
        ranked = self.ranker.rank(
            hits,
            RankingContext(classification=options.boost_classification, tags=options.boost_tags),
        )
        lexical = self.lexical.lexical_search(query, candidates, options.filters, cancel_token)
        combined = self.combiner.combine(
            ranked,
            lexical,
            limit,
            semantic_weight=options.semantic_weight,
            text_weight=options.text_weight,
        )
        execution_time = time.perf_counter() - started
        search_id = self._track(
            query,
            query_vector,
            SearchMode.HYBRID,
            [TrackedResult(embedding_id=h.embedding_id, similarity=h.similarity) for h in combined],
            options,
            execution_time,
        )
        return SearchResponse(
            query=query,
            mode=SearchMode.HYBRID,
            results=combined,
            search_id=search_id,
            execution_time=execution_time,
        )

    # Tracking and analytics
    def mark_result_clicked(self, result_id: uuid.UUID) -> SearchResultRecord:
        return self.tracker.mark_clicked(result_id)

    def click_through_rate(self, since: Optional[datetime] = None) -> Optional[float]:
        return self.tracker.click_through_rate(since)

    def avg_execution_time(self, since: Optional[datetime] = None) -> Optional[float]:
        return self.tracker.avg_execution_time(since)

    def popular_queries(
        self, limit: int = 10, since: Optional[datetime] = None
    ) -> list[PopularQuery]:
        return self.tracker.popular(limit, since)

    def cleanup_orphaned_searches(self) -> int:
        return self.tracker.cleanup_orphaned()

    def cleanup_searches_older_than(self, age: timedelta) -> int:
        return self.tracker.cleanup_older_than(age)

    def close(self) -> None:
        self.backend.close()
        if self.cache is not None:
            self.cache.close()


def build_engine(
    settings: Optional[Settings] = None,
    provider: Optional[EmbeddingProvider] = None,
    backend: Optional[StorageBackend] = None,
    cache: Optional[EmbeddingCache] = None,
) -> RetrievalEngine:
    """
    Wire an engine from settings. Anything not passed in is built from the
    settings: the storage backend from STORAGE_BACKEND, the embedding cache
    from REDIS_URL (none when unset) and a FastEmbedProvider.
    """
    settings = settings or load_settings()
    configure_logging(settings)
    if backend is None:
        backend = StorageFactory.create(settings)
    if cache is None and settings.REDIS_URL is not None:
        cache = EmbeddingCache.from_url(
            str(settings.REDIS_URL), settings.EMBEDDING_CACHE_TTL_SECONDS
        )
    if provider is None:
        provider = FastEmbedProvider()
    return RetrievalEngine(settings, backend, provider, cache=cache)
