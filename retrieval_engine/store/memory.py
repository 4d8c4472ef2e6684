"""
In-memory storage backend.
Keeps every entity in Python dicts and answers nearest-neighbour queries with a
numpy brute-force scan and full-text queries with BM25. Suitable for tests,
embedded use and small corpora; data is lost when the process exits.

All state sits behind one writer-preferring reader-writer lock. Writers build
a complete replacement before taking the write lock, so readers only ever see
the state before or after a write.
"""

import threading
import uuid
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import numpy as np
from rank_bm25 import BM25Plus
from uuid_extensions import uuid7

from retrieval_engine.errors import DuplicateLocationError, NotFoundError
from retrieval_engine.schemas.chunk import EmbeddingRecord, NewEmbedding
from retrieval_engine.schemas.content import (
    AudioItem,
    ContentItem,
    ContentKind,
    ImageItem,
    NewContent,
    TextItem,
)
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
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.utils.cancellation import CancellationToken, check
from retrieval_engine.utils.hashing import location_basename
from retrieval_engine.utils.locks import OwnerClaims, ReadWriteLock
from retrieval_engine.utils.text import tokenize
from retrieval_engine.utils.vectors import cosine_similarities

_SCAN_BATCH = 1024


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_content(document_id: uuid.UUID, new: NewContent) -> ContentItem:
    common = dict(
        id=uuid7(),
        document_id=document_id,
        embedding_model=new.embedding_model,
        chunk_size=new.chunk_size,
        chunk_overlap=new.chunk_overlap,
    )
    extracted = new.extracted
    if new.kind is ContentKind.IMAGE:
        return ImageItem(
            description=extracted.text,
            width=extracted.width,
            height=extracted.height,
            image_format=extracted.image_format,
            **common,
        )
    if new.kind is ContentKind.AUDIO:
        return AudioItem(
            transcript=extracted.text,
            duration_seconds=extracted.duration_seconds,
            sample_rate=extracted.sample_rate,
            language=extracted.language,
            **common,
        )
    return TextItem(body=extracted.text, **common)


def matches_filters(
    record: EmbeddingRecord, document: DocumentRecord, filters: SearchFilters
) -> bool:
    if filters.content_kinds and record.owner_kind not in filters.content_kinds:
        return False
    if filters.document_types and document.document_type not in filters.document_types:
        return False
    if filters.document_ids and document.id not in filters.document_ids:
        return False
    if filters.classification is not None:
        if document.metadata.get("classification") != filters.classification:
            return False
    if filters.tags:
        wanted = {tag.casefold() for tag in filters.tags}
        present = {tag.casefold() for tag in document.metadata.get("tags", [])}
        if not wanted & present:
            return False
    if filters.created_after is not None and document.created_at < filters.created_after:
        return False
    if filters.created_before is not None and document.created_at > filters.created_before:
        return False
    return True


class MemoryBackend(StorageBackend):
    """
    In-memory storage backend using Python dictionaries.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._lock = ReadWriteLock()
        self._claims = OwnerClaims()

        self._documents: dict[uuid.UUID, DocumentRecord] = {}
        self._location_index: dict[str, uuid.UUID] = {}
        self._file_hash_index: dict[str, uuid.UUID] = {}
        self._content_hash_index: dict[str, uuid.UUID] = {}

        self._contents: dict[tuple[ContentKind, uuid.UUID], ContentItem] = {}
        self._document_contents: dict[uuid.UUID, list[tuple[ContentKind, uuid.UUID]]] = {}

        self._embeddings: dict[uuid.UUID, EmbeddingRecord] = {}
        self._owner_embeddings: dict[tuple[ContentKind, uuid.UUID], list[uuid.UUID]] = {}

        self._searches: dict[uuid.UUID, SearchRecord] = {}
        self._results: dict[uuid.UUID, SearchResultRecord] = {}
        self._search_results: dict[uuid.UUID, list[uuid.UUID]] = {}

        # Derived indices, rebuilt lazily after each embedding write.
        self._version = 0
        self._index_lock = threading.Lock()
        self._vector_cache: Optional[tuple[int, dict]] = None
        self._lexical_cache: Optional[tuple[int, list, Optional[BM25Plus]]] = None

    # Document operations
    def create_document(
        self, document: NewDocument, contents: Sequence[NewContent]
    ) -> DocumentRecord:
        now = self._clock()
        record = DocumentRecord(
            id=uuid7(),
            status=DocumentStatus.PENDING,
            created_at=now,
            updated_at=now,
            **document.model_dump(),
        )
        items = [_build_content(record.id, new) for new in contents]
        with self._lock.write():
            if document.location in self._location_index:
                raise DuplicateLocationError(
                    f"A document already exists at location {document.location!r}"
                )
            self._documents[record.id] = record
            self._location_index[record.location] = record.id
            if record.file_hash:
                self._file_hash_index.setdefault(record.file_hash, record.id)
            self._content_hash_index.setdefault(record.content_hash, record.id)
            keys = []
            for item in items:
                self._contents[item.owner] = item
                keys.append(item.owner)
            self._document_contents[record.id] = keys
        return record.model_copy(deep=True)

    def get_document(self, document_id: uuid.UUID) -> Optional[DocumentRecord]:
        with self._lock.read():
            record = self._documents.get(document_id)
            return record.model_copy(deep=True) if record else None

    def find_document_id_by_location(self, location: str) -> Optional[uuid.UUID]:
        with self._lock.read():
            return self._location_index.get(location)

    def find_document_id_by_file_hash(self, file_hash: str) -> Optional[uuid.UUID]:
        with self._lock.read():
            return self._file_hash_index.get(file_hash)

    def find_document_id_by_content_hash(self, content_hash: str) -> Optional[uuid.UUID]:
        with self._lock.read():
            return self._content_hash_index.get(content_hash)

    def find_similarity_candidates(
        self, basename: str, document_type: DocumentType, title: Optional[str]
    ) -> list[SimilarityCandidate]:
        with self._lock.read():
            matches = [
                doc
                for doc in self._documents.values()
                if doc.document_type == document_type
                and location_basename(doc.location) == basename
                and (title is None or doc.title == title)
            ]
        matches.sort(key=lambda doc: (doc.created_at, doc.id))
        return [
            SimilarityCandidate(
                document_id=doc.id, location=doc.location, content_length=doc.content_length
            )
            for doc in matches
        ]

    def set_document_status(self, document_id: uuid.UUID, status: DocumentStatus) -> None:
        with self._lock.write():
            record = self._documents.get(document_id)
            if record is None:
                raise NotFoundError(f"Document {document_id} not found")
            self._documents[document_id] = record.model_copy(
                update={"status": status, "updated_at": self._clock()}
            )

    def delete_document(self, document_id: uuid.UUID) -> bool:
        with self._lock.write():
            record = self._documents.pop(document_id, None)
            if record is None:
                return False
            self._location_index.pop(record.location, None)
            self._drop_index_entry(self._file_hash_index, "file_hash", record)
            self._drop_index_entry(self._content_hash_index, "content_hash", record)
            for owner in self._document_contents.pop(document_id, []):
                self._contents.pop(owner, None)
                self._remove_owner_embeddings(owner)
            self._version += 1
        return True

    def _drop_index_entry(self, index: dict, attr: str, record: DocumentRecord) -> None:
        key = getattr(record, attr)
        if key is None or index.get(key) != record.id:
            return
        del index[key]
        # Another document with the same hash takes over the slot.
        survivors = [doc for doc in self._documents.values() if getattr(doc, attr) == key]
        if survivors:
            index[key] = min(survivors, key=lambda doc: (doc.created_at, doc.id)).id

    def list_contents(self, document_id: uuid.UUID) -> list[ContentItem]:
        with self._lock.read():
            return [
                self._contents[owner]
                for owner in self._document_contents.get(document_id, [])
            ]

    # Embedding operations
    def replace_embeddings(
        self,
        owner_kind: ContentKind,
        owner_id: uuid.UUID,
        rows: Sequence[NewEmbedding],
    ) -> list[uuid.UUID]:
        owner = (owner_kind, owner_id)
        with self._claims.claim(owner_kind, owner_id):
            with self._lock.read():
                content = self._contents.get(owner)
            if content is None:
                raise NotFoundError(f"No {owner_kind.value} content with id {owner_id}")
            now = self._clock()
            records = [
                EmbeddingRecord(
                    id=uuid7(),
                    owner_kind=owner_kind,
                    owner_id=owner_id,
                    document_id=content.document_id,
                    chunk_index=row.chunk_index,
                    content=row.content,
                    vector=list(row.vector),
                    char_start=row.char_start,
                    char_end=row.char_end,
                    embedding_model=row.embedding_model,
                    created_at=now,
                )
                for row in rows
            ]
            with self._lock.write():
                if owner not in self._contents:
                    raise NotFoundError(f"No {owner_kind.value} content with id {owner_id}")
                self._remove_owner_embeddings(owner)
                for record in records:
                    self._embeddings[record.id] = record
                self._owner_embeddings[owner] = [record.id for record in records]
                self._version += 1
        return [record.id for record in records]

    def _remove_owner_embeddings(self, owner) -> int:
        removed = self._owner_embeddings.pop(owner, [])
        for embedding_id in removed:
            self._embeddings.pop(embedding_id, None)
        if removed:
            gone = set(removed)
            for result_id, result in list(self._results.items()):
                if result.embedding_id in gone:
                    self._delete_result(result_id)
        return len(removed)

    def _delete_result(self, result_id: uuid.UUID) -> None:
        result = self._results.pop(result_id)
        siblings = self._search_results.get(result.search_id)
        if siblings is not None:
            siblings.remove(result_id)

    def delete_embeddings(self, owner_kind: ContentKind, owner_id: uuid.UUID) -> int:
        with self._claims.claim(owner_kind, owner_id):
            with self._lock.write():
                removed = self._remove_owner_embeddings((owner_kind, owner_id))
                self._version += 1
        return removed

    def list_embeddings(
        self, owner_kind: ContentKind, owner_id: uuid.UUID
    ) -> list[EmbeddingRecord]:
        with self._lock.read():
            ids = self._owner_embeddings.get((owner_kind, owner_id), [])
            records = [self._embeddings[embedding_id] for embedding_id in ids]
        return sorted(records, key=lambda record: record.chunk_index)

    def _vector_index(self) -> dict[int, tuple[list[uuid.UUID], np.ndarray]]:
        """Per-dimension (ids, matrix) pairs for the current version."""
        with self._index_lock:
            cached = self._vector_cache
            if cached is not None and cached[0] == self._version:
                return cached[1]
            grouped: dict[int, list[EmbeddingRecord]] = defaultdict(list)
            for record in self._embeddings.values():
                grouped[len(record.vector)].append(record)
            index = {
                dim: (
                    [record.id for record in records],
                    np.array([record.vector for record in records], dtype=np.float64),
                )
                for dim, records in grouped.items()
            }
            self._vector_cache = (self._version, index)
            return index

    def nearest(
        self,
        query_vector: Sequence[float],
        threshold: float,
        limit: int,
        filters: SearchFilters,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[SearchHit]:
        check(cancel_token)
        query = np.asarray(query_vector, dtype=np.float64)
        candidates = []
        with self._lock.read():
            ids, matrix = self._vector_index().get(len(query), ([], np.zeros((0, 0))))
            for start in range(0, len(ids), _SCAN_BATCH):
                check(cancel_token)
                sims = cosine_similarities(matrix[start : start + _SCAN_BATCH], query)
                for embedding_id, similarity in zip(ids[start : start + _SCAN_BATCH], sims):
                    if similarity < threshold:
                        continue
                    record = self._embeddings[embedding_id]
                    document = self._documents[record.document_id]
                    if matches_filters(record, document, filters):
                        candidates.append((float(similarity), record, document))
            candidates.sort(key=lambda c: (-c[0], c[1].chunk_index, c[1].id))
            hits = [
                self._to_hit(similarity, record, document)
                for similarity, record, document in candidates[:limit]
            ]
        check(cancel_token)
        return hits

    @staticmethod
    def _to_hit(similarity: float, record: EmbeddingRecord, document: DocumentRecord) -> SearchHit:
        return SearchHit(
            embedding_id=record.id,
            similarity=similarity,
            owner_kind=record.owner_kind,
            owner_id=record.owner_id,
            chunk_index=record.chunk_index,
            content=record.content,
            document_id=record.document_id,
            usage_count=record.usage_count,
            last_used_at=record.last_used_at,
            document_created_at=document.created_at,
            classification=document.metadata.get("classification"),
            tags=list(document.metadata.get("tags", [])),
        )

    def _lexical_index(self) -> tuple[list[tuple[uuid.UUID, set]], Optional[BM25Plus]]:
        with self._index_lock:
            cached = self._lexical_cache
            if cached is not None and cached[0] == self._version:
                return cached[1], cached[2]
            ids = []
            corpus = []
            for record in self._embeddings.values():
                tokens = tokenize(record.content)
                ids.append((record.id, set(tokens)))
                corpus.append(tokens)
            bm25 = BM25Plus(corpus) if corpus else None
            self._lexical_cache = (self._version, ids, bm25)
            return ids, bm25

    def full_text(
        self,
        terms: Sequence[str],
        limit: int,
        filters: SearchFilters,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[LexicalHit]:
        check(cancel_token)
        query_terms = [term.casefold() for term in terms]
        wanted = set(query_terms)
        best: dict[uuid.UUID, tuple[float, EmbeddingRecord]] = {}
        with self._lock.read():
            entries, bm25 = self._lexical_index()
            if bm25 is None or not wanted:
                return []
            scores = bm25.get_scores(query_terms)
            for position, ((embedding_id, tokens), score) in enumerate(zip(entries, scores)):
                if position % _SCAN_BATCH == 0:
                    check(cancel_token)
                if not tokens & wanted:
                    continue
                record = self._embeddings[embedding_id]
                document = self._documents[record.document_id]
                if not matches_filters(record, document, filters):
                    continue
                current = best.get(record.document_id)
                key = (-float(score), record.chunk_index, record.id)
                if current is None or key < (-current[0], current[1].chunk_index, current[1].id):
                    best[record.document_id] = (float(score), record)
        ranked = sorted(best.items(), key=lambda item: (-item[1][0], item[0]))
        hits = [
            LexicalHit(
                document_id=document_id,
                raw_score=score,
                embedding_id=record.id,
                owner_kind=record.owner_kind,
                owner_id=record.owner_id,
                chunk_index=record.chunk_index,
                content=record.content,
            )
            for document_id, (score, record) in ranked[:limit]
        ]
        check(cancel_token)
        return hits

    def record_usage(self, embedding_ids: Sequence[uuid.UUID], used_at: datetime) -> None:
        counts = Counter(embedding_ids)
        with self._lock.write():
            for embedding_id, times in counts.items():
                record = self._embeddings.get(embedding_id)
                if record is None:
                    continue
                self._embeddings[embedding_id] = record.model_copy(
                    update={
                        "usage_count": record.usage_count + times,
                        "last_used_at": used_at,
                    }
                )

    # Search tracking operations
    def create_search(
        self, draft: SearchDraft, results: Sequence[TrackedResult]
    ) -> SearchRecord:
        search_id = uuid7()
        record = SearchRecord(
            id=search_id,
            query=draft.query,
            search_mode=draft.search_mode,
            result_count=draft.result_count,
            min_similarity=draft.min_similarity,
            max_similarity=draft.max_similarity,
            avg_similarity=draft.avg_similarity,
            execution_time=draft.execution_time,
            filters=draft.filters,
            options=draft.options,
            created_at=self._clock(),
        )
        result_records = [
            SearchResultRecord(
                id=uuid7(),
                search_id=search_id,
                embedding_id=result.embedding_id,
                rank=rank,
                similarity_score=result.similarity,
            )
            for rank, result in enumerate(results, start=1)
        ]
        with self._lock.write():
            missing = [r.embedding_id for r in result_records if r.embedding_id not in self._embeddings]
            if missing:
                raise NotFoundError(f"Unknown embedding ids in search results: {missing}")
            self._searches[search_id] = record
            self._search_results[search_id] = [r.id for r in result_records]
            for result in result_records:
                self._results[result.id] = result
        return record.model_copy(update={"results": result_records})

    def get_search(self, search_id: uuid.UUID) -> Optional[SearchRecord]:
        with self._lock.read():
            record = self._searches.get(search_id)
            if record is None:
                return None
            results = [self._results[rid] for rid in self._search_results.get(search_id, [])]
        return record.model_copy(update={"results": results})

    def mark_result_clicked(
        self, result_id: uuid.UUID, clicked_at: datetime
    ) -> SearchResultRecord:
        with self._lock.write():
            result = self._results.get(result_id)
            if result is None:
                raise NotFoundError(f"Search result {result_id} not found")
            if not result.clicked:
                result = result.model_copy(update={"clicked": True, "clicked_at": clicked_at})
                self._results[result_id] = result
            return result

    def _searches_since(self, since: Optional[datetime]) -> list[SearchRecord]:
        return [
            search
            for search in self._searches.values()
            if since is None or search.created_at >= since
        ]

    def click_through_rate(self, since: Optional[datetime] = None) -> Optional[float]:
        with self._lock.read():
            with_results = 0
            with_clicks = 0
            for search in self._searches_since(since):
                result_ids = self._search_results.get(search.id, [])
                if not result_ids:
                    continue
                with_results += 1
                if any(self._results[rid].clicked for rid in result_ids):
                    with_clicks += 1
        if not with_results:
            return None
        return with_clicks / with_results

    def avg_execution_time(self, since: Optional[datetime] = None) -> Optional[float]:
        with self._lock.read():
            times = [search.execution_time for search in self._searches_since(since)]
        if not times:
            return None
        return sum(times) / len(times)

    def popular_queries(
        self, limit: int, since: Optional[datetime] = None
    ) -> list[PopularQuery]:
        with self._lock.read():
            counts = Counter(
                " ".join(search.query.casefold().split())
                for search in self._searches_since(since)
            )
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [PopularQuery(query=query, count=count) for query, count in ranked[:limit]]

    def _delete_search(self, search_id: uuid.UUID) -> None:
        self._searches.pop(search_id, None)
        for result_id in self._search_results.pop(search_id, []):
            self._results.pop(result_id, None)

    def delete_orphaned_searches(self) -> int:
        with self._lock.write():
            orphaned = [sid for sid in self._searches if not self._search_results.get(sid)]
            for search_id in orphaned:
                self._delete_search(search_id)
        return len(orphaned)

    def delete_stale_searches(self, before: datetime) -> int:
        with self._lock.write():
            stale = [
                search.id
                for search in self._searches.values()
                if search.created_at < before
                and not any(
                    self._results[rid].clicked
                    for rid in self._search_results.get(search.id, [])
                )
            ]
            for search_id in stale:
                self._delete_search(search_id)
        return len(stale)
