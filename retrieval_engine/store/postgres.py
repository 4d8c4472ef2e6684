"""
PostgreSQL storage backend.
Persists documents, contents, embeddings and searches with the SQLAlchemy ORM.
Nearest-neighbour queries use pgvector's cosine distance (served by the HNSW
index on `embeddings.embedding`); full-text queries use the generated
`content_tsv` column and its GIN index.
"""

import re
import uuid
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Sequence

from sqlalchemy import Select, and_, delete, exists, func, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from retrieval_engine.config.db import session_scope
from retrieval_engine.errors import (
    Cancelled,
    ConcurrentWriteError,
    DuplicateLocationError,
    NotFoundError,
    StoreError,
)
from retrieval_engine.models import (
    CONTENT_MODELS,
    TEXT_SEARCH_CONFIG,
    Document,
    Embedding,
    Search,
    SearchResult,
)
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
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.utils.cancellation import CancellationToken, check
from retrieval_engine.utils.hashing import location_basename
from retrieval_engine.utils.logging_config import logger

# SQLSTATE for query_canceled, raised when statement_timeout fires.
QUERY_CANCELED = "57014"

# Bounds of hnsw.ef_search; pgvector defaults to 40.
EF_SEARCH_DEFAULT = 40
EF_SEARCH_MAX = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def filter_clauses(filters: SearchFilters) -> list:
    """WHERE clauses for a query joining embeddings to documents."""
    clauses = []
    if filters.content_kinds:
        clauses.append(Embedding.owner_kind.in_(filters.content_kinds))
    if filters.document_types:
        clauses.append(Document.document_type.in_(filters.document_types))
    if filters.document_ids:
        clauses.append(Embedding.document_id.in_(filters.document_ids))
    if filters.classification is not None:
        clauses.append(
            Document.doc_metadata["classification"].astext == filters.classification
        )
    if filters.tags:
        clauses.append(
            text(
                "EXISTS (SELECT 1 FROM jsonb_array_elements_text("
                "COALESCE(documents.metadata -> 'tags', '[]'::jsonb)) AS tag "
                "WHERE lower(tag) = ANY(:filter_tags))"
            ).bindparams(filter_tags=[tag.casefold() for tag in filters.tags])
        )
    if filters.created_after is not None:
        clauses.append(Document.created_at >= filters.created_after)
    if filters.created_before is not None:
        clauses.append(Document.created_at <= filters.created_before)
    return clauses


def build_nearest_statement(
    query_vector: Sequence[float], threshold: float, limit: int, filters: SearchFilters
) -> Select:
    distance = Embedding.embedding.cosine_distance(list(query_vector))
    return (
        select(
            Embedding.id,
            Embedding.owner_kind,
            Embedding.owner_id,
            Embedding.chunk_index,
            Embedding.content,
            Embedding.document_id,
            Embedding.usage_count,
            Embedding.last_used_at,
            Document.created_at.label("document_created_at"),
            Document.doc_metadata,
            (1 - distance).label("similarity"),
        )
        .join(Document, Document.id == Embedding.document_id)
        .where(distance <= 1 - threshold, *filter_clauses(filters))
        .order_by(distance, Embedding.chunk_index, Embedding.id)
        .limit(limit)
    )


def build_scan_settings(limit: int, iterative: bool) -> list:
    """
    Transaction-local HNSW settings for a nearest query. The index hands back at
    most ef_search candidates before the WHERE filters run, so ef_search is raised
    to the limit and, where supported (pgvector 0.8+), the scan keeps going in
    distance order until the limit is filled.
    """
    ef_search = min(max(limit, EF_SEARCH_DEFAULT), EF_SEARCH_MAX)
    statements = [
        text("SELECT set_config('hnsw.ef_search', :ef_search, true)").bindparams(
            ef_search=str(ef_search)
        )
    ]
    if iterative:
        statements.append(
            text("SELECT set_config('hnsw.iterative_scan', 'strict_order', true)")
        )
    return statements


def parse_version(version: Optional[str]) -> tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version or "")[:2])


def build_full_text_statement(
    terms: Sequence[str], limit: int, filters: SearchFilters
) -> Select:
    """Best chunk per document for any of `terms`, ranked by raw ts_rank."""
    tsquery = None
    for term in terms:
        part = func.plainto_tsquery(TEXT_SEARCH_CONFIG, term)
        tsquery = part if tsquery is None else tsquery.op("||")(part)
    rank = func.ts_rank(Embedding.content_tsv, tsquery)
    position = func.row_number().over(
        partition_by=Embedding.document_id,
        order_by=(rank.desc(), Embedding.chunk_index, Embedding.id),
    )
    ranked = (
        select(
            Embedding.id,
            Embedding.owner_kind,
            Embedding.owner_id,
            Embedding.chunk_index,
            Embedding.content,
            Embedding.document_id,
            rank.label("rank"),
            position.label("position"),
        )
        .join(Document, Document.id == Embedding.document_id)
        .where(Embedding.content_tsv.op("@@")(tsquery), *filter_clauses(filters))
        .subquery("ranked")
    )
    return (
        select(ranked)
        .where(ranked.c.position == 1)
        .order_by(ranked.c.rank.desc(), ranked.c.document_id)
        .limit(limit)
    )


def _document_record(document: Document) -> DocumentRecord:
    return DocumentRecord(
        id=document.id,
        location=document.location,
        title=document.title,
        document_type=document.document_type,
        status=document.status,
        file_modified_at=document.file_modified_at,
        metadata=document.doc_metadata or {},
        file_metadata=document.file_metadata or {},
        content_hash=document.content_hash,
        file_hash=document.file_hash,
        content_length=document.content_length,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


def _embedding_record(embedding: Embedding) -> EmbeddingRecord:
    return EmbeddingRecord(
        id=embedding.id,
        owner_kind=embedding.owner_kind,
        owner_id=embedding.owner_id,
        document_id=embedding.document_id,
        chunk_index=embedding.chunk_index,
        content=embedding.content,
        vector=[float(value) for value in embedding.embedding],
        char_start=embedding.char_start,
        char_end=embedding.char_end,
        embedding_model=embedding.embedding_model,
        usage_count=embedding.usage_count,
        last_used_at=embedding.last_used_at,
        created_at=embedding.created_at,
    )


def _content_row(document_id: uuid.UUID, new: NewContent):
    model = CONTENT_MODELS[new.kind]
    extracted = new.extracted
    common = dict(
        document_id=document_id,
        embedding_model=new.embedding_model,
        chunk_size=new.chunk_size,
        chunk_overlap=new.chunk_overlap,
    )
    if new.kind is ContentKind.IMAGE:
        return model(
            description=extracted.text,
            width=extracted.width,
            height=extracted.height,
            image_format=extracted.image_format,
            **common,
        )
    if new.kind is ContentKind.AUDIO:
        return model(
            transcript=extracted.text,
            duration_seconds=extracted.duration_seconds,
            sample_rate=extracted.sample_rate,
            language=extracted.language,
            **common,
        )
    return model(body=extracted.text, **common)


class PostgresBackend(StorageBackend):
    """
    Storage backend on PostgreSQL with the pgvector extension.

    Every public method runs in its own transaction. Readers rely on MVCC
    snapshots, so a replace-set is visible either entirely or not at all.
    Writes to one embedding owner are serialized with a transaction-scoped
    advisory lock; a competing writer fails fast with ConcurrentWriteError.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Callable[[], datetime] = _utcnow,
        engine=None,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._engine = engine
        self._iterative_scan: Optional[bool] = None

    @contextmanager
    def _session(
        self, cancel_token: Optional[CancellationToken] = None
    ) -> Iterator[Session]:
        check(cancel_token)
        try:
            with session_scope(self._session_factory) as db:
                remaining = cancel_token.remaining() if cancel_token else None
                if remaining is not None:
                    timeout_ms = max(1, int(remaining * 1000))
                    db.execute(
                        text("SELECT set_config('statement_timeout', :ms, true)"),
                        {"ms": str(timeout_ms)},
                    )
                yield db
        except OperationalError as e:
            if getattr(e.orig, "pgcode", None) == QUERY_CANCELED:
                raise Cancelled("The query ran past its deadline.") from e
            logger.error(f"Database operational error: {e}")
            raise StoreError(str(e)) from e
        except SQLAlchemyError as e:
            logger.error(f"Database error: {e}")
            raise StoreError(str(e)) from e
        check(cancel_token)

    # Document operations
    def create_document(
        self, document: NewDocument, contents: Sequence[NewContent]
    ) -> DocumentRecord:
        with self._session() as db:
            taken = db.scalar(
                select(Document.id).where(Document.location == document.location)
            )
            if taken is not None:
                raise DuplicateLocationError(
                    f"A document already exists at location {document.location!r}"
                )
            row = Document(
                location=document.location,
                title=document.title,
                document_type=document.document_type,
                status=DocumentStatus.PENDING,
                file_modified_at=document.file_modified_at,
                doc_metadata=document.metadata,
                file_metadata=document.file_metadata,
                content_hash=document.content_hash,
                file_hash=document.file_hash,
                content_length=document.content_length,
            )
            db.add(row)
            try:
                db.flush()
            except IntegrityError as e:
                raise DuplicateLocationError(
                    f"A document already exists at location {document.location!r}"
                ) from e
            db.add_all([_content_row(row.id, new) for new in contents])
            db.flush()
            db.refresh(row)
            record = _document_record(row)
        logger.info(f"Created document {record.id} at {record.location}")
        return record

    def get_document(self, document_id: uuid.UUID) -> Optional[DocumentRecord]:
        with self._session() as db:
            row = db.get(Document, document_id)
            return _document_record(row) if row else None

    def _first_document_id(self, *criteria) -> Optional[uuid.UUID]:
        with self._session() as db:
            return db.scalar(
                select(Document.id)
                .where(*criteria)
                .order_by(Document.created_at, Document.id)
                .limit(1)
            )

    def find_document_id_by_location(self, location: str) -> Optional[uuid.UUID]:
        return self._first_document_id(Document.location == location)

    def find_document_id_by_file_hash(self, file_hash: str) -> Optional[uuid.UUID]:
        return self._first_document_id(Document.file_hash == file_hash)

    def find_document_id_by_content_hash(self, content_hash: str) -> Optional[uuid.UUID]:
        return self._first_document_id(Document.content_hash == content_hash)

    def find_similarity_candidates(
        self, basename: str, document_type: DocumentType, title: Optional[str]
    ) -> list[SimilarityCandidate]:
        stmt = select(Document.id, Document.location, Document.content_length).where(
            Document.document_type == document_type,
            Document.location.endswith(basename, autoescape=True),
        )
        if title is not None:
            stmt = stmt.where(Document.title == title)
        stmt = stmt.order_by(Document.created_at, Document.id)
        with self._session() as db:
            rows = db.execute(stmt).all()
        # endswith() also matches longer names such as "xa.pdf" for "a.pdf".
        return [
            SimilarityCandidate(
                document_id=row.id, location=row.location, content_length=row.content_length
            )
            for row in rows
            if location_basename(row.location) == basename
        ]

    def set_document_status(self, document_id: uuid.UUID, status: DocumentStatus) -> None:
        with self._session() as db:
            result = db.execute(
                update(Document).where(Document.id == document_id).values(status=status)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Document {document_id} not found")

    def delete_document(self, document_id: uuid.UUID) -> bool:
        # Contents, embeddings and search results follow through ON DELETE CASCADE.
        with self._session() as db:
            result = db.execute(delete(Document).where(Document.id == document_id))
            deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted document {document_id}")
        return deleted

    def list_contents(self, document_id: uuid.UUID) -> list[ContentItem]:
        items: list[ContentItem] = []
        with self._session() as db:
            for model in CONTENT_MODELS.values():
                rows = db.scalars(
                    select(model).where(model.document_id == document_id).order_by(model.id)
                ).all()
                items.extend(row.to_item() for row in rows)
        return items

    # Embedding operations
    def _lock_owner(self, db: Session, owner_kind: ContentKind, owner_id: uuid.UUID) -> None:
        key = f"embeddings:{owner_kind.value}:{owner_id}"
        acquired = db.scalar(select(func.pg_try_advisory_xact_lock(func.hashtext(key))))
        if not acquired:
            raise ConcurrentWriteError(owner_kind, owner_id)

    def replace_embeddings(
        self,
        owner_kind: ContentKind,
        owner_id: uuid.UUID,
        rows: Sequence[NewEmbedding],
    ) -> list[uuid.UUID]:
        model = CONTENT_MODELS[owner_kind]
        with self._session() as db:
            self._lock_owner(db, owner_kind, owner_id)
            document_id = db.scalar(select(model.document_id).where(model.id == owner_id))
            if document_id is None:
                raise NotFoundError(f"No {owner_kind.value} content with id {owner_id}")
            db.execute(
                delete(Embedding).where(
                    Embedding.owner_kind == owner_kind, Embedding.owner_id == owner_id
                )
            )
            embeddings = [
                Embedding(
                    owner_kind=owner_kind,
                    owner_id=owner_id,
                    document_id=document_id,
                    chunk_index=row.chunk_index,
                    content=row.content,
                    embedding=list(row.vector),
                    char_start=row.char_start,
                    char_end=row.char_end,
                    embedding_model=row.embedding_model,
                )
                for row in rows
            ]
            db.add_all(embeddings)
            db.flush()
            ids = [embedding.id for embedding in embeddings]
        return ids

    def delete_embeddings(self, owner_kind: ContentKind, owner_id: uuid.UUID) -> int:
        with self._session() as db:
            self._lock_owner(db, owner_kind, owner_id)
            result = db.execute(
                delete(Embedding).where(
                    Embedding.owner_kind == owner_kind, Embedding.owner_id == owner_id
                )
            )
            return result.rowcount

    def list_embeddings(
        self, owner_kind: ContentKind, owner_id: uuid.UUID
    ) -> list[EmbeddingRecord]:
        with self._session() as db:
            rows = db.scalars(
                select(Embedding)
                .where(Embedding.owner_kind == owner_kind, Embedding.owner_id == owner_id)
                .order_by(Embedding.chunk_index)
            ).all()
            return [_embedding_record(row) for row in rows]

    def _supports_iterative_scan(self, db: Session) -> bool:
        if self._iterative_scan is None:
            version = db.scalar(
                text("SELECT extversion FROM pg_extension WHERE extname = 'vector'")
            )
            self._iterative_scan = parse_version(version) >= (0, 8)
        return self._iterative_scan

    def nearest(
        self,
        query_vector: Sequence[float],
        threshold: float,
        limit: int,
        filters: SearchFilters,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[SearchHit]:
        stmt = build_nearest_statement(query_vector, threshold, limit, filters)
        with self._session(cancel_token) as db:
            for setting in build_scan_settings(limit, self._supports_iterative_scan(db)):
                db.execute(setting)
            rows = db.execute(stmt).all()
        return [
            SearchHit(
                embedding_id=row.id,
                similarity=min(1.0, max(-1.0, float(row.similarity))),
                owner_kind=row.owner_kind,
                owner_id=row.owner_id,
                chunk_index=row.chunk_index,
                content=row.content,
                document_id=row.document_id,
                usage_count=row.usage_count,
                last_used_at=row.last_used_at,
                document_created_at=row.document_created_at,
                classification=(row.doc_metadata or {}).get("classification"),
                tags=list((row.doc_metadata or {}).get("tags", [])),
            )
            for row in rows
        ]

    def full_text(
        self,
        terms: Sequence[str],
        limit: int,
        filters: SearchFilters,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[LexicalHit]:
        if not terms:
            check(cancel_token)
            return []
        stmt = build_full_text_statement(terms, limit, filters)
        with self._session(cancel_token) as db:
            rows = db.execute(stmt).all()
        return [
            LexicalHit(
                document_id=row.document_id,
                raw_score=float(row.rank),
                embedding_id=row.id,
                owner_kind=row.owner_kind,
                owner_id=row.owner_id,
                chunk_index=row.chunk_index,
                content=row.content,
            )
            for row in rows
        ]

    def record_usage(self, embedding_ids: Sequence[uuid.UUID], used_at: datetime) -> None:
        by_increment: dict[int, list[uuid.UUID]] = {}
        for embedding_id, times in Counter(embedding_ids).items():
            by_increment.setdefault(times, []).append(embedding_id)
        if not by_increment:
            return
        with self._session() as db:
            for times, ids in by_increment.items():
                db.execute(
                    update(Embedding)
                    .where(Embedding.id.in_(ids))
                    .values(usage_count=Embedding.usage_count + times, last_used_at=used_at)
                )

    # Search tracking operations
    def create_search(
        self, draft: SearchDraft, results: Sequence[TrackedResult]
    ) -> SearchRecord:
        wanted = {result.embedding_id for result in results}
        with self._session() as db:
            if wanted:
                found = set(db.scalars(select(Embedding.id).where(Embedding.id.in_(wanted))))
                missing = wanted - found
                if missing:
                    raise NotFoundError(
                        f"Unknown embedding ids in search results: {sorted(missing)}"
                    )
            search = Search(
                query=draft.query,
                query_embedding=draft.query_embedding,
                search_mode=draft.search_mode,
                result_count=draft.result_count,
                min_similarity=draft.min_similarity,
                max_similarity=draft.max_similarity,
                avg_similarity=draft.avg_similarity,
                execution_time=draft.execution_time,
                filters=draft.filters,
                options=draft.options,
            )
            search.results = [
                SearchResult(
                    embedding_id=result.embedding_id,
                    rank=rank,
                    similarity_score=result.similarity,
                )
                for rank, result in enumerate(results, start=1)
            ]
            db.add(search)
            db.flush()
            db.refresh(search)
            return SearchRecord.model_validate(search)

    def get_search(self, search_id: uuid.UUID) -> Optional[SearchRecord]:
        with self._session() as db:
            search = db.scalar(
                select(Search)
                .options(selectinload(Search.results))
                .where(Search.id == search_id)
            )
            return SearchRecord.model_validate(search) if search else None

    def mark_result_clicked(
        self, result_id: uuid.UUID, clicked_at: datetime
    ) -> SearchResultRecord:
        with self._session() as db:
            result = db.scalar(
                select(SearchResult).where(SearchResult.id == result_id).with_for_update()
            )
            if result is None:
                raise NotFoundError(f"Search result {result_id} not found")
            if not result.clicked:
                result.clicked = True
                result.clicked_at = clicked_at
                db.flush()
            return SearchResultRecord.model_validate(result)

    @staticmethod
    def _since(stmt: Select, since: Optional[datetime]) -> Select:
        return stmt.where(Search.created_at >= since) if since is not None else stmt

    def click_through_rate(self, since: Optional[datetime] = None) -> Optional[float]:
        has_results = exists().where(SearchResult.search_id == Search.id)
        has_clicks = exists().where(
            and_(SearchResult.search_id == Search.id, SearchResult.clicked.is_(True))
        )
        with self._session() as db:
            with_results = db.scalar(
                self._since(select(func.count(Search.id)).where(has_results), since)
            )
            with_clicks = db.scalar(
                self._since(select(func.count(Search.id)).where(has_clicks), since)
            )
        if not with_results:
            return None
        return with_clicks / with_results

    def avg_execution_time(self, since: Optional[datetime] = None) -> Optional[float]:
        with self._session() as db:
            value = db.scalar(self._since(select(func.avg(Search.execution_time)), since))
        return float(value) if value is not None else None

    def popular_queries(
        self, limit: int, since: Optional[datetime] = None
    ) -> list[PopularQuery]:
        normalized = func.lower(
            func.regexp_replace(func.btrim(Search.query), r"\s+", " ", "g")
        ).label("normalized")
        count = func.count(Search.id).label("count")
        stmt = self._since(select(normalized, count), since)
        stmt = stmt.group_by(normalized).order_by(count.desc(), normalized).limit(limit)
        with self._session() as db:
            rows = db.execute(stmt).all()
        return [PopularQuery(query=row.normalized, count=row.count) for row in rows]

    def delete_orphaned_searches(self) -> int:
        orphaned = ~exists().where(SearchResult.search_id == Search.id)
        with self._session() as db:
            return db.execute(delete(Search).where(orphaned)).rowcount

    def delete_stale_searches(self, before: datetime) -> int:
        clicked = exists().where(
            and_(SearchResult.search_id == Search.id, SearchResult.clicked.is_(True))
        )
        with self._session() as db:
            return db.execute(
                delete(Search).where(Search.created_at < before, ~clicked)
            ).rowcount

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
