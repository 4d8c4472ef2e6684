from datetime import datetime, timezone

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex, CreateTable

from retrieval_engine.errors import ConfigurationError
from retrieval_engine.models import EMBEDDING_DIM, Document, Embedding
from retrieval_engine.schemas.content import ContentKind
from retrieval_engine.schemas.search import SearchFilters
from retrieval_engine.store.factory import StorageFactory
from retrieval_engine.store.memory import MemoryBackend
from retrieval_engine.store.postgres import (
    EF_SEARCH_MAX,
    build_full_text_statement,
    build_nearest_statement,
    build_scan_settings,
    filter_clauses,
    parse_version,
)


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def test_nearest_uses_cosine_distance():
    sql = _sql(build_nearest_statement([0.1] * 384, 0.5, 10, SearchFilters()))

    assert "<=>" in sql
    assert "JOIN documents" in sql
    assert "ORDER BY" in sql
    assert "LIMIT" in sql
    assert "similarity" in sql


def test_full_text_keeps_best_chunk_per_document():
    sql = _sql(build_full_text_statement(["router", "password"], 5, SearchFilters()))

    assert sql.count("plainto_tsquery") >= 2
    assert "||" in sql
    assert "ts_rank" in sql
    assert "row_number() OVER (PARTITION BY embeddings.document_id" in sql
    assert "@@" in sql
    assert "position" in sql.split("WHERE")[-1]


def test_scan_settings_raise_ef_search_to_the_limit():
    (ef_search,) = build_scan_settings(5, iterative=False)
    compiled = ef_search.compile(dialect=postgresql.dialect())
    assert "set_config('hnsw.ef_search'" in str(compiled)
    assert compiled.params == {"ef_search": "40"}

    (ef_search,) = build_scan_settings(120, iterative=False)
    assert ef_search.compile().params == {"ef_search": "120"}

    (ef_search,) = build_scan_settings(50_000, iterative=False)
    assert ef_search.compile().params == {"ef_search": str(EF_SEARCH_MAX)}


def test_scan_settings_enable_iterative_scan():
    statements = build_scan_settings(10, iterative=True)
    assert len(statements) == 2
    assert "'hnsw.iterative_scan', 'strict_order', true" in _sql(statements[1])


@pytest.mark.parametrize(
    "version, supported",
    [("0.8.0", True), ("0.10.1", True), ("0.7.4", False), (None, False)],
)
def test_iterative_scan_version_check(version, supported):
    assert (parse_version(version) >= (0, 8)) is supported


def test_filter_clauses():
    filters = SearchFilters(
        content_kinds=[ContentKind.TEXT],
        classification="finance",
        tags=["Billing"],
        created_after=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    clauses = filter_clauses(filters)
    assert len(clauses) == 4

    sql = _sql(build_nearest_statement([0.0] * 384, 0.0, 3, filters))
    assert "jsonb_array_elements_text" in sql
    assert "documents.created_at >=" in sql


def test_no_filters_no_clauses():
    assert filter_clauses(SearchFilters()) == []


def test_factory_creates_memory_backend(settings):
    backend = StorageFactory.create(settings)
    assert isinstance(backend, MemoryBackend)


def test_factory_rejects_unknown_backend(settings):
    with pytest.raises(ConfigurationError):
        StorageFactory.create(settings, backend_type="sqlite")


def test_postgres_requires_fixed_dimension(settings):
    # Checked before any connection is attempted.
    with pytest.raises(ConfigurationError):
        StorageFactory.create(settings, backend_type="postgres")


def test_schema_uses_stable_constraint_names():
    documents = _sql(CreateTable(Document.__table__))
    assert "CONSTRAINT pk_documents PRIMARY KEY" in documents
    assert "CONSTRAINT uq_documents_location UNIQUE" in documents

    index_names = {index.name for index in Document.__table__.indexes}
    assert {"ix_documents_content_hash", "ix_documents_file_hash"} <= index_names
    content_hash_index = next(
        index for index in Document.__table__.indexes if index.name == "ix_documents_content_hash"
    )
    assert "ON documents (content_hash)" in _sql(CreateIndex(content_hash_index))


def test_embedding_column_width():
    embeddings = _sql(CreateTable(Embedding.__table__))
    assert f"VECTOR({EMBEDDING_DIM})" in embeddings
    assert "CONSTRAINT uq_embeddings_owner_chunk UNIQUE" in embeddings
