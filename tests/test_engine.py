import uuid
from datetime import datetime

import pytest

from retrieval_engine.engine import RetrievalEngine, build_engine
from retrieval_engine.errors import (
    ConfigurationError,
    InvalidInput,
    NotFoundError,
    ProcessError,
    RateLimited,
    ValidationError,
)
from retrieval_engine.schemas.content import ContentKind, ExtractedContent
from retrieval_engine.schemas.document import DocumentStatus, DocumentType
from retrieval_engine.schemas.ingestion import DuplicateTier
from retrieval_engine.schemas.search import (
    HybridHit,
    RankedHit,
    SearchFilters,
    SearchMode,
    SearchOptions,
)
from retrieval_engine.services.cache import EmbeddingCache
from retrieval_engine.utils.hashing import InMemoryByteSource

ROUTER_TEXT = (
    "Resetting the router restores factory settings. "
    "Hold the reset button for ten seconds. "
    "The router password returns to the default printed on the label."
)
BILLING_TEXT = "Invoices are issued monthly. Payment is due within thirty days."


def _ingest(engine, location, text, **kwargs):
    result = engine.add_document(location, {"text": text}, **kwargs)
    for step in result.next_steps:
        assert step.operation == "process_content"
        engine.process_content(step.document_id)
    return result


def test_add_document_returns_process_plan(engine, backend):
    result = engine.add_document("/guide.txt", {ContentKind.TEXT: ROUTER_TEXT})

    assert result.duplicate is False
    assert result.forced is False
    assert [step.document_id for step in result.next_steps] == [result.document_id]
    document = backend.get_document(result.document_id)
    assert document.status is DocumentStatus.PENDING
    assert document.document_type is DocumentType.TEXT
    assert backend.list_embeddings(ContentKind.TEXT, backend.list_contents(document.id)[0].id) == []


def test_same_content_at_new_location_is_duplicate(engine):
    first = engine.add_document("/a.pdf", {"text": BILLING_TEXT}, document_type=DocumentType.PDF)
    second = engine.add_document("/b.pdf", {"text": BILLING_TEXT}, document_type=DocumentType.PDF)

    assert second.duplicate is True
    assert second.document_id == first.document_id
    assert second.matched_by is DuplicateTier.CONTENT_HASH
    assert second.location == "/a.pdf"
    assert second.next_steps == []


def test_file_hash_from_byte_source(engine):
    data = b"%PDF-1.7 binary"
    first = engine.add_document(
        "/one.pdf", {"text": "first text"}, byte_source=InMemoryByteSource(data)
    )
    second = engine.add_document(
        "/two.pdf", {"text": "other text"}, byte_source=InMemoryByteSource(data)
    )
    assert second.document_id == first.document_id
    assert second.matched_by is DuplicateTier.FILE_HASH


def test_forced_add_creates_new_location(engine):
    first = engine.add_document("/a.txt", {"text": BILLING_TEXT})
    forced = engine.add_document("/a.txt", {"text": BILLING_TEXT}, force=True)

    assert forced.duplicate is False
    assert forced.forced is True
    assert forced.document_id != first.document_id
    assert forced.location.startswith("/a.txt_")
    assert len(forced.next_steps) == 1


def test_metadata_validated_per_type(engine, backend):
    result = engine.add_document(
        "/song.mp3",
        {"audio": ExtractedContent(text="la la la", duration_seconds=3.5)},
        {"duration_seconds": 3.5, "tags": ["music"]},
    )
    assert backend.get_document(result.document_id).metadata == {
        "duration_seconds": 3.5,
        "tags": ["music"],
    }
    with pytest.raises(ValidationError):
        engine.add_document("/page.txt", {"text": "words"}, {"duration_seconds": 3.5})


def test_mixed_document_type_inferred(engine, backend):
    result = engine.add_document(
        "/slides", {"text": "slide text", "image": "diagram of a network"}
    )
    document = backend.get_document(result.document_id)
    assert document.document_type is DocumentType.MIXED
    assert [item.kind for item in backend.list_contents(document.id)] == [
        ContentKind.TEXT,
        ContentKind.IMAGE,
    ]


@pytest.mark.parametrize(
    "extracted, document_type",
    [
        ({}, None),
        ({"video": "frames"}, None),
        ({"text": "hello world"}, "spreadsheet"),
    ],
)
def test_invalid_contents(engine, extracted, document_type):
    with pytest.raises(ValidationError):
        engine.add_document("/x", extracted, document_type=document_type)


def test_process_content_stores_chunk_embeddings(engine, backend):
    result = engine.add_document("/guide.txt", {"text": ROUTER_TEXT})
    processed = engine.process_content(result.document_id)

    assert processed.status is DocumentStatus.PROCESSED
    assert processed.contents == 1
    assert processed.embeddings >= 2
    assert backend.get_document(result.document_id).status is DocumentStatus.PROCESSED
    item = backend.list_contents(result.document_id)[0]
    records = backend.list_embeddings(item.kind, item.id)
    assert [r.chunk_index for r in records] == list(range(processed.embeddings))
    assert all(r.embedding_model == "test-model" for r in records)


def test_reprocessing_replaces_embeddings(engine, backend):
    result = _ingest(engine, "/guide.txt", ROUTER_TEXT)
    item = backend.list_contents(result.document_id)[0]
    before = {r.id for r in backend.list_embeddings(item.kind, item.id)}

    engine.process_content(result.document_id)

    after = backend.list_embeddings(item.kind, item.id)
    assert len(after) == len(before)
    assert before.isdisjoint(r.id for r in after)


@pytest.mark.parametrize(
    "error, retryable",
    [
        (RateLimited("slow down"), True),
        (InvalidInput("provider rejected the input"), False),
    ],
)
def test_process_failure_marks_error(engine, backend, provider, error, retryable):
    result = engine.add_document("/guide.txt", {"text": ROUTER_TEXT})

    def fail(texts, model):
        raise error

    provider.embed_batch = fail
    with pytest.raises(ProcessError) as excinfo:
        engine.process_content(result.document_id)

    assert excinfo.value.cause is error
    assert excinfo.value.retryable is retryable
    assert excinfo.value.__cause__ is excinfo.value.cause
    assert backend.get_document(result.document_id).status is DocumentStatus.ERROR


def test_process_unknown_document(engine):
    with pytest.raises(NotFoundError):
        engine.process_content(uuid.uuid4())


def test_search_finds_processed_chunks(engine):
    _ingest(engine, "/guide.txt", ROUTER_TEXT)
    _ingest(engine, "/billing.txt", BILLING_TEXT)

    response = engine.search("Invoices are issued monthly.")

    assert response.mode is SearchMode.SEMANTIC
    assert response.total >= 1
    assert all(isinstance(hit, RankedHit) for hit in response.results)
    assert response.results[0].content.startswith("Invoices are issued monthly.")
    assert response.results[0].similarity == pytest.approx(1.0)
    assert response.search_id is not None


def test_search_tracking_and_clicks(engine, backend):
    _ingest(engine, "/billing.txt", BILLING_TEXT)

    response = engine.search("Payment is due within thirty days.")
    record = backend.get_search(response.search_id)
    assert record.result_count == response.total
    assert [r.embedding_id for r in record.results] == [h.embedding_id for h in response.results]

    engine.mark_result_clicked(record.results[0].id)
    engine.mark_result_clicked(record.results[0].id)
    assert engine.click_through_rate() == 1.0
    assert engine.popular_queries(limit=1)[0].query == "payment is due within thirty days."
    assert engine.avg_execution_time() >= 0.0


def test_search_usage_feeds_back_into_ranking(engine):
    _ingest(engine, "/billing.txt", BILLING_TEXT)

    first = engine.search("monthly invoices")
    second = engine.search("monthly invoices")

    assert second.results[0].usage_count == first.results[0].usage_count + 1
    assert second.results[0].usage_score > first.results[0].usage_score


def test_untracked_search(engine, backend):
    _ingest(engine, "/billing.txt", BILLING_TEXT)
    response = engine.search("monthly invoices", SearchOptions(track=False))
    assert response.search_id is None
    assert engine.avg_execution_time() is None


def test_search_with_filters(engine):
    _ingest(engine, "/billing.txt", BILLING_TEXT, metadata={"classification": "finance"})
    _ingest(engine, "/guide.txt", ROUTER_TEXT, metadata={"classification": "support"})

    response = engine.search(
        "router invoices", SearchOptions(filters=SearchFilters(classification="support"))
    )
    assert response.total >= 1
    assert {hit.classification for hit in response.results} == {"support"}


def test_empty_query(engine):
    with pytest.raises(ValidationError):
        engine.search("   ")


def test_hybrid_search_groups_by_document(engine):
    billing = _ingest(engine, "/billing.txt", BILLING_TEXT)
    guide = _ingest(engine, "/guide.txt", ROUTER_TEXT)

    response = engine.hybrid_search("router password reset", SearchOptions(limit=5))

    assert response.mode is SearchMode.HYBRID
    assert all(isinstance(hit, HybridHit) for hit in response.results)
    document_ids = [hit.document_id for hit in response.results]
    assert len(document_ids) == len(set(document_ids))
    guide_hit = next(hit for hit in response.results if hit.document_id == guide.document_id)
    assert SearchMode.LEXICAL in guide_hit.modes
    assert guide_hit.lexical_score > 0
    assert set(document_ids) <= {billing.document_id, guide.document_id}
    assert response.search_id is not None


def test_hybrid_weights_override(engine):
    _ingest(engine, "/guide.txt", ROUTER_TEXT)
    response = engine.hybrid_search(
        "router password", SearchOptions(semantic_weight=0.0, text_weight=1.0)
    )
    (hit,) = response.results
    assert hit.weighted_score == pytest.approx(hit.lexical_score)


def test_delete_document_cascades(engine, backend):
    result = _ingest(engine, "/billing.txt", BILLING_TEXT)
    response = engine.search("monthly invoices")

    assert engine.delete_document(result.document_id) is True
    assert backend.get_document(result.document_id) is None
    assert backend.get_search(response.search_id).results == []
    assert engine.cleanup_orphaned_searches() == 1
    assert engine.search("monthly invoices", SearchOptions(track=False)).results == []


def test_cache_serves_repeated_chunks(settings, backend, provider, clock, fake_redis):
    cache = EmbeddingCache(fake_redis, ttl_seconds=60)
    engine = RetrievalEngine(settings, backend, provider, cache=cache, clock=clock)
    first = _ingest(engine, "/a.txt", BILLING_TEXT)
    calls = len(provider.calls)

    engine.process_content(first.document_id)

    assert len(provider.calls) == calls


def test_invalid_chunk_settings(settings, backend, provider):
    bad = settings.model_copy(update={"CHUNK_OVERLAP": settings.CHUNK_SIZE})
    with pytest.raises(ConfigurationError):
        RetrievalEngine(bad, backend, provider)


def test_invalid_rank_weights(settings, backend, provider):
    bad = settings.model_copy(update={"RANK_WEIGHT_USAGE": 0.9})
    with pytest.raises(ConfigurationError):
        RetrievalEngine(bad, backend, provider)


def test_build_engine_uses_memory_backend(settings, provider):
    engine = build_engine(settings, provider=provider)
    result = _ingest(engine, "/a.txt", BILLING_TEXT)
    assert engine.backend.get_document(result.document_id).status is DocumentStatus.PROCESSED
    engine.close()


def test_naive_date_filters_are_treated_as_utc(engine):
    _ingest(engine, "/billing.txt", BILLING_TEXT)

    after = SearchOptions(filters=SearchFilters(created_after=datetime(2020, 1, 1)))
    assert engine.search("monthly invoices", after).total >= 1
    assert engine.hybrid_search("monthly invoices", after).total == 1

    before = SearchOptions(filters=SearchFilters(created_before=datetime(2026, 1, 1)))
    assert engine.search("monthly invoices", before).results == []
    assert engine.hybrid_search("monthly invoices", before).results == []
