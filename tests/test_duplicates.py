import pytest

from retrieval_engine.errors import ConfigurationError, ValidationError
from retrieval_engine.schemas.content import ContentKind, ExtractedContent, NewContent
from retrieval_engine.schemas.document import DocumentType, NewDocument
from retrieval_engine.schemas.ingestion import DuplicateTier, Existing, Forced, New
from retrieval_engine.services.duplicates import DuplicateDetector, lengths_within_tolerance
from retrieval_engine.utils.hashing import content_hash, normalize_text


def _store(backend, location, text, title=None, file_hash=None, document_type=DocumentType.PDF):
    document = NewDocument(
        location=location,
        title=title,
        document_type=document_type,
        content_hash=content_hash(text),
        file_hash=file_hash,
        content_length=len(normalize_text(text)),
    )
    content = NewContent(
        kind=ContentKind.TEXT,
        extracted=ExtractedContent(text=text),
        embedding_model="test-model",
        chunk_size=8,
        chunk_overlap=2,
    )
    return backend.create_document(document, [content])


def test_location_tier_wins_first(backend):
    stored = _store(backend, "/docs/a.pdf", "alpha")
    outcome = DuplicateDetector(backend).detect("/docs/a.pdf", "something else", DocumentType.PDF)
    assert outcome == Existing(document_id=stored.id, matched_by=DuplicateTier.LOCATION)


def test_file_hash_tier(backend):
    stored = _store(backend, "/docs/a.pdf", "alpha", file_hash="f" * 64)
    outcome = DuplicateDetector(backend).detect(
        "/other/z.pdf", "different text", DocumentType.PDF, file_hash="f" * 64
    )
    assert outcome == Existing(document_id=stored.id, matched_by=DuplicateTier.FILE_HASH)


def test_content_hash_tier_on_new_location(backend):
    text = "Quarterly revenue grew by ten percent."
    stored = _store(backend, "/a.pdf", text)
    outcome = DuplicateDetector(backend).detect("/b.pdf", text, DocumentType.PDF)
    assert isinstance(outcome, Existing)
    assert outcome.document_id == stored.id
    assert outcome.matched_by is DuplicateTier.CONTENT_HASH


def test_content_hash_ignores_case_and_whitespace(backend):
    stored = _store(backend, "/a.pdf", "Hello   World")
    outcome = DuplicateDetector(backend).detect("/b.pdf", "hello world\n", DocumentType.PDF)
    assert outcome == Existing(document_id=stored.id, matched_by=DuplicateTier.CONTENT_HASH)


def test_similarity_tier_needs_same_basename_type_and_title(backend):
    stored = _store(backend, "/v1/report.pdf", "a" * 100, title="Report")
    detector = DuplicateDetector(backend)

    hit = detector.detect("/v2/report.pdf", "b" * 104, DocumentType.PDF, title="Report")
    assert hit == Existing(document_id=stored.id, matched_by=DuplicateTier.SIMILARITY)

    assert detector.detect("/v2/report.pdf", "b" * 120, DocumentType.PDF, title="Report") == New()
    assert detector.detect("/v2/report.pdf", "b" * 100, DocumentType.DOCX, title="Report") == New()
    assert detector.detect("/v2/report.pdf", "b" * 100, DocumentType.PDF, title="Other") == New()
    assert detector.detect("/v2/summary.pdf", "b" * 100, DocumentType.PDF, title="Report") == New()


def test_new_document(backend):
    assert DuplicateDetector(backend).detect("/a.pdf", "text", DocumentType.PDF) == New()


def test_detection_is_idempotent(backend):
    _store(backend, "/a.pdf", "same words")
    detector = DuplicateDetector(backend)
    first = detector.detect("/b.pdf", "same words", DocumentType.PDF)
    second = detector.detect("/b.pdf", "same words", DocumentType.PDF)
    assert first == second


def test_force_builds_unused_location(backend):
    _store(backend, "/a.pdf", "alpha")
    outcome = DuplicateDetector(backend).detect("/a.pdf", "alpha", DocumentType.PDF, force=True)
    assert isinstance(outcome, Forced)
    assert outcome.new_location.startswith("/a.pdf_")
    assert backend.find_document_id_by_location(outcome.new_location) is None


@pytest.mark.parametrize("location", ["", "   "])
def test_missing_location(backend, location):
    with pytest.raises(ValidationError):
        DuplicateDetector(backend).detect(location, "text", DocumentType.TEXT)


def test_tolerance_is_relative_to_longer_length():
    assert lengths_within_tolerance(100, 95, 0.05)
    assert not lengths_within_tolerance(100, 94, 0.05)
    assert lengths_within_tolerance(0, 0, 0.05)


def test_invalid_tolerance(backend):
    with pytest.raises(ConfigurationError):
        DuplicateDetector(backend, length_tolerance=1.5)
