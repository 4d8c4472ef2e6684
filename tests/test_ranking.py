import math
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from retrieval_engine.errors import ConfigurationError
from retrieval_engine.schemas.content import ContentKind
from retrieval_engine.schemas.search import SearchHit
from retrieval_engine.services.ranking import RankingContext, UsageRanker

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _hit(similarity, **overrides):
    fields = dict(
        embedding_id=uuid.uuid4(),
        similarity=similarity,
        owner_kind=ContentKind.TEXT,
        owner_id=uuid.uuid4(),
        chunk_index=0,
        content="chunk",
        document_id=uuid.uuid4(),
    )
    fields.update(overrides)
    return SearchHit(**fields)


@pytest.fixture
def ranker():
    return UsageRanker(clock=lambda: NOW)


def test_unused_hit_scores_only_similarity(ranker):
    (ranked,) = ranker.rank([_hit(0.8)])
    assert ranked.usage_score == 0.0
    assert ranked.metadata_score == 0.0
    assert ranked.composite_score == pytest.approx(0.6 * 0.8)


def test_usage_formula(ranker):
    hit = _hit(0.5, usage_count=9, last_used_at=NOW - timedelta(days=15))
    (ranked,) = ranker.rank([hit])

    recency = math.exp(-15 / 30)
    frequency = math.log(10) / math.log(100)
    assert ranked.recency_score == pytest.approx(recency)
    assert ranked.frequency_score == pytest.approx(frequency)
    assert ranked.usage_score == pytest.approx(0.3 * recency + 0.7 * frequency)


def test_frequency_is_clamped(ranker):
    assert ranker.frequency_score(10_000) == 1.0
    assert ranker.frequency_score(0) == 0.0


def test_metadata_bonuses_are_capped(ranker):
    hit = _hit(
        0.5,
        document_created_at=NOW - timedelta(days=2),
        classification="legal",
        tags=["Contract", "nda"],
    )
    context = RankingContext(classification="legal", tags=["contract", "nda"])
    assert ranker.metadata_score(hit, context, NOW) == 1.0


def test_metadata_bonus_components(ranker):
    month_old = _hit(0.5, document_created_at=NOW - timedelta(days=20), tags=["a"])
    context = RankingContext(tags=["a", "b"])
    assert ranker.metadata_score(month_old, context, NOW) == pytest.approx(0.1 + 0.25)

    old = _hit(0.5, document_created_at=NOW - timedelta(days=90))
    assert ranker.metadata_score(old, RankingContext(), NOW) == 0.0


def test_higher_similarity_never_ranks_lower(ranker):
    low, high = _hit(0.4), _hit(0.7)
    ranked = ranker.rank([low, high])
    assert [r.embedding_id for r in ranked] == [high.embedding_id, low.embedding_id]
    assert ranked[0].composite_score > ranked[1].composite_score


def test_usage_can_lift_a_hit(ranker):
    plain = _hit(0.72)
    popular = _hit(0.70, usage_count=99, last_used_at=NOW)
    ranked = ranker.rank([plain, popular])
    assert ranked[0].embedding_id == popular.embedding_id


def test_ties_keep_search_order(ranker):
    hits = [_hit(0.5) for _ in range(4)]
    ranked = ranker.rank(hits)
    assert [r.embedding_id for r in ranked] == [h.embedding_id for h in hits]


def test_rank_has_no_side_effects(ranker):
    hit = _hit(0.5, usage_count=3)
    ranker.rank([hit])
    assert hit.usage_count == 3


@pytest.mark.parametrize(
    "weights",
    [(0.5, 0.3, 0.1), (0.7, 0.3, 0.1), (1.2, -0.1, -0.1)],
)
def test_invalid_weights(weights):
    with pytest.raises(ConfigurationError):
        UsageRanker(*weights)


def test_weights_within_tolerance_accepted():
    UsageRanker(0.6 + 1e-9, 0.3, 0.1)
