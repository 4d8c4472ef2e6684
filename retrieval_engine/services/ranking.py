"""
Usage-aware re-ranking of similarity hits.

composite = w_sim * similarity + w_usage * usage + w_meta * metadata, where
usage blends how recently and how often a chunk was returned, and metadata
rewards fresh documents and matches on the requested classification and tags.
"""

import math
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, Field

from retrieval_engine.errors import ConfigurationError
from retrieval_engine.schemas.search import RankedHit, SearchHit

WEIGHT_TOLERANCE = 1e-6
RECENCY_SHARE = 0.3
FREQUENCY_SHARE = 0.7

FRESH_DAYS = 7
RECENT_DAYS = 30
FRESH_BONUS = 0.2
RECENT_BONUS = 0.1
CLASSIFICATION_BONUS = 0.3
TAG_BONUS = 0.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _days_between(earlier: datetime, later: datetime) -> float:
    seconds = (_aware(later) - _aware(earlier)).total_seconds()
    return max(0.0, seconds / 86400)


class RankingContext(BaseModel):
    """What the caller asked for; used for metadata bonuses."""

    classification: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class UsageRanker:
    def __init__(
        self,
        similarity_weight: float = 0.6,
        usage_weight: float = 0.3,
        metadata_weight: float = 0.1,
        recency_decay_days: float = 30.0,
        frequency_saturation: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ):
        weights = (similarity_weight, usage_weight, metadata_weight)
        if any(weight < 0 for weight in weights):
            raise ConfigurationError(f"Ranking weights must be non-negative, got {weights}")
        if abs(sum(weights) - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigurationError(f"Ranking weights must sum to 1, got {sum(weights)}")
        if recency_decay_days <= 0:
            raise ConfigurationError("recency_decay_days must be positive")
        if frequency_saturation < 2:
            raise ConfigurationError("frequency_saturation must be at least 2")
        self.similarity_weight = similarity_weight
        self.usage_weight = usage_weight
        self.metadata_weight = metadata_weight
        self.recency_decay_days = recency_decay_days
        self.frequency_saturation = frequency_saturation
        self._clock = clock

    def recency_score(self, last_used_at: Optional[datetime], now: datetime) -> float:
        if last_used_at is None:
            return 0.0
        return math.exp(-_days_between(last_used_at, now) / self.recency_decay_days)

    def frequency_score(self, usage_count: int) -> float:
        score = math.log(max(usage_count, 0) + 1) / math.log(self.frequency_saturation)
        return min(1.0, max(0.0, score))

    def metadata_score(self, hit: SearchHit, context: RankingContext, now: datetime) -> float:
        score = 0.0
        if hit.document_created_at is not None:
            age = _days_between(hit.document_created_at, now)
            if age <= FRESH_DAYS:
                score += FRESH_BONUS
            elif age <= RECENT_DAYS:
                score += RECENT_BONUS
        if context.classification is not None and hit.classification == context.classification:
            score += CLASSIFICATION_BONUS
        wanted = {tag.casefold() for tag in context.tags}
        if wanted:
            present = {tag.casefold() for tag in hit.tags}
            score += TAG_BONUS * len(wanted & present) / len(wanted)
        return min(1.0, score)

    def score(self, hit: SearchHit, context: RankingContext, now: datetime) -> RankedHit:
        recency = self.recency_score(hit.last_used_at, now)
        frequency = self.frequency_score(hit.usage_count)
        usage = RECENCY_SHARE * recency + FREQUENCY_SHARE * frequency
        metadata = self.metadata_score(hit, context, now)
        composite = (
            self.similarity_weight * hit.similarity
            + self.usage_weight * usage
            + self.metadata_weight * metadata
        )
        return RankedHit(
            **hit.model_dump(),
            composite_score=composite,
            usage_score=usage,
            recency_score=recency,
            frequency_score=frequency,
            metadata_score=metadata,
        )

    def rank(
        self, hits: Sequence[SearchHit], context: Optional[RankingContext] = None
    ) -> list[RankedHit]:
        """Score and sort hits by composite score; equal scores keep input order."""
        context = context or RankingContext()
        now = self._clock()
        scored = [self.score(hit, context, now) for hit in hits]
        return sorted(scored, key=lambda hit: -hit.composite_score)
