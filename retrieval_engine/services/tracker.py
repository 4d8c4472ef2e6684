"""
Search tracking: records executed searches, click feedback and analytics.
Maintenance (cleanup) is explicit and never runs on its own.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

from retrieval_engine.errors import ValidationError
from retrieval_engine.schemas.search import (
    PopularQuery,
    SearchDraft,
    SearchMode,
    SearchRecord,
    SearchResultRecord,
    TrackedResult,
)
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.utils.logging_config import logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchTracker:
    def __init__(
        self,
        backend: StorageBackend,
        track_usage: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.backend = backend
        self.track_usage = track_usage
        self._clock = clock

    def record(
        self,
        query: str,
        query_vector: Optional[Sequence[float]],
        mode: SearchMode,
        results: Sequence[TrackedResult],
        filters: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
        execution_time: float = 0.0,
    ) -> SearchRecord:
        """
        Persist a search with its results in rank order, then bump the usage
        statistics of every returned embedding.
        """
        similarities = [r.similarity for r in results if r.similarity is not None]
        draft = SearchDraft(
            query=query,
            query_embedding=list(query_vector) if query_vector is not None else None,
            search_mode=mode,
            filters=dict(filters or {}),
            options=dict(options or {}),
            execution_time=execution_time,
            result_count=len(results),
            min_similarity=min(similarities) if similarities else None,
            max_similarity=max(similarities) if similarities else None,
            avg_similarity=sum(similarities) / len(similarities) if similarities else None,
        )
        record = self.backend.create_search(draft, results)
        if self.track_usage and results:
            self.backend.record_usage([r.embedding_id for r in results], self._clock())
        logger.debug(f"Recorded {mode.value} search {record.id} with {len(results)} results")
        return record

    def mark_clicked(self, result_id: uuid.UUID) -> SearchResultRecord:
        """Flag a result as clicked. Repeated calls keep the first click time."""
        return self.backend.mark_result_clicked(result_id, self._clock())

    def click_through_rate(self, since: Optional[datetime] = None) -> Optional[float]:
        return self.backend.click_through_rate(since)

    def avg_execution_time(self, since: Optional[datetime] = None) -> Optional[float]:
        return self.backend.avg_execution_time(since)

    def popular(self, limit: int = 10, since: Optional[datetime] = None) -> list[PopularQuery]:
        if limit < 1:
            raise ValidationError(f"limit must be positive, got {limit}")
        return self.backend.popular_queries(limit, since)

    def cleanup_orphaned(self) -> int:
        removed = self.backend.delete_orphaned_searches()
        logger.info(f"Removed {removed} searches without results")
        return removed

    def cleanup_older_than(self, age: timedelta) -> int:
        """Remove searches older than `age` that have no clicked result."""
        if age < timedelta(0):
            raise ValidationError("age must not be negative")
        removed = self.backend.delete_stale_searches(self._clock() - age)
        logger.info(f"Removed {removed} searches older than {age}")
        return removed
