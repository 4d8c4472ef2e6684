"""
Duplicate detection run before a document is created.

Tiers are checked in priority order and the first hit wins: exact location,
file hash, normalized content hash, and finally a similarity heuristic (same
basename, document type and title with a content length inside a tolerance).
"""

import secrets
from datetime import datetime, timezone
from typing import Optional

from retrieval_engine.errors import ConfigurationError, ValidationError
from retrieval_engine.schemas.document import DocumentType
from retrieval_engine.schemas.ingestion import (
    DuplicateOutcome,
    DuplicateTier,
    Existing,
    Forced,
    New,
)
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.utils.hashing import content_hash, location_basename, normalize_text
from retrieval_engine.utils.logging_config import logger

_MAX_FORCE_ATTEMPTS = 5


def lengths_within_tolerance(a: int, b: int, tolerance: float) -> bool:
    longest = max(a, b)
    if longest == 0:
        return True
    return abs(a - b) / longest <= tolerance


class DuplicateDetector:
    def __init__(self, backend: StorageBackend, length_tolerance: float = 0.05):
        if not 0 <= length_tolerance < 1:
            raise ConfigurationError(
                f"length_tolerance must be in [0, 1), got {length_tolerance}"
            )
        self.backend = backend
        self.length_tolerance = length_tolerance

    def detect(
        self,
        location: str,
        text: str,
        document_type: DocumentType,
        title: Optional[str] = None,
        file_hash: Optional[str] = None,
        force: bool = False,
    ) -> DuplicateOutcome:
        """
        Decide whether an incoming document duplicates a stored one.

        Returns Existing(document_id) for the first tier that matches, New when
        nothing does, or Forced(new_location) when `force` is set.

        Raises:
            ValidationError: If `location` is missing or blank.
        """
        if not location or not location.strip():
            raise ValidationError("A document location is required.")

        if force:
            return Forced(new_location=self._disambiguate(location))

        document_id = self.backend.find_document_id_by_location(location)
        if document_id is not None:
            return self._hit(document_id, DuplicateTier.LOCATION, location)

        if file_hash:
            document_id = self.backend.find_document_id_by_file_hash(file_hash)
            if document_id is not None:
                return self._hit(document_id, DuplicateTier.FILE_HASH, location)

        document_id = self.backend.find_document_id_by_content_hash(content_hash(text))
        if document_id is not None:
            return self._hit(document_id, DuplicateTier.CONTENT_HASH, location)

        length = len(normalize_text(text))
        candidates = self.backend.find_similarity_candidates(
            location_basename(location), document_type, title
        )
        for candidate in candidates:
            if lengths_within_tolerance(
                candidate.content_length, length, self.length_tolerance
            ):
                return self._hit(candidate.document_id, DuplicateTier.SIMILARITY, location)

        return New()

    def _hit(self, document_id, tier: DuplicateTier, location: str) -> Existing:
        logger.info(f"Duplicate of document {document_id} detected for {location} ({tier.value})")
        return Existing(document_id=document_id, matched_by=tier)

    def _disambiguate(self, location: str) -> str:
        for _ in range(_MAX_FORCE_ATTEMPTS):
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
            candidate = f"{location}_{stamp}_{secrets.token_hex(4)}"
            if self.backend.find_document_id_by_location(candidate) is None:
                return candidate
        return f"{location}_{secrets.token_hex(16)}"
