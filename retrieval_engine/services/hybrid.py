"""Combines semantic and lexical results into one document-level ranking."""

import uuid
from typing import Optional, Sequence

from retrieval_engine.errors import ConfigurationError
from retrieval_engine.schemas.search import HybridHit, LexicalHit, RankedHit, SearchMode


def _check_weights(semantic_weight: float, text_weight: float) -> None:
    if semantic_weight < 0 or text_weight < 0:
        raise ConfigurationError(
            f"Hybrid weights must be non-negative, got {semantic_weight} and {text_weight}"
        )


class _Entry:
    __slots__ = ("order", "semantic", "lexical")

    def __init__(self, order: int):
        self.order = order
        self.semantic: Optional[RankedHit] = None
        self.lexical: Optional[LexicalHit] = None


class HybridCombiner:
    def __init__(self, semantic_weight: float = 0.7, text_weight: float = 0.3):
        _check_weights(semantic_weight, text_weight)
        self.semantic_weight = semantic_weight
        self.text_weight = text_weight

    def combine(
        self,
        semantic: Sequence[RankedHit],
        lexical: Sequence[LexicalHit],
        limit: int,
        semantic_weight: Optional[float] = None,
        text_weight: Optional[float] = None,
    ) -> list[HybridHit]:
        """
        Group both result lists by document and score each document as
        semantic_score * semantic_weight + lexical_score * text_weight.

        A document's semantic score is the best composite score among its
        chunks. Ties go to the document seen first (semantic results, then
        lexical), then to the smaller document id.
        """
        semantic_weight = self.semantic_weight if semantic_weight is None else semantic_weight
        text_weight = self.text_weight if text_weight is None else text_weight
        _check_weights(semantic_weight, text_weight)

        entries: dict[uuid.UUID, _Entry] = {}
        for hit in semantic:
            entry = entries.setdefault(hit.document_id, _Entry(len(entries)))
            if entry.semantic is None or hit.composite_score > entry.semantic.composite_score:
                entry.semantic = hit
        for hit in lexical:
            entry = entries.setdefault(hit.document_id, _Entry(len(entries)))
            if entry.lexical is None or hit.rank_score > entry.lexical.rank_score:
                entry.lexical = hit

        combined = []
        for document_id, entry in entries.items():
            modes = []
            weighted = 0.0
            semantic_score = lexical_score = None
            if entry.semantic is not None:
                modes.append(SearchMode.SEMANTIC)
                semantic_score = entry.semantic.composite_score
                weighted += semantic_score * semantic_weight
            if entry.lexical is not None:
                modes.append(SearchMode.LEXICAL)
                lexical_score = entry.lexical.rank_score
                weighted += lexical_score * text_weight
            chunk = entry.semantic or entry.lexical
            combined.append(
                (
                    entry.order,
                    HybridHit(
                        document_id=document_id,
                        weighted_score=weighted,
                        modes=modes,
                        semantic_score=semantic_score,
                        lexical_score=lexical_score,
                        embedding_id=chunk.embedding_id,
                        chunk_index=chunk.chunk_index,
                        content=chunk.content,
                        similarity=entry.semantic.similarity if entry.semantic else None,
                    ),
                )
            )
        combined.sort(key=lambda item: (-item[1].weighted_score, item[0], item[1].document_id))
        return [hit for _, hit in combined[:limit]]
