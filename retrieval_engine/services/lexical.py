"""Keyword extraction and document-level lexical search."""

from typing import Literal, Optional

from retrieval_engine.errors import ConfigurationError, ValidationError
from retrieval_engine.schemas.search import LexicalHit, SearchFilters
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.utils.cancellation import CancellationToken
from retrieval_engine.utils.text import strip_punctuation, tokenize

MIN_KEYWORD_LENGTH = 5


def _dedupe(tokens: list[str]) -> list[str]:
    return list(dict.fromkeys(tokens))


def extract_keywords(query: str) -> list[str]:
    """
    Whitespace tokens stripped of punctuation and lower-cased, keeping only
    those of 5 characters or more, in query order without repeats.

    >>> extract_keywords("How do I reset the router password?")
    ['reset', 'router', 'password']
    """
    keywords = []
    for raw in query.split():
        token = strip_punctuation(raw).casefold()
        if len(token) >= MIN_KEYWORD_LENGTH:
            keywords.append(token)
    return _dedupe(keywords)


class LexicalIndex:
    def __init__(
        self,
        backend: StorageBackend,
        ranking: Literal["native", "positional"] = "native",
    ):
        if ranking not in ("native", "positional"):
            raise ConfigurationError(f"Unknown lexical ranking: {ranking!r}")
        self.backend = backend
        self.ranking = ranking

    def lexical_search(
        self,
        query: str,
        limit: int,
        filters: Optional[SearchFilters] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[LexicalHit]:
        """
        Documents matching any keyword of `query`, best first, each with a
        rank_score in [0, 1].

        Native scores s are mapped to s / (s + 1). Without a native score, or
        with positional ranking configured, the i-th result scores
        (limit - i) / limit.
        """
        if limit < 1:
            raise ValidationError(f"limit must be positive, got {limit}")
        terms = extract_keywords(query) or _dedupe(tokenize(query))
        if not terms:
            return []
        hits = self.backend.full_text(terms, limit, filters or SearchFilters(), cancel_token)
        ranked = []
        for position, hit in enumerate(hits):
            if self.ranking == "native" and hit.raw_score is not None:
                raw = max(hit.raw_score, 0.0)
                score = raw / (raw + 1.0)
            else:
                score = (limit - position) / limit
            ranked.append(hit.model_copy(update={"rank_score": score}))
        return ranked
