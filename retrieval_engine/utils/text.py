"""Token normalization shared by keyword extraction and the in-memory index."""

import unicodedata


def strip_punctuation(token: str) -> str:
    """Remove punctuation and symbols from both ends of a token."""
    start, end = 0, len(token)
    while start < end and _is_punct(token[start]):
        start += 1
    while end > start and _is_punct(token[end - 1]):
        end -= 1
    return token[start:end]


def _is_punct(char: str) -> bool:
    return unicodedata.category(char)[0] in ("P", "S")


def tokenize(text: str) -> list[str]:
    """Lower-cased, punctuation-stripped whitespace tokens, empties dropped."""
    tokens = []
    for raw in text.split():
        token = strip_punctuation(raw).casefold()
        if token:
            tokens.append(token)
    return tokens
