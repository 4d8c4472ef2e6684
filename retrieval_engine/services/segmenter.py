"""
Content segmentation: splits extracted text into overlapping chunks.

Two strategies are available. `tokens` counts whitespace-delimited tokens and
prefers to end a chunk on a sentence or paragraph boundary, falling back to a
hard cut at `max_tokens`. `recursive` delegates to LangChain's
RecursiveCharacterTextSplitter and counts characters.
"""

import re
from typing import Iterator, Literal

from langchain_text_splitters import RecursiveCharacterTextSplitter

from retrieval_engine.errors import ConfigurationError, ValidationError
from retrieval_engine.schemas.chunk import Chunk

_TOKEN = re.compile(r"\S+")
_SENTENCE_END = re.compile(r"[.!?][\"'\)\]”’]*$")


def check_chunk_params(max_tokens: int, overlap: int) -> None:
    if not isinstance(max_tokens, int) or max_tokens < 1:
        raise ConfigurationError(f"max_tokens must be a positive integer, got {max_tokens!r}")
    if not isinstance(overlap, int) or overlap < 0:
        raise ConfigurationError(f"overlap must be a non-negative integer, got {overlap!r}")
    if overlap >= max_tokens:
        raise ConfigurationError(
            f"overlap ({overlap}) must be smaller than max_tokens ({max_tokens})"
        )


def _boundaries(text: str, spans: list[tuple[int, int]]) -> list[bool]:
    """boundary[i] is True when a chunk may end right after token i."""
    result = []
    for i, (start, end) in enumerate(spans):
        if _SENTENCE_END.search(text[start:end]):
            result.append(True)
        elif i + 1 < len(spans):
            gap = text[end : spans[i + 1][0]]
            result.append(gap.count("\n") >= 2)
        else:
            result.append(True)
    return result


class TokenChunks:
    """
    Lazy, restartable sequence of chunks. Every iteration re-runs the split, so
    two passes over the same object yield identical chunks.
    """

    def __init__(self, text: str, max_tokens: int, overlap: int):
        self.text = text
        self.max_tokens = max_tokens
        self.overlap = overlap

    def __iter__(self) -> Iterator[Chunk]:
        text = self.text
        spans = [m.span() for m in _TOKEN.finditer(text)]
        if not spans:
            return
        boundary = _boundaries(text, spans)
        n = len(spans)
        start = 0
        index = 0
        while True:
            end = min(start + self.max_tokens, n)
            if end < n:
                # Latest sentence boundary that still advances past the overlap.
                for cut in range(end, start + self.overlap, -1):
                    if boundary[cut - 1]:
                        end = cut
                        break
            char_start = spans[start][0]
            char_end = spans[end - 1][1]
            yield Chunk(
                content=text[char_start:char_end],
                chunk_index=index,
                char_start=char_start,
                char_end=char_end,
            )
            if end >= n:
                return
            index += 1
            start = end - self.overlap

    def __len__(self) -> int:
        return sum(1 for _ in self)


class RecursiveChunks:
    """Character-sized chunks produced by RecursiveCharacterTextSplitter."""

    def __init__(self, text: str, chunk_size: int, chunk_overlap: int):
        self.text = text
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def __iter__(self) -> Iterator[Chunk]:
        text_splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            add_start_index=True,
        )
        docs = text_splitter.create_documents([self.text])
        index = 0
        for doc in docs:
            content = doc.page_content
            if not content.strip():
                continue
            start = doc.metadata["start_index"]
            yield Chunk(
                content=content,
                chunk_index=index,
                char_start=start,
                char_end=start + len(content),
            )
            index += 1

    def __len__(self) -> int:
        return sum(1 for _ in self)


class ContentSegmenter:
    def __init__(self, strategy: Literal["tokens", "recursive"] = "tokens"):
        if strategy not in ("tokens", "recursive"):
            raise ConfigurationError(f"Unknown segmenter strategy: {strategy!r}")
        self.strategy = strategy

    def chunk(self, text: str, max_tokens: int, overlap: int):
        """
        Split `text` into ordered, overlapping chunks.

        Args:
            text: The extracted text, description or transcript.
            max_tokens: Maximum chunk size (tokens, or characters for the
                recursive strategy).
            overlap: Units shared by consecutive chunks; must be < max_tokens.

        Returns:
            A lazy, restartable iterable of Chunk objects.

        Raises:
            ConfigurationError: If the chunk parameters are invalid.
            ValidationError: If `text` is not a string.
        """
        check_chunk_params(max_tokens, overlap)
        if not isinstance(text, str):
            raise ValidationError(f"Expected text to be a string, got {type(text).__name__}")
        if self.strategy == "recursive":
            return RecursiveChunks(text, max_tokens, overlap)
        return TokenChunks(text, max_tokens, overlap)


def chunk(text: str, max_tokens: int, overlap: int) -> TokenChunks:
    return ContentSegmenter().chunk(text, max_tokens, overlap)
