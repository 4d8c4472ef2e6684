import hashlib
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Bootstrap to ensure tests can import retrieval_engine without installing it.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import redis

from retrieval_engine.engine import RetrievalEngine
from retrieval_engine.errors import InvalidInput
from retrieval_engine.services.embeddings import EmbeddingProvider
from retrieval_engine.settings import Settings
from retrieval_engine.store.memory import MemoryBackend
from retrieval_engine.utils.text import tokenize

DIM = 8


class HashingProvider(EmbeddingProvider):
    """Deterministic bag-of-words vectors: each token adds 1 to a hashed bucket."""

    def __init__(self, dim: int = DIM):
        self.dim = dim
        self.calls: list[list[str]] = []

    def embed(self, text: str, model: str) -> list[float]:
        return self.embed_batch([text], model)[0]

    def embed_batch(self, texts, model):
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            tokens = tokenize(text)
            if not tokens:
                raise InvalidInput("Cannot embed empty text")
            vector = [0.0] * self.dim
            for token in tokens:
                bucket = int(hashlib.sha256(token.encode()).hexdigest()[:8], 16) % self.dim
                vector[bucket] += 1.0
            vectors.append(vector)
        return vectors


class FakeRedis:
    """In-process stand-in for a redis.Redis client: get/set/ping/close."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.expiry: dict[str, int] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex
        return True

    def ping(self):
        return True

    def close(self):
        pass


class BrokenRedis(FakeRedis):
    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def set(self, key, value, ex=None):
        raise redis.ConnectionError("connection refused")


class Clock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        STORAGE_BACKEND="memory",
        TEXT_EMBEDDING_DIM=DIM,
        IMAGE_EMBEDDING_DIM=DIM,
        AUDIO_EMBEDDING_DIM=DIM,
        TEXT_EMBEDDING_MODEL="test-model",
        IMAGE_EMBEDDING_MODEL="test-model",
        AUDIO_EMBEDDING_MODEL="test-model",
        CHUNK_SIZE=8,
        CHUNK_OVERLAP=2,
        SIMILARITY_THRESHOLD=0.0,
        MAX_SEARCH_RESULTS=10,
    )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def backend(clock) -> MemoryBackend:
    return MemoryBackend(clock=clock)


@pytest.fixture
def provider() -> HashingProvider:
    return HashingProvider()


@pytest.fixture
def engine(settings, backend, provider, clock) -> RetrievalEngine:
    return RetrievalEngine(settings, backend, provider, clock=clock)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def broken_redis() -> BrokenRedis:
    return BrokenRedis()
