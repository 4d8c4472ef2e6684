import numpy as np
import pytest

from retrieval_engine.schemas.chunk import Chunk
from retrieval_engine.services.cache import EmbeddingCache
from retrieval_engine.services.embedding_store import EmbeddingStore
from retrieval_engine.services.ingestion import ContentProcessor
from retrieval_engine.services.segmenter import ContentSegmenter


def test_miss_then_hit(fake_redis):
    cache = EmbeddingCache(fake_redis, ttl_seconds=60)
    assert cache.get("m", "abc") is None

    assert cache.set("m", "abc", [0.5, -1.25, 2.0]) is True

    assert cache.get("m", "abc") == [0.5, -1.25, 2.0]
    assert fake_redis.expiry["embedding_cache:m:abc"] == 60


def test_vectors_stored_as_float32(fake_redis):
    cache = EmbeddingCache(fake_redis, ttl_seconds=60, prefix="emb")
    cache.set("m", "k", [0.1, 0.2])

    raw = fake_redis.data["emb:m:k"]
    assert len(raw) == 8
    assert cache.get("m", "k") == pytest.approx([0.1, 0.2])
    assert np.frombuffer(raw, dtype=np.float32).dtype == np.float32


def test_keys_are_scoped_by_model(fake_redis):
    cache = EmbeddingCache(fake_redis, ttl_seconds=60)
    cache.set("model-a", "k", [1.0])
    assert cache.get("model-b", "k") is None


def test_redis_errors_are_misses(broken_redis):
    cache = EmbeddingCache(broken_redis, ttl_seconds=60)
    assert cache.get("m", "k") is None
    assert cache.set("m", "k", [1.0]) is False
    assert cache.ping() is True


@pytest.fixture
def processor(settings, backend, provider, fake_redis):
    store = EmbeddingStore.from_settings(settings, backend)
    cache = EmbeddingCache(fake_redis, ttl_seconds=60)
    return ContentProcessor(backend, store, provider, ContentSegmenter(), cache=cache)


def _chunks(*texts):
    return [
        Chunk(content=text, chunk_index=i, char_start=0, char_end=len(text))
        for i, text in enumerate(texts)
    ]


def test_only_misses_reach_the_provider(processor, provider):
    processor.embed_chunks(_chunks("alpha beta"), "test-model")
    provider.calls.clear()

    vectors = processor.embed_chunks(_chunks("alpha beta", "gamma delta"), "test-model")

    assert provider.calls == [["gamma delta"]]
    assert vectors[0] == provider.embed("alpha beta", "test-model")
    assert len(vectors) == 2


def test_cache_failure_falls_back_to_provider(settings, backend, provider, broken_redis):
    store = EmbeddingStore.from_settings(settings, backend)
    processor = ContentProcessor(
        backend,
        store,
        provider,
        ContentSegmenter(),
        cache=EmbeddingCache(broken_redis, ttl_seconds=60),
    )
    vectors = processor.embed_chunks(_chunks("alpha beta"), "test-model")
    assert provider.calls == [["alpha beta"]]
    assert len(vectors[0]) == 8
