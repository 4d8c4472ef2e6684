"""
Redis cache for chunk embeddings, keyed by the chunk cache key.
A cache failure never fails an ingestion: errors are logged and treated as misses.
"""

from typing import Optional

import numpy as np
import redis

from retrieval_engine.utils.logging_config import logger


class EmbeddingCache:
    """Stores vectors as float32 bytes under `{prefix}:{model}:{cache_key}`."""

    def __init__(self, client: redis.Redis, ttl_seconds: int, prefix: str = "embedding_cache"):
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int, prefix: str = "embedding_cache") -> "EmbeddingCache":
        return cls(redis.from_url(url), ttl_seconds, prefix)

    def _key(self, model: str, cache_key: str) -> str:
        return f"{self.prefix}:{model}:{cache_key}"

    def get(self, model: str, cache_key: str) -> Optional[list[float]]:
        try:
            raw = self._client.get(self._key(model, cache_key))
        except redis.RedisError as e:
            logger.error(f"Embedding cache lookup failed: {e}")
            return None
        if raw is None:
            return None
        return np.frombuffer(raw, dtype=np.float32).astype(float).tolist()

    def set(self, model: str, cache_key: str, vector: list[float]) -> bool:
        payload = np.asarray(vector, dtype=np.float32).tobytes()
        try:
            self._client.set(self._key(model, cache_key), payload, ex=self.ttl_seconds)
        except redis.RedisError as e:
            logger.error(f"Failed to cache embedding: {e}")
            return False
        return True

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis connection error: {e}")
            return False

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
