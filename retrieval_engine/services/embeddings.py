"""
Embedding providers.
FastEmbedProvider keeps one shared model instance per model name, created
lazily under a lock to avoid the memory overhead of duplicate instances.
"""

import threading
from abc import ABC, abstractmethod
from typing import Sequence

from fastembed import TextEmbedding

from retrieval_engine.errors import InvalidInput, ModelUnavailable, ProviderError
from retrieval_engine.utils.logging_config import logger


class EmbeddingProvider(ABC):
    """Turns text into vectors. Errors are ProviderError subclasses."""

    @abstractmethod
    def embed(self, text: str, model: str) -> list[float]:
        pass

    def embed_batch(self, texts: Sequence[str], model: str) -> list[list[float]]:
        return [self.embed(text, model) for text in texts]


class FastEmbedProvider(EmbeddingProvider):
    def __init__(self):
        self._models: dict[str, TextEmbedding] = {}
        self._lock = threading.Lock()

    def get_model(self, model: str) -> TextEmbedding:
        """
        Get the shared instance of `model`.
        Initializes it if it doesn't exist.
        """
        instance = self._models.get(model)
        if instance is None:
            with self._lock:
                instance = self._models.get(model)
                if instance is None:  # Double-check after acquiring lock
                    logger.info(f"Initializing embedding model ({model})...")
                    try:
                        instance = TextEmbedding(model_name=model)
                    except (RuntimeError, ValueError, OSError) as e:
                        logger.error(f"Failed to initialize embedding model {model}: {e}")
                        raise ModelUnavailable(f"Embedding model {model} unavailable: {e}") from e
                    self._models[model] = instance
                    logger.info(f"Embedding model {model} initialized successfully.")
        return instance

    def embed(self, text: str, model: str) -> list[float]:
        return self.embed_batch([text], model)[0]

    def embed_batch(self, texts: Sequence[str], model: str) -> list[list[float]]:
        for text in texts:
            if not isinstance(text, str) or not text.strip():
                raise InvalidInput("Cannot embed empty text")
        if not texts:
            return []
        instance = self.get_model(model)
        try:
            vectors = list(instance.embed(list(texts)))
        except (RuntimeError, ValueError) as e:
            logger.error(f"Embedding with {model} failed: {e}")
            raise ProviderError(f"Embedding with {model} failed: {e}") from e
        return [vector.tolist() for vector in vectors]
