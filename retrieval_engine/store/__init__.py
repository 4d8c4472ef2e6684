"""
Storage backends for documents, embeddings and search tracking.
"""

from .base import StorageBackend
from .factory import StorageFactory
from .memory import MemoryBackend
from .postgres import PostgresBackend

__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "PostgresBackend",
    "StorageFactory",
]
