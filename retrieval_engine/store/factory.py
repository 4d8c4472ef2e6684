"""
Factory for storage backends, selected by `STORAGE_BACKEND`.
"""

from typing import Optional

from retrieval_engine.config.db import (
    check_db_connection,
    create_db_engine,
    create_schema,
    create_session_factory,
)
from retrieval_engine.errors import ConfigurationError
from retrieval_engine.models import EMBEDDING_DIM
from retrieval_engine.schemas.content import ContentKind
from retrieval_engine.settings import Settings
from retrieval_engine.store.base import StorageBackend
from retrieval_engine.store.memory import MemoryBackend
from retrieval_engine.store.postgres import PostgresBackend
from retrieval_engine.utils.logging_config import logger


class StorageFactory:
    """Creates the storage backend named in the settings."""

    @staticmethod
    def create(settings: Settings, backend_type: Optional[str] = None) -> StorageBackend:
        backend_type = (backend_type or settings.STORAGE_BACKEND).lower()
        if backend_type == "memory":
            return StorageFactory._create_memory(settings)
        if backend_type == "postgres":
            return StorageFactory._create_postgres(settings)
        raise ConfigurationError(
            f"Unsupported storage backend: {backend_type}. "
            f"Supported backends: 'memory', 'postgres'"
        )

    @staticmethod
    def _create_memory(settings: Settings) -> MemoryBackend:
        logger.info("Using in-memory storage backend")
        return MemoryBackend()

    @staticmethod
    def _create_postgres(settings: Settings) -> PostgresBackend:
        """
        Connect, ensure the schema and return the backend. The vector column has
        a fixed width, so every content kind must use EMBEDDING_DIM.
        """
        for kind in ContentKind:
            if settings.embedding_dim(kind) != EMBEDDING_DIM:
                raise ConfigurationError(
                    f"The postgres backend stores {EMBEDDING_DIM}-dimensional vectors; "
                    f"{kind.value.upper()}_EMBEDDING_DIM is {settings.embedding_dim(kind)}"
                )
        engine = create_db_engine(settings)
        check_db_connection(engine)
        create_schema(engine)
        logger.info("Using postgres storage backend")
        return PostgresBackend(create_session_factory(engine), engine=engine)
