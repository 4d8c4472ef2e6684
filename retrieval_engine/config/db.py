from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from retrieval_engine.errors import ConfigurationError
from retrieval_engine.models import Base
from retrieval_engine.settings import Settings
from retrieval_engine.utils.logging_config import logger


def sync_database_url(url: str) -> str:
    """Force the psycopg2 driver regardless of the scheme in DATABASE_URL."""
    for prefix in ("postgresql+asyncpg://", "postgresql+psycopg://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+psycopg2://" + url[len(prefix) :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg2://" + url[len("postgresql://") :]
    return url


def create_db_engine(settings: Settings) -> Engine:
    if settings.DATABASE_URL is None:
        raise ConfigurationError("DATABASE_URL is required for the postgres backend")
    return create_engine(
        sync_database_url(str(settings.DATABASE_URL)),
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=20,
        max_overflow=20,
        echo=settings.DEBUG,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Yield a session inside a transaction. Commits on success and rolls back on
    a database error. Any other exception skips the commit, and closing the
    session discards the transaction.
    """
    db = factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


def check_db_connection(engine: Engine) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            logger.info("Database connection successful")
    except Exception as e:
        logger.error(f"Database connection error: {e}")
        raise


def create_schema(engine: Engine) -> None:
    """Create the pgvector extension and every table and index if missing."""
    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    Base.metadata.create_all(engine)
    logger.info("Database schema ensured")
