from typing import Literal, Optional

from pydantic import Field, PostgresDsn, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict

from retrieval_engine.schemas.content import ContentKind


class Settings(BaseSettings):
    STORAGE_BACKEND: Literal["memory", "postgres"] = Field(
        default="memory", alias="STORAGE_BACKEND"
    )
    DATABASE_URL: Optional[PostgresDsn] = Field(default=None, alias="DATABASE_URL")
    DEBUG: bool = Field(default=False, alias="DEBUG")
    LOG_LEVEL: str = Field(default="INFO", alias="LOG_LEVEL")

    # Embedding cache
    REDIS_URL: Optional[RedisDsn] = Field(default=None, alias="REDIS_URL")
    EMBEDDING_CACHE_TTL_SECONDS: int = Field(
        default=604800, alias="EMBEDDING_CACHE_TTL_SECONDS"
    )  # 7 days

    # Embedding models, one per content kind
    TEXT_EMBEDDING_MODEL: str = Field(
        default="BAAI/bge-small-en-v1.5", alias="TEXT_EMBEDDING_MODEL"
    )
    IMAGE_EMBEDDING_MODEL: str = Field(
        default="BAAI/bge-small-en-v1.5", alias="IMAGE_EMBEDDING_MODEL"
    )
    AUDIO_EMBEDDING_MODEL: str = Field(
        default="BAAI/bge-small-en-v1.5", alias="AUDIO_EMBEDDING_MODEL"
    )
    TEXT_EMBEDDING_DIM: int = Field(default=384, alias="TEXT_EMBEDDING_DIM")
    IMAGE_EMBEDDING_DIM: int = Field(default=384, alias="IMAGE_EMBEDDING_DIM")
    AUDIO_EMBEDDING_DIM: int = Field(default=384, alias="AUDIO_EMBEDDING_DIM")

    # Segmentation
    CHUNK_SIZE: int = Field(default=512, alias="CHUNK_SIZE")
    CHUNK_OVERLAP: int = Field(default=75, alias="CHUNK_OVERLAP")
    SEGMENTER_STRATEGY: Literal["tokens", "recursive"] = Field(
        default="tokens", alias="SEGMENTER_STRATEGY"
    )

    # Duplicate detection
    DUPLICATE_LENGTH_TOLERANCE: float = Field(
        default=0.05, alias="DUPLICATE_LENGTH_TOLERANCE"
    )

    # Search
    SIMILARITY_THRESHOLD: float = Field(default=0.3, alias="SIMILARITY_THRESHOLD")
    MAX_SEARCH_RESULTS: int = Field(default=10, alias="MAX_SEARCH_RESULTS")
    LEXICAL_RANKING: Literal["native", "positional"] = Field(
        default="native", alias="LEXICAL_RANKING"
    )

    # Ranking
    RANK_WEIGHT_SIMILARITY: float = Field(default=0.6, alias="RANK_WEIGHT_SIMILARITY")
    RANK_WEIGHT_USAGE: float = Field(default=0.3, alias="RANK_WEIGHT_USAGE")
    RANK_WEIGHT_METADATA: float = Field(default=0.1, alias="RANK_WEIGHT_METADATA")
    RECENCY_DECAY_DAYS: float = Field(default=30.0, alias="RECENCY_DECAY_DAYS")
    FREQUENCY_SATURATION: int = Field(default=100, alias="FREQUENCY_SATURATION")

    # Hybrid search
    HYBRID_SEMANTIC_WEIGHT: float = Field(default=0.7, alias="HYBRID_SEMANTIC_WEIGHT")
    HYBRID_TEXT_WEIGHT: float = Field(default=0.3, alias="HYBRID_TEXT_WEIGHT")
    HYBRID_CANDIDATE_MULTIPLIER: int = Field(
        default=3, alias="HYBRID_CANDIDATE_MULTIPLIER"
    )

    # Search tracking
    TRACK_SEARCHES: bool = Field(default=True, alias="TRACK_SEARCHES")
    TRACK_USAGE: bool = Field(default=True, alias="TRACK_USAGE")

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    def embedding_model(self, kind: ContentKind) -> str:
        return {
            ContentKind.TEXT: self.TEXT_EMBEDDING_MODEL,
            ContentKind.IMAGE: self.IMAGE_EMBEDDING_MODEL,
            ContentKind.AUDIO: self.AUDIO_EMBEDDING_MODEL,
        }[kind]

    def embedding_dim(self, kind: ContentKind) -> int:
        return {
            ContentKind.TEXT: self.TEXT_EMBEDDING_DIM,
            ContentKind.IMAGE: self.IMAGE_EMBEDDING_DIM,
            ContentKind.AUDIO: self.AUDIO_EMBEDDING_DIM,
        }[kind]


def load_settings(**overrides) -> Settings:
    """
    Build a Settings object from the environment (and `.env`), applying any
    explicit overrides. Components receive the result through their
    constructors; nothing reads settings from module state.
    """
    return Settings(**overrides)
