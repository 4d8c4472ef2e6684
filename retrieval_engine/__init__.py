"""
Document retrieval engine: chunking, duplicate detection, vector storage,
usage-aware semantic and hybrid search, and search tracking.
"""

from .engine import RetrievalEngine, build_engine
from .settings import Settings, load_settings

__all__ = ["RetrievalEngine", "build_engine", "Settings", "load_settings"]
