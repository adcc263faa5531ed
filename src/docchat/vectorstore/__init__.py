"""Vector index backends partitioned by namespace."""

from __future__ import annotations

import logging
from functools import lru_cache

from docchat.config import get_settings
from docchat.errors import NamespaceNotFoundError, VectorStoreUnavailableError

from .memory_store import InMemoryVectorIndex
from .models import ScoredChunk, VectorIndex, VectorRecord

LOGGER = logging.getLogger(__name__)


@lru_cache()
def get_vector_index() -> VectorIndex:
    """Return a lazily initialised vector index based on ``VECTOR_STORE``."""

    settings = get_settings()
    backend = settings.vector_store

    if backend == "memory":
        return InMemoryVectorIndex()

    if backend == "chroma":
        from .chroma_store import ChromaVectorIndex

        LOGGER.info("Using Chroma vector index at %s", settings.chroma_persist_dir)
        return ChromaVectorIndex(settings.chroma_persist_dir)

    raise VectorStoreUnavailableError(f"Unsupported VECTOR_STORE backend: {backend!r}")


def reset_vector_index_cache() -> None:
    """Clear the cached vector index (primarily for testing)."""

    get_vector_index.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "InMemoryVectorIndex",
    "NamespaceNotFoundError",
    "ScoredChunk",
    "VectorIndex",
    "VectorRecord",
    "VectorStoreUnavailableError",
    "get_vector_index",
    "reset_vector_index_cache",
]
