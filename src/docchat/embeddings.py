"""Embedding gateway backed by Sentence Transformers or feature hashing."""
from __future__ import annotations

import hashlib
import logging
import re
import time
from functools import lru_cache
from typing import List, Protocol, Sequence

import numpy as np

from docchat.config import DEFAULT_EMBEDDING_MODEL, get_settings
from docchat.errors import CapabilityUnavailableError
from docchat.telemetry import emit_embeddings_event

LOGGER = logging.getLogger(__name__)

HASHING_DIMENSION = 384
_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class Embedder(Protocol):
    """Capability converting text into fixed-length vectors."""

    @property
    def dimension(self) -> int:
        ...

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        ...

    def embed(self, text: str) -> List[float]:
        ...


class _BaseEmbedder:
    model_name = "unknown"

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        started = time.perf_counter()
        try:
            embeddings = self._encode(list(texts))
        except Exception as error:
            emit_embeddings_event(
                model=self.model_name,
                count=len(texts),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[str(error)],
            )
            raise

        emit_embeddings_event(
            model=self.model_name,
            count=len(texts),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return embeddings

    def embed(self, text: str) -> List[float]:
        return self.embed_texts([text])[0]

    def _encode(self, texts: List[str]) -> List[List[float]]:  # pragma: no cover - abstract
        raise NotImplementedError


class HashingEmbeddingModel(_BaseEmbedder):
    """Deterministic bag-of-words embeddings using signed feature hashing.

    Requires no model download, which makes it the default for local runs and
    tests. Texts sharing vocabulary land close together under cosine distance.
    """

    model_name = "feature-hashing"

    def __init__(self, dimension: int = HASHING_DIMENSION) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be a positive integer")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _encode(self, texts: List[str]) -> List[List[float]]:
        return [self._vectorize(text) for text in texts]

    def _vectorize(self, text: str) -> List[float]:
        vector = np.zeros(self._dimension, dtype=np.float32)
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:8], "big") % self._dimension
            sign = 1.0 if digest[8] & 1 else -1.0
            vector[bucket] += sign
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector.tolist()


class EmbeddingModel(_BaseEmbedder):
    """Wrapper around a SentenceTransformer embedding model."""

    def __init__(
        self,
        model_name_or_path: str = DEFAULT_EMBEDDING_MODEL,
        *,
        device: str | None = None,
    ) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as error:
            raise CapabilityUnavailableError(
                "sentence-transformers is not installed; install the 'heavy' extra "
                "or set EMBEDDING_BACKEND=hash",
                cause=error,
            ) from error

        try:
            self._model = SentenceTransformer(model_name_or_path, device=device)
        except Exception as error:
            raise CapabilityUnavailableError(
                f"Failed to initialise sentence-transformers model '{model_name_or_path}'",
                cause=error,
            ) from error

        self.model_name = model_name_or_path
        self._dimension = int(self._model.get_sentence_embedding_dimension())
        LOGGER.info("Loaded embedding model %s (dimension %s)", model_name_or_path, self._dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    def _encode(self, texts: List[str]) -> List[List[float]]:
        embeddings = self._model.encode(
            texts,
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        return embeddings.tolist()


class UnavailableEmbedder:
    """Stands in for an embedding backend that failed to initialise.

    Construction always succeeds so that conversation management keeps
    working; every embedding call raises the original reason.
    """

    model_name = "unavailable"

    def __init__(self, reason: str) -> None:
        self.reason = reason

    @property
    def dimension(self) -> int:
        return 0

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        raise CapabilityUnavailableError(self.reason)

    def embed(self, text: str) -> List[float]:
        raise CapabilityUnavailableError(self.reason)


@lru_cache()
def get_embedding_model() -> Embedder:
    """Return a cached embedding model selected by ``EMBEDDING_BACKEND``."""

    settings = get_settings()
    if settings.embedding_backend == "sentence-transformers":
        return EmbeddingModel(settings.embedding_model_path, device=settings.embedding_device)
    if settings.embedding_backend != "hash":
        LOGGER.warning(
            "Unknown EMBEDDING_BACKEND %r; using feature hashing", settings.embedding_backend
        )
    return HashingEmbeddingModel()


def reset_embedding_model_cache() -> None:
    """Clear the cached embedding model instance (primarily for testing)."""

    get_embedding_model.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "Embedder",
    "EmbeddingModel",
    "HashingEmbeddingModel",
    "UnavailableEmbedder",
    "get_embedding_model",
    "reset_embedding_model_cache",
]
