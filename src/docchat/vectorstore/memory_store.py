"""Simple in-memory vector index for local runs and tests."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from docchat.errors import NamespaceNotFoundError, ValidationError

from .models import ScoredChunk, VectorRecord

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _StoredItem:
    """Internal representation of a stored vector."""

    id: str
    embedding: np.ndarray
    document: str
    metadata: dict


class InMemoryVectorIndex:
    """A minimal in-memory vector index ranking by cosine similarity."""

    backend = "memory"

    def __init__(self) -> None:
        self._namespaces: Dict[str, Dict[str, _StoredItem]] = {}
        self._lock = threading.Lock()

    def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> None:
        """Insert or replace records inside ``namespace``, creating it if needed."""

        items = [
            _StoredItem(
                id=record.id,
                embedding=np.asarray(record.vector, dtype=np.float32),
                document=record.text,
                metadata=dict(record.metadata),
            )
            for record in records
        ]
        with self._lock:
            collection = self._namespaces.setdefault(namespace, {})
            dimension = _collection_dimension(collection)
            for item in items:
                if dimension is not None and item.embedding.shape[0] != dimension:
                    raise ValidationError("Vectors must be of the same dimension")
                dimension = item.embedding.shape[0]
            for item in items:
                collection[item.id] = item
        LOGGER.debug("Upserted %s records into namespace %s", len(items), namespace)

    def query(self, namespace: str, vector: Sequence[float], k: int) -> List[ScoredChunk]:
        """Return the *k* most similar records in ``namespace``."""

        with self._lock:
            collection = self._namespaces.get(namespace)
            if collection is None:
                raise NamespaceNotFoundError(namespace)
            items = list(collection.values())

        if k <= 0 or not items:
            return []

        query_vector = np.asarray(vector, dtype=np.float32)
        scored = [(_cosine_similarity(query_vector, item.embedding), item) for item in items]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            ScoredChunk(
                text=item.document,
                metadata=dict(item.metadata),
                score=score,
                namespace=namespace,
            )
            for score, item in scored[:k]
        ]

    def delete_namespace(self, namespace: str) -> bool:
        with self._lock:
            removed = self._namespaces.pop(namespace, None)
        return removed is not None

    def count(self, namespace: str) -> int:
        with self._lock:
            return len(self._namespaces.get(namespace, {}))

    def namespaces(self) -> List[str]:
        with self._lock:
            return sorted(self._namespaces)


def _collection_dimension(collection: Dict[str, _StoredItem]) -> int | None:
    for item in collection.values():
        return int(item.embedding.shape[0])
    return None


def _cosine_similarity(vec_a: np.ndarray, vec_b: np.ndarray) -> float:
    if vec_a.shape != vec_b.shape:
        raise ValidationError("Vectors must be of the same dimension")
    denominator = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / denominator)


__all__ = ["InMemoryVectorIndex"]
