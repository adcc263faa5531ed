"""Records exchanged with vector index backends."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Sequence


@dataclass(frozen=True, slots=True)
class VectorRecord:
    """A chunk ready to be written into a namespace."""

    id: str
    vector: List[float]
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    """Similarity search hit; higher ``score`` means more similar."""

    text: str
    metadata: Dict[str, Any]
    score: float
    namespace: str


class VectorIndex(Protocol):
    """Namespace-partitioned similarity search capability."""

    backend: str

    def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> None:
        ...

    def query(self, namespace: str, vector: Sequence[float], k: int) -> List[ScoredChunk]:
        ...

    def delete_namespace(self, namespace: str) -> bool:
        ...

    def count(self, namespace: str) -> int:
        ...


__all__ = ["ScoredChunk", "VectorIndex", "VectorRecord"]
