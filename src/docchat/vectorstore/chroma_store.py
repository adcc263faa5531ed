"""Chroma vector index adapter; one collection per namespace."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import chromadb
from chromadb.errors import NotFoundError

from docchat.errors import NamespaceNotFoundError, VectorStoreUnavailableError

from .models import ScoredChunk, VectorRecord

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from chromadb.api import ClientAPI
    from chromadb.api.models.Collection import Collection

LOGGER = logging.getLogger(__name__)

DEFAULT_DISTANCE_METRIC = "cosine"


def _clean_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Chroma only accepts scalar metadata values."""

    cleaned: Dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = str(value)
    return cleaned


class ChromaVectorIndex:
    """Adapter around a Chroma persistent client."""

    backend = "chroma"

    def __init__(
        self,
        persist_dir: str | Path,
        *,
        client: Optional["ClientAPI"] = None,
        distance_metric: str = DEFAULT_DISTANCE_METRIC,
    ) -> None:
        self.persist_dir = Path(persist_dir)
        self.distance_metric = distance_metric
        try:
            if client is not None:
                self._client = client
            else:
                self.persist_dir.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(self.persist_dir))
        except Exception as exc:  # pragma: no cover - depends on chromadb runtime
            raise VectorStoreUnavailableError(
                "Failed to initialise Chroma persistent client",
                cause=exc,
            ) from exc

    def _get_collection(self, namespace: str) -> "Collection":
        try:
            return self._client.get_collection(name=namespace)
        except (NotFoundError, ValueError) as exc:
            raise NamespaceNotFoundError(namespace) from exc

    def upsert(self, namespace: str, records: Sequence[VectorRecord]) -> None:
        """Add embeddings and corresponding documents to the namespace collection."""

        if not records:
            return
        try:
            collection = self._client.get_or_create_collection(
                name=namespace,
                metadata={"hnsw:space": self.distance_metric},
            )
            collection.upsert(
                ids=[record.id for record in records],
                embeddings=[[float(value) for value in record.vector] for record in records],
                documents=[record.text for record in records],
                metadatas=[_clean_metadata(record.metadata) for record in records],
            )
        except Exception as exc:
            raise VectorStoreUnavailableError(
                f"Failed to upsert {len(records)} records into '{namespace}'",
                cause=exc,
            ) from exc

    def query(self, namespace: str, vector: Sequence[float], k: int) -> List[ScoredChunk]:
        """Query the namespace collection for the nearest neighbours."""

        if k <= 0:
            return []
        collection = self._get_collection(namespace)
        try:
            available = collection.count()
            if available == 0:
                return []
            result = collection.query(
                query_embeddings=[[float(value) for value in vector]],
                n_results=min(k, available),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreUnavailableError(
                f"Chroma query failed for '{namespace}'", cause=exc
            ) from exc

        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        neighbours: List[ScoredChunk] = []
        for document, metadata, distance in zip(documents, metadatas, distances):
            similarity = 1.0 - float(distance) if distance is not None else 0.0
            neighbours.append(
                ScoredChunk(
                    text=document or "",
                    metadata=dict(metadata or {}),
                    score=max(0.0, similarity),
                    namespace=namespace,
                )
            )
        return neighbours

    def delete_namespace(self, namespace: str) -> bool:
        try:
            self._get_collection(namespace)
        except NamespaceNotFoundError:
            return False
        try:
            self._client.delete_collection(name=namespace)
        except Exception as exc:
            raise VectorStoreUnavailableError(
                f"Failed to delete namespace '{namespace}'", cause=exc
            ) from exc
        return True

    def count(self, namespace: str) -> int:
        try:
            collection = self._get_collection(namespace)
        except NamespaceNotFoundError:
            return 0
        return int(collection.count())


__all__ = ["ChromaVectorIndex"]
