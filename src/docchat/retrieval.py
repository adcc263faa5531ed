"""Utilities for retrieving relevant context from document namespaces."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from docchat.embeddings import Embedder
from docchat.errors import NamespaceNotFoundError
from docchat.telemetry import emit_namespace_failure, emit_retriever_event
from docchat.vectorstore import ScoredChunk, VectorIndex

LOGGER = logging.getLogger(__name__)

MERGE_CONCATENATE = "concatenate"
MERGE_SCORE = "score"


@dataclass(frozen=True, slots=True)
class NamespaceFailure:
    """A namespace excluded from a retrieval because its query failed."""

    namespace: str
    reason: str


@dataclass(slots=True)
class RetrievalResult:
    chunks: List[ScoredChunk] = field(default_factory=list)
    failures: List[NamespaceFailure] = field(default_factory=list)
    # Set when the query itself could not be embedded; no namespace was searched.
    embedding_error: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.chunks)


class NamespaceRetriever:
    """Top-k similarity search inside a single namespace."""

    def __init__(self, index: VectorIndex) -> None:
        self._index = index

    def search(self, namespace: str, vector: Sequence[float], k: int) -> List[ScoredChunk]:
        if k <= 0:
            return []
        return self._index.query(namespace, vector, k)


class MultiNamespaceRetriever:
    """Fan a query out to many namespaces and merge the results.

    Every namespace is searched concurrently with its own timeout. A namespace
    that fails is reported in :attr:`RetrievalResult.failures` and excluded
    while the remaining namespaces still contribute results.
    """

    def __init__(
        self,
        index: VectorIndex,
        embedder: Embedder,
        *,
        namespace_timeout: float = 10.0,
        merge_policy: str = MERGE_CONCATENATE,
    ) -> None:
        if merge_policy not in {MERGE_CONCATENATE, MERGE_SCORE}:
            raise ValueError(f"Unknown merge policy: {merge_policy!r}")
        self._namespace_retriever = NamespaceRetriever(index)
        self._embedder = embedder
        self.namespace_timeout = namespace_timeout
        self.merge_policy = merge_policy

    async def retrieve(
        self,
        query: str,
        namespace_ids: Sequence[str],
        top_k_per_namespace: int = 5,
        top_k_overall: int = 10,
    ) -> RetrievalResult:
        started = time.perf_counter()
        namespaces = list(dict.fromkeys(ns for ns in namespace_ids if ns))
        if not namespaces or top_k_overall <= 0 or top_k_per_namespace <= 0 or not query.strip():
            return RetrievalResult()

        try:
            vector = await asyncio.to_thread(self._embedder.embed, query)
        except Exception as error:
            LOGGER.warning("Query embedding failed; returning no context: %s", error)
            failures = [NamespaceFailure(namespace=ns, reason=f"embedding failed: {error}") for ns in namespaces]
            self._report(query, namespaces, top_k_per_namespace, top_k_overall, [], failures, started)
            return RetrievalResult(failures=failures, embedding_error=str(error) or error.__class__.__name__)

        outcomes = await asyncio.gather(
            *(self._search_namespace(ns, vector, top_k_per_namespace) for ns in namespaces)
        )

        per_namespace: List[List[ScoredChunk]] = []
        failures: List[NamespaceFailure] = []
        for hits, failure in outcomes:
            if failure is not None:
                failures.append(failure)
            else:
                per_namespace.append(hits)

        merged = self._merge(per_namespace)[:top_k_overall]
        self._report(query, namespaces, top_k_per_namespace, top_k_overall, merged, failures, started)
        return RetrievalResult(chunks=merged, failures=failures)

    async def _search_namespace(
        self, namespace: str, vector: Sequence[float], k: int
    ) -> tuple[List[ScoredChunk], Optional[NamespaceFailure]]:
        try:
            hits = await asyncio.wait_for(
                asyncio.to_thread(self._namespace_retriever.search, namespace, vector, k),
                timeout=self.namespace_timeout,
            )
        except asyncio.TimeoutError as error:
            reason = f"timed out after {self.namespace_timeout:g}s"
            emit_namespace_failure(namespace=namespace, reason=reason, error=error)
            return [], NamespaceFailure(namespace=namespace, reason=reason)
        except NamespaceNotFoundError as error:
            emit_namespace_failure(namespace=namespace, reason="not found", error=error)
            return [], NamespaceFailure(namespace=namespace, reason="not found")
        except Exception as error:
            reason = f"{error.__class__.__name__}: {error}"
            emit_namespace_failure(namespace=namespace, reason=reason, error=error)
            return [], NamespaceFailure(namespace=namespace, reason=reason)
        return list(hits)[:k], None

    def _merge(self, per_namespace: List[List[ScoredChunk]]) -> List[ScoredChunk]:
        merged = [hit for hits in per_namespace for hit in hits]
        if self.merge_policy == MERGE_SCORE:
            # sorted() is stable, so equal scores keep namespace order.
            merged = sorted(merged, key=lambda hit: hit.score, reverse=True)
        return merged

    @staticmethod
    def _report(
        query: str,
        namespaces: List[str],
        top_k_per_namespace: int,
        top_k_overall: int,
        merged: List[ScoredChunk],
        failures: List[NamespaceFailure],
        started: float,
    ) -> None:
        emit_retriever_event(
            query=query,
            namespaces=namespaces,
            top_k_per_namespace=top_k_per_namespace,
            top_k_overall=top_k_overall,
            returned=len(merged),
            failures=[{"namespace": item.namespace, "reason": item.reason} for item in failures],
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )


__all__ = [
    "MERGE_CONCATENATE",
    "MERGE_SCORE",
    "MultiNamespaceRetriever",
    "NamespaceFailure",
    "NamespaceRetriever",
    "RetrievalResult",
]
