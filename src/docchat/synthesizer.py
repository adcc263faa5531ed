"""Answer synthesis: retrieved context plus history into one grounded answer."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import ClassVar, List, Optional, Sequence

from docchat.conversations import Citation, Message
from docchat.errors import ValidationError
from docchat.llm_provider import LLM, UNCONFIGURED_REASON
from docchat.memory import ConversationMemory
from docchat.prompt_builder import (
    build_context_block,
    build_history_block,
    build_prompt,
    history_from_memory,
    history_from_messages,
)
from docchat.retrieval import MultiNamespaceRetriever, NamespaceFailure
from docchat.telemetry import (
    emit_exception,
    emit_inference_request,
    emit_inference_result,
    emit_prompt_event,
)
from docchat.vectorstore import ScoredChunk

LOGGER = logging.getLogger(__name__)

MODEL_UNAVAILABLE_MESSAGE = "The language model is not available, so this question cannot be answered right now"
MODEL_FAILED_MESSAGE = "The language model failed to produce an answer"
SEARCH_UNAVAILABLE_MESSAGE = "Document search is not available, so this question cannot be answered right now"
ELLIPSIS = "..."


@dataclass(slots=True)
class AnswerOutcome:
    """Result of :meth:`AnswerSynthesizer.answer`; see the two subclasses."""

    degraded: ClassVar[bool] = False

    answer: str
    citations: List[Citation] = field(default_factory=list)
    failures: List[NamespaceFailure] = field(default_factory=list)


@dataclass(slots=True)
class AnswerOk(AnswerOutcome):
    context_truncated: bool = False


@dataclass(slots=True)
class AnswerDegraded(AnswerOutcome):
    """A user-visible answer produced under a recoverable failure."""

    degraded: ClassVar[bool] = True

    reason: str = ""


def make_citation(chunk: ScoredChunk, preview_chars: int) -> Citation:
    metadata = chunk.metadata
    text = chunk.text.strip()
    preview = text[:preview_chars]
    if len(text) > preview_chars:
        preview += ELLIPSIS
    page = metadata.get("page")
    return Citation(
        document=str(metadata.get("file_name") or metadata.get("source") or chunk.namespace),
        page=int(page) if page is not None else None,
        preview=preview,
        namespace=chunk.namespace,
        score=round(float(chunk.score), 6),
    )


class AnswerSynthesizer:
    """Build a bounded prompt, call the model once and derive citations."""

    def __init__(
        self,
        *,
        retriever: MultiNamespaceRetriever,
        llm: LLM,
        memory: ConversationMemory,
        top_k_per_namespace: int = 5,
        top_k_overall: int = 10,
        max_context_chars: int = 12000,
        max_history_chars: int = 4000,
        citation_preview_chars: int = 200,
    ) -> None:
        self.retriever = retriever
        self.llm = llm
        self.memory = memory
        self.top_k_per_namespace = top_k_per_namespace
        self.top_k_overall = top_k_overall
        self.max_context_chars = max_context_chars
        self.max_history_chars = max_history_chars
        self.citation_preview_chars = citation_preview_chars

    async def answer(
        self,
        conversation_id: str,
        question: str,
        namespace_ids: Sequence[str],
        prior_messages: Optional[Sequence[Message]] = None,
    ) -> AnswerOutcome:
        if question is None or not question.strip():
            raise ValidationError("Question must not be empty")
        question = question.strip()
        req_id = uuid.uuid4().hex

        if not self.llm.is_configured:
            reason = self.llm.last_error or UNCONFIGURED_REASON
            return self._degraded(req_id, conversation_id, MODEL_UNAVAILABLE_MESSAGE, reason, [])

        retrieval = await self.retriever.retrieve(
            question,
            namespace_ids,
            top_k_per_namespace=self.top_k_per_namespace,
            top_k_overall=self.top_k_overall,
        )
        if retrieval.embedding_error is not None:
            return self._degraded(
                req_id,
                conversation_id,
                SEARCH_UNAVAILABLE_MESSAGE,
                retrieval.embedding_error,
                retrieval.failures,
            )

        context = build_context_block(retrieval.chunks, self.max_context_chars)
        if prior_messages:
            history_lines = history_from_messages(prior_messages)
        else:
            history_lines = history_from_memory(self.memory.summarize(conversation_id))
        history = build_history_block(history_lines, self.max_history_chars)
        prompt = build_prompt(question, context.text, history)

        sources = [chunk.namespace for chunk in context.chunks]
        emit_prompt_event(
            sources=sources,
            context_chars=len(context.text),
            history_chars=len(history),
            truncated=context.truncated,
        )
        emit_inference_request(
            req_id=req_id,
            conversation_id=conversation_id,
            prompt_preview=prompt,
            prompt_len=len(prompt),
            sources=sources,
        )

        started = time.perf_counter()
        try:
            answer_text = await asyncio.to_thread(self.llm.complete, prompt)
        except Exception as error:
            emit_exception(module=__name__, error=error, req_id=req_id, conversation_id=conversation_id)
            return self._degraded(
                req_id,
                conversation_id,
                MODEL_FAILED_MESSAGE,
                str(error) or error.__class__.__name__,
                retrieval.failures,
            )

        answer_text = (answer_text or "").strip()
        if not answer_text:
            return self._degraded(
                req_id, conversation_id, MODEL_FAILED_MESSAGE, "model returned an empty answer", retrieval.failures
            )

        emit_inference_result(
            req_id=req_id,
            conversation_id=conversation_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            model_used=self.llm.model_name,
            answer_preview=answer_text,
            fallback=False,
        )

        citations = [make_citation(chunk, self.citation_preview_chars) for chunk in retrieval.chunks]
        self.memory.append(conversation_id, question, answer_text)
        return AnswerOk(
            answer=answer_text,
            citations=citations,
            failures=list(retrieval.failures),
            context_truncated=context.truncated,
        )

    def _degraded(
        self,
        req_id: str,
        conversation_id: str,
        prefix: str,
        reason: str,
        failures: Sequence[NamespaceFailure],
    ) -> AnswerDegraded:
        answer_text = f"{prefix}: {reason}"
        emit_inference_result(
            req_id=req_id,
            conversation_id=conversation_id,
            duration_ms=0.0,
            model_used=self.llm.model_name,
            answer_preview=answer_text,
            fallback=True,
            reason=reason,
        )
        return AnswerDegraded(answer=answer_text, citations=[], failures=list(failures), reason=reason)


__all__ = [
    "AnswerDegraded",
    "AnswerOk",
    "AnswerOutcome",
    "AnswerSynthesizer",
    "make_citation",
]
