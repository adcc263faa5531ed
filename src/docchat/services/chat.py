"""Chat orchestration: documents, questions and memory per conversation."""
from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import List, Optional

from docchat.config import Settings, get_settings
from docchat.conversations import Conversation, ConversationStore, InMemoryConversationStore, Message
from docchat.embeddings import Embedder, UnavailableEmbedder, get_embedding_model
from docchat.errors import CapabilityUnavailableError, DocChatError
from docchat.ingest import DocumentInfo, DocumentRecord, IngestPipeline, IngestPipelineConfig
from docchat.llm_provider import LLM, get_llm
from docchat.logging_config import AUDIT_LOGGER_NAME
from docchat.memory import ConversationMemory, MemoryTurn
from docchat.retrieval import MultiNamespaceRetriever
from docchat.storage import UploadStorage
from docchat.synthesizer import AnswerOutcome, AnswerSynthesizer
from docchat.telemetry import emit_exception, traced_duration
from docchat.vectorstore import VectorIndex, get_vector_index

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)


class ChatService:
    """High level orchestration for the document chat workflow."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        store: Optional[ConversationStore] = None,
        index: Optional[VectorIndex] = None,
        embedder: Optional[Embedder] = None,
        llm: Optional[LLM] = None,
        memory: Optional[ConversationMemory] = None,
        pipeline: Optional[IngestPipeline] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or InMemoryConversationStore()
        self.index = index or get_vector_index()
        self.embedder = embedder or _load_embedder()
        self.memory = memory or ConversationMemory(self.settings.memory_max_turns)
        self.pipeline = pipeline or IngestPipeline(
            storage=UploadStorage(self.settings.data_dir),
            embedder=self.embedder,
            index=self.index,
            config=IngestPipelineConfig.from_settings(self.settings),
        )
        self.synthesizer = AnswerSynthesizer(
            retriever=MultiNamespaceRetriever(
                self.index,
                self.embedder,
                namespace_timeout=self.settings.namespace_timeout_seconds,
                merge_policy=self.settings.merge_policy,
            ),
            llm=llm or get_llm(),
            memory=self.memory,
            top_k_per_namespace=self.settings.top_k_per_namespace,
            top_k_overall=self.settings.top_k_overall,
            max_context_chars=self.settings.max_context_chars,
            max_history_chars=self.settings.max_history_chars,
            citation_preview_chars=self.settings.citation_preview_chars,
        )

    # Conversations -----------------------------------------------------------------

    def create_conversation(self, title: Optional[str] = None) -> Conversation:
        return self.store.create(title)

    def get_conversation(self, conversation_id: str) -> Conversation:
        return self.store.get(conversation_id)

    def list_conversations(self) -> List[Conversation]:
        return self.store.list()

    def rename_conversation(self, conversation_id: str, title: str) -> Conversation:
        return self.store.rename(conversation_id, title)

    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation together with its documents, messages and memory."""

        conversation = self.store.get(conversation_id)
        document_ids = [document.id for document in conversation.documents]
        for document in list(conversation.documents):
            self.pipeline.delete(document)
            # Detach right away so a later failure leaves only live documents attached.
            self.store.remove_document(conversation_id, document.id)
        self.store.delete(conversation_id)
        self.memory.clear(conversation_id)
        AUDIT_LOGGER.info(
            {
                "event": "delete_conversation",
                "conversation_id": conversation_id,
                "documents": document_ids,
            }
        )

    def list_messages(self, conversation_id: str) -> List[Message]:
        return self.store.list_messages(conversation_id)

    # Documents ---------------------------------------------------------------------

    def ingest_document(
        self,
        data: bytes,
        name: str,
        conversation_id: Optional[str] = None,
        *,
        mime_type: Optional[str] = None,
    ) -> DocumentRecord:
        """Ingest an upload and attach it to ``conversation_id`` when given."""

        if conversation_id is not None:
            self.store.get(conversation_id)

        with traced_duration("ingest", file_name=name, conversation_id=conversation_id):
            record = self.pipeline.ingest(data, name, mime_type=mime_type)

        if conversation_id is not None:
            try:
                self.store.add_document(conversation_id, record)
            except DocChatError:
                self.pipeline.delete(record)
                raise

        AUDIT_LOGGER.info(
            {
                "event": "ingest",
                "conversation_id": conversation_id,
                "document_id": record.id,
                "file_name": record.original_name,
                "namespace": record.namespace,
                "chunk_count": record.chunk_count,
            }
        )
        return record

    def list_documents(self, conversation_id: str) -> List[DocumentRecord]:
        return list(self.store.get(conversation_id).documents)

    def remove_document(self, document: DocumentRecord | str, conversation_id: Optional[str] = None) -> DocumentRecord:
        """Delete a document's namespace and stored file.

        ``document`` may be a record or, together with ``conversation_id``, a
        document id. The namespace is removed before the document is detached,
        so a failing index leaves the conversation unchanged.
        """

        if isinstance(document, str):
            if conversation_id is None:
                raise ValueError("conversation_id is required when removing by document id")
            document = self.store.get(conversation_id).find_document(document)

        self.pipeline.delete(document)
        if conversation_id is not None:
            self.store.remove_document(conversation_id, document.id)

        AUDIT_LOGGER.info(
            {
                "event": "remove_document",
                "conversation_id": conversation_id,
                "document_id": document.id,
                "namespace": document.namespace,
            }
        )
        return document

    def get_document_info(self, stored_name: str) -> DocumentInfo:
        """Describe a stored upload by its stored file name."""

        return self.pipeline.inspect(stored_name)

    # Questions ---------------------------------------------------------------------

    async def query(self, conversation_id: str, question: str) -> AnswerOutcome:
        """Answer ``question`` using the conversation's documents and history."""

        conversation = self.store.get(conversation_id)
        prior_messages = self.store.list_messages(conversation_id)
        started = time.perf_counter()

        try:
            outcome = await self.synthesizer.answer(
                conversation_id,
                question,
                conversation.namespace_ids,
                prior_messages=prior_messages,
            )
        except DocChatError as error:
            emit_exception(module=__name__, error=error, conversation_id=conversation_id)
            raise

        self.store.append_message(conversation_id, "user", question.strip())
        self.store.append_message(
            conversation_id, "assistant", outcome.answer, outcome.citations, degraded=outcome.degraded
        )

        AUDIT_LOGGER.info(
            {
                "event": "query",
                "conversation_id": conversation_id,
                "question": question,
                "degraded": outcome.degraded,
                "sources": [citation.namespace for citation in outcome.citations],
                "failures": [failure.namespace for failure in outcome.failures],
                "duration_ms": round((time.perf_counter() - started) * 1000.0, 3),
            }
        )
        return outcome

    # Memory ------------------------------------------------------------------------

    def clear_memory(self, conversation_id: str) -> None:
        self.store.get(conversation_id)
        self.memory.clear(conversation_id)

    def get_memory_summary(self, conversation_id: str) -> List[MemoryTurn]:
        self.store.get(conversation_id)
        return self.memory.summarize(conversation_id)

    def rebuild_memory(self, conversation_id: str) -> int:
        """Refill memory from the persisted messages after a restart."""

        return self.memory.rebuild(conversation_id, self.store.list_messages(conversation_id))


def _load_embedder() -> Embedder:
    try:
        return get_embedding_model()
    except CapabilityUnavailableError as error:
        LOGGER.warning("Embedding backend unavailable; document search is disabled: %s", error)
        return UnavailableEmbedder(str(error))


@lru_cache()
def get_chat_service() -> ChatService:
    """FastAPI dependency returning the shared :class:`ChatService` instance."""

    return ChatService()


def reset_chat_service_cache() -> None:
    get_chat_service.cache_clear()  # type: ignore[attr-defined]


__all__ = ["ChatService", "get_chat_service", "reset_chat_service_cache"]
