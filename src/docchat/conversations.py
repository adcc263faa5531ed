"""Conversation and message records plus an in-memory store."""
from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional, Protocol

from docchat.errors import ConversationNotFoundError, DocumentNotFoundError, ValidationError
from docchat.ingest.models import DocumentRecord

DEFAULT_TITLE = "New Chat"
Role = Literal["user", "assistant"]


@dataclass(frozen=True, slots=True)
class Citation:
    """Pointer from an answer back to a retrieved chunk."""

    document: str
    page: Optional[int]
    preview: str
    namespace: Optional[str] = None
    score: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "document": self.document,
            "page": self.page,
            "preview": self.preview,
            "namespace": self.namespace,
            "score": self.score,
        }


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    conversation_id: str
    role: Role
    content: str
    created_at: datetime
    citations: List[Citation] = field(default_factory=list)
    # Set on fallback answers; these are shown but never reused as history.
    degraded: bool = False


@dataclass(slots=True)
class Conversation:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    documents: List[DocumentRecord] = field(default_factory=list)

    @property
    def namespace_ids(self) -> List[str]:
        """Namespaces of documents that have searchable chunks."""

        return [document.namespace for document in self.documents if document.searchable]

    def find_document(self, document_id: str) -> DocumentRecord:
        for document in self.documents:
            if document.id == document_id:
                return document
        raise DocumentNotFoundError(document_id)


class ConversationStore(Protocol):
    """Durable storage for conversations and their messages."""

    def create(self, title: Optional[str] = None) -> Conversation:
        ...

    def get(self, conversation_id: str) -> Conversation:
        ...

    def list(self) -> List[Conversation]:
        ...

    def rename(self, conversation_id: str, title: str) -> Conversation:
        ...

    def delete(self, conversation_id: str) -> Conversation:
        ...

    def add_document(self, conversation_id: str, document: DocumentRecord) -> Conversation:
        ...

    def remove_document(self, conversation_id: str, document_id: str) -> DocumentRecord:
        ...

    def append_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        citations: Optional[List[Citation]] = None,
        *,
        degraded: bool = False,
    ) -> Message:
        ...

    def list_messages(self, conversation_id: str) -> List[Message]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryConversationStore:
    """Thread-safe, process-lifetime conversation store.

    ``updated_at`` strictly increases on every mutation, even when two
    mutations land within the resolution of the system clock.
    """

    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._lock = threading.RLock()

    def create(self, title: Optional[str] = None) -> Conversation:
        now = _utcnow()
        conversation = Conversation(
            id=uuid.uuid4().hex,
            title=(title or "").strip() or DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
        return conversation

    def get(self, conversation_id: str) -> Conversation:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def list(self) -> List[Conversation]:
        with self._lock:
            conversations = list(self._conversations.values())
        return sorted(conversations, key=lambda item: item.updated_at, reverse=True)

    def rename(self, conversation_id: str, title: str) -> Conversation:
        cleaned = (title or "").strip()
        if not cleaned:
            raise ValidationError("Conversation title must not be empty")
        with self._lock:
            conversation = self.get(conversation_id)
            conversation.title = cleaned
            self._touch(conversation)
        return conversation

    def delete(self, conversation_id: str) -> Conversation:
        with self._lock:
            conversation = self.get(conversation_id)
            del self._conversations[conversation_id]
            self._messages.pop(conversation_id, None)
        return conversation

    def add_document(self, conversation_id: str, document: DocumentRecord) -> Conversation:
        with self._lock:
            conversation = self.get(conversation_id)
            conversation.documents.append(document)
            self._touch(conversation)
        return conversation

    def remove_document(self, conversation_id: str, document_id: str) -> DocumentRecord:
        with self._lock:
            conversation = self.get(conversation_id)
            document = conversation.find_document(document_id)
            conversation.documents.remove(document)
            self._touch(conversation)
        return document

    def append_message(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        citations: Optional[List[Citation]] = None,
        *,
        degraded: bool = False,
    ) -> Message:
        with self._lock:
            conversation = self.get(conversation_id)
            timestamp = self._touch(conversation)
            message = Message(
                id=uuid.uuid4().hex,
                conversation_id=conversation_id,
                role=role,
                content=content,
                created_at=timestamp,
                citations=list(citations or []),
                degraded=degraded,
            )
            self._messages[conversation_id].append(message)
        return message

    def list_messages(self, conversation_id: str) -> List[Message]:
        with self._lock:
            self.get(conversation_id)
            return list(self._messages[conversation_id])

    @staticmethod
    def _touch(conversation: Conversation) -> datetime:
        timestamp = max(_utcnow(), conversation.updated_at + timedelta(microseconds=1))
        conversation.updated_at = timestamp
        return timestamp


__all__ = [
    "Citation",
    "Conversation",
    "ConversationStore",
    "DEFAULT_TITLE",
    "InMemoryConversationStore",
    "Message",
]
