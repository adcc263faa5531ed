"""Exception hierarchy shared by the ingestion and query engine."""
from __future__ import annotations


class DocChatError(RuntimeError):
    """Base class for every error raised by docchat."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class ValidationError(DocChatError, ValueError):
    """Raised for bad input such as an empty question or invalid chunk sizes."""


class UnsupportedFormatError(ValidationError):
    """Raised when an upload cannot be recognised or yields nothing to index."""


class CapabilityUnavailableError(DocChatError):
    """Raised when an embedding or language-model capability is not configured."""


class IngestionError(DocChatError):
    """Raised when extraction, embedding or indexing of a document fails."""


class VectorStoreUnavailableError(DocChatError):
    """Raised when the vector store backend cannot be initialised or queried."""


class NamespaceNotFoundError(VectorStoreUnavailableError):
    """Raised when a namespace does not exist in the vector store."""

    def __init__(self, namespace: str) -> None:
        super().__init__(f"Namespace '{namespace}' does not exist")
        self.namespace = namespace


class ConversationNotFoundError(DocChatError, LookupError):
    """Raised when a conversation id is unknown to the conversation store."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class DocumentNotFoundError(DocChatError, LookupError):
    """Raised when a document id is not attached to the conversation."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document '{document_id}' not found")
        self.document_id = document_id


__all__ = [
    "CapabilityUnavailableError",
    "ConversationNotFoundError",
    "DocChatError",
    "DocumentNotFoundError",
    "IngestionError",
    "NamespaceNotFoundError",
    "UnsupportedFormatError",
    "ValidationError",
    "VectorStoreUnavailableError",
]
