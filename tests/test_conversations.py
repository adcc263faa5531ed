from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from docchat.conversations import DEFAULT_TITLE, Citation, InMemoryConversationStore
from docchat.errors import ConversationNotFoundError, DocumentNotFoundError, ValidationError
from docchat.ingest import DocumentRecord


def _record(document_id: str, chunk_count: int = 3) -> DocumentRecord:
    return DocumentRecord(
        id=document_id,
        original_name=f"{document_id}.txt",
        stored_name=f"abc-{document_id}.txt",
        path=Path(f"/tmp/{document_id}.txt"),
        namespace=f"{document_id}-1699000000000",
        page_count=1,
        chunk_count=chunk_count,
        title=document_id,
        author="Unknown",
        size_bytes=10,
        uploaded_at=datetime.now(timezone.utc),
    )


def test_create_uses_default_title() -> None:
    store = InMemoryConversationStore()

    assert store.create().title == DEFAULT_TITLE
    assert store.create("   ").title == DEFAULT_TITLE
    assert store.create(" Leases ").title == "Leases"


def test_list_orders_by_recent_activity() -> None:
    store = InMemoryConversationStore()
    first = store.create("first")
    second = store.create("second")

    store.append_message(first.id, "user", "hello")

    assert [item.id for item in store.list()] == [first.id, second.id]


def test_updated_at_strictly_increases() -> None:
    store = InMemoryConversationStore()
    conversation = store.create()
    stamps = [conversation.updated_at]

    for number in range(50):
        store.append_message(conversation.id, "user", f"m{number}")
        stamps.append(conversation.updated_at)

    assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))


def test_rename_validates_title() -> None:
    store = InMemoryConversationStore()
    conversation = store.create()

    assert store.rename(conversation.id, "  Renamed ").title == "Renamed"
    with pytest.raises(ValidationError):
        store.rename(conversation.id, "  ")


def test_unknown_conversation_raises() -> None:
    store = InMemoryConversationStore()

    with pytest.raises(ConversationNotFoundError):
        store.get("missing")
    with pytest.raises(ConversationNotFoundError):
        store.list_messages("missing")
    with pytest.raises(ConversationNotFoundError):
        store.delete("missing")


def test_documents_attach_and_detach() -> None:
    store = InMemoryConversationStore()
    conversation = store.create()
    store.add_document(conversation.id, _record("lease"))
    store.add_document(conversation.id, _record("scan", chunk_count=0))

    assert conversation.namespace_ids == ["lease-1699000000000"]
    removed = store.remove_document(conversation.id, "lease")
    assert removed.id == "lease"
    assert [document.id for document in conversation.documents] == ["scan"]
    with pytest.raises(DocumentNotFoundError):
        store.remove_document(conversation.id, "lease")


def test_messages_keep_citations_and_order() -> None:
    store = InMemoryConversationStore()
    conversation = store.create()
    citation = Citation(document="lease.txt", page=1, preview="Rent is due", namespace="lease-1", score=0.9)

    store.append_message(conversation.id, "user", "When is rent due?")
    store.append_message(conversation.id, "assistant", "Monthly.", [citation])

    messages = store.list_messages(conversation.id)
    assert [message.role for message in messages] == ["user", "assistant"]
    assert messages[1].citations == [citation]
    assert messages[0].created_at < messages[1].created_at
    assert citation.as_dict()["document"] == "lease.txt"


def test_delete_drops_messages() -> None:
    store = InMemoryConversationStore()
    conversation = store.create()
    store.append_message(conversation.id, "user", "hi")

    store.delete(conversation.id)

    assert store.list() == []
    with pytest.raises(ConversationNotFoundError):
        store.list_messages(conversation.id)


def test_degraded_replies_are_flagged() -> None:
    store = InMemoryConversationStore()
    conversation = store.create()

    store.append_message(conversation.id, "user", "When is rent due?")
    store.append_message(conversation.id, "assistant", "The language model is not available: no model", degraded=True)

    assert [message.degraded for message in store.list_messages(conversation.id)] == [False, True]
