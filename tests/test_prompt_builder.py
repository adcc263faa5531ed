from __future__ import annotations

from datetime import datetime, timezone

from docchat.conversations import Message
from docchat.memory import MemoryTurn
from docchat.prompt_builder import (
    CHUNK_SEPARATOR,
    NO_CONTEXT_TEXT,
    NO_HISTORY_TEXT,
    build_context_block,
    build_history_block,
    build_prompt,
    chunk_label,
    history_from_memory,
    history_from_messages,
)
from docchat.vectorstore import ScoredChunk


def _chunk(text: str, page: int | None = 1, name: str = "lease.pdf") -> ScoredChunk:
    metadata = {"file_name": name}
    if page is not None:
        metadata["page"] = page
    return ScoredChunk(text=text, metadata=metadata, score=0.5, namespace="lease-1")


def test_chunk_label_names_document_and_page() -> None:
    assert chunk_label(_chunk("x", page=3)) == "Source: lease.pdf (page 3)"
    assert chunk_label(_chunk("x", page=None)) == "Source: lease.pdf"


def test_context_block_keeps_rank_order_within_budget() -> None:
    chunks = [_chunk("first " * 10, page=1), _chunk("second " * 10, page=2), _chunk("third " * 200, page=3)]

    block = build_context_block(chunks, max_chars=300)

    assert block.truncated is True
    assert block.chunks == chunks[:2]
    assert len(block.text) <= 300
    sections = block.text.split(CHUNK_SEPARATOR)
    assert sections[0].startswith("[1] Source: lease.pdf (page 1)\n")
    assert sections[1].startswith("[2] Source: lease.pdf (page 2)\n")


def test_oversized_top_chunk_is_cut_to_fit() -> None:
    block = build_context_block([_chunk("a" * 1000), _chunk("small")], max_chars=120)

    assert block.truncated is True
    assert len(block.text) == 120
    assert len(block.chunks) == 1


def test_empty_context_uses_placeholder() -> None:
    block = build_context_block([], max_chars=500)

    assert block.text == NO_CONTEXT_TEXT
    assert block.chunks == []
    assert block.truncated is False


def test_history_keeps_most_recent_lines() -> None:
    lines = history_from_memory([MemoryTurn("old question", "old answer"), MemoryTurn("new question", "new answer")])

    assert build_history_block(lines, max_chars=10_000).splitlines() == [
        "user: old question",
        "assistant: old answer",
        "user: new question",
        "assistant: new answer",
    ]
    assert build_history_block(lines, max_chars=45) == "user: new question\nassistant: new answer"
    assert build_history_block(lines, max_chars=5) == NO_HISTORY_TEXT
    assert build_history_block([], max_chars=100) == NO_HISTORY_TEXT


def test_prompt_contains_all_sections() -> None:
    prompt = build_prompt("  What is the notice period?  ", "[1] Source: lease.pdf\nNinety days.", NO_HISTORY_TEXT)

    assert "Ninety days." in prompt
    assert NO_HISTORY_TEXT in prompt
    assert prompt.rstrip().endswith("Answer:")
    assert "Question: What is the notice period?\n" in prompt


def test_history_from_messages_drops_degraded_exchanges() -> None:
    now = datetime.now(timezone.utc)

    def message(role: str, content: str, degraded: bool = False) -> Message:
        return Message(id=content, conversation_id="c1", role=role, content=content, created_at=now, degraded=degraded)

    lines = history_from_messages(
        [
            message("user", "Q1"),
            message("assistant", "A1"),
            message("user", "Q2"),
            message("assistant", "The language model is not available: no model", degraded=True),
            message("user", "Q3"),
        ]
    )

    assert lines == ["user: Q1", "assistant: A1", "user: Q3"]
