from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from docchat.conversations import Message
from docchat.memory import ConversationMemory, MemoryTurn


def _message(role: str, content: str, degraded: bool = False) -> Message:
    return Message(
        id=content,
        conversation_id="c1",
        role=role,  # type: ignore[arg-type]
        content=content,
        created_at=datetime.now(timezone.utc),
        degraded=degraded,
    )


def test_turns_are_kept_in_order() -> None:
    memory = ConversationMemory()
    memory.append("c1", "Q1", "A1")
    memory.append("c1", "Q2", "A2")

    assert memory.summarize("c1") == [MemoryTurn("Q1", "A1"), MemoryTurn("Q2", "A2")]
    assert memory.summarize("other") == []


def test_only_recent_turns_are_retained() -> None:
    memory = ConversationMemory(max_turns=3)
    for number in range(5):
        memory.append("c1", f"Q{number}", f"A{number}")

    assert [turn.question for turn in memory.summarize("c1")] == ["Q2", "Q3", "Q4"]


def test_get_creates_empty_entry_lazily() -> None:
    memory = ConversationMemory()
    handle = memory.get("fresh")

    assert len(handle) == 0
    handle.append("Q", "A")
    assert memory.summarize("fresh") == [MemoryTurn("Q", "A")]
    assert handle.turns() == [MemoryTurn("Q", "A")]
    assert "fresh" in memory.conversation_ids()


def test_clear_reports_whether_memory_existed() -> None:
    memory = ConversationMemory()
    memory.append("c1", "Q", "A")

    assert memory.clear("c1") is True
    assert memory.clear("c1") is False
    assert memory.summarize("c1") == []


def test_rebuild_pairs_questions_with_answers() -> None:
    memory = ConversationMemory(max_turns=2)
    messages = [
        _message("user", "Q1"),
        _message("assistant", "A1"),
        _message("user", "dangling"),
        _message("user", "Q2"),
        _message("assistant", "A2"),
        _message("assistant", "orphan"),
        _message("user", "Q3"),
        _message("assistant", "A3"),
    ]

    kept = memory.rebuild("c1", messages)

    assert kept == 2
    assert memory.summarize("c1") == [MemoryTurn("Q2", "A2"), MemoryTurn("Q3", "A3")]


def test_rebuild_skips_degraded_replies() -> None:
    memory = ConversationMemory()
    messages = [
        _message("user", "Q1"),
        _message("assistant", "The language model failed to produce an answer: timeout", degraded=True),
        _message("assistant", "late"),
        _message("user", "Q2"),
        _message("assistant", "A2"),
    ]

    assert memory.rebuild("c1", messages) == 1
    assert memory.summarize("c1") == [MemoryTurn("Q2", "A2")]


def test_invalid_window_is_rejected() -> None:
    with pytest.raises(ValueError):
        ConversationMemory(max_turns=0)


def test_concurrent_appends_are_not_lost() -> None:
    memory = ConversationMemory(max_turns=1000)

    def worker(prefix: str) -> None:
        for number in range(100):
            memory.append("shared", f"{prefix}{number}", "answer")

    threads = [threading.Thread(target=worker, args=(name,)) for name in "abcd"]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    turns = memory.summarize("shared")
    assert len(turns) == 400
    for prefix in "abcd":
        own = [turn.question for turn in turns if turn.question.startswith(prefix)]
        assert own == [f"{prefix}{number}" for number in range(100)]
