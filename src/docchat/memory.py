"""Per-conversation rolling memory of question/answer turns."""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List

from docchat.conversations import Message

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MemoryTurn:
    question: str
    answer: str


class MemoryHandle:
    """View onto the turns recorded for one conversation."""

    def __init__(self, memory: "ConversationMemory", conversation_id: str) -> None:
        self._memory = memory
        self.conversation_id = conversation_id

    def append(self, question: str, answer: str) -> None:
        self._memory.append(self.conversation_id, question, answer)

    def turns(self) -> List[MemoryTurn]:
        return self._memory.summarize(self.conversation_id)

    def __len__(self) -> int:
        return len(self.turns())


class ConversationMemory:
    """Process-lifetime map of conversation id to its most recent turns.

    Only the last ``max_turns`` turns are retained. All operations are
    serialised by an internal lock; concurrent answers on the same
    conversation are recorded in completion order.
    """

    def __init__(self, max_turns: int = 20) -> None:
        if max_turns <= 0:
            raise ValueError("max_turns must be a positive integer")
        self.max_turns = max_turns
        self._entries: Dict[str, Deque[MemoryTurn]] = {}
        self._lock = threading.Lock()

    def get(self, conversation_id: str) -> MemoryHandle:
        with self._lock:
            self._entries.setdefault(conversation_id, deque(maxlen=self.max_turns))
        return MemoryHandle(self, conversation_id)

    def append(self, conversation_id: str, question: str, answer: str) -> None:
        with self._lock:
            entry = self._entries.setdefault(conversation_id, deque(maxlen=self.max_turns))
            entry.append(MemoryTurn(question=question, answer=answer))

    def clear(self, conversation_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(conversation_id, None)
        if removed is not None:
            LOGGER.debug("Cleared %s memory turns for conversation %s", len(removed), conversation_id)
        return removed is not None

    def summarize(self, conversation_id: str) -> List[MemoryTurn]:
        with self._lock:
            return list(self._entries.get(conversation_id, ()))

    def rebuild(self, conversation_id: str, messages: Iterable[Message]) -> int:
        """Refill a conversation's memory from persisted messages.

        A user message followed by an assistant message forms one turn;
        unpaired messages and degraded replies are skipped. Returns the
        number of turns kept.
        """

        turns: Deque[MemoryTurn] = deque(maxlen=self.max_turns)
        pending_question: str | None = None
        for message in messages:
            if message.role == "user":
                pending_question = message.content
            elif message.degraded:
                pending_question = None
            elif message.role == "assistant" and pending_question is not None:
                turns.append(MemoryTurn(question=pending_question, answer=message.content))
                pending_question = None
        with self._lock:
            self._entries[conversation_id] = turns
        return len(turns)

    def conversation_ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)


__all__ = ["ConversationMemory", "MemoryHandle", "MemoryTurn"]
