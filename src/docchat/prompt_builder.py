"""Utilities for constructing bounded answer prompts."""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Sequence

from docchat.conversations import Message
from docchat.memory import MemoryTurn
from docchat.vectorstore import ScoredChunk

_TEMPLATE_PATH = Path(__file__).resolve().parent / "prompts" / "answer.txt"

CHUNK_SEPARATOR = "\n\n---\n\n"
NO_CONTEXT_TEXT = "No document excerpts are available for this question."
NO_HISTORY_TEXT = "(no previous conversation)"


@lru_cache()
def load_template() -> str:
    """Read the answer template shipped with the package."""
    return _TEMPLATE_PATH.read_text(encoding="utf-8").strip()


@dataclass(slots=True)
class ContextBlock:
    text: str
    chunks: List[ScoredChunk]
    truncated: bool


def chunk_label(chunk: ScoredChunk) -> str:
    metadata = chunk.metadata
    document = str(metadata.get("file_name") or metadata.get("source") or chunk.namespace)
    page = metadata.get("page")
    if page is None:
        return f"Source: {document}"
    return f"Source: {document} (page {page})"


def build_context_block(chunks: Sequence[ScoredChunk], max_chars: int) -> ContextBlock:
    """Render ranked chunks under ``max_chars``.

    Chunks are added in rank order until the next one would overflow the
    budget; everything ranked below it is dropped. A single top chunk that
    alone exceeds the budget is cut to fit.
    """

    sections: List[str] = []
    included: List[ScoredChunk] = []
    used = 0
    truncated = False
    for index, chunk in enumerate(chunks, start=1):
        header = f"[{index}] {chunk_label(chunk)}\n"
        section = header + chunk.text.strip()
        cost = len(section) + (len(CHUNK_SEPARATOR) if sections else 0)
        if used + cost <= max_chars:
            sections.append(section)
            included.append(chunk)
            used += cost
            continue

        truncated = True
        if not sections:
            room = max_chars - len(header)
            if room > 0:
                sections.append(header + chunk.text.strip()[:room])
                included.append(chunk)
        break

    if not sections:
        return ContextBlock(text=NO_CONTEXT_TEXT, chunks=[], truncated=truncated)
    return ContextBlock(text=CHUNK_SEPARATOR.join(sections), chunks=included, truncated=truncated)


def history_from_messages(messages: Sequence[Message]) -> List[str]:
    """Render persisted messages as history lines.

    A degraded assistant reply is dropped together with the question that
    prompted it.
    """

    lines: List[str] = []
    pending: str | None = None
    for message in messages:
        if message.role == "user":
            if pending is not None:
                lines.append(pending)
            pending = f"user: {message.content}"
        elif message.degraded:
            pending = None
        else:
            if pending is not None:
                lines.append(pending)
                pending = None
            lines.append(f"assistant: {message.content}")
    if pending is not None:
        lines.append(pending)
    return lines


def history_from_memory(turns: Sequence[MemoryTurn]) -> List[str]:
    lines: List[str] = []
    for turn in turns:
        lines.append(f"user: {turn.question}")
        lines.append(f"assistant: {turn.answer}")
    return lines


def build_history_block(lines: Sequence[str], max_chars: int) -> str:
    """Join history lines, keeping the most recent ones that fit ``max_chars``."""

    kept: List[str] = []
    used = 0
    for line in reversed(lines):
        cost = len(line) + (1 if kept else 0)
        if used + cost > max_chars:
            break
        kept.append(line)
        used += cost
    if not kept:
        return NO_HISTORY_TEXT
    return "\n".join(reversed(kept))


def build_prompt(question: str, context: str, history: str) -> str:
    """Fill the answer template."""

    if question is None:
        raise ValueError("question must not be None")
    return load_template().format(context=context, history=history, question=question.strip())


__all__ = [
    "ContextBlock",
    "build_context_block",
    "build_history_block",
    "build_prompt",
    "chunk_label",
    "history_from_memory",
    "history_from_messages",
    "load_template",
]
