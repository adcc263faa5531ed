"""Chunking utilities for breaking text into embedding-friendly units."""
from __future__ import annotations

import logging
import re
from typing import List, Optional

from docchat.errors import ValidationError

from .models import ChunkMetadata, DocumentChunk, TextSpan

_SENTENCE_END_RE = re.compile(r"[.!?]+[\"')\]]*(?=\s)")
_WHITESPACE_RE = re.compile(r"\s")
LOGGER = logging.getLogger(__name__)


def _validate_window(max_size: int, overlap: int) -> None:
    if max_size <= 0:
        raise ValidationError(f"Chunk size must be positive, got {max_size}")
    if overlap < 0:
        raise ValidationError(f"Chunk overlap must not be negative, got {overlap}")
    if max_size <= overlap:
        raise ValidationError(
            f"Chunk size ({max_size}) must be greater than the overlap ({overlap})"
        )


def _find_cut(segment: str, min_cut: int) -> int:
    """Return the preferred cut position inside ``segment``.

    Boundaries closer to the start than ``min_cut`` are ignored so every
    window advances past the overlap it shares with its successor.
    """

    paragraph_break = segment.rfind("\n\n")
    if paragraph_break != -1 and paragraph_break + 2 >= min_cut:
        return paragraph_break + 2

    sentence_ends = [match.end() for match in _SENTENCE_END_RE.finditer(segment)]
    if sentence_ends and sentence_ends[-1] >= min_cut:
        return sentence_ends[-1]

    spaces = [match.end() for match in _WHITESPACE_RE.finditer(segment)]
    if spaces and spaces[-1] >= min_cut:
        return spaces[-1]

    return len(segment)


def split_text(text: str, max_size: int, overlap: int) -> List[TextSpan]:
    """Split ``text`` into windows of at most ``max_size`` characters.

    Consecutive windows share exactly ``overlap`` characters: each window
    starts ``overlap`` characters before the end of the previous one.
    """

    _validate_window(max_size, overlap)
    if not text:
        return []

    length = len(text)
    min_cut = max(overlap + 1, max_size // 4)
    spans: List[TextSpan] = []
    start = 0
    while True:
        end = min(start + max_size, length)
        if end < length:
            end = start + _find_cut(text[start:end], min_cut)
        spans.append(TextSpan(text=text[start:end], start=start, end=end))
        if end >= length:
            break
        start = end - overlap
    return spans


def estimate_page(index: int, total: int, page_count: int) -> int:
    """Distribute chunk indexes proportionally across the document pages."""

    pages = max(page_count, 1)
    if total <= 0:
        return 1
    return index * pages // total + 1


class TextChunker:
    """Split normalised document text into chunks carrying provenance metadata."""

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200) -> None:
        _validate_window(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk_document(
        self,
        text: str,
        *,
        document_id: str,
        source: str,
        file_name: str,
        title: str,
        author: str,
        page_count: int,
        language: Optional[str] = None,
        subject: Optional[str] = None,
        creator: Optional[str] = None,
        producer: Optional[str] = None,
    ) -> List[DocumentChunk]:
        spans = split_text(text, self.chunk_size, self.chunk_overlap)
        total = len(spans)
        chunks: List[DocumentChunk] = []
        for index, span in enumerate(spans):
            metadata = ChunkMetadata(
                document_id=document_id,
                source=source,
                file_name=file_name,
                title=title,
                author=author,
                page=estimate_page(index, total, page_count),
                page_count=max(page_count, 1),
                chunk_index=index,
                total_chunks=total,
                char_start=span.start,
                char_end=span.end,
                language=language,
                subject=subject,
                creator=creator,
                producer=producer,
            )
            LOGGER.debug(
                "Chunk %s page %s offsets %s-%s",
                index,
                metadata.page,
                metadata.char_start,
                metadata.char_end,
            )
            chunks.append(DocumentChunk(content=span.text, metadata=metadata))
        return chunks


__all__ = ["TextChunker", "estimate_page", "split_text"]
