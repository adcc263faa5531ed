"""Data models used by the ingestion pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class PageContent:
    """Represents text extracted from a page in the source document."""

    page_number: int
    text: str
    char_offset: int


@dataclass(slots=True)
class ExtractedDocument:
    """Raw text and structural metadata pulled out of an uploaded binary."""

    pages: List[PageContent]
    page_count: int
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    creator: Optional[str] = None
    producer: Optional[str] = None
    ocr_performed: bool = False

    @property
    def text(self) -> str:
        return "\n\n".join(page.text for page in self.pages if page.text)

    @property
    def has_metadata(self) -> bool:
        # Creator and producer are tool stamps, not document content.
        return bool(self.title or self.author or self.subject)

    @property
    def properties(self) -> Dict[str, str]:
        """Descriptive document properties that were actually present."""

        values = {
            "title": self.title,
            "subject": self.subject,
            "creator": self.creator,
            "producer": self.producer,
        }
        return {key: value for key, value in values.items() if value}


@dataclass(slots=True)
class TextSpan:
    """A window of text together with its offsets in the source string."""

    text: str
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    """Metadata attached to an individual chunk."""

    document_id: str
    source: str
    file_name: str
    title: str
    author: str
    page: int
    page_count: int
    chunk_index: int
    total_chunks: int
    char_start: int
    char_end: int
    language: Optional[str] = None
    subject: Optional[str] = None
    creator: Optional[str] = None
    producer: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        """Return a flat mapping without ``None`` values for vector stores."""

        payload = {
            "document_id": self.document_id,
            "source": self.source,
            "file_name": self.file_name,
            "title": self.title,
            "author": self.author,
            "page": self.page,
            "page_count": self.page_count,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "char_start": self.char_start,
            "char_end": self.char_end,
            "language": self.language,
            "subject": self.subject,
            "creator": self.creator,
            "producer": self.producer,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """Container that pairs chunk text with associated metadata."""

    content: str
    metadata: ChunkMetadata


@dataclass(slots=True)
class DocumentRecord:
    """Result of a successful ingestion, referencing the document namespace."""

    id: str
    original_name: str
    stored_name: str
    path: Path
    namespace: str
    page_count: int
    chunk_count: int
    title: str
    author: str
    size_bytes: int
    uploaded_at: datetime
    language: Optional[str] = None
    ocr_performed: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def searchable(self) -> bool:
        return self.chunk_count > 0


@dataclass(frozen=True, slots=True)
class DocumentInfo:
    """Facts about a stored upload, read back from the file on disk."""

    stored_name: str
    format: str
    page_count: int
    size_bytes: int
    properties: Dict[str, str] = field(default_factory=dict)
    author: Optional[str] = None
