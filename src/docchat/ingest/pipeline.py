"""High level ingestion pipeline entry point."""
from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from docchat.config import Settings
from docchat.embeddings import Embedder
from docchat.errors import DocChatError, IngestionError, UnsupportedFormatError, ValidationError
from docchat.storage import StoredFile, UploadStorage
from docchat.telemetry import emit_exception, emit_ingest_event, emit_vectorstore_event
from docchat.vectorstore import VectorIndex, VectorRecord

from .chunking import TextChunker
from .extractors import DocumentExtractor, PDFExtractor
from .format_detection import DocumentFormatDetector
from .language import LanguageDetector
from .models import DocumentChunk, DocumentInfo, DocumentRecord, ExtractedDocument
from .normalization import normalize_text

LOGGER = logging.getLogger(__name__)

_NAMESPACE_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]+")
_NAMESPACE_DASHES_RE = re.compile(r"-{2,}")
_NAMESPACE_SLUG_CHARS = 40
UNKNOWN_AUTHOR = "Unknown"


def make_namespace_id(stored_name: str, timestamp_ms: int) -> str:
    """Build a namespace id from the stored filename and ingestion time.

    The result only contains ``[A-Za-z0-9_-]`` and starts and ends with an
    alphanumeric character so it is a valid collection name for every backend.
    """

    stem = Path(stored_name).stem
    slug = _NAMESPACE_UNSAFE_RE.sub("-", stem)
    slug = _NAMESPACE_DASHES_RE.sub("-", slug)[:_NAMESPACE_SLUG_CHARS].strip("-_")
    return f"{slug or 'doc'}-{timestamp_ms}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class IngestPipelineConfig:
    chunk_size: int = 1000
    chunk_overlap: int = 200
    ocr_enabled: bool = False
    ocr_language: str = "eng"
    pdf_min_text_ratio: float = 0.05

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestPipelineConfig":
        return cls(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            ocr_enabled=settings.ocr_enabled,
            ocr_language=settings.ocr_language,
        )


class IngestPipeline:
    """Pipeline turning an uploaded binary into a populated vector namespace."""

    def __init__(
        self,
        *,
        storage: UploadStorage,
        embedder: Embedder,
        index: VectorIndex,
        config: Optional[IngestPipelineConfig] = None,
        extractor: Optional[DocumentExtractor] = None,
        language_detector: Optional[LanguageDetector] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or IngestPipelineConfig()
        self.storage = storage
        self.embedder = embedder
        self.index = index
        self.extractor = extractor or DocumentExtractor(
            pdf=PDFExtractor(
                ocr_enabled=self.config.ocr_enabled,
                ocr_language=self.config.ocr_language,
                min_text_ratio=self.config.pdf_min_text_ratio,
            )
        )
        self.chunker = TextChunker(self.config.chunk_size, self.config.chunk_overlap)
        self.language_detector = language_detector or LanguageDetector()
        self._clock = clock

    def ingest(
        self,
        data: bytes,
        original_name: str,
        *,
        mime_type: Optional[str] = None,
    ) -> DocumentRecord:
        """Store, extract, chunk, embed and index an uploaded document.

        Any failure after the bytes are stored removes both the stored file
        and the namespace, so a namespace is either complete or absent.
        """

        if not original_name or not original_name.strip():
            raise ValidationError("Uploaded document must have a file name")
        if not data:
            raise ValidationError("Uploaded document is empty")

        started = time.perf_counter()
        document_format = DocumentFormatDetector.detect(original_name, mime_type, head=data[:8])
        stored = self.storage.save(data, original_name)
        LOGGER.info("Processing file %s (%s) as %s", original_name, document_format.value, stored.stored_name)

        namespace: Optional[str] = None
        try:
            extracted = self._extract(data, original_name, document_format)
            text = normalize_text(extracted.text)
            if not text and not extracted.has_metadata:
                raise UnsupportedFormatError(
                    f"No text or metadata could be extracted from {original_name}"
                )

            language = self.language_detector.detect(text) if text else None
            uploaded_at = self._clock()
            document_id = uuid.uuid4().hex
            title = extracted.title or original_name
            author = extracted.author or UNKNOWN_AUTHOR

            chunks = self.chunker.chunk_document(
                text,
                document_id=document_id,
                source=stored.stored_name,
                file_name=original_name,
                title=title,
                author=author,
                page_count=extracted.page_count,
                language=language,
                subject=extracted.subject,
                creator=extracted.creator,
                producer=extracted.producer,
            )
            namespace = make_namespace_id(stored.stored_name, int(uploaded_at.timestamp() * 1000))
            if chunks:
                self._index_chunks(namespace, chunks)
            else:
                LOGGER.warning("Document %s produced no chunks; namespace %s left empty", original_name, namespace)
        except Exception as error:
            self._rollback(stored, namespace, original_name, error, started)
            if isinstance(error, DocChatError):
                raise
            raise IngestionError(f"Failed to ingest {original_name}", cause=error) from error

        record = DocumentRecord(
            id=document_id,
            original_name=original_name,
            stored_name=stored.stored_name,
            path=stored.path,
            namespace=namespace,
            page_count=max(extracted.page_count, 1),
            chunk_count=len(chunks),
            title=title,
            author=author,
            size_bytes=stored.size_bytes,
            uploaded_at=uploaded_at,
            language=language,
            ocr_performed=extracted.ocr_performed,
            extra={"format": document_format.value, **extracted.properties},
        )
        emit_ingest_event(
            "ingest.complete",
            file_name=original_name,
            size_bytes=stored.size_bytes,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            namespace=namespace,
            language=language,
            pages=record.page_count,
            ocr=extracted.ocr_performed,
            chunks=len(chunks),
        )
        return record

    def delete(self, record: DocumentRecord) -> None:
        """Remove the namespace and the stored file of an ingested document."""

        removed = self.index.delete_namespace(record.namespace)
        emit_vectorstore_event(
            "vectorstore.delete",
            namespace=record.namespace,
            count=record.chunk_count if removed else 0,
            backend=self.index.backend,
        )
        self.storage.delete(record.path)

    def inspect(self, stored_name: str) -> DocumentInfo:
        """Re-read a stored upload and report its page count, size and properties."""

        path = self.storage.resolve(stored_name)
        data = path.read_bytes()
        document_format = DocumentFormatDetector.detect(stored_name, head=data[:8])
        extracted = self._extract(data, stored_name, document_format)
        return DocumentInfo(
            stored_name=stored_name,
            format=document_format.value,
            page_count=max(extracted.page_count, 1),
            size_bytes=len(data),
            properties=extracted.properties,
            author=extracted.author,
        )

    def _extract(self, data: bytes, original_name: str, document_format) -> ExtractedDocument:
        try:
            extracted = self.extractor.extract(data, document_format)
        except UnsupportedFormatError:
            raise
        except Exception as error:
            raise IngestionError(f"Failed to extract text from {original_name}", cause=error) from error
        if extracted.ocr_performed:
            LOGGER.info("OCR performed on %s", original_name)
        return extracted

    def _index_chunks(self, namespace: str, chunks: List[DocumentChunk]) -> None:
        texts = [chunk.content for chunk in chunks]
        try:
            vectors = self.embedder.embed_texts(texts)
        except Exception as error:
            raise IngestionError(f"Failed to embed chunks for '{namespace}'", cause=error) from error
        if len(vectors) != len(chunks):
            raise IngestionError(
                f"Embedding backend returned {len(vectors)} vectors for {len(chunks)} chunks"
            )

        records = [
            VectorRecord(
                id=_chunk_id(namespace, chunk),
                vector=list(vector),
                text=chunk.content,
                metadata=chunk.metadata.as_dict(),
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        try:
            self.index.upsert(namespace, records)
            stored_count = self.index.count(namespace)
        except Exception as error:
            emit_vectorstore_event(
                "vectorstore.upsert",
                namespace=namespace,
                count=len(records),
                backend=self.index.backend,
                error=error,
            )
            raise IngestionError(f"Failed to index chunks into '{namespace}'", cause=error) from error

        if stored_count != len(records):
            raise IngestionError(
                f"Namespace '{namespace}' holds {stored_count} records, expected {len(records)}"
            )
        emit_vectorstore_event(
            "vectorstore.upsert",
            namespace=namespace,
            count=stored_count,
            backend=self.index.backend,
        )

    def _rollback(
        self,
        stored: StoredFile,
        namespace: Optional[str],
        original_name: str,
        error: Exception,
        started: float,
    ) -> None:
        if namespace is not None:
            try:
                self.index.delete_namespace(namespace)
            except Exception as cleanup_error:
                emit_exception(
                    module=__name__,
                    error=cleanup_error,
                    suggestion=f"Namespace '{namespace}' may need manual removal",
                )
        self.storage.delete(stored.path)
        emit_ingest_event(
            "ingest.rollback",
            file_name=original_name,
            size_bytes=stored.size_bytes,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            namespace=namespace,
            error=error,
        )


def _chunk_id(namespace: str, chunk: DocumentChunk) -> str:
    meta = chunk.metadata
    seed = f"{namespace}:{meta.chunk_index}:{meta.char_start}:{meta.char_end}"
    return uuid.uuid5(uuid.NAMESPACE_URL, seed).hex


__all__ = ["IngestPipeline", "IngestPipelineConfig", "make_namespace_id"]
