"""Extractors turning uploaded binaries into text plus structural metadata."""
from __future__ import annotations

import io
import logging
import subprocess
import tempfile
from typing import Dict, List, Optional, Protocol

from docx import Document as load_docx
from PyPDF2 import PdfReader

from docchat.errors import UnsupportedFormatError

from .format_detection import DocumentFormat
from .models import ExtractedDocument, PageContent

LOGGER = logging.getLogger(__name__)


class TextExtractorLike(Protocol):
    """Contract shared by every format-specific extractor."""

    def extract(self, data: bytes) -> ExtractedDocument:
        ...


def _clean_meta(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class PDFExtractor:
    """Extract text from PDF documents with optional OCR fallback."""

    def __init__(
        self,
        *,
        ocr_enabled: bool = False,
        ocr_language: str = "eng",
        min_text_ratio: float = 0.05,
    ) -> None:
        self.ocr_enabled = ocr_enabled
        self.ocr_language = ocr_language
        self.min_text_ratio = min_text_ratio

    def extract(self, data: bytes) -> ExtractedDocument:
        """Extract text, running OCR when native text is insufficient."""

        try:
            reader = PdfReader(io.BytesIO(data))
        except Exception as error:
            raise UnsupportedFormatError("File is not a readable PDF document", cause=error) from error

        pages = self._extract_pages(reader)
        document = ExtractedDocument(pages=pages, page_count=len(reader.pages), **self._read_metadata(reader))

        total_chars = sum(len(page.text.strip()) for page in pages)
        if pages and total_chars / max(len(pages), 1) >= self.min_text_ratio * 1000:
            return document
        if not self.ocr_enabled:
            LOGGER.info("PDF text content too small and OCR is disabled")
            return document

        LOGGER.info("PDF text content too small, attempting OCR fallback")
        try:
            ocr_data = self._perform_ocr(data)
        except RuntimeError as error:
            LOGGER.warning("OCR failed (%s); falling back to original extraction", error)
            return document

        ocr_reader = PdfReader(io.BytesIO(ocr_data))
        document.pages = self._extract_pages(ocr_reader)
        document.ocr_performed = True
        return document

    @staticmethod
    def _extract_pages(reader: PdfReader) -> List[PageContent]:
        pages: List[PageContent] = []
        char_offset = 0
        for index, page in enumerate(reader.pages, start=1):
            try:
                text = page.extract_text() or ""
            except Exception as error:  # pragma: no cover - depends on PDF internals
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                text = ""
            pages.append(PageContent(page_number=index, text=text, char_offset=char_offset))
            char_offset += len(text)
        return pages

    @staticmethod
    def _read_metadata(reader: PdfReader) -> Dict[str, Optional[str]]:
        try:
            info = reader.metadata
        except Exception as error:  # pragma: no cover - malformed info dictionaries
            LOGGER.warning("Unable to read PDF metadata: %s", error)
            return {}
        if info is None:
            return {}
        return {
            "title": _clean_meta(info.title),
            "author": _clean_meta(info.author),
            "subject": _clean_meta(info.subject),
            "creator": _clean_meta(info.creator),
            "producer": _clean_meta(info.producer),
        }

    def _perform_ocr(self, data: bytes) -> bytes:
        with tempfile.NamedTemporaryFile(suffix=".pdf") as src, tempfile.NamedTemporaryFile(
            suffix=".pdf"
        ) as dst:
            src.write(data)
            src.flush()
            cmd = [
                "ocrmypdf",
                "--force-ocr",
                "--output-type",
                "pdf",
                "-l",
                self.ocr_language,
                src.name,
                dst.name,
            ]
            LOGGER.debug("Running OCR command: %s", " ".join(cmd))
            try:
                subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            except FileNotFoundError as exc:  # pragma: no cover - depends on environment
                raise RuntimeError("ocrmypdf is not installed") from exc
            except subprocess.CalledProcessError as exc:  # pragma: no cover - depends on data
                raise RuntimeError(f"ocrmypdf failed: {exc.stderr.decode(errors='ignore')}") from exc

            dst.seek(0)
            return dst.read()


class DocxExtractor:
    """Extract paragraphs and core properties from Microsoft Word documents."""

    def extract(self, data: bytes) -> ExtractedDocument:
        try:
            document = load_docx(io.BytesIO(data))
        except Exception as error:
            raise UnsupportedFormatError("File is not a readable DOCX document", cause=error) from error

        text = "\n\n".join(paragraph.text for paragraph in document.paragraphs if paragraph.text)
        properties = document.core_properties
        return ExtractedDocument(
            pages=[PageContent(page_number=1, text=text, char_offset=0)],
            page_count=1,
            title=_clean_meta(properties.title),
            author=_clean_meta(properties.author),
            subject=_clean_meta(properties.subject),
        )


class TextExtractor:
    """Extract text from plaintext documents."""

    def extract(self, data: bytes) -> ExtractedDocument:
        text = self._decode(data)
        return ExtractedDocument(
            pages=[PageContent(page_number=1, text=text, char_offset=0)],
            page_count=1,
        )

    @staticmethod
    def _decode(data: bytes) -> str:
        # UTF-16 only when a byte order mark is present.
        if data.startswith((b"\xff\xfe", b"\xfe\xff")):
            return data.decode("utf-16")
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError:
            LOGGER.debug("Text upload is not UTF-8; decoding as latin-1")
        return data.decode("latin-1")


class DocumentExtractor:
    """Dispatch extraction to the extractor registered for a format."""

    def __init__(
        self,
        *,
        pdf: Optional[TextExtractorLike] = None,
        docx: Optional[TextExtractorLike] = None,
        txt: Optional[TextExtractorLike] = None,
    ) -> None:
        self._extractors: dict[DocumentFormat, TextExtractorLike] = {
            DocumentFormat.PDF: pdf or PDFExtractor(),
            DocumentFormat.DOCX: docx or DocxExtractor(),
            DocumentFormat.TXT: txt or TextExtractor(),
        }

    def extract(self, data: bytes, document_format: DocumentFormat) -> ExtractedDocument:
        extractor = self._extractors.get(document_format)
        if extractor is None:  # pragma: no cover - every enum member is registered
            raise UnsupportedFormatError(f"Unsupported document format: {document_format}")
        return extractor.extract(data)


__all__ = [
    "DocumentExtractor",
    "DocxExtractor",
    "PDFExtractor",
    "TextExtractor",
    "TextExtractorLike",
]
