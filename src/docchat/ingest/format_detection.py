"""Recognise which of the supported document formats an upload is."""
from __future__ import annotations

import mimetypes
from enum import Enum
from pathlib import Path
from typing import Optional

from docchat.errors import UnsupportedFormatError


class DocumentFormat(str, Enum):
    """Supported document formats."""

    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"


# Leading bytes every file of the format starts with; plain text has none.
_SIGNATURES = {
    DocumentFormat.PDF: b"%PDF",
    DocumentFormat.DOCX: b"PK\x03\x04",
}

_LEGACY_WORD_MIME = "application/msword"


class DocumentFormatDetector:
    """Detects the document format from the file name, MIME type and leading bytes."""

    _MIME_MAP = {
        "application/pdf": DocumentFormat.PDF,
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentFormat.DOCX,
        "text/plain": DocumentFormat.TXT,
    }

    @classmethod
    def detect(
        cls,
        file_name: str,
        mime_type: Optional[str] = None,
        head: Optional[bytes] = None,
    ) -> DocumentFormat:
        """Return the detected document format.

        An explicit MIME type wins (parameters such as ``charset`` are
        ignored), then ``mimetypes.guess_type`` and finally the file suffix.
        When ``head`` is given it must start with the format's signature, so
        a renamed image is not handed to the PDF or DOCX reader. Legacy
        ``.doc`` files and unknown formats raise :class:`UnsupportedFormatError`.
        """

        document_format = cls._from_name(file_name, cls._normalise_mime(mime_type))
        signature = _SIGNATURES.get(document_format)
        if head is not None and signature is not None and not head.startswith(signature):
            raise UnsupportedFormatError(
                f"{file_name} does not look like a {document_format.value.upper()} file"
            )
        return document_format

    @classmethod
    def _from_name(cls, file_name: str, mime_type: Optional[str]) -> DocumentFormat:
        if mime_type in cls._MIME_MAP:
            return cls._MIME_MAP[mime_type]

        guessed_type, _ = mimetypes.guess_type(file_name)
        if guessed_type in cls._MIME_MAP:
            return cls._MIME_MAP[guessed_type]

        suffix = Path(file_name).suffix.lower().lstrip(".")
        if suffix == "doc" or mime_type == _LEGACY_WORD_MIME:
            raise UnsupportedFormatError(
                f"Legacy Word documents are not supported, save {file_name} as .docx"
            )
        try:
            return DocumentFormat(suffix)
        except ValueError as exc:
            raise UnsupportedFormatError(f"Unsupported file format: {file_name}", cause=exc) from exc

    @staticmethod
    def _normalise_mime(mime_type: Optional[str]) -> Optional[str]:
        if not mime_type:
            return None
        return mime_type.split(";", 1)[0].strip().lower() or None
