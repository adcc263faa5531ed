"""Text normalisation applied to extracted document text before chunking."""
from __future__ import annotations

import re
import unicodedata

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HYPHENATED_BREAK_RE = re.compile(r"(?<=\w)-\n(?=[a-z])")
_HORIZONTAL_SPACE_RE = re.compile(r"[ \t\u00a0\u2000-\u200b\u202f\u3000]+")
_TRAILING_SPACE_RE = re.compile(r" *\n *")
_MULTIPLE_NEWLINES_RE = re.compile(r"\n{3,}")


def normalize_text(text: str) -> str:
    """Return NFC text with unified line endings and collapsed whitespace.

    Words split across lines by a trailing hyphen (common in PDF output) are
    re-joined, paragraph breaks are kept as a single blank line.
    """

    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n").replace("\f", "\n\n")
    normalized = _CONTROL_CHARS_RE.sub("", normalized)
    normalized = _HYPHENATED_BREAK_RE.sub("", normalized)
    normalized = _HORIZONTAL_SPACE_RE.sub(" ", normalized)
    normalized = _TRAILING_SPACE_RE.sub("\n", normalized)
    normalized = _MULTIPLE_NEWLINES_RE.sub("\n\n", normalized)
    return normalized.strip()
