"""Utilities for persisting user uploads on disk."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final
from uuid import uuid4

from docchat.errors import DocumentNotFoundError, IngestionError

LOGGER = logging.getLogger(__name__)

_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename preserving the extension when possible."""
    if not filename:
        filename = "upload"
    # Remove any path components and replace disallowed characters.
    sanitized = Path(filename).name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    sanitized = sanitized.strip("._") or "upload"
    return sanitized


@dataclass(slots=True)
class StoredFile:
    stored_name: str
    path: Path
    size_bytes: int


class UploadStorage:
    """Writes uploaded bytes under a random-prefixed name inside ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def save(self, data: bytes, original_name: str) -> StoredFile:
        """Persist ``data`` and verify the stored size matches the payload."""

        self.root.mkdir(parents=True, exist_ok=True)
        stored_name = f"{uuid4().hex[:12]}-{sanitize_filename(original_name)}"
        destination = self.root / stored_name
        destination.write_bytes(data)

        stored_size = destination.stat().st_size
        if stored_size != len(data):
            self.delete(destination)
            raise IngestionError(
                f"Stored file size {stored_size} does not match upload size {len(data)}"
            )
        LOGGER.debug("Stored upload %s (%s bytes)", stored_name, stored_size)
        return StoredFile(stored_name=stored_name, path=destination.resolve(), size_bytes=stored_size)

    def resolve(self, stored_name: str) -> Path:
        """Return the path of a stored upload.

        Only bare names produced by :meth:`save` are accepted, so a lookup
        can never leave ``root``.
        """

        if not stored_name or sanitize_filename(stored_name) != stored_name:
            raise DocumentNotFoundError(stored_name)
        path = self.root / stored_name
        if not path.is_file():
            raise DocumentNotFoundError(stored_name)
        return path.resolve()

    def delete(self, path: Path) -> bool:
        """Remove a stored file; a missing file is not an error."""

        try:
            Path(path).unlink()
        except FileNotFoundError:
            LOGGER.debug("Stored file %s already removed", path)
            return False
        return True


__all__ = ["StoredFile", "UploadStorage", "sanitize_filename"]
