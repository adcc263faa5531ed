from __future__ import annotations

from pathlib import Path

import pytest

from docchat.errors import DocumentNotFoundError, IngestionError
from docchat.storage import UploadStorage, sanitize_filename


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("report.pdf", "report.pdf"),
        ("../../etc/passwd", "passwd"),
        ("My Contract (final).docx", "My_Contract_final_.docx"),
        ("", "upload"),
        ("...", "upload"),
    ],
)
def test_sanitize_filename(raw: str, expected: str) -> None:
    assert sanitize_filename(raw) == expected


def test_save_writes_prefixed_file(tmp_path: Path) -> None:
    storage = UploadStorage(tmp_path / "uploads")

    stored = storage.save(b"hello world", "notes.txt")

    assert stored.stored_name.endswith("-notes.txt")
    assert stored.path.parent == (tmp_path / "uploads").resolve()
    assert stored.path.read_bytes() == b"hello world"
    assert stored.size_bytes == 11


def test_same_name_uploads_do_not_collide(tmp_path: Path) -> None:
    storage = UploadStorage(tmp_path)

    first = storage.save(b"one", "same.txt")
    second = storage.save(b"two", "same.txt")

    assert first.path != second.path
    assert first.path.read_bytes() == b"one"


def test_truncated_write_is_rejected_and_removed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    original_write = Path.write_bytes

    def short_write(self: Path, data: bytes) -> int:
        return original_write(self, data[:-1])

    monkeypatch.setattr(Path, "write_bytes", short_write)
    storage = UploadStorage(tmp_path)

    with pytest.raises(IngestionError, match="does not match"):
        storage.save(b"complete payload", "doc.txt")

    assert list(tmp_path.iterdir()) == []


def test_delete_is_idempotent(tmp_path: Path) -> None:
    storage = UploadStorage(tmp_path)
    stored = storage.save(b"data", "doc.txt")

    assert storage.delete(stored.path) is True
    assert storage.delete(stored.path) is False


def test_resolve_only_finds_stored_names(tmp_path: Path) -> None:
    storage = UploadStorage(tmp_path / "uploads")
    stored = storage.save(b"hello", "notes.txt")
    (tmp_path / "secret.txt").write_text("outside", encoding="utf-8")

    assert storage.resolve(stored.stored_name) == stored.path
    for name in ["missing.txt", "../secret.txt", "", "sub/notes.txt"]:
        with pytest.raises(DocumentNotFoundError):
            storage.resolve(name)
