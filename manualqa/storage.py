"""
Blob storage for uploaded source files.

Objects are addressed by a storage reference "<owner_id>/<encoded name>",
where the encoded name is the base64url form of the original file stem plus
the original extension, so any display name maps to a safe key.
"""
import base64
import os
from pathlib import Path

from .errors import DocumentNotFoundError, StorageError


def encode_storage_name(original_name: str) -> str:
    """
    Encode a display file name into a storage-safe name.

    Example:
        >>> encode_storage_name("Manual v2.PDF")
        'TWFudWFsIHYy.pdf'
    """
    base = os.path.basename(original_name)
    stem, ext = os.path.splitext(base)
    encoded = base64.urlsafe_b64encode(stem.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{encoded}{ext.lower()}"


def make_storage_ref(owner_id: str, storage_name: str) -> str:
    return f"{owner_id}/{storage_name}"


class LocalBlobStorage:
    """Filesystem-backed storage rooted at `root`."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _path(self, storage_ref: str) -> Path:
        path = (self.root / storage_ref).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Invalid storage reference: {storage_ref}")
        return path

    def save(self, storage_ref: str, data: bytes) -> None:
        path = self._path(storage_ref)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write {storage_ref}: {e}") from e

    def read(self, storage_ref: str) -> bytes:
        path = self._path(storage_ref)
        if not path.is_file():
            raise DocumentNotFoundError(f"Storage object not found: {storage_ref}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {storage_ref}: {e}") from e

    def exists(self, storage_ref: str) -> bool:
        return self._path(storage_ref).is_file()

    def delete(self, storage_ref: str) -> bool:
        path = self._path(storage_ref)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {storage_ref}: {e}") from e
