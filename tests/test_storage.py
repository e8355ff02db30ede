"""
Tests for storage naming and the local blob storage.
"""
import pytest

from manualqa.errors import DocumentNotFoundError, StorageError
from manualqa.storage import LocalBlobStorage, encode_storage_name, make_storage_ref


def test_encode_storage_name():
    assert encode_storage_name("Manual v2.PDF") == "TWFudWFsIHYy.pdf"
    assert encode_storage_name("../../etc/passwd") == encode_storage_name("passwd")


def test_encoded_name_is_a_single_safe_segment():
    encoded = encode_storage_name("取扱説明書 第3版.docx")
    assert "/" not in encoded
    assert encoded.endswith(".docx")
    assert encoded.isascii()


def test_storage_ref():
    assert make_storage_ref("alice", "TWFudWFsIHYy.pdf") == "alice/TWFudWFsIHYy.pdf"


def test_save_read_delete(tmp_path):
    storage = LocalBlobStorage(str(tmp_path))
    storage.save("alice/a.pdf", b"data")
    assert storage.exists("alice/a.pdf")
    assert storage.read("alice/a.pdf") == b"data"
    assert storage.delete("alice/a.pdf") is True
    assert storage.delete("alice/a.pdf") is False
    with pytest.raises(DocumentNotFoundError):
        storage.read("alice/a.pdf")


def test_path_traversal_rejected(tmp_path):
    storage = LocalBlobStorage(str(tmp_path / "root"))
    with pytest.raises(StorageError):
        storage.save("../outside.pdf", b"x")
