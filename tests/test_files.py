"""Tests for single-item fetch and delete operations."""

import hashlib
import os
from pathlib import Path

import pytest

from conftest import NOW, SOURCE, FakeTransport

from gem_mirror import layout
from gem_mirror.errors import ItemPermanentError, ItemTransientError
from gem_mirror.files import delete_entry, fetch_entry, verify_content, write_atomic
from gem_mirror.models import Kind, PackageRef, RemoteEntry


def _entry(content=b"payload", size=None, sha256=None, created_at=None):
    ref = PackageRef("rake", "1.0", kind=Kind.ARTIFACT)
    return RemoteEntry(ref, layout.remote_uri(SOURCE, ref), created_at, size, sha256)


def test_fetch_writes_final_file_with_mtime(destination):
    entry = _entry(size=7, sha256=hashlib.sha256(b"payload").hexdigest(), created_at=NOW)
    transport = FakeTransport({entry.uri: b"payload"})

    fetch_entry(entry, destination, transport)

    path = destination / "gems" / "rake-1.0.gem"
    assert path.read_bytes() == b"payload"
    assert os.stat(path).st_mtime == pytest.approx(NOW)
    assert not list(path.parent.glob(layout.TMP_PREFIX + "*"))


def test_fetch_rejects_size_mismatch(destination):
    entry = _entry(size=3)
    transport = FakeTransport({entry.uri: b"payload"})

    with pytest.raises(ItemTransientError, match="Size mismatch"):
        fetch_entry(entry, destination, transport)
    assert not (destination / "gems").exists() or not any((destination / "gems").iterdir())


def test_verify_rejects_checksum_mismatch():
    with pytest.raises(ItemTransientError, match="Checksum mismatch"):
        verify_content(_entry(sha256="0" * 64), b"payload")


def test_verify_accepts_uppercase_checksum():
    verify_content(_entry(sha256=hashlib.sha256(b"payload").hexdigest().upper()), b"payload")


def test_write_atomic_replaces_existing(tmp_path):
    target = tmp_path / "a" / "file"
    write_atomic(target, b"one")
    write_atomic(target, b"two")
    assert target.read_bytes() == b"two"
    assert sorted(p.name for p in target.parent.iterdir()) == ["file"]


def test_write_atomic_failure_is_permanent_and_cleans_up(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a dir")
    with pytest.raises(ItemPermanentError):
        write_atomic(blocker / "file", b"x")


def test_delete_removes_file(destination):
    ref = PackageRef("rake", "1.0")
    path = destination / layout.relative_path(ref)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"x")

    delete_entry(path)
    assert not path.exists()


def test_delete_missing_file_is_success(destination):
    delete_entry(destination / "gems" / "ghost-1.0.gem")


def test_delete_failure_is_permanent(tmp_path):
    occupied = tmp_path / "gems" / "rake-1.0.gem"
    (occupied / "child").mkdir(parents=True)
    with pytest.raises(ItemPermanentError, match="Error deleting"):
        delete_entry(occupied)


def test_write_atomic_cleanup_failure_still_raises_item_error(tmp_path, monkeypatch, caplog):
    def fail_replace(src, dst):
        raise OSError("disk full")

    def fail_unlink(self, missing_ok=False):
        raise PermissionError("read-only")

    monkeypatch.setattr(os, "replace", fail_replace)
    monkeypatch.setattr(Path, "unlink", fail_unlink)

    with pytest.raises(ItemPermanentError, match="disk full"):
        write_atomic(tmp_path / "file", b"x")
    assert "Could not remove" in caplog.text
