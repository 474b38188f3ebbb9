"""Shared fixtures: an in-memory gem repository behind a fake transport."""

import gzip
import hashlib
import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from gem_mirror import layout
from gem_mirror.config import MirrorConfig
from gem_mirror.errors import ItemPermanentError
from gem_mirror.models import Kind, LocalEntry, PackageRef, RemoteEntry

SOURCE = "https://gems.example.com"
NOW = 1_700_000_000.0
DAY = 86400


class FakeTransport:
    """Serves fixed bodies by URI and records every fetch, thread-safely."""

    def __init__(self, documents: Optional[Dict[str, bytes]] = None):
        self.documents = dict(documents or {})
        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self.lock = threading.Lock()

    def fetch(self, uri: str) -> bytes:
        with self.lock:
            self.calls.append(uri)
        if uri in self.failures:
            raise self.failures[uri]
        try:
            return self.documents[uri]
        except KeyError:
            raise ItemPermanentError(f"Not found: {uri}", uri) from None

    def count(self, uri: str) -> int:
        with self.lock:
            return self.calls.count(uri)


def gem_row(name: str, version: str, age_days: Optional[float] = None,
            platform: Optional[str] = None) -> dict:
    ref = PackageRef(name, version, platform or "ruby")
    gem = f"gem:{ref.full_name}".encode()
    spec = f"spec:{ref.full_name}".encode()
    row = {
        "name": name,
        "version": version,
        "sha256": hashlib.sha256(gem).hexdigest(),
        "size": len(gem),
        "spec_sha256": hashlib.sha256(spec).hexdigest(),
        "spec_size": len(spec),
    }
    if platform:
        row["platform"] = platform
    if age_days is not None:
        row["created_at"] = NOW - age_days * DAY
    return row


def row_content(row: dict, kind: Kind) -> bytes:
    ref = PackageRef(row["name"], row["version"], row.get("platform", "ruby"))
    prefix = "gem" if kind is Kind.ARTIFACT else "spec"
    return f"{prefix}:{ref.full_name}".encode()


def build_repo(rows: List[dict], source: str = SOURCE,
               prerelease: Optional[List[dict]] = None) -> FakeTransport:
    transport = FakeTransport()
    transport.documents[f"{source}/specs.4.8.json.gz"] = gzip.compress(json.dumps(rows).encode())
    transport.documents[f"{source}/prerelease_specs.4.8.json.gz"] = gzip.compress(
        json.dumps(prerelease or []).encode())
    for row in list(rows) + list(prerelease or []):
        ref = PackageRef(row["name"], row["version"], row.get("platform", "ruby"))
        for kind in (Kind.METADATA, Kind.ARTIFACT):
            transport.documents[layout.remote_uri(source, ref.with_kind(kind))] = row_content(row, kind)
    return transport


def remote_entry(name: str, version: str, age_days: Optional[float] = None,
                 kind: Kind = Kind.ARTIFACT, size: Optional[int] = None,
                 sha256: Optional[str] = None) -> RemoteEntry:
    ref = PackageRef(name, version, kind=kind)
    created = NOW - age_days * DAY if age_days is not None else None
    return RemoteEntry(ref, layout.remote_uri(SOURCE, ref), created, size, sha256)


def remote_pair(name: str, version: str, age_days: Optional[float] = None) -> List[RemoteEntry]:
    return [remote_entry(name, version, age_days, Kind.METADATA),
            remote_entry(name, version, age_days, Kind.ARTIFACT)]


def local_pair(name: str, version: str, root: Path = Path("/mirror"), size: int = 1) -> List[LocalEntry]:
    refs = [PackageRef(name, version, kind=k) for k in (Kind.METADATA, Kind.ARTIFACT)]
    return [LocalEntry(ref, root / layout.relative_path(ref), size) for ref in refs]


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    dest = tmp_path / "mirror"
    dest.mkdir()
    return dest


@pytest.fixture
def make_config(destination: Path):
    def factory(**overrides) -> MirrorConfig:
        values = {"source": SOURCE, "destination": destination}
        values.update(overrides)
        return MirrorConfig(**values)
    return factory
