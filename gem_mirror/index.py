import bz2
import gzip
import json
import logging
import lzma
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from . import layout
from .config import DEFAULT_INDEX_FILES
from .errors import IndexUnavailable, ItemError
from .models import DEFAULT_PLATFORM, Kind, PackageRef, RemoteEntry
from .transport import Transport

logger = logging.getLogger(__name__)

DECOMPRESSORS = {
    ".gz": gzip.decompress,
    ".bz2": bz2.decompress,
    ".xz": lzma.decompress,
}

pattern_sha256 = re.compile(r"[0-9a-fA-F]{64}")


@dataclass
class IndexSnapshot:
    entries: List[RemoteEntry] = field(default_factory=list)
    # raw bytes of each index document, keyed by file name, for publishing
    documents: Dict[str, bytes] = field(default_factory=dict)

    @property
    def packages(self) -> int:
        return sum(1 for e in self.entries if e.ref.kind is Kind.ARTIFACT)


def parse_timestamp(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    raise ValueError(f"Invalid timestamp {value!r}")


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Invalid size {value!r}")
    return value


def _optional_sha256(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not pattern_sha256.fullmatch(value):
        raise ValueError(f"Invalid sha256 {value!r}")
    return value


def parse_row(row: Any, source: str) -> List[RemoteEntry]:
    """Turn one index row into its metadata and artifact entries."""
    if isinstance(row, list):
        if len(row) not in (2, 3):
            raise ValueError(f"Expected [name, version, platform], got {row!r}")
        row = dict(zip(("name", "version", "platform"), row))
    if not isinstance(row, dict):
        raise ValueError(f"Unexpected index row {row!r}")
    name, version = row.get("name"), row.get("version")
    if not isinstance(name, str) or not name or not isinstance(version, str) or not version:
        raise ValueError(f"Index row without name/version: {row!r}")
    platform = row.get("platform") or DEFAULT_PLATFORM
    created_at = parse_timestamp(row.get("created_at"))

    artifact = PackageRef(str(name), str(version), str(platform), Kind.ARTIFACT)
    metadata = artifact.with_kind(Kind.METADATA)
    return [
        RemoteEntry(metadata, layout.remote_uri(source, metadata), created_at,
                    _optional_int(row.get("spec_size")), _optional_sha256(row.get("spec_sha256"))),
        RemoteEntry(artifact, layout.remote_uri(source, artifact), created_at,
                    _optional_int(row.get("size")), _optional_sha256(row.get("sha256"))),
    ]


def decode_document(file_name: str, raw: bytes) -> list:
    for suffix, decompress in DECOMPRESSORS.items():
        if file_name.endswith(suffix):
            raw = decompress(raw)
            break
    rows = json.loads(raw.decode("utf-8"))
    if not isinstance(rows, list):
        raise ValueError("index document is not a JSON array")
    return rows


def dedupe(entries: Iterable[RemoteEntry]) -> List[RemoteEntry]:
    """Keep one entry per PackageRef; the last one seen wins."""
    by_ref: Dict[PackageRef, RemoteEntry] = {}
    for entry in entries:
        by_ref.pop(entry.ref, None)
        by_ref[entry.ref] = entry
    return list(by_ref.values())


def load_index(source: str, transport: Transport,
               index_files: Sequence[str] = DEFAULT_INDEX_FILES) -> IndexSnapshot:
    """
    Fetch and parse every index document under ``source``.

    Raises IndexUnavailable if any document cannot be fetched or decoded;
    without the full index no diff is meaningful.
    """
    snapshot = IndexSnapshot()
    collected: List[RemoteEntry] = []
    for file_name in index_files:
        uri = f"{source.rstrip('/')}/{file_name}"
        logger.info("Fetching: %s", uri)
        try:
            raw = transport.fetch(uri)
        except ItemError as e:
            raise IndexUnavailable(f"Failed to fetch index {uri}: {e}") from e
        try:
            rows = decode_document(file_name, raw)
            for row in rows:
                collected.extend(parse_row(row, source))
        except (OSError, EOFError, lzma.LZMAError, ValueError, UnicodeDecodeError) as e:
            raise IndexUnavailable(f"Failed to parse index {uri}: {e}") from e
        snapshot.documents[file_name] = raw
        logger.debug("Parsed %d rows from %s", len(rows), file_name)
    snapshot.entries = dedupe(collected)
    logger.info("Total gems: %d in remote index", snapshot.packages)
    return snapshot
