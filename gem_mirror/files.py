import hashlib
import logging
import os
from pathlib import Path

from . import layout
from .errors import ItemPermanentError, ItemTransientError
from .models import RemoteEntry
from .transport import Transport

logger = logging.getLogger(__name__)

BLOCK_SIZE = 1024 ** 2


def sha256_of(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for block in iter(lambda: f.read(BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def verify_content(entry: RemoteEntry, content: bytes):
    """Check fetched bytes against the size and checksum the index published."""
    if entry.size is not None and len(content) != entry.size:
        raise ItemTransientError(
            f"Size mismatch for {entry.uri}. Expected {entry.size}, got {len(content)}", entry.uri)
    if entry.sha256:
        actual = hashlib.sha256(content).hexdigest()
        if actual != entry.sha256.lower():
            raise ItemTransientError(
                f"Checksum mismatch for {entry.uri}. Expected {entry.sha256}, got {actual}", entry.uri)


def write_atomic(dst_file: Path, content: bytes, mtime: float = None):
    """Write through a ``._syncing_.`` sibling and rename it over ``dst_file``."""
    tmp_file = dst_file.with_name(layout.tmp_name(dst_file.name))
    try:
        dst_file.parent.mkdir(parents=True, exist_ok=True)
        with tmp_file.open("wb") as f:
            f.write(content)
        if mtime is not None:
            os.utime(tmp_file, (mtime, mtime))
        os.replace(tmp_file, dst_file)
    except OSError as e:
        try:
            tmp_file.unlink(missing_ok=True)
        except OSError as cleanup_error:
            logger.warning("Could not remove %s: %s", tmp_file, cleanup_error)
        raise ItemPermanentError(f"Error writing {dst_file}: {e}") from e


def fetch_entry(entry: RemoteEntry, destination: Path, transport: Transport):
    content = transport.fetch(entry.uri)
    verify_content(entry, content)
    dst_file = destination / layout.relative_path(entry.ref)
    write_atomic(dst_file, content, entry.created_at)
    logger.debug("Fetched %s", dst_file)


def delete_entry(path: Path):
    """Remove one mirrored file, using the path the inventory found it at."""
    try:
        path.unlink()
    except FileNotFoundError:
        logger.debug("Already gone: %s", path)
        return
    except OSError as e:
        raise ItemPermanentError(f"Error deleting {path}: {e}") from e
    logger.debug("Deleted %s", path)
