import logging
import os
from pathlib import Path
from typing import AbstractSet, Iterable, List, Optional

from . import layout
from .errors import DestinationInvalid
from .files import sha256_of
from .models import Kind, LocalEntry, PackageRef

logger = logging.getLogger(__name__)


def check_destination(destination: Path):
    if not destination.exists():
        raise DestinationInvalid(f"Directory not found: {destination}")
    if not destination.is_dir():
        raise DestinationInvalid(f"Not a directory: {destination}")
    if not os.access(destination, os.W_OK | os.X_OK):
        raise DestinationInvalid(f"Directory not writable: {destination}")


def scan(destination: Path, known: Iterable[PackageRef] = (), verify: bool = False,
         checksummed: Optional[AbstractSet[PackageRef]] = None) -> List[LocalEntry]:
    """
    List the metadata and artifact files already mirrored under ``destination``.

    Only the two flat package directories are read. ``known`` refs, usually
    the remote index, resolve file names whose platform contains dashes.
    With ``verify`` files are hashed: all of them, or only the refs in
    ``checksummed`` when that set is given. Unreadable files are left out so
    the planner treats them as missing.
    """
    lookup = layout.name_lookup(known)
    entries = []
    for kind in (Kind.METADATA, Kind.ARTIFACT):
        folder = destination / layout.DIRECTORIES[kind]
        if not folder.is_dir():
            continue
        with os.scandir(folder) as it:
            for item in it:
                if not item.is_file():
                    continue
                ref = layout.resolve(item.name, kind, lookup)
                if ref is None:
                    if not item.name.startswith(layout.TMP_PREFIX):
                        logger.debug("Ignoring unrecognised file %s", item.path)
                    continue
                path = Path(item.path)
                try:
                    size = item.stat().st_size
                    hashed = verify and (checksummed is None or ref in checksummed)
                    digest = sha256_of(path) if hashed else None
                except OSError as e:
                    logger.warning("Cannot read %s, will refetch: %s", path, e)
                    continue
                entries.append(LocalEntry(ref, path, size, digest))
    logger.info("Found %d local files in %s", len(entries), destination)
    return entries
