"""
On-disk and on-wire naming scheme of a gem repository.

    <root>/gems/<name>-<version>[-<platform>].gem
    <root>/quick/Marshal.4.8/<name>-<version>[-<platform>].gemspec.rz

The same relative paths are used for the remote URI and the local file, so
the index loader, the inventory and the fetch operations all agree on keys.
"""
import re
from pathlib import PurePosixPath
from typing import Dict, Iterable, Optional

from .models import DEFAULT_PLATFORM, Kind, PackageRef

ARTIFACT_DIR = PurePosixPath("gems")
METADATA_DIR = PurePosixPath("quick") / "Marshal.4.8"

SUFFIXES = {
    Kind.ARTIFACT: ".gem",
    Kind.METADATA: ".gemspec.rz",
}
DIRECTORIES = {
    Kind.ARTIFACT: ARTIFACT_DIR,
    Kind.METADATA: METADATA_DIR,
}

# Partially written files carry this prefix until they are renamed in place.
TMP_PREFIX = "._syncing_."

pattern_version_segment = re.compile(r"^\d[0-9A-Za-z.]*$")


def relative_path(ref: PackageRef) -> PurePosixPath:
    return DIRECTORIES[ref.kind] / (ref.full_name + SUFFIXES[ref.kind])


def remote_uri(source: str, ref: PackageRef) -> str:
    return f"{source.rstrip('/')}/{relative_path(ref)}"


def tmp_name(file_name: str) -> str:
    return TMP_PREFIX + file_name


def strip_suffix(file_name: str, kind: Kind) -> Optional[str]:
    suffix = SUFFIXES[kind]
    if not file_name.endswith(suffix) or file_name.startswith(TMP_PREFIX):
        return None
    stem = file_name[:-len(suffix)]
    return stem or None


def parse_full_name(full_name: str, kind: Kind) -> Optional[PackageRef]:
    """
    Split ``name-version[-platform]`` back into a PackageRef.

    Gem names may contain dashes, versions never do, and a version always
    starts with a digit, so the first dash-separated segment that looks like
    a version ends the name. Returns None when no such segment exists.
    """
    parts = full_name.split("-")
    for i in range(1, len(parts)):
        if pattern_version_segment.match(parts[i]):
            name = "-".join(parts[:i])
            platform = "-".join(parts[i + 1:]) or DEFAULT_PLATFORM
            return PackageRef(name, parts[i], platform, kind)
    return None


def name_lookup(refs: Iterable[PackageRef]) -> Dict[str, PackageRef]:
    """Map ``(kind, full_name)`` keys of known refs for exact file-name resolution."""
    return {f"{ref.kind.value}:{ref.full_name}": ref for ref in refs}


def resolve(file_name: str, kind: Kind, known: Dict[str, PackageRef]) -> Optional[PackageRef]:
    stem = strip_suffix(file_name, kind)
    if stem is None:
        return None
    ref = known.get(f"{kind.value}:{stem}")
    if ref is not None:
        return ref
    return parse_full_name(stem, kind)
