"""
Diff the remote index against the local tree.

Age filtering is a soft cap: a version older than ``max_age_days`` is still
mirrored while it is among the ``min_versions`` most recent versions of its
gem. Deletion only ever removes what this filter rejected, so tightening
either knob is what makes pruning more aggressive.
"""
import logging
import math
import re
import time
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .config import MirrorConfig
from .models import Kind, LocalEntry, PackageRef, RemoteEntry, SyncPlan

logger = logging.getLogger(__name__)

pattern_segment = re.compile(r"\d+|[A-Za-z]+")


def version_key(version: str) -> Tuple:
    # Gem::Version order: numbers beat words, so 1.0.rc1 < 1.0 < 1.0.1
    segments = pattern_segment.findall(version)
    key = [(1, int(s), "") if s.isdigit() else (0, 0, s) for s in segments]
    key.append((0.5, 0, ""))
    return tuple(key)


def retained_versions(entries: Iterable[RemoteEntry],
                      max_age_days: Optional[int],
                      min_versions: Optional[int],
                      now: Optional[float] = None) -> Set[Tuple[str, str]]:
    """Return the ``(name, version)`` pairs that survive the age and retention filters."""
    if now is None:
        now = time.time()
    # name -> version -> newest build timestamp (inf when unknown)
    newest: Dict[str, Dict[str, float]] = defaultdict(dict)
    for entry in entries:
        stamp = entry.created_at if entry.created_at is not None else math.inf
        versions = newest[entry.ref.name]
        versions[entry.ref.version] = max(versions.get(entry.ref.version, -math.inf), stamp)

    if max_age_days is None or min_versions is None:
        # an unlimited floor keeps everything; an unlimited cap rejects nothing
        return {(name, version) for name, versions in newest.items() for version in versions}

    cutoff = now - max_age_days * 86400
    kept = set()
    for name, versions in newest.items():
        ranked = sorted(versions.items(), key=lambda item: (item[1], version_key(item[0])), reverse=True)
        for rank, (version, stamp) in enumerate(ranked):
            if rank < min_versions or stamp >= cutoff:
                kept.add((name, version))
    return kept


def needs_fetch(remote: RemoteEntry, local: Optional[LocalEntry]) -> bool:
    if local is None:
        return True
    if remote.size is not None and local.size != remote.size:
        return True
    if remote.sha256 and local.sha256 is not None and local.sha256 != remote.sha256.lower():
        return True
    return False


def _sorted(refs: Iterable[PackageRef]) -> Tuple[PackageRef, ...]:
    return tuple(sorted(refs, key=PackageRef.sort_key))


def plan(remote: Sequence[RemoteEntry], local: Sequence[LocalEntry],
         config: MirrorConfig, now: Optional[float] = None) -> SyncPlan:
    kept = retained_versions(remote, config.max_age_days, config.min_versions, now)
    wanted = [e for e in remote if (e.ref.name, e.ref.version) in kept]
    logger.info("%d of %d remote entries pass the age/version filter", len(wanted), len(remote))

    local_by_ref = {e.ref: e for e in local}
    fetch: Dict[Kind, List[PackageRef]] = {Kind.METADATA: [], Kind.ARTIFACT: []}
    entries: Dict[PackageRef, RemoteEntry] = {}
    for entry in wanted:
        if needs_fetch(entry, local_by_ref.get(entry.ref)):
            fetch[entry.ref.kind].append(entry.ref)
            entries[entry.ref] = entry

    local_artifacts = [ref for ref in local_by_ref if ref.kind is Kind.ARTIFACT]
    delete: List[PackageRef] = []
    if config.delete:
        wanted_refs = {e.ref for e in wanted}
        delete = [ref for ref in local_artifacts if ref not in wanted_refs]

    return SyncPlan(
        fetch_metadata=_sorted(fetch[Kind.METADATA]),
        fetch_artifacts=_sorted(fetch[Kind.ARTIFACT]),
        delete=_sorted(delete),
        entries=entries,
        local_paths={ref: local_by_ref[ref].path for ref in delete},
        local_artifacts=len(local_artifacts),
    )
