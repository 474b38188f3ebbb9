import enum
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

DEFAULT_PLATFORM = "ruby"
SECONDS_PER_DAY = 86400


class Kind(enum.Enum):
    METADATA = "metadata"
    ARTIFACT = "artifact"


class ErrorPolicy(enum.Enum):
    """What the worker pool does with an item that ran out of attempts."""
    SKIP = "skip"
    ABORT = "abort"


class OutcomeStatus(enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class Phase(enum.Enum):
    METADATA = "metadata"
    ARTIFACTS = "artifacts"
    DELETE = "delete"


class RunState(enum.Enum):
    IDLE = "idle"
    LOADING_INDEX = "loading_index"
    SCANNING = "scanning"
    PLANNING = "planning"
    FETCHING_METADATA = "fetching_metadata"
    FETCHING_ARTIFACTS = "fetching_artifacts"
    DELETING = "deleting"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class PackageRef:
    name: str
    version: str
    platform: str = DEFAULT_PLATFORM
    kind: Kind = Kind.ARTIFACT

    @property
    def full_name(self) -> str:
        if self.platform and self.platform != DEFAULT_PLATFORM:
            return f"{self.name}-{self.version}-{self.platform}"
        return f"{self.name}-{self.version}"

    def with_kind(self, kind: Kind) -> "PackageRef":
        return PackageRef(self.name, self.version, self.platform, kind)

    def sort_key(self) -> Tuple[str, str, str, str]:
        return (self.name, self.version, self.platform, self.kind.value)

    def __str__(self):
        return f"{self.full_name} ({self.kind.value})"


@dataclass(frozen=True)
class RemoteEntry:
    ref: PackageRef
    uri: str
    created_at: Optional[float] = None
    size: Optional[int] = None
    sha256: Optional[str] = None

    def age_days(self, now: Optional[float] = None) -> Optional[float]:
        """Age in days, or None when the index did not publish a timestamp."""
        if self.created_at is None:
            return None
        if now is None:
            now = time.time()
        return max(0.0, (now - self.created_at) / SECONDS_PER_DAY)


@dataclass(frozen=True)
class LocalEntry:
    ref: PackageRef
    path: Path
    size: int
    sha256: Optional[str] = None


@dataclass(frozen=True)
class SyncPlan:
    fetch_metadata: Tuple[PackageRef, ...] = ()
    fetch_artifacts: Tuple[PackageRef, ...] = ()
    delete: Tuple[PackageRef, ...] = ()
    # remote entries for every ref in the two fetch sequences
    entries: Dict[PackageRef, RemoteEntry] = field(default_factory=dict, compare=False, repr=False)
    # on-disk location of every ref in the delete sequence
    local_paths: Dict[PackageRef, Path] = field(default_factory=dict, compare=False, repr=False)
    local_artifacts: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.fetch_metadata or self.fetch_artifacts or self.delete)


@dataclass(frozen=True)
class TaskOutcome:
    ref: PackageRef
    status: OutcomeStatus
    attempts: int = 1
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


@dataclass
class PhaseReport:
    phase: Phase
    total: int = 0
    outcomes: List[TaskOutcome] = field(default_factory=list)
    held_back: List[PackageRef] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status is OutcomeStatus.SUCCESS)

    @property
    def skipped(self) -> List[TaskOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.SKIPPED]

    @property
    def aborted(self) -> Optional[TaskOutcome]:
        for o in self.outcomes:
            if o.status is OutcomeStatus.ABORTED:
                return o
        return None


@dataclass
class RunReport:
    state: RunState = RunState.IDLE
    phases: Dict[Phase, PhaseReport] = field(default_factory=dict)
    plan: Optional[SyncPlan] = None
    index_size: int = 0
    delete_suppressed: bool = False
    index_published: bool = False

    @property
    def ok(self) -> bool:
        return self.state is RunState.DONE

    @property
    def skipped(self) -> List[TaskOutcome]:
        return [o for report in self.phases.values() for o in report.skipped]

    @property
    def abort_cause(self) -> Optional[TaskOutcome]:
        for report in self.phases.values():
            if report.aborted is not None:
                return report.aborted
        return None
