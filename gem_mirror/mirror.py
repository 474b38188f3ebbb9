"""
Mirror orchestration: one synchronization run from index to pruning.

    IDLE -> LOADING_INDEX -> SCANNING -> PLANNING -> FETCHING_METADATA
         -> FETCHING_ARTIFACTS -> [DELETING] -> DONE

Any fetching or deleting state moves to ABORTED when an item exhausts its
attempts under ``ErrorPolicy.ABORT``. Phases run strictly one after another,
so every gemspec fetched in a run is on disk before any gem is requested.
"""
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from . import files
from .config import MirrorConfig
from .errors import ItemError
from .index import IndexSnapshot, load_index
from .inventory import check_destination, scan
from .models import (Kind, OutcomeStatus, PackageRef, Phase, PhaseReport,
                     RunReport, RunState, SyncPlan, TaskOutcome)
from .planner import plan
from .pool import WorkerPool
from .transport import HttpTransport, Transport

logger = logging.getLogger(__name__)


class ProgressListener(Protocol):
    def phase_started(self, phase: Phase, total: int) -> None:
        ...

    def item_finished(self, phase: Phase, outcome: TaskOutcome) -> None:
        ...


class NullListener:
    def phase_started(self, phase: Phase, total: int) -> None:
        pass

    def item_finished(self, phase: Phase, outcome: TaskOutcome) -> None:
        pass


class Mirror:
    def __init__(self, config: MirrorConfig, transport: Optional[Transport] = None,
                 listener: Optional[ProgressListener] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.transport = transport or HttpTransport()
        self.listener = listener or NullListener()
        self.clock = clock
        self.state = RunState.IDLE
        self.snapshot: Optional[IndexSnapshot] = None
        self.plan: Optional[SyncPlan] = None
        self.pool = WorkerPool(config.parallelism, config.retries, config.error_policy,
                               backoff=config.retry_backoff)

    @property
    def destination(self) -> Path:
        return self.config.destination

    def _enter(self, state: RunState):
        logger.debug("%s -> %s", self.state.value, state.value)
        self.state = state

    def _prepare(self) -> SyncPlan:
        if self.state is not RunState.IDLE:
            raise RuntimeError(f"Mirror already ran (state {self.state.value})")
        check_destination(self.destination)

        self._enter(RunState.LOADING_INDEX)
        self.snapshot = load_index(self.config.source, self.transport, self.config.index_files)

        self._enter(RunState.SCANNING)
        checksummed = {e.ref for e in self.snapshot.entries if e.sha256}
        local = scan(self.destination, known=(e.ref for e in self.snapshot.entries),
                     verify=self.config.verify_local, checksummed=checksummed)

        self._enter(RunState.PLANNING)
        self.plan = plan(self.snapshot.entries, local, self.config, now=self.clock())
        logger.info("Plan: %d gemspecs to fetch, %d gems to fetch, %d gems to delete",
                    len(self.plan.fetch_metadata), len(self.plan.fetch_artifacts), len(self.plan.delete))
        return self.plan

    def dry_run(self) -> SyncPlan:
        """Load, scan and plan without writing anything to the destination."""
        return self._prepare()

    def _run_phase(self, report: RunReport, phase: Phase, items: Sequence[PackageRef],
                   op: Callable[[PackageRef], None],
                   held_back: Sequence[PackageRef] = ()) -> PhaseReport:
        phase_report = PhaseReport(phase, total=len(items), held_back=list(held_back))
        report.phases[phase] = phase_report
        self.listener.phase_started(phase, len(items))

        def completed(outcome: TaskOutcome):
            self.listener.item_finished(phase, outcome)

        phase_report.outcomes = self.pool.run(items, op, on_complete=completed)
        logger.info("Phase %s: %d/%d succeeded, %d skipped", phase.value,
                    phase_report.succeeded, phase_report.total, len(phase_report.skipped))
        return phase_report

    def _fetch(self, ref: PackageRef):
        files.fetch_entry(self.plan.entries[ref], self.destination, self.transport)

    def _delete(self, ref: PackageRef):
        files.delete_entry(self.plan.local_paths[ref])

    def _abort(self, report: RunReport) -> RunReport:
        self._enter(RunState.ABORTED)
        report.state = self.state
        cause = report.abort_cause
        if cause is not None:
            logger.error("Mirror run aborted at %s: %s", cause.ref, cause.error)
        return report

    def _delete_allowed(self, sync_plan: SyncPlan) -> bool:
        ratio = self.config.max_delete_ratio
        if ratio is None or not sync_plan.delete or not sync_plan.local_artifacts:
            return True
        share = len(sync_plan.delete) / sync_plan.local_artifacts
        if share > ratio:
            logger.warning("Refusing to delete %d of %d local gems (%.0f%% > %.0f%%)",
                           len(sync_plan.delete), sync_plan.local_artifacts, share * 100, ratio * 100)
            return False
        return True

    def _publish_index(self) -> bool:
        try:
            for file_name, raw in self.snapshot.documents.items():
                files.write_atomic(self.destination / file_name, raw)
        except ItemError as e:
            logger.error("Failed to publish index: %s", e)
            return False
        return True

    def run(self) -> RunReport:
        """
        Execute one full synchronization run.

        IndexUnavailable and DestinationInvalid propagate to the caller. Item
        failures never raise; they are reflected in the returned report.
        """
        sync_plan = self._prepare()
        report = RunReport(plan=sync_plan, index_size=self.snapshot.packages)

        self._enter(RunState.FETCHING_METADATA)
        metadata = self._run_phase(report, Phase.METADATA, sync_plan.fetch_metadata, self._fetch)
        if metadata.aborted is not None:
            return self._abort(report)

        # a gem is never mirrored without its gemspec
        missing_spec = {o.ref.with_kind(Kind.ARTIFACT) for o in metadata.outcomes
                        if o.status is not OutcomeStatus.SUCCESS}
        artifacts = [ref for ref in sync_plan.fetch_artifacts if ref not in missing_spec]
        held_back = [ref for ref in sync_plan.fetch_artifacts if ref in missing_spec]
        if held_back:
            logger.warning("Holding back %d gems whose gemspec could not be fetched", len(held_back))

        self._enter(RunState.FETCHING_ARTIFACTS)
        fetched = self._run_phase(report, Phase.ARTIFACTS, artifacts, self._fetch, held_back)
        if fetched.aborted is not None:
            return self._abort(report)

        if self.config.delete:
            if self._delete_allowed(sync_plan):
                self._enter(RunState.DELETING)
                deleted = self._run_phase(report, Phase.DELETE, sync_plan.delete, self._delete)
                if deleted.aborted is not None:
                    return self._abort(report)
            else:
                report.delete_suppressed = True

        if self.config.publish_index:
            report.index_published = self._publish_index()

        self._enter(RunState.DONE)
        report.state = self.state
        return report


def run_sync(config: MirrorConfig, transport: Optional[Transport] = None,
             listener: Optional[ProgressListener] = None) -> RunReport:
    return Mirror(config, transport, listener).run()
