import argparse
import logging
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import CONFIG_ENV, DEBUG, MirrorConfig, load_config
from .errors import ConfigError, DestinationInvalid, IndexUnavailable
from .mirror import Mirror
from .models import Phase, RunReport, TaskOutcome

logger = logging.getLogger("gem_mirror")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2

BANNERS = {
    Phase.METADATA: "Fetching {} gemspecs",
    Phase.ARTIFACTS: "Fetching {} gems",
    Phase.DELETE: "Deleting {} gems",
}


class ProgressPrinter:
    """Prints a line every ``every`` items and when a phase drains."""

    def __init__(self, verbose: bool = False, every: int = 100):
        self.verbose = verbose
        self.every = every
        self.lock = threading.Lock()
        self.total = 0
        self.count = 0
        self.skipped = 0

    def phase_started(self, phase: Phase, total: int):
        with self.lock:
            self.total, self.count, self.skipped = total, 0, 0
        print(BANNERS[phase].format(total), flush=True)

    def item_finished(self, phase: Phase, outcome: TaskOutcome):
        with self.lock:
            self.count += 1
            if not outcome.ok:
                self.skipped += 1
            count, total, skipped = self.count, self.total, self.skipped
        if self.verbose:
            print(f"  {outcome.status.value}: {outcome.ref.full_name}", flush=True)
        if count % self.every == 0 or count == total:
            progress = count / total * 100 if total else 100.0
            print(f"{phase.value} progress: {count}/{total} ({progress:.1f}%) skipped: {skipped}", flush=True)


def print_summary(report: RunReport):
    print("\n--- Summary ---")
    for phase, phase_report in report.phases.items():
        print(f"{phase.value}: {phase_report.attempted}/{phase_report.total} attempted, "
              f"{phase_report.succeeded} succeeded, {len(phase_report.skipped)} skipped")
        for outcome in phase_report.skipped:
            print(f"  - skipped {outcome.ref}: {outcome.error}")
        for ref in phase_report.held_back:
            print(f"  - held back {ref}: gemspec missing")
    if report.delete_suppressed:
        print("delete: skipped by max_delete_ratio safety check")
    cause = report.abort_cause
    if cause is not None:
        print(f"ABORTED at {cause.ref} after {cause.attempts} attempts: {cause.error}")
    print(f"Result: {report.state.value}", flush=True)


def mirror_one(config: MirrorConfig, dry_run: bool = False, verbose: bool = False) -> bool:
    print(f"\n--- Mirroring {config.source} -> {config.destination} ---", flush=True)
    for name in config.index_files:
        print(f"Fetching: {config.source.rstrip('/')}/{name}", flush=True)
    mirror = Mirror(config, listener=ProgressPrinter(verbose=verbose or config.verbose))
    start_time = time.time()
    try:
        if dry_run:
            sync_plan = mirror.dry_run()
            print(f"Total gems: {mirror.snapshot.packages} on remote")
            print(f"Would fetch {len(sync_plan.fetch_metadata)} gemspecs, "
                  f"{len(sync_plan.fetch_artifacts)} gems"
                  + (f", delete {len(sync_plan.delete)} gems" if config.delete else ""), flush=True)
            return True
        report = mirror.run()
    except (IndexUnavailable, DestinationInvalid) as e:
        print(f"ERROR: {e}", flush=True)
        return False
    print(f"Total gems: {report.index_size} on remote")
    print_summary(report)
    print(f"Finished in {time.time() - start_time:.2f} seconds.", flush=True)
    return report.ok


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="gem-mirror",
        description="Mirror remote gem repositories into local directories.")
    parser.add_argument("-c", "--config", type=Path, default=None,
                        help=f"YAML mirror list (default: ${CONFIG_ENV} or ~/.gem/.mirrorrc)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Only print what would be fetched and deleted")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Print every item and debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    try:
        mirrors = load_config(args.config)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr, flush=True)
        return EXIT_CONFIG

    debug = args.verbose or DEBUG or any(m.verbose for m in mirrors)
    logging.basicConfig(level=logging.DEBUG if debug else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    failed = [m for m in mirrors if not mirror_one(m, args.dry_run, args.verbose)]
    if failed:
        print(f"\nFailed to mirror {len(failed)} of {len(mirrors)} sources:")
        for m in failed:
            print(f"  - {m.source}")
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
