import concurrent.futures
import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

from .errors import ItemError
from .models import ErrorPolicy, OutcomeStatus, PackageRef, TaskOutcome

logger = logging.getLogger(__name__)

Operation = Callable[[PackageRef], None]
CompletionCallback = Callable[[TaskOutcome], None]


class WorkerPool:
    """
    Run one operation over many refs with bounded parallelism.

    Every item gets ``retries + 1`` attempts. An item that fails all of them
    is either recorded as skipped or, under ``ErrorPolicy.ABORT``, stops the
    pool: items already running finish, nothing new starts.
    """

    def __init__(self, parallelism: int = 1, retries: int = 0,
                 policy: ErrorPolicy = ErrorPolicy.SKIP,
                 backoff: float = 0.0, max_backoff: float = 30.0,
                 sleep: Callable[[float], None] = time.sleep):
        if parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {parallelism}")
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")
        self.parallelism = parallelism
        self.retries = retries
        self.policy = policy
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.sleep = sleep

    def _attempt(self, ref: PackageRef, op: Operation, stop: threading.Event) -> TaskOutcome:
        attempts = self.retries + 1
        error = None
        for attempt in range(attempts):
            if attempt > 0:
                logger.info("Retrying (%d/%d) %s", attempt + 1, attempts, ref)
                if self.backoff > 0:
                    self.sleep(min(self.backoff * 2 ** (attempt - 1), self.max_backoff))
            try:
                op(ref)
            except ItemError as e:
                error = e
                logger.debug("Attempt %d/%d failed for %s: %s", attempt + 1, attempts, ref, e)
                continue
            return TaskOutcome(ref, OutcomeStatus.SUCCESS, attempt + 1)
        if self.policy is ErrorPolicy.SKIP:
            logger.warning("Skipping %s after %d attempts: %s", ref, attempts, error)
            return TaskOutcome(ref, OutcomeStatus.SKIPPED, attempts, error)
        # set before the lock is taken; a busy on_complete must not delay it
        stop.set()
        logger.error("Aborting: %s failed after %d attempts: %s", ref, attempts, error)
        return TaskOutcome(ref, OutcomeStatus.ABORTED, attempts, error)

    def run(self, items: Sequence[PackageRef], op: Operation,
            on_complete: Optional[CompletionCallback] = None) -> List[TaskOutcome]:
        """Process ``items`` and return their outcomes in completion order."""
        if not items:
            return []

        outcomes: List[TaskOutcome] = []
        lock = threading.Lock()
        stop = threading.Event()

        def work(ref: PackageRef) -> Optional[TaskOutcome]:
            if stop.is_set():
                return None
            outcome = self._attempt(ref, op, stop)
            with lock:
                outcomes.append(outcome)
                if on_complete is not None:
                    on_complete(outcome)
            return outcome

        max_workers = min(self.parallelism, len(items))
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(work, ref) for ref in items]
            for future in concurrent.futures.as_completed(futures):
                if future.cancelled():
                    continue
                try:
                    outcome = future.result()
                except Exception:
                    # not an ItemError: a bug or environment failure, stop and re-raise
                    stop.set()
                    for pending in futures:
                        pending.cancel()
                    raise
                if outcome is not None and outcome.status is OutcomeStatus.ABORTED:
                    for pending in futures:
                        pending.cancel()

        not_started = len(items) - len(outcomes)
        if not_started:
            logger.info("%d items were not started after abort", not_started)
        return outcomes
