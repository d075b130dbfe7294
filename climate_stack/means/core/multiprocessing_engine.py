#!/usr/bin/env python3
"""
Task Engine for Climate Stack Processing

Runs independent units of work (one month, one variable-year, one combined
year) on a bounded worker pool. Provides:

- A bounded number of in-flight requests; further units queue
- Retry with exponential backoff on transient failures
- A per-attempt timeout after which the attempt is abandoned
- Per-unit cancellation that leaves sibling units untouched
- Dependencies between units (a unit starts once all its dependencies succeeded)

Every submitted unit ends with a ``TaskResult``; failures are attributed to
their unit and never abort sibling units.
"""

import logging
import multiprocessing as mp
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import psutil

from climate_stack.means.utils.rich_progress import RichProgressTracker
from climate_stack.shared.exceptions import RemoteComputeFailure, StructuralError

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RemoteComputeFailure, TimeoutError, OSError)

# Upper bound on a single scheduler wait so cancellations are picked up promptly
_POLL_SECONDS = 0.05


# =============================================================================
# CONFIGURATION AND TASK TYPES
# =============================================================================

@dataclass
class MultiprocessingConfig:
    """Worker pool and retry settings."""

    max_workers: int = 4
    timeout_per_task: Optional[float] = 300.0
    max_retries: int = 2
    backoff_seconds: float = 1.0
    backoff_factor: float = 2.0
    progress_interval: int = 5

    def __post_init__(self):
        if self.max_workers <= 0:
            self.max_workers = self._auto_detect_optimal_workers()
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.backoff_seconds < 0 or self.backoff_factor < 1:
            raise ValueError("backoff_seconds must be >= 0 and backoff_factor >= 1")
        if self.timeout_per_task is not None and self.timeout_per_task <= 0:
            raise ValueError(f"timeout_per_task must be positive, got {self.timeout_per_task}")

    @staticmethod
    def _auto_detect_optimal_workers() -> int:
        """Pick a worker count from CPU count, capped for remote request budgets."""
        cpu_count = mp.cpu_count()
        memory_gb = psutil.virtual_memory().total / (1024 ** 3)
        optimal_workers = max(1, min(8, cpu_count - 1))
        logger.info(f"Auto-detected optimal workers: {optimal_workers} "
                    f"(CPUs: {cpu_count}, memory: {memory_gb:.1f}GB)")
        return optimal_workers

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return self.backoff_seconds * (self.backoff_factor ** (attempt - 1))


@dataclass
class WorkUnit:
    """A named callable plus the units it must wait for."""
    unit_id: str
    func: Callable[..., Any]
    args: Tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    depends_on: Tuple[str, ...] = ()


@dataclass
class TaskResult:
    """Outcome of one unit after all its attempts."""
    task_id: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    attempts: int = 0
    execution_time: float = 0.0
    retryable: bool = False
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task_id': self.task_id,
            'success': self.success,
            'error': self.error,
            'error_type': self.error_type,
            'attempts': self.attempts,
            'execution_time': self.execution_time,
            'retryable': self.retryable,
            'cancelled': self.cancelled,
        }


def is_retryable(error: BaseException) -> bool:
    """Transient errors are retried; structural ones never are."""
    return isinstance(error, RETRYABLE_ERRORS) and not isinstance(error, StructuralError)


class _Attempt:
    """One submitted attempt of a unit; records when a worker actually starts it."""

    def __init__(self, unit: WorkUnit):
        self.unit = unit
        self.started: Optional[float] = None

    def __call__(self):
        self.started = time.monotonic()
        return self.unit.func(*self.unit.args, **self.unit.kwargs)

    def duration(self, now: float) -> float:
        return now - self.started if self.started is not None else 0.0


# =============================================================================
# TASK ENGINE
# =============================================================================

class TaskEngine:
    """
    Bounded thread pool with retries, timeouts, cancellation and dependencies.

    Units are I/O-bound requests against the raster engine (lazy dask graphs,
    remote reads), so a thread pool is used; ``max_workers`` is the in-flight
    request budget.
    """

    def __init__(self,
                 config: Optional[MultiprocessingConfig] = None,
                 rich_tracker: Optional[RichProgressTracker] = None,
                 progress_stage: Optional[Callable[[str], str]] = None):
        self.config = config or MultiprocessingConfig()
        self.rich_tracker = rich_tracker
        self.progress_stage = progress_stage
        self._cancelled = set()
        self._lock = threading.Lock()
        self._start_time = None

        logger.info(f"Initialized TaskEngine with {self.config.max_workers} workers "
                    f"(retries: {self.config.max_retries}, timeout: {self.config.timeout_per_task}s)")

    def cancel(self, unit_id: str):
        """Cancel one unit. Queued or backing-off units never start; a running attempt is abandoned."""
        with self._lock:
            self._cancelled.add(unit_id)
        logger.info(f"Cancellation requested for {unit_id}")

    def _is_cancelled(self, unit_id: str) -> bool:
        with self._lock:
            return unit_id in self._cancelled

    def run(self, units: Iterable[WorkUnit]) -> Dict[str, TaskResult]:
        """
        Run ``units`` to completion.

        Returns:
            Mapping of unit id to ``TaskResult``, in submission order.

        Raises:
            ValueError: on duplicate unit ids or unknown dependencies.
        """
        units = list(units)
        ids = [unit.unit_id for unit in units]
        if len(set(ids)) != len(ids):
            raise ValueError("Unit ids must be unique")
        known = set(ids)
        for unit in units:
            missing = [dep for dep in unit.depends_on if dep not in known]
            if missing:
                raise ValueError(f"Unit {unit.unit_id} depends on unknown unit(s) {missing}")
        if not units:
            return {}

        self._start_time = time.time()
        logger.info(f"Starting processing of {len(units)} units with {self.config.max_workers} workers")

        pending: Dict[str, WorkUnit] = {unit.unit_id: unit for unit in units}
        ready_at: Dict[str, float] = {}
        attempts: Dict[str, int] = {uid: 0 for uid in ids}
        elapsed: Dict[str, float] = {uid: 0.0 for uid in ids}
        running: Dict[Future, Tuple[str, _Attempt]] = {}
        abandoned: Set[Future] = set()
        results: Dict[str, TaskResult] = {}
        timeout = self.config.timeout_per_task

        executor = ThreadPoolExecutor(max_workers=self.config.max_workers,
                                      thread_name_prefix='climate-stack')
        try:
            while pending or running:
                now = time.monotonic()
                # Abandoned attempts keep their worker thread until they return
                abandoned = {future for future in abandoned if not future.done()}
                self._drop_cancelled(pending, running, results, attempts, abandoned)
                self._fail_blocked(pending, results)

                for uid, unit in list(pending.items()):
                    if len(running) + len(abandoned) >= self.config.max_workers:
                        break
                    if any(dep not in results for dep in unit.depends_on):
                        continue
                    if ready_at.get(uid, 0.0) > now:
                        continue
                    attempts[uid] += 1
                    attempt = _Attempt(unit)
                    running[executor.submit(attempt)] = (uid, attempt)
                    del pending[uid]

                if not running and not abandoned:
                    if not pending:
                        break
                    waits = [ready_at[uid] - now for uid in pending if uid in ready_at]
                    time.sleep(min([_POLL_SECONDS] + [w for w in waits if w > 0]))
                    continue

                wake = [_POLL_SECONDS]
                if timeout:
                    wake += [attempt.started + timeout - now for _, attempt in running.values()
                             if attempt.started is not None]
                wake += [ready_at[uid] - now for uid in pending if ready_at.get(uid, 0.0) > now]
                done, _ = wait(list(running) + list(abandoned), timeout=max(0.0, min(wake)),
                               return_when=FIRST_COMPLETED)

                now = time.monotonic()
                for future in list(running):
                    uid, attempt = running[future]
                    if future in done:
                        del running[future]
                        elapsed[uid] += attempt.duration(now)
                        error = future.exception()
                        if error is None:
                            results[uid] = TaskResult(uid, True, result=future.result(),
                                                      attempts=attempts[uid], execution_time=elapsed[uid])
                            self._report(uid, results[uid])
                            self._log_progress(len(results), len(units))
                        else:
                            self._handle_failure(pending, ready_at, results, pending_unit=self._unit(units, uid),
                                                 error=error, attempt=attempts[uid], elapsed=elapsed[uid], now=now)
                    elif timeout and attempt.started is not None and now >= attempt.started + timeout:
                        del running[future]
                        abandoned.add(future)
                        elapsed[uid] += attempt.duration(now)
                        error = RemoteComputeFailure(
                            f"Attempt {attempts[uid]} of {uid} exceeded {timeout}s and was abandoned"
                        )
                        self._handle_failure(pending, ready_at, results, pending_unit=self._unit(units, uid),
                                             error=error, attempt=attempts[uid], elapsed=elapsed[uid], now=now)
        finally:
            # Abandoned attempts are not waited for
            executor.shutdown(wait=False, cancel_futures=True)

        ordered = {uid: results[uid] for uid in ids}
        self._log_final_summary(list(ordered.values()))
        return ordered

    @staticmethod
    def _unit(units: List[WorkUnit], unit_id: str) -> WorkUnit:
        return next(unit for unit in units if unit.unit_id == unit_id)

    def _drop_cancelled(self, pending, running, results, attempts, abandoned):
        for uid in list(pending):
            if self._is_cancelled(uid):
                del pending[uid]
                results[uid] = TaskResult(uid, False, error="Cancelled", error_type="Cancelled",
                                          attempts=attempts[uid], cancelled=True)
                self._report(uid, results[uid])
        for future, (uid, _) in list(running.items()):
            if self._is_cancelled(uid):
                del running[future]
                if not future.cancel():
                    abandoned.add(future)
                results[uid] = TaskResult(uid, False, error="Cancelled while running", error_type="Cancelled",
                                          attempts=attempts[uid], cancelled=True)
                self._report(uid, results[uid])

    def _fail_blocked(self, pending, results):
        """Units whose dependencies finished unsuccessfully can never run."""
        for uid, unit in list(pending.items()):
            failed = [dep for dep in unit.depends_on if dep in results and not results[dep].success]
            if failed:
                del pending[uid]
                results[uid] = TaskResult(uid, False, error=f"Dependencies did not complete: {failed}",
                                          error_type="DependencyFailed")
                logger.warning(f"⏭️  Skipping {uid}: dependencies {failed} failed")
                self._report(uid, results[uid])

    def _handle_failure(self, pending, ready_at, results, pending_unit: WorkUnit,
                        error: BaseException, attempt: int, elapsed: float, now: float):
        uid = pending_unit.unit_id
        retryable = is_retryable(error)
        if retryable and attempt <= self.config.max_retries and not self._is_cancelled(uid):
            delay = self.config.backoff_delay(attempt)
            ready_at[uid] = now + delay
            pending[uid] = pending_unit
            logger.warning(f"🔁 {uid} attempt {attempt} failed ({type(error).__name__}: {error}); "
                           f"retrying in {delay:.2f}s")
            return

        results[uid] = TaskResult(uid, False, error=str(error), error_type=type(error).__name__,
                                  attempts=attempt, execution_time=elapsed, retryable=retryable)
        logger.error(f"❌ {uid} failed after {attempt} attempt(s): {type(error).__name__}: {error}")
        self._report(uid, results[uid])

    def _report(self, unit_id: str, result: TaskResult):
        if self.rich_tracker:
            stage = self.progress_stage(unit_id) if self.progress_stage else "units"
            self.rich_tracker.advance(stage, unit_id, failed=not result.success)

    def _log_progress(self, completed: int, total: int):
        if self._start_time and completed % self.config.progress_interval == 0:
            elapsed_time = time.time() - self._start_time
            logger.info(f"Progress: {completed}/{total} units "
                        f"(avg: {elapsed_time / completed:.1f}s/unit, "
                        f"memory: {psutil.virtual_memory().percent:.1f}%)")

    def _log_final_summary(self, results: List[TaskResult]):
        if not results:
            return
        successful = [r for r in results if r.success]
        failed = [r for r in results if not r.success]
        total_time = time.time() - self._start_time if self._start_time else 0

        logger.info("=== Processing Summary ===")
        logger.info(f"Processed: {len(successful)}/{len(results)} units")
        logger.info(f"Failed: {len(failed)} units")
        logger.info(f"Total time: {total_time:.1f} seconds")
        if failed:
            logger.warning(f"Failed units: {[r.task_id for r in failed[:5]]}")
