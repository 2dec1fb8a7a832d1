"""
Graph loader orchestrator for one load phase.

Assignment is static: the global work list is split across loader instances
and then across this instance's threads (see partition.thread_slices). One
thread runs per worker plus one reporter thread. The main thread waits for the
workers, then stops the reporter without waiting out its interval. A fatal
error in any worker cancels the rest and is re-raised here as LoadAborted.
"""

import contextvars
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..neo.session import StoreSession
from ..shared.config import LoaderConfig
from ..shared.observability import get_logger, get_run_id
from .errors import LoadAborted
from .partition import thread_slices
from .run_stats import ReportFormat, StatsReporter, ThreadStats, summarize_run
from .work import WorkUnit
from .worker import LoaderWorker

log = get_logger(__name__)

JOIN_POLL_SECONDS = 0.5


class LoadStatus:
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class GraphLoader:
    """Runs one phase's work list to completion, cancellation or failure."""

    def __init__(
        self,
        work_units: Sequence[WorkUnit],
        config: LoaderConfig,
        session_factory: Callable[[], StoreSession],
        phase: str = "",
        write: Callable[[str], Any] = print,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.work_units = list(work_units)
        self.config = config
        self.session_factory = session_factory
        self.phase = phase
        self.write = write
        self.cancel_event = cancel_event or threading.Event()
        self.workers: List[LoaderWorker] = []
        self.reporter: Optional[StatsReporter] = None
        self.reporter_stop = threading.Event()

    def _build_workers(self) -> List[LoaderWorker]:
        slices = thread_slices(
            len(self.work_units),
            self.config.num_loaders,
            self.config.loader_idx,
            self.config.num_threads,
        )
        workers: List[LoaderWorker] = []
        try:
            for worker_id, part in enumerate(slices):
                # Distinct but reproducible streams when a seed is configured
                if self.config.seed is not None:
                    rng = random.Random(self.config.seed + worker_id)
                else:
                    rng = random.Random()
                workers.append(
                    LoaderWorker(
                        worker_id,
                        [self.work_units[i] for i in part.indices()],
                        self.session_factory(),
                        self.config,
                        self.cancel_event,
                        rng=rng,
                        phase=self.phase,
                    )
                )
        except Exception:
            for worker in workers:
                worker.session.close()
            raise
        return workers

    def _start(self, target: Callable[[], Any], name: str) -> threading.Thread:
        # Each thread gets its own copy of the caller's context (run id binding)
        ctx = contextvars.copy_context()
        thread = threading.Thread(
            target=ctx.run, args=(target,), name=name, daemon=True
        )
        thread.start()
        return thread

    def _join(self, thread: threading.Thread) -> None:
        while thread.is_alive():
            thread.join(timeout=JOIN_POLL_SECONDS)
            # cancellation reaches the reporter within one poll
            if self.cancel_event.is_set():
                self.reporter_stop.set()

    def run(self) -> Dict[str, Any]:
        """
        Load this instance's share of the work list.

        Returns:
            The end-of-run summary (status "completed" or "cancelled")

        Raises:
            LoadAborted: If any worker hit a fatal error
        """
        started = time.monotonic()
        get_run_id()
        self.workers = self._build_workers()
        stats: List[ThreadStats] = [w.stats for w in self.workers]
        self.reporter = StatsReporter(
            stats,
            self.config.report.interval_seconds,
            ReportFormat(self.config.report.format),
            self.reporter_stop,
            write=self.write,
        )

        log.info(
            "loader_started",
            phase=self.phase,
            work_units=len(self.work_units),
            assigned=sum(s.files_assigned for s in stats),
            num_loaders=self.config.num_loaders,
            loader_idx=self.config.loader_idx,
            num_threads=self.config.num_threads,
        )

        reporter_thread = self._start(self.reporter.run, "stats-reporter")
        threads = [
            self._start(w.run_guarded, f"loader-worker-{w.worker_id}")
            for w in self.workers
        ]
        for thread in threads:
            self._join(thread)

        self.reporter_stop.set()
        self._join(reporter_thread)
        failed = next((w for w in self.workers if w.error is not None), None)

        duration = time.monotonic() - started
        if failed is not None:
            summarize_run(
                stats, self.phase, LoadStatus.FAILED, duration, error=str(failed.error)
            )
            raise LoadAborted(
                f"Load aborted by worker {failed.worker_id}: {failed.error}"
            ) from failed.error

        if self.cancel_event.is_set():
            status = LoadStatus.CANCELLED
        else:
            status = LoadStatus.COMPLETED
            self.reporter.finish()
        return summarize_run(stats, self.phase, status, duration)
