"""
Loader worker: loads its contiguous slice of the work list, one file at a time.

A worker owns one store session and one statistics record for its whole
lifetime. Any exception that escapes a file load is fatal for the run: the
worker records it, sets the shared cancellation event and stops.
"""

import random
import threading
import traceback
from typing import Optional, Sequence

from ..neo.session import StoreSession
from ..shared.config import LoaderConfig
from ..shared.observability import get_logger
from .committer import BatchCommitter
from .run_stats import ThreadStats
from .work import WorkUnit

log = get_logger(__name__)


class LoaderWorker:
    def __init__(
        self,
        worker_id: int,
        units: Sequence[WorkUnit],
        session: StoreSession,
        config: LoaderConfig,
        cancel_event: threading.Event,
        stats: Optional[ThreadStats] = None,
        rng: Optional[random.Random] = None,
        phase: str = "",
    ):
        self.worker_id = worker_id
        self.units = list(units)
        self.session = session
        self.cancel_event = cancel_event
        self.stats = stats if stats is not None else ThreadStats()
        # Assigned before any thread starts so the reporter never sees 0/0 early
        self.stats.files_assigned = len(self.units)
        self.error: Optional[BaseException] = None
        self.committer = BatchCommitter(
            session,
            config.tx,
            self.stats,
            cancel_event,
            rng=rng,
            phase=phase,
            worker_id=worker_id,
        )

    def run(self) -> None:
        """Load every assigned file in order. Exceptions propagate to the caller."""
        log.info("worker_started", worker=self.worker_id, files=len(self.units))
        try:
            for unit in self.units:
                if self.cancel_event.is_set():
                    log.info("worker_cancelled", worker=self.worker_id, file=unit.name)
                    return
                if not self.committer.load_file(unit):
                    log.info("worker_cancelled", worker=self.worker_id, file=unit.name)
                    return
            log.info(
                "worker_finished",
                worker=self.worker_id,
                files=self.stats.files_processed,
                lines=self.stats.lines_processed,
            )
        finally:
            self.session.close()

    def run_guarded(self) -> None:
        """Thread target: a fatal error cancels every other worker."""
        try:
            self.run()
        except Exception as e:
            self.error = e
            log.error(
                "worker_failed",
                worker=self.worker_id,
                error=str(e),
                exception_type=type(e).__name__,
                traceback=traceback.format_exc(),
            )
            self.cancel_event.set()
