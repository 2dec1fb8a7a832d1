"""
Per-worker load statistics and the periodic progress reporter.

Each worker owns one ThreadStats record and is its only writer. The reporter
thread reads the records without locking: it copies each one per tick and
diffs against the previous copy. A stale or torn read only skews one progress
line, which is acceptable for a progress display.

Report format characters (unknown characters are ignored):
    L - Total lines processed per second.
    l - Per thread lines processed per second.
    F - Total files processed / assigned.
    f - Per thread files processed / assigned.
    X - Total tx failures.
    x - Per thread tx failures.
    D - Total disk read bandwidth in MB/s.
    d - Per thread disk read bandwidth in KB/s.
    T - Total time elapsed in minutes.
"""

import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)

COLUMN_WIDTH = 10
PER_WORKER_COLUMNS = "lfxd"
TOTAL_COLUMNS = "LFXDT"


@dataclass
class ThreadStats:
    """Monotonic counters for one loader worker."""

    lines_processed: int = 0
    bytes_read: int = 0
    files_processed: int = 0
    files_assigned: int = 0
    tx_failures: int = 0

    def snapshot(self) -> "ThreadStats":
        return replace(self)


def is_complete(snapshots: Sequence[ThreadStats]) -> bool:
    """True when, summed over all workers, every assigned file has been processed."""
    processed = sum(s.files_processed for s in snapshots)
    assigned = sum(s.files_assigned for s in snapshots)
    return processed == assigned


def _col(value: Any) -> str:
    return f"{value:>{COLUMN_WIDTH}}"


@dataclass(frozen=True)
class ReportFormat:
    """Column selection for progress lines."""

    columns: str = "LFDT"

    def enabled(self, column: str) -> bool:
        return column in self.columns

    def header(self, num_workers: int) -> str:
        cols: List[str] = []
        for i in range(num_workers):
            for c in PER_WORKER_COLUMNS:
                if self.enabled(c):
                    cols.append(_col(f"{i}.{c}"))
        for c in TOTAL_COLUMNS:
            if self.enabled(c):
                cols.append(_col(c))
        return "".join(cols)

    def row(
        self,
        previous: Sequence[ThreadStats],
        current: Sequence[ThreadStats],
        interval_seconds: int,
        elapsed_seconds: float,
    ) -> str:
        cols: List[str] = []
        total_line_rate = 0
        total_byte_rate = 0
        total_processed = 0
        total_assigned = 0
        total_failures = 0

        for last, curr in zip(previous, current):
            line_rate = (
                curr.lines_processed - last.lines_processed
            ) // interval_seconds
            byte_rate = (curr.bytes_read - last.bytes_read) // interval_seconds

            if self.enabled("l"):
                cols.append(_col(line_rate))
            if self.enabled("f"):
                cols.append(_col(f"({curr.files_processed}/{curr.files_assigned})"))
            if self.enabled("x"):
                cols.append(_col(curr.tx_failures))
            if self.enabled("d"):
                cols.append(_col(f"{byte_rate // 1000}KB/s"))

            total_line_rate += line_rate
            total_byte_rate += byte_rate
            total_processed += curr.files_processed
            total_assigned += curr.files_assigned
            total_failures += curr.tx_failures

        if self.enabled("L"):
            cols.append(_col(total_line_rate))
        if self.enabled("F"):
            cols.append(_col(f"({total_processed}/{total_assigned})"))
        if self.enabled("X"):
            cols.append(_col(total_failures))
        if self.enabled("D"):
            cols.append(_col(f"{total_byte_rate // 1000000}MB/s"))
        if self.enabled("T"):
            cols.append(_col(f"{int(elapsed_seconds) // 60}m"))
        return "".join(cols)


class StatsReporter:
    """
    Prints one progress line per interval until every assigned file is loaded.

    The inter-tick sleep waits on ``stop_event``. Setting it ends the reporter
    silently; the loader sets it on cancellation and once the workers are done,
    then calls finish() so a completed run always ends with a full row.
    """

    def __init__(
        self,
        stats: Sequence[ThreadStats],
        interval_seconds: int,
        report_format: ReportFormat,
        stop_event: threading.Event,
        write: Callable[[str], Any] = print,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stats = list(stats)
        self.interval_seconds = interval_seconds
        self.report_format = report_format
        self.stop_event = stop_event
        self.write = write
        self.clock = clock
        self.ticks = 0
        self.completed = False
        self._last: List[ThreadStats] = []
        self._start = 0.0
        self._last_tick = 0.0

    def snapshot(self) -> List[ThreadStats]:
        return [s.snapshot() for s in self.stats]

    def _emit(self, current: List[ThreadStats], interval_seconds: int) -> None:
        now = self.clock()
        self.write(
            self.report_format.row(
                self._last, current, interval_seconds, now - self._start
            )
        )
        self.ticks += 1
        self._last = current
        self._last_tick = now
        self.completed = is_complete(current)

    def run(self) -> bool:
        """Report until completion (True) or until stopped (False)."""
        self.write(self.report_format.header(len(self.stats)))
        self._last = self.snapshot()
        self._start = self._last_tick = self.clock()

        while True:
            if self.stop_event.wait(self.interval_seconds):
                logger.debug("stats_reporter_stopped", ticks=self.ticks)
                return False

            self._emit(self.snapshot(), self.interval_seconds)
            if self.completed:
                return True

    def finish(self) -> None:
        """Print the closing row unless run() already printed a complete one."""
        if self.completed:
            return
        # rates over the partial interval since the last row
        partial = max(1, int(self.clock() - self._last_tick))
        self._emit(self.snapshot(), partial)


def summarize_run(
    stats: Sequence[ThreadStats],
    phase: str,
    status: str,
    duration_seconds: float,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Emit the end-of-run summary as a structured log event.

    Returns:
        The summary dict that was logged
    """
    snapshots = [s.snapshot() for s in stats]
    summary: Dict[str, Any] = {
        "phase": phase,
        "status": status,
        "duration_seconds": round(duration_seconds, 2),
        "workers": len(snapshots),
        "lines_processed": sum(s.lines_processed for s in snapshots),
        "bytes_read": sum(s.bytes_read for s in snapshots),
        "files_processed": sum(s.files_processed for s in snapshots),
        "files_assigned": sum(s.files_assigned for s in snapshots),
        "tx_failures": sum(s.tx_failures for s in snapshots),
    }
    if error:
        summary["error"] = error
        logger.error("load_run_summary", **summary)
    else:
        logger.info("load_run_summary", **summary)
    return summary
