"""
Batch committer: streams one dataset file into the store in bounded transactions.

States per file:

    STREAMING -> BUFFERING -> TRANSFORMING -> COMMITTING -> COMMITTED
                                   ^              |
                                   |              v
                                RETRYING <---- (transient failure)
                                   ^              |
                                   |              v (failures > tx.retries)
                                   +--------- BACKOFF ---> ABORTED (cancelled)

A batch is read from disk once. Every retry re-transforms and re-submits the
same immutable LineBatch; lines are never re-read.

Backoff: once a batch has failed more than ``tx.retries`` times, every further
failure sleeps a uniformly random time in ``[0, bound]`` ms. The bound starts
at ``tx.backoff_ms`` and doubles per sleep until it reaches
``tx.backoff_ceiling_ms``. Each batch starts a fresh streak. The sleep waits on
the shared cancellation event.
"""

import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, TextIO, Tuple

from ..neo.schema import FIELD_DELIMITER
from ..neo.session import (
    NodeHandle,
    StoreError,
    StoreSession,
    TransientStoreError,
)
from ..shared.config import TransactionConfig
from ..shared.observability import get_logger, metrics
from .errors import BatchCommitError, DataFileError, MalformedLineError
from .run_stats import ThreadStats
from .transform import (
    AppendProperties,
    CreateEdge,
    CreateNode,
    LineTransformer,
    Mutation,
    NodeRef,
    transformer_for,
)
from .work import WorkUnit

logger = get_logger(__name__)

HEADER_LINE_NUMBER = 1


class CommitState(str, Enum):
    """Where a committer is in the per-file state machine."""

    STREAMING = "streaming"
    BUFFERING = "buffering"
    TRANSFORMING = "transforming"
    COMMITTING = "committing"
    COMMITTED = "committed"
    RETRYING = "retrying"
    BACKOFF = "backoff"
    ABORTED = "aborted"


@dataclass(frozen=True)
class LineBatch:
    """Up to tx.size consecutive data lines of one file, terminators stripped."""

    first_line_number: int
    lines: Tuple[str, ...]
    at_eof: bool

    def __len__(self) -> int:
        return len(self.lines)

    @property
    def last_line_number(self) -> int:
        return self.first_line_number + len(self.lines) - 1


class BackoffStreak:
    """Growing sleep bound for one run of failures past the retry ceiling."""

    def __init__(self, initial_ms: int, ceiling_ms: int, rng: random.Random):
        self.initial_ms = initial_ms
        self.ceiling_ms = ceiling_ms
        self.rng = rng
        self._multiplier = 1

    def next_bound_ms(self) -> int:
        bound = self._multiplier * self.initial_ms
        if bound < self.ceiling_ms:
            self._multiplier *= 2
            return bound
        return self.ceiling_ms

    def next_delay_ms(self) -> Tuple[int, int]:
        """Return (bound, delay) with delay drawn uniformly from [0, bound]."""
        bound = self.next_bound_ms()
        return bound, self.rng.randint(0, bound)


class BackoffPolicy:
    def __init__(
        self, initial_ms: int, ceiling_ms: int, rng: Optional[random.Random] = None
    ):
        self.initial_ms = initial_ms
        self.ceiling_ms = ceiling_ms
        self.rng = rng or random.Random()

    def streak(self) -> BackoffStreak:
        return BackoffStreak(self.initial_ms, self.ceiling_ms, self.rng)


class BatchCommitter:
    """
    Drives one worker's commit loop over the files it is given.

    Not thread-safe: one committer per worker, bound to that worker's session
    and statistics record.
    """

    def __init__(
        self,
        session: StoreSession,
        tx_config: TransactionConfig,
        stats: ThreadStats,
        cancel_event: threading.Event,
        rng: Optional[random.Random] = None,
        phase: str = "",
        worker_id: int = 0,
    ):
        self.session = session
        self.tx = tx_config
        self.stats = stats
        self.cancel_event = cancel_event
        self.backoff = BackoffPolicy(
            tx_config.backoff_ms, tx_config.backoff_ceiling_ms, rng
        )
        self.phase = phase
        self.worker_id = worker_id
        self.state = CommitState.STREAMING

    # ------------------------------------------------------------------
    # File level
    # ------------------------------------------------------------------

    def load_file(self, unit: WorkUnit) -> bool:
        """
        Load every line of one file.

        Returns:
            True when the file was fully committed, False when cancelled

        Raises:
            DataFileError: On open/read/close failures
            MalformedLineError: On a line that cannot be transformed or resolved
            StoreError: On a non-retryable store failure
        """
        self.state = CommitState.STREAMING
        logger.debug("file_load_started", worker=self.worker_id, file=unit.name)
        try:
            handle = open(unit.path, "r", encoding="utf-8", newline="")
        except OSError as e:
            raise DataFileError(unit.path, "open", str(e)) from e

        completed = False
        try:
            header = self._read_line(handle, unit, "read header")
            if not header:
                raise DataFileError(unit.path, "read header", "file is empty")
            field_names = header.rstrip("\r\n").split(FIELD_DELIMITER)
            transformer = transformer_for(unit, field_names)

            next_line_number = HEADER_LINE_NUMBER + 1
            while True:
                if self.cancel_event.is_set():
                    self.state = CommitState.ABORTED
                    return False
                batch = self.read_batch(handle, unit, next_line_number)
                if batch.lines and not self.commit_batch(transformer, batch):
                    return False
                next_line_number += len(batch)
                if batch.at_eof:
                    break
            completed = True
        finally:
            try:
                handle.close()
            except OSError as e:
                if completed:
                    raise DataFileError(unit.path, "close", str(e)) from e
                logger.warning("file_close_failed", file=unit.name, error=str(e))

        self.stats.files_processed += 1
        metrics.files_completed_total.labels(phase=self.phase).inc()
        logger.info(
            "file_load_completed",
            worker=self.worker_id,
            file=unit.name,
            lines=next_line_number - HEADER_LINE_NUMBER - 1,
        )
        return True

    def _read_line(self, handle: TextIO, unit: WorkUnit, operation: str) -> str:
        try:
            return handle.readline()
        except (OSError, UnicodeDecodeError) as e:
            raise DataFileError(unit.path, operation, str(e)) from e

    def read_batch(
        self, handle: TextIO, unit: WorkUnit, first_line_number: int
    ) -> LineBatch:
        """Buffer up to tx.size lines; bytes are counted as soon as they are read."""
        self.state = CommitState.BUFFERING
        lines = []
        byte_count = 0
        at_eof = False
        while len(lines) < self.tx.size:
            raw = self._read_line(handle, unit, "read")
            if not raw:
                at_eof = True
                break
            size = len(raw.encode("utf-8"))
            self.stats.bytes_read += size
            byte_count += size
            lines.append(raw.rstrip("\r\n"))

        if byte_count:
            metrics.bytes_read_total.labels(phase=self.phase).inc(byte_count)
        return LineBatch(first_line_number, tuple(lines), at_eof)

    # ------------------------------------------------------------------
    # Batch level
    # ------------------------------------------------------------------

    def commit_batch(self, transformer: LineTransformer, batch: LineBatch) -> bool:
        """
        Transform, submit and commit one batch, retrying transient failures.

        Returns:
            True once committed, False if cancelled while backing off
        """
        streak = self.backoff.streak()
        failures = 0
        while True:
            started = time.monotonic()
            try:
                self.state = CommitState.TRANSFORMING
                self.session.begin_transaction()
                self._submit(transformer, batch)
                self.state = CommitState.COMMITTING
                self.session.commit()
            except TransientStoreError as e:
                self.session.rollback()
                failures += 1
                self.stats.tx_failures += 1
                metrics.tx_failures_total.labels(phase=self.phase).inc()
                metrics.commit_duration_seconds.labels(
                    phase=self.phase, status="failed"
                ).observe(time.monotonic() - started)
                logger.debug(
                    "tx_commit_failed",
                    worker=self.worker_id,
                    file=transformer.path.name,
                    lines=[batch.first_line_number, batch.last_line_number],
                    failures=failures,
                    error=str(e),
                )

                if failures > self.tx.retries:
                    self.state = CommitState.BACKOFF
                    bound, delay = streak.next_delay_ms()
                    metrics.backoff_sleeps_total.labels(phase=self.phase).inc()
                    logger.debug(
                        "tx_backoff",
                        worker=self.worker_id,
                        file=transformer.path.name,
                        failures=failures,
                        bound_ms=bound,
                        sleep_ms=delay,
                    )
                    if self.cancel_event.wait(delay / 1000.0):
                        self.state = CommitState.ABORTED
                        return False

                self.state = CommitState.RETRYING
                continue
            except StoreError as e:
                self.session.rollback()
                raise BatchCommitError(
                    transformer.path,
                    batch.first_line_number,
                    batch.last_line_number,
                    str(e),
                ) from e
            except Exception:
                self.session.rollback()
                raise

            self.stats.lines_processed += len(batch)
            self.state = CommitState.COMMITTED
            metrics.lines_committed_total.labels(phase=self.phase).inc(len(batch))
            metrics.commit_duration_seconds.labels(
                phase=self.phase, status="committed"
            ).observe(time.monotonic() - started)
            return True

    def _submit(self, transformer: LineTransformer, batch: LineBatch) -> None:
        for offset, line in enumerate(batch.lines):
            line_number = batch.first_line_number + offset
            handles: Dict[NodeRef, NodeHandle] = {}
            for mutation in transformer.transform(line, line_number):
                self._apply(mutation, transformer, line, line_number, handles)

    def _apply(
        self,
        mutation: Mutation,
        transformer: LineTransformer,
        line: str,
        line_number: int,
        handles: Dict[NodeRef, NodeHandle],
    ) -> None:
        if isinstance(mutation, CreateNode):
            self.session.create_node(mutation.uid, mutation.label, mutation.properties)
        elif isinstance(mutation, AppendProperties):
            node = self._resolve(mutation.node, transformer, line, line_number, handles)
            self.session.append_properties(node, mutation.properties)
        elif isinstance(mutation, CreateEdge):
            tail = self._resolve(mutation.tail, transformer, line, line_number, handles)
            head = self._resolve(mutation.head, transformer, line, line_number, handles)
            self.session.create_edge(tail, head, mutation.label, mutation.properties)
        else:
            raise TypeError(f"Unsupported mutation {mutation!r}")

    def _resolve(
        self,
        ref: NodeRef,
        transformer: LineTransformer,
        line: str,
        line_number: int,
        handles: Dict[NodeRef, NodeHandle],
    ) -> NodeHandle:
        if ref in handles:
            return handles[ref]
        handle = self.session.lookup_node(ref.uid)
        if handle is None:
            raise MalformedLineError(
                transformer.path,
                line_number,
                ref.column,
                ref.raw,
                line,
                f"node {ref.uid} not found",
            )
        handles[ref] = handle
        return handle
