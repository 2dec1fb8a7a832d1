# Shared fixtures: in-memory store session, dataset writer, environment defaults

import os
import random
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from snbloader.neo.session import (
    StoreSession,
    TransientStoreError,
    fold_properties,
    group_values,
)
from snbloader.shared.config import LoaderConfig

os.environ.setdefault("NEO4J_PASSWORD", "testpassword123")


class FakeSession(StoreSession):
    """
    In-memory StoreSession.

    Mutations are staged per transaction and applied on commit. The first
    ``fail_commits`` commits raise TransientStoreError, as does every commit
    whose 1-based attempt number is in ``fail_attempts``. ``fail_with`` (if
    set) is raised by every commit instead.
    """

    def __init__(
        self,
        fail_commits: int = 0,
        fail_with: Optional[Exception] = None,
        nodes: Optional[Dict[str, dict]] = None,
        fail_attempts: Sequence[int] = (),
    ):
        self.fail_commits = fail_commits
        self.fail_attempts = set(fail_attempts)
        self.fail_with = fail_with
        self.nodes: Dict[str, dict] = dict(nodes or {})
        self.edges: List[tuple] = []
        self.attempts: List[List[tuple]] = []
        self.commit_attempts = 0
        self.rollbacks = 0
        self.closed = False
        self.in_tx = False
        self._pending: List[tuple] = []

    def begin_transaction(self) -> None:
        self.in_tx = True
        self._pending = []

    def lookup_node(self, uid):
        key = str(uid)
        if key in self.nodes:
            return key
        for op in self._pending:
            if op[0] == "create_node" and op[1] == key:
                return key
        return None

    def create_node(self, uid, label, properties) -> None:
        self._pending.append(("create_node", str(uid), label, tuple(properties)))

    def append_properties(self, node, properties) -> None:
        self._pending.append(("append", node, tuple(properties)))

    def create_edge(self, tail, head, label, properties) -> None:
        self._pending.append(("edge", tail, head, label, tuple(properties)))

    def commit(self) -> None:
        self.commit_attempts += 1
        self.attempts.append(list(self._pending))
        if self.fail_with is not None:
            raise self.fail_with
        if self.fail_commits > 0:
            self.fail_commits -= 1
            raise TransientStoreError("deadlock detected")
        if self.commit_attempts in self.fail_attempts:
            raise TransientStoreError("lock timeout")
        for op in self._pending:
            if op[0] == "create_node":
                self.nodes[op[1]] = {
                    "label": op[2],
                    "properties": fold_properties(op[3]),
                }
            elif op[0] == "append":
                props = self.nodes[op[1]]["properties"]
                for key, values in group_values(op[2]).items():
                    props[key] = list(props.get(key, [])) + values
            else:
                self.edges.append((op[1], op[2], op[3], fold_properties(op[4])))
        self._pending = []
        self.in_tx = False

    def rollback(self) -> None:
        if self.in_tx:
            self.rollbacks += 1
        self._pending = []
        self.in_tx = False

    def close(self) -> None:
        self.closed = True


class RecordingEvent(threading.Event):
    """Cancellation event whose timed waits return immediately and are recorded."""

    def __init__(self, cancel_after: Optional[int] = None):
        super().__init__()
        self.waits: List[float] = []
        self.cancel_after = cancel_after

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self.cancel_after is not None and len(self.waits) >= self.cancel_after:
            self.set()
        return self.is_set()


class MaxRandom(random.Random):
    """Always draws the top of the range."""

    def randint(self, a, b):
        return b


@pytest.fixture
def loader_config() -> LoaderConfig:
    return LoaderConfig(
        tx={"size": 2, "retries": 2, "backoff_ms": 1000, "backoff_ceiling_ms": 4000},
        report={"interval_seconds": 1, "format": "LlFfXxDdT"},
        seed=7,
    )


@pytest.fixture
def write_dataset(tmp_path: Path) -> Callable[[str, str, Sequence[str]], Path]:
    """Write ``name`` under tmp_path with a header line and data rows."""

    def _write(name: str, header: str, rows: Sequence[str]) -> Path:
        path = tmp_path / name
        path.write_text(
            "".join(line + "\n" for line in [header, *rows]), encoding="utf-8"
        )
        return path

    return _write


@pytest.fixture
def make_session() -> Callable[..., FakeSession]:
    return FakeSession


@pytest.fixture
def make_event() -> Callable[..., RecordingEvent]:
    return RecordingEvent


@pytest.fixture
def max_rng() -> MaxRandom:
    return MaxRandom()
