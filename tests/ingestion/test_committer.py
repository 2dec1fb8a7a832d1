"""
Batch committer tests.

The store is an in-memory fake that can be scripted to fail N commits; the
cancellation event records backoff waits instead of sleeping.
"""

import random
import threading

import pytest

from snbloader.ingestion.committer import (
    BackoffPolicy,
    BatchCommitter,
    CommitState,
)
from snbloader.ingestion.errors import (
    BatchCommitError,
    DataFileError,
    MalformedLineError,
)
from snbloader.ingestion.run_stats import ThreadStats
from snbloader.ingestion.work import WorkUnit
from snbloader.neo.schema import PERSON, TAG, relation_by_key
from snbloader.neo.session import StoreError
from snbloader.shared.config import TransactionConfig

TAG_ROWS = [
    "1|Hamid_Karzai",
    "2|Charles_Darwin",
    "3|Che_Guevara",
    "4|Napoleon",
    "5|Sun",
]


def _committer(session, event=None, rng=None, **tx):
    settings = {"size": 2, "retries": 2, "backoff_ms": 1000, "backoff_ceiling_ms": 4000}
    settings.update(tx)
    stats = ThreadStats()
    committer = BatchCommitter(
        session,
        TransactionConfig(**settings),
        stats,
        event if event is not None else threading.Event(),
        rng=rng,
        phase="test",
    )
    return committer, stats


def test_backoff_bound_doubles_then_caps(max_rng):
    streak = BackoffPolicy(1000, 4000, max_rng).streak()
    assert [streak.next_bound_ms() for _ in range(5)] == [1000, 2000, 4000, 4000, 4000]


def test_backoff_streaks_start_fresh():
    policy = BackoffPolicy(500, 10000, random.Random(1))
    first = policy.streak()
    first.next_bound_ms()
    first.next_bound_ms()
    assert policy.streak().next_bound_ms() == 500


def test_backoff_delay_within_bound():
    streak = BackoffPolicy(1000, 10000, random.Random(42)).streak()
    for _ in range(6):
        bound, delay = streak.next_delay_ms()
        assert 0 <= delay <= bound


def test_load_file_commits_in_batches(write_dataset, make_session):
    path = write_dataset("tag_0_0.csv", "id|name", TAG_ROWS)
    session = make_session()
    committer, stats = _committer(session)

    assert committer.load_file(WorkUnit.for_nodes(TAG, path)) is True

    assert session.commit_attempts == 3
    assert [len(a) for a in session.attempts] == [2, 2, 1]
    assert session.nodes["7:3"] == {
        "label": "Tag",
        "properties": {"name": "Che_Guevara"},
    }
    assert stats.lines_processed == 5
    assert stats.files_processed == 1
    assert stats.bytes_read == sum(len(row) + 1 for row in TAG_ROWS)
    assert committer.state is CommitState.COMMITTED


def test_transient_failures_retry_same_batch_then_back_off(
    write_dataset, make_session, make_event, max_rng
):
    path = write_dataset("tag_0_0.csv", "id|name", TAG_ROWS[:2])
    session = make_session(fail_commits=4)
    event = make_event()
    committer, stats = _committer(session, event, max_rng)

    assert committer.load_file(WorkUnit.for_nodes(TAG, path)) is True

    # failures 1-2 retry immediately, failures 3 and 4 sleep with growing bounds
    assert event.waits == [1.0, 2.0]
    assert session.commit_attempts == 5
    assert stats.tx_failures == 4
    assert session.rollbacks == 4
    assert all(attempt == session.attempts[0] for attempt in session.attempts)
    assert stats.lines_processed == 2


def test_backoff_bound_capped_at_ceiling(
    write_dataset, make_session, make_event, max_rng
):
    path = write_dataset("tag_0_0.csv", "id|name", TAG_ROWS[:1])
    session = make_session(fail_commits=6)
    event = make_event()
    committer, _ = _committer(session, event, max_rng)

    committer.load_file(WorkUnit.for_nodes(TAG, path))

    assert event.waits == [1.0, 2.0, 4.0, 4.0]


def test_each_batch_starts_a_fresh_backoff_streak(
    write_dataset, make_session, make_event, max_rng
):
    path = write_dataset("tag_0_0.csv", "id|name", TAG_ROWS[:2])
    # batch one fails attempts 1-3, batch two fails attempts 5-7
    session = make_session(fail_attempts=(1, 2, 3, 5, 6, 7))
    event = make_event()
    committer, stats = _committer(session, event, max_rng, size=1)

    assert committer.load_file(WorkUnit.for_nodes(TAG, path)) is True

    assert event.waits == [1.0, 1.0]
    assert session.commit_attempts == 8
    assert stats.tx_failures == 6
    assert sorted(session.nodes) == ["7:1", "7:2"]


def test_zero_retries_backs_off_on_first_failure(
    write_dataset, make_session, make_event, max_rng
):
    path = write_dataset("tag_0_0.csv", "id|name", TAG_ROWS[:1])
    event = make_event()
    committer, _ = _committer(make_session(fail_commits=1), event, max_rng, retries=0)

    committer.load_file(WorkUnit.for_nodes(TAG, path))

    assert event.waits == [1.0]


def test_cancel_during_backoff_aborts(write_dataset, make_session, make_event):
    path = write_dataset("tag_0_0.csv", "id|name", TAG_ROWS)
    session = make_session(fail_commits=100)
    event = make_event(cancel_after=1)
    committer, stats = _committer(session, event)

    assert committer.load_file(WorkUnit.for_nodes(TAG, path)) is False

    assert committer.state is CommitState.ABORTED
    assert session.commit_attempts == 3
    assert stats.files_processed == 0
    assert stats.lines_processed == 0
    assert session.nodes == {}


def test_cancelled_before_first_batch(write_dataset, make_session):
    path = write_dataset("tag_0_0.csv", "id|name", TAG_ROWS)
    session = make_session()
    event = threading.Event()
    event.set()
    committer, stats = _committer(session, event)

    assert committer.load_file(WorkUnit.for_nodes(TAG, path)) is False
    assert session.commit_attempts == 0
    assert stats.files_processed == 0


def test_malformed_line_is_fatal_and_reports_line_number(write_dataset, make_session):
    rows = ["1|a", "2|b", "3|c", "x|d", "5|e"]
    path = write_dataset("tag_0_0.csv", "id|name", rows)
    session = make_session()
    committer, stats = _committer(session)

    with pytest.raises(MalformedLineError) as exc_info:
        committer.load_file(WorkUnit.for_nodes(TAG, path))

    assert exc_info.value.line_number == 5
    assert exc_info.value.line == "x|d"
    assert stats.lines_processed == 2
    assert session.rollbacks == 1
    assert set(session.nodes) == {"7:1", "7:2"}


def test_property_for_missing_node_is_fatal(write_dataset, make_session):
    path = write_dataset(
        "person_speaks_language_0_0.csv", "Person.id|language", ["933|en"]
    )
    committer, _ = _committer(make_session())

    with pytest.raises(MalformedLineError, match="not found"):
        committer.load_file(WorkUnit.for_properties(PERSON, path))


def test_properties_append_to_existing_node(write_dataset, make_session):
    path = write_dataset(
        "person_speaks_language_0_0.csv",
        "Person.id|language",
        ["933|en", "933|si"],
    )
    session = make_session(
        nodes={"4:933": {"label": "Person", "properties": {"speaks": ["ta"]}}}
    )
    committer, _ = _committer(session)

    committer.load_file(WorkUnit.for_properties(PERSON, path))

    assert session.nodes["4:933"]["properties"]["language"] == ["en", "si"]
    assert session.nodes["4:933"]["properties"]["speaks"] == ["ta"]


def test_relation_edges_resolve_both_endpoints(write_dataset, make_session):
    path = write_dataset(
        "person_knows_person_0_0.csv",
        "Person.id|Person.id|creationDate",
        ["933|1129|2010-03-17T23:32:10.447+0000"],
    )
    session = make_session(
        nodes={
            "4:933": {"label": "Person", "properties": {}},
            "4:1129": {"label": "Person", "properties": {}},
        }
    )
    committer, _ = _committer(session)
    unit = WorkUnit.for_relation(relation_by_key("person", "knows", "person"), path)

    committer.load_file(unit)

    assert session.edges == [
        ("4:933", "4:1129", "knows", {"creationDate": "1268868730447"}),
        ("4:1129", "4:933", "knows", {"creationDate": "1268868730447"}),
    ]


def test_fatal_store_error_is_not_retried(write_dataset, make_session):
    path = write_dataset("tag_0_0.csv", "id|name", TAG_ROWS)
    session = make_session(fail_with=StoreError("constraint violated"))
    committer, stats = _committer(session)

    with pytest.raises(BatchCommitError) as exc_info:
        committer.load_file(WorkUnit.for_nodes(TAG, path))

    message = str(exc_info.value)
    assert "lines in range [2, 3] of file tag_0_0.csv" in message
    assert "constraint violated" in message
    assert isinstance(exc_info.value.__cause__, StoreError)
    assert session.commit_attempts == 1
    assert session.rollbacks == 1
    assert stats.tx_failures == 0


def test_empty_file_has_no_header(tmp_path, make_session):
    path = tmp_path / "tag_0_0.csv"
    path.write_text("")
    committer, _ = _committer(make_session())

    with pytest.raises(DataFileError, match="read header"):
        committer.load_file(WorkUnit.for_nodes(TAG, path))


def test_missing_file_fails_on_open(tmp_path, make_session):
    committer, _ = _committer(make_session())

    with pytest.raises(DataFileError, match="open"):
        committer.load_file(WorkUnit.for_nodes(TAG, tmp_path / "tag_0_0.csv"))


def test_header_only_file_completes(write_dataset, make_session):
    path = write_dataset("tag_0_0.csv", "id|name", [])
    session = make_session()
    committer, stats = _committer(session)

    assert committer.load_file(WorkUnit.for_nodes(TAG, path)) is True
    assert session.commit_attempts == 0
    assert stats.files_processed == 1
