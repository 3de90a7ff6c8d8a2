import logging
import threading
import time

import pytest

from fakes import FakeFeed, FakeSource, MemoryStore, data_line, disconnect, event_obj
from nls.http_utils import TransportError
from nls.ingest import ingest
from nls.lifecycle import Cancellation
from nls.session import SyncSession
from nls.state import SqliteStore
from nls.stream import Heartbeat, StreamConsumer, StreamError


def _consumer(source: FakeSource, store: MemoryStore) -> StreamConsumer:
    return StreamConsumer(source=source, store=store, checkpoint_every=100, heartbeat_seconds=0)


def _framed(indexes) -> list[str]:  # noqa: ANN001
    lines: list[str] = []
    for i in indexes:
        lines += [f"id: pos-{i}", data_line(i), ""]
    return lines


def test_checkpoint_every_100_inserts_plus_final() -> None:
    store = MemoryStore()
    source = FakeSource(feeds=[FakeFeed(lines=_framed(range(1, 251)))])

    report = _consumer(source, store).consume("start", SyncSession())

    assert store.count() == 250
    assert store.position_writes == ["pos-100", "pos-200", "pos-250"]
    assert report.checkpoints_written == 3
    assert report.last_position == "pos-250"
    assert report.cancelled is False


def test_no_extra_checkpoint_when_nothing_new_since_last() -> None:
    store = MemoryStore()
    source = FakeSource(feeds=[FakeFeed(lines=_framed(range(1, 101)))])

    _consumer(source, store).consume("start", SyncSession())

    assert store.position_writes == ["pos-100"]


def test_duplicates_do_not_count_towards_checkpoint() -> None:
    store = MemoryStore()
    for i in range(1, 51):
        ingest(store, event_obj(i))
    source = FakeSource(feeds=[FakeFeed(lines=_framed(range(1, 150)))])

    report = _consumer(source, store).consume("start", SyncSession())

    assert report.inserted == 99
    assert report.duplicates == 50
    assert store.position_writes == ["pos-149"]


def test_id_line_alone_does_not_insert() -> None:
    store = MemoryStore()
    source = FakeSource(feeds=[FakeFeed(lines=["id: only-an-id", "", ": keep-alive", "event: message"])])

    report = _consumer(source, store).consume("start", SyncSession())

    assert store.count() == 0
    assert report.events_seen == 0
    assert store.position_writes == ["only-an-id"]


def test_id_without_space_is_accepted() -> None:
    store = MemoryStore()
    source = FakeSource(feeds=[FakeFeed(lines=["id:tight", data_line(1)])])
    _consumer(source, store).consume("start", SyncSession())
    assert store.position == "tight"


def test_malformed_data_is_skipped(caplog) -> None:  # noqa: ANN001
    store = MemoryStore()
    session = SyncSession()
    source = FakeSource(feeds=[FakeFeed(lines=["id: a", "data: {broken", "id: b", data_line(2)])])

    report = _consumer(source, store).consume("start", session)

    assert store.count() == 1
    assert report.malformed == 1
    assert session.malformed == 1
    assert "skip malformed event" in caplog.text


def test_error_saves_latest_position_and_raises() -> None:
    store = MemoryStore()
    feed = FakeFeed(lines=["id: xyz", data_line(1)], error=TransportError("connection reset"))
    source = FakeSource(feeds=[feed])

    with pytest.raises(StreamError):
        _consumer(source, store).consume("abc", SyncSession())

    assert store.count() == 1
    assert store.position == "xyz"
    assert feed.closed is True


def test_open_failure_raises_stream_error() -> None:
    store = MemoryStore()
    source = FakeSource(feeds=[TransportError("stream returned status 401", status=401)])
    with pytest.raises(StreamError):
        _consumer(source, store).consume("abc", SyncSession())
    assert store.position_writes == []


def test_checkpoint_failure_is_a_warning(caplog) -> None:  # noqa: ANN001
    store = MemoryStore(fail_position_writes=True)
    source = FakeSource(feeds=[FakeFeed(lines=_framed(range(1, 101)))])

    report = _consumer(source, store).consume("start", SyncSession())

    assert report.inserted == 100
    assert report.checkpoints_written == 0
    assert "failed to update stream cursor" in caplog.text


def test_session_counters_accumulate_across_attempts() -> None:
    store = MemoryStore()
    session = SyncSession()
    source = FakeSource(feeds=[disconnect(), FakeFeed(lines=_framed([1, 2]))])
    consumer = _consumer(source, store)

    with pytest.raises(StreamError):
        consumer.consume("a", session)
    consumer.consume("a", session)

    assert session.inserted == 2
    assert session.lines_read == 6


def test_cancelled_before_read_returns_cancelled_report() -> None:
    store = MemoryStore()
    feed = FakeFeed(lines=_framed([1]))
    source = FakeSource(feeds=[feed])
    cancel = Cancellation()
    cancel.cancel()

    report = _consumer(source, store).consume("abc", SyncSession(), cancel)

    assert report.cancelled is True
    assert feed.closed is True
    assert store.count() == 0


def test_heartbeat_reports_and_stops(caplog) -> None:  # noqa: ANN001
    session = SyncSession()
    session.lines_read = 7
    caplog.set_level(logging.INFO, logger="nls.stream")

    hb = Heartbeat(session, 0.01)
    hb.start()
    deadline = time.monotonic() + 2.0
    while "stream alive" not in caplog.text and time.monotonic() < deadline:
        time.sleep(0.01)
    hb.stop()

    assert hb.running is False
    assert "stream alive: lines=7" in caplog.text


def test_heartbeat_thread_is_joined_after_consume() -> None:
    store = MemoryStore()
    source = FakeSource(feeds=[FakeFeed(lines=_framed([1]))])
    consumer = StreamConsumer(source=source, store=store, heartbeat_seconds=0.01)

    consumer.consume("start", SyncSession())

    assert not [t for t in threading.enumerate() if t.name == "nls-heartbeat"]


def test_surrogate_escape_in_data_is_stored_not_fatal(tmp_path) -> None:  # noqa: ANN001
    store = SqliteStore(str(tmp_path / "logs.sqlite3"))
    store.ensure_schema()
    lines = ["id: p1", data_line(1, domain="x\ud800.com"), "", "id: p2", data_line(2), ""]
    source = FakeSource(feeds=[FakeFeed(lines=lines)])

    report = _consumer(source, store).consume("start", SyncSession())

    assert report.inserted == 2
    assert report.malformed == 0
    assert store.count() == 2
    assert store.get_position() == "p2"
