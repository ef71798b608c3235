from __future__ import annotations

from datetime import UTC, datetime, timedelta

from bubblesync.domain.entities import EntityKind
from bubblesync.domain.progress import ProgressStore, SyncSession, SyncStatus
from bubblesync.domain.upsert import UpsertOutcome


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def test_session_counts_outcomes_and_emits_events() -> None:
    session = SyncSession("s1")
    session.add_total(3)

    session.record_outcome(EntityKind.INVOICE, "I1", UpsertOutcome.CREATED)
    session.record_outcome(EntityKind.INVOICE, "I2", UpsertOutcome.UNCHANGED)
    session.record_outcome(EntityKind.INVOICE, "I3", None)
    session.record_related()

    progress = session.snapshot()
    assert (progress.current, progress.total) == (3, 3)
    assert progress.created_count == 1
    assert progress.unchanged_count == 1
    assert progress.failed_count == 1
    assert progress.related_count == 1
    assert progress.status is SyncStatus.RUNNING

    events = session.events_since(0)
    assert [event.sequence for event in events] == [1, 2, 3]
    assert events[-1].external_id == "I3"
    assert events[-1].failed_count == 1
    assert session.events_since(2) == events[2:]


def test_error_details_are_capped_but_counted() -> None:
    session = SyncSession("s1", error_limit=2)

    for index in range(5):
        session.record_error(EntityKind.PAYMENT, f"P{index}", "boom")

    progress = session.snapshot()
    assert progress.error_count == 5
    assert [error.external_id for error in progress.errors] == ["P0", "P1"]


def test_event_buffer_drops_oldest() -> None:
    session = SyncSession("s1", event_capacity=3)

    for index in range(5):
        session.note(f"step {index}")

    assert [event.sequence for event in session.events_since(0)] == [3, 4, 5]


def test_finish_is_idempotent() -> None:
    session = SyncSession("s1")

    session.finish(SyncStatus.ERROR, error_message="remote down")
    session.finish(SyncStatus.COMPLETED)

    progress = session.snapshot()
    assert progress.status is SyncStatus.ERROR
    assert progress.error_message == "remote down"
    assert progress.finished_at is not None
    assert session.events_since(0)[-1].message == "sync error"


def test_store_cancel_only_running_sessions() -> None:
    store = ProgressStore()
    session = store.create()

    assert store.cancel(session.session_id)
    assert session.cancel_requested
    session.finish(SyncStatus.CANCELLED)
    assert not store.cancel(session.session_id)
    assert not store.cancel("unknown")
    assert store.get("unknown") is None
    assert store.events_since("unknown") == []


def test_store_evicts_expired_sessions() -> None:
    clock = FakeClock()
    store = ProgressStore(ttl=timedelta(hours=1), clock=clock)
    finished = store.create()
    finished.finish(SyncStatus.COMPLETED)
    running = store.create()

    clock.advance(timedelta(hours=2))

    assert store.get(finished.session_id) is None
    assert store.get(running.session_id) is not None


def test_store_evicts_oldest_finished_sessions_over_limit() -> None:
    clock = FakeClock()
    store = ProgressStore(max_sessions=2, clock=clock)
    oldest = store.create()
    oldest.finish(SyncStatus.COMPLETED)
    clock.advance(timedelta(minutes=1))
    running = store.create()
    clock.advance(timedelta(minutes=1))

    newest = store.create()

    assert len(store) == 2
    assert store.get(oldest.session_id) is None
    assert store.get(running.session_id) is not None
    assert store.get(newest.session_id) is not None


def test_store_never_evicts_running_sessions() -> None:
    store = ProgressStore(max_sessions=1)
    first = store.create()
    second = store.create()

    assert len(store) == 2
    assert store.get(first.session_id) is not None
    assert store.get(second.session_id) is not None
