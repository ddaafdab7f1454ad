# tests/unit/engine/test_event_bus.py
"""Tests for EventBus recording, replay and broadcast."""

import pytest

from gantry.contracts import InvalidTransitionError, JobNotFoundError, JobStatus, LogEvent, LogLevel, StatusEvent
from gantry.engine.bus import EventBus, Subscriber
from gantry.engine.store import InMemoryJobStore
from tests.fixtures.jobs import make_job
from tests.fixtures.subscribers import BrokenSubscriber, RecordingSubscriber


class TestAppendLog:
    """Tests for append_log()."""

    def test_records_entry_on_job(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store)
        entry = bus.append_log(job.id, "Downloading", LogLevel.INFO)
        assert entry is not None
        assert [(e.message, e.level) for e in job.logs] == [("Downloading", LogLevel.INFO)]

    def test_broadcasts_to_subscribers(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store)
        first, second = RecordingSubscriber(), RecordingSubscriber()
        bus.subscribe(job.id, first)
        bus.subscribe(job.id, second)

        bus.append_log(job.id, "step", LogLevel.WARNING)

        assert first.events[-1] == LogEvent(message="step", level=LogLevel.WARNING)
        assert second.events[-1] == LogEvent(message="step", level=LogLevel.WARNING)

    def test_unknown_job_is_ignored(self, bus: EventBus) -> None:
        assert bus.append_log("missing", "lost") is None


class TestUpdateStatus:
    """Tests for update_status()."""

    def test_advances_and_broadcasts(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store)
        subscriber = RecordingSubscriber()
        bus.subscribe(job.id, subscriber)

        bus.update_status(job.id, JobStatus.ANALYZING)

        assert job.status is JobStatus.ANALYZING
        assert subscriber.statuses == [JobStatus.IDLE, JobStatus.ANALYZING]

    def test_backwards_move_rejected(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store, status=JobStatus.BUILDING)
        with pytest.raises(InvalidTransitionError):
            bus.update_status(job.id, JobStatus.ANALYZING)

    def test_unknown_job_raises(self, bus: EventBus) -> None:
        with pytest.raises(JobNotFoundError):
            bus.update_status("missing", JobStatus.ANALYZING)

    def test_success_event_carries_url_and_closes_subscribers(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store, status=JobStatus.DEPLOYING)
        subscriber = RecordingSubscriber()
        bus.subscribe(job.id, subscriber)

        job.url = "/apps/demo/"
        bus.update_status(job.id, JobStatus.SUCCESS)

        assert subscriber.events[-1] == StatusEvent(status=JobStatus.SUCCESS, extra={"url": "/apps/demo/"})
        assert subscriber.closed
        assert bus.subscriber_count(job.id) == 0

    def test_failed_event_carries_error(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store, status=JobStatus.BUILDING)
        subscriber = RecordingSubscriber()
        bus.subscribe(job.id, subscriber)

        job.error = "exit 1"
        bus.update_status(job.id, JobStatus.FAILED)

        assert subscriber.events[-1] == StatusEvent(status=JobStatus.FAILED, extra={"error": "exit 1"})


class TestSubscribe:
    """Tests for subscribe() replay semantics."""

    def test_recording_subscriber_satisfies_protocol(self) -> None:
        assert isinstance(RecordingSubscriber(), Subscriber)

    def test_late_subscriber_gets_history_then_status_then_live(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store)
        bus.update_status(job.id, JobStatus.ANALYZING)
        bus.append_log(job.id, "one")
        bus.append_log(job.id, "two")

        late = RecordingSubscriber()
        bus.subscribe(job.id, late)
        bus.append_log(job.id, "three")

        assert late.events == [
            LogEvent(message="one"),
            LogEvent(message="two"),
            StatusEvent(status=JobStatus.ANALYZING),
            LogEvent(message="three"),
        ]

    def test_subscribe_to_finished_job_replays_and_closes(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store)
        bus.append_log(job.id, "done soon")
        job.error = "boom"
        bus.update_status(job.id, JobStatus.FAILED)

        subscriber = RecordingSubscriber()
        bus.subscribe(job.id, subscriber)

        assert subscriber.messages == ["done soon"]
        assert subscriber.statuses == [JobStatus.FAILED]
        assert subscriber.closed
        assert bus.subscriber_count(job.id) == 0

    def test_unknown_job_raises(self, bus: EventBus) -> None:
        with pytest.raises(JobNotFoundError):
            bus.subscribe("missing", RecordingSubscriber())


class TestUnsubscribe:
    """Tests for detaching subscribers."""

    def test_detached_subscriber_stops_receiving(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store)
        subscriber = RecordingSubscriber()
        bus.subscribe(job.id, subscriber)
        bus.unsubscribe(job.id, subscriber)

        bus.append_log(job.id, "after")

        assert "after" not in subscriber.messages

    def test_history_kept_after_last_subscriber_leaves(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store)
        subscriber = RecordingSubscriber()
        bus.subscribe(job.id, subscriber)
        bus.append_log(job.id, "kept")
        bus.unsubscribe(job.id, subscriber)

        late = RecordingSubscriber()
        bus.subscribe(job.id, late)
        assert late.messages == ["kept"]

    def test_unsubscribe_unknown_is_noop(self, bus: EventBus) -> None:
        bus.unsubscribe("missing", RecordingSubscriber())


class TestBrokenSubscriber:
    """A failing transport is local to that subscriber."""

    def test_broken_subscriber_detached_others_unaffected(self, store: InMemoryJobStore, bus: EventBus) -> None:
        job = make_job(store)
        broken = BrokenSubscriber(fail_after=1)
        healthy = RecordingSubscriber()
        bus.subscribe(job.id, broken)
        bus.subscribe(job.id, healthy)

        bus.append_log(job.id, "first")
        bus.append_log(job.id, "second")

        assert healthy.messages == ["first", "second"]
        assert bus.subscriber_count(job.id) == 1
        assert [e.message for e in job.logs] == ["first", "second"]
