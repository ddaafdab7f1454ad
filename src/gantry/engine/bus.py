# src/gantry/engine/bus.py
"""Per-job publish/subscribe channel for log and status events.

Producers (materializer, fix pipeline, executor, publisher, coordinator)
call append_log() and update_status(). Each call appends to the job record
first and then broadcasts the same event to every subscriber attached to
that job, so the job's log list is the single source of replay history.

Ordering: everything runs on one event loop and neither broadcast nor
subscribe awaits, so a subscriber attaching mid-job receives the full
history, the current status, and then every later event with no gap.
"""

from typing import Any, Protocol, runtime_checkable

from gantry.contracts import (
    DeploymentEvent,
    Job,
    JobStatus,
    LogEntry,
    LogEvent,
    LogLevel,
    StatusEvent,
)
from gantry.core.logging import get_logger
from gantry.engine.store import JobStore, require_job

logger = get_logger(__name__)


@runtime_checkable
class Subscriber(Protocol):
    """A live sink attached to one job's events.

    ``deliver`` must not block; a sink that cannot keep up should buffer
    internally. Raising from ``deliver`` detaches the subscriber.
    """

    def deliver(self, event: DeploymentEvent) -> None: ...

    def close(self) -> None: ...


def _status_extra(job: Job) -> dict[str, Any]:
    if job.status is JobStatus.SUCCESS and job.url is not None:
        return {"url": job.url}
    if job.status is JobStatus.FAILED and job.error is not None:
        return {"error": job.error}
    return {}


class EventBus:
    """Routes job events to attached subscribers and records them on the job."""

    def __init__(self, store: JobStore) -> None:
        self._store = store
        self._subscribers: dict[str, set[Subscriber]] = {}

    def append_log(self, job_id: str, message: str, level: LogLevel = LogLevel.INFO) -> LogEntry | None:
        """Record a log entry on the job and broadcast it.

        Returns None (and records nothing) when the job is unknown, e.g.
        already evicted.
        """
        job = self._store.get(job_id)
        if job is None:
            logger.debug("log_for_unknown_job", job_id=job_id, message=message)
            return None
        entry = LogEntry.now(message, level)
        job.logs.append(entry)
        self._broadcast(job_id, LogEvent(message=message, level=level))
        return entry

    def update_status(self, job_id: str, status: JobStatus) -> None:
        """Advance the job's status and broadcast it.

        Terminal events also carry the job's url or error, and detach
        every subscriber once delivered.

        Raises:
            JobNotFoundError: If the job is unknown
            InvalidTransitionError: If the move is not forward
        """
        job = require_job(self._store, job_id)
        job.advance(status)
        logger.info("job_status_changed", job_id=job_id, status=status.value)
        self._broadcast(job_id, StatusEvent(status=status, extra=_status_extra(job)))
        if status.is_terminal:
            self.close_subscribers(job_id)

    def subscribe(self, job_id: str, subscriber: Subscriber) -> None:
        """Attach a subscriber, replaying history and current status first.

        A subscriber attaching to a finished job gets the replay and is
        closed straight away.

        Raises:
            JobNotFoundError: If the job is unknown
        """
        job = require_job(self._store, job_id)
        for entry in job.logs:
            subscriber.deliver(LogEvent(message=entry.message, level=entry.level))
        subscriber.deliver(StatusEvent(status=job.status, extra=_status_extra(job)))
        if job.is_terminal:
            subscriber.close()
            return
        self._subscribers.setdefault(job_id, set()).add(subscriber)
        logger.debug("subscriber_attached", job_id=job_id, subscribers=len(self._subscribers[job_id]))

    def unsubscribe(self, job_id: str, subscriber: Subscriber) -> None:
        """Detach a subscriber. Job history is kept for late joiners."""
        listeners = self._subscribers.get(job_id)
        if listeners is None:
            return
        listeners.discard(subscriber)
        if not listeners:
            del self._subscribers[job_id]
        logger.debug("subscriber_detached", job_id=job_id)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    def close_subscribers(self, job_id: str) -> None:
        """Close and detach every subscriber of a job."""
        for subscriber in self._subscribers.pop(job_id, set()):
            subscriber.close()

    def _broadcast(self, job_id: str, event: DeploymentEvent) -> None:
        listeners = self._subscribers.get(job_id)
        if not listeners:
            return
        # Iterate a snapshot: a failing subscriber is removed mid-loop
        for subscriber in tuple(listeners):
            try:
                subscriber.deliver(event)
            except Exception as e:
                # A broken transport is local to that subscriber
                logger.warning("subscriber_delivery_failed", job_id=job_id, error=str(e))
                self.unsubscribe(job_id, subscriber)
