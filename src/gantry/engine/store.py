# src/gantry/engine/store.py
"""Job record storage.

Jobs live in memory only; durability is the collaborator's job once a URL
is returned. The store is an injectable object rather than a module-level
map so several coordinators (e.g. in tests) can run side by side.
"""

from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from gantry.contracts import Job, JobNotFoundError


@runtime_checkable
class JobStore(Protocol):
    """Keyed storage for deployment records."""

    def get(self, job_id: str) -> Job | None: ...

    def set(self, job: Job) -> None: ...

    def delete(self, job_id: str) -> None: ...

    def __iter__(self) -> Iterator[Job]: ...


class InMemoryJobStore:
    """Dict-backed JobStore."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def set(self, job: Job) -> None:
        self._jobs[job.id] = job

    def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def __iter__(self) -> Iterator[Job]:
        # Snapshot so callers may delete while iterating
        return iter(list(self._jobs.values()))

    def __len__(self) -> int:
        return len(self._jobs)


def require_job(store: JobStore, job_id: str) -> Job:
    """Get a job or raise JobNotFoundError."""
    job = store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job
