# src/gantry/contracts/records.py
"""Records describing what is being deployed and how far it got.

Project is the immutable input handed over by the collaborator layer.
Job is the in-memory deployment record the coordinator owns; it is not
durable and is evicted after the retention window.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from gantry.contracts.enums import JobStatus, LogLevel, SourceKind
from gantry.contracts.errors import InvalidTransitionError


@dataclass(frozen=True, slots=True)
class Project:
    """Descriptor of the project to build.

    Attributes:
        name: Human-readable project name
        source_kind: How ``source`` should be interpreted
        source: Repository URL, archive URL, or a label for inline/uploaded content
        slug: URL-safe name used for the published location (derived from name if None)
        inline_content: HTML document for INLINE_MARKUP sources
        working_dir: Directory already holding the source (e.g. from a prior
            analysis step); when it exists, materialization is skipped
    """

    name: str
    source_kind: SourceKind
    source: str = ""
    slug: str | None = None
    inline_content: str | None = None
    working_dir: Path | None = None


@dataclass(frozen=True, slots=True)
class LogEntry:
    """Append-only log line recorded against a job."""

    timestamp: datetime
    message: str
    level: LogLevel

    @classmethod
    def now(cls, message: str, level: LogLevel) -> "LogEntry":
        return cls(timestamp=datetime.now(UTC), message=message, level=level)


@dataclass(slots=True)
class Job:
    """Deployment record for one build-and-publish attempt.

    Mutated only by the coordinator and the event bus. ``logs`` is append-only
    and ``applied_fixes`` is the set of fix ids that already ran for this job.
    """

    id: str
    project: Project
    status: JobStatus = JobStatus.IDLE
    logs: list[LogEntry] = field(default_factory=list)
    working_dir: Path | None = None
    archive: bytes | str | None = None
    applied_fixes: set[str] = field(default_factory=set)
    url: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, target: JobStatus) -> None:
        """Move to ``target``, refusing backwards moves and exits from terminal states.

        Raises:
            InvalidTransitionError: If the move is not forward
        """
        if not self.status.can_advance_to(target):
            raise InvalidTransitionError(self.id, self.status.value, target.value)
        self.status = target
        if target.is_terminal:
            self.finished_at = datetime.now(UTC)

    def snapshot(self) -> dict[str, object]:
        """JSON-ready view for the job query endpoint."""
        return {
            "id": self.id,
            "name": self.project.name,
            "status": self.status.value,
            "url": self.url,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "logs": [
                {"timestamp": entry.timestamp.isoformat(), "message": entry.message, "level": entry.level.value}
                for entry in self.logs
            ],
        }
