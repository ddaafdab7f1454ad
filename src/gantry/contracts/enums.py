# src/gantry/contracts/enums.py
"""Status codes, levels, and kinds used across subsystem boundaries."""

from enum import StrEnum


class JobStatus(StrEnum):
    """Lifecycle status of a deployment job.

    Transitions only move forward through the declaration order below.
    SUCCESS and FAILED are terminal; a job reaches exactly one of them.
    """

    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    BUILDING = "BUILDING"
    DEPLOYING = "DEPLOYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position in the forward walk. Both terminal states share the last rank."""
        if self.is_terminal:
            return _STATUS_RANK[JobStatus.SUCCESS]
        return _STATUS_RANK[self]

    def can_advance_to(self, target: "JobStatus") -> bool:
        """Whether a job in this status may move to ``target``.

        FAILED is reachable from every non-terminal status; other moves
        must strictly increase the rank.
        """
        if self.is_terminal:
            return False
        if target is JobStatus.FAILED:
            return True
        return target.rank > self.rank


_STATUS_RANK: dict[JobStatus, int] = {
    JobStatus.IDLE: 0,
    JobStatus.ANALYZING: 1,
    JobStatus.BUILDING: 2,
    JobStatus.DEPLOYING: 3,
    JobStatus.SUCCESS: 4,
}


class LogLevel(StrEnum):
    """Severity of a per-job log entry as shown to viewers."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class SourceKind(StrEnum):
    """How a project's source is referenced.

    Values:
        GIT_REFERENCE: URL of a repository on an allowed code host
        ARCHIVE: uploaded zip payload, or an HTTP(S) URL to a zip file
        INLINE_MARKUP: a single HTML document supplied inline
    """

    GIT_REFERENCE = "git-reference"
    ARCHIVE = "archive"
    INLINE_MARKUP = "inline-markup"


class PackageManager(StrEnum):
    """JavaScript package managers the build executor knows how to drive."""

    NPM = "npm"
    PNPM = "pnpm"
    YARN = "yarn"
    BUN = "bun"


class UrlStyle(StrEnum):
    """Shape of the public URL produced by the publish step."""

    PATH = "path"
    SUBDOMAIN = "subdomain"
