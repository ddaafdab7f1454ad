# src/gantry/contracts/errors.py
"""Exception taxonomy for deployment jobs.

Fatal errors (materialization, build, publish) short-circuit the remaining
phases of one job and surface to viewers as an error log entry followed by
a FAILED status event. Fix errors are never fatal and are absorbed by the
fix pipeline, so they have no class here.
"""


class DeploymentError(Exception):
    """Base class for errors that fail a deployment job."""


class MaterializationError(DeploymentError):
    """Source could not be turned into a working directory.

    Covers unreachable sources, corrupt or oversized archives, and
    references the materializer does not understand.
    """


class UnsupportedSourceError(MaterializationError):
    """Source reference is well-formed but not something we can fetch."""


class SourcePolicyError(UnsupportedSourceError):
    """Source URL rejected by the configured host/scheme policy."""


class BuildError(DeploymentError):
    """External build command failed to start or exited non-zero.

    Attributes:
        command: Rendered command line (for display only; never shell-executed)
        exit_code: Process exit code, or None if the process never started
    """

    def __init__(self, message: str, *, command: str, exit_code: int | None = None) -> None:
        self.command = command
        self.exit_code = exit_code
        super().__init__(message)


class BuildOutputNotFoundError(DeploymentError):
    """Build finished but produced none of the expected output directories."""


class PublishError(DeploymentError):
    """Build output could not be copied or uploaded to its serving location."""


class InvalidTransitionError(Exception):
    """A job status change would move backwards or leave a terminal state.

    This is a programming error in the coordinator, not a job failure.
    """

    def __init__(self, job_id: str, current: str, target: str) -> None:
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: cannot move from {current} to {target}")


class JobNotFoundError(KeyError):
    """No job with the given id is known to the store."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(job_id)

    def __str__(self) -> str:
        return f"Unknown deployment job: {self.job_id}"


class AnalysisSessionNotFoundError(KeyError):
    """No claimable analysis session with the given id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(session_id)

    def __str__(self) -> str:
        return f"Unknown analysis session: {self.session_id}"
