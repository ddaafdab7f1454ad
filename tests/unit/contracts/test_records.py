# tests/unit/contracts/test_records.py
"""Tests for Job snapshots and error types."""

from gantry.contracts import (
    BuildError,
    DeploymentError,
    Job,
    JobNotFoundError,
    JobStatus,
    LogEntry,
    LogLevel,
    MaterializationError,
    SourcePolicyError,
    UnsupportedSourceError,
)
from tests.fixtures.jobs import make_project


class TestJobSnapshot:
    """Tests for Job.snapshot()."""

    def test_snapshot_contains_status_and_logs(self) -> None:
        job = Job(id="abc", project=make_project(name="Site"))
        job.logs.append(LogEntry.now("hello", LogLevel.INFO))
        job.advance(JobStatus.ANALYZING)

        snapshot = job.snapshot()

        assert snapshot["id"] == "abc"
        assert snapshot["name"] == "Site"
        assert snapshot["status"] == "ANALYZING"
        assert snapshot["url"] is None
        assert snapshot["finished_at"] is None
        assert snapshot["logs"] == [
            {"timestamp": job.logs[0].timestamp.isoformat(), "message": "hello", "level": "info"}
        ]


class TestErrorHierarchy:
    """Tests for the exception taxonomy."""

    def test_policy_errors_are_materialization_errors(self) -> None:
        assert issubclass(SourcePolicyError, UnsupportedSourceError)
        assert issubclass(UnsupportedSourceError, MaterializationError)
        assert issubclass(MaterializationError, DeploymentError)

    def test_build_error_carries_command_and_exit_code(self) -> None:
        error = BuildError("failed", command="npm run build", exit_code=2)
        assert error.command == "npm run build"
        assert error.exit_code == 2
        assert isinstance(error, DeploymentError)

    def test_job_not_found_is_key_error_with_readable_message(self) -> None:
        error = JobNotFoundError("missing")
        assert isinstance(error, KeyError)
        assert str(error) == "Unknown deployment job: missing"
