"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes live in gantry.core.config.
"""

from gantry.contracts.enums import JobStatus, LogLevel, PackageManager, SourceKind, UrlStyle
from gantry.contracts.errors import (
    AnalysisSessionNotFoundError,
    BuildError,
    BuildOutputNotFoundError,
    DeploymentError,
    InvalidTransitionError,
    JobNotFoundError,
    MaterializationError,
    PublishError,
    SourcePolicyError,
    UnsupportedSourceError,
)
from gantry.contracts.events import DeploymentEvent, LogEvent, StatusEvent, event_from_payload
from gantry.contracts.records import Job, LogEntry, Project

__all__ = [
    "AnalysisSessionNotFoundError",
    "BuildError",
    "BuildOutputNotFoundError",
    "DeploymentError",
    "DeploymentEvent",
    "InvalidTransitionError",
    "Job",
    "JobNotFoundError",
    "JobStatus",
    "LogEntry",
    "LogEvent",
    "LogLevel",
    "MaterializationError",
    "PackageManager",
    "Project",
    "PublishError",
    "SourceKind",
    "SourcePolicyError",
    "StatusEvent",
    "UnsupportedSourceError",
    "UrlStyle",
    "event_from_payload",
]
