"""Deployment engine: job store, event bus, materializer, fixes, build and publish."""

from gantry.engine.bus import EventBus, Subscriber
from gantry.engine.coordinator import DeploymentCoordinator, build_coordinator
from gantry.engine.sessions import AnalysisSessions
from gantry.engine.store import InMemoryJobStore, JobStore

__all__ = [
    "AnalysisSessions",
    "DeploymentCoordinator",
    "EventBus",
    "InMemoryJobStore",
    "JobStore",
    "Subscriber",
    "build_coordinator",
]
