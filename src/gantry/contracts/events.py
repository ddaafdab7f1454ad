# src/gantry/contracts/events.py
"""Events carried by the per-job event bus.

Two shapes cross the wire: log events and status events. Both render to a
JSON payload with a ``type`` discriminator; anything else a consumer sees
must be ignored so new event types can be added without breaking viewers.
"""

from dataclasses import dataclass, field
from typing import Any

from gantry.contracts.enums import JobStatus, LogLevel


@dataclass(frozen=True, slots=True)
class LogEvent:
    """One line of build output or orchestration commentary.

    Attributes:
        message: Text shown to the viewer (escape sequences already stripped)
        level: Display severity
        source: Who produced the event when it did not come from the
            orchestrator itself (e.g. "edge"); omitted from the payload when None
    """

    message: str
    level: LogLevel = LogLevel.INFO
    source: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": "log", "message": self.message, "level": self.level.value}
        if self.source is not None:
            payload["source"] = self.source
        return payload


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """A job status change, optionally with terminal details (url, error)."""

    status: JobStatus
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        # extra never overrides the discriminator or the status itself
        return {**self.extra, "type": "status", "status": self.status.value}


DeploymentEvent = LogEvent | StatusEvent


def event_from_payload(payload: dict[str, Any]) -> DeploymentEvent | None:
    """Rebuild an event from its wire payload.

    Returns None for unknown event types and for payloads missing required
    fields, so consumers can skip them.
    """
    event_type = payload.get("type")
    if event_type == "log":
        message = payload.get("message")
        if not isinstance(message, str):
            return None
        try:
            level = LogLevel(payload.get("level", LogLevel.INFO.value))
        except ValueError:
            level = LogLevel.INFO
        source = payload.get("source")
        return LogEvent(message=message, level=level, source=source if isinstance(source, str) else None)
    if event_type == "status":
        try:
            status = JobStatus(payload.get("status"))
        except ValueError:
            return None
        extra = {k: v for k, v in payload.items() if k not in ("type", "status")}
        return StatusEvent(status=status, extra=extra)
    return None
