# src/gantry/engine/sessions.py
"""Analysis sessions: server-side handles to prepared working directories.

An analysis step that has already fetched a project registers the directory
here and hands the caller an opaque id. Deployments refer to that id, never
to a filesystem path, and every session directory lives under
``paths.builds_root``. A session is claimed by exactly one deployment.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from gantry.contracts import AnalysisSessionNotFoundError
from gantry.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AnalysisSession:
    """Prepared working directory awaiting a deployment."""

    id: str
    working_dir: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@runtime_checkable
class AnalysisSessionStore(Protocol):
    """Keyed storage for analysis sessions."""

    def get(self, session_id: str) -> AnalysisSession | None: ...

    def set(self, session: AnalysisSession) -> None: ...

    def delete(self, session_id: str) -> None: ...


class InMemoryAnalysisSessionStore:
    """Dict-backed AnalysisSessionStore."""

    def __init__(self) -> None:
        self._sessions: dict[str, AnalysisSession] = {}

    def get(self, session_id: str) -> AnalysisSession | None:
        return self._sessions.get(session_id)

    def set(self, session: AnalysisSession) -> None:
        self._sessions[session.id] = session

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)


class AnalysisSessions:
    """Opens and claims analysis sessions rooted under ``builds_root``."""

    def __init__(self, builds_root: Path, store: AnalysisSessionStore | None = None) -> None:
        self._root = builds_root
        self._store = store if store is not None else InMemoryAnalysisSessionStore()

    def open(self) -> AnalysisSession:
        """Create an empty session directory and register it."""
        session_id = uuid.uuid4().hex
        working_dir = self._root / f"analysis-{session_id}"
        working_dir.mkdir(parents=True, exist_ok=True)
        session = AnalysisSession(id=session_id, working_dir=working_dir)
        self._store.set(session)
        logger.info("analysis_session_opened", session_id=session_id, working_dir=str(working_dir))
        return session

    def claim(self, session_id: str) -> Path:
        """Hand a session's directory to one deployment and forget the session.

        Raises:
            AnalysisSessionNotFoundError: If the id is unknown, already claimed,
                or its directory is missing or outside ``builds_root``
        """
        session = self._store.get(session_id)
        if session is None:
            raise AnalysisSessionNotFoundError(session_id)
        self._store.delete(session_id)
        working_dir = session.working_dir.resolve()
        if not working_dir.is_dir() or not working_dir.is_relative_to(self._root.resolve()):
            raise AnalysisSessionNotFoundError(session_id)
        logger.info("analysis_session_claimed", session_id=session_id)
        return working_dir
