# src/gantry/server/app.py
"""Starlette ASGI application for the Gantry orchestrator.

Routes:
    GET  /health                        liveness and version
    POST /deployments                   submit a project, returns its job id
    GET  /deployments/{job_id}          job snapshot with full log history
    GET  /deployments/{job_id}/stream   live log stream (server-sent events)

Usage:
    from gantry.server.app import create_app, GantryServer
    from gantry.core.config import GantrySettings

    app = create_app(GantrySettings())

    # Or use the server class for access to the coordinator
    server = GantryServer(GantrySettings())
    app = server.app
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from gantry import __version__
from gantry.contracts import AnalysisSessionNotFoundError, JobNotFoundError, Project, SourceKind
from gantry.core.config import GantrySettings
from gantry.core.logging import get_logger
from gantry.engine.coordinator import DeploymentCoordinator, build_coordinator
from gantry.server.sse import SSE_HEADERS, StreamSubscriber

logger = get_logger(__name__)


class DeploymentRequest(BaseModel):
    """Body of POST /deployments."""

    model_config = {"frozen": True, "extra": "forbid"}

    name: str = Field(min_length=1, description="Human-readable project name")
    source_kind: SourceKind = Field(description="How 'source' is interpreted")
    source: str = Field(default="", description="Repository URL, archive URL, or a label")
    slug: str | None = Field(default=None, description="Published location name; derived from name if omitted")
    inline_content: str | None = Field(default=None, description="HTML document for inline-markup sources")
    archive: str | None = Field(default=None, description="Base64 zip payload (optionally a data: URL)")
    analysis_id: str | None = Field(default=None, description="Analysis session whose prepared directory to deploy")

    def to_project(self, working_dir: Path | None = None) -> Project:
        return Project(
            name=self.name,
            source_kind=self.source_kind,
            source=self.source,
            slug=self.slug,
            inline_content=self.inline_content,
            working_dir=working_dir,
        )


def _not_found(job_id: str) -> JSONResponse:
    return JSONResponse({"error": f"Unknown deployment job: {job_id}"}, status_code=404)


class GantryServer:
    """Orchestrator HTTP surface.

    Holds the coordinator so tests and embedding code can reach the job
    store and event bus directly.
    """

    def __init__(self, settings: GantrySettings, *, coordinator: DeploymentCoordinator | None = None) -> None:
        self._settings = settings
        self._coordinator = coordinator if coordinator is not None else build_coordinator(settings)
        self._app = self._create_app()

    def _create_app(self) -> Starlette:
        """Create the Starlette application with all routes."""
        routes = [
            Route("/health", self._health_endpoint, methods=["GET"]),
            Route("/deployments", self._submit_endpoint, methods=["POST"]),
            Route("/deployments/{job_id}", self._job_endpoint, methods=["GET"]),
            Route("/deployments/{job_id}/stream", self._stream_endpoint, methods=["GET"]),
        ]
        return Starlette(debug=False, routes=routes, lifespan=self._lifespan)

    @asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        yield
        await self._coordinator.shutdown()

    @property
    def app(self) -> Starlette:
        """Get the Starlette ASGI application."""
        return self._app

    @property
    def coordinator(self) -> DeploymentCoordinator:
        return self._coordinator

    # === Endpoint handlers ===

    async def _health_endpoint(self, request: Request) -> JSONResponse:
        """Handle GET /health."""
        return JSONResponse({"status": "healthy", "version": __version__})

    async def _submit_endpoint(self, request: Request) -> JSONResponse:
        """Handle POST /deployments."""
        try:
            body: Any = await request.json()
        except ValueError:
            return JSONResponse({"error": "Request body must be JSON"}, status_code=400)
        try:
            payload = DeploymentRequest.model_validate(body)
        except ValidationError as e:
            return JSONResponse(
                {"error": "Invalid deployment request", "details": e.errors(include_url=False, include_input=False)},
                status_code=400,
            )
        working_dir = None
        if payload.analysis_id is not None:
            try:
                working_dir = self._coordinator.sessions.claim(payload.analysis_id)
            except AnalysisSessionNotFoundError as e:
                return JSONResponse({"error": str(e)}, status_code=400)
        job_id = self._coordinator.submit(payload.to_project(working_dir), archive=payload.archive)
        logger.info("deployment_submitted", job_id=job_id, project=payload.name)
        return JSONResponse({"deployment_id": job_id}, status_code=202)

    async def _job_endpoint(self, request: Request) -> JSONResponse:
        """Handle GET /deployments/{job_id}."""
        job_id = request.path_params["job_id"]
        try:
            job = self._coordinator.get(job_id)
        except JobNotFoundError:
            return _not_found(job_id)
        return JSONResponse(job.snapshot())

    async def _stream_endpoint(self, request: Request) -> Response:
        """Handle GET /deployments/{job_id}/stream.

        History is replayed before live events. The stream ends after the
        terminal status event; a finished job replays and ends at once.
        """
        job_id = request.path_params["job_id"]
        bus = self._coordinator.bus
        subscriber = StreamSubscriber(keepalive_seconds=self._settings.stream.keepalive_seconds)
        try:
            bus.subscribe(job_id, subscriber)
        except JobNotFoundError:
            return _not_found(job_id)

        async def body():
            try:
                async for frame in subscriber.frames():
                    yield frame
            finally:
                bus.unsubscribe(job_id, subscriber)

        return StreamingResponse(body(), media_type="text/event-stream", headers=SSE_HEADERS)


def create_app(settings: GantrySettings) -> Starlette:
    """Create a Starlette ASGI application from settings.

    Convenience function for simple use cases. For access to the
    coordinator, use GantryServer directly.
    """
    server = GantryServer(settings)
    server.app.state.server = server
    return server.app
