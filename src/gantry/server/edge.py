# src/gantry/server/edge.py
"""Edge relay: a thin proxy in front of the orchestrator.

The relay forwards job submissions and queries as-is. Live log streams
are relayed through a LogStreamMerger so the relay can add its own
progress events (connecting, connected, upstream failures) to the stream
viewers already consume, labelled ``source: "edge"``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from urllib.parse import quote

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from gantry.contracts import LogLevel
from gantry.core.config import EdgeSettings
from gantry.core.logging import get_logger
from gantry.server.merger import LogStreamMerger
from gantry.server.sse import SSE_HEADERS

logger = get_logger(__name__)

Notify = Callable[[str, LogLevel], None]

# Streams stay open for a whole build; only connecting is time-limited
_UPSTREAM_TIMEOUT = httpx.Timeout(10.0, read=None)


class EdgeRelay:
    """Proxy for the orchestrator API with event injection on streams."""

    def __init__(self, settings: EdgeSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._upstream_url = settings.upstream_url.rstrip("/")
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=_UPSTREAM_TIMEOUT)
        self._app = self._create_app()

    def _create_app(self) -> Starlette:
        """Create the Starlette application with all routes."""
        routes = [
            Route("/health", self._health_endpoint, methods=["GET"]),
            Route("/deployments", self._proxy_endpoint, methods=["POST"]),
            Route("/deployments/{job_id}", self._proxy_endpoint, methods=["GET"]),
            Route("/deployments/{job_id}/stream", self._stream_endpoint, methods=["GET"]),
        ]
        return Starlette(debug=False, routes=routes, lifespan=self._lifespan)

    @asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        yield
        if self._owns_client:
            await self._client.aclose()

    @property
    def app(self) -> Starlette:
        """Get the Starlette ASGI application."""
        return self._app

    # === Endpoint handlers ===

    async def _health_endpoint(self, request: Request) -> JSONResponse:
        """Handle GET /health."""
        return JSONResponse({"status": "healthy", "upstream": self._upstream_url})

    async def _proxy_endpoint(self, request: Request) -> Response:
        """Forward a request to the orchestrator and return its answer unchanged."""
        url = f"{self._upstream_url}{request.url.path}"
        headers = {"content-type": request.headers.get("content-type", "application/json")}
        try:
            upstream = await self._client.request(request.method, url, content=await request.body(), headers=headers)
        except httpx.HTTPError as e:
            logger.warning("upstream_request_failed", url=url, error=str(e), error_type=type(e).__name__)
            return JSONResponse({"error": f"Deployment server unreachable: {type(e).__name__}"}, status_code=502)
        return Response(
            upstream.content,
            status_code=upstream.status_code,
            media_type=upstream.headers.get("content-type"),
        )

    async def _stream_endpoint(self, request: Request) -> StreamingResponse:
        """Handle GET /deployments/{job_id}/stream through the merger."""
        job_id = request.path_params["job_id"]
        url = f"{self._upstream_url}/deployments/{quote(job_id, safe='')}/stream"

        merger: LogStreamMerger

        def notify(message: str, level: LogLevel) -> None:
            merger.inject_log(message, level)

        merger = LogStreamMerger(self._upstream_chunks(url, notify), source="edge")
        merger.inject_log("Connecting to deployment server...")
        return StreamingResponse(merger, media_type="text/event-stream", headers=SSE_HEADERS)

    async def _upstream_chunks(self, url: str, notify: Notify) -> AsyncIterator[bytes]:
        """Raw stream bytes from the orchestrator.

        Failures become injected error events rather than exceptions so the
        viewer's stream always ends cleanly with an explanation.
        """
        try:
            async with self._client.stream("GET", url, headers={"accept": "text/event-stream"}) as response:
                if response.status_code == 404:
                    notify("Deployment not found on the deployment server.", LogLevel.ERROR)
                    return
                if not response.is_success:
                    notify(
                        f"Deployment server answered {response.status_code} {response.reason_phrase}",
                        LogLevel.ERROR,
                    )
                    return
                notify("Connected to deployment server. Streaming build logs.", LogLevel.INFO)
                # Empty chunk lets the merger flush the notice before upstream bytes
                yield b""
                async for chunk in response.aiter_raw():
                    yield chunk
        except httpx.HTTPError as e:
            logger.warning("upstream_stream_failed", url=url, error=str(e), error_type=type(e).__name__)
            notify(f"Lost connection to deployment server: {type(e).__name__}", LogLevel.ERROR)


def create_edge_app(settings: EdgeSettings) -> Starlette:
    """Create the edge relay ASGI application from settings."""
    relay = EdgeRelay(settings)
    relay.app.state.relay = relay
    return relay.app
