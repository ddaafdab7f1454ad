# src/gantry/cli.py
"""Gantry Command Line Interface.

Usage:
    gantry serve                                   # Orchestrator API on 127.0.0.1:8787
    gantry serve --config=gantry.yaml --port=9000  # Custom config
    gantry edge --upstream=http://10.0.0.5:8787    # Edge relay in front of an orchestrator
    gantry deploy https://github.com/owner/repo    # Run one deployment in-process
    gantry deploy site.zip --kind=archive --name="My Site"
    gantry deploy page.html --kind=inline-markup
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError

from gantry import __version__
from gantry.contracts import DeploymentEvent, Job, JobStatus, LogEvent, LogLevel, Project, SourceKind
from gantry.core.config import GantrySettings, load_settings
from gantry.core.logging import configure_logging

__all__ = ["app"]

app = typer.Typer(
    name="gantry",
    help="Gantry: build and publish web projects with live build logs.",
    no_args_is_help=True,
)

_LEVEL_COLORS: dict[LogLevel, str] = {
    LogLevel.INFO: typer.colors.WHITE,
    LogLevel.WARNING: typer.colors.YELLOW,
    LogLevel.ERROR: typer.colors.RED,
    LogLevel.SUCCESS: typer.colors.GREEN,
}

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to a settings file (YAML, TOML or JSON).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"gantry version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


def _load_settings_or_exit(ctx: typer.Context, config_file: Path | None) -> GantrySettings:
    """Load settings, then configure logging from them unless flags override."""
    try:
        settings = load_settings(config_file)
    except FileNotFoundError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.secho("Configuration errors:", fg=typer.colors.RED, err=True)
        for error in e.errors():
            loc = ".".join(str(part) for part in error["loc"])
            typer.secho(f"  - {loc}: {error['msg']}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    flags: dict[str, Any] = ctx.obj or {}
    configure_logging(
        json_output=flags.get("json_logs", False) or settings.logging.json_output,
        level="DEBUG" if flags.get("verbose") else settings.logging.level,
    )
    return settings


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # We handle existence check ourselves for better error message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """Gantry: build and publish web projects with live build logs."""
    ctx.obj = {"verbose": verbose, "json_logs": json_logs}

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


@app.command()
def serve(
    ctx: typer.Context,
    config_file: ConfigOption = None,
    host: Annotated[
        str | None,
        typer.Option("--host", "-h", help="Host address to bind to."),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--port", "-P", help="Port to listen on.", min=1, max=65535),
    ] = None,
) -> None:
    """Run the orchestrator API (submit, query and stream deployments)."""
    import uvicorn

    from gantry.server.app import create_app

    settings = _load_settings_or_exit(ctx, config_file)
    bind_host = host or settings.server.host
    bind_port = port or settings.server.port
    typer.echo(f"Gantry orchestrator listening on http://{bind_host}:{bind_port}")
    uvicorn.run(create_app(settings), host=bind_host, port=bind_port, log_level="info")


@app.command()
def edge(
    ctx: typer.Context,
    config_file: ConfigOption = None,
    upstream: Annotated[
        str | None,
        typer.Option("--upstream", "-u", help="Base URL of the orchestrator to relay."),
    ] = None,
    host: Annotated[
        str | None,
        typer.Option("--host", "-h", help="Host address to bind to."),
    ] = None,
    port: Annotated[
        int | None,
        typer.Option("--port", "-P", help="Port to listen on.", min=1, max=65535),
    ] = None,
) -> None:
    """Run the edge relay in front of an orchestrator."""
    import uvicorn

    from gantry.server.edge import create_edge_app

    settings = _load_settings_or_exit(ctx, config_file)
    overrides = {
        key: value for key, value in {"upstream_url": upstream, "host": host, "port": port}.items() if value is not None
    }
    edge_settings = settings.edge.model_copy(update=overrides)
    typer.echo(f"Gantry edge relay on http://{edge_settings.host}:{edge_settings.port} -> {edge_settings.upstream_url}")
    uvicorn.run(create_edge_app(edge_settings), host=edge_settings.host, port=edge_settings.port, log_level="info")


class _ConsolePrinter:
    """Event bus subscriber that echoes a job's events to the terminal."""

    def deliver(self, event: DeploymentEvent) -> None:
        if isinstance(event, LogEvent):
            typer.secho(event.message, fg=_LEVEL_COLORS[event.level])
        else:
            typer.secho(f"[{event.status.value}]", bold=True)

    def close(self) -> None:
        pass


def _default_name(source: str) -> str:
    stripped = source.rstrip("/")
    tail = stripped.rsplit("/", 1)[-1] or stripped
    return Path(tail).stem or "app"


def _read_source(kind: SourceKind, source: str) -> tuple[str | None, bytes | None]:
    """Inline content and uploaded archive bytes for local sources."""
    path = Path(source)
    if kind is SourceKind.INLINE_MARKUP:
        if not path.is_file():
            typer.secho(f"Error: HTML file not found: {source}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return path.read_text(encoding="utf-8"), None
    if kind is SourceKind.ARCHIVE and path.is_file():
        return None, path.read_bytes()
    return None, None


async def _run_deployment(settings: GantrySettings, project: Project, archive: bytes | None) -> Job:
    from gantry.engine.coordinator import build_coordinator

    coordinator = build_coordinator(settings)
    job = coordinator.create(project, archive=archive)
    coordinator.bus.subscribe(job.id, _ConsolePrinter())
    coordinator.start(job.id)
    return await coordinator.wait(job.id)


@app.command()
def deploy(
    ctx: typer.Context,
    source: Annotated[
        str,
        typer.Argument(help="Repository URL, zip file path or URL, or HTML file path."),
    ],
    kind: Annotated[
        SourceKind,
        typer.Option("--kind", "-k", help="How SOURCE is interpreted."),
    ] = SourceKind.GIT_REFERENCE,
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Project name (defaults to the source's last path segment)."),
    ] = None,
    slug: Annotated[
        str | None,
        typer.Option("--slug", "-s", help="Published location name (defaults to a slug of the name)."),
    ] = None,
    config_file: ConfigOption = None,
) -> None:
    """Build and publish one project in-process, printing its log as it runs."""
    settings = _load_settings_or_exit(ctx, config_file)
    inline_content, archive = _read_source(kind, source)
    project = Project(
        name=name or _default_name(source),
        source_kind=kind,
        source=source,
        slug=slug,
        inline_content=inline_content,
    )

    job = asyncio.run(_run_deployment(settings, project, archive))

    if job.status is not JobStatus.SUCCESS:
        typer.secho(f"Deployment failed: {job.error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.secho(f"Published: {job.url}", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
