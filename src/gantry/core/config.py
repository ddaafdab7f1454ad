# src/gantry/core/config.py
"""Configuration schema and loading for Gantry.

Uses Pydantic for validation with frozen (immutable) models. Settings are
loaded with Dynaconf so values can come from a YAML/TOML file and from
GANTRY_* environment variables. None of these settings change the
orchestration algorithms, only their operating limits and destinations.
"""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from gantry.contracts.enums import UrlStyle


class PathsSettings(BaseModel):
    """Filesystem roots for working directories and published output."""

    model_config = {"frozen": True, "extra": "forbid"}

    builds_root: Path = Field(
        default=Path(".gantry/builds"),
        description="Parent directory for per-job working directories",
    )
    static_root: Path = Field(
        default=Path(".gantry/apps"),
        description="Directory the local publisher copies build output into",
    )


class SourceSettings(BaseModel):
    """Limits and allowlists for source materialization."""

    model_config = {"frozen": True, "extra": "forbid"}

    allowed_hosts: tuple[str, ...] = Field(
        default=("github.com",),
        description="Code hosts accepted for git-reference sources",
    )
    archive_host: str = Field(
        default="codeload.github.com",
        description="Host serving branch zip archives for allowed repositories",
    )
    branch_candidates: tuple[str, ...] = Field(
        default=("main", "master"),
        description="Branch names tried in order when downloading a repository archive",
    )
    max_archive_bytes: int = Field(
        default=100 * 1024 * 1024,
        gt=0,
        description="Largest archive (downloaded or uploaded) accepted, in bytes",
    )
    max_extracted_bytes: int = Field(
        default=500 * 1024 * 1024,
        gt=0,
        description="Largest total uncompressed size an archive may expand to, in bytes",
    )
    download_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for a single archive download",
    )

    @field_validator("branch_candidates")
    @classmethod
    def validate_branch_candidates(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """At least one branch must be tried."""
        if not v:
            raise ValueError("branch_candidates must name at least one branch")
        return v

    @field_validator("allowed_hosts")
    @classmethod
    def normalize_hosts(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(host.strip().lower() for host in v if host.strip())


class BuildSettings(BaseModel):
    """Build executor behaviour."""

    model_config = {"frozen": True, "extra": "forbid"}

    output_candidates: tuple[str, ...] = Field(
        default=("dist", "build", "out"),
        description="Directories checked in order for build output",
    )
    install_env: dict[str, str] = Field(
        default_factory=lambda: {"npm_config_production": "false"},
        description="Environment overrides for npm/pnpm installs (keeps devDependencies)",
    )


class PublishSettings(BaseModel):
    """Where published apps are reachable from."""

    model_config = {"frozen": True, "extra": "forbid"}

    url_style: UrlStyle = Field(
        default=UrlStyle.PATH,
        description="'path' for /apps/<slug>/ routes, 'subdomain' for https://<slug>.<domain>/",
    )
    path_prefix: str = Field(
        default="/apps",
        description="Route prefix for path-style URLs",
    )
    apps_root_domain: str | None = Field(
        default=None,
        description="Apex domain for subdomain-style URLs (e.g. 'example.app')",
    )

    @model_validator(mode="after")
    def validate_domain_for_subdomain(self) -> "PublishSettings":
        """Subdomain URLs need a root domain."""
        if self.url_style == UrlStyle.SUBDOMAIN and not self.apps_root_domain:
            raise ValueError("publish.apps_root_domain is required when url_style is 'subdomain'")
        return self


class FixSettings(BaseModel):
    """Parameters for the built-in repository fixes."""

    model_config = {"frozen": True, "extra": "forbid"}

    genai_proxy_base_url: str = Field(
        default="http://localhost:8788/googleapis",
        description="Base URL Google GenAI clients are retargeted to",
    )
    placeholder_env_key: str = Field(
        default="GEMINI_API_KEY",
        description="Variable written to .env with a placeholder value when missing",
    )
    relative_assets: bool = Field(
        default=True,
        description="Rewrite absolute /assets/ references in built index.html to relative paths",
    )


class StreamSettings(BaseModel):
    """Live log stream behaviour."""

    model_config = {"frozen": True, "extra": "forbid"}

    keepalive_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Idle interval after which a keep-alive comment frame is sent",
    )


class JobSettings(BaseModel):
    """Job record retention."""

    model_config = {"frozen": True, "extra": "forbid"}

    retention_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="How long terminal jobs (and their log history) stay queryable",
    )


class ServerSettings(BaseModel):
    """HTTP binding for the orchestrator."""

    model_config = {"frozen": True, "extra": "forbid"}

    host: str = Field(default="127.0.0.1", description="Host address to bind to")
    port: int = Field(default=8787, gt=0, le=65535, description="Port to listen on")


class EdgeSettings(BaseModel):
    """HTTP binding and upstream for the edge relay."""

    model_config = {"frozen": True, "extra": "forbid"}

    upstream_url: str = Field(
        default="http://127.0.0.1:8787",
        description="Base URL of the orchestrator the edge relay forwards to",
    )
    host: str = Field(default="127.0.0.1", description="Host address to bind to")
    port: int = Field(default=8789, gt=0, le=65535, description="Port to listen on")


class LoggingSettings(BaseModel):
    """Operational logging output."""

    model_config = {"frozen": True, "extra": "forbid"}

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Emit JSON lines instead of console output")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return upper


class GantrySettings(BaseModel):
    """Top-level Gantry configuration.

    Every section has defaults, so an empty settings source yields a
    working local setup.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    paths: PathsSettings = Field(default_factory=PathsSettings)
    sources: SourceSettings = Field(default_factory=SourceSettings)
    build: BuildSettings = Field(default_factory=BuildSettings)
    publish: PublishSettings = Field(default_factory=PublishSettings)
    fixes: FixSettings = Field(default_factory=FixSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    edge: EdgeSettings = Field(default_factory=EdgeSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    # Dynaconf upper-cases keys at every level it merged from the environment
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def load_settings(config_path: Path | None = None) -> GantrySettings:
    """Load settings from an optional config file with environment overrides.

    Precedence:
    1. Environment variables (GANTRY_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: GANTRY_SOURCES__MAX_ARCHIVE_BYTES for nested keys.

    Raises:
        FileNotFoundError: If config_path is given but does not exist
        ValidationError: If configuration fails Pydantic validation
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="GANTRY",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(raw_config)

    return GantrySettings(**raw_config)
