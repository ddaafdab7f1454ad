# src/gantry/engine/executor.py
"""Build planning and external command execution.

Commands are always argument vectors and are never passed to a shell.
Output is streamed line by line into the job log while the process runs:
stdout lines become info entries, stderr lines become warning entries
(many build tools write progress to stderr, so it is not treated as an
error). Only the exit code decides success.
"""

from __future__ import annotations

import asyncio
import json
import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from gantry.contracts import (
    BuildError,
    BuildOutputNotFoundError,
    LogLevel,
    PackageManager,
)
from gantry.core.config import BuildSettings
from gantry.core.logging import get_logger
from gantry.core.text import strip_ansi
from gantry.engine.bus import EventBus

logger = get_logger(__name__)

# Checked in order; the first lockfile found decides the package manager
_LOCKFILES: tuple[tuple[str, PackageManager], ...] = (
    ("pnpm-lock.yaml", PackageManager.PNPM),
    ("yarn.lock", PackageManager.YARN),
    ("bun.lockb", PackageManager.BUN),
    ("package-lock.json", PackageManager.NPM),
    ("npm-shrinkwrap.json", PackageManager.NPM),
)


@dataclass(frozen=True, slots=True)
class BuildPlan:
    """How a working directory is turned into deployable output.

    A static plan has no commands: the working directory itself is the
    output.
    """

    static: bool
    reason: str
    package_manager: PackageManager | None = None
    install: tuple[str, ...] = ()
    build: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)


def _read_manifest(path: Path) -> dict[str, object] | None:
    try:
        manifest = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None
    return manifest if isinstance(manifest, dict) else None


def detect_package_manager(
    working_dir: Path, manifest: Mapping[str, object] | None = None
) -> tuple[PackageManager, str]:
    """Pick the package manager from package.json's packageManager field or lockfiles.

    Returns:
        The manager and a human-readable reason for the choice
    """
    declared = manifest.get("packageManager") if manifest else None
    if isinstance(declared, str):
        name = declared.split("@", 1)[0].strip().lower()
        for manager in PackageManager:
            if manager.value == name:
                return manager, f"packageManager field: {declared}"
    for lockfile, manager in _LOCKFILES:
        if (working_dir / lockfile).exists():
            return manager, f"lockfile: {lockfile}"
    return PackageManager.NPM, "default: no packageManager field or known lockfile"


def plan_build(working_dir: Path, settings: BuildSettings, *, inline: bool = False) -> BuildPlan:
    """Decide between a static deploy and a package-manager build."""
    if inline:
        return BuildPlan(static=True, reason="inline markup source")
    package_json = working_dir / "package.json"
    if not package_json.is_file():
        return BuildPlan(static=True, reason="no package.json found")

    manager, reason = detect_package_manager(working_dir, _read_manifest(package_json))
    if manager is PackageManager.YARN:
        build: tuple[str, ...] = ("yarn", "build")
    else:
        build = (manager.value, "run", "build")
    # Installs must keep devDependencies (bundlers) even under NODE_ENV=production
    env = dict(settings.install_env) if manager in (PackageManager.NPM, PackageManager.PNPM) else {}
    return BuildPlan(
        static=False,
        reason=reason,
        package_manager=manager,
        install=(manager.value, "install"),
        build=build,
        env=env,
    )


def find_output_dir(working_dir: Path, candidates: Sequence[str]) -> Path:
    """Return the first existing build output directory.

    Raises:
        BuildOutputNotFoundError: If none of the candidates exist
    """
    for name in candidates:
        candidate = working_dir / name
        if candidate.is_dir():
            return candidate
    tried = ", ".join(f"{name}/" for name in candidates)
    raise BuildOutputNotFoundError(f"Could not find build output directory (tried {tried})")


class BuildExecutor:
    """Runs external commands for a job and streams their output to the bus.

    Commands for the same job are serialized; different jobs run in
    parallel.
    """

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._locks: dict[str, asyncio.Lock] = {}

    async def run(
        self,
        job_id: str,
        command: Sequence[str],
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Run ``command`` in ``cwd`` and wait for it to exit.

        Args:
            job_id: Job the output is logged against
            command: Program and arguments
            cwd: Working directory for the process
            env: Overrides merged over the current environment

        Raises:
            BuildError: If the process cannot be started or exits non-zero
        """
        if not command:
            raise ValueError("command must not be empty")
        rendered = shlex.join(command)
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        async with lock:
            await self._run(job_id, list(command), rendered, cwd, env)

    def forget(self, job_id: str) -> None:
        """Drop per-job state once the job can issue no more commands."""
        self._locks.pop(job_id, None)

    async def _run(
        self,
        job_id: str,
        command: list[str],
        rendered: str,
        cwd: Path,
        env: Mapping[str, str] | None,
    ) -> None:
        self._bus.append_log(job_id, f"$ {rendered}")
        logger.info("command_started", job_id=job_id, command=rendered, cwd=str(cwd))
        merged_env = {**os.environ, **env} if env else None
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                env=merged_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            message = f'Failed to start "{rendered}": {e}'
            self._bus.append_log(job_id, message, LogLevel.ERROR)
            raise BuildError(message, command=rendered) from e

        try:
            await asyncio.gather(
                self._pump(job_id, process.stdout, LogLevel.INFO),
                self._pump(job_id, process.stderr, LogLevel.WARNING),
            )
            exit_code = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        logger.info("command_finished", job_id=job_id, command=rendered, exit_code=exit_code)
        if exit_code != 0:
            message = f'Command "{rendered}" exited with code {exit_code}'
            self._bus.append_log(job_id, message, LogLevel.ERROR)
            raise BuildError(message, command=rendered, exit_code=exit_code)

    async def _pump(self, job_id: str, stream: asyncio.StreamReader | None, level: LogLevel) -> None:
        if stream is None:
            return
        pending = ""
        while chunk := await stream.read(4096):
            pending += chunk.decode("utf-8", errors="replace")
            # Last element is a partial line unless the chunk ended on a newline
            *lines, pending = pending.splitlines(keepends=True) or [""]
            if pending.endswith(("\n", "\r")):
                lines.append(pending)
                pending = ""
            for line in lines:
                self._emit(job_id, line, level)
        if pending:
            self._emit(job_id, pending, level)

    def _emit(self, job_id: str, line: str, level: LogLevel) -> None:
        cleaned = strip_ansi(line).strip()
        if cleaned:
            self._bus.append_log(job_id, cleaned, level)
