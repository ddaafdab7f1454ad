# src/gantry/engine/coordinator.py
"""Deployment coordinator: runs one job through every phase.

    IDLE -> ANALYZING -> BUILDING -> DEPLOYING -> SUCCESS
                 \\           \\           \\
                  +-----------+-----------+--> FAILED

ANALYZING covers materialization, BUILDING covers the pre-build fixes,
the build itself and the post-build fixes, DEPLOYING covers publishing.
Phases of one job run strictly in sequence; jobs run concurrently and
independently of each other.

Jobs are fire-and-forget: submit() returns the job id straight away and
progress is only observable through the event bus. Every job body runs
inside a supervised task that guarantees exactly one terminal status
event, whatever happens inside the body.
"""

from __future__ import annotations

import asyncio
import shlex
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx

from gantry.contracts import Job, JobStatus, LogLevel, Project, SourceKind
from gantry.core.config import GantrySettings
from gantry.core.logging import get_logger, job_context
from gantry.core.text import slugify
from gantry.engine.bus import EventBus
from gantry.engine.executor import BuildExecutor, find_output_dir, plan_build
from gantry.engine.fixes import FixContext, FixPipeline, default_fixes
from gantry.engine.materializer import SourceMaterializer
from gantry.engine.publish import LocalStaticPublisher, Publisher
from gantry.engine.sessions import AnalysisSessions
from gantry.engine.store import InMemoryJobStore, JobStore, require_job

logger = get_logger(__name__)


def _describe(error: BaseException) -> str:
    message = str(error).strip()
    return message or type(error).__name__


class DeploymentCoordinator:
    """Owns job records and drives each job to a terminal status.

    Args:
        settings: Full application settings
        store: Job record storage
        bus: Event bus shared with stream endpoints
        materializer: Produces working directories
        fix_pipeline: Pre- and post-build repairs
        executor: Runs build commands
        publisher: Makes output reachable and returns its URL
        sessions: Prepared working directories from a prior analysis step
    """

    def __init__(
        self,
        *,
        settings: GantrySettings,
        store: JobStore,
        bus: EventBus,
        materializer: SourceMaterializer,
        fix_pipeline: FixPipeline,
        executor: BuildExecutor,
        publisher: Publisher,
        sessions: AnalysisSessions | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._bus = bus
        self._materializer = materializer
        self._fixes = fix_pipeline
        self._executor = executor
        self._publisher = publisher
        self._sessions = sessions if sessions is not None else AnalysisSessions(settings.paths.builds_root)
        # Strong references: the event loop only keeps weak ones to tasks
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def sessions(self) -> AnalysisSessions:
        return self._sessions

    def get(self, job_id: str) -> Job:
        """Look up a job.

        Raises:
            JobNotFoundError: If the job is unknown or was evicted
        """
        return require_job(self._store, job_id)

    def create(self, project: Project, *, archive: bytes | str | None = None) -> Job:
        """Allocate an IDLE job record without starting it."""
        self.evict_expired()
        job = Job(id=uuid.uuid4().hex, project=project, archive=archive)
        self._store.set(job)
        logger.info("job_created", job_id=job.id, project=project.name, source_kind=project.source_kind.value)
        return job

    def submit(self, project: Project, *, archive: bytes | str | None = None) -> str:
        """Create a job and start it in the background.

        Must be called from inside a running event loop.

        Returns:
            The new job's id
        """
        job = self.create(project, archive=archive)
        self.start(job.id)
        return job.id

    def start(self, job_id: str) -> bool:
        """Start a job's phases in a supervised background task.

        Idempotent: a job that has already left IDLE is left alone.

        Returns:
            True if this call started the job

        Raises:
            JobNotFoundError: If the job is unknown
            RuntimeError: If no event loop is running; the job stays IDLE
        """
        job = require_job(self._store, job_id)
        if job.status is not JobStatus.IDLE:
            logger.debug("job_start_ignored", job_id=job_id, status=job.status.value)
            return False
        loop = asyncio.get_running_loop()
        # Leaving IDLE synchronously makes a second start() a no-op
        self._bus.update_status(job_id, JobStatus.ANALYZING)
        task = loop.create_task(self._supervise(job), name=f"deployment-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._on_task_done(job, t))
        return True

    async def wait(self, job_id: str) -> Job:
        """Wait until a started job has finished and return its record."""
        job = require_job(self._store, job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return job

    async def shutdown(self) -> None:
        """Cancel every running job; each one ends FAILED."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

    def evict_expired(self, now: datetime | None = None) -> list[str]:
        """Drop terminal jobs whose retention window has passed.

        Running jobs are never evicted.

        Returns:
            Ids of evicted jobs
        """
        now = now or datetime.now(UTC)
        horizon = now - timedelta(seconds=self._settings.jobs.retention_seconds)
        evicted: list[str] = []
        for job in self._store:
            if job.is_terminal and job.finished_at is not None and job.finished_at < horizon:
                self._bus.close_subscribers(job.id)
                self._store.delete(job.id)
                evicted.append(job.id)
        if evicted:
            logger.info("jobs_evicted", count=len(evicted))
        return evicted

    # === Job body ===

    async def _supervise(self, job: Job) -> None:
        with job_context(job.id):
            try:
                await self._run(job)
            except asyncio.CancelledError:
                self._fail(job, "Deployment cancelled")
                raise
            except Exception as e:
                logger.warning("job_failed", error=str(e), error_type=type(e).__name__)
                self._fail(job, _describe(e))
            finally:
                self._executor.forget(job.id)

    def _on_task_done(self, job: Job, task: asyncio.Task[None]) -> None:
        self._tasks.pop(job.id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("job_supervisor_crashed", job_id=job.id, error=str(task.exception()))
        if not job.is_terminal:
            self._fail(job, "Deployment ended without reaching a terminal status")

    def _fail(self, job: Job, message: str) -> None:
        if job.is_terminal or self._store.get(job.id) is None:
            return
        job.error = message
        self._bus.append_log(job.id, f"Deployment failed: {message}", LogLevel.ERROR)
        self._bus.update_status(job.id, JobStatus.FAILED)

    async def _run(self, job: Job) -> None:
        project = job.project
        slug = slugify(project.slug or project.name)
        self._bus.append_log(job.id, f'Starting deployment for "{project.name}"')

        working_dir = await self._analyze(job)

        self._bus.update_status(job.id, JobStatus.BUILDING)
        output_dir = await self._build(job, working_dir)

        self._bus.update_status(job.id, JobStatus.DEPLOYING)
        url = await self._publisher.publish(job.id, slug, output_dir)

        job.url = url
        self._bus.append_log(job.id, f"Deployment complete. App is available at {url}", LogLevel.SUCCESS)
        self._bus.update_status(job.id, JobStatus.SUCCESS)
        logger.info("job_succeeded", url=url)

    async def _analyze(self, job: Job) -> Path:
        prepared = job.project.working_dir
        if prepared is not None and prepared.is_dir():
            job.working_dir = prepared
            self._bus.append_log(job.id, f"Reusing prepared repository at {prepared}")
            return prepared
        working_dir = self._settings.paths.builds_root / job.id
        job.working_dir = working_dir
        return await self._materializer.materialize(job, working_dir)

    async def _build(self, job: Job, working_dir: Path) -> Path:
        await self._fixes.run(job, FixContext(job_id=job.id, working_dir=working_dir))

        plan = plan_build(
            working_dir,
            self._settings.build,
            inline=job.project.source_kind is SourceKind.INLINE_MARKUP,
        )
        if plan.static:
            self._bus.append_log(
                job.id,
                f"Skipping install/build ({plan.reason}); treating source as static assets.",
            )
            output_dir = working_dir
        else:
            manager = plan.package_manager
            self._bus.append_log(job.id, f"Detected package manager: {manager} ({plan.reason})")
            self._bus.append_log(job.id, f"Installing dependencies with {manager}")
            await self._executor.run(job.id, plan.install, working_dir, plan.env)
            self._bus.append_log(job.id, f"Building project ({shlex.join(plan.build)})")
            await self._executor.run(job.id, plan.build, working_dir)
            output_dir = find_output_dir(working_dir, self._settings.build.output_candidates)

        await self._fixes.run(job, FixContext(job_id=job.id, working_dir=working_dir, output_dir=output_dir))
        return output_dir


def build_coordinator(
    settings: GantrySettings,
    *,
    store: JobStore | None = None,
    client: httpx.AsyncClient | None = None,
    publisher: Publisher | None = None,
) -> DeploymentCoordinator:
    """Wire a coordinator with the built-in components."""
    store = store if store is not None else InMemoryJobStore()
    bus = EventBus(store)
    return DeploymentCoordinator(
        settings=settings,
        store=store,
        bus=bus,
        materializer=SourceMaterializer(settings.sources, bus, client=client),
        fix_pipeline=FixPipeline(default_fixes(settings.fixes), bus),
        executor=BuildExecutor(bus),
        publisher=publisher if publisher is not None else LocalStaticPublisher(settings.paths, settings.publish, bus),
    )
