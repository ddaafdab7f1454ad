# src/gantry/engine/publish.py
"""Publish step: make a build output directory reachable at a URL.

Only the local-static target is built in. Remote hosting providers plug
in through the Publisher protocol.
"""

import asyncio
import shutil
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Protocol, runtime_checkable

from gantry.contracts import PublishError, UrlStyle
from gantry.core.config import PathsSettings, PublishSettings
from gantry.core.logging import get_logger
from gantry.engine.bus import EventBus

logger = get_logger(__name__)

# Never served, even when the working directory itself is the output
_EXCLUDED = shutil.ignore_patterns(".git", ".env", ".env.*", "node_modules")


@runtime_checkable
class Publisher(Protocol):
    """Copies or uploads an output directory and returns its public URL."""

    async def publish(self, job_id: str, slug: str, output_dir: Path) -> str: ...


def published_url(settings: PublishSettings, slug: str) -> str:
    """URL an app published under ``slug`` is reachable at."""
    if settings.url_style is UrlStyle.SUBDOMAIN:
        return f"https://{slug}.{settings.apps_root_domain}/"
    return f"{settings.path_prefix.rstrip('/')}/{slug}/"


def _replace_tree(source: Path, destination: Path) -> None:
    """Copy ``source`` beside ``destination`` and swap it in with renames.

    The served directory is never a half-copied tree.
    """
    token = uuid.uuid4().hex
    staging = destination.with_name(f".{destination.name}.{token}.staging")
    retired = destination.with_name(f".{destination.name}.{token}.retired")
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copytree(source, staging, ignore=_EXCLUDED)
        if destination.exists():
            destination.rename(retired)
        staging.rename(destination)
    finally:
        shutil.rmtree(staging, ignore_errors=True)
        shutil.rmtree(retired, ignore_errors=True)


class LocalStaticPublisher:
    """Copies output into ``static_root/<slug>`` for a static file server."""

    def __init__(self, paths: PathsSettings, settings: PublishSettings, bus: EventBus) -> None:
        self._static_root = paths.static_root
        self._settings = settings
        self._bus = bus
        # Publishes of one slug run one at a time; different slugs run in parallel
        self._slug_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def destination(self, slug: str) -> Path:
        return self._static_root / slug

    async def publish(self, job_id: str, slug: str, output_dir: Path) -> str:
        """Replace any previous copy of ``slug`` with ``output_dir``.

        Raises:
            PublishError: If the output cannot be copied
        """
        destination = self.destination(slug)
        self._bus.append_log(job_id, f"Copying build output to local static dir: {destination}")
        try:
            async with self._slug_locks[slug]:
                await asyncio.to_thread(_replace_tree, output_dir, destination)
        except OSError as e:
            raise PublishError(f"Failed to copy build output to {destination}: {e}") from e
        url = published_url(self._settings, slug)
        logger.info("app_published", job_id=job_id, slug=slug, destination=str(destination), url=url)
        return url
