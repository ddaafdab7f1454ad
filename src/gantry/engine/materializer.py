# src/gantry/engine/materializer.py
"""Source materialization: turn a Project into a directory of source files.

Three source kinds are supported:

- git-reference: the repository's branch archive is downloaded from the
  code host's archive server, trying each configured branch name in order
  (the default branch is not always "main").
- archive: a payload uploaded with the job (base64 text, optionally a
  ``data:`` URL, or raw bytes) or an HTTP(S) URL to a zip file.
- inline-markup: a single HTML document written as index.html.

The working directory is always removed and recreated first, and removed
again if materialization fails, so a retried job never sees stale or
half-extracted files.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import shutil
import uuid
import zipfile
import zlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path, PurePosixPath

import httpx

from gantry.contracts import Job, LogLevel, MaterializationError, SourceKind
from gantry.core.config import SourceSettings
from gantry.core.logging import get_logger
from gantry.core.security import repository_archive_urls, validate_archive_url
from gantry.engine.bus import EventBus

logger = get_logger(__name__)

# Resource-fork folders added by macOS archivers; never part of a project
_IGNORED_MEMBER_PREFIXES = ("__MACOSX/",)


def reset_directory(path: Path) -> None:
    """Recursively remove ``path`` (if present) and recreate it empty."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)


def _is_safe_member(name: str) -> bool:
    if "\\" in name or name.startswith("/"):
        return False
    parts = PurePosixPath(name).parts
    if not parts or ":" in parts[0]:
        return False
    return ".." not in parts


def flatten_single_root(directory: Path) -> bool:
    """Hoist the contents of a lone top-level folder into ``directory``.

    Archives are commonly packed as ``project-main/...``; build tooling
    expects package.json and index.html at the top level.

    Returns:
        True if the directory was flattened
    """
    entries = list(directory.iterdir())
    if len(entries) != 1 or not entries[0].is_dir():
        return False
    # Rename first so a child sharing the folder's name cannot collide with it
    inner = entries[0].rename(directory / f".flatten-{uuid.uuid4().hex}")
    for child in inner.iterdir():
        child.rename(directory / child.name)
    inner.rmdir()
    return True


def extract_zip(payload: bytes, directory: Path, *, max_extracted_bytes: int) -> int:
    """Extract a zip payload into ``directory`` and flatten a single root folder.

    Every member is validated before anything is written.

    Returns:
        Number of files extracted

    Raises:
        MaterializationError: If the payload is not a zip, is corrupt, holds
            unsafe paths, or expands beyond ``max_extracted_bytes``
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(payload))
    except zipfile.BadZipFile as e:
        raise MaterializationError("Archive is not a valid ZIP file") from e

    with archive:
        members = [info for info in archive.infolist() if not info.filename.startswith(_IGNORED_MEMBER_PREFIXES)]
        total = 0
        for info in members:
            if not _is_safe_member(info.filename):
                raise MaterializationError(f"Unsafe path in archive: {info.filename}")
            total += info.file_size
            if total > max_extracted_bytes:
                raise MaterializationError(f"Archive expands beyond the {max_extracted_bytes} byte limit")
        try:
            archive.extractall(directory, members=members)
        except (zipfile.BadZipFile, zlib.error, EOFError) as e:
            raise MaterializationError(f"Archive is corrupt: {e}") from e

    flatten_single_root(directory)
    return sum(1 for info in members if not info.is_dir())


def decode_archive_payload(payload: bytes | str) -> bytes:
    """Decode an uploaded archive: raw bytes, base64 text, or a base64 data URL."""
    if isinstance(payload, bytes):
        return payload
    text = payload.strip()
    if text.startswith("data:"):
        _, _, text = text.partition(",")
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise MaterializationError("Uploaded archive is not valid base64") from e


class SourceMaterializer:
    """Produces a clean working directory for a job's project.

    Args:
        settings: Source limits and allowlists
        bus: Event bus for per-job progress entries
        client: Optional shared httpx client; one is created per download otherwise
    """

    def __init__(
        self,
        settings: SourceSettings,
        bus: EventBus,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._bus = bus
        self._client = client

    async def materialize(self, job: Job, working_dir: Path) -> Path:
        """Materialize ``job.project`` into ``working_dir``.

        Raises:
            MaterializationError: On any network, archive, or policy failure;
                the working directory is removed before raising
        """
        await asyncio.to_thread(reset_directory, working_dir)
        try:
            await self._materialize(job, working_dir)
        except Exception:
            await asyncio.to_thread(shutil.rmtree, working_dir, True)
            raise
        return working_dir

    async def _materialize(self, job: Job, working_dir: Path) -> None:
        project = job.project
        if project.source_kind is SourceKind.INLINE_MARKUP:
            await self._write_inline(job, working_dir)
        elif project.source_kind is SourceKind.ARCHIVE:
            await self._materialize_archive(job, working_dir)
        else:
            await self._materialize_repository(job, working_dir)

    async def _write_inline(self, job: Job, working_dir: Path) -> None:
        content = job.project.inline_content
        if content is None or not content.strip():
            raise MaterializationError("Inline markup source has no content")
        await asyncio.to_thread((working_dir / "index.html").write_text, content, "utf-8")
        self._bus.append_log(job.id, "Wrote inline markup to index.html")

    async def _materialize_archive(self, job: Job, working_dir: Path) -> None:
        if job.archive is not None:
            self._bus.append_log(job.id, "Using uploaded ZIP archive provided by the client.")
            payload = decode_archive_payload(job.archive)
            self._check_size(len(payload))
        else:
            url = job.project.source
            if not url.strip().lower().startswith(("http://", "https://")):
                raise MaterializationError("Archive sources need an uploaded payload or an HTTP(S) URL to a .zip file.")
            payload = await self._download(job.id, validate_archive_url(url))
        await self._extract(job.id, payload, working_dir)

    async def _materialize_repository(self, job: Job, working_dir: Path) -> None:
        candidates = repository_archive_urls(
            job.project.source,
            allowed_hosts=self._settings.allowed_hosts,
            archive_host=self._settings.archive_host,
            branches=self._settings.branch_candidates,
        )
        last_error: MaterializationError | None = None
        for url in candidates:
            try:
                payload = await self._download(job.id, url)
                await asyncio.to_thread(reset_directory, working_dir)
                await self._extract(job.id, payload, working_dir)
            except MaterializationError as e:
                last_error = e
                self._bus.append_log(job.id, f"Failed to download from {url}: {e}", LogLevel.WARNING)
                continue
            self._bus.append_log(job.id, f"Repository materialized from {url}", LogLevel.SUCCESS)
            return
        raise MaterializationError(f"Failed to materialize repository from archives. Last error: {last_error}") from last_error

    async def _extract(self, job_id: str, payload: bytes, working_dir: Path) -> None:
        count = await asyncio.to_thread(
            extract_zip,
            payload,
            working_dir,
            max_extracted_bytes=self._settings.max_extracted_bytes,
        )
        logger.info("archive_extracted", job_id=job_id, files=count, working_dir=str(working_dir))

    def _check_size(self, size: int) -> None:
        if size > self._settings.max_archive_bytes:
            raise MaterializationError(f"Archive is larger than the {self._settings.max_archive_bytes} byte limit")

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._settings.download_timeout_seconds, follow_redirects=True) as client:
            yield client

    async def _download(self, job_id: str, url: str) -> bytes:
        self._bus.append_log(job_id, f"Downloading ZIP archive from {url}")
        logger.info("archive_download_started", job_id=job_id, url=url)
        try:
            async with self._http() as client, client.stream("GET", url) as response:
                if not response.is_success:
                    body = (await response.aread())[:200].decode("utf-8", errors="replace")
                    raise MaterializationError(
                        f"Failed to download ZIP archive: {response.status_code} {response.reason_phrase} {body}".rstrip()
                    )
                declared = response.headers.get("content-length")
                if declared is not None and declared.isdigit():
                    self._check_size(int(declared))
                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    self._check_size(len(buffer))
        except httpx.HTTPError as e:
            raise MaterializationError(f"Failed to download ZIP archive: {type(e).__name__}: {e}") from e
        return bytes(buffer)
