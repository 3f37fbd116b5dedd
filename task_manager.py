"""
task_manager.py
===============
Asynchronous download / unpack jobs.

``JobRunner`` is the narrow contract the acquisition pipeline depends on:

  submit(spec)              → JobHandle   (returns immediately)
  await_completion(handle)  → JobResult   (never raises for job failures)
  cancel(handle)            → bool

``TaskManager`` is the default implementation: every job is an asyncio task,
downloads stream through aiohttp into the download root and archives are
extracted off-loop into a hidden staging directory inside the unpack root,
then renamed into place. Lifecycle events are published to listeners
registered with ``on()``:

  task:created, task:started, task:progress,
  task:completed, task:failed, task:cancelled
"""

from __future__ import annotations

import abc
import asyncio
import logging
import os
import posixpath
import shutil
import tarfile
import time
import uuid
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import aiohttp

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────

class JobType:
    DOWNLOAD = "download"
    UNPACK = "unpack"


class JobStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TASK_EVENTS = (
    "task:created",
    "task:started",
    "task:progress",
    "task:completed",
    "task:failed",
    "task:cancelled",
)

STAGING_PREFIX = ".staging-"

EventCallback = Callable[[str, "JobRecord"], None]


class DownloadError(RuntimeError):
    """The remote server did not deliver the file."""


# ──────────────────────────────────────────────
#  Job Data Structures
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class JobSpec:
    """What a job should do."""

    type: str                          # JobType.DOWNLOAD | JobType.UNPACK
    source: str                        # URL or archive path
    file_name: Optional[str] = None    # download target name
    destination: Optional[str] = None  # unpack target directory


@dataclass
class JobResult:
    """Outcome of a finished job."""

    job_id: str
    success: bool
    path: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class JobHandle:
    """Opaque id plus completion signal for a submitted job."""

    job_id: str
    spec: JobSpec
    completion: "asyncio.Future[JobResult]"


@dataclass
class JobRecord:
    """Observable state of a job, passed to event listeners."""

    job_id: str
    type: str
    source: str
    status: str = JobStatus.PENDING
    downloaded: int = 0
    total: int = 0
    path: Optional[str] = None
    error: Optional[str] = None
    created_at: str = field(
        default_factory=lambda: datetime.now(tz=timezone.utc).isoformat()
    )
    updated_at: str = ""

    def touch(self, status: Optional[str] = None) -> None:
        if status is not None:
            self.status = status
        self.updated_at = datetime.now(tz=timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "type": self.type,
            "source": self.source,
            "status": self.status,
            "downloaded": self.downloaded,
            "total": self.total,
            "path": self.path,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ──────────────────────────────────────────────
#  JobRunner Contract
# ──────────────────────────────────────────────

class JobRunner(abc.ABC):
    """Minimal job contract consumed by the acquisition pipeline."""

    @abc.abstractmethod
    def submit(self, spec: JobSpec) -> JobHandle:
        """Start a job and return its handle immediately."""

    @abc.abstractmethod
    async def await_completion(self, handle: JobHandle) -> JobResult:
        """Wait for a job; failures come back as ``JobResult(success=False)``."""

    @abc.abstractmethod
    def cancel(self, handle: JobHandle) -> bool:
        """Request cancellation. Returns False if the job already finished."""

    @property
    @abc.abstractmethod
    def download_path(self) -> Path:
        """Directory downloads are written to."""

    @property
    @abc.abstractmethod
    def unpack_path(self) -> Path:
        """Directory archives are unpacked under."""

    def download(self, url: str, file_name: Optional[str] = None) -> JobHandle:
        return self.submit(JobSpec(JobType.DOWNLOAD, url, file_name=file_name))

    def unpack(self, archive_path: str | os.PathLike, destination: Optional[str | os.PathLike] = None) -> JobHandle:
        return self.submit(JobSpec(
            JobType.UNPACK,
            os.fspath(archive_path),
            destination=os.fspath(destination) if destination is not None else None,
        ))


# ──────────────────────────────────────────────
#  TaskManager
# ──────────────────────────────────────────────

class TaskManager(JobRunner):
    """
    asyncio-based JobRunner.

    Args:
        download_path: Directory downloads are written to
        unpack_path:   Directory archives are unpacked under
        session:       Shared aiohttp session (one per job is opened if None)
        chunk_size:    Streaming chunk size in bytes
        timeout:       Total timeout per download (seconds, None = no limit)
    """

    def __init__(
        self,
        download_path: str | Path,
        unpack_path: str | Path,
        session: Optional[aiohttp.ClientSession] = None,
        chunk_size: int = 65536,
        timeout: Optional[float] = None,
    ) -> None:
        self._download_path = Path(download_path)
        self._unpack_path = Path(unpack_path)
        self.session = session
        self.chunk_size = chunk_size if chunk_size > 0 else 65536
        self.timeout = timeout
        self.jobs: Dict[str, JobRecord] = {}
        self._listeners: Dict[str, List[EventCallback]] = {}

    @property
    def download_path(self) -> Path:
        return self._download_path

    @property
    def unpack_path(self) -> Path:
        return self._unpack_path

    # ================================================================
    #  EVENTS
    # ================================================================

    def on(self, event: str, callback: EventCallback) -> None:
        """Register ``callback(event, record)`` for a lifecycle event."""
        if event not in TASK_EVENTS:
            raise ValueError(f"Unknown task event: {event}")
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: EventCallback) -> None:
        callbacks = self._listeners.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _emit(self, event: str, record: JobRecord) -> None:
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(event, record)
            except Exception:
                logger.exception("Listener for %s failed", event)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self.jobs.get(job_id)

    # ================================================================
    #  JOB LIFECYCLE
    # ================================================================

    def submit(self, spec: JobSpec) -> JobHandle:
        if spec.type not in (JobType.DOWNLOAD, JobType.UNPACK):
            raise ValueError(f"Unsupported job type: {spec.type}")

        job_id = uuid.uuid4().hex
        record = JobRecord(job_id=job_id, type=spec.type, source=spec.source)
        self.jobs[job_id] = record
        self._emit("task:created", record)

        completion = asyncio.ensure_future(self._run(record, spec))
        logger.debug("Job %s submitted: %s %s", job_id, spec.type, spec.source)
        return JobHandle(job_id=job_id, spec=spec, completion=completion)

    async def await_completion(self, handle: JobHandle) -> JobResult:
        """
        Wait for a job.

        A job cancelled through ``cancel()`` comes back as
        ``JobResult(cancelled=True)``. Cancellation of the awaiting task
        itself propagates.
        """
        try:
            return await handle.completion
        except asyncio.CancelledError:
            if not handle.completion.cancelled():
                raise
            record = self.jobs.get(handle.job_id)
            if record is not None and record.status not in (JobStatus.CANCELLED, JobStatus.FAILED):
                # Cancelled before _run() got to start
                record.touch(JobStatus.CANCELLED)
                record.error = "cancelled"
                self._emit("task:cancelled", record)
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return JobResult(job_id=handle.job_id, success=False,
                             error="cancelled", cancelled=True)

    def cancel(self, handle: JobHandle) -> bool:
        if handle.completion.done():
            return False
        logger.info("Cancelling job %s", handle.job_id)
        return handle.completion.cancel()

    async def _run(self, record: JobRecord, spec: JobSpec) -> JobResult:
        record.touch(JobStatus.RUNNING)
        self._emit("task:started", record)
        try:
            if spec.type == JobType.DOWNLOAD:
                path = await self._download(record, spec)
            else:
                path = await self._unpack(record, spec)
        except asyncio.CancelledError:
            record.touch(JobStatus.CANCELLED)
            record.error = "cancelled"
            logger.warning("Job %s cancelled", record.job_id)
            self._emit("task:cancelled", record)
            raise
        except Exception as exc:
            record.touch(JobStatus.FAILED)
            record.error = str(exc)
            logger.error("Job %s (%s) failed: %s", record.job_id, spec.type, exc)
            self._emit("task:failed", record)
            return JobResult(job_id=record.job_id, success=False, error=str(exc))

        record.path = str(path)
        record.touch(JobStatus.COMPLETED)
        self._emit("task:completed", record)
        return JobResult(
            job_id=record.job_id, success=True, path=str(path),
            details={"downloaded": record.downloaded, "total": record.total},
        )

    # ================================================================
    #  DOWNLOAD
    # ================================================================

    async def _download(self, record: JobRecord, spec: JobSpec) -> Path:
        file_name = safe_file_name(spec.file_name or urlparse(spec.source).path)
        if not file_name:
            raise ValueError(f"Cannot derive a file name from {spec.source}")

        self._download_path.mkdir(parents=True, exist_ok=True)
        dest = self._download_path / file_name
        start_time = time.time()

        try:
            if self.session is not None:
                await self._stream(self.session, record, spec.source, dest)
            else:
                async with aiohttp.ClientSession() as session:
                    await self._stream(session, record, spec.source, dest)
        except BaseException:
            # Partial files must not outlive a failed or cancelled job
            dest.unlink(missing_ok=True)
            raise

        elapsed = time.time() - start_time
        speed = (record.downloaded / (1024 * 1024)) / max(elapsed, 0.1)
        logger.info(
            "Download complete: %s (%.1f MB, %.1f MB/s)",
            file_name, record.downloaded / (1024 * 1024), speed,
        )
        return dest

    async def _stream(
        self,
        session: aiohttp.ClientSession,
        record: JobRecord,
        url: str,
        dest: Path,
    ) -> None:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with session.get(url, timeout=timeout) as resp:
            if resp.status != 200:
                raise DownloadError(f"HTTP {resp.status} from {url}")

            record.total = int(resp.headers.get("Content-Length", 0) or 0)
            record.downloaded = 0

            with open(dest, "wb") as fh:
                async for chunk in resp.content.iter_chunked(self.chunk_size):
                    fh.write(chunk)
                    record.downloaded += len(chunk)
                    record.touch()
                    self._emit("task:progress", record)

    # ================================================================
    #  UNPACK
    # ================================================================

    async def _unpack(self, record: JobRecord, spec: JobSpec) -> Path:
        archive = Path(spec.source)
        if not archive.is_file():
            raise FileNotFoundError(f"Archive not found: {archive}")

        if spec.destination:
            destination = Path(spec.destination)
        else:
            destination = self._unpack_path / archive_stem(archive.name)

        # Staging lives next to the destination so the final rename is atomic
        destination.parent.mkdir(parents=True, exist_ok=True)
        staging = destination.parent / f"{STAGING_PREFIX}{record.job_id}"

        logger.info("Extracting %s → %s", archive, destination)
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, extract_archive, archive, staging)
        try:
            await future
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; clean up once it stops
            future.add_done_callback(lambda _: shutil.rmtree(staging, ignore_errors=True))
            raise
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        try:
            if destination.exists():
                shutil.rmtree(destination)
            os.replace(staging, destination)
        except OSError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return destination


# ──────────────────────────────────────────────
#  Archive helpers
# ──────────────────────────────────────────────

def safe_file_name(name: Optional[str]) -> Optional[str]:
    """
    Last path component of ``name``, or None when nothing usable is left.

    Names from the registry or the caller are joined onto the download root,
    so directory parts (``/``, ``\\``, ``..``) are stripped.
    """
    if not name:
        return None
    base = posixpath.basename(name.replace("\\", "/")).strip()
    if base in ("", ".", ".."):
        return None
    return base


def archive_stem(name: str) -> str:
    """Strip .tar.gz / .tgz / .zip from an archive file name."""
    lower = name.lower()
    for ext in (".tar.gz", ".tgz", ".zip"):
        if lower.endswith(ext):
            return name[: -len(ext)]
    return name


def extract_archive(archive_path: Path, dest_dir: Path) -> None:
    """Extract a .tar.gz or .zip archive into dest_dir."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    name = archive_path.name.lower()

    if name.endswith(".tar.gz") or name.endswith(".tgz"):
        with tarfile.open(archive_path, "r:gz") as tar:
            tar.extractall(dest_dir, filter="data")
    elif name.endswith(".zip"):
        with zipfile.ZipFile(archive_path, "r") as zf:
            zf.extractall(dest_dir)
    else:
        raise ValueError(f"Unsupported archive format: {archive_path.name}")
