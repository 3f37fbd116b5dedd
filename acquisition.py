"""
acquisition.py
==============
Download → verify → unpack pipeline for a RemoteRelease.

Steps of ``AcquisitionPipeline.acquire``:
  1. Preflight      free disk space on the download volume
  2. Download       delegated to the JobRunner, awaited to completion
  3. Verify         exact size, then checksum (case-insensitive hex)
  4. Unpack         delegated to the JobRunner, only after a passing verdict
  5. Confirm        re-scan the destination for the new installation

Any failure deletes the artifact before the outcome is returned, so a
corrupt or partial archive never survives a call. Extraction targets the
unpack root; the download root only holds the artifact while the call runs.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import psutil

from installation_scanner import InstalledRuntime
from platform_profile import PlatformProfile
from release_catalog import RemoteRelease
from release_resolver import LocalLookupOptions, ReleaseResolver
from results import Result
from task_manager import JobRunner, safe_file_name

logger = logging.getLogger(__name__)


SIZE_MISMATCH = "size mismatch"
CHECKSUM_MISMATCH = "checksum mismatch"


class AcquisitionError(RuntimeError):
    """An acquisition did not produce an installation."""

    def __init__(self, message: str, outcome: Optional["AcquisitionOutcome"] = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class IntegrityVerificationError(AcquisitionError):
    """The downloaded artifact failed its size or checksum check."""


# ──────────────────────────────────────────────
#  Verification
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Verdict:
    """Pass/fail with a human-readable reason."""

    passed: bool
    reason: str = ""

    @classmethod
    def ok(cls) -> "Verdict":
        return cls(passed=True, reason="verified")

    @classmethod
    def fail(cls, reason: str) -> "Verdict":
        return cls(passed=False, reason=reason)


def file_checksum(path: str | os.PathLike, algorithm: str = "sha256", blocksize: int = 65536) -> str:
    """Hex digest of the full file contents."""
    digest = hashlib.new(algorithm)
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(blocksize), b""):
            digest.update(block)
    return digest.hexdigest()


def verify_artifact(
    path: str | os.PathLike,
    expected_size: Optional[int],
    expected_checksum: Optional[str] = None,
    algorithm: str = "sha256",
    delete_on_failure: bool = True,
) -> Verdict:
    """
    Verify a downloaded artifact.

    The size check runs first and short-circuits: on a size mismatch the file
    is never hashed.

    Args:
        path:              Artifact on disk
        expected_size:     Exact size in bytes (None skips the check)
        expected_checksum: Hex digest (None / empty skips the check)
        algorithm:         hashlib algorithm the registry published
        delete_on_failure: Remove the artifact when the verdict fails

    Returns:
        Verdict; ``reason`` starts with "size mismatch" or "checksum mismatch"
    """
    path = Path(path)
    verdict = _check(path, expected_size, expected_checksum, algorithm)
    if not verdict.passed:
        logger.warning("Verification failed for %s: %s", path.name, verdict.reason)
        if delete_on_failure:
            logger.warning("Deleting corrupt file %s", path)
            _discard(path)
    return verdict


def _check(
    path: Path,
    expected_size: Optional[int],
    expected_checksum: Optional[str],
    algorithm: str,
) -> Verdict:
    try:
        actual_size = path.stat().st_size
    except OSError as exc:
        return Verdict.fail(f"artifact missing: {exc}")

    if expected_size is not None and actual_size != expected_size:
        return Verdict.fail(
            f"{SIZE_MISMATCH}: expected {expected_size} bytes, got {actual_size}"
        )

    if expected_checksum:
        try:
            actual = file_checksum(path, algorithm)
        except (OSError, ValueError) as exc:
            return Verdict.fail(f"{CHECKSUM_MISMATCH}: could not hash file ({exc})")
        if actual.lower() != expected_checksum.strip().lower():
            return Verdict.fail(
                f"{CHECKSUM_MISMATCH}: expected {expected_checksum}, got {actual}"
            )

    return Verdict.ok()


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.error("Could not remove %s: %s", path, exc)


def check_disk_space(path: str | os.PathLike, required_bytes: int) -> Result:
    """
    Check free space on the volume holding ``path``.

    The nearest existing ancestor is measured, so the directory does not
    have to exist yet.
    """
    anchor = Path(path).resolve()
    while not anchor.exists() and anchor.parent != anchor:
        anchor = anchor.parent

    try:
        free = psutil.disk_usage(str(anchor)).free
    except OSError as exc:
        return Result.fail("Could not check disk space", error=str(exc))

    free_mb = free / (1024 * 1024)
    need_mb = required_bytes / (1024 * 1024)
    if free >= required_bytes:
        return Result.ok(f"Free disk: {free_mb:.0f} MB", free=free, required=required_bytes)
    return Result.fail(
        "insufficient disk space",
        error=f"{free_mb:.0f} MB free, need {need_mb:.0f} MB",
        free=free,
        required=required_bytes,
    )


# ──────────────────────────────────────────────
#  Outcome
# ──────────────────────────────────────────────

@dataclass
class AcquisitionOutcome:
    """Result of one download + verify + unpack cycle."""

    release: RemoteRelease
    artifact_path: str
    verdict: Verdict
    stage: str = "done"                          # preflight | download | verify | unpack | done
    destination: Optional[str] = None            # only set when everything passed
    installation: Optional[InstalledRuntime] = None

    @property
    def success(self) -> bool:
        return self.verdict.passed and self.destination is not None

    def raise_for_verdict(self) -> None:
        """Raise IntegrityVerificationError / AcquisitionError on failure."""
        if self.success:
            return
        if self.stage == "verify":
            raise IntegrityVerificationError(self.verdict.reason, outcome=self)
        raise AcquisitionError(self.verdict.reason, outcome=self)

    def to_dict(self) -> Dict[str, object]:
        return {
            "release": self.release.to_dict(),
            "artifact_path": self.artifact_path,
            "passed": self.verdict.passed,
            "reason": self.verdict.reason,
            "stage": self.stage,
            "destination": self.destination,
            "installation": self.installation.to_dict() if self.installation else None,
        }


# ──────────────────────────────────────────────
#  Pipeline
# ──────────────────────────────────────────────

class AcquisitionPipeline:
    """
    Acquires releases through a JobRunner.

    Args:
        runner:        JobRunner performing the byte-level work
        profile:       PlatformProfile shared with the rest of the run
        keep_archives: Keep the verified artifact after extraction
        check_space:   Run the disk-space preflight
        resolver:      ReleaseResolver used to confirm the installation
    """

    # Archive + extracted tree + headroom
    DISK_SPACE_FACTOR = 3

    def __init__(
        self,
        runner: JobRunner,
        profile: PlatformProfile,
        keep_archives: bool = False,
        check_space: bool = True,
        resolver: Optional[ReleaseResolver] = None,
    ) -> None:
        self.runner = runner
        self.profile = profile
        self.keep_archives = keep_archives
        self.check_space = check_space
        self.resolver = resolver or ReleaseResolver(profile)
        # One acquisition per feature version at a time within this process
        self._locks: Dict[int, asyncio.Lock] = {}

    def destination_for(self, release: RemoteRelease) -> Path:
        """Unpack directory for a release: ``<unpack root>/jdk-<feature>``."""
        return self.runner.unpack_path / f"jdk-{release.feature_version}"

    def default_file_name(self, release: RemoteRelease) -> str:
        return release.file_name or (
            f"Java-{release.feature_version}-{release.arch}{self.profile.archive_ext}"
        )

    async def acquire(
        self,
        release: RemoteRelease,
        destination_file_name: Optional[str] = None,
    ) -> AcquisitionOutcome:
        """
        Download, verify and unpack ``release``.

        Args:
            release:               Release picked from the catalog
            destination_file_name: Artifact name in the download root

        Returns:
            AcquisitionOutcome (check ``success`` or call ``raise_for_verdict``)

        Raises:
            ValueError:             ``destination_file_name`` has no usable name
            asyncio.CancelledError: the calling task was cancelled; the
                                    artifact is removed first
        """
        if destination_file_name:
            file_name = safe_file_name(destination_file_name)
            if file_name is None:
                raise ValueError(f"Invalid artifact file name: {destination_file_name!r}")
        else:
            file_name = self.default_file_name(release)

        lock = self._locks.setdefault(release.feature_version, asyncio.Lock())
        async with lock:
            artifact = self.runner.download_path / file_name
            try:
                return await self._acquire(release, file_name, artifact)
            except asyncio.CancelledError:
                logger.warning("Acquisition of Java %d cancelled", release.feature_version)
                _discard(artifact)
                raise

    async def _acquire(
        self, release: RemoteRelease, file_name: str, artifact: Path,
    ) -> AcquisitionOutcome:
        version = release.feature_version

        def _failed(stage: str, reason: str) -> AcquisitionOutcome:
            logger.error("Acquisition of Java %d failed at %s: %s", version, stage, reason)
            return AcquisitionOutcome(
                release=release, artifact_path=str(artifact),
                verdict=Verdict.fail(reason), stage=stage,
            )

        # ── 1. Preflight ──
        if self.check_space and release.size_bytes > 0:
            space = check_disk_space(
                self.runner.download_path, release.size_bytes * self.DISK_SPACE_FACTOR,
            )
            if not space.success:
                return _failed("preflight", f"{space.message}: {space.error}")

        # ── 2. Download ──
        logger.info(
            "Downloading Java %d (%s): %s → %s",
            version, release.release_name, release.download_url, file_name,
        )
        handle = self.runner.download(release.download_url, file_name)
        result = await self.runner.await_completion(handle)
        if not result.success:
            _discard(artifact)
            what = "download cancelled" if result.cancelled else "download failed"
            return _failed("download", f"{what}: {result.error}")
        if result.path:
            artifact = Path(result.path)

        # ── 3. Verify ──
        verdict = await asyncio.to_thread(
            verify_artifact,
            artifact,
            release.size_bytes or None,
            release.checksum or None,
            release.checksum_algorithm,
        )
        if not verdict.passed:
            logger.error("File verification failed for %s: %s", file_name, verdict.reason)
            return AcquisitionOutcome(
                release=release, artifact_path=str(artifact),
                verdict=verdict, stage="verify",
            )

        # ── 4. Unpack ──
        destination = self.destination_for(release)
        handle = self.runner.unpack(artifact, destination)
        result = await self.runner.await_completion(handle)
        if not result.success:
            _discard(artifact)
            return _failed("unpack", f"extraction failed: {result.error}")

        if not self.keep_archives:
            _discard(artifact)

        # ── 5. Confirm ──
        installation = await asyncio.to_thread(
            self.resolver.find_local,
            destination,
            version,
            LocalLookupOptions(require_same_arch=False, require_same_os=False),
        )
        if installation is None:
            logger.warning("Java %d unpacked to %s but no executable was found", version, destination)

        logger.info("Java %d installed at %s", version, destination)
        return AcquisitionOutcome(
            release=release,
            artifact_path=str(artifact),
            verdict=verdict,
            stage="done",
            destination=str(destination),
            installation=installation,
        )
