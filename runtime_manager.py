"""
runtime_manager.py
==================
Facade wiring one PlatformProfile through every component.

  - Scan / find installations under the unpack root (or any directory)
  - Fetch the remote catalog joined with local installations
  - Describe how a version is obtained (registry archive vs. Termux pkg)
  - Prerequisite checks
  - Install a version: catalog lookup → download → verify → unpack
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from acquisition import AcquisitionPipeline, check_disk_space
from command_utils import get_linux_distro_info, get_package_manager
from installation_scanner import InstallationScanner, InstalledRuntime
from java_info import JavaInfo, get_java_info
from platform_profile import PlatformProfile, resolve
from release_catalog import (
    CatalogClient,
    RegistryUnavailableError,
    RemoteRelease,
    ResolvedCatalog,
    filter_releases,
)
from release_resolver import LocalLookupOptions, ReleaseResolver
from results import Result
from runtime_config import RuntimeConfig
from task_manager import JobRunner, TaskManager

logger = logging.getLogger(__name__)


class RuntimeManager:
    """
    Orchestrates Java runtime discovery and acquisition.

    Args:
        config:  RuntimeConfig (defaults if None)
        profile: PlatformProfile; resolved from the config override if None
        session: Shared aiohttp session for registry and download calls
        runner:  JobRunner; a TaskManager on the configured roots if None
    """

    MIN_DISK_SPACE_MB = 500

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        profile: Optional[PlatformProfile] = None,
        session: Optional[aiohttp.ClientSession] = None,
        runner: Optional[JobRunner] = None,
    ) -> None:
        self.config = config or RuntimeConfig()
        self.profile = profile or resolve(**self.config.platform_override)
        self.session = session

        self.scanner = InstallationScanner(self.profile)
        self.resolver = ReleaseResolver(self.profile, self.scanner)
        self.tasks = runner or TaskManager(
            self.config.paths.download_path,
            self.config.paths.unpack_path,
            session=session,
        )
        self.catalog_client = CatalogClient(
            self.profile,
            install_root=self.config.paths.unpack_path,
            base_url=self.config.registry_url,
            max_concurrency=self.config.max_concurrency,
            timeout=self.config.request_timeout,
            resolver=self.resolver,
        )
        self.pipeline = AcquisitionPipeline(
            self.tasks,
            self.profile,
            keep_archives=self.config.keep_archives,
            resolver=self.resolver,
        )
        self._catalog: Optional[ResolvedCatalog] = None

    @property
    def download_path(self) -> Path:
        return Path(self.config.paths.download_path)

    @property
    def unpack_path(self) -> Path:
        return Path(self.config.paths.unpack_path)

    # ================================================================
    #  LOCAL
    # ================================================================

    def scan(self, root: Optional[str | os.PathLike] = None) -> List[InstalledRuntime]:
        """Valid installations under ``root`` (the unpack root by default)."""
        return self.scanner.scan(root or self.unpack_path)

    def scan_lenient(self, root: Optional[str | os.PathLike] = None) -> List[InstalledRuntime]:
        """Like scan(), including ``is_valid=False`` records."""
        return self.scanner.scan_lenient(root or self.unpack_path)

    def find_local(
        self,
        version: int,
        options: Optional[LocalLookupOptions] = None,
        root: Optional[str | os.PathLike] = None,
    ) -> Optional[InstalledRuntime]:
        return self.resolver.find_local(root or self.unpack_path, version, options)

    # ================================================================
    #  REMOTE
    # ================================================================

    async def get_catalog(self, refresh: bool = False) -> ResolvedCatalog:
        """
        Fetch (or return the cached) catalog.

        Raises:
            RegistryUnavailableError: the registry could not be queried
        """
        if self._catalog is None or refresh:
            self._catalog = await self.catalog_client.fetch_catalog(self.session)
        return self._catalog

    async def get_release(self, version: int) -> Optional[RemoteRelease]:
        """
        The latest release of ``version`` for this platform, or None.

        Uses the cached catalog when there is one, otherwise asks the registry
        for that single version.
        """
        if self._catalog is not None:
            return filter_releases(self._catalog.releases, version)

        if self.session is not None:
            return await self.catalog_client.fetch_latest_binary(version, self.session)
        async with aiohttp.ClientSession() as session:
            return await self.catalog_client.fetch_latest_binary(version, session)

    def java_info(self, version: int | str) -> JavaInfo:
        return get_java_info(version, self.profile, self.config.paths, self.config.registry_url)

    # ================================================================
    #  PREREQUISITES
    # ================================================================

    def check_prerequisites(self) -> Result:
        """
        Check that installs can run on this host.

        Checks:
          1. Download root writable
          2. Unpack root writable
          3. Sufficient disk space
          4. Package manager (Termux only)

        Returns:
            Result with details: {"checks": {name: {ok, message}}}
        """
        checks: Dict[str, Dict[str, Any]] = {}
        all_ok = True

        # 1-2. Roots
        for name, path in (("download_path", self.download_path), ("unpack_path", self.unpack_path)):
            try:
                path.mkdir(parents=True, exist_ok=True)
                writable = os.access(path, os.W_OK)
            except OSError as exc:
                checks[name] = {"ok": False, "message": f"Cannot create {path}: {exc}"}
                all_ok = False
                continue
            if writable:
                checks[name] = {"ok": True, "message": f"Writable: {path}"}
            else:
                checks[name] = {"ok": False, "message": f"Not writable: {path}"}
                all_ok = False

        # 3. Disk space
        space = check_disk_space(self.download_path, self.MIN_DISK_SPACE_MB * 1024 * 1024)
        if space.success:
            checks["disk_space"] = {"ok": True, "message": space.message}
        else:
            checks["disk_space"] = {
                "ok": False,
                "message": f"Low disk space: {space.error} (need {self.MIN_DISK_SPACE_MB} MB)",
            }
            all_ok = False

        # 4. Package manager
        if self.profile.is_termux:
            manager = get_package_manager()
            if manager == "pkg":
                checks["package_manager"] = {"ok": True, "message": "pkg available"}
            else:
                checks["package_manager"] = {
                    "ok": False,
                    "message": "pkg not found. Termux installs need the pkg tool.",
                }
                all_ok = False

        distro = get_linux_distro_info() if self.profile.os_family == "linux" else None

        if all_ok:
            return Result.ok(
                "All prerequisites met",
                checks=checks, platform=self.profile.to_dict(), distro=distro,
            )
        failed = [k for k, v in checks.items() if not v["ok"]]
        return Result.fail(
            f"Prerequisites not met: {', '.join(failed)}",
            checks=checks, platform=self.profile.to_dict(), distro=distro,
        )

    # ================================================================
    #  INSTALL
    # ================================================================

    async def install(
        self,
        version: int,
        file_name: Optional[str] = None,
        force: bool = False,
    ) -> Result:
        """
        Install Java ``version`` under the unpack root.

        Args:
            version:   Feature version (8, 17, 21 …)
            file_name: Artifact name in the download root
            force:     Reinstall even if a valid installation exists

        Returns:
            Result; ``details["outcome"]`` holds the AcquisitionOutcome dict
        """
        if self.profile.is_termux:
            info = self.java_info(version)
            return Result.fail(
                f"Java {version} is installed with the package manager on Termux",
                error=getattr(info, "install_cmd", None),
                info=info.to_dict(),
            )

        if not force:
            existing = self.find_local(version)
            if existing is not None:
                logger.info("Java %d already installed at %s", version, existing.install_root)
                return Result.ok(
                    f"Java {version} already installed",
                    installation=existing.to_dict(),
                )

        try:
            release = await self.get_release(version)
        except RegistryUnavailableError as exc:
            return Result.fail("Registry unavailable", error=str(exc))
        if release is None:
            return Result.fail(
                f"No Java {version} release for {self.profile.os_name}/{self.profile.arch_token}",
            )

        outcome = await self.pipeline.acquire(release, file_name)
        if outcome.success:
            self._catalog = None
            return Result.ok(
                f"Java {version} installed at {outcome.destination}",
                outcome=outcome.to_dict(),
            )
        return Result.fail(
            f"Java {version} install failed at {outcome.stage}",
            error=outcome.verdict.reason,
            outcome=outcome.to_dict(),
        )
