"""
release_catalog.py
==================
Client for the Eclipse Adoptium release registry.

Endpoints used (https://api.adoptium.net/v3):
  - GET /info/available_releases
        → {"available_releases": [...], "most_recent_lts": N}
  - GET /assets/latest/{feature}/hotspot?os=…&architecture=…&image_type=jdk&project=jdk
        → [{"release_name": …, "binary": {"package": {name, link, checksum, size}}}]

``fetch_catalog`` asks for the available feature versions, then fans out one
"latest GA binary" request per version (bounded by ``max_concurrency``).
A version with no binary for the current os/arch is dropped silently.
The result also carries the installations found under the install root, so
one call answers both "what can I get" and "what do I have".
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import aiohttp

from installation_scanner import InstalledRuntime
from platform_profile import PlatformProfile
from release_resolver import LocalLookupOptions, ReleaseResolver, select_local
from task_manager import safe_file_name

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────

ADOPTIUM_API = "https://api.adoptium.net/v3"
DEFAULT_CHECKSUM_ALGORITHM = "sha256"


class RegistryUnavailableError(RuntimeError):
    """The available-releases endpoint could not be reached or answered badly."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


# ──────────────────────────────────────────────
#  Data Structures
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class RemoteRelease:
    """One downloadable binary for the current platform."""

    feature_version: int           # 21
    release_name: str              # "jdk-21.0.3+9"
    download_url: str              # direct link to the archive
    checksum: str                  # hex digest published by the registry
    size_bytes: int                # archive size in bytes
    arch: str                      # registry arch, e.g. "x64"
    os: str                        # registry os, e.g. "linux"
    package_name: str = ""         # archive file name from the registry
    checksum_algorithm: str = DEFAULT_CHECKSUM_ALGORITHM

    @property
    def file_name(self) -> str:
        """
        Archive file name, falling back to the last URL path segment.

        Directory parts are stripped; empty when neither yields a name.
        """
        return (
            safe_file_name(self.package_name)
            or safe_file_name(urlparse(self.download_url).path)
            or ""
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteRelease":
        return cls(
            feature_version=int(data.get("feature_version", 0)),
            release_name=data.get("release_name", ""),
            download_url=data.get("download_url", ""),
            checksum=data.get("checksum", ""),
            size_bytes=int(data.get("size_bytes", 0)),
            arch=data.get("arch", ""),
            os=data.get("os", ""),
            package_name=data.get("package_name", ""),
            checksum_algorithm=data.get("checksum_algorithm", DEFAULT_CHECKSUM_ALGORITHM),
        )


@dataclass
class VersionStatus:
    """Remote/local state of a single feature version."""

    feature_version: int
    is_lts: bool = False
    release: Optional[RemoteRelease] = None
    installation: Optional[InstalledRuntime] = None

    @property
    def available(self) -> bool:
        return self.release is not None

    @property
    def installed(self) -> bool:
        return self.installation is not None


@dataclass
class ResolvedCatalog:
    """Remote catalog joined with local installations."""

    available: List[int] = field(default_factory=list)
    long_term_support: List[int] = field(default_factory=list)
    releases: List[RemoteRelease] = field(default_factory=list)
    installed: List[InstalledRuntime] = field(default_factory=list)

    @property
    def installed_versions(self) -> List[int]:
        """Distinct feature versions present in ``installed``."""
        seen: List[int] = []
        for runtime in self.installed:
            if runtime.feature_version not in seen:
                seen.append(runtime.feature_version)
        return seen

    def version_status(self) -> List[VersionStatus]:
        """Per feature version: available remotely, installed locally, or both."""
        versions = set(self.available)
        versions.update(r.feature_version for r in self.releases)
        versions.update(self.installed_versions)

        statuses: List[VersionStatus] = []
        for version in sorted(versions):
            statuses.append(VersionStatus(
                feature_version=version,
                is_lts=version in self.long_term_support,
                release=filter_releases(self.releases, version),
                installation=next(
                    (r for r in self.installed if r.feature_version == version), None,
                ),
            ))
        return statuses

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": list(self.available),
            "long_term_support": list(self.long_term_support),
            "releases": [r.to_dict() for r in self.releases],
            "installed": [i.to_dict() for i in self.installed],
            "installed_versions": self.installed_versions,
        }


def filter_releases(
    releases: Sequence[RemoteRelease], version: int,
) -> Optional[RemoteRelease]:
    """
    Return the release for ``version``, or None.

    A version missing for the current platform is a normal outcome, so this
    never raises.
    """
    return next((r for r in releases if r.feature_version == version), None)


# ──────────────────────────────────────────────
#  Catalog Client
# ──────────────────────────────────────────────

class CatalogClient:
    """
    Queries the Adoptium registry for the current platform.

    Args:
        profile:         PlatformProfile shared with the rest of the run
        install_root:    Directory scanned to fill ``installed``
        base_url:        Registry API root
        max_concurrency: Upper bound on parallel per-version requests
        timeout:         Total timeout per request (seconds)
        resolver:        ReleaseResolver (built from profile if None)
    """

    HEADERS = {"User-Agent": "JavaRuntimeManager/1.0"}

    def __init__(
        self,
        profile: PlatformProfile,
        install_root: str | os.PathLike,
        base_url: str = ADOPTIUM_API,
        max_concurrency: int = 4,
        timeout: float = 30,
        resolver: Optional[ReleaseResolver] = None,
    ) -> None:
        self.profile = profile
        self.install_root = install_root
        self.base_url = base_url.rstrip("/")
        self.max_concurrency = max(1, max_concurrency)
        self.timeout = timeout
        self.resolver = resolver or ReleaseResolver(profile)

    # ================================================================
    #  URLS
    # ================================================================

    def available_releases_url(self) -> str:
        return f"{self.base_url}/info/available_releases"

    def latest_binary_url(self, feature: int) -> str:
        return f"{self.base_url}/assets/latest/{feature}/hotspot"

    def latest_binary_params(self) -> Dict[str, str]:
        return {
            "os": self.profile.os_name,
            "architecture": self.profile.arch_token,
            "image_type": "jdk",
            "project": "jdk",
        }

    # ================================================================
    #  REGISTRY CALLS
    # ================================================================

    async def fetch_available(
        self, session: aiohttp.ClientSession,
    ) -> Tuple[List[int], Optional[int]]:
        """
        Fetch the feature versions the registry knows about.

        Returns:
            (sorted distinct versions, most recent LTS or None)

        Raises:
            RegistryUnavailableError: non-200 status, network error or bad payload
        """
        url = self.available_releases_url()
        logger.info("Querying Adoptium API: %s", url)
        try:
            async with session.get(
                url, headers=self.HEADERS,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    raise RegistryUnavailableError(
                        f"Adoptium API returned {resp.status} for available releases",
                        status=resp.status,
                    )
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise RegistryUnavailableError(f"Adoptium API unreachable: {exc}") from exc

        if not isinstance(data, dict):
            raise RegistryUnavailableError("Malformed available_releases payload")

        try:
            available = sorted({int(v) for v in data.get("available_releases") or []})
            lts = data.get("most_recent_lts")
            most_recent_lts = int(lts) if lts is not None else None
        except (TypeError, ValueError) as exc:
            raise RegistryUnavailableError(f"Malformed available_releases payload: {exc}") from exc

        return available, most_recent_lts

    async def fetch_latest_binary(
        self, feature: int, session: aiohttp.ClientSession,
    ) -> Optional[RemoteRelease]:
        """
        Fetch the latest GA binary of ``feature`` for this platform.

        Returns:
            RemoteRelease, or None when nothing is published for os/arch
        """
        url = self.latest_binary_url(feature)
        try:
            async with session.get(
                url, params=self.latest_binary_params(), headers=self.HEADERS,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    logger.debug("No binary for Java %d (HTTP %d)", feature, resp.status)
                    return None
                payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("Binary lookup for Java %d failed: %s", feature, exc)
            return None

        if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
            logger.debug(
                "No releases found for Java %d on %s/%s",
                feature, self.profile.os_name, self.profile.arch_token,
            )
            return None

        first = payload[0]
        package = (first.get("binary") or {}).get("package") or {}
        link = package.get("link")
        if not link:
            logger.debug("No download link for Java %d", feature)
            return None

        return RemoteRelease(
            feature_version=feature,
            release_name=first.get("release_name", ""),
            download_url=link,
            checksum=package.get("checksum") or "",
            size_bytes=int(package.get("size") or 0),
            arch=self.profile.arch_token,
            os=self.profile.os_name,
            package_name=package.get("name") or "",
        )

    async def fetch_releases(
        self, features: Sequence[int], session: aiohttp.ClientSession,
    ) -> List[RemoteRelease]:
        """Fetch the latest binary of every feature, keeping input order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(feature: int) -> Optional[RemoteRelease]:
            async with semaphore:
                return await self.fetch_latest_binary(feature, session)

        results = await asyncio.gather(*(_bounded(f) for f in features))
        return [r for r in results if r is not None]

    # ================================================================
    #  CATALOG
    # ================================================================

    async def fetch_catalog(
        self, session: Optional[aiohttp.ClientSession] = None,
    ) -> ResolvedCatalog:
        """
        Build the ResolvedCatalog for the current platform.

        Args:
            session: aiohttp session to reuse; a private one is opened if None

        Raises:
            RegistryUnavailableError: the available-releases call failed
        """
        if session is None:
            async with aiohttp.ClientSession() as own_session:
                return await self.fetch_catalog(own_session)

        available, most_recent_lts = await self.fetch_available(session)
        releases = await self.fetch_releases(available, session)

        known = list(available)
        known.extend(r.feature_version for r in releases if r.feature_version not in known)
        installed = await self.find_installed(known)

        catalog = ResolvedCatalog(
            available=available,
            long_term_support=[
                v for v in available
                if most_recent_lts is not None and v <= most_recent_lts
            ],
            releases=releases,
            installed=installed,
        )
        logger.info(
            "Catalog: %d available, %d for %s/%s, %d installed",
            len(catalog.available), len(catalog.releases),
            self.profile.os_name, self.profile.arch_token, len(catalog.installed),
        )
        return catalog

    async def find_installed(
        self,
        versions: Sequence[int],
        options: Optional[LocalLookupOptions] = None,
    ) -> List[InstalledRuntime]:
        """Look up each version under the install root (one scan, off-loop)."""
        scanner = self.resolver.scanner
        options = options or LocalLookupOptions()
        scan = scanner.scan if options.require_valid else scanner.scan_lenient
        installations = await asyncio.to_thread(scan, self.install_root)

        found: List[InstalledRuntime] = []
        for version in versions:
            match = select_local(installations, version, self.profile, options)
            if match is not None:
                found.append(match)
        return found
