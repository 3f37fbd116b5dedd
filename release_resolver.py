"""
release_resolver.py
===================
Cross-reference of a wanted feature version against local installations.

``find_local`` scans a root directory and returns the first installation
that satisfies the requested filters, applied in this order:

  1. feature version equality (always)
  2. validity                 (require_valid)
  3. architecture equality    (require_same_arch, vs. profile.cpu_arch)
  4. OS equality              (require_same_os, vs. profile.os_family)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Optional

from installation_scanner import InstallationScanner, InstalledRuntime
from platform_profile import PlatformProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalLookupOptions:
    """Independently toggleable filters for find_local()."""

    require_same_arch: bool = True
    require_same_os: bool = True
    require_valid: bool = True

    @classmethod
    def lenient(cls) -> "LocalLookupOptions":
        """All filters off: first record with the right version wins."""
        return cls(require_same_arch=False, require_same_os=False, require_valid=False)


def select_local(
    installations: Iterable[InstalledRuntime],
    version: int,
    profile: PlatformProfile,
    options: Optional[LocalLookupOptions] = None,
) -> Optional[InstalledRuntime]:
    """
    Pick the first installation matching version and filters.

    Args:
        installations: Records in scan order
        version:       Feature version wanted (e.g. 17)
        profile:       Platform to compare arch / OS against
        options:       Filters; strict defaults when None

    Returns:
        The matching InstalledRuntime, or None
    """
    options = options or LocalLookupOptions()
    for runtime in installations:
        if runtime.feature_version != version:
            continue
        if options.require_valid and not runtime.is_valid:
            continue
        if options.require_same_arch and runtime.arch != profile.cpu_arch:
            continue
        if options.require_same_os and runtime.os != profile.os_family:
            continue
        return runtime
    return None


class ReleaseResolver:
    """
    Resolves feature versions to local installations.

    Args:
        profile: PlatformProfile shared with the rest of the run
        scanner: InstallationScanner (built from profile if None)
    """

    def __init__(
        self,
        profile: PlatformProfile,
        scanner: Optional[InstallationScanner] = None,
    ) -> None:
        self.profile = profile
        self.scanner = scanner or InstallationScanner(profile)

    def find_local(
        self,
        root_dir: str | os.PathLike,
        version: int,
        options: Optional[LocalLookupOptions] = None,
    ) -> Optional[InstalledRuntime]:
        """
        Find a local installation of ``version`` below ``root_dir``.

        Invalid records are only considered when ``require_valid`` is off,
        in which case the lenient scan is used.
        """
        options = options or LocalLookupOptions()
        if options.require_valid:
            installations = self.scanner.scan(root_dir)
        else:
            installations = self.scanner.scan_lenient(root_dir)

        found = select_local(installations, version, self.profile, options)
        if found is None:
            logger.debug("Java %d not found under %s (%s)", version, root_dir, options)
        else:
            logger.debug("Java %d found at %s", version, found.install_root)
        return found
