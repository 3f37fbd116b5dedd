"""
platform_profile.py
===================
Host platform resolution for Java runtime discovery and downloads.

Resolved once per run and handed to every other component:
  - OS family          windows | linux | mac | android
  - Registry OS        Adoptium ``os`` query value (android maps to linux)
  - Registry arch      Adoptium ``architecture`` value (x64, x32, aarch64, arm)
  - On-disk CPU arch   folder-name vocabulary (x86_64, x86, aarch64, arm)
  - Archive / executable conventions

Two independent architecture tables are kept: vendor folder names and the
registry query use different tokens for the same hardware.

Cross-platform notes:
  Windows  – .zip archives, java.exe
  Linux    – .tar.gz archives, java
  macOS    – .tar.gz archives, java under Contents/Home/bin
  Termux   – Android userland; runtimes come from ``pkg`` not the registry
"""

from __future__ import annotations

import logging
import os
import platform
import sys
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────

TERMUX_PATH_CHECK = "/data/data/com.termux"

ARCHIVE_ZIP = ".zip"
ARCHIVE_TAR_GZ = ".tar.gz"

# platform.system() / sys.platform / CLI value → OS family
_OS_FAMILY_MAP: Dict[str, str] = {
    "windows": "windows",
    "win32": "windows",
    "linux": "linux",
    "darwin": "mac",
    "mac": "mac",
    "macos": "mac",
    "android": "android",
}

# OS family → Adoptium ``os`` identifier
_REGISTRY_OS_MAP: Dict[str, str] = {
    "windows": "windows",
    "linux": "linux",
    "mac": "mac",
    "android": "linux",
}

# platform.machine() → Adoptium ``architecture`` identifier
_REGISTRY_ARCH_MAP: Dict[str, str] = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "x86": "x32",
    "i386": "x32",
    "i686": "x32",
    "x32": "x32",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv7l": "arm",
    "armv6l": "arm",
    "arm": "arm",
}

# platform.machine() → token used in vendor folder names on disk
_DISK_ARCH_MAP: Dict[str, str] = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "x86": "x86",
    "i386": "x86",
    "i686": "x86",
    "x32": "x86",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv7l": "arm",
    "armv6l": "arm",
    "arm": "arm",
}


class UnsupportedPlatformError(RuntimeError):
    """No mapping exists for the host OS or CPU architecture."""


# ──────────────────────────────────────────────
#  PlatformProfile
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class PlatformProfile:
    """Immutable description of the platform runtimes are resolved for."""

    os_family: str                 # windows | linux | mac | android
    os_name: str                   # registry OS (windows | linux | mac)
    arch_token: str                # registry arch (x64, x32, aarch64, arm)
    cpu_arch: str                  # on-disk arch (x86_64, x86, aarch64, arm)
    archive_ext: str               # .zip | .tar.gz
    executable_suffix: str = ""    # .exe on Windows
    is_termux: bool = False

    @property
    def executable_name(self) -> str:
        """Return the runtime executable file name (``java`` / ``java.exe``)."""
        return f"java{self.executable_suffix}"

    @property
    def is_windows(self) -> bool:
        return self.os_family == "windows"

    @property
    def is_mac(self) -> bool:
        return self.os_family == "mac"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["executable_name"] = self.executable_name
        return data


# ──────────────────────────────────────────────
#  Detection
# ──────────────────────────────────────────────

def detect_termux() -> bool:
    """Detect if running inside Termux on Android."""
    return sys.platform == "android" or os.path.exists(TERMUX_PATH_CHECK)


def registry_arch_for(machine: str) -> Optional[str]:
    """Map a machine identifier to the registry architecture token."""
    return _REGISTRY_ARCH_MAP.get(machine.strip().lower())


def disk_arch_for(machine: str) -> Optional[str]:
    """Map a machine identifier to the on-disk folder-name architecture token."""
    return _DISK_ARCH_MAP.get(machine.strip().lower())


def resolve(
    system: Optional[str] = None,
    machine: Optional[str] = None,
    termux: Optional[bool] = None,
) -> PlatformProfile:
    """
    Resolve the PlatformProfile for the host, or for an explicit override.

    Args:
        system:  OS override (``Windows``, ``Linux``, ``Darwin``, ``mac``,
                 ``android`` …). Auto-detected via ``platform.system()`` if None.
        machine: CPU override (``x86_64``, ``AMD64``, ``arm64`` …).
                 Auto-detected via ``platform.machine()`` if None.
        termux:  Force Termux detection on/off. Auto-detected if None.

    Raises:
        UnsupportedPlatformError: OS or architecture has no mapping entry.
    """
    system = system or platform.system()
    machine = machine or platform.machine()
    if termux is None:
        termux = detect_termux()

    os_family = "android" if termux else _OS_FAMILY_MAP.get(system.strip().lower())
    if os_family is None:
        raise UnsupportedPlatformError(f"Unsupported platform: {system}")

    arch_token = registry_arch_for(machine)
    cpu_arch = disk_arch_for(machine)
    if arch_token is None or cpu_arch is None:
        raise UnsupportedPlatformError(f"Unsupported architecture: {machine}")

    is_windows = os_family == "windows"
    profile = PlatformProfile(
        os_family=os_family,
        os_name=_REGISTRY_OS_MAP[os_family],
        arch_token=arch_token,
        cpu_arch=cpu_arch,
        archive_ext=ARCHIVE_ZIP if is_windows else ARCHIVE_TAR_GZ,
        executable_suffix=".exe" if is_windows else "",
        is_termux=bool(termux),
    )
    logger.debug(
        "Platform resolved: system=%s machine=%s → %s/%s (disk %s)",
        system, machine, profile.os_name, profile.arch_token, profile.cpu_arch,
    )
    return profile
