"""
command_utils.py
================
Thin helpers around external commands and system package managers.

Used on hosts where Java comes from the system package manager rather than
the registry (Termux ``pkg`` in particular).
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


# Lookup order: Linux, macOS, Windows, Android/Termux
PACKAGE_MANAGERS = ("apt", "dnf", "yum", "pacman", "brew", "winget", "choco", "pkg")

# manager → argv that exits 0 when the package is installed
_CHECK_COMMANDS: Dict[str, Callable[[str], List[str]]] = {
    "apt": lambda name: ["dpkg", "-s", name],
    "dnf": lambda name: ["rpm", "-q", name],
    "yum": lambda name: ["rpm", "-q", name],
    "pacman": lambda name: ["pacman", "-Q", name],
    "brew": lambda name: ["brew", "list", "--versions", name],
    "winget": lambda name: ["winget", "list", "--name", name],
    "choco": lambda name: ["choco", "list", "--local-only", "--exact", name],
    "pkg": lambda name: ["pkg", "list-installed", name],
}

CHOCO_INSTALLED_MARKER = "1 packages installed."

OS_RELEASE_PATH = "/etc/os-release"


class CommandError(RuntimeError):
    """An external command could not be run or exited non-zero."""


def run_command(command: Sequence[str], timeout: float = 30) -> str:
    """
    Run a command and return its stripped stdout.

    Raises:
        CommandError: the executable is missing, timed out or exited non-zero
    """
    try:
        result = subprocess.run(
            list(command), capture_output=True, text=True, timeout=timeout,
        )
    except (FileNotFoundError, PermissionError, subprocess.TimeoutExpired) as exc:
        raise CommandError(f"Command failed: {' '.join(command)}: {exc}") from exc

    if result.returncode != 0:
        raise CommandError(
            f"Command failed: {' '.join(command)} (exit {result.returncode}): "
            f"{result.stderr.strip()}"
        )
    return result.stdout.strip()


def is_command_available(name: str) -> bool:
    """True if ``name`` resolves on PATH."""
    return shutil.which(name) is not None


def get_package_manager() -> Optional[str]:
    """Return the first available package manager, or None."""
    for manager in PACKAGE_MANAGERS:
        if is_command_available(manager):
            return manager
    return None


def is_package_installed(package_name: str, manager: Optional[str] = None) -> bool:
    """
    Ask the package manager whether ``package_name`` is installed.

    Args:
        package_name: Package to look for (e.g. ``openjdk-17``)
        manager:      Package manager to use; detected when None

    Returns:
        False when no manager is available or the check fails
    """
    manager = manager or get_package_manager()
    if manager is None:
        return False

    build = _CHECK_COMMANDS.get(manager)
    if build is None:
        logger.warning("Package check not implemented for: %s", manager)
        return False

    try:
        output = run_command(build(package_name))
    except CommandError as exc:
        logger.debug("%s check for %s: %s", manager, package_name, exc)
        return False

    if manager in ("winget", "pkg"):
        return package_name in output
    if manager == "choco":
        return CHOCO_INSTALLED_MARKER in output
    return True


def get_linux_distro_info(path: str = OS_RELEASE_PATH) -> Optional[Dict[str, str]]:
    """Read ``ID`` / ``VERSION_ID`` from os-release, or None."""
    info: Dict[str, str] = {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            for line in fh:
                key, _, value = line.strip().partition("=")
                if key == "ID":
                    info["id"] = value.strip('"')
                elif key == "VERSION_ID":
                    info["version_id"] = value.strip('"')
    except OSError:
        return None

    if "id" in info and "version_id" in info:
        return info
    return None
