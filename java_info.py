"""
java_info.py
============
Per-version install descriptor.

On Termux, Java is installed with ``pkg`` and lives in the Termux prefix;
everywhere else it is a registry archive unpacked under the unpack root.
``get_java_info`` answers "where would Java N come from and where would it
live" for either case without touching the network.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Union

from command_utils import is_package_installed
from installation_scanner import BIN_DIR, MAC_BUNDLE_PARTS
from platform_profile import PlatformProfile
from release_catalog import ADOPTIUM_API
from runtime_config import PathsConfig

logger = logging.getLogger(__name__)


TERMUX_PACKAGE_PREFIX = "openjdk-"
TERMUX_INSTALL_CMD_PREFIX = "pkg install "
TERMUX_JAVA_PATH = "/data/data/com.termux/files/usr/bin/"

JDK_PREFIX = "jdk-"


@dataclass
class TermuxJavaInfo:
    version: str
    package_name: str
    install_cmd: str
    java_path: str
    installed: bool
    is_termux: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StandardJavaInfo:
    url: str
    filename: str
    version: str
    download_path: str     # absolute path of the archive
    unpack_path: str       # absolute path of <unpack root>/jdk-<version>
    java_bin_path: str     # best guess at the bin directory
    is_termux: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


JavaInfo = Union[TermuxJavaInfo, StandardJavaInfo]


def binary_url(version: str, profile: PlatformProfile, registry_url: str = ADOPTIUM_API) -> str:
    """Registry redirect URL for the latest GA JDK of ``version``."""
    return (
        f"{registry_url.rstrip('/')}/binary/latest/{version}/ga/"
        f"{profile.os_name}/{profile.arch_token}/jdk/hotspot/normal/eclipse?project=jdk"
    )


def get_java_info(
    version: Union[int, str],
    profile: PlatformProfile,
    paths: PathsConfig,
    registry_url: str = ADOPTIUM_API,
) -> JavaInfo:
    """
    Describe how Java ``version`` is obtained on this platform.

    Args:
        version:      Feature version (8, "17" …)
        profile:      PlatformProfile for the run
        paths:        Download / unpack roots
        registry_url: Registry API root used in the download URL

    Raises:
        ValueError: empty version
    """
    version_str = str(version if version is not None else "").strip()
    if not version_str:
        raise ValueError("A Java version is required")

    if profile.is_termux:
        package_name = f"{TERMUX_PACKAGE_PREFIX}{version_str}"
        return TermuxJavaInfo(
            version=version_str,
            package_name=package_name,
            install_cmd=f"{TERMUX_INSTALL_CMD_PREFIX}{package_name}",
            java_path=TERMUX_JAVA_PATH,
            installed=is_package_installed(package_name, "pkg"),
        )

    filename = f"Java-{version_str}-{profile.arch_token}{profile.archive_ext}"
    download_path = os.path.abspath(os.path.join(paths.download_path, filename))
    unpack_path = os.path.abspath(os.path.join(paths.unpack_path, f"{JDK_PREFIX}{version_str}"))

    return StandardJavaInfo(
        url=binary_url(version_str, profile, registry_url),
        filename=filename,
        version=version_str,
        download_path=download_path,
        unpack_path=unpack_path,
        java_bin_path=resolve_bin_path(unpack_path, profile),
    )


def resolve_bin_path(unpack_path: str, profile: PlatformProfile) -> str:
    """
    Locate the bin directory inside an unpacked JDK.

    Archives usually wrap the JDK in a versioned folder (jdk-17.0.2+8), and
    macOS archives add Contents/Home. Falls back to ``<unpack_path>/bin``.
    """
    default = os.path.join(unpack_path, BIN_DIR)
    if os.path.isdir(default) or not os.path.isdir(unpack_path):
        return default

    try:
        entries = sorted(os.listdir(unpack_path))
    except OSError as exc:
        logger.warning("Could not find %s path in %s: %s", BIN_DIR, unpack_path, exc)
        return default
    if not entries:
        return default

    if profile.is_mac:
        mac_home = os.path.join(unpack_path, entries[0], *MAC_BUNDLE_PARTS)
        if os.path.isdir(mac_home):
            return os.path.join(mac_home, BIN_DIR)

    jdk_folder = next((e for e in entries if e.startswith(JDK_PREFIX)), None)
    if jdk_folder:
        return os.path.join(unpack_path, jdk_folder, BIN_DIR)
    return default
