"""
installation_scanner.py
=======================
Discovery of Java runtimes already unpacked on disk.

The scanner walks a root directory, finds ``java`` / ``java.exe`` executables
and infers an InstalledRuntime for each install root from the folder name:

  jdk-21.0.3+9/bin/java                  → 21  (flat layout)
  jdk-17.0.2+8/Contents/Home/bin/java    → 17  (macOS bundle layout)
  8_x86_64_windows/bin/java.exe          → 8   (leading integer token)
  java-11-openjdk/bin/java               → 11  (distro packaging)

Scans never raise: unreadable subtrees are logged and skipped, and a missing
root yields an empty list.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Pattern, Sequence, Tuple

from platform_profile import PlatformProfile

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
#  Folder-name grammar
# ──────────────────────────────────────────────

class VersionRule(NamedTuple):
    """One folder-name pattern; group 1 is the feature version."""

    name: str
    pattern: Pattern[str]


# Evaluated top-down; first match wins
VERSION_RULES: Tuple[VersionRule, ...] = (
    # jdk-8u452+09, jdk-11.0.2, jdk-21.0.3+9, jdk17
    VersionRule("jdk", re.compile(r"jdk-?(\d+)(?:u\d+)?(?:\.[\d.]+)?(?:\+\d+)?", re.IGNORECASE)),
    # 8_x86_64_windows
    VersionRule("leading-integer", re.compile(r"^(\d+)_")),
    # java-11-openjdk, java-17-openjdk-amd64
    VersionRule("java-dash", re.compile(r"java-(\d+)-", re.IGNORECASE)),
    # openjdk-17, openjdk17
    VersionRule("openjdk", re.compile(r"openjdk-?(\d+)", re.IGNORECASE)),
    # 8, 11, 17
    VersionRule("bare", re.compile(r"^(\d+)$")),
)

# (substrings, token); darwin is tested before the "win" substring
_ARCH_TOKENS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("x64", "x86_64", "amd64"), "x86_64"),
    (("x32", "x86"), "x86"),
    (("aarch64", "arm64"), "aarch64"),
    (("arm",), "arm"),
)

_OS_TOKENS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("darwin", "mac"), "mac"),
    (("windows", "win"), "windows"),
    (("linux",), "linux"),
    (("android",), "android"),
)

BIN_DIR = "bin"
MAC_BUNDLE_PARTS = ("Contents", "Home")

# Ancestors checked above the immediate bin parent (Contents/Home/bin)
MAX_EXTRA_LEVELS = 3


def extract_feature_version(
    folder_name: str, rules: Sequence[VersionRule] = VERSION_RULES,
) -> Optional[int]:
    """
    Extract the feature version from a folder name.

    Returns:
        The major version (8, 11, 17, 21 …) or None when no rule matches
    """
    for rule in rules:
        match = rule.pattern.search(folder_name)
        if match:
            return int(match.group(1))
    return None


def _match_token(lower_name: str, table: Tuple[Tuple[Tuple[str, ...], str], ...]) -> Optional[str]:
    for needles, token in table:
        if any(needle in lower_name for needle in needles):
            return token
    return None


def extract_arch_and_os(folder_name: str, profile: PlatformProfile) -> Tuple[str, str]:
    """
    Guess architecture and OS from folder-name substrings.

    Falls back to the profile's on-disk arch and OS family when no token
    is present.
    """
    lower_name = folder_name.lower()
    arch = _match_token(lower_name, _ARCH_TOKENS) or profile.cpu_arch
    os_name = _match_token(lower_name, _OS_TOKENS) or profile.os_family
    return arch, os_name


# ──────────────────────────────────────────────
#  InstalledRuntime
# ──────────────────────────────────────────────

@dataclass
class InstalledRuntime:
    """One discovered local Java installation."""

    feature_version: int       # 8, 11, 17, 21 …
    folder_name: str           # e.g. "jdk-21.0.3+9" or "8_x86_64_windows"
    install_root: str          # absolute path of the version root
    bin_dir: str               # directory holding the executable
    executable_path: str       # full path to java / java.exe
    arch: str                  # x86_64, x86, aarch64, arm
    os: str                    # windows, linux, mac, android
    is_valid: bool = True      # executable exists and is a regular file

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstalledRuntime":
        return cls(
            feature_version=int(data.get("feature_version", 0)),
            folder_name=data.get("folder_name", ""),
            install_root=data.get("install_root", ""),
            bin_dir=data.get("bin_dir", ""),
            executable_path=data.get("executable_path", ""),
            arch=data.get("arch", ""),
            os=data.get("os", ""),
            is_valid=data.get("is_valid", False),
        )


# ──────────────────────────────────────────────
#  InstallationScanner
# ──────────────────────────────────────────────

class InstallationScanner:
    """
    Finds Java installations below a root directory.

    Args:
        profile: PlatformProfile used for executable naming and arch/OS fallback
        rules:   Ordered folder-name rules (defaults to VERSION_RULES)
    """

    def __init__(
        self,
        profile: PlatformProfile,
        rules: Sequence[VersionRule] = VERSION_RULES,
    ) -> None:
        self.profile = profile
        self.rules = tuple(rules)

    # ================================================================
    #  PUBLIC API
    # ================================================================

    def scan(self, root_dir: str | os.PathLike) -> List[InstalledRuntime]:
        """
        Return every installation whose executable exists, newest first.

        Args:
            root_dir: Directory to search recursively

        Returns:
            List of InstalledRuntime (possibly empty, never raises)
        """
        return self._scan(root_dir, lenient=False)

    def scan_lenient(self, root_dir: str | os.PathLike) -> List[InstalledRuntime]:
        """
        Like scan(), but also report version-named folders with no executable.

        Those records carry ``is_valid=False`` so partially-installed or
        corrupted runtimes stay visible.
        """
        return self._scan(root_dir, lenient=True)

    def bin_dir_for(self, install_root: str) -> str:
        """Return the bin directory for an install root (macOS bundle aware)."""
        standard = os.path.join(install_root, BIN_DIR)
        mac_bin = os.path.join(install_root, *MAC_BUNDLE_PARTS, BIN_DIR)
        if not os.path.isdir(standard) and os.path.isdir(mac_bin):
            return mac_bin
        return standard

    # ================================================================
    #  SCAN
    # ================================================================

    def _scan(self, root_dir: str | os.PathLike, lenient: bool) -> List[InstalledRuntime]:
        root = os.path.abspath(os.fspath(root_dir))
        if not os.path.isdir(root):
            logger.warning("Scan root does not exist: %s", root)
            return []

        homes: Dict[str, InstalledRuntime] = {}

        # 1. Executables → install roots
        for exec_path in self._find_executables(root):
            runtime = self._runtime_from_executable(exec_path)
            if runtime is None:
                logger.debug("No version folder above %s, skipped", exec_path)
                continue
            key = os.path.realpath(runtime.install_root)
            if key in homes:
                continue
            homes[key] = runtime

        # 2. Version-named folders without an executable
        if lenient:
            found_roots = [os.path.realpath(r.install_root) for r in homes.values()]
            for directory in self._find_directories(root):
                key = os.path.realpath(directory)
                if key in homes or _overlaps(key, found_roots):
                    continue
                runtime = self._runtime_from_directory(directory)
                if runtime is not None:
                    homes[key] = runtime

        result = sorted(homes.values(), key=lambda r: r.feature_version, reverse=True)
        logger.info(
            "Scan of %s: %d installation(s)%s",
            root, len(result), " (lenient)" if lenient else "",
        )
        return result

    def _runtime_from_executable(self, exec_path: str) -> Optional[InstalledRuntime]:
        bin_dir = os.path.dirname(exec_path)
        candidate = os.path.dirname(bin_dir)
        version = extract_feature_version(os.path.basename(candidate), self.rules)

        # Nested layouts such as Contents/Home/bin
        levels = 0
        while version is None and levels < MAX_EXTRA_LEVELS:
            parent = os.path.dirname(candidate)
            if parent == candidate:
                break
            candidate = parent
            version = extract_feature_version(os.path.basename(candidate), self.rules)
            levels += 1

        if version is None:
            return None

        folder_name = os.path.basename(candidate)
        arch, os_name = extract_arch_and_os(folder_name, self.profile)
        return InstalledRuntime(
            feature_version=version,
            folder_name=folder_name,
            install_root=candidate,
            bin_dir=bin_dir,
            executable_path=exec_path,
            arch=arch,
            os=os_name,
            is_valid=True,
        )

    def _runtime_from_directory(self, directory: str) -> Optional[InstalledRuntime]:
        folder_name = os.path.basename(directory)
        version = extract_feature_version(folder_name, self.rules)
        if version is None:
            return None

        bin_dir = self.bin_dir_for(directory)
        executable = os.path.join(bin_dir, self.profile.executable_name)
        arch, os_name = extract_arch_and_os(folder_name, self.profile)
        return InstalledRuntime(
            feature_version=version,
            folder_name=folder_name,
            install_root=directory,
            bin_dir=bin_dir,
            executable_path=executable,
            arch=arch,
            os=os_name,
            is_valid=os.path.isfile(executable),
        )

    # ================================================================
    #  FILESYSTEM WALK
    # ================================================================

    def _find_executables(self, root: str) -> Iterator[str]:
        """Yield regular files named like the runtime executable."""
        name = self.profile.executable_name
        for dirpath, entries in _walk(root):
            for entry in entries:
                try:
                    if entry.name == name and entry.is_file(follow_symlinks=False):
                        yield os.path.join(dirpath, entry.name)
                except OSError as exc:
                    logger.debug("Cannot stat %s: %s", entry.path, exc)

    def _find_directories(self, root: str) -> Iterator[str]:
        for dirpath, entries in _walk(root):
            for entry in entries:
                if _is_visible_dir(entry):
                    yield os.path.join(dirpath, entry.name)


def _walk(root: str) -> Iterator[Tuple[str, List[os.DirEntry]]]:
    """
    Depth-first walk yielding (dirpath, sorted entries).

    Hidden directories and symlinked directories are not descended into.
    Read errors are logged and the subtree is skipped.
    """
    stack = [root]
    while stack:
        dirpath = stack.pop()
        try:
            with os.scandir(dirpath) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            logger.warning("Error reading directory %s: %s", dirpath, exc)
            continue

        yield dirpath, entries

        subdirs = [e.path for e in entries if _is_visible_dir(e)]
        stack.extend(reversed(subdirs))


def _is_visible_dir(entry: os.DirEntry) -> bool:
    if entry.name.startswith("."):
        return False
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False


def _overlaps(path: str, roots: Sequence[str]) -> bool:
    """True if path is inside, or contains, one of the given install roots."""
    for root in roots:
        if path == root:
            return True
        if path.startswith(root + os.sep) or root.startswith(path + os.sep):
            return True
    return False
