"""
runtime_config.py
=================
Configuration for the Java runtime manager, persisted as config.json.

Layout::

    {
      "paths":       {"download_path": "...", "unpack_path": "..."},
      "registry":    {"url": "...", "request_timeout": 30, "max_concurrency": 4},
      "acquisition": {"keep_archives": false},
      "platform":    {"system": null, "machine": null, "termux": null}
    }

Missing sections and keys fall back to the defaults below.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from release_catalog import ADOPTIUM_API

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = "config.json"


def temp_path(*parts: str) -> str:
    """Path under ``<cwd>/temp``."""
    return os.path.join(os.getcwd(), "temp", *parts)


@dataclass
class PathsConfig:
    download_path: str = field(default_factory=lambda: temp_path("downloads"))
    unpack_path: str = field(default_factory=lambda: temp_path("unpacked"))

    def to_dict(self) -> Dict[str, str]:
        return {"download_path": self.download_path, "unpack_path": self.unpack_path}


@dataclass
class RuntimeConfig:
    """All tunables of a RuntimeManager."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    registry_url: str = ADOPTIUM_API
    request_timeout: float = 30
    max_concurrency: int = 4
    keep_archives: bool = False
    # {"system": ..., "machine": ..., "termux": ...}; None entries auto-detect
    platform_override: Dict[str, Any] = field(default_factory=dict)

    # ================================================================
    #  PATHS
    # ================================================================

    def update_paths(
        self,
        download_path: Optional[str] = None,
        unpack_path: Optional[str] = None,
    ) -> PathsConfig:
        """Override one or both roots; None leaves a root unchanged."""
        if download_path:
            self.paths.download_path = os.fspath(download_path)
        if unpack_path:
            self.paths.unpack_path = os.fspath(unpack_path)
        logger.debug("Paths updated: %s", self.paths.to_dict())
        return self.paths

    def reset_paths(self) -> PathsConfig:
        """Restore the default roots under ``<cwd>/temp``."""
        self.paths = PathsConfig()
        return self.paths

    # ================================================================
    #  SERIALISATION
    # ================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paths": self.paths.to_dict(),
            "registry": {
                "url": self.registry_url,
                "request_timeout": self.request_timeout,
                "max_concurrency": self.max_concurrency,
            },
            "acquisition": {"keep_archives": self.keep_archives},
            "platform": {
                "system": self.platform_override.get("system"),
                "machine": self.platform_override.get("machine"),
                "termux": self.platform_override.get("termux"),
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeConfig":
        defaults = cls()
        paths = data.get("paths") or {}
        registry = data.get("registry") or {}
        acquisition = data.get("acquisition") or {}
        platform_section = data.get("platform") or {}

        return cls(
            paths=PathsConfig(
                download_path=paths.get("download_path") or defaults.paths.download_path,
                unpack_path=paths.get("unpack_path") or defaults.paths.unpack_path,
            ),
            registry_url=registry.get("url") or defaults.registry_url,
            request_timeout=float(registry.get("request_timeout", defaults.request_timeout)),
            max_concurrency=int(registry.get("max_concurrency", defaults.max_concurrency)),
            keep_archives=bool(acquisition.get("keep_archives", defaults.keep_archives)),
            platform_override={
                k: v for k, v in platform_section.items()
                if k in ("system", "machine", "termux") and v is not None
            },
        )


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> RuntimeConfig:
    """Load config.json; defaults are returned when it is missing or unreadable."""
    path = Path(path)
    if not path.exists():
        logger.info("Config file not found, using defaults")
        return RuntimeConfig()

    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError("top level is not an object")
        config = RuntimeConfig.from_dict(data)
    except (OSError, ValueError, TypeError) as exc:
        logger.error("Failed to load config: %s", exc)
        return RuntimeConfig()

    logger.debug("Config loaded from %s", path)
    return config


def save_config(config: RuntimeConfig, path: str | Path = DEFAULT_CONFIG_PATH) -> bool:
    """Persist ``config`` as JSON. Returns False when the write failed."""
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(config.to_dict(), fh, indent=2)
    except OSError as exc:
        logger.error("Failed to save config: %s", exc)
        return False
    logger.debug("Config saved to %s", path)
    return True
