#!/usr/bin/env python3
"""
main.py – Java Runtime Manager CLI
==================================
Entry point: discover local Java runtimes, browse the Adoptium catalog and
install a feature version.

  java-runtime-manager platform
  java-runtime-manager scan [--root DIR] [--lenient]
  java-runtime-manager find 17 [--any-arch] [--any-os] [--allow-invalid]
  java-runtime-manager catalog
  java-runtime-manager info 21
  java-runtime-manager install 21 [--file-name NAME]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from installation_scanner import InstalledRuntime
from platform_profile import UnsupportedPlatformError
from release_catalog import RegistryUnavailableError
from release_resolver import LocalLookupOptions
from runtime_config import load_config
from runtime_manager import RuntimeManager

logger = logging.getLogger("java_runtime_manager")

LOG_DIR = Path("logs")

EXIT_FAILURE = 1
EXIT_UNSUPPORTED_PLATFORM = 2
EXIT_REGISTRY_UNAVAILABLE = 3


# ──────────────────────────────────────────────
#  Logging
# ──────────────────────────────────────────────

def setup_logging(verbose: bool = False) -> None:
    LOG_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "java_runtime_manager.log", encoding="utf-8"),
            logging.StreamHandler(sys.stdout),
        ],
    )


# ──────────────────────────────────────────────
#  CLI
# ──────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="java-runtime-manager",
        description="☕ Java Runtime Manager – discover and install Java runtimes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("--config", default="config.json", help="Path to config.json")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    p.add_argument("--download-dir", default=None, help="Download root override")
    p.add_argument("--unpack-dir", default=None, help="Unpack root override")
    p.add_argument("--os", dest="system", default=None, help="OS override (linux, windows, mac)")
    p.add_argument("--arch", dest="machine", default=None, help="CPU override (x86_64, arm64 …)")
    p.add_argument("--termux", action="store_true", default=None, help="Force Termux mode")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("platform", help="Show the resolved platform profile")

    scan = sub.add_parser("scan", help="List local installations")
    scan.add_argument("--root", default=None, help="Directory to scan (default: unpack root)")
    scan.add_argument("--lenient", action="store_true", help="Include broken installations")

    find = sub.add_parser("find", help="Find a local installation of VERSION")
    find.add_argument("version", type=int)
    find.add_argument("--root", default=None)
    find.add_argument("--any-arch", action="store_true")
    find.add_argument("--any-os", action="store_true")
    find.add_argument("--allow-invalid", action="store_true")

    sub.add_parser("catalog", help="Show remote releases and local installations")

    info = sub.add_parser("info", help="Describe how VERSION is obtained here")
    info.add_argument("version")

    install = sub.add_parser("install", help="Download, verify and unpack VERSION")
    install.add_argument("version", type=int)
    install.add_argument("--file-name", default=None, help="Artifact name in the download root")
    install.add_argument("--force", action="store_true", help="Reinstall if present")

    return p


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def build_manager(args: argparse.Namespace) -> RuntimeManager:
    config = load_config(args.config)
    config.update_paths(download_path=args.download_dir, unpack_path=args.unpack_dir)
    for key in ("system", "machine", "termux"):
        value = getattr(args, key, None)
        if value is not None:
            config.platform_override[key] = value
    return RuntimeManager(config)


# ──────────────────────────────────────────────
#  Rendering
# ──────────────────────────────────────────────

def _runtime_table(title: str, runtimes: List[InstalledRuntime]) -> Table:
    t = Table(title=title)
    t.add_column("Version", style="cyan", justify="right")
    t.add_column("Folder", style="white")
    t.add_column("Arch")
    t.add_column("OS")
    t.add_column("Valid")
    t.add_column("Executable", style="dim")
    for r in runtimes:
        t.add_row(
            str(r.feature_version), r.folder_name, r.arch, r.os,
            "✅" if r.is_valid else "❌", r.executable_path,
        )
    return t


def _print_dict(console: Console, title: str, data: Any) -> None:
    t = Table(title=title)
    t.add_column("Key", style="cyan")
    t.add_column("Value", style="white")
    for k, v in data.items():
        t.add_row(k, v if isinstance(v, str) else json.dumps(v, default=str))
    console.print(t)


# ──────────────────────────────────────────────
#  Commands
# ──────────────────────────────────────────────

async def run_command(args: argparse.Namespace, console: Console) -> int:
    mgr = build_manager(args)

    if args.command == "platform":
        _print_dict(console, "Platform", mgr.profile.to_dict())
        return 0

    if args.command == "scan":
        runtimes = mgr.scan_lenient(args.root) if args.lenient else mgr.scan(args.root)
        console.print(_runtime_table(f"Installations under {args.root or mgr.unpack_path}", runtimes))
        return 0

    if args.command == "find":
        options = LocalLookupOptions(
            require_same_arch=not args.any_arch,
            require_same_os=not args.any_os,
            require_valid=not args.allow_invalid,
        )
        found = mgr.find_local(args.version, options, args.root)
        if found is None:
            console.print(f"[yellow]Java {args.version} not found[/]")
            return EXIT_FAILURE
        _print_dict(console, f"Java {args.version}", found.to_dict())
        return 0

    if args.command == "catalog":
        catalog = await mgr.get_catalog()
        t = Table(title=f"Java for {mgr.profile.os_name}/{mgr.profile.arch_token}")
        t.add_column("Version", style="cyan", justify="right")
        t.add_column("LTS")
        t.add_column("Release")
        t.add_column("Size", justify="right")
        t.add_column("Installed")
        for status in catalog.version_status():
            release = status.release
            t.add_row(
                str(status.feature_version),
                "✅" if status.is_lts else "",
                release.release_name if release else "[dim]n/a[/]",
                f"{release.size_bytes / (1024 * 1024):.1f} MB" if release else "",
                status.installation.install_root if status.installation else "",
            )
        console.print(t)
        return 0

    if args.command == "info":
        _print_dict(console, f"Java {args.version}", mgr.java_info(args.version).to_dict())
        return 0

    if args.command == "install":
        prereq = mgr.check_prerequisites()
        for name, check in prereq.details.get("checks", {}).items():
            mark = "[green]✅[/]" if check["ok"] else "[red]❌[/]"
            console.print(f"{mark} {name}: {check['message']}")

        result = await mgr.install(args.version, file_name=args.file_name, force=args.force)
        if result.success:
            console.print(f"[bold green]{result.message}[/]")
            return 0
        console.print(f"[bold red]{result.message}[/]: {result.error or ''}")
        return EXIT_FAILURE

    return EXIT_FAILURE


# ──────────────────────────────────────────────
#  Entry Point
# ──────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    console = Console()

    try:
        return asyncio.run(run_command(args, console))
    except UnsupportedPlatformError as exc:
        logger.error("%s", exc)
        console.print(f"[bold red]{exc}[/]")
        return EXIT_UNSUPPORTED_PLATFORM
    except RegistryUnavailableError as exc:
        logger.error("%s", exc)
        console.print(f"[bold red]{exc}[/]")
        return EXIT_REGISTRY_UNAVAILABLE


if __name__ == "__main__":
    sys.exit(main())
