"""Discover runnable entry points in an install folder."""

from __future__ import annotations

import asyncio
import os
import stat
from pathlib import Path
from typing import Protocol

import structlog

from cavekeeper.core.types import Platform
from cavekeeper.install.errors import ConfigurationError

logger = structlog.get_logger()

LINUX_SUFFIXES = {".sh", ".x86_64", ".x86", ".appimage"}
IGNORED_DIRS = {"__MACOSX", ".git"}


class Configurator(Protocol):
    """Find the executables of an installed game, best candidate first."""

    async def configure(self, install_dir: Path) -> list[Path]:
        ...


def _is_executable(path: Path, platform: Platform) -> bool:
    if platform == Platform.WINDOWS:
        return path.suffix.lower() == ".exe"
    if platform == Platform.MACOS:
        return path.suffix.lower() == ".app" and path.is_dir()
    if not path.is_file():
        return False
    if path.suffix.lower() in LINUX_SUFFIXES:
        return True
    return bool(path.stat().st_mode & stat.S_IXUSR)


def find_executables(install_dir: Path, platform: Platform) -> list[Path]:
    """Executables under ``install_dir``, shallowest first, then by name.

    ``.app`` bundles are not descended into.
    """
    found: list[Path] = []
    for root, dirs, files in os.walk(install_dir):
        root_path = Path(root)
        dirs[:] = [d for d in sorted(dirs) if d not in IGNORED_DIRS]
        if platform == Platform.MACOS:
            bundles = [d for d in dirs if d.lower().endswith(".app")]
            found.extend(root_path / d for d in bundles)
            dirs[:] = [d for d in dirs if d not in bundles]
            continue
        found.extend(
            root_path / name for name in sorted(files) if _is_executable(root_path / name, platform)
        )

    return sorted(found, key=lambda p: (len(p.relative_to(install_dir).parts), p.name.lower()))


def mark_executable(path: Path) -> None:
    """Add execute permission to a script or binary picked by its suffix."""
    mode = path.stat().st_mode
    if not mode & stat.S_IXUSR:
        path.chmod(mode | 0o755)
        logger.debug("made_executable", path=str(path))


class ExecutableConfigurator:
    """Configurator scanning the install folder for platform executables."""

    def __init__(self, platform: Platform | None = None) -> None:
        self.platform = platform or Platform.current()

    async def configure(self, install_dir: Path) -> list[Path]:
        """Find executables in ``install_dir``.

        Raises:
            ConfigurationError: If the folder is missing or holds no executable
        """
        if not install_dir.is_dir():
            raise ConfigurationError(f"Install folder not found: {install_dir}")

        executables = await asyncio.to_thread(find_executables, install_dir, self.platform)
        if not executables:
            raise ConfigurationError(f"No executables found in {install_dir}")

        if self.platform == Platform.LINUX:
            for path in executables:
                mark_executable(path)

        logger.debug(
            "executables_found",
            install_dir=str(install_dir),
            count=len(executables),
            first=str(executables[0]),
        )
        return executables
