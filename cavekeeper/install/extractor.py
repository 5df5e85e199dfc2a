"""Archive extraction for downloaded uploads and patches."""

from __future__ import annotations

import asyncio
import os
import tarfile
import zipfile
from pathlib import Path
from typing import Protocol

import structlog

from cavekeeper.install.errors import ExtractionError

logger = structlog.get_logger()


class Extractor(Protocol):
    """Extract an archive into a directory."""

    async def extract(self, archive_path: Path, dest_dir: Path) -> None:
        ...


def _unix_mode(info: zipfile.ZipInfo) -> int:
    return (info.external_attr >> 16) & 0o777


def extract_zip(archive_path: Path, dest_dir: Path) -> None:
    """Extract a zip archive, keeping the Unix permission bits of its members."""
    with zipfile.ZipFile(archive_path) as zf:
        for info in zf.infolist():
            target = zf.extract(info, dest_dir)
            mode = _unix_mode(info)
            if mode and not info.is_dir():
                os.chmod(target, mode)


def extract_tar(archive_path: Path, dest_dir: Path) -> None:
    """Extract a tar archive, refusing members that would land outside ``dest_dir``."""
    with tarfile.open(archive_path) as tf:
        tf.extractall(dest_dir, filter="data")


EXTRACTORS = {"zip": extract_zip, "tar": extract_tar}


def detect_format(archive_path: Path) -> str:
    """Archive format of a file, sniffed from its content.

    Raises:
        ExtractionError: If the file is neither a zip nor a tar archive
    """
    if zipfile.is_zipfile(archive_path):
        return "zip"
    if tarfile.is_tarfile(archive_path):
        return "tar"
    raise ExtractionError(f"Unsupported archive format: {archive_path.name}")


class ArchiveExtractor:
    """Extract zip and tar archives (compressed or not).

    Extraction overlays the destination: existing files are overwritten,
    files absent from the archive are kept. Patches rely on this to be
    applied one after the other on top of an install folder.

    Zip members keep their Unix permission bits. Tar members that would
    escape the destination are rejected with :class:`ExtractionError`.
    """

    async def extract(self, archive_path: Path, dest_dir: Path) -> None:
        """Extract ``archive_path`` into ``dest_dir``.

        Raises:
            ExtractionError: If the archive is missing, unsupported or corrupt
        """
        if not archive_path.exists():
            raise ExtractionError(f"Archive not found: {archive_path}")

        fmt = detect_format(archive_path)
        dest_dir.mkdir(parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(EXTRACTORS[fmt], archive_path, dest_dir)
        except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
            raise ExtractionError(f"Could not extract {archive_path.name}: {e}") from e

        logger.debug("archive_extracted", archive=str(archive_path), dest=str(dest_dir), format=fmt)
