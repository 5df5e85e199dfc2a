"""Install requests queued for the install pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from cavekeeper.core.types import Game, Upload, UpgradePath

TAR_SUFFIXES = (".tar.gz", ".tar.bz2", ".tar.xz")


class InstallReason(StrEnum):
    """Why an install was queued."""
    INSTALL = "install"
    UPDATE = "update"


@dataclass
class InstallRequest:
    """One queued acquisition of an upload.

    Attributes:
        game: Game being installed
        upload: Upload to fetch, or None to let the pipeline pick one
        dest_path: Where the archive is downloaded to, derived from the
            upload when None
        reason: Manual install or update
        cave_id: Cave being updated, None for a fresh install
        download_key_id: Download key granting access, if any
        incremental: Apply ``upgrade_path`` instead of a full download
        upgrade_path: Ordered patch chain for incremental updates
        total_size: Expected bytes to transfer
        hand_picked: The user chose this upload among several
    """

    game: Game
    upload: Upload | None = None
    dest_path: Path | None = None
    reason: InstallReason = InstallReason.INSTALL
    cave_id: str | None = None
    download_key_id: int | None = None
    incremental: bool = False
    upgrade_path: UpgradePath | None = None
    total_size: int | None = None
    hand_picked: bool = False

    @property
    def target_build_id(self) -> int | None:
        """Build the cave ends up at once this request completes."""
        if self.upgrade_path is not None and self.upgrade_path.target_build_id is not None:
            return self.upgrade_path.target_build_id
        return self.upload.build_id if self.upload else None

    @property
    def dedup_key(self) -> tuple[int, int | None, int | None, bool]:
        """Requests with equal keys describe the same work."""
        upload_id = self.upload.id if self.upload else None
        return (self.game.id, upload_id, self.target_build_id, self.incremental)


def download_path(downloads_dir: Path, upload: Upload) -> Path:
    """Where the archive of an upload is downloaded to."""
    name = upload.filename.lower()
    suffix = next((ext for ext in TAR_SUFFIXES if name.endswith(ext)), Path(name).suffix)
    return downloads_dir / f"{upload.id}{suffix}"


def patch_path(downloads_dir: Path, upload: Upload, build_id: int) -> Path:
    """Where the patch reaching ``build_id`` of an upload is downloaded to."""
    return downloads_dir / f"{upload.id}-{build_id}.patch"
