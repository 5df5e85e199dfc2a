"""Install pipeline state machine.

A pipeline drives one install request through

    PENDING -> SEARCHING_UPLOAD -> DOWNLOADING -> EXTRACTING -> CONFIGURING -> RUNNING

Stages are entered strictly in this order; none is skipped and none is
entered twice. A failing stage halts the pipeline where it is: ``stage``
keeps pointing at it and ``error`` holds the failure, which is also raised
to the caller. There is no dedicated failed state.

The cave is only written to the store once configuration succeeds, so a
failed download or extraction leaves its recorded upload and build intact.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

import structlog

from cavekeeper.core.catalog import CatalogClient
from cavekeeper.core.config import AppConfig
from cavekeeper.core.events import Dispatcher
from cavekeeper.core.session import Session
from cavekeeper.core.store import EntityStore
from cavekeeper.core.types import Cave, Upload
from cavekeeper.install.configurator import Configurator
from cavekeeper.install.errors import ConfigurationError, ExtractionError, PipelineError
from cavekeeper.install.extractor import Extractor
from cavekeeper.install.launcher import Launcher
from cavekeeper.install.progress import ProgressChannel
from cavekeeper.install.request import InstallRequest, download_path, patch_path
from cavekeeper.install.transport import Transport
from cavekeeper.update.upload_selector import find_uploads

logger = structlog.get_logger()


class InstallStage(StrEnum):
    """Pipeline stages, in order."""
    PENDING = "pending"
    SEARCHING_UPLOAD = "searching_upload"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    CONFIGURING = "configuring"
    RUNNING = "running"


STAGE_ORDER: list[InstallStage] = list(InstallStage)


def install_folder_name(game_id: int, title: str) -> str:
    """Folder name of a fresh install, e.g. ``42-space-rocks``."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return f"{game_id}-{slug}" if slug else str(game_id)


class InstallPipeline:
    """Drive one install request to a running game.

    Args:
        request: What to install
        store: Entity store; receives the created or updated cave
        session: Current session
        catalog: Catalog client, resolves download URLs
        dispatcher: Sink for notifications
        config: Application configuration
        transport: Downloads archives and patches
        extractor: Extracts archives into the install folder
        configurator: Finds executables in the install folder
        launcher: Starts the first executable
        progress: Optional channel receiving download progress
    """

    def __init__(
        self,
        request: InstallRequest,
        *,
        store: EntityStore,
        session: Session,
        catalog: CatalogClient,
        dispatcher: Dispatcher,
        config: AppConfig,
        transport: Transport,
        extractor: Extractor,
        configurator: Configurator,
        launcher: Launcher,
        progress: ProgressChannel | None = None,
    ) -> None:
        self.request = request
        self.store = store
        self.session = session
        self.catalog = catalog
        self.dispatcher = dispatcher
        self.config = config
        self.transport = transport
        self.extractor = extractor
        self.configurator = configurator
        self.launcher = launcher
        self.progress = progress

        self.stage = InstallStage.PENDING
        self.history: list[InstallStage] = [InstallStage.PENDING]
        self.error: Exception | None = None
        self.upload: Upload | None = request.upload
        self.download_key_id = request.download_key_id
        self.cave: Cave | None = None
        self._log = logger.bind(game_id=request.game.id, reason=request.reason.value)

    @property
    def title(self) -> str:
        return self.request.game.title

    def _advance(self, stage: InstallStage) -> None:
        if STAGE_ORDER.index(stage) != STAGE_ORDER.index(self.stage) + 1:
            raise RuntimeError(f"Illegal transition {self.stage} -> {stage}")
        self.stage = stage
        self.history.append(stage)
        self._log.debug("install_stage", stage=stage.value)

    async def run(self) -> Cave | None:
        """Run every stage.

        Returns:
            The installed cave once the game is running, or None when no
            upload applies to this platform

        Raises:
            PipelineError: If a stage fails
            CatalogError: If a download URL cannot be resolved
        """
        if self.stage != InstallStage.PENDING:
            raise RuntimeError("Install pipeline already ran")

        try:
            self._advance(InstallStage.SEARCHING_UPLOAD)
            upload = await self._search_upload()
            if upload is None:
                return None

            self._advance(InstallStage.DOWNLOADING)
            archives = await self._download(upload)

            self._advance(InstallStage.EXTRACTING)
            install_dir = self._install_dir()
            await self._extract(archives, install_dir)

            self._advance(InstallStage.CONFIGURING)
            executables = await self._configure(install_dir)
            self.cave = self._record_cave(upload, install_dir, executables)

            self._advance(InstallStage.RUNNING)
            await self.launcher.launch(executables[0], self.request.game.id)
        except Exception as e:
            self.error = e
            self._log.error("install_failed", stage=self.stage.value, error=str(e))
            raise

        self._log.info("install_complete", cave_id=self.cave.id, upload_id=upload.id)
        return self.cave

    async def _search_upload(self) -> Upload | None:
        if self.upload is not None:
            return self.upload

        platform = self.config.install.platform
        selection = await find_uploads(
            self.catalog, self.store, self.session, self.request.game, platform
        )
        if not selection.uploads:
            self.dispatcher.notify(f"No uploads of {self.title} are available for {platform.value}")
            self._log.info("install_no_uploads", platform=platform.value)
            return None

        self.upload = selection.uploads[0]
        if self.download_key_id is None:
            self.download_key_id = selection.download_key_id
        return self.upload

    def _downloads(self, upload: Upload) -> list[tuple[Path, Callable[[], Awaitable[str]]]]:
        key_id = self.download_key_id
        path = self.request.upgrade_path
        if self.request.incremental and path is not None:
            return [
                (
                    patch_path(self.config.downloads_dir, upload, step.id),
                    lambda build_id=step.id: self.catalog.resolve_patch_url(upload.id, build_id, key_id),
                )
                for step in path.steps
            ]
        dest = self.request.dest_path or download_path(self.config.downloads_dir, upload)
        return [(dest, lambda: self.catalog.resolve_download_url(upload.id, key_id))]

    async def _download(self, upload: Upload) -> list[Path]:
        downloads = self._downloads(upload)
        count = len(downloads)
        try:
            for index, (dest, resolve_url) in enumerate(downloads):
                if dest.exists():
                    self._log.info("download_skipped", dest=str(dest), reason="already downloaded")
                    continue
                url = await resolve_url()
                async for fraction in self.transport.download(url, dest):
                    if self.progress is not None:
                        self.progress.publish((index + fraction) / count)
        except Exception as e:
            if self.progress is not None:
                self.progress.close(error=str(e))
            if isinstance(e, PipelineError):
                e.stage, e.title = self.stage.value, self.title
            self.dispatcher.notify(f"Could not download {self.title}: {e}")
            raise

        if self.progress is not None:
            self.progress.close()
        self.dispatcher.notify(f"{self.title} finished downloading")
        return [dest for dest, _ in downloads]

    def _install_dir(self) -> Path:
        if self.request.cave_id is not None:
            cave = self.store.get_entity("caves", self.request.cave_id)
            if cave is not None and cave.install_folder:
                return Path(cave.install_folder)
        return self.config.apps_dir / install_folder_name(self.request.game.id, self.title)

    async def _extract(self, archives: list[Path], install_dir: Path) -> None:
        try:
            for archive in archives:
                await self.extractor.extract(archive, install_dir)
        except Exception as e:
            self.dispatcher.notify(f"Could not extract {self.title}: {e}")
            if isinstance(e, PipelineError):
                e.stage, e.title = self.stage.value, self.title
                raise
            raise ExtractionError(str(e), stage=self.stage.value, title=self.title) from e

    async def _configure(self, install_dir: Path) -> list[Path]:
        try:
            executables = await self.configurator.configure(install_dir)
            if not executables:
                raise ConfigurationError(f"No executables found in {install_dir}")
        except Exception as e:
            self.dispatcher.notify(f"Could not configure {self.title}: {e}")
            if isinstance(e, PipelineError):
                e.stage, e.title = self.stage.value, self.title
                raise
            raise ConfigurationError(str(e), stage=self.stage.value, title=self.title) from e
        return executables

    def _record_cave(self, upload: Upload, install_dir: Path, executables: list[Path]) -> Cave:
        path = self.request.upgrade_path
        build_id = path.target_build_id if self.request.incremental and path else upload.build_id
        fields = {
            "upload_id": upload.id,
            "build_id": build_id,
            "installed_at": datetime.now(UTC),
            "launchable": True,
            "executables": [str(p) for p in executables],
        }
        if self.download_key_id is not None:
            fields["download_key_id"] = self.download_key_id

        cave_id = self.request.cave_id
        if cave_id is not None and self.store.get_entity("caves", cave_id) is not None:
            return self.store.update_cave(cave_id, **fields)

        cave = Cave(
            id=cave_id or uuid.uuid4().hex,
            game_id=self.request.game.id,
            installed_by=self.session.me,
            install_folder=str(install_dir),
            **fields,
        )
        self.store.save_entity("caves", cave)
        return cave
