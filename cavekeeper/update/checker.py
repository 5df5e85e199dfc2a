"""Per-cave update check.

One check decides whether an installed cave can be upgraded and, when it
can, queues the work for the install pipeline:

- guards skip caves that belong to another user, are not launchable, have
  no game, or whose game is currently running;
- a cave tracking incremental builds is upgraded through a patch chain as
  soon as its upload moves to another build;
- otherwise uploads updated after the install time are candidates: one
  candidate is queued as a full download, several are offered to the user.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

import structlog

from cavekeeper.core.catalog import (
    CatalogClient,
    CatalogError,
    HostUnreachableError,
    NetworkError,
    fetch_game_lazily,
    is_key_ownership_error,
)
from cavekeeper.core.config import AppConfig
from cavekeeper.core.events import (
    ChoiceOption,
    ChoicePrompt,
    Dispatcher,
    UpdateCheckFinished,
    UpdateCheckStarted,
    UpgradeFound,
)
from cavekeeper.core.session import Session
from cavekeeper.core.store import EntityStore
from cavekeeper.core.types import Cave, Game, Upload
from cavekeeper.core.utils import format_size, format_time_ago, update_cutoff
from cavekeeper.install.launcher import LAUNCH_TASK
from cavekeeper.install.request import InstallReason, InstallRequest, download_path
from cavekeeper.update.upgrade_path import UpgradePathError, UpgradePathResolver
from cavekeeper.update.upload_selector import UploadSelection, find_uploads

logger = structlog.get_logger()


class CheckOutcome(StrEnum):
    """How an update check ended."""
    SKIPPED = "skipped"
    NO_UPGRADE = "no_upgrade"
    UPGRADED = "upgraded"
    PROMPTED = "prompted"
    FAILED = "failed"


class ErrorKind(StrEnum):
    """Why an update check failed."""
    NETWORK = "network"
    CATALOG = "catalog"
    NO_UPLOADS = "no_uploads"
    UPGRADE_PATH = "upgrade_path"
    UNKNOWN = "unknown"


@dataclass
class UpdateCheckResult:
    """Result of one update check. Never persisted.

    Attributes:
        outcome: How the check ended
        game: Game the cave belongs to, when it could be fetched
        error: Error behind a FAILED outcome
        error_kind: Classification of ``error``
        skip_reason: Why a SKIPPED check did not look for updates
        request: Install request queued by an UPGRADED check
    """

    outcome: CheckOutcome
    game: Game | None = None
    error: Exception | None = None
    error_kind: ErrorKind | None = None
    skip_reason: str | None = None
    request: InstallRequest | None = None

    @property
    def has_upgrade(self) -> bool:
        """True if the cave has an upgrade, queued or offered to the user."""
        return self.outcome in (CheckOutcome.UPGRADED, CheckOutcome.PROMPTED)

    @classmethod
    def skipped(cls, reason: str, game: Game | None = None) -> UpdateCheckResult:
        return cls(CheckOutcome.SKIPPED, game=game, skip_reason=reason)

    @classmethod
    def failed(
        cls, kind: ErrorKind, error: Exception, game: Game | None = None
    ) -> UpdateCheckResult:
        return cls(CheckOutcome.FAILED, game=game, error=error, error_kind=kind)


def classify_error(error: Exception) -> ErrorKind:
    """Map an exception raised during a check to an error kind."""
    if isinstance(error, NetworkError):
        return ErrorKind.NETWORK
    if isinstance(error, UpgradePathError):
        return ErrorKind.UPGRADE_PATH
    if isinstance(error, CatalogError):
        return ErrorKind.CATALOG
    return ErrorKind.UNKNOWN


class InstallSubmitter(Protocol):
    """Anything install requests can be queued on."""

    async def submit(self, request: InstallRequest) -> str:
        ...


class UpdateChecker:
    """Check installed caves for newer uploads or builds.

    Args:
        store: Entity store holding caves, games and download keys
        session: Current session (user and running tasks)
        catalog: Catalog client
        resolver: Upgrade path resolver for incremental builds
        install_queue: Where upgrade install requests are queued
        dispatcher: Sink for produced signals and prompts
        config: Application configuration
    """

    def __init__(
        self,
        store: EntityStore,
        session: Session,
        catalog: CatalogClient,
        resolver: UpgradePathResolver,
        install_queue: InstallSubmitter,
        dispatcher: Dispatcher,
        config: AppConfig,
    ) -> None:
        self.store = store
        self.session = session
        self.catalog = catalog
        self.resolver = resolver
        self.install_queue = install_queue
        self.dispatcher = dispatcher
        self.config = config

    async def check(self, cave: Cave, noisy: bool = False) -> UpdateCheckResult:
        """Look for an upgrade of one cave.

        Args:
            cave: Cave to check
            noisy: Log at info level, the check was requested by the user

        Returns:
            The check result; failures are reported in it, not raised

        Raises:
            HostUnreachableError: If the catalog host cannot be reached
        """
        log = logger.bind(cave_id=cave.id, game_id=cave.game_id)

        if not self.session.owns(cave.installed_by):
            log.debug(
                "update_check_skipped",
                reason="installed by another user",
                installed_by=cave.installed_by.username if cave.installed_by else None,
            )
            return UpdateCheckResult.skipped("installed by another user")

        if not cave.launchable:
            log.debug("update_check_skipped", reason="not launchable")
            return UpdateCheckResult.skipped("not launchable")

        if cave.game_id is None:
            log.debug("update_check_skipped", reason="no game")
            return UpdateCheckResult.skipped("no game")

        try:
            game = await fetch_game_lazily(self.catalog, self.store, cave.game_id)
        except HostUnreachableError:
            raise
        except Exception as e:
            log.warning("game_fetch_failed", error=str(e))
            return UpdateCheckResult.failed(classify_error(e), e)

        if self.session.tasks.has_task(game.id, LAUNCH_TASK):
            log.info("update_check_skipped", reason="game running", title=game.title)
            return UpdateCheckResult.skipped("game running", game)

        if noisy:
            log.info("update_check_started", title=game.title)

        try:
            return await self._check_game(cave, game, log)
        except HostUnreachableError:
            raise
        except Exception as e:
            if is_key_ownership_error(e):
                log.info("update_check_skipped", reason="download key belongs to other user")
                return UpdateCheckResult.skipped("download key belongs to other user", game)
            kind = classify_error(e)
            if kind == ErrorKind.NETWORK:
                log.info("update_check_offline", error=str(e))
            else:
                log.error("update_check_failed", kind=kind.value, error=str(e), exc_info=True)
            return UpdateCheckResult.failed(kind, e, game)

    async def _check_game(
        self, cave: Cave, game: Game, log: structlog.stdlib.BoundLogger
    ) -> UpdateCheckResult:
        selection = await find_uploads(
            self.catalog, self.store, self.session, game, self.config.install.platform, cave
        )
        uploads = selection.uploads
        if not uploads:
            log.warning("no_uploads", title=game.title)
            return UpdateCheckResult.failed(
                ErrorKind.NO_UPLOADS, CatalogError("No uploads found"), game
            )

        cutoff = update_cutoff(cave.installed_at)
        recent_uploads = [u for u in uploads if u.updated_at is not None and u.updated_at > cutoff]
        log.debug(
            "uploads_compared",
            installed_at=cutoff.isoformat(),
            available=len(uploads),
            recent=len(recent_uploads),
        )

        if cave.upload_id is not None and cave.build_id is not None:
            upload = next((u for u in uploads if u.id == cave.upload_id), None)
            if upload is None or upload.build_id is None:
                # Retired uploads look the same as broken chains from here.
                log.warning("incremental_upload_missing", upload_id=cave.upload_id)
            elif upload.build_id != cave.build_id:
                return await self._queue_incremental(cave, game, upload, selection, log)
            else:
                log.debug("build_unchanged", build_id=upload.build_id)
                return UpdateCheckResult(CheckOutcome.NO_UPGRADE, game=game)

        if not recent_uploads:
            log.debug("no_recent_uploads", title=game.title)
            return UpdateCheckResult(CheckOutcome.NO_UPGRADE, game=game)

        if len(recent_uploads) > 1:
            log.info("multiple_recent_uploads", count=len(recent_uploads))
            self.dispatcher.prompt_choice(self._choice_prompt(cave, game, recent_uploads, selection))
            self.dispatcher.emit(UpgradeFound(cave_id=cave.id, game=game))
            return UpdateCheckResult(CheckOutcome.PROMPTED, game=game)

        upload = recent_uploads[0]
        different_upload = upload.id != cave.upload_id
        went_incremental = upload.build_id is not None and cave.build_id is None
        if not (different_upload or went_incremental):
            log.debug("same_upload", upload_id=upload.id)
            return UpdateCheckResult(CheckOutcome.NO_UPGRADE, game=game)

        log.info(
            "new_upload",
            title=game.title,
            filename=upload.filename,
            different_upload=different_upload,
            went_incremental=went_incremental,
        )
        request = self._full_request(cave, game, upload, selection, hand_picked=False)
        await self.install_queue.submit(request)
        self.dispatcher.emit(UpgradeFound(cave_id=cave.id, game=game))
        return UpdateCheckResult(CheckOutcome.UPGRADED, game=game, request=request)

    async def _queue_incremental(
        self,
        cave: Cave,
        game: Game,
        upload: Upload,
        selection: UploadSelection,
        log: structlog.stdlib.BoundLogger,
    ) -> UpdateCheckResult:
        assert cave.build_id is not None
        log.info("new_build", from_build=cave.build_id, to_build=upload.build_id)

        upgrade_path = await self.resolver.resolve(
            cave.build_id, upload, selection.download_key_id
        )
        log.info(
            "upgrade_path_found",
            patches=len(upgrade_path.steps),
            total_size=format_size(upgrade_path.total_size),
        )

        request = InstallRequest(
            game=game,
            upload=upload,
            dest_path=download_path(self.config.downloads_dir, upload),
            reason=InstallReason.UPDATE,
            cave_id=cave.id,
            download_key_id=selection.download_key_id,
            incremental=True,
            upgrade_path=upgrade_path,
            total_size=upgrade_path.total_size,
        )
        await self.install_queue.submit(request)
        self.dispatcher.emit(UpgradeFound(cave_id=cave.id, game=game))
        return UpdateCheckResult(CheckOutcome.UPGRADED, game=game, request=request)

    def _full_request(
        self,
        cave: Cave,
        game: Game,
        upload: Upload,
        selection: UploadSelection,
        hand_picked: bool,
    ) -> InstallRequest:
        return InstallRequest(
            game=game,
            upload=upload,
            dest_path=download_path(self.config.downloads_dir, upload),
            reason=InstallReason.UPDATE,
            cave_id=cave.id,
            download_key_id=selection.download_key_id,
            total_size=upload.size,
            hand_picked=hand_picked,
        )

    def _choice_prompt(
        self, cave: Cave, game: Game, uploads: list[Upload], selection: UploadSelection
    ) -> ChoicePrompt:
        options = [
            ChoiceOption(
                label=f"{upload.label} ({format_size(upload.size)})",
                size=format_size(upload.size),
                updated_at=upload.updated_at,
                updated_ago=f"updated {format_time_ago(upload.updated_at)}",
                request=self._full_request(cave, game, upload, selection, hand_picked=True),
            )
            for upload in uploads
        ]
        return ChoicePrompt(
            title=f"Update {game.title}",
            message=f"Several uploads of {game.title} were updated. Pick the one to install.",
            options=options,
        )

    async def check_cave(self, cave_id: str, noisy: bool = False) -> UpdateCheckResult | None:
        """Check one cave by ID, as requested by the user.

        In noisy mode the outcome is reported through status messages.
        Never raises.

        Returns:
            The check result, or None if no such cave exists
        """
        cave = self.store.get_entity("caves", cave_id)
        if cave is None:
            logger.warning("cave_not_found", cave_id=cave_id)
            return None

        self.dispatcher.emit(UpdateCheckStarted(cave_id=cave_id))
        try:
            result = await self.check(cave, noisy=noisy)
        except Exception as e:
            logger.warning("update_check_failed", cave_id=cave_id, error=str(e))
            if noisy:
                self.dispatcher.status("status.game_update.check_failed", err=str(e))
            return UpdateCheckResult.failed(classify_error(e), e)
        finally:
            self.dispatcher.emit(UpdateCheckFinished(cave_id=cave_id))

        if noisy:
            if result.outcome == CheckOutcome.FAILED:
                self.dispatcher.status("status.game_update.check_failed", err=str(result.error))
            elif result.has_upgrade and result.game is not None:
                self.dispatcher.status("status.game_update.found", title=result.game.title)
            elif result.game is not None:
                self.dispatcher.status("status.game_update.not_found", title=result.game.title)
            logger.info("update_check_done", cave_id=cave_id, outcome=result.outcome.value)
        return result
